"""
StreetData property lookup.

BASIC stage. Matches the listing against properties at its postcode and
fills the UPRN, build year and a normalised property type.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

import requests

from adapters.http import DEFAULT_TIMEOUT_SECONDS, DEFAULT_USER_AGENT, HttpAdapterMixin
from core.ingestion.adapter import EnrichmentAdapter, EnrichmentPatch, EnrichmentStage
from core.ingestion.rate_limit import ProviderRateLimiter
from core.intelligence import EnrichmentStep
from core.models import PropertyDetails, PropertyListing, Reliability


logger = logging.getLogger(__name__)


# Upper age bound (years) -> label
AGE_BANDS = (
    (10, "New Build"),
    (30, "Modern"),
    (50, "Post-War"),
    (100, "Victorian/Edwardian"),
)
OLDEST_AGE_BAND = "Period Property"


def age_band(year_built: int, today: Optional[date] = None) -> str:
    """Describe a property's age from its build year."""
    age = (today or date.today()).year - year_built
    for limit, label in AGE_BANDS:
        if age < limit:
            return label
    return OLDEST_AGE_BAND


def normalise_street_property_type(raw: Optional[str]) -> str:
    text = (raw or "").lower()
    if "studio" in text:
        return "Studio"
    if "flat" in text or "apartment" in text:
        return "Flat"
    return "House"


class StreetDataAdapter(EnrichmentAdapter, HttpAdapterMixin):
    """UPRN, build year and property type from StreetData."""

    stage = EnrichmentStage.BASIC
    provides = frozenset({EnrichmentStep.GEOCODE_TO_UPRN})
    provider = "streetdata"
    reliability = Reliability.HIGH

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.data.street.co.uk/street-data-api/v2",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        self._init_http(base_url, timeout, user_agent, session, rate_limiter)
        self._api_key = api_key

    @property
    def name(self) -> str:
        return "StreetData"

    def has_credentials(self) -> bool:
        return bool(self._api_key)

    def enrich(self, listing: PropertyListing) -> EnrichmentPatch:
        if not self._check_credentials():
            return EnrichmentPatch()

        data = self._request_json(
            "GET",
            "/properties",
            params={"postcode": listing.postcode},
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        if not isinstance(data, dict):
            return EnrichmentPatch()

        match = self._match(data.get("data") or [], listing.address)
        if match is None:
            logger.debug("No StreetData match for %s", listing.address)
            return EnrichmentPatch()

        year_built = match.get("year_built") or match.get("construction_year")
        try:
            year_built = int(year_built) if year_built else None
        except (TypeError, ValueError):
            year_built = None

        floor_area = match.get("floor_area_sqm") or match.get("total_floor_area")
        try:
            floor_area = float(floor_area) if floor_area else None
        except (TypeError, ValueError):
            floor_area = None

        uprn = match.get("uprn")
        return EnrichmentPatch(
            uprn=str(uprn) if uprn else None,
            property_type=normalise_street_property_type(match.get("property_type")),
            details=PropertyDetails(
                year_built=year_built,
                property_age=age_band(year_built) if year_built else None,
                floor_area_sqm=floor_area,
                council_tax_band=match.get("council_tax_band"),
            ),
        )

    @staticmethod
    def _match(candidates: list[dict[str, Any]], address: str) -> Optional[dict[str, Any]]:
        """First candidate whose address contains the listing's first address line."""
        first_line = address.split(",")[0].strip().lower()
        if not first_line:
            return None
        for candidate in candidates:
            if first_line in str(candidate.get("address") or "").lower():
                return candidate
        return None
