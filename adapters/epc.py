"""
EPC Open Data Communities.

DETAILED stage. Searches domestic certificates at the postcode and keeps the
one whose address best matches the listing.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

import requests

from adapters.http import (
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    HttpAdapterMixin,
    address_similarity,
)
from core.ingestion.adapter import EnrichmentAdapter, EnrichmentPatch
from core.ingestion.rate_limit import ProviderRateLimiter
from core.intelligence import EnrichmentStep, add_months
from core.models import EpcDetails, PropertyListing, Reliability
from core.scoring_tables import EPC_VALIDITY_YEARS


logger = logging.getLogger(__name__)


CERTIFICATE_URL = "https://find-energy-certificate.service.gov.uk/energy-certificate/{}"
MIN_ADDRESS_SIMILARITY = 0.3
SEARCH_PAGE_SIZE = 25
# Potential ratings that make an upgrade worth pursuing
FEASIBLE_POTENTIAL_RATINGS = frozenset("ABCDE")


def _parse_lodgement_date(value: Any) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


class EpcAdapter(EnrichmentAdapter, HttpAdapterMixin):
    """Energy certificate lookup by postcode and address."""

    provides = frozenset({EnrichmentStep.FETCH_EPC})
    provider = "epc"
    reliability = Reliability.AUTHORITATIVE

    def __init__(
        self,
        email: Optional[str],
        api_key: Optional[str],
        base_url: str = "https://epc.opendatacommunities.org/api/v1",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        self._init_http(base_url, timeout, user_agent, session, rate_limiter)
        self._email = email
        self._api_key = api_key

    @property
    def name(self) -> str:
        return "EPC Register"

    def has_credentials(self) -> bool:
        return bool(self._email and self._api_key)

    def enrich(self, listing: PropertyListing) -> EnrichmentPatch:
        if listing.epc.rating:
            return EnrichmentPatch()
        if not self._check_credentials():
            return EnrichmentPatch()

        data = self._request_json(
            "GET",
            "/domestic/search",
            params={"postcode": listing.postcode, "size": SEARCH_PAGE_SIZE},
            auth=(self._email, self._api_key),
        )
        rows = data.get("rows") if isinstance(data, dict) else None
        if not rows:
            return EnrichmentPatch()

        row = self.best_match(rows, listing.address)
        try:
            epc = self._to_details(row)
        except ValueError as e:
            logger.warning("Unusable EPC certificate for %s: %s", listing.address, e)
            return EnrichmentPatch()

        floor_area = None
        if listing.gross_internal_area_sqm is None:
            try:
                floor_area = float(row.get("total-floor-area")) if row.get("total-floor-area") else None
            except (TypeError, ValueError):
                floor_area = None

        return EnrichmentPatch(epc=epc, gross_internal_area_sqm=floor_area)

    @staticmethod
    def best_match(rows: list[dict[str, Any]], address: str) -> dict[str, Any]:
        """Closest certificate by address, or the first row when nothing is close."""
        best, best_score = None, MIN_ADDRESS_SIMILARITY
        for row in rows:
            score = address_similarity(address, str(row.get("address") or ""))
            if score > best_score:
                best, best_score = row, score
        return best if best is not None else rows[0]

    @staticmethod
    def _to_details(row: dict[str, Any]) -> EpcDetails:
        lodgement = _parse_lodgement_date(row.get("lodgement-date"))
        expiry = add_months(lodgement, 12 * EPC_VALIDITY_YEARS) if lodgement else None

        efficiency = row.get("current-energy-efficiency")
        try:
            efficiency = int(efficiency) if efficiency not in (None, "") else None
        except (TypeError, ValueError):
            efficiency = None

        potential = (row.get("potential-energy-rating") or "").strip().upper() or None
        cert_hash = row.get("certificate-hash") or row.get("lmk-key")
        return EpcDetails(
            rating=row.get("current-energy-rating"),
            rating_numeric=efficiency,
            potential_rating=potential,
            certificate_url=CERTIFICATE_URL.format(cert_hash) if cert_hash else None,
            lodgement_date=lodgement,
            expiry_date=expiry,
            improvement_feasible=(potential in FEASIBLE_POTENTIAL_RATINGS) if potential else None,
        )
