"""
Companies House public data API.

DETAILED stage. For company-owned properties, fills the company status,
incorporation date, registered office and active directors.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from adapters.http import (
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    HttpAdapterMixin,
    format_address,
)
from core.ingestion.adapter import EnrichmentAdapter, EnrichmentPatch
from core.ingestion.rate_limit import ProviderRateLimiter
from core.intelligence import EnrichmentStep
from core.models import Director, OwnerDetails, PropertyListing, Reliability


logger = logging.getLogger(__name__)


MAX_DIRECTORS = 10

REGISTERED_OFFICE_KEYS = (
    "premises",
    "address_line_1",
    "address_line_2",
    "locality",
    "region",
    "postal_code",
    "country",
)

COMPANY_STATUS_MAP = {
    "registered": "active",
    "removed": "dissolved",
    "insolvency-proceedings": "insolvency",
}


def normalise_company_status(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    status = raw.strip().lower()
    return COMPANY_STATUS_MAP.get(status, status)


class CompaniesHouseAdapter(EnrichmentAdapter, HttpAdapterMixin):
    """Company profile and officers for a known company number."""

    provides = frozenset({EnrichmentStep.FETCH_COMPANY_DETAILS})
    provider = "companies_house"
    reliability = Reliability.AUTHORITATIVE

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.company-information.service.gov.uk",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        self._init_http(base_url, timeout, user_agent, session, rate_limiter)
        self._api_key = api_key

    @property
    def name(self) -> str:
        return "Companies House"

    def has_credentials(self) -> bool:
        return bool(self._api_key)

    def enrich(self, listing: PropertyListing) -> EnrichmentPatch:
        company_number = listing.owner.company_number
        if not company_number:
            return EnrichmentPatch()
        if not self._check_credentials():
            return EnrichmentPatch()

        # API key is the basic auth username with an empty password
        auth = (self._api_key, "")
        profile = self._request_json("GET", f"/company/{company_number}", auth=auth)
        if not isinstance(profile, dict):
            return EnrichmentPatch()

        officers = self._request_json("GET", f"/company/{company_number}/officers", auth=auth)

        owner_address = None
        if not listing.owner.owner_address:
            owner_address = format_address(profile.get("registered_office_address"), REGISTERED_OFFICE_KEYS)

        try:
            directors = self.active_directors(officers) if isinstance(officers, dict) else None
            return EnrichmentPatch(owner=OwnerDetails(
                company_name=profile.get("company_name"),
                company_status=normalise_company_status(profile.get("company_status")),
                company_incorporation_date=profile.get("date_of_creation"),
                owner_address=owner_address,
                directors=directors,
            ))
        except ValueError as e:
            logger.warning("Unusable Companies House data for %s: %s", company_number, e)
            return EnrichmentPatch()

    @staticmethod
    def active_directors(officers: dict[str, Any]) -> list[Director]:
        directors = []
        for item in officers.get("items") or []:
            if item.get("resigned_on") or not item.get("name"):
                continue
            directors.append(Director(
                name=item["name"],
                role=item.get("officer_role") or "Director",
                appointed_on=item.get("appointed_on"),
                nationality=item.get("nationality"),
                occupation=item.get("occupation"),
            ))
            if len(directors) >= MAX_DIRECTORS:
                break
        return directors
