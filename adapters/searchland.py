"""
Searchland title and planning data.

Two DETAILED stage adapters over the same API: title ownership, and planning
constraints (Article 4, conservation areas, listed buildings).
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
from core.models import (
    OwnerDetails,
    OwnerType,
    PlanningConstraint,
    PlanningDetails,
    PropertyListing,
    Reliability,
)


logger = logging.getLogger(__name__)


OWNER_ADDRESS_KEYS = ("line1", "line2", "line3", "town", "county", "postcode")

LISTED_GRADES = {
    "I": "I",
    "1": "I",
    "GRADE I": "I",
    "II*": "II*",
    "2*": "II*",
    "GRADE II*": "II*",
    "II": "II",
    "2": "II",
    "GRADE II": "II",
}


class _SearchlandClient(HttpAdapterMixin):
    provider = "searchland"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.searchland.co.uk/v1",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        self._init_http(base_url, timeout, user_agent, session, rate_limiter)
        self._api_key = api_key

    def has_credentials(self) -> bool:
        return bool(self._api_key)

    def _post(self, path: str, body: dict[str, Any]) -> Optional[dict[str, Any]]:
        data = self._request_json(
            "POST",
            path,
            json=body,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        return data if isinstance(data, dict) else None


# =============================================================================
# Ownership
# =============================================================================


def classify_owner(owner: dict[str, Any]) -> OwnerType:
    owner_kind = str(owner.get("type") or "").lower()
    name = str(owner.get("name") or owner.get("company_name") or "")
    if owner.get("company_number") or owner_kind == "company":
        return OwnerType.COMPANY
    if owner_kind == "trust":
        return OwnerType.TRUST
    if owner_kind == "government" or "council" in name.lower():
        return OwnerType.GOVERNMENT
    if name:
        return OwnerType.INDIVIDUAL
    return OwnerType.UNKNOWN


class SearchlandOwnershipAdapter(EnrichmentAdapter, _SearchlandClient):
    """Registered title and proprietor."""

    provides = frozenset({EnrichmentStep.FETCH_OWNERSHIP})
    reliability = Reliability.HIGH

    @property
    def name(self) -> str:
        return "Searchland Ownership"

    def enrich(self, listing: PropertyListing) -> EnrichmentPatch:
        if not self._check_credentials():
            return EnrichmentPatch()

        data = self._post("/title", {
            "address": listing.address,
            "postcode": listing.postcode,
            "uprn": listing.uprn,
        })
        title = ((data or {}).get("data") or {}).get("title")
        if not isinstance(title, dict):
            return EnrichmentPatch()

        owner = title.get("proprietor") or title.get("owner") or {}
        owner_type = classify_owner(owner)
        owner_name = owner.get("name") or owner.get("company_name")
        is_company = owner_type is OwnerType.COMPANY

        return EnrichmentPatch(owner=OwnerDetails(
            title_number=title.get("title_number"),
            tenure=title.get("tenure"),
            owner_name=owner_name,
            owner_type=owner_type,
            owner_address=format_address(owner.get("address"), OWNER_ADDRESS_KEYS),
            owner_contact_email=owner.get("email"),
            owner_contact_phone=owner.get("phone"),
            company_name=owner_name if is_company else None,
            company_number=owner.get("company_number") if is_company else None,
        ))


# =============================================================================
# Planning
# =============================================================================


def _mentions(constraint: dict[str, Any], text: str) -> bool:
    haystack = f"{constraint.get('type') or ''} {constraint.get('description') or ''}".lower()
    return text in haystack


def normalise_listed_grade(raw: Any) -> Optional[str]:
    if raw is None or raw == "":
        return None
    return LISTED_GRADES.get(str(raw).strip().upper())


class SearchlandPlanningAdapter(EnrichmentAdapter, _SearchlandClient):
    """Article 4, conservation area and listed building status."""

    provides = frozenset({EnrichmentStep.CHECK_PLANNING_CONSTRAINTS})
    reliability = Reliability.HIGH

    @property
    def name(self) -> str:
        return "Searchland Planning"

    def enrich(self, listing: PropertyListing) -> EnrichmentPatch:
        if not self._check_credentials():
            return EnrichmentPatch()

        data = self._post("/planning", {
            "address": listing.address,
            "postcode": listing.postcode,
            "latitude": listing.latitude,
            "longitude": listing.longitude,
            "uprn": listing.uprn,
        })
        planning = ((data or {}).get("data") or {}).get("planning")
        if not isinstance(planning, dict):
            return EnrichmentPatch()
        return EnrichmentPatch(planning=self.parse_planning(planning))

    @staticmethod
    def parse_planning(planning: dict[str, Any]) -> PlanningDetails:
        api_constraints = [c for c in planning.get("constraints") or [] if isinstance(c, dict)]

        article_4 = bool(
            planning.get("article_4")
            or planning.get("article_4_direction")
            or planning.get("article_4_area")
            or any(_mentions(c, "article 4") for c in api_constraints)
        )
        conservation = bool(
            planning.get("conservation_area")
            or any("conservation" in str(c.get("type") or "").lower() for c in api_constraints)
        )
        grade = normalise_listed_grade(planning.get("listed_building_grade") or planning.get("listed_grade"))

        constraints: list[PlanningConstraint] = []
        if article_4:
            constraints.append(PlanningConstraint(
                constraint_type="Article 4",
                description="Article 4 direction removes permitted development for HMO conversion",
                reference=planning.get("article_4_reference"),
            ))
        if conservation:
            constraints.append(PlanningConstraint(
                constraint_type="Conservation Area",
                description=planning.get("conservation_area_name"),
                reference=planning.get("conservation_area_name"),
            ))
        if grade:
            constraints.append(PlanningConstraint(
                constraint_type="Listed Building",
                description=f"Grade {grade} listed",
                reference=planning.get("listed_building_reference"),
            ))

        seen = {c.constraint_type.lower() for c in constraints}
        for raw in api_constraints:
            constraint_type = str(raw.get("type") or "").strip()
            if not constraint_type or constraint_type.lower() in seen:
                continue
            seen.add(constraint_type.lower())
            constraints.append(PlanningConstraint(
                constraint_type=constraint_type,
                description=raw.get("description"),
                reference=raw.get("reference"),
            ))

        return PlanningDetails(
            article_4_area=article_4,
            conservation_area=conservation,
            listed_building_grade=grade,
            constraints=constraints,
        )
