"""
Adapter Interfaces - Source Adapters and Enrichment Adapters

Phase 1 source adapters fetch raw listings from one provider and normalise
them into PropertyListing records, tracking anything they reject.

Enrichment adapters run afterwards in stage order. Each receives the
accumulated property and returns a sparse EnrichmentPatch; they never raise
across the boundary.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Any, ClassVar, Final, Optional

from core.ingestion.schema import (
    RejectionRecord,
    normalise_uk_postcode,
    validate_uk_postcode,
)
from core.models import (
    EpcDetails,
    LicenceDetails,
    ListingType,
    OwnerDetails,
    PlanningDetails,
    PropertyDetails,
    PropertyListing,
    Reliability,
    SECTION_TYPES,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Normalisation Maps
# =============================================================================

STANDARD_PROPERTY_TYPE_MAP: Final[dict[str, str]] = {
    "hmo": "HMO",
    "house in multiple occupation": "HMO",
    "shared house": "HMO",
    "flat": "Flat",
    "apartment": "Flat",
    "maisonette": "Flat",
    "studio": "Studio",
    "studio flat": "Studio",
    "house": "House",
    "terraced": "House",
    "terraced house": "House",
    "end terrace": "House",
    "mid terrace": "House",
    "semi-detached": "House",
    "semi detached": "House",
    "detached": "House",
    "detached house": "House",
    "bungalow": "House",
    "townhouse": "House",
}

STANDARD_LISTING_TYPE_MAP: Final[dict[str, ListingType]] = {
    "rent": ListingType.RENT,
    "to rent": ListingType.RENT,
    "to let": ListingType.RENT,
    "let": ListingType.RENT,
    "rental": ListingType.RENT,
    "purchase": ListingType.PURCHASE,
    "sale": ListingType.PURCHASE,
    "for sale": ListingType.PURCHASE,
    "buy": ListingType.PURCHASE,
}


def _parse_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(float(str(value).replace(",", "").replace("£", "")))


def _parse_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


# =============================================================================
# Source Adapter Interface
# =============================================================================


class SourceAdapter(ABC):
    """
    Abstract interface for phase 1 data sources.

    Subclasses must implement:
    - name: unique source name
    - fetch: return normalised listings

    A fetch that fails as a whole should raise; the orchestrator records the
    failure against this source and carries on with the next one.
    """

    phase: ClassVar[int] = 1
    reliability: ClassVar[Reliability] = Reliability.MEDIUM

    def __init__(self) -> None:
        """Initialise adapter with rejection tracking."""
        self._rejections: list[RejectionRecord] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique source name used in results and source filters."""
        ...

    @abstractmethod
    def fetch(self) -> list[PropertyListing]:
        """Fetch and normalise listings from the source."""
        ...

    def get_property_type_map(self) -> dict[str, str]:
        """Override to add source-specific property type mappings."""
        return STANDARD_PROPERTY_TYPE_MAP.copy()

    def normalise_property_type(self, raw_type: Optional[str]) -> Optional[str]:
        if not raw_type:
            return None
        normalised = raw_type.lower().strip()
        return self.get_property_type_map().get(normalised, raw_type.strip().title())

    # =========================================================================
    # Rejection Handling
    # =========================================================================

    @property
    def rejections(self) -> list[RejectionRecord]:
        """Get all rejection records from this adapter session."""
        return self._rejections.copy()

    def clear_rejections(self) -> None:
        """Forget rejections from earlier fetches."""
        self._rejections.clear()

    def _reject(
        self,
        source_listing_id: str,
        rejection_code: str,
        raw_data: Optional[dict] = None,
    ) -> None:
        record = RejectionRecord.create(
            source_name=self.name,
            source_listing_id=source_listing_id,
            rejection_code=rejection_code,
            raw_data=raw_data,
        )
        self._rejections.append(record)
        logger.warning(
            "Rejected listing %s from %s: %s",
            source_listing_id,
            self.name,
            rejection_code,
        )

    # =========================================================================
    # Validation Helpers
    # =========================================================================

    def validate_and_normalise(
        self,
        raw_data: dict[str, Any],
        source_listing_id: str,
    ) -> Optional[PropertyListing]:
        """
        Validate raw data and create a PropertyListing if valid.

        Args:
            raw_data: Dictionary of raw listing data in canonical field names
            source_listing_id: ID from source

        Returns:
            PropertyListing if valid, None if rejected (rejection recorded)
        """
        if not source_listing_id or not str(source_listing_id).strip():
            self._reject(str(source_listing_id), "MISSING_EXTERNAL_ID", raw_data)
            return None

        address = (raw_data.get("address") or "").strip()
        if not address:
            self._reject(source_listing_id, "MISSING_ADDRESS", raw_data)
            return None

        postcode = (raw_data.get("postcode") or "").strip()
        if not postcode:
            self._reject(source_listing_id, "MISSING_POSTCODE", raw_data)
            return None
        if not validate_uk_postcode(postcode):
            self._reject(source_listing_id, "INVALID_POSTCODE", raw_data)
            return None
        postcode = normalise_uk_postcode(postcode)

        raw_listing_type = raw_data.get("listing_type") or "purchase"
        if isinstance(raw_listing_type, ListingType):
            listing_type = raw_listing_type
        else:
            listing_type = STANDARD_LISTING_TYPE_MAP.get(str(raw_listing_type).lower().strip())
        if listing_type is None:
            self._reject(source_listing_id, "UNMAPPED_LISTING_TYPE", raw_data)
            return None

        try:
            bedrooms = _parse_optional_int(raw_data.get("bedrooms")) or 0
            bathrooms = _parse_optional_int(raw_data.get("bathrooms")) or 0
        except (TypeError, ValueError):
            self._reject(source_listing_id, "INVALID_BEDROOMS", raw_data)
            return None
        if bedrooms < 0 or bathrooms < 0:
            self._reject(source_listing_id, "INVALID_BEDROOMS", raw_data)
            return None

        try:
            price_pcm = _parse_optional_int(raw_data.get("price_pcm"))
            purchase_price = _parse_optional_int(raw_data.get("purchase_price"))
            estimated_value = _parse_optional_int(raw_data.get("estimated_value"))
        except (TypeError, ValueError):
            self._reject(source_listing_id, "INVALID_PRICE", raw_data)
            return None
        for price in (price_pcm, purchase_price, estimated_value):
            if price is not None and price <= 0:
                self._reject(source_listing_id, "INVALID_PRICE", raw_data)
                return None

        latitude = longitude = None
        try:
            latitude = _parse_optional_float(raw_data.get("latitude"))
            longitude = _parse_optional_float(raw_data.get("longitude"))
        except (TypeError, ValueError):
            latitude = longitude = None

        try:
            gia = _parse_optional_float(raw_data.get("gross_internal_area_sqm"))
        except (TypeError, ValueError):
            gia = None

        try:
            return PropertyListing(
                external_id=str(source_listing_id).strip(),
                postcode=postcode,
                address=address,
                bedrooms=bedrooms,
                bathrooms=bathrooms,
                listing_type=listing_type,
                city=(raw_data.get("city") or "").strip() or None,
                title=(raw_data.get("title") or "").strip() or None,
                uprn=raw_data.get("uprn"),
                property_type=self.normalise_property_type(raw_data.get("property_type")),
                gross_internal_area_sqm=gia,
                price_pcm=price_pcm,
                purchase_price=purchase_price,
                estimated_value=estimated_value,
                source_url=raw_data.get("source_url"),
                latitude=latitude,
                longitude=longitude,
                description=raw_data.get("description"),
                details=raw_data.get("details") or PropertyDetails(),
                owner=raw_data.get("owner") or OwnerDetails(),
                epc=raw_data.get("epc") or EpcDetails(),
                licence=raw_data.get("licence") or LicenceDetails(),
                planning=raw_data.get("planning") or PlanningDetails(),
            )
        except (TypeError, ValueError):
            self._reject(source_listing_id, "INVALID_FIELD", raw_data)
            return None


# =============================================================================
# Enrichment Adapter Interface
# =============================================================================


class EnrichmentStage(IntEnum):
    """Enrichment stages, run in ascending order after phase 1."""

    BASIC = 2
    DETAILED = 3


@dataclass
class EnrichmentPatch:
    """
    Sparse, typed result of one enrichment adapter.

    Only non-null fields are applied to the property.
    """

    uprn: Optional[str] = None
    property_type: Optional[str] = None
    gross_internal_area_sqm: Optional[float] = None
    purchase_price: Optional[int] = None
    estimated_value: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    details: Optional[PropertyDetails] = None
    owner: Optional[OwnerDetails] = None
    epc: Optional[EpcDetails] = None
    licence: Optional[LicenceDetails] = None
    planning: Optional[PlanningDetails] = None

    def is_empty(self) -> bool:
        """True if applying this patch would change nothing."""
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name in SECTION_TYPES:
                if any(getattr(value, sf.name) is not None for sf in fields(value)):
                    return False
            else:
                return False
        return True


class EnrichmentAdapter(ABC):
    """
    Abstract interface for enrichment providers.

    ``provides`` names the advisory enrichment steps this adapter satisfies.
    When the planner no longer lists any of them, the orchestrator skips the
    adapter. An empty set means the adapter always runs.
    """

    stage: ClassVar[EnrichmentStage] = EnrichmentStage.DETAILED
    provides: ClassVar[frozenset] = frozenset()
    reliability: ClassVar[Reliability] = Reliability.MEDIUM

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def enrich(self, listing: PropertyListing) -> EnrichmentPatch:
        """
        Return what this provider knows about the property.

        Implementations must not mutate ``listing`` and must return an empty
        patch instead of raising.
        """
        ...
