"""
Ingestion Schema - Postcodes, Rejections and Run Results

Shared value types for the ingestion layer. This module has no dependency on
the property model so it can be imported from anywhere.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Final, Optional


# UK postcode validation regex
# Matches formats: AA9A 9AA, A9A 9AA, A9 9AA, A99 9AA, AA9 9AA, AA99 9AA
UK_POSTCODE_REGEX: Final = re.compile(
    r"^([A-Z]{1,2}[0-9][A-Z0-9]?\s?[0-9][A-Z]{2})$", re.IGNORECASE
)


def validate_uk_postcode(postcode: str) -> bool:
    """Validate UK postcode format."""
    if not postcode:
        return False
    normalised = " ".join(postcode.upper().split())
    return bool(UK_POSTCODE_REGEX.match(normalised))


def normalise_uk_postcode(postcode: str) -> str:
    """
    Normalise UK postcode to standard format.

    Ensures single space between outward and inward codes.
    """
    if not postcode:
        return ""
    clean = postcode.upper().replace(" ", "")
    # Inward code is always the last 3 characters
    if len(clean) >= 5:
        return f"{clean[:-3]} {clean[-3:]}"
    return clean


def dedup_key(postcode: str, external_id: str) -> str:
    """Per-run dedup key for a natural key."""
    return f"{normalise_uk_postcode(postcode)}|{external_id}"


# =============================================================================
# Rejection Tracking
# =============================================================================


REJECTION_CODES: Final[dict[str, str]] = {
    "MISSING_EXTERNAL_ID": "Required field 'external_id' not provided",
    "MISSING_ADDRESS": "Required field 'address' not provided",
    "MISSING_POSTCODE": "Required field 'postcode' not provided",
    "INVALID_POSTCODE": "Postcode format validation failed",
    "INVALID_PRICE": "Price is not a positive integer",
    "INVALID_BEDROOMS": "Bedroom count is not a non-negative integer",
    "UNMAPPED_LISTING_TYPE": "Listing type could not be normalised to rent or purchase",
    "INVALID_FIELD": "A field value failed validation",
}


@dataclass(frozen=True)
class RejectionRecord:
    """
    Record of a listing that failed normalisation.

    Used for audit trail and data quality monitoring.
    """

    source_name: str
    source_listing_id: str
    rejection_code: str
    rejection_reason: str
    raw_data_hash: str
    rejected_at: datetime

    @classmethod
    def create(
        cls,
        source_name: str,
        source_listing_id: str,
        rejection_code: str,
        raw_data: Optional[dict] = None,
    ) -> "RejectionRecord":
        """Create a rejection record with automatic hash and timestamp."""
        reason = REJECTION_CODES.get(rejection_code, f"Unknown code: {rejection_code}")

        # Hash raw data for debugging without storing PII
        if raw_data:
            data_str = str(sorted(raw_data.items()))
            raw_hash = hashlib.sha256(data_str.encode()).hexdigest()[:16]
        else:
            raw_hash = "no_data"

        return cls(
            source_name=source_name,
            source_listing_id=source_listing_id,
            rejection_code=rejection_code,
            rejection_reason=reason,
            raw_data_hash=raw_hash,
            rejected_at=datetime.now(timezone.utc),
        )


# =============================================================================
# Run Results
# =============================================================================


@dataclass
class IngestionResult:
    """
    Outcome of ingesting one source.

    Always produced, even when the run fails before the source is fetched.
    """

    source: str
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class EnrichmentRunSummary:
    """Counts from one pass over the enrichment backlog."""

    selected: int = 0
    enriched: int = 0
    failed: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected": self.selected,
            "enriched": self.enriched,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "errors": list(self.errors),
        }
