"""
Property Store Interface

The store is the only shared mutable resource in the pipeline. It owns
EnrichedProperty records and enforces uniqueness of the natural key
(postcode, external_id).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final, Optional

from core.models import EnrichedProperty


# Fields a filter may test for absence
MISSING_FIELD_ACCESSORS: Final[dict[str, Any]] = {
    "purchase_price": lambda record: record.listing.purchase_price,
    "is_potential_hmo": lambda record: record.is_potential_hmo,
    "uprn": lambda record: record.listing.uprn,
    "epc_rating": lambda record: record.listing.epc.rating,
}


@dataclass(frozen=True)
class RecordFilter:
    """
    Conjunction of conditions over stored records.

    ``missing_any`` matches records where at least one of the named fields
    is null.
    """

    is_stale: Optional[bool] = None
    last_seen_before: Optional[datetime] = None
    missing_any: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        unknown = set(self.missing_any) - set(MISSING_FIELD_ACCESSORS)
        if unknown:
            raise ValueError(f"Unsupported missing_any fields: {sorted(unknown)}")

    def matches(self, record: EnrichedProperty) -> bool:
        if self.is_stale is not None and record.is_stale != self.is_stale:
            return False
        if self.last_seen_before is not None:
            if record.last_seen_at is None or not record.last_seen_at < self.last_seen_before:
                return False
        if self.missing_any:
            if not any(MISSING_FIELD_ACCESSORS[name](record) is None for name in self.missing_any):
                return False
        return True


class PropertyStore(ABC):
    """Persistence contract used by the IngestionManager."""

    @abstractmethod
    def ping(self) -> None:
        """
        Check the store is reachable.

        Raises:
            StoreUnavailableError: If it is not
        """
        ...

    @abstractmethod
    def get(self, record_id: str) -> Optional[EnrichedProperty]:
        ...

    @abstractmethod
    def find_by_natural_key(self, postcode: str, external_id: str) -> Optional[EnrichedProperty]:
        ...

    @abstractmethod
    def insert(self, record: EnrichedProperty) -> EnrichedProperty:
        """
        Insert a new record.

        Raises:
            DuplicateNaturalKeyError: If the natural key already exists
        """
        ...

    @abstractmethod
    def upsert(self, record: EnrichedProperty) -> EnrichedProperty:
        """Insert, or replace the record stored under the same natural key."""
        ...

    @abstractmethod
    def find_where(self, record_filter: RecordFilter, limit: Optional[int] = None) -> list[EnrichedProperty]:
        """Records matching the filter, oldest first-seen first."""
        ...

    @abstractmethod
    def update_where(self, record_filter: RecordFilter, patch: dict[str, Any]) -> int:
        """
        Apply a lifecycle patch to every matching record.

        Returns:
            Number of records updated
        """
        ...

    @abstractmethod
    def count(self) -> int:
        ...

    @abstractmethod
    def list_all(self) -> list[EnrichedProperty]:
        ...
