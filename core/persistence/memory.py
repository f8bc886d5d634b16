"""
In-Memory Property Store

Dict-backed store keyed by natural key, with optional JSON file persistence
for development. Records are copied on the way in and out so callers never
share state with the store.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from core.exceptions import DuplicateNaturalKeyError, StoreUnavailableError
from core.models import EnrichedProperty
from core.persistence.base import PropertyStore, RecordFilter


logger = logging.getLogger(__name__)


def _sort_key(record: EnrichedProperty) -> datetime:
    return record.first_ingested_at or datetime.min.replace(tzinfo=timezone.utc)


class InMemoryPropertyStore(PropertyStore):
    """
    Property store for development and tests.

    Uses in-memory storage with optional file persistence.
    """

    def __init__(self, persist_path: Optional[str] = None):
        """
        Initialise store.

        Args:
            persist_path: Optional path to persist data to JSON file
        """
        self._records: dict[tuple[str, str], EnrichedProperty] = {}
        self._ids: dict[str, tuple[str, str]] = {}
        self._lock = threading.RLock()
        self._persist_path = Path(persist_path) if persist_path else None

        if self._persist_path and self._persist_path.is_file():
            self._load_from_file()

    def _save_to_file(self) -> None:
        if not self._persist_path:
            return

        data = {
            "properties": [record.to_dict() for record in self._records.values()],
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        self._persist_path.write_text(json.dumps(data, indent=2))

    def _load_from_file(self) -> None:
        try:
            data = json.loads(self._persist_path.read_text())
            for record_data in data.get("properties", []):
                record = EnrichedProperty.from_dict(record_data)
                self._records[record.natural_key] = record
                self._ids[record.id] = record.natural_key
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Could not load property store from %s: %s", self._persist_path, e)

    # =========================================================================
    # PropertyStore
    # =========================================================================

    def ping(self) -> None:
        if self._persist_path and self._persist_path.exists() and not self._persist_path.is_file():
            raise StoreUnavailableError(f"Store path is not a file: {self._persist_path}")

    def get(self, record_id: str) -> Optional[EnrichedProperty]:
        with self._lock:
            key = self._ids.get(record_id)
            if key is None:
                return None
            return copy.deepcopy(self._records[key])

    def find_by_natural_key(self, postcode: str, external_id: str) -> Optional[EnrichedProperty]:
        with self._lock:
            record = self._records.get((postcode, external_id))
            return copy.deepcopy(record) if record else None

    def insert(self, record: EnrichedProperty) -> EnrichedProperty:
        with self._lock:
            if record.natural_key in self._records:
                raise DuplicateNaturalKeyError(record.postcode, record.external_id)
            self._store(record)
        return record

    def upsert(self, record: EnrichedProperty) -> EnrichedProperty:
        with self._lock:
            existing = self._records.get(record.natural_key)
            if existing is not None and existing.id != record.id:
                # Keep the identity of the row already stored
                record.id = existing.id
                record.first_ingested_at = existing.first_ingested_at or record.first_ingested_at
            self._store(record)
        return record

    def find_where(self, record_filter: RecordFilter, limit: Optional[int] = None) -> list[EnrichedProperty]:
        with self._lock:
            matches = sorted(
                (r for r in self._records.values() if record_filter.matches(r)),
                key=_sort_key,
            )
            if limit is not None:
                matches = matches[:limit]
            return [copy.deepcopy(r) for r in matches]

    def update_where(self, record_filter: RecordFilter, patch: dict[str, Any]) -> int:
        with self._lock:
            matches = [r for r in self._records.values() if record_filter.matches(r)]
            for record in matches:
                record.apply_tracking(patch)
            if matches:
                self._save_to_file()
            return len(matches)

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def list_all(self) -> list[EnrichedProperty]:
        with self._lock:
            return [copy.deepcopy(r) for r in sorted(self._records.values(), key=_sort_key)]

    def _store(self, record: EnrichedProperty) -> None:
        self._records[record.natural_key] = copy.deepcopy(record)
        self._ids[record.id] = record.natural_key
        self._save_to_file()
