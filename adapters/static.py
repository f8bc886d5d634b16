"""
Static source adapter.

Serves listings from an in-memory list or a JSON file. Used for fixtures,
local development and one-off imports of exported register data.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from core.ingestion.adapter import SourceAdapter
from core.models import PropertyListing


logger = logging.getLogger(__name__)


class StaticSourceAdapter(SourceAdapter):
    """
    Phase 1 source over raw listing dicts.

    Each dict uses canonical field names and must carry an ``external_id``.
    A JSON file may hold either a list of dicts or ``{"listings": [...]}``.
    """

    def __init__(
        self,
        name: str,
        records: Optional[list[dict[str, Any]]] = None,
        path: Optional[str] = None,
    ):
        super().__init__()
        if records is None and path is None:
            raise ValueError("records or path is required")
        self._name = name
        self._records = records
        self._path = Path(path) if path else None

    @property
    def name(self) -> str:
        return self._name

    def _load(self) -> list[dict[str, Any]]:
        if self._records is not None:
            return self._records
        data = json.loads(self._path.read_text())
        if isinstance(data, dict):
            data = data.get("listings", [])
        return data

    def fetch(self) -> list[PropertyListing]:
        self.clear_rejections()
        listings = []
        for raw in self._load():
            listing = self.validate_and_normalise(raw, str(raw.get("external_id") or ""))
            if listing is not None:
                listings.append(listing)
        logger.info("%s: %d listing(s), %d rejected", self.name, len(listings), len(self._rejections))
        return listings
