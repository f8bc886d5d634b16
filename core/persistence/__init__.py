"""
Property persistence: the store interface and its implementations.
"""

from pathlib import Path
from typing import Optional

from core.persistence.base import PropertyStore, RecordFilter
from core.persistence.memory import InMemoryPropertyStore
from core.persistence.sql import SqlPropertyStore


def build_store(database_url: Optional[str] = None, data_dir: Optional[str] = None) -> PropertyStore:
    """SQL store when a database URL is configured, else the JSON-backed store."""
    if database_url:
        return SqlPropertyStore(database_url)
    persist_path = str(Path(data_dir) / "properties.json") if data_dir else None
    return InMemoryPropertyStore(persist_path=persist_path)


__all__ = [
    "PropertyStore",
    "RecordFilter",
    "InMemoryPropertyStore",
    "SqlPropertyStore",
    "build_store",
]
