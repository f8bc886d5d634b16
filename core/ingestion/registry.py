"""
Adapter Registry - Source and Enrichment Adapter Registration

An AdapterRegistry is built once per application and handed to the
IngestionManager. Phase 1 sources and enrichment adapters are kept in
separate lists; registration order is preserved within each stage.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.exceptions import AdapterConfigurationError
from core.ingestion.adapter import EnrichmentAdapter, EnrichmentStage, SourceAdapter


logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Ordered collection of source and enrichment adapters."""

    def __init__(self) -> None:
        self._sources: list[SourceAdapter] = []
        self._enrichers: list[EnrichmentAdapter] = []

    def register_source(self, adapter: SourceAdapter) -> None:
        """
        Register a phase 1 source adapter.

        Raises:
            AdapterConfigurationError: If the adapter is not phase 1 or its
                name is already registered
        """
        if adapter.phase != 1:
            raise AdapterConfigurationError(
                f"Source adapter {adapter.name} must be phase 1, got {adapter.phase}"
            )
        if self.get_source(adapter.name) is not None:
            raise AdapterConfigurationError(f"Source already registered: {adapter.name}")
        self._sources.append(adapter)
        logger.debug("Registered source adapter %s", adapter.name)

    def register_enrichment(self, adapter: EnrichmentAdapter) -> None:
        """
        Register an enrichment adapter.

        Raises:
            AdapterConfigurationError: If the stage is invalid or the name is
                already registered
        """
        if not isinstance(adapter.stage, EnrichmentStage):
            raise AdapterConfigurationError(
                f"Enrichment adapter {adapter.name} has invalid stage {adapter.stage!r}"
            )
        if self.get_enrichment(adapter.name) is not None:
            raise AdapterConfigurationError(f"Enrichment adapter already registered: {adapter.name}")
        self._enrichers.append(adapter)
        logger.debug("Registered %s enrichment adapter %s", adapter.stage.name, adapter.name)

    @property
    def sources(self) -> list[SourceAdapter]:
        return list(self._sources)

    @property
    def enrichment_chain(self) -> list[EnrichmentAdapter]:
        """Enrichment adapters in stage order, registration order within a stage."""
        return sorted(self._enrichers, key=lambda adapter: adapter.stage)

    def get_source(self, name: str) -> Optional[SourceAdapter]:
        for adapter in self._sources:
            if adapter.name == name:
                return adapter
        return None

    def get_enrichment(self, name: str) -> Optional[EnrichmentAdapter]:
        for adapter in self._enrichers:
            if adapter.name == name:
                return adapter
        return None

    def sources_matching(self, source_filter: Optional[str] = None) -> list[SourceAdapter]:
        """All sources, or just the one named by ``source_filter``."""
        if source_filter is None:
            return self.sources
        return [adapter for adapter in self._sources if adapter.name == source_filter]
