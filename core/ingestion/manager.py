"""
Ingestion Manager - Phase-Ordered Ingestion, Enrichment and Staleness

Runs every phase 1 source adapter, deduplicates and upserts the listings
they return, enriches the backlog of incomplete records through the
enrichment chain, re-scores them and finally soft-deletes records that
have not been seen for the retention window.

Only an unreachable store aborts a run. Source, record and enrichment
failures are recorded and the run carries on.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Final, Iterator, Optional

from core.exceptions import DuplicateNaturalKeyError, StoreUnavailableError
from core.hmo_analyzer import PotentialHMOAnalyzer
from core.ingestion.adapter import EnrichmentAdapter, EnrichmentPatch, SourceAdapter
from core.ingestion.registry import AdapterRegistry
from core.ingestion.schema import EnrichmentRunSummary, IngestionResult
from core.intelligence import DataIntelligenceService
from core.models import EnrichedProperty, PropertyListing, merge_non_null, populated_fields, utc_now
from core.persistence.base import PropertyStore, RecordFilter


logger = logging.getLogger(__name__)


DEFAULT_ENRICHMENT_BATCH_SIZE: Final[int] = 100
DEFAULT_STALE_AFTER_DAYS: Final[int] = 7
FRESH_WITHIN_DAYS: Final[int] = 1

# Properties still missing a price or an HMO assessment
ENRICHMENT_BACKLOG: Final[RecordFilter] = RecordFilter(
    is_stale=False,
    missing_any=("purchase_price", "is_potential_hmo"),
)


@dataclass(frozen=True)
class Freshness:
    """How recently a property was observed by any source."""

    last_seen_at: Optional[datetime]
    days_since_seen: Optional[int]
    is_fresh: bool
    is_stale: bool

    def to_dict(self) -> dict:
        return {
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "days_since_seen": self.days_since_seen,
            "is_fresh": self.is_fresh,
            "is_stale": self.is_stale,
        }


def property_freshness(record: EnrichedProperty, now: Optional[datetime] = None) -> Freshness:
    """Days since the property was last seen, and whether that counts as fresh."""
    if record.last_seen_at is None:
        return Freshness(last_seen_at=None, days_since_seen=None, is_fresh=False, is_stale=record.is_stale)
    now = now or utc_now()
    days = (now - record.last_seen_at).days
    return Freshness(
        last_seen_at=record.last_seen_at,
        days_since_seen=days,
        is_fresh=days <= FRESH_WITHIN_DAYS,
        is_stale=record.is_stale,
    )


@dataclass
class _FetchOutcome:
    started: float
    listings: list[PropertyListing] = field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False


class IngestionManager:
    """
    Root orchestrator for ingestion runs.

    Args:
        store: Property store
        registry: Source and enrichment adapters
        analyzer: HMO analyzer run after enrichment
        intelligence: Supplies the advisory enrichment plan used to skip
            adapters whose data is already present
        enrichment_batch_size: Maximum backlog records enriched per run
        stale_after_days: Retention window before a record is marked stale
        source_workers: Threads used to fetch phase 1 sources concurrently
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        store: PropertyStore,
        registry: AdapterRegistry,
        analyzer: Optional[PotentialHMOAnalyzer] = None,
        intelligence: Optional[DataIntelligenceService] = None,
        enrichment_batch_size: int = DEFAULT_ENRICHMENT_BATCH_SIZE,
        stale_after_days: int = DEFAULT_STALE_AFTER_DAYS,
        source_workers: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ):
        if enrichment_batch_size < 0:
            raise ValueError("enrichment_batch_size cannot be negative")
        if stale_after_days < 1:
            raise ValueError("stale_after_days must be at least 1")
        if source_workers < 1:
            raise ValueError("source_workers must be at least 1")

        self._store = store
        self._registry = registry
        self._analyzer = analyzer or PotentialHMOAnalyzer()
        self._intelligence = intelligence or DataIntelligenceService()
        self._batch_size = enrichment_batch_size
        self._stale_after = timedelta(days=stale_after_days)
        self._source_workers = source_workers
        self._clock = clock

        self.last_enrichment: Optional[EnrichmentRunSummary] = None
        self.last_stale_count: Optional[int] = None

    @property
    def store(self) -> PropertyStore:
        return self._store

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    # =========================================================================
    # Full Run
    # =========================================================================

    def run_ingestion(
        self,
        source_filter: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> list[IngestionResult]:
        """
        Run phase 1 ingestion, then enrichment and the staleness sweep.

        Args:
            source_filter: Only run the source with this name. Enrichment is
                skipped when a filter is given.
            cancel_event: When set, the run stops before the next property

        Returns:
            One IngestionResult per source, always
        """
        self.last_enrichment = None
        self.last_stale_count = None

        adapters = self._registry.sources_matching(source_filter)
        if source_filter is not None and not adapters:
            logger.warning("No source adapter registered as %s", source_filter)
            return [IngestionResult(source=source_filter, errors=[f"Unknown source: {source_filter}"])]

        try:
            self._store.ping()
        except StoreUnavailableError as e:
            logger.error("Property store unavailable, aborting ingestion run: %s", e)
            names = [adapter.name for adapter in adapters] or ["ingestion"]
            return [IngestionResult(source=name, errors=[f"Store unavailable: {e}"]) for name in names]

        logger.info("Starting ingestion run over %d source(s)", len(adapters))
        seen_keys: set[str] = set()
        results: list[IngestionResult] = []
        cancelled = False

        for adapter, outcome in self._fetch_sources(adapters, cancel_event):
            result = IngestionResult(source=adapter.name, timestamp=self._clock())
            if outcome.cancelled or cancelled:
                result.errors.append("Run cancelled")
            elif outcome.error:
                result.errors.append(outcome.error)
            else:
                result.total = len(outcome.listings)
                cancelled = self._ingest_listings(adapter, outcome.listings, seen_keys, result, cancel_event)
            result.duration_ms = int((time.monotonic() - outcome.started) * 1000)
            results.append(result)
            logger.info(
                "Source %s: %d total, %d created, %d updated, %d skipped, %d error(s) in %dms",
                result.source, result.total, result.created, result.updated,
                result.skipped, len(result.errors), result.duration_ms,
            )

        if cancelled or (cancel_event is not None and cancel_event.is_set()):
            logger.warning("Ingestion run cancelled; skipping enrichment and staleness sweep")
            return results

        if source_filter is None:
            try:
                self.last_enrichment = self.run_enrichment(cancel_event=cancel_event)
            except Exception:
                logger.exception("Enrichment pass failed")

        try:
            self.last_stale_count = self.mark_stale_properties()
        except Exception:
            logger.exception("Staleness sweep failed")

        return results

    # =========================================================================
    # Phase 1
    # =========================================================================

    def _fetch_sources(
        self,
        adapters: list[SourceAdapter],
        cancel_event: Optional[threading.Event],
    ) -> Iterator[tuple[SourceAdapter, _FetchOutcome]]:
        """Fetch every source, yielding outcomes in registration order."""
        if self._source_workers > 1 and len(adapters) > 1:
            workers = min(self._source_workers, len(adapters))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="source-fetch") as pool:
                futures = [(adapter, pool.submit(self._fetch, adapter, cancel_event)) for adapter in adapters]
                for adapter, future in futures:
                    yield adapter, future.result()
        else:
            for adapter in adapters:
                yield adapter, self._fetch(adapter, cancel_event)

    @staticmethod
    def _fetch(adapter: SourceAdapter, cancel_event: Optional[threading.Event]) -> _FetchOutcome:
        outcome = _FetchOutcome(started=time.monotonic())
        if cancel_event is not None and cancel_event.is_set():
            outcome.cancelled = True
            return outcome
        try:
            outcome.listings = list(adapter.fetch())
        except Exception as e:
            logger.exception("Source %s failed to fetch", adapter.name)
            outcome.error = f"Source fetch failed: {e}"
        return outcome

    def _ingest_listings(
        self,
        adapter: SourceAdapter,
        listings: list[PropertyListing],
        seen_keys: set[str],
        result: IngestionResult,
        cancel_event: Optional[threading.Event],
    ) -> bool:
        """Upsert one source's listings. Returns True if the run was cancelled."""
        for listing in listings:
            if cancel_event is not None and cancel_event.is_set():
                result.errors.append("Run cancelled")
                return True
            try:
                self._upsert_listing(listing, adapter, seen_keys, result)
            except Exception as e:
                logger.warning("Failed to ingest %s from %s: %s", listing.external_id, adapter.name, e)
                result.errors.append(f"{listing.external_id}: {e}")
        return False

    def _upsert_listing(
        self,
        listing: PropertyListing,
        adapter: SourceAdapter,
        seen_keys: set[str],
        result: IngestionResult,
    ) -> None:
        now = self._clock()
        key = listing.dedup_key
        existing = self._store.find_by_natural_key(listing.postcode, listing.external_id)

        if existing is not None and key in seen_keys:
            # Already written this run; fold in anything new without a second row
            self._observe(existing, listing, adapter, now)
            result.skipped += 1
            return

        if existing is None:
            record = EnrichedProperty.create(listing, source_name=adapter.name, seen_at=now)
            record.record_provenance(adapter.name, adapter.reliability, populated_fields(listing), now)
            try:
                self._store.insert(record)
            except DuplicateNaturalKeyError:
                existing = self._store.find_by_natural_key(listing.postcode, listing.external_id)
                if existing is None:
                    raise
            else:
                seen_keys.add(key)
                result.created += 1
                return

        self._observe(existing, listing, adapter, now)
        seen_keys.add(key)
        result.updated += 1

    def _observe(
        self,
        record: EnrichedProperty,
        listing: PropertyListing,
        adapter: SourceAdapter,
        now: datetime,
    ) -> None:
        changed = record.observe(listing, source_name=adapter.name, seen_at=now)
        record.record_provenance(adapter.name, adapter.reliability, changed, now)
        if changed and record.analysis is not None:
            record.analysis = self._analyzer.analyze(record.listing)
        self._store.upsert(record)

    # =========================================================================
    # Enrichment
    # =========================================================================

    def run_enrichment(
        self,
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> EnrichmentRunSummary:
        """
        Enrich and re-score the backlog of incomplete, non-stale records.

        Args:
            limit: Maximum records to process (default: configured batch size)
            cancel_event: When set, stops before the next record
        """
        batch_size = self._batch_size if limit is None else limit
        backlog = self._store.find_where(ENRICHMENT_BACKLOG, limit=batch_size)
        summary = EnrichmentRunSummary(selected=len(backlog))
        logger.info("Enriching %d backlog record(s)", len(backlog))

        for record in backlog:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                break
            try:
                self.enrich_record(record)
                summary.enriched += 1
            except Exception as e:
                logger.exception("Failed to enrich %s", record.id)
                summary.failed += 1
                summary.errors.append(f"{record.id}: {e}")

        return summary

    def enrich_record(self, record: EnrichedProperty) -> EnrichedProperty:
        """Run the enrichment chain and the analyzer over one record, then persist it."""
        # Values already stored belong to their source; the chain only fills gaps
        stored = record.listing.copy()
        accumulator = record.listing.copy()
        now = self._clock()

        for adapter in self._registry.enrichment_chain:
            if adapter.provides:
                planned = set(self._intelligence.plan_enrichment_chain(accumulator))
                if not adapter.provides & planned:
                    logger.debug("Skipping %s for %s: nothing left to fetch", adapter.name, record.id)
                    continue
            patch = self._run_adapter(adapter, accumulator)
            changed = merge_non_null(accumulator, patch, keep=stored)
            if changed:
                logger.debug("%s enriched %s: %s", adapter.name, record.id, ", ".join(changed))
                record.record_provenance(adapter.name, adapter.reliability, changed, now)

        record.listing = accumulator
        record.analysis = self._analyzer.analyze(accumulator)
        record.last_enriched_at = now
        return self._store.upsert(record)

    @staticmethod
    def _run_adapter(adapter: EnrichmentAdapter, listing: PropertyListing) -> EnrichmentPatch:
        try:
            patch = adapter.enrich(listing)
        except Exception:
            logger.exception("Enrichment adapter %s failed", adapter.name)
            return EnrichmentPatch()
        return patch if patch is not None else EnrichmentPatch()

    # =========================================================================
    # Staleness
    # =========================================================================

    def mark_stale_properties(self, now: Optional[datetime] = None) -> int:
        """
        Soft-delete records unseen for longer than the retention window.

        Returns:
            Number of records newly marked stale
        """
        now = now or self._clock()
        cutoff = now - self._stale_after
        count = self._store.update_where(
            RecordFilter(is_stale=False, last_seen_before=cutoff),
            {"is_stale": True, "stale_marked_at": now},
        )
        if count:
            logger.info("Marked %d propert%s stale", count, "y" if count == 1 else "ies")
        return count
