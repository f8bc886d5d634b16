"""
HMO Deal Engine - Ingestion Layer

Phase-ordered source adapters, the enrichment chain and the orchestrator
that ties them to the property store. Import adapters, the registry and the
manager from their own modules; this package only re-exports the schema.
"""

from core.ingestion.schema import (
    REJECTION_CODES,
    EnrichmentRunSummary,
    IngestionResult,
    RejectionRecord,
    dedup_key,
    normalise_uk_postcode,
    validate_uk_postcode,
)

__all__ = [
    "REJECTION_CODES",
    "EnrichmentRunSummary",
    "IngestionResult",
    "RejectionRecord",
    "dedup_key",
    "normalise_uk_postcode",
    "validate_uk_postcode",
]
