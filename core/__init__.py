"""
HMO Deal Engine - Core Business Logic

This package provides the property pipeline:
1. Ingestion (phase 1 source adapters, deduplicated upsert)
2. Enrichment (BASIC then DETAILED provider adapters)
3. HMO Analysis (space standards, yield, seven-part deal score)
4. Compliance (licensing schemes, Article 4, complexity)
5. Intelligence (risks, opportunities, enrichment plans)
"""

from .models import (
    PropertyListing,
    EnrichedProperty,
    HMOAnalysis,
    DealScoreBreakdown,
    HmoClassification,
    FloorAreaBand,
    YieldBand,
    ListingType,
    LicenceStatus,
    OwnerType,
    Reliability,
    DataProvenance,
)
from .compliance import (
    ComplianceComplexity,
    ComplianceDetermination,
    ComplianceRequest,
    LicensingScheme,
    SchemeType,
    derive_complexity,
)
from .hmo_analyzer import PotentialHMOAnalyzer
from .intelligence import DataIntelligenceService, EnrichmentStep, IntelligenceReport
from .exceptions import (
    DealEngineError,
    StoreUnavailableError,
    DuplicateNaturalKeyError,
    AdapterConfigurationError,
)

__all__ = [
    # Models
    "PropertyListing",
    "EnrichedProperty",
    "HMOAnalysis",
    "DealScoreBreakdown",
    "HmoClassification",
    "FloorAreaBand",
    "YieldBand",
    "ListingType",
    "LicenceStatus",
    "OwnerType",
    "Reliability",
    "DataProvenance",
    # Compliance
    "ComplianceComplexity",
    "ComplianceDetermination",
    "ComplianceRequest",
    "LicensingScheme",
    "SchemeType",
    "derive_complexity",
    # Analysis
    "PotentialHMOAnalyzer",
    "DataIntelligenceService",
    "EnrichmentStep",
    "IntelligenceReport",
    # Errors
    "DealEngineError",
    "StoreUnavailableError",
    "DuplicateNaturalKeyError",
    "AdapterConfigurationError",
]
