"""
FastAPI application for the HMO deal engine.

Exposes ingestion runs, ad-hoc compliance checks and per-property
intelligence reports. Production deployment configuration via environment
variables.
"""

import logging
import os
import threading
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from adapters import build_kamma, build_manager
from adapters.kamma import KammaDeterminationAdapter
from core.compliance import ComplianceRequest
from core.ingestion.manager import IngestionManager, property_freshness
from core.intelligence import DataIntelligenceService
from utils.config import Config
from utils.logging_config import configure_logging


logger = logging.getLogger(__name__)


# =============================================================================
# Environment Configuration
# =============================================================================

IS_PRODUCTION = os.getenv("PRODUCTION", "").lower() == "true"

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else []
if not ALLOWED_ORIGINS and not IS_PRODUCTION:
    # Development fallback only
    ALLOWED_ORIGINS = ["http://localhost:8000", "http://127.0.0.1:8000"]


# =============================================================================
# API Models
# =============================================================================

class RunIngestionRequest(BaseModel):
    """Request body for an ingestion run."""
    source: Optional[str] = None


class ComplianceCheckRequest(BaseModel):
    """Request body for a licensing determination."""
    postcode: str = Field(..., min_length=1)
    uprn: Optional[int] = None
    address: Optional[str] = None
    bedrooms: Optional[int] = Field(default=None, ge=0)


def create_app(
    manager: Optional[IngestionManager] = None,
    kamma: Optional[KammaDeterminationAdapter] = None,
    config: Optional[Config] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        manager: Ingestion manager; built from configuration if omitted
        kamma: Determination adapter for compliance checks
        config: Application configuration (default: from environment)
    """
    config = config or Config.load()
    manager = manager or build_manager(config)
    kamma = kamma or build_kamma(config)
    intelligence = DataIntelligenceService()
    run_lock = threading.Lock()

    app = FastAPI(
        title="HMO Deal Engine",
        description="HMO property ingestion, scoring and compliance",
        version="0.1.0",
        docs_url=None if IS_PRODUCTION else "/docs",
        redoc_url=None if IS_PRODUCTION else "/redoc",
        openapi_url=None if IS_PRODUCTION else "/openapi.json",
        debug=config.debug and not IS_PRODUCTION,
    )

    @app.get("/health", include_in_schema=False)
    def health():
        """Health endpoint. No dependencies, no IO."""
        return {"status": "healthy"}

    if ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    @app.post("/api/run-ingestion")
    def run_ingestion(request_data: Optional[RunIngestionRequest] = None):
        """
        Run ingestion over every source, or one named source.

        Returns one result per source plus the enrichment and staleness
        outcomes. Only one run may be in progress at a time.
        """
        if not run_lock.acquire(blocking=False):
            raise HTTPException(status_code=409, detail="An ingestion run is already in progress")
        try:
            source = request_data.source if request_data else None
            results = manager.run_ingestion(source_filter=source)
        finally:
            run_lock.release()

        return {
            "success": all(result.succeeded for result in results),
            "results": [result.to_dict() for result in results],
            "enrichment": manager.last_enrichment.to_dict() if manager.last_enrichment else None,
            "stale_marked": manager.last_stale_count,
        }

    @app.post("/api/compliance-check")
    def compliance_check(request_data: ComplianceCheckRequest):
        """Licensing schemes, Article 4 status and derived complexity for one address."""
        try:
            request = ComplianceRequest(
                postcode=request_data.postcode,
                uprn=request_data.uprn,
                address=request_data.address,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

        determination = kamma.determine(request)
        return {
            "determination": determination.to_dict(),
            "complexity": determination.complexity(request_data.bedrooms).value,
            "requires_mandatory_licence": determination.requires_mandatory_licence(request_data.bedrooms),
        }

    @app.get("/api/properties/{property_id}/intelligence")
    def property_intelligence(property_id: str):
        """Risks, opportunities, enrichment plan and provenance for one stored property."""
        record = manager.store.get(property_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Property not found: {property_id}")

        report = intelligence.build_report(record)
        return {
            **report.to_dict(),
            "freshness": property_freshness(record).to_dict(),
            "analysis": record.analysis.to_dict() if record.analysis else None,
        }

    return app


def _create_default_app() -> FastAPI:
    configure_logging()
    return create_app()


# Create app instance for uvicorn
app = _create_default_app()
