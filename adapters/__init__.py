"""
Provider adapters and default registry assembly.
"""

from __future__ import annotations

from typing import Optional

import requests

from adapters.companies_house import CompaniesHouseAdapter
from adapters.epc import EpcAdapter
from adapters.kamma import KammaDeterminationAdapter
from adapters.land_registry import LandRegistryValuationAdapter
from adapters.propertydata import PropertyDataHMOAdapter
from adapters.searchland import SearchlandOwnershipAdapter, SearchlandPlanningAdapter
from adapters.static import StaticSourceAdapter
from adapters.streetdata import StreetDataAdapter
from core.hmo_analyzer import PotentialHMOAnalyzer
from core.ingestion.manager import IngestionManager
from core.ingestion.rate_limit import ProviderRateLimiter
from core.ingestion.registry import AdapterRegistry
from core.intelligence import DataIntelligenceService
from core.persistence import PropertyStore, build_store
from utils.config import Config


def build_kamma(
    config: Config,
    session: Optional[requests.Session] = None,
    rate_limiter: Optional[ProviderRateLimiter] = None,
) -> KammaDeterminationAdapter:
    return KammaDeterminationAdapter(
        api_key=config.kamma_api_key,
        service_key=config.kamma_service_key,
        group_id=config.kamma_group_id,
        base_url=config.kamma_base_url,
        timeout=config.request_timeout,
        user_agent=config.user_agent,
        session=session,
        rate_limiter=rate_limiter,
    )


def build_registry(
    config: Config,
    session: Optional[requests.Session] = None,
    rate_limiter: Optional[ProviderRateLimiter] = None,
) -> AdapterRegistry:
    """
    Assemble the default adapter registry from configuration.

    Adapters whose credentials are missing are still registered; they log a
    warning once and return nothing.

    Args:
        config: Application configuration
        session: Shared HTTP session (tests inject a fake one)
        rate_limiter: Shared limiter; built from the config intervals if omitted
    """
    limiter = rate_limiter or ProviderRateLimiter(intervals=config.provider_intervals())
    http = {
        "timeout": config.request_timeout,
        "user_agent": config.user_agent,
        "session": session,
        "rate_limiter": limiter,
    }

    registry = AdapterRegistry()

    # Phase 1
    registry.register_source(PropertyDataHMOAdapter(
        api_key=config.propertydata_api_key,
        base_url=config.propertydata_base_url,
        postcodes=config.propertydata_postcodes,
        **http,
    ))
    if config.static_source_path:
        registry.register_source(StaticSourceAdapter("Static Feed", path=config.static_source_path))

    # BASIC
    registry.register_enrichment(StreetDataAdapter(
        api_key=config.streetdata_api_key,
        base_url=config.streetdata_base_url,
        **http,
    ))
    registry.register_enrichment(LandRegistryValuationAdapter(
        base_url=config.land_registry_base_url,
        enabled=config.land_registry_enabled,
        **http,
    ))

    # DETAILED
    registry.register_enrichment(SearchlandOwnershipAdapter(
        api_key=config.searchland_api_key,
        base_url=config.searchland_base_url,
        **http,
    ))
    registry.register_enrichment(CompaniesHouseAdapter(
        api_key=config.companies_house_api_key,
        base_url=config.companies_house_base_url,
        **http,
    ))
    registry.register_enrichment(EpcAdapter(
        email=config.epc_api_email,
        api_key=config.epc_api_key,
        base_url=config.epc_base_url,
        **http,
    ))
    registry.register_enrichment(SearchlandPlanningAdapter(
        api_key=config.searchland_api_key,
        base_url=config.searchland_base_url,
        **http,
    ))
    registry.register_enrichment(build_kamma(config, session=session, rate_limiter=limiter))

    return registry


def build_manager(
    config: Config,
    store: Optional[PropertyStore] = None,
    session: Optional[requests.Session] = None,
) -> IngestionManager:
    """Wire the store, registry, analyzer and intelligence service from configuration."""
    return IngestionManager(
        store=store if store is not None else build_store(config.database_url, config.data_dir),
        registry=build_registry(config, session=session),
        analyzer=PotentialHMOAnalyzer(),
        intelligence=DataIntelligenceService(),
        enrichment_batch_size=config.enrichment_batch_size,
        stale_after_days=config.stale_after_days,
        source_workers=config.source_workers,
    )


__all__ = [
    "build_registry",
    "build_manager",
    "build_kamma",
    "CompaniesHouseAdapter",
    "EpcAdapter",
    "KammaDeterminationAdapter",
    "LandRegistryValuationAdapter",
    "PropertyDataHMOAdapter",
    "SearchlandOwnershipAdapter",
    "SearchlandPlanningAdapter",
    "StaticSourceAdapter",
    "StreetDataAdapter",
]
