"""
Configuration management.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Config:
    """
    Application configuration.

    Loads from environment variables with sensible defaults. Provider
    credentials left unset disable the matching adapter.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    # HTTP
    request_timeout: float = field(default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "10")))
    user_agent: str = field(
        default_factory=lambda: os.getenv("USER_AGENT", "HMODealEngine/1.0 (+property research)")
    )

    # Pipeline
    enrichment_batch_size: int = field(
        default_factory=lambda: int(os.getenv("ENRICHMENT_BATCH_SIZE", "100"))
    )
    stale_after_days: int = field(default_factory=lambda: int(os.getenv("STALE_AFTER_DAYS", "7")))
    source_workers: int = field(default_factory=lambda: int(os.getenv("SOURCE_WORKERS", "1")))

    # Data
    data_dir: str = field(default_factory=lambda: os.getenv("DATA_DIR", "./data"))
    database_url: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_URL") or None)
    static_source_path: Optional[str] = field(
        default_factory=lambda: os.getenv("STATIC_SOURCE_PATH") or None
    )

    # PropertyData (national HMO register)
    propertydata_api_key: Optional[str] = field(default_factory=lambda: os.getenv("PROPERTYDATA_API_KEY"))
    propertydata_base_url: str = field(
        default_factory=lambda: os.getenv("PROPERTYDATA_BASE_URL", "https://api.propertydata.co.uk")
    )
    propertydata_postcodes: list[str] = field(
        default_factory=lambda: _env_list("PROPERTYDATA_POSTCODES", "N7 6PA,E2 9PL,SE5 8TR,NW5 2HB,E8 1EJ")
    )
    propertydata_min_interval: float = field(
        default_factory=lambda: float(os.getenv("PROPERTYDATA_MIN_INTERVAL", "2.0"))
    )

    # StreetData
    streetdata_api_key: Optional[str] = field(default_factory=lambda: os.getenv("STREETDATA_API_KEY"))
    streetdata_base_url: str = field(
        default_factory=lambda: os.getenv("STREETDATA_BASE_URL", "https://api.data.street.co.uk/street-data-api/v2")
    )
    streetdata_min_interval: float = field(
        default_factory=lambda: float(os.getenv("STREETDATA_MIN_INTERVAL", "0.5"))
    )

    # EPC Open Data Communities
    epc_api_email: Optional[str] = field(default_factory=lambda: os.getenv("EPC_API_EMAIL"))
    epc_api_key: Optional[str] = field(default_factory=lambda: os.getenv("EPC_API_KEY"))
    epc_base_url: str = field(
        default_factory=lambda: os.getenv("EPC_BASE_URL", "https://epc.opendatacommunities.org/api/v1")
    )
    epc_min_interval: float = field(default_factory=lambda: float(os.getenv("EPC_MIN_INTERVAL", "0.2")))

    # Searchland (title ownership and planning)
    searchland_api_key: Optional[str] = field(default_factory=lambda: os.getenv("SEARCHLAND_API_KEY"))
    searchland_base_url: str = field(
        default_factory=lambda: os.getenv("SEARCHLAND_BASE_URL", "https://api.searchland.co.uk/v1")
    )
    searchland_min_interval: float = field(
        default_factory=lambda: float(os.getenv("SEARCHLAND_MIN_INTERVAL", "1.0"))
    )

    # Companies House
    companies_house_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("COMPANIES_HOUSE_API_KEY")
    )
    companies_house_base_url: str = field(
        default_factory=lambda: os.getenv(
            "COMPANIES_HOUSE_BASE_URL", "https://api.company-information.service.gov.uk"
        )
    )
    companies_house_min_interval: float = field(
        default_factory=lambda: float(os.getenv("COMPANIES_HOUSE_MIN_INTERVAL", "0.5"))
    )

    # Kamma (licensing determinations)
    kamma_api_key: Optional[str] = field(default_factory=lambda: os.getenv("KAMMA_API_KEY"))
    kamma_service_key: Optional[str] = field(default_factory=lambda: os.getenv("KAMMA_SERVICE_KEY"))
    kamma_group_id: Optional[str] = field(default_factory=lambda: os.getenv("KAMMA_GROUP_ID"))
    kamma_base_url: str = field(
        default_factory=lambda: os.getenv("KAMMA_BASE_URL", "https://api.kamma.co.uk")
    )
    kamma_min_interval: float = field(default_factory=lambda: float(os.getenv("KAMMA_MIN_INTERVAL", "0.5")))

    # HM Land Registry price paid data
    land_registry_enabled: bool = field(
        default_factory=lambda: os.getenv("LAND_REGISTRY_ENABLED", "true").lower() == "true"
    )
    land_registry_base_url: str = field(
        default_factory=lambda: os.getenv("LAND_REGISTRY_BASE_URL", "https://landregistry.data.gov.uk")
    )
    land_registry_min_interval: float = field(
        default_factory=lambda: float(os.getenv("LAND_REGISTRY_MIN_INTERVAL", "0.5"))
    )

    SECRET_FIELDS = (
        "propertydata_api_key",
        "streetdata_api_key",
        "epc_api_key",
        "searchland_api_key",
        "companies_house_api_key",
        "kamma_api_key",
        "kamma_service_key",
        "database_url",
    )

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    def provider_intervals(self) -> dict[str, float]:
        """Minimum seconds between calls, keyed by provider."""
        return {
            "propertydata": self.propertydata_min_interval,
            "streetdata": self.streetdata_min_interval,
            "epc": self.epc_min_interval,
            "searchland": self.searchland_min_interval,
            "companies_house": self.companies_house_min_interval,
            "kamma": self.kamma_min_interval,
            "land_registry": self.land_registry_min_interval,
        }

    def to_dict(self) -> dict:
        """Convert config to dictionary with secrets redacted."""
        data = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if name in self.SECRET_FIELDS and value:
                value = "***"
            data[name] = value
        return data
