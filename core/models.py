"""
Data models for the HMO deal engine.

PropertyListing is the canonical draft produced by source adapters and grown
by the enrichment chain. Enrichment data lives in typed category sections
(owner, epc, licence, planning, details) whose fields are all optional and
are merged field by field: a later non-null value wins, null never
overwrites. Enrichment passes a baseline of stored values it may not replace.

EnrichedProperty is the persisted entity: the listing plus lifecycle
timestamps and the latest HMOAnalysis.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Final, Optional

from core.compliance import ComplianceComplexity, DeterminationStatus, LicensingScheme
from core.ingestion.schema import dedup_key, normalise_uk_postcode
from core.scoring_tables import EPC_RATINGS, MAX_DEAL_SCORE, MIN_DEAL_SCORE


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class ListingType(Enum):
    RENT = "rent"
    PURCHASE = "purchase"


class LicenceStatus(Enum):
    """HMO licence status as reported by a council register."""

    ACTIVE = "active"
    EXPIRED = "expired"
    PENDING = "pending"
    NONE = "none"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "LicenceStatus":
        """Map free-text register statuses onto the four canonical values."""
        if not value:
            return cls.NONE
        status = str(value).strip().lower()
        if status in ("active", "valid", "current", "granted", "licensed"):
            return cls.ACTIVE
        if status in ("expired", "lapsed"):
            return cls.EXPIRED
        if status in ("pending", "applied", "under review", "in progress"):
            return cls.PENDING
        return cls.NONE


class OwnerType(Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"
    TRUST = "trust"
    GOVERNMENT = "government"
    UNKNOWN = "unknown"


class HmoClassification(Enum):
    READY_TO_GO = "ready_to_go"
    VALUE_ADD = "value_add"
    NOT_SUITABLE = "not_suitable"


class FloorAreaBand(Enum):
    UNDER_90 = "under_90"
    BAND_90_120 = "90_120"
    OVER_120 = "120_plus"


class YieldBand(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Reliability(Enum):
    """How far a provider's data can be trusted."""

    AUTHORITATIVE = "authoritative"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# Coercion Helpers
# =============================================================================


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _coerce_enum(enum_cls: type[Enum], value: Any) -> Any:
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(value)


def _normalise_rating(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    rating = str(value).strip().upper()
    if rating not in EPC_RATINGS:
        raise ValueError(f"Invalid EPC rating: {value}")
    return rating


def serialise(value: Any) -> Any:
    """Convert dataclasses, enums and dates into JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return {f.name: serialise(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [serialise(item) for item in value]
    if isinstance(value, dict):
        return {key: serialise(item) for key, item in value.items()}
    return value


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


# =============================================================================
# Enrichment Categories
# =============================================================================


@dataclass
class Director:
    """An active company officer."""

    name: str
    role: Optional[str] = None
    appointed_on: Optional[date] = None
    nationality: Optional[str] = None
    occupation: Optional[str] = None

    def __post_init__(self) -> None:
        self.appointed_on = _coerce_date(self.appointed_on)


@dataclass
class PlanningConstraint:
    constraint_type: str
    description: Optional[str] = None
    reference: Optional[str] = None


@dataclass
class OwnerDetails:
    """Title ownership and company identity."""

    title_number: Optional[str] = None
    tenure: Optional[str] = None
    owner_name: Optional[str] = None
    owner_type: Optional[OwnerType] = None
    owner_address: Optional[str] = None
    owner_contact_email: Optional[str] = None
    owner_contact_phone: Optional[str] = None
    company_name: Optional[str] = None
    company_number: Optional[str] = None
    company_status: Optional[str] = None
    company_incorporation_date: Optional[date] = None
    directors: Optional[list[Director]] = None

    def __post_init__(self) -> None:
        self.owner_type = _coerce_enum(OwnerType, self.owner_type)
        self.company_incorporation_date = _coerce_date(self.company_incorporation_date)
        if self.directors is not None:
            self.directors = [
                d if isinstance(d, Director) else Director(**_known_fields(Director, d))
                for d in self.directors
            ]

    @property
    def has_title_owner(self) -> bool:
        return bool(self.owner_name or self.company_name)

    @property
    def has_contact_channel(self) -> bool:
        return bool(self.owner_contact_email or self.owner_contact_phone or self.owner_address)


@dataclass
class EpcDetails:
    """Energy Performance Certificate data."""

    rating: Optional[str] = None
    rating_numeric: Optional[int] = None
    potential_rating: Optional[str] = None
    certificate_url: Optional[str] = None
    lodgement_date: Optional[date] = None
    expiry_date: Optional[date] = None
    improvement_feasible: Optional[bool] = None

    def __post_init__(self) -> None:
        self.rating = _normalise_rating(self.rating)
        self.potential_rating = _normalise_rating(self.potential_rating)
        self.lodgement_date = _coerce_date(self.lodgement_date)
        self.expiry_date = _coerce_date(self.expiry_date)


@dataclass
class LicenceDetails:
    """HMO licence as held on a council register."""

    licence_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[LicenceStatus] = None
    max_occupants: Optional[int] = None
    max_households: Optional[int] = None
    holder_name: Optional[str] = None
    holder_email: Optional[str] = None
    holder_phone: Optional[str] = None
    holder_address: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.status, str):
            self.status = LicenceStatus.from_string(self.status)
        self.start_date = _coerce_date(self.start_date)
        self.end_date = _coerce_date(self.end_date)

    @property
    def is_licensed_hmo(self) -> bool:
        return self.status is LicenceStatus.ACTIVE or bool(self.holder_name)


@dataclass
class PlanningDetails:
    """Planning restrictions and compliance lookup results."""

    article_4_area: Optional[bool] = None
    conservation_area: Optional[bool] = None
    listed_building_grade: Optional[str] = None
    constraints: Optional[list[PlanningConstraint]] = None
    licensing_schemes: Optional[list[LicensingScheme]] = None
    compliance_advice: Optional[str] = None
    compliance_status: Optional[DeterminationStatus] = None
    compliance_checked_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.compliance_status = _coerce_enum(DeterminationStatus, self.compliance_status)
        self.compliance_checked_at = _coerce_datetime(self.compliance_checked_at)
        if self.constraints is not None:
            self.constraints = [
                c if isinstance(c, PlanningConstraint) else PlanningConstraint(**_known_fields(PlanningConstraint, c))
                for c in self.constraints
            ]
        if self.licensing_schemes is not None:
            self.licensing_schemes = [
                s if isinstance(s, LicensingScheme) else LicensingScheme.from_dict(s)
                for s in self.licensing_schemes
            ]


@dataclass
class PropertyDetails:
    """Basic physical characteristics from property data providers."""

    year_built: Optional[int] = None
    property_age: Optional[str] = None
    floor_area_sqm: Optional[float] = None
    council_tax_band: Optional[str] = None


SECTION_TYPES: Final[dict[str, type]] = {
    "details": PropertyDetails,
    "owner": OwnerDetails,
    "epc": EpcDetails,
    "licence": LicenceDetails,
    "planning": PlanningDetails,
}


def merge_non_null(target: Any, source: Any, keep: Any = None) -> list[str]:
    """
    Copy every non-null field of ``source`` onto ``target``.

    Category sections are merged recursively. Fields missing from the target
    type are ignored, so a sparse patch can be applied to a full listing.

    Args:
        target: Object to update in place
        source: Sparse object whose non-null fields are applied
        keep: Optional baseline; fields it already holds are never replaced

    Returns:
        Dotted names of the fields whose value changed
    """
    changed: list[str] = []
    for f in fields(source):
        if not hasattr(target, f.name):
            continue
        value = getattr(source, f.name)
        if value is None:
            continue
        kept = getattr(keep, f.name, None) if keep is not None else None
        current = getattr(target, f.name)
        if f.name in SECTION_TYPES and current is not None:
            changed.extend(f"{f.name}.{name}" for name in merge_non_null(current, value, kept))
        elif kept is not None:
            continue
        elif current != value:
            setattr(target, f.name, copy.deepcopy(value))
            changed.append(f.name)
    return changed


def populated_fields(obj: Any) -> list[str]:
    """Dotted names of every non-null field, descending into category sections."""
    names: list[str] = []
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None:
            continue
        if f.name in SECTION_TYPES:
            names.extend(f"{f.name}.{name}" for name in populated_fields(value))
        else:
            names.append(f.name)
    return names


# =============================================================================
# Property Listing
# =============================================================================


@dataclass
class PropertyListing:
    """A property as known to the pipeline, keyed by (postcode, external_id)."""

    external_id: str
    postcode: str
    address: str
    bedrooms: int = 0
    bathrooms: int = 0
    listing_type: ListingType = ListingType.PURCHASE
    city: Optional[str] = None
    title: Optional[str] = None
    uprn: Optional[str] = None
    property_type: Optional[str] = None
    gross_internal_area_sqm: Optional[float] = None
    price_pcm: Optional[int] = None
    purchase_price: Optional[int] = None
    estimated_value: Optional[int] = None
    source_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: Optional[str] = None

    details: PropertyDetails = field(default_factory=PropertyDetails)
    owner: OwnerDetails = field(default_factory=OwnerDetails)
    epc: EpcDetails = field(default_factory=EpcDetails)
    licence: LicenceDetails = field(default_factory=LicenceDetails)
    planning: PlanningDetails = field(default_factory=PlanningDetails)

    def __post_init__(self) -> None:
        """Validate identity fields and coerce nested sections."""
        if not self.external_id or not str(self.external_id).strip():
            raise ValueError("external_id is required")
        if not self.postcode or not self.postcode.strip():
            raise ValueError("postcode is required")
        if self.bedrooms < 0 or self.bathrooms < 0:
            raise ValueError("bedrooms and bathrooms must be non-negative")

        self.external_id = str(self.external_id).strip()
        self.postcode = normalise_uk_postcode(self.postcode)
        self.listing_type = _coerce_enum(ListingType, self.listing_type)
        if self.uprn is not None:
            self.uprn = str(self.uprn)

        for name, section_cls in SECTION_TYPES.items():
            value = getattr(self, name)
            if value is None:
                setattr(self, name, section_cls())
            elif isinstance(value, dict):
                setattr(self, name, section_cls(**_known_fields(section_cls, value)))

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.postcode, self.external_id)

    @property
    def dedup_key(self) -> str:
        return dedup_key(self.postcode, self.external_id)

    def copy(self) -> "PropertyListing":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: serialise(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PropertyListing":
        return cls(**_known_fields(cls, data))


# =============================================================================
# Analysis
# =============================================================================


@dataclass(frozen=True)
class DealScoreBreakdown:
    """Seven bounded score contributions."""

    floor_area: int
    epc: int
    licensing: int
    lettable_rooms: int
    compliance: int
    yield_score: int
    contact: int

    @property
    def total(self) -> int:
        subtotal = (
            self.floor_area + self.epc + self.licensing + self.lettable_rooms
            + self.compliance + self.yield_score + self.contact
        )
        return max(MIN_DEAL_SCORE, min(MAX_DEAL_SCORE, subtotal))

    def to_dict(self) -> dict[str, int]:
        return {
            "floor_area": self.floor_area,
            "epc": self.epc,
            "licensing": self.licensing,
            "lettable_rooms": self.lettable_rooms,
            "compliance": self.compliance,
            "yield": self.yield_score,
            "contact": self.contact,
        }

    @classmethod
    def from_dict(cls, data: dict[str, int]) -> "DealScoreBreakdown":
        return cls(
            floor_area=data["floor_area"],
            epc=data["epc"],
            licensing=data["licensing"],
            lettable_rooms=data["lettable_rooms"],
            compliance=data["compliance"],
            yield_score=data["yield"],
            contact=data["contact"],
        )


@dataclass(frozen=True)
class HMOAnalysis:
    """Result of running the PotentialHMOAnalyzer over one property."""

    is_potential_hmo: bool
    classification: HmoClassification
    deal_score: int
    breakdown: DealScoreBreakdown
    exclusion_reasons: tuple[str, ...]

    # Space
    estimated_gia_sqm: float
    gia_is_estimated: bool
    floor_area_band: FloorAreaBand
    lettable_rooms: int
    potential_occupants: int
    average_room_size_sqm: float
    meets_space_standards: bool
    bathrooms_required: int
    meets_bathroom_ratio: bool

    # Compliance
    requires_mandatory_licensing: bool
    compliance_complexity: ComplianceComplexity
    epc_upgrade_viable: bool
    epc_improvement_potential: str

    # Financials
    rent_per_room: int
    estimated_gross_monthly_rent: int
    estimated_annual_income: int
    estimated_yield_percentage: float
    yield_band: YieldBand

    has_value_add_potential: bool
    hmo_suitability_score: int

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: serialise(getattr(self, f.name)) for f in fields(self)}
        data["breakdown"] = self.breakdown.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HMOAnalysis":
        values = _known_fields(cls, data)
        values["classification"] = HmoClassification(values["classification"])
        values["breakdown"] = DealScoreBreakdown.from_dict(values["breakdown"])
        values["exclusion_reasons"] = tuple(values.get("exclusion_reasons") or ())
        values["floor_area_band"] = FloorAreaBand(values["floor_area_band"])
        values["compliance_complexity"] = ComplianceComplexity(values["compliance_complexity"])
        values["yield_band"] = YieldBand(values["yield_band"])
        return cls(**values)


# =============================================================================
# Persisted Entity
# =============================================================================


TRACKING_FIELDS: Final[frozenset[str]] = frozenset({"is_stale", "stale_marked_at", "last_seen_at"})


@dataclass
class DataProvenance:
    """Which provider supplied which fields of a record, and when."""

    source: str
    reliability: Reliability
    retrieved_at: datetime
    field_names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self.reliability = _coerce_enum(Reliability, self.reliability)
        self.retrieved_at = _coerce_datetime(self.retrieved_at)
        self.field_names = tuple(self.field_names)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "reliability": self.reliability.value,
            "retrieved_at": serialise(self.retrieved_at),
            "fields": list(self.field_names),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DataProvenance":
        return cls(
            source=data["source"],
            reliability=data["reliability"],
            retrieved_at=data["retrieved_at"],
            field_names=tuple(data.get("fields") or ()),
        )


@dataclass
class EnrichedProperty:
    """A persisted property record with lifecycle timestamps."""

    listing: PropertyListing
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source_name: Optional[str] = None
    first_ingested_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_enriched_at: Optional[datetime] = None
    is_stale: bool = False
    stale_marked_at: Optional[datetime] = None
    analysis: Optional[HMOAnalysis] = None
    provenance: list[DataProvenance] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.listing, dict):
            self.listing = PropertyListing.from_dict(self.listing)
        if isinstance(self.analysis, dict):
            self.analysis = HMOAnalysis.from_dict(self.analysis)
        self.provenance = [
            p if isinstance(p, DataProvenance) else DataProvenance.from_dict(p)
            for p in self.provenance or []
        ]
        for name in ("first_ingested_at", "last_seen_at", "last_synced_at",
                     "last_enriched_at", "stale_marked_at"):
            setattr(self, name, _coerce_datetime(getattr(self, name)))

    @classmethod
    def create(cls, listing: PropertyListing, source_name: str, seen_at: datetime) -> "EnrichedProperty":
        """New record for a listing observed for the first time."""
        return cls(
            listing=listing.copy(),
            source_name=source_name,
            first_ingested_at=seen_at,
            last_seen_at=seen_at,
            last_synced_at=seen_at,
        )

    def observe(self, listing: PropertyListing, source_name: str, seen_at: datetime) -> list[str]:
        """
        Fold a re-observed listing into this record.

        Non-null fields win, the record is un-staled and its last-seen time
        advances.

        Returns:
            Names of the listing fields that changed
        """
        changed = merge_non_null(self.listing, listing)
        self.source_name = source_name
        self.last_seen_at = seen_at
        self.last_synced_at = seen_at
        self.is_stale = False
        self.stale_marked_at = None
        return changed

    def record_provenance(
        self,
        source: str,
        reliability: Reliability,
        changed: list[str],
        retrieved_at: datetime,
    ) -> None:
        """
        Note that ``source`` supplied the ``changed`` fields.

        One entry is kept per source; repeat contributions extend its field
        list and advance its retrieval time.
        """
        for index, entry in enumerate(self.provenance):
            if entry.source == source:
                merged = tuple(sorted(set(entry.field_names) | set(changed)))
                self.provenance[index] = DataProvenance(source, reliability, retrieved_at, merged)
                return
        self.provenance.append(DataProvenance(source, reliability, retrieved_at, tuple(sorted(changed))))

    def apply_tracking(self, patch: dict[str, Any]) -> None:
        """Apply a lifecycle patch (staleness fields only)."""
        unknown = set(patch) - TRACKING_FIELDS
        if unknown:
            raise ValueError(f"Unsupported tracking fields: {sorted(unknown)}")
        for name, value in patch.items():
            if name == "is_stale":
                self.is_stale = bool(value)
            else:
                setattr(self, name, _coerce_datetime(value))

    @property
    def postcode(self) -> str:
        return self.listing.postcode

    @property
    def external_id(self) -> str:
        return self.listing.external_id

    @property
    def natural_key(self) -> tuple[str, str]:
        return self.listing.natural_key

    @property
    def is_potential_hmo(self) -> Optional[bool]:
        return self.analysis.is_potential_hmo if self.analysis else None

    @property
    def deal_score(self) -> Optional[int]:
        return self.analysis.deal_score if self.analysis else None

    @property
    def classification(self) -> Optional[HmoClassification]:
        return self.analysis.classification if self.analysis else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_name": self.source_name,
            "first_ingested_at": serialise(self.first_ingested_at),
            "last_seen_at": serialise(self.last_seen_at),
            "last_synced_at": serialise(self.last_synced_at),
            "last_enriched_at": serialise(self.last_enriched_at),
            "is_stale": self.is_stale,
            "stale_marked_at": serialise(self.stale_marked_at),
            "listing": self.listing.to_dict(),
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "provenance": [p.to_dict() for p in self.provenance],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EnrichedProperty":
        return cls(**_known_fields(cls, data))
