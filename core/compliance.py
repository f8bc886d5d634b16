"""
Compliance Determination - Licensing Schemes and Article 4 Status

Value objects describing which HMO licensing schemes apply to a property,
plus the complexity rules derived from them. Determinations are immutable:
they are recomputed from a fresh lookup, never patched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional

from core.scoring_tables import MANDATORY_LICENSING_MIN_OCCUPANTS


logger = logging.getLogger(__name__)


class SchemeType(Enum):
    """Kinds of HMO licensing scheme a council can operate."""

    MANDATORY = "mandatory"
    ADDITIONAL = "additional"
    SELECTIVE = "selective"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["SchemeType"]:
        """Parse a provider scheme label, returning None for anything unrecognised."""
        if not value:
            return None
        label = str(value).strip().lower()
        for scheme_type in cls:
            if label == scheme_type.value or label.startswith(scheme_type.value):
                return scheme_type
        return None


class ComplianceComplexity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DeterminationStatus(Enum):
    """Whether a determination came back from the provider or is a placeholder."""

    VERIFIED = "verified"
    UNKNOWN = "unknown"


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.debug("Ignoring unparseable scheme date %r", value)
        return None


def _parse_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Licensing Scheme
# =============================================================================


@dataclass(frozen=True)
class LicensingScheme:
    """A single licensing scheme covering the property's location."""

    scheme_type: SchemeType
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    occupant_threshold: Optional[int] = None
    household_threshold: Optional[int] = None
    link: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.scheme_type, str):
            parsed = SchemeType.from_string(self.scheme_type)
            if parsed is None:
                raise ValueError(f"Unknown licensing scheme type: {self.scheme_type}")
            object.__setattr__(self, "scheme_type", parsed)
        object.__setattr__(self, "valid_from", _parse_date(self.valid_from))
        object.__setattr__(self, "valid_to", _parse_date(self.valid_to))
        if self.valid_from and self.valid_to and self.valid_to < self.valid_from:
            raise ValueError("valid_to must not precede valid_from")

    def is_active(self, on: Optional[date] = None) -> bool:
        """True if the scheme is in force on the given date (default today)."""
        on = on or date.today()
        if self.valid_from and on < self.valid_from:
            return False
        if self.valid_to and on > self.valid_to:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.scheme_type.value,
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_to": self.valid_to.isoformat() if self.valid_to else None,
            "occupant_threshold": self.occupant_threshold,
            "household_threshold": self.household_threshold,
            "link": self.link,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LicensingScheme":
        return cls(
            scheme_type=data.get("type") or data["scheme_type"],
            valid_from=data.get("valid_from"),
            valid_to=data.get("valid_to"),
            occupant_threshold=_parse_int(data.get("occupant_threshold")),
            household_threshold=_parse_int(data.get("household_threshold")),
            link=data.get("link"),
        )


# =============================================================================
# Complexity Rules
# =============================================================================


def derive_complexity(
    schemes: Iterable[LicensingScheme],
    article4: bool,
    bedrooms: Optional[int] = None,
) -> ComplianceComplexity:
    """
    Derive compliance complexity from the schemes in force.

    Five or more bedrooms forces mandatory licensing regardless of what the
    provider returned.

    Args:
        schemes: Licensing schemes covering the property
        article4: Whether an Article 4 direction applies
        bedrooms: Bedroom count, if known

    Returns:
        HIGH, MEDIUM or LOW complexity
    """
    schemes = list(schemes)
    types = {scheme.scheme_type for scheme in schemes}

    has_mandatory = SchemeType.MANDATORY in types
    if bedrooms is not None and bedrooms >= MANDATORY_LICENSING_MIN_OCCUPANTS:
        has_mandatory = True
    has_additional = SchemeType.ADDITIONAL in types
    has_selective = SchemeType.SELECTIVE in types

    if (article4 and len(schemes) >= 2) or (has_mandatory and (has_additional or has_selective)):
        return ComplianceComplexity.HIGH
    if has_mandatory or article4 or has_additional or has_selective:
        return ComplianceComplexity.MEDIUM
    return ComplianceComplexity.LOW


# =============================================================================
# Determination
# =============================================================================


@dataclass(frozen=True)
class ComplianceRequest:
    """Lookup request. A UPRN is preferred; the address is the fallback."""

    postcode: str
    uprn: Optional[int] = None
    address: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.postcode or not self.postcode.strip():
            raise ValueError("postcode is required")
        if self.uprn is not None and not isinstance(self.uprn, int):
            object.__setattr__(self, "uprn", _parse_int(self.uprn))

    def to_payload(self) -> dict[str, Any]:
        """Body for the determinations check endpoint."""
        address: dict[str, Any] = {"postcode": self.postcode}
        if self.uprn is not None:
            address["uprn"] = self.uprn
        elif self.address:
            address["address"] = self.address
        return {"property": {"address": address}}


@dataclass(frozen=True)
class ComplianceDetermination:
    """Licensing schemes and Article 4 status for one property."""

    schemes: tuple[LicensingScheme, ...] = ()
    article4: bool = False
    advice_text: Optional[str] = None
    status: DeterminationStatus = DeterminationStatus.VERIFIED

    def __post_init__(self) -> None:
        object.__setattr__(self, "schemes", tuple(self.schemes))
        if isinstance(self.status, str):
            object.__setattr__(self, "status", DeterminationStatus(self.status))

    @classmethod
    def unknown(cls) -> "ComplianceDetermination":
        """Empty placeholder used when the lookup could not be made."""
        return cls(schemes=(), article4=False, status=DeterminationStatus.UNKNOWN)

    @property
    def is_verified(self) -> bool:
        return self.status is DeterminationStatus.VERIFIED

    def has_scheme(self, scheme_type: SchemeType) -> bool:
        return any(scheme.scheme_type is scheme_type for scheme in self.schemes)

    def requires_mandatory_licence(self, bedrooms: Optional[int] = None) -> bool:
        if bedrooms is not None and bedrooms >= MANDATORY_LICENSING_MIN_OCCUPANTS:
            return True
        return self.has_scheme(SchemeType.MANDATORY)

    def complexity(self, bedrooms: Optional[int] = None) -> ComplianceComplexity:
        return derive_complexity(self.schemes, self.article4, bedrooms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemes": [scheme.to_dict() for scheme in self.schemes],
            "article4": self.article4,
            "advice_text": self.advice_text,
            "status": self.status.value,
        }


# =============================================================================
# Provider Response Parsing
# =============================================================================


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _parse_article4(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, dict):
        return bool(_first_present(value, "applies", "in_area", "active"))
    if isinstance(value, list):
        return len(value) > 0
    return bool(value)


def parse_scheme(raw: dict[str, Any]) -> Optional[LicensingScheme]:
    """
    Parse one scheme entry from a determination response.

    Entries whose type is not mandatory, additional or selective are dropped,
    as are entries with unusable dates.
    """
    scheme_type = SchemeType.from_string(_first_present(raw, "type", "scheme_type", "licence_type"))
    if scheme_type is None:
        logger.debug("Skipping scheme with unrecognised type: %r", raw.get("type"))
        return None
    try:
        return LicensingScheme(
            scheme_type=scheme_type,
            valid_from=_first_present(raw, "date_start", "start_date", "valid_from"),
            valid_to=_first_present(raw, "date_end", "end_date", "valid_to"),
            occupant_threshold=_parse_int(_first_present(raw, "occupants", "occupant_threshold")),
            household_threshold=_parse_int(_first_present(raw, "households", "household_threshold")),
            link=_first_present(raw, "link", "url"),
        )
    except ValueError as e:
        logger.warning("Skipping %s scheme with invalid dates: %s", scheme_type.value, e)
        return None


def parse_determination_response(data: dict[str, Any]) -> ComplianceDetermination:
    """
    Build a determination from a provider response body.

    Accepts the payload at the top level or nested under "data" /
    "determination". A response whose status code is present and not 200 is
    treated as unknown.
    """
    if not isinstance(data, dict):
        return ComplianceDetermination.unknown()

    status = data.get("status")
    if isinstance(status, dict) and _parse_int(status.get("code")) not in (None, 200):
        logger.warning("Compliance provider returned status %s", status.get("code"))
        return ComplianceDetermination.unknown()

    body = data
    for key in ("determination", "data"):
        if isinstance(body.get(key), dict):
            body = body[key]

    raw_schemes = _first_present(body, "schemes", "licensing_schemes") or []
    schemes = []
    for raw in raw_schemes:
        if isinstance(raw, dict):
            scheme = parse_scheme(raw)
            if scheme is not None:
                schemes.append(scheme)

    advice = _first_present(body, "advice_text", "adviceText", "advice")
    return ComplianceDetermination(
        schemes=tuple(schemes),
        article4=_parse_article4(_first_present(body, "article4", "article_4", "article4_direction")),
        advice_text=str(advice) if advice is not None else None,
        status=DeterminationStatus.VERIFIED,
    )
