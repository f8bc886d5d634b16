"""
Scoring Tables - Heuristic Constants for HMO Analysis

Every threshold, breakpoint and lookup table used by the PotentialHMOAnalyzer
lives here. Tables are immutable so tests can assert against named values.

Point tables are ordered (threshold, points) pairs: the first threshold the
value meets or exceeds wins, otherwise the fallback applies.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Final, Mapping


@dataclass(frozen=True)
class EpcProfile:
    """How an EPC rating feeds the analyzer."""

    upgrade_viable: bool
    improvement_potential: str  # "none" | "low" | "medium" | "high"
    points: int


# =============================================================================
# Space Standards (UK HMO regulations)
# =============================================================================

SINGLE_ADULT_MIN_SQM: Final[float] = 6.51
TENANTS_PER_BATHROOM: Final[int] = 5


# =============================================================================
# Floor Area Estimation
# =============================================================================

GIA_SQM_PER_BEDROOM: Final[int] = 12
GIA_SQM_PER_BATHROOM: Final[int] = 5
GIA_COMMON_AREA_SQM: Final[int] = 36  # kitchen + living + hallway

FLOOR_AREA_BAND_LOWER_SQM: Final[int] = 90
FLOOR_AREA_BAND_UPPER_SQM: Final[int] = 120
MIN_VIABLE_FLOOR_AREA_SQM: Final[int] = 70

LETTABLE_ROOM_BOOST_MIN_SQM: Final[int] = 120
SQM_PER_LETTABLE_ROOM: Final[int] = 15
MAX_LETTABLE_ROOMS: Final[int] = 8


# =============================================================================
# Occupancy & Licensing
# =============================================================================

MIN_HMO_OCCUPANTS: Final[int] = 3
MANDATORY_LICENSING_MIN_OCCUPANTS: Final[int] = 5


# =============================================================================
# Regional Rent per Room (GBP per month)
# =============================================================================

REGIONAL_RENT_PER_ROOM: Final[Mapping[str, int]] = MappingProxyType({
    "London": 850,
    "Greater London": 850,
    "Manchester": 550,
    "Birmingham": 500,
    "Leeds": 480,
    "Liverpool": 450,
    "Bristol": 600,
    "Sheffield": 450,
    "Newcastle": 420,
    "Nottingham": 480,
    "Leicester": 460,
    "Coventry": 480,
    "Brighton": 650,
    "Southampton": 520,
    "Portsmouth": 500,
    "Oxford": 700,
    "Cambridge": 720,
    "Reading": 620,
    "Cardiff": 480,
    "Edinburgh": 580,
    "Glasgow": 500,
})

DEFAULT_RENT_PER_ROOM: Final[int] = 500


# =============================================================================
# EPC
# =============================================================================

EPC_RATINGS: Final[tuple[str, ...]] = ("A", "B", "C", "D", "E", "F", "G")

EPC_PROFILES: Final[Mapping[str, EpcProfile]] = MappingProxyType({
    "A": EpcProfile(upgrade_viable=False, improvement_potential="none", points=15),
    "B": EpcProfile(upgrade_viable=False, improvement_potential="none", points=15),
    "C": EpcProfile(upgrade_viable=False, improvement_potential="low", points=14),
    "D": EpcProfile(upgrade_viable=True, improvement_potential="low", points=12),
    "E": EpcProfile(upgrade_viable=True, improvement_potential="medium", points=10),
    "F": EpcProfile(upgrade_viable=True, improvement_potential="high", points=6),
    "G": EpcProfile(upgrade_viable=True, improvement_potential="high", points=3),
})

UNKNOWN_EPC_PROFILE: Final[EpcProfile] = EpcProfile(
    upgrade_viable=True, improvement_potential="medium", points=8
)

# Ratings below the minimum energy efficiency standard for letting
SUBSTANDARD_EPC_RATINGS: Final[frozenset[str]] = frozenset({"F", "G"})
GOOD_EPC_RATINGS: Final[frozenset[str]] = frozenset({"A", "B", "C", "D"})

# An EPC is valid for ten years from lodgement
EPC_VALIDITY_YEARS: Final[int] = 10


# =============================================================================
# Deal Score Breakdown
# =============================================================================

FLOOR_AREA_POINTS: Final[tuple[tuple[float, int], ...]] = ((120, 15), (90, 12), (70, 8))
FLOOR_AREA_FALLBACK_POINTS: Final[int] = 4

LICENSING_UPSIDE_MANDATORY: Final[int] = 10
LICENSING_UPSIDE_STANDARD: Final[int] = 5

LETTABLE_ROOM_POINTS: Final[tuple[tuple[float, int], ...]] = ((6, 15), (5, 12), (4, 9), (3, 6))
LETTABLE_ROOM_FALLBACK_POINTS: Final[int] = 3

COMPLIANCE_BASE_POINTS: Final[int] = 10
CONSERVATION_AREA_PENALTY: Final[int] = 3
ARTICLE_4_PENALTY: Final[int] = 7
EPC_POTENTIAL_PENALTIES: Final[Mapping[str, int]] = MappingProxyType({"high": 2, "medium": 1})

YIELD_POINTS: Final[tuple[tuple[float, int], ...]] = ((10, 15), (8, 13), (6, 10), (5, 7), (4, 4))
YIELD_FALLBACK_POINTS: Final[int] = 2

CONTACT_TITLE_OWNER_POINTS: Final[int] = 10
CONTACT_LICENCE_HOLDER_POINTS: Final[int] = 5
CONTACT_CHANNEL_POINTS: Final[int] = 5

MIN_DEAL_SCORE: Final[int] = 0
MAX_DEAL_SCORE: Final[int] = 100


# =============================================================================
# Bands & Classification
# =============================================================================

YIELD_BAND_HIGH_PERCENT: Final[float] = 8.0
YIELD_BAND_MEDIUM_PERCENT: Final[float] = 5.0

READY_TO_GO_MIN_SCORE: Final[int] = 70
VALUE_ADD_MIN_SCORE: Final[int] = 40


def points_for(value: float, table: tuple[tuple[float, int], ...], fallback: int) -> int:
    """Look up points for a value in a descending (threshold, points) table."""
    for threshold, points in table:
        if value >= threshold:
            return points
    return fallback
