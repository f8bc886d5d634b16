"""
Potential HMO Analyzer - Feasibility Scoring and Classification

Pure, deterministic analysis of a single property: exclusions, space and
occupancy estimates, a seven-part deal score and the resulting
classification. No I/O; every input comes from the PropertyListing.

Scoring methodology (max 100):
- Floor area efficiency: 0-15
- EPC rating: 0-15
- Licensing upside: 0-10
- Lettable rooms: 0-15
- Compliance: 0-10
- Yield: 0-15
- Contact data: 0-20
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

from core import scoring_tables as tables
from core.compliance import derive_complexity
from core.models import (
    DealScoreBreakdown,
    EnrichedProperty,
    FloorAreaBand,
    HMOAnalysis,
    HmoClassification,
    PropertyListing,
    YieldBand,
)
from core.scoring_tables import EpcProfile


logger = logging.getLogger(__name__)


class PotentialHMOAnalyzer:
    """
    Scores properties for HMO conversion potential.

    Classification:
    - ready_to_go: score >= 70, EPC A-D, outside conservation areas and the
      title owner is known
    - value_add: score >= 40
    - not_suitable: excluded, or scoring below 40
    """

    def __init__(self, rent_table: Optional[dict[str, int]] = None, default_rent: Optional[int] = None):
        self._rent_table = dict(rent_table) if rent_table is not None else dict(tables.REGIONAL_RENT_PER_ROOM)
        self._default_rent = default_rent if default_rent is not None else tables.DEFAULT_RENT_PER_ROOM

    def analyze(self, listing: PropertyListing) -> HMOAnalysis:
        """
        Analyze a single property.

        Args:
            listing: The property to analyze

        Returns:
            HMOAnalysis with score breakdown and classification
        """
        epc_profile = self.epc_profile(listing.epc.rating)

        gia_is_estimated = not listing.gross_internal_area_sqm
        gross_area = self.estimate_gross_internal_area(listing)
        floor_area_band = self.floor_area_band(gross_area)
        lettable_rooms = self.estimate_lettable_rooms(listing.bedrooms, gross_area)
        potential_occupants = lettable_rooms

        exclusion_reasons = self._exclusion_reasons(listing, gross_area, potential_occupants)
        is_potential_hmo = not exclusion_reasons

        average_room_size = round(gross_area / lettable_rooms, 2) if lettable_rooms else 0.0
        meets_space_standards = bool(lettable_rooms) and average_room_size >= tables.SINGLE_ADULT_MIN_SQM
        bathrooms_required = math.ceil(potential_occupants / tables.TENANTS_PER_BATHROOM)
        meets_bathroom_ratio = listing.bathrooms >= bathrooms_required

        requires_mandatory = potential_occupants >= tables.MANDATORY_LICENSING_MIN_OCCUPANTS
        # Same occupant count as the mandatory licensing flag above
        complexity = derive_complexity(
            listing.planning.licensing_schemes or (),
            bool(listing.planning.article_4_area),
            potential_occupants,
        )

        rent_per_room = self.rent_per_room(listing.city)
        monthly_rent = rent_per_room * lettable_rooms
        annual_income = monthly_rent * 12
        yield_percent = self.gross_yield(annual_income, listing)
        yield_band = self.yield_band(yield_percent)

        breakdown = DealScoreBreakdown(
            floor_area=tables.points_for(gross_area, tables.FLOOR_AREA_POINTS, tables.FLOOR_AREA_FALLBACK_POINTS),
            epc=epc_profile.points,
            licensing=tables.LICENSING_UPSIDE_MANDATORY if requires_mandatory else tables.LICENSING_UPSIDE_STANDARD,
            lettable_rooms=tables.points_for(
                lettable_rooms, tables.LETTABLE_ROOM_POINTS, tables.LETTABLE_ROOM_FALLBACK_POINTS
            ),
            compliance=self._compliance_points(listing, epc_profile),
            yield_score=tables.points_for(yield_percent, tables.YIELD_POINTS, tables.YIELD_FALLBACK_POINTS),
            contact=self._contact_points(listing),
        )
        deal_score = breakdown.total

        classification = self.classify(is_potential_hmo, deal_score, listing)
        has_value_add = (
            classification is HmoClassification.VALUE_ADD
            or epc_profile.improvement_potential == "high"
            or (floor_area_band is FloorAreaBand.OVER_120 and lettable_rooms < 6)
        )

        return HMOAnalysis(
            is_potential_hmo=is_potential_hmo,
            classification=classification,
            deal_score=deal_score,
            breakdown=breakdown,
            exclusion_reasons=tuple(exclusion_reasons),
            estimated_gia_sqm=round(gross_area, 2),
            gia_is_estimated=gia_is_estimated,
            floor_area_band=floor_area_band,
            lettable_rooms=lettable_rooms,
            potential_occupants=potential_occupants,
            average_room_size_sqm=average_room_size,
            meets_space_standards=meets_space_standards,
            bathrooms_required=bathrooms_required,
            meets_bathroom_ratio=meets_bathroom_ratio,
            requires_mandatory_licensing=requires_mandatory,
            compliance_complexity=complexity,
            epc_upgrade_viable=epc_profile.upgrade_viable,
            epc_improvement_potential=epc_profile.improvement_potential,
            rent_per_room=rent_per_room,
            estimated_gross_monthly_rent=monthly_rent,
            estimated_annual_income=annual_income,
            estimated_yield_percentage=round(yield_percent, 2),
            yield_band=yield_band,
            has_value_add_potential=has_value_add,
            hmo_suitability_score=min(tables.MAX_DEAL_SCORE, deal_score) if is_potential_hmo else 0,
        )

    def analyze_batch(self, records: Iterable[EnrichedProperty]) -> dict[str, HMOAnalysis]:
        """Analyze many records, keyed by record id."""
        return {record.id: self.analyze(record.listing) for record in records}

    def filter_potential_hmos(
        self,
        records: Iterable[EnrichedProperty],
        min_deal_score: Optional[int] = None,
        classification: Optional[HmoClassification] = None,
        yield_band: Optional[YieldBand] = None,
        floor_area_band: Optional[FloorAreaBand] = None,
        epc_band: Optional[str] = None,
    ) -> list[EnrichedProperty]:
        """
        Keep only potential HMOs matching every given criterion.

        Args:
            records: Properties to filter
            min_deal_score: Minimum deal score
            classification: Required classification
            yield_band: Required yield band
            floor_area_band: Required floor area band
            epc_band: "good" (A-D) or "needs_upgrade" (E-G or unknown)

        Returns:
            Matching records sorted by deal score (descending)
        """
        if epc_band not in (None, "good", "needs_upgrade"):
            raise ValueError(f"Unknown epc_band: {epc_band}")

        matches: list[tuple[int, EnrichedProperty]] = []
        for record in records:
            analysis = self.analyze(record.listing)
            if not analysis.is_potential_hmo:
                continue
            if min_deal_score is not None and analysis.deal_score < min_deal_score:
                continue
            if classification is not None and analysis.classification is not classification:
                continue
            if yield_band is not None and analysis.yield_band is not yield_band:
                continue
            if floor_area_band is not None and analysis.floor_area_band is not floor_area_band:
                continue
            if epc_band is not None:
                good_epc = record.listing.epc.rating in tables.GOOD_EPC_RATINGS
                if (epc_band == "good") != good_epc:
                    continue
            matches.append((analysis.deal_score, record))

        matches.sort(key=lambda item: item[0], reverse=True)
        return [record for _, record in matches]

    # =========================================================================
    # Derived Quantities
    # =========================================================================

    @staticmethod
    def epc_profile(rating: Optional[str]) -> EpcProfile:
        if rating is None:
            return tables.UNKNOWN_EPC_PROFILE
        return tables.EPC_PROFILES.get(rating, tables.UNKNOWN_EPC_PROFILE)

    @staticmethod
    def estimate_gross_internal_area(listing: PropertyListing) -> float:
        """Actual GIA when known, otherwise estimated from room counts."""
        if listing.gross_internal_area_sqm:
            return float(listing.gross_internal_area_sqm)
        return float(
            listing.bedrooms * tables.GIA_SQM_PER_BEDROOM
            + listing.bathrooms * tables.GIA_SQM_PER_BATHROOM
            + tables.GIA_COMMON_AREA_SQM
        )

    @staticmethod
    def floor_area_band(gross_area: float) -> FloorAreaBand:
        if gross_area < tables.FLOOR_AREA_BAND_LOWER_SQM:
            return FloorAreaBand.UNDER_90
        if gross_area <= tables.FLOOR_AREA_BAND_UPPER_SQM:
            return FloorAreaBand.BAND_90_120
        return FloorAreaBand.OVER_120

    @staticmethod
    def estimate_lettable_rooms(bedrooms: int, gross_area: float) -> int:
        """Bedrooms, boosted for large properties at one room per 15 sqm (max 8)."""
        rooms = bedrooms
        if gross_area >= tables.LETTABLE_ROOM_BOOST_MIN_SQM:
            potential = min(math.floor(gross_area / tables.SQM_PER_LETTABLE_ROOM), tables.MAX_LETTABLE_ROOMS)
            rooms = max(rooms, potential)
        return rooms

    def rent_per_room(self, city: Optional[str]) -> int:
        """Exact city match, then case-insensitive substring, then the default."""
        if not city:
            return self._default_rent
        if city in self._rent_table:
            return self._rent_table[city]
        lowered = city.lower()
        for region, rent in self._rent_table.items():
            if region.lower() in lowered:
                return rent
        return self._default_rent

    @staticmethod
    def gross_yield(annual_income: int, listing: PropertyListing) -> float:
        """Gross yield percentage on purchase price, else estimated value, else 0."""
        price = listing.purchase_price or listing.estimated_value
        if not price:
            return 0.0
        return annual_income / price * 100

    @staticmethod
    def yield_band(yield_percent: float) -> YieldBand:
        if yield_percent >= tables.YIELD_BAND_HIGH_PERCENT:
            return YieldBand.HIGH
        if yield_percent >= tables.YIELD_BAND_MEDIUM_PERCENT:
            return YieldBand.MEDIUM
        return YieldBand.LOW

    # =========================================================================
    # Exclusions, Points and Classification
    # =========================================================================

    @staticmethod
    def _exclusion_reasons(listing: PropertyListing, gross_area: float, potential_occupants: int) -> list[str]:
        reasons = []
        if listing.planning.article_4_area:
            reasons.append("Article 4 area - HMO conversion requires planning permission")
        if (
            listing.epc.rating in tables.SUBSTANDARD_EPC_RATINGS
            and listing.epc.improvement_feasible is False
        ):
            reasons.append("EPC improvement not feasible")
        if listing.planning.listed_building_grade:
            reasons.append("Listed building - major works restricted")
        if gross_area < tables.FLOOR_AREA_BAND_LOWER_SQM and gross_area < tables.MIN_VIABLE_FLOOR_AREA_SQM:
            reasons.append("Floor area too small for viable HMO conversion")
        if potential_occupants < tables.MIN_HMO_OCCUPANTS:
            reasons.append("Cannot accommodate minimum 3 residents")
        return reasons

    @staticmethod
    def _compliance_points(listing: PropertyListing, epc_profile: EpcProfile) -> int:
        points = tables.COMPLIANCE_BASE_POINTS
        if listing.planning.conservation_area:
            points -= tables.CONSERVATION_AREA_PENALTY
        if listing.planning.article_4_area:
            points -= tables.ARTICLE_4_PENALTY
        points -= tables.EPC_POTENTIAL_PENALTIES.get(epc_profile.improvement_potential, 0)
        return max(0, points)

    @staticmethod
    def _contact_points(listing: PropertyListing) -> int:
        points = 0
        if listing.owner.has_title_owner or listing.owner.company_number:
            points += tables.CONTACT_TITLE_OWNER_POINTS
        if listing.licence.is_licensed_hmo:
            points += tables.CONTACT_LICENCE_HOLDER_POINTS
        if listing.owner.has_contact_channel:
            points += tables.CONTACT_CHANNEL_POINTS
        return points

    @staticmethod
    def classify(is_potential_hmo: bool, deal_score: int, listing: PropertyListing) -> HmoClassification:
        if not is_potential_hmo:
            return HmoClassification.NOT_SUITABLE
        has_title_owner = listing.owner.has_title_owner or bool(listing.owner.company_number)
        if (
            deal_score >= tables.READY_TO_GO_MIN_SCORE
            and listing.epc.rating in tables.GOOD_EPC_RATINGS
            and not listing.planning.conservation_area
            and has_title_owner
        ):
            return HmoClassification.READY_TO_GO
        if deal_score >= tables.VALUE_ADD_MIN_SCORE:
            return HmoClassification.VALUE_ADD
        return HmoClassification.NOT_SUITABLE
