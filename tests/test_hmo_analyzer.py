"""
Tests for the Potential HMO Analyzer

Verifies:
- Seven-part deal score breakdown on a traced example
- Exclusion rules (Article 4, EPC, listed, floor area, occupancy)
- Floor area estimation and banding
- Regional rent lookup and yield banding
- Classification thresholds
- Filtering and ordering of candidate records
"""

import pytest
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.compliance import ComplianceComplexity, LicensingScheme, SchemeType
from core.hmo_analyzer import PotentialHMOAnalyzer
from core.models import (
    EpcDetails,
    FloorAreaBand,
    HmoClassification,
    LicenceDetails,
    OwnerDetails,
    PlanningDetails,
    YieldBand,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def analyzer():
    return PotentialHMOAnalyzer()


@pytest.fixture
def manchester_listing(make_listing):
    """Six-bed Manchester house with a known owner and a C rated EPC."""
    return make_listing(
        city="Manchester",
        bedrooms=6,
        bathrooms=2,
        gross_internal_area_sqm=130,
        purchase_price=300000,
        epc=EpcDetails(rating="C"),
        owner=OwnerDetails(owner_name="Acme Ltd"),
    )


# =============================================================================
# Test: Traced Deal Score
# =============================================================================

class TestDealScoreBreakdown:
    """Every component of the score on a fully traced example."""

    def test_manchester_breakdown(self, analyzer, manchester_listing):
        analysis = analyzer.analyze(manchester_listing)
        breakdown = analysis.breakdown

        assert breakdown.floor_area == 15
        assert breakdown.epc == 14
        assert breakdown.licensing == 10
        assert breakdown.lettable_rooms == 15
        assert breakdown.compliance == 10
        assert breakdown.yield_score == 15
        assert breakdown.contact == 10
        assert analysis.deal_score == 89

    def test_manchester_derived_values(self, analyzer, manchester_listing):
        analysis = analyzer.analyze(manchester_listing)

        # 130 sqm boosts six bedrooms to eight lettable rooms
        assert analysis.lettable_rooms == 8
        assert analysis.potential_occupants == 8
        assert analysis.rent_per_room == 550
        assert analysis.estimated_gross_monthly_rent == 4400
        assert analysis.estimated_annual_income == 52800
        assert analysis.estimated_yield_percentage == 17.6
        assert analysis.yield_band is YieldBand.HIGH
        assert analysis.floor_area_band is FloorAreaBand.OVER_120
        assert analysis.gia_is_estimated is False
        assert analysis.requires_mandatory_licensing is True
        assert analysis.compliance_complexity is ComplianceComplexity.MEDIUM
        assert analysis.bathrooms_required == 2
        assert analysis.meets_bathroom_ratio is True
        assert analysis.meets_space_standards is True

    def test_manchester_is_ready_to_go(self, analyzer, manchester_listing):
        analysis = analyzer.analyze(manchester_listing)

        assert analysis.is_potential_hmo is True
        assert analysis.classification is HmoClassification.READY_TO_GO
        assert analysis.hmo_suitability_score == 89
        assert analysis.exclusion_reasons == ()

    def test_without_owner_is_value_add(self, analyzer, manchester_listing):
        manchester_listing.owner = OwnerDetails()

        analysis = analyzer.analyze(manchester_listing)

        assert analysis.breakdown.contact == 0
        assert analysis.deal_score == 79
        assert analysis.classification is HmoClassification.VALUE_ADD

    def test_full_contact_data_scores_twenty(self, analyzer, manchester_listing):
        manchester_listing.owner = OwnerDetails(owner_name="Acme Ltd", owner_contact_email="a@acme.test")
        manchester_listing.licence = LicenceDetails(status="active", holder_name="J Smith")

        analysis = analyzer.analyze(manchester_listing)

        assert analysis.breakdown.contact == 20
        assert analysis.deal_score == 99

    def test_conservation_area_blocks_ready_to_go(self, analyzer, manchester_listing):
        manchester_listing.planning = PlanningDetails(conservation_area=True)

        analysis = analyzer.analyze(manchester_listing)

        assert analysis.breakdown.compliance == 7
        assert analysis.classification is HmoClassification.VALUE_ADD

    def test_score_is_deterministic(self, analyzer, manchester_listing):
        first = analyzer.analyze(manchester_listing)
        second = analyzer.analyze(manchester_listing)
        assert first == second


# =============================================================================
# Test: Exclusions
# =============================================================================

class TestExclusions:
    """Hard exclusions make a property not suitable regardless of score."""

    def test_article_4_area_excluded(self, analyzer, manchester_listing):
        manchester_listing.planning = PlanningDetails(article_4_area=True)

        analysis = analyzer.analyze(manchester_listing)

        assert analysis.is_potential_hmo is False
        assert analysis.classification is HmoClassification.NOT_SUITABLE
        assert analysis.hmo_suitability_score == 0
        assert analysis.breakdown.compliance == 3
        assert any("Article 4" in reason for reason in analysis.exclusion_reasons)

    def test_substandard_epc_excluded_only_when_infeasible(self, analyzer, manchester_listing):
        manchester_listing.epc = EpcDetails(rating="F", improvement_feasible=False)
        assert analyzer.analyze(manchester_listing).is_potential_hmo is False

        manchester_listing.epc = EpcDetails(rating="F")
        assert analyzer.analyze(manchester_listing).is_potential_hmo is True

    def test_listed_building_excluded(self, analyzer, manchester_listing):
        manchester_listing.planning = PlanningDetails(listed_building_grade="II")
        analysis = analyzer.analyze(manchester_listing)
        assert "Listed building - major works restricted" in analysis.exclusion_reasons

    def test_small_property_excluded(self, analyzer, make_listing):
        # 1 bed, 1 bath: 12 + 5 + 36 = 53 sqm estimated
        analysis = analyzer.analyze(make_listing(bedrooms=1, bathrooms=1))

        assert analysis.estimated_gia_sqm == 53
        assert analysis.gia_is_estimated is True
        assert "Floor area too small for viable HMO conversion" in analysis.exclusion_reasons
        assert "Cannot accommodate minimum 3 residents" in analysis.exclusion_reasons


# =============================================================================
# Test: Derived Quantities
# =============================================================================

class TestDerivedQuantities:

    def test_estimated_area_from_rooms(self, analyzer, make_listing):
        listing = make_listing(bedrooms=4, bathrooms=1)
        assert analyzer.estimate_gross_internal_area(listing) == 89.0

    @pytest.mark.parametrize("area,band", [
        (89.9, FloorAreaBand.UNDER_90),
        (90, FloorAreaBand.BAND_90_120),
        (120, FloorAreaBand.BAND_90_120),
        (120.5, FloorAreaBand.OVER_120),
    ])
    def test_floor_area_bands(self, analyzer, area, band):
        assert analyzer.floor_area_band(area) is band

    def test_lettable_rooms_boost_is_capped(self, analyzer):
        assert analyzer.estimate_lettable_rooms(4, 100) == 4
        assert analyzer.estimate_lettable_rooms(4, 150) == 8
        assert analyzer.estimate_lettable_rooms(4, 400) == 8
        assert analyzer.estimate_lettable_rooms(10, 400) == 10

    def test_rent_lookup(self, analyzer):
        assert analyzer.rent_per_room("London") == 850
        assert analyzer.rent_per_room("Greater Manchester") == 550
        assert analyzer.rent_per_room("Unknownville") == 500
        assert analyzer.rent_per_room(None) == 500

    def test_custom_rent_table(self, make_listing):
        analyzer = PotentialHMOAnalyzer(rent_table={"Testtown": 400}, default_rent=300)
        assert analyzer.rent_per_room("Testtown") == 400
        assert analyzer.rent_per_room("Manchester") == 300

    def test_no_price_means_zero_yield(self, analyzer, make_listing):
        analysis = analyzer.analyze(make_listing(city="Leeds"))

        assert analysis.estimated_yield_percentage == 0.0
        assert analysis.yield_band is YieldBand.LOW
        assert analysis.breakdown.yield_score == 2

    def test_estimated_value_used_when_no_purchase_price(self, analyzer, make_listing):
        analysis = analyzer.analyze(make_listing(city="Leeds", bedrooms=4, estimated_value=240000))
        # 480 * 4 * 12 / 240000
        assert analysis.estimated_yield_percentage == 9.6

    def test_unknown_epc_profile(self, analyzer, manchester_listing):
        manchester_listing.epc = EpcDetails()
        analysis = analyzer.analyze(manchester_listing)

        assert analysis.breakdown.epc == 8
        assert analysis.breakdown.compliance == 9
        assert analysis.epc_improvement_potential == "medium"

    def test_licensing_schemes_raise_complexity(self, analyzer, manchester_listing):
        manchester_listing.planning = PlanningDetails(
            licensing_schemes=[LicensingScheme(scheme_type=SchemeType.ADDITIONAL)]
        )
        analysis = analyzer.analyze(manchester_listing)
        assert analysis.compliance_complexity is ComplianceComplexity.HIGH

    def test_boosted_rooms_drive_licensing_and_complexity(self, analyzer, make_listing):
        analysis = analyzer.analyze(make_listing(bedrooms=4, gross_internal_area_sqm=130))

        assert analysis.potential_occupants == 8
        assert analysis.requires_mandatory_licensing is True
        assert analysis.compliance_complexity is ComplianceComplexity.MEDIUM


# =============================================================================
# Test: Filtering
# =============================================================================

class TestFilterPotentialHmos:

    def test_filters_and_sorts_by_score(self, analyzer, make_record, manchester_listing, make_listing):
        strong = make_record(listing=manchester_listing)
        weaker = make_record(listing=make_listing(
            external_id="L-2", city="Leeds", bedrooms=4, purchase_price=400000,
        ))
        excluded = make_record(listing=make_listing(
            external_id="L-3", planning=PlanningDetails(article_4_area=True),
        ))

        results = analyzer.filter_potential_hmos([weaker, excluded, strong])

        assert [r.external_id for r in results] == ["L-1", "L-2"]

    def test_min_score_and_epc_band(self, analyzer, make_record, manchester_listing, make_listing):
        strong = make_record(listing=manchester_listing)
        unknown_epc = make_record(listing=make_listing(external_id="L-2", purchase_price=300000))

        assert analyzer.filter_potential_hmos([strong, unknown_epc], min_deal_score=85) == [strong]
        assert analyzer.filter_potential_hmos([strong, unknown_epc], epc_band="needs_upgrade") == [unknown_epc]

    def test_invalid_epc_band_rejected(self, analyzer):
        with pytest.raises(ValueError):
            analyzer.filter_potential_hmos([], epc_band="excellent")

    def test_analyze_batch_keyed_by_id(self, analyzer, make_record):
        record = make_record()
        results = analyzer.analyze_batch([record])
        assert list(results) == [record.id]
