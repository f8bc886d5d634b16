"""
Tests for provider adapters

All HTTP goes through the FakeSession from conftest; nothing touches the
network. Verifies request shape (paths, auth, headers), response mapping
and that every failure mode degrades to an empty result.
"""

import pytest
from datetime import date
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from adapters import build_manager, build_registry
from adapters.companies_house import CompaniesHouseAdapter, normalise_company_status
from adapters.epc import CERTIFICATE_URL, EpcAdapter
from adapters.http import address_similarity, format_address
from adapters.kamma import KammaDeterminationAdapter
from adapters.land_registry import LandRegistryValuationAdapter
from adapters.propertydata import PropertyDataHMOAdapter
from adapters.searchland import (
    SearchlandOwnershipAdapter,
    SearchlandPlanningAdapter,
    classify_owner,
    normalise_listed_grade,
)
from adapters.streetdata import StreetDataAdapter, age_band
from conftest import FakeResponse
from core.compliance import ComplianceRequest, DeterminationStatus, SchemeType
from core.ingestion.rate_limit import ProviderRateLimiter
from core.models import EpcDetails, LicenceStatus, ListingType, OwnerDetails, OwnerType
from utils.config import Config


# =============================================================================
# Test: Shared HTTP Helpers
# =============================================================================

class TestHttpHelpers:

    def test_format_address(self):
        keys = ("line1", "town", "postcode")
        assert format_address({"line1": "1 High St", "town": "", "postcode": "M5 4WT"}, keys) == "1 High St, M5 4WT"
        assert format_address("  5 Low Road ", keys) == "5 Low Road"
        assert format_address(None, keys) is None

    def test_address_similarity(self):
        assert address_similarity("12 Wilmslow Road", "12, Wilmslow Road.") == 1.0
        assert address_similarity("12 Wilmslow Road", "Flat 3 Oxford Road") == pytest.approx(0.25)
        assert address_similarity("", "anything") == 0.0

    def test_timeout_degrades_to_empty(self, fake_session, no_wait_limiter, timeout_error, make_listing):
        fake_session.add("GET", "/properties", timeout_error)
        adapter = StreetDataAdapter("sd-key", session=fake_session, rate_limiter=no_wait_limiter)

        assert adapter.enrich(make_listing()).is_empty()

    def test_invalid_json_degrades_to_empty(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("GET", "/properties", FakeResponse(invalid_json=True))
        adapter = StreetDataAdapter("sd-key", session=fake_session, rate_limiter=no_wait_limiter)

        assert adapter.enrich(make_listing()).is_empty()

    def test_calls_are_rate_limited_per_provider(self, fake_session, make_listing):
        sleeps = []
        limiter = ProviderRateLimiter(intervals={"streetdata": 1.0}, clock=lambda: 0.0, sleep=sleeps.append)
        adapter = StreetDataAdapter("sd-key", session=fake_session, rate_limiter=limiter)

        adapter.enrich(make_listing())
        adapter.enrich(make_listing())

        assert sleeps == [pytest.approx(1.0)]

    def test_session_carries_user_agent(self, fake_session, no_wait_limiter):
        StreetDataAdapter("sd-key", user_agent="Tester/1.0", session=fake_session, rate_limiter=no_wait_limiter)
        assert fake_session.headers["User-Agent"] == "Tester/1.0"


# =============================================================================
# Test: PropertyData HMO Register
# =============================================================================

REGISTER_ENTRY = {
    "address": "12 Wilmslow Road, Manchester",
    "postcode": "M14 5RQ",
    "licence_number": "HMO/2024/001",
    "bedrooms": 6,
    "local_authority": "Manchester",
    "licence_start": "2022-01-01",
    "licence_end": "2027-01-01",
    "licence_holder": "J Smith",
    "max_occupants": 6,
}


@pytest.fixture
def propertydata(fake_session, no_wait_limiter):
    return PropertyDataHMOAdapter(
        "pd-key",
        postcodes=["m145rq"],
        session=fake_session,
        rate_limiter=no_wait_limiter,
    )


class TestPropertyDataHMOAdapter:

    def test_register_entry_is_normalised(self, propertydata, fake_session):
        fake_session.add("GET", "/national-hmo-register", FakeResponse({"data": [REGISTER_ENTRY]}))

        listings = propertydata.fetch()

        assert len(listings) == 1
        listing = listings[0]
        assert listing.external_id == "HMO/2024/001"
        assert listing.postcode == "M14 5RQ"
        assert listing.city == "Manchester"
        assert listing.listing_type is ListingType.RENT
        assert listing.property_type == "HMO"
        assert listing.bathrooms == 3
        assert listing.licence.status is LicenceStatus.ACTIVE
        assert listing.licence.end_date == date(2027, 1, 1)
        assert listing.licence.holder_name == "J Smith"

        call = fake_session.calls[0]
        assert call["params"] == {"key": "pd-key", "postcode": "M14 5RQ"}
        assert call["url"] == "https://api.propertydata.co.uk/national-hmo-register"
        assert call["timeout"] == 10.0

    def test_alternate_response_shape(self, propertydata, fake_session):
        fake_session.add("GET", "/national-hmo-register", FakeResponse({"result": REGISTER_ENTRY}))
        assert len(propertydata.fetch()) == 1

    def test_missing_licence_number_gets_stable_id(self, propertydata, fake_session):
        entry = dict(REGISTER_ENTRY, licence_number=None)
        fake_session.add("GET", "/national-hmo-register", FakeResponse({"data": [entry]}))

        first = propertydata.fetch()[0].external_id
        second = propertydata.fetch()[0].external_id

        assert first.startswith("PD-M145RQ-")
        assert first == second

    def test_no_key_makes_no_calls(self, fake_session, no_wait_limiter):
        adapter = PropertyDataHMOAdapter(None, session=fake_session, rate_limiter=no_wait_limiter)

        assert adapter.fetch() == []
        assert fake_session.calls == []

    def test_error_payload_skips_postcode(self, propertydata, fake_session):
        fake_session.add("GET", "/national-hmo-register", FakeResponse({"status": "error", "message": "bad key"}))
        assert propertydata.fetch() == []

    def test_http_error_skips_postcode(self, fake_session, no_wait_limiter):
        adapter = PropertyDataHMOAdapter(
            "pd-key", postcodes=["N7 6PA", "M14 5RQ"], session=fake_session, rate_limiter=no_wait_limiter,
        )
        fake_session.add("GET", "/national-hmo-register", FakeResponse(status_code=500))

        assert adapter.fetch() == []
        assert len(fake_session.calls) == 2

    def test_bad_licence_date_is_rejected(self, propertydata, fake_session):
        entry = dict(REGISTER_ENTRY, licence_end="sometime soon")
        fake_session.add("GET", "/national-hmo-register", FakeResponse({"data": [entry]}))

        assert propertydata.fetch() == []
        assert [r.rejection_code for r in propertydata.rejections] == ["INVALID_FIELD"]


# =============================================================================
# Test: StreetData
# =============================================================================

class TestStreetDataAdapter:

    def test_matches_first_address_line(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("GET", "/properties", FakeResponse({"data": [
            {"address": "10 Wilmslow Road, Manchester", "uprn": 1},
            {
                "address": "12 Wilmslow Road, Manchester, M14 5RQ",
                "uprn": 100012345,
                "property_type": "Terraced house",
                "year_built": 1905,
                "total_floor_area": "142",
                "council_tax_band": "C",
            },
        ]}))
        adapter = StreetDataAdapter("sd-key", session=fake_session, rate_limiter=no_wait_limiter)

        patch = adapter.enrich(make_listing())

        assert patch.uprn == "100012345"
        assert patch.property_type == "House"
        assert patch.details.year_built == 1905
        assert patch.details.property_age == "Period Property"
        assert patch.details.floor_area_sqm == 142.0
        assert patch.details.council_tax_band == "C"
        assert fake_session.calls[0]["headers"] == {"Authorization": "Bearer sd-key"}
        assert fake_session.calls[0]["params"] == {"postcode": "M14 5RQ"}

    def test_no_match_is_empty(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("GET", "/properties", FakeResponse({"data": [{"address": "99 Oxford Road"}]}))
        adapter = StreetDataAdapter("sd-key", session=fake_session, rate_limiter=no_wait_limiter)

        assert adapter.enrich(make_listing()).is_empty()

    @pytest.mark.parametrize("year,band", [
        (2020, "New Build"),
        (2000, "Modern"),
        (1990, "Post-War"),
        (1930, "Victorian/Edwardian"),
        (1900, "Period Property"),
    ])
    def test_age_bands(self, year, band):
        assert age_band(year, today=date(2024, 1, 1)) == band


# =============================================================================
# Test: HM Land Registry
# =============================================================================

def price_paid(*amounts):
    return FakeResponse({"results": {"bindings": [{"amount": {"value": str(a)}} for a in amounts]}})


class TestLandRegistryValuationAdapter:

    def test_median_of_recent_sales(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("POST", "/landregistry/query", price_paid(250000, 300000, 270000))
        adapter = LandRegistryValuationAdapter(
            session=fake_session, rate_limiter=no_wait_limiter, today=date(2024, 6, 1),
        )

        patch = adapter.enrich(make_listing())

        assert patch.estimated_value == 270000
        query = fake_session.calls[0]["data"]["query"]
        assert '"M14 5RQ"' in query
        assert '"2021-06-01"' in query

    def test_existing_price_is_not_queried(self, fake_session, no_wait_limiter, make_listing):
        adapter = LandRegistryValuationAdapter(session=fake_session, rate_limiter=no_wait_limiter)

        assert adapter.enrich(make_listing(purchase_price=300000)).is_empty()
        assert adapter.enrich(make_listing(estimated_value=300000)).is_empty()
        assert fake_session.calls == []

    def test_disabled(self, fake_session, no_wait_limiter, make_listing):
        adapter = LandRegistryValuationAdapter(enabled=False, session=fake_session, rate_limiter=no_wait_limiter)

        assert adapter.enrich(make_listing()).is_empty()
        assert fake_session.calls == []

    def test_no_sales(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("POST", "/landregistry/query", price_paid())
        adapter = LandRegistryValuationAdapter(session=fake_session, rate_limiter=no_wait_limiter)

        assert adapter.enrich(make_listing()).is_empty()


# =============================================================================
# Test: EPC Register
# =============================================================================

EPC_ROWS = [
    {"address": "Flat 3, 40 Oxford Road", "current-energy-rating": "E"},
    {
        "address": "12 Wilmslow Road, Manchester",
        "current-energy-rating": "c",
        "current-energy-efficiency": "72",
        "potential-energy-rating": "B",
        "lodgement-date": "2020-03-15",
        "lmk-key": "abc123",
        "total-floor-area": "131.5",
    },
]


@pytest.fixture
def epc_adapter(fake_session, no_wait_limiter):
    return EpcAdapter("me@example.com", "epc-key", session=fake_session, rate_limiter=no_wait_limiter)


class TestEpcAdapter:

    def test_best_matching_certificate(self, epc_adapter, fake_session, make_listing):
        fake_session.add("GET", "/domestic/search", FakeResponse({"rows": EPC_ROWS}))

        patch = epc_adapter.enrich(make_listing())

        assert patch.epc.rating == "C"
        assert patch.epc.rating_numeric == 72
        assert patch.epc.potential_rating == "B"
        assert patch.epc.lodgement_date == date(2020, 3, 15)
        assert patch.epc.expiry_date == date(2030, 3, 15)
        assert patch.epc.certificate_url == CERTIFICATE_URL.format("abc123")
        assert patch.epc.improvement_feasible is True
        assert patch.gross_internal_area_sqm == 131.5

        call = fake_session.calls[0]
        assert call["auth"] == ("me@example.com", "epc-key")
        assert call["params"] == {"postcode": "M14 5RQ", "size": 25}

    def test_known_floor_area_is_kept(self, epc_adapter, fake_session, make_listing):
        fake_session.add("GET", "/domestic/search", FakeResponse({"rows": EPC_ROWS}))
        patch = epc_adapter.enrich(make_listing(gross_internal_area_sqm=120))
        assert patch.gross_internal_area_sqm is None

    def test_falls_back_to_first_row(self):
        assert EpcAdapter.best_match(EPC_ROWS, "Somewhere Else Entirely") is EPC_ROWS[0]

    def test_existing_rating_skips_lookup(self, epc_adapter, fake_session, make_listing):
        assert epc_adapter.enrich(make_listing(epc=EpcDetails(rating="D"))).is_empty()
        assert fake_session.calls == []

    def test_invalid_rating_is_empty(self, epc_adapter, fake_session, make_listing):
        fake_session.add("GET", "/domestic/search", FakeResponse({"rows": [{"current-energy-rating": "Q"}]}))
        assert epc_adapter.enrich(make_listing()).is_empty()

    def test_credentials_required(self, fake_session, no_wait_limiter, make_listing):
        adapter = EpcAdapter("me@example.com", None, session=fake_session, rate_limiter=no_wait_limiter)
        assert adapter.enrich(make_listing()).is_empty()
        assert fake_session.calls == []


# =============================================================================
# Test: Searchland
# =============================================================================

class TestSearchlandOwnershipAdapter:

    def test_company_proprietor(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("POST", "/title", FakeResponse({"data": {"title": {
            "title_number": "MAN123456",
            "tenure": "Freehold",
            "proprietor": {
                "name": "Acme Lettings Ltd",
                "type": "company",
                "company_number": "01234567",
                "address": {"line1": "1 High Street", "town": "Salford", "postcode": "M5 4WT"},
            },
        }}}))
        adapter = SearchlandOwnershipAdapter("sl-key", session=fake_session, rate_limiter=no_wait_limiter)

        owner = adapter.enrich(make_listing(uprn="100012345")).owner

        assert owner.title_number == "MAN123456"
        assert owner.owner_name == "Acme Lettings Ltd"
        assert owner.owner_type is OwnerType.COMPANY
        assert owner.company_name == "Acme Lettings Ltd"
        assert owner.company_number == "01234567"
        assert owner.owner_address == "1 High Street, Salford, M5 4WT"

        call = fake_session.calls[0]
        assert call["headers"] == {"Authorization": "Bearer sl-key"}
        assert call["json"]["uprn"] == "100012345"

    def test_individual_has_no_company_fields(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("POST", "/title", FakeResponse({"data": {"title": {"owner": {"name": "Jane Doe"}}}}))
        adapter = SearchlandOwnershipAdapter("sl-key", session=fake_session, rate_limiter=no_wait_limiter)

        owner = adapter.enrich(make_listing()).owner

        assert owner.owner_type is OwnerType.INDIVIDUAL
        assert owner.company_name is None

    def test_missing_title_is_empty(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("POST", "/title", FakeResponse({"data": {}}))
        adapter = SearchlandOwnershipAdapter("sl-key", session=fake_session, rate_limiter=no_wait_limiter)
        assert adapter.enrich(make_listing()).is_empty()

    @pytest.mark.parametrize("owner,owner_type", [
        ({"name": "Salford City Council"}, OwnerType.GOVERNMENT),
        ({"name": "J Smith"}, OwnerType.INDIVIDUAL),
        ({"type": "trust", "name": "Smith Family Trust"}, OwnerType.TRUST),
        ({"name": "Acme", "company_number": "0123"}, OwnerType.COMPANY),
        ({}, OwnerType.UNKNOWN),
    ])
    def test_classify_owner(self, owner, owner_type):
        assert classify_owner(owner) is owner_type


class TestSearchlandPlanningAdapter:

    def test_parse_planning(self):
        planning = SearchlandPlanningAdapter.parse_planning({
            "conservation_area": True,
            "conservation_area_name": "Victoria Park",
            "listed_building_grade": "2*",
            "constraints": [
                {"type": "Article 4 Direction", "description": "HMO article 4", "reference": "A4/1"},
                {"type": "Tree Preservation Order", "reference": "TPO-9"},
                {"type": "tree preservation order"},
            ],
        })

        assert planning.article_4_area is True
        assert planning.conservation_area is True
        assert planning.listed_building_grade == "II*"
        assert [c.constraint_type for c in planning.constraints] == [
            "Article 4",
            "Conservation Area",
            "Listed Building",
            "Article 4 Direction",
            "Tree Preservation Order",
        ]

    def test_clear_site(self):
        planning = SearchlandPlanningAdapter.parse_planning({})

        assert planning.article_4_area is False
        assert planning.conservation_area is False
        assert planning.listed_building_grade is None
        assert planning.constraints == []

    def test_enrich_posts_location(self, fake_session, no_wait_limiter, make_listing):
        fake_session.add("POST", "/planning", FakeResponse({"data": {"planning": {"article_4": True}}}))
        adapter = SearchlandPlanningAdapter("sl-key", session=fake_session, rate_limiter=no_wait_limiter)

        patch = adapter.enrich(make_listing(latitude=53.45, longitude=-2.22))

        assert patch.planning.article_4_area is True
        assert fake_session.calls[0]["json"]["latitude"] == 53.45

    def test_listed_grades(self):
        assert normalise_listed_grade("Grade II") == "II"
        assert normalise_listed_grade("1") == "I"
        assert normalise_listed_grade("unknown") is None
        assert normalise_listed_grade(None) is None


# =============================================================================
# Test: Companies House
# =============================================================================

@pytest.fixture
def companies_house(fake_session, no_wait_limiter):
    return CompaniesHouseAdapter("ch-key", session=fake_session, rate_limiter=no_wait_limiter)


@pytest.fixture
def company_listing(make_listing):
    return make_listing(owner=OwnerDetails(owner_name="Acme Lettings Ltd", company_number="01234567"))


class TestCompaniesHouseAdapter:

    def test_profile_and_officers(self, companies_house, fake_session, company_listing):
        fake_session.add("GET", "/company/01234567/officers", FakeResponse({"items": [
            {"name": "SMITH, John", "officer_role": "director", "appointed_on": "2015-04-01"},
            {"name": "OLD, Gone", "officer_role": "director", "resigned_on": "2019-01-01"},
            {"name": "DOE, Jane"},
        ]}))
        fake_session.add("GET", "/company/01234567", FakeResponse({
            "company_name": "ACME LETTINGS LTD",
            "company_status": "active",
            "date_of_creation": "2015-04-01",
            "registered_office_address": {
                "address_line_1": "1 High Street",
                "locality": "Salford",
                "postal_code": "M5 4WT",
            },
        }))

        owner = companies_house.enrich(company_listing).owner

        assert owner.company_name == "ACME LETTINGS LTD"
        assert owner.company_status == "active"
        assert owner.company_incorporation_date == date(2015, 4, 1)
        assert owner.owner_address == "1 High Street, Salford, M5 4WT"
        assert [d.name for d in owner.directors] == ["SMITH, John", "DOE, Jane"]
        assert owner.directors[0].appointed_on == date(2015, 4, 1)
        assert owner.directors[1].role == "Director"
        assert fake_session.calls[0]["auth"] == ("ch-key", "")

    def test_directors_are_capped(self):
        officers = {"items": [{"name": f"Officer {i}"} for i in range(12)]}
        assert len(CompaniesHouseAdapter.active_directors(officers)) == 10

    def test_requires_company_number(self, companies_house, fake_session, make_listing):
        assert companies_house.enrich(make_listing()).is_empty()
        assert fake_session.calls == []

    def test_unknown_company(self, companies_house, company_listing):
        assert companies_house.enrich(company_listing).is_empty()

    def test_malformed_date_is_empty(self, companies_house, fake_session, company_listing):
        fake_session.add("GET", "/company/01234567", FakeResponse({"date_of_creation": "last tuesday"}))
        assert companies_house.enrich(company_listing).is_empty()

    def test_status_normalisation(self):
        assert normalise_company_status("Registered") == "active"
        assert normalise_company_status("dissolved") == "dissolved"
        assert normalise_company_status(None) is None


# =============================================================================
# Test: Kamma
# =============================================================================

DETERMINATION = {
    "status": {"code": 200},
    "data": {
        "schemes": [{"type": "additional", "date_start": "2022-05-01"}],
        "article4": True,
        "advice_text": "Additional licensing applies.",
    },
}


@pytest.fixture
def kamma(fake_session, no_wait_limiter):
    return KammaDeterminationAdapter(
        "api-key", "service-key", "group-1", session=fake_session, rate_limiter=no_wait_limiter,
    )


class TestKammaDeterminationAdapter:

    def test_determine_sends_sso_headers(self, kamma, fake_session):
        fake_session.add("POST", "/v3/determinations/check", FakeResponse(DETERMINATION))

        determination = kamma.determine(ComplianceRequest(postcode="M14 5RQ", uprn="100012345"))

        assert determination.is_verified
        assert determination.has_scheme(SchemeType.ADDITIONAL)
        call = fake_session.calls[0]
        assert call["headers"] == {
            "X-SSO-API-Key": "api-key",
            "X-SSO-Service-Key": "service-key",
            "X-SSO-Group-ID": "group-1",
        }
        assert call["json"] == {"property": {"address": {"postcode": "M14 5RQ", "uprn": 100012345}}}

    def test_enrich_sets_planning(self, kamma, fake_session, make_listing):
        fake_session.add("POST", "/v3/determinations/check", FakeResponse(DETERMINATION))

        planning = kamma.enrich(make_listing()).planning

        assert planning.article_4_area is True
        assert [s.scheme_type for s in planning.licensing_schemes] == [SchemeType.ADDITIONAL]
        assert planning.compliance_advice == "Additional licensing applies."
        assert planning.compliance_status is DeterminationStatus.VERIFIED
        assert planning.compliance_checked_at is not None

    def test_no_article4_leaves_planning_lookup_in_charge(self, kamma, fake_session, make_listing):
        fake_session.add("POST", "/v3/determinations/check", FakeResponse({"data": {"article4": False}}))
        assert kamma.enrich(make_listing()).planning.article_4_area is None

    def test_failure_is_unknown(self, kamma, fake_session, make_listing):
        fake_session.add("POST", "/v3/determinations/check", FakeResponse(status_code=502))

        assert kamma.determine(ComplianceRequest(postcode="M14 5RQ")).status is DeterminationStatus.UNKNOWN
        assert kamma.enrich(make_listing()).is_empty()

    def test_invalid_scheme_dates_do_not_raise(self, kamma, fake_session, make_listing):
        fake_session.add("POST", "/v3/determinations/check", FakeResponse({
            "schemes": [{"type": "additional", "date_start": "2024-05-01", "date_end": "2020-01-01"}],
        }))

        planning = kamma.enrich(make_listing()).planning

        assert planning.licensing_schemes == []
        assert planning.article_4_area is None

    def test_all_credentials_required(self, fake_session, no_wait_limiter):
        adapter = KammaDeterminationAdapter(
            "api-key", "service-key", None, session=fake_session, rate_limiter=no_wait_limiter,
        )

        assert not adapter.determine(ComplianceRequest(postcode="M14 5RQ")).is_verified
        assert fake_session.calls == []


# =============================================================================
# Test: Registry Assembly
# =============================================================================

@pytest.fixture
def config():
    return Config(
        static_source_path=None,
        database_url=None,
        propertydata_api_key=None,
        enrichment_batch_size=25,
        stale_after_days=14,
        source_workers=1,
    )


class TestBuildRegistry:

    def test_default_order(self, config, fake_session):
        registry = build_registry(config, session=fake_session)

        assert [a.name for a in registry.sources] == ["PropertyData HMO"]
        assert [a.name for a in registry.enrichment_chain] == [
            "StreetData",
            "Land Registry",
            "Searchland Ownership",
            "Companies House",
            "EPC Register",
            "Searchland Planning",
            "Kamma",
        ]

    def test_static_feed_registered_when_configured(self, config, fake_session, tmp_path):
        config.static_source_path = str(tmp_path / "listings.json")

        registry = build_registry(config, session=fake_session)

        assert [a.name for a in registry.sources] == ["PropertyData HMO", "Static Feed"]

    def test_build_manager_uses_given_store(self, config, fake_session, memory_store):
        manager = build_manager(config, store=memory_store, session=fake_session)

        assert manager.store is memory_store
        assert len(manager.registry.enrichment_chain) == 7

    def test_unconfigured_run_is_harmless(self, config, fake_session, memory_store):
        manager = build_manager(config, store=memory_store, session=fake_session)

        results = manager.run_ingestion()

        assert [r.source for r in results] == ["PropertyData HMO"]
        assert results[0].total == 0
        assert fake_session.calls == []
