"""
Tests for compliance determinations and complexity rules.
"""

import pytest
from datetime import date
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.compliance import (
    ComplianceComplexity,
    ComplianceDetermination,
    ComplianceRequest,
    DeterminationStatus,
    LicensingScheme,
    SchemeType,
    derive_complexity,
    parse_determination_response,
    parse_scheme,
)


def scheme(scheme_type, **kwargs):
    return LicensingScheme(scheme_type=scheme_type, **kwargs)


# =============================================================================
# Test: Complexity Rules
# =============================================================================

class TestDeriveComplexity:

    def test_nothing_in_force_is_low(self):
        assert derive_complexity([], False) is ComplianceComplexity.LOW

    def test_single_scheme_is_medium(self):
        assert derive_complexity([scheme(SchemeType.SELECTIVE)], False) is ComplianceComplexity.MEDIUM

    def test_article4_alone_is_medium(self):
        assert derive_complexity([], True) is ComplianceComplexity.MEDIUM

    def test_mandatory_with_additional_is_high(self):
        schemes = [scheme(SchemeType.MANDATORY), scheme(SchemeType.ADDITIONAL)]
        assert derive_complexity(schemes, False) is ComplianceComplexity.HIGH

    def test_article4_with_two_schemes_is_high(self):
        schemes = [scheme(SchemeType.ADDITIONAL), scheme(SchemeType.SELECTIVE)]
        assert derive_complexity(schemes, True) is ComplianceComplexity.HIGH

    def test_five_bedrooms_force_mandatory(self):
        schemes = [scheme(SchemeType.SELECTIVE)]
        assert derive_complexity(schemes, False, bedrooms=4) is ComplianceComplexity.MEDIUM
        assert derive_complexity(schemes, False, bedrooms=5) is ComplianceComplexity.HIGH
        assert derive_complexity([], False, bedrooms=5) is ComplianceComplexity.MEDIUM


# =============================================================================
# Test: Value Objects
# =============================================================================

class TestLicensingScheme:

    def test_string_type_is_parsed(self):
        assert scheme("Additional HMO Licensing").scheme_type is SchemeType.ADDITIONAL

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            scheme("discretionary")

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            scheme(SchemeType.SELECTIVE, valid_from="2024-01-01", valid_to="2023-01-01")

    def test_is_active(self):
        s = scheme(SchemeType.SELECTIVE, valid_from="2022-01-01", valid_to="2026-12-31")
        assert s.is_active(date(2024, 6, 1))
        assert not s.is_active(date(2021, 12, 31))
        assert not s.is_active(date(2027, 1, 1))

    def test_dict_round_trip(self):
        s = scheme(SchemeType.MANDATORY, valid_from="2020-04-01", occupant_threshold=5)
        assert LicensingScheme.from_dict(s.to_dict()) == s


class TestComplianceRequest:

    def test_uprn_preferred_over_address(self):
        request = ComplianceRequest(postcode="M14 5RQ", uprn="100012345", address="12 Wilmslow Road")
        assert request.uprn == 100012345
        assert request.to_payload() == {"property": {"address": {"postcode": "M14 5RQ", "uprn": 100012345}}}

    def test_address_fallback(self):
        request = ComplianceRequest(postcode="M14 5RQ", address="12 Wilmslow Road")
        assert request.to_payload() == {
            "property": {"address": {"postcode": "M14 5RQ", "address": "12 Wilmslow Road"}}
        }

    def test_postcode_required(self):
        with pytest.raises(ValueError):
            ComplianceRequest(postcode=" ")


class TestComplianceDetermination:

    def test_unknown_placeholder(self):
        determination = ComplianceDetermination.unknown()

        assert determination.status is DeterminationStatus.UNKNOWN
        assert not determination.is_verified
        assert determination.schemes == ()
        assert determination.complexity() is ComplianceComplexity.LOW

    def test_requires_mandatory_licence(self):
        determination = ComplianceDetermination(schemes=[scheme(SchemeType.SELECTIVE)])

        assert determination.requires_mandatory_licence() is False
        assert determination.requires_mandatory_licence(bedrooms=5) is True
        assert ComplianceDetermination(
            schemes=[scheme(SchemeType.MANDATORY)]
        ).requires_mandatory_licence() is True


# =============================================================================
# Test: Response Parsing
# =============================================================================

class TestParseDeterminationResponse:

    def test_nested_payload(self):
        data = {
            "status": {"code": 200},
            "data": {
                "schemes": [
                    {"type": "mandatory", "date_start": "2018-10-01", "occupants": 5, "households": 2},
                    {"type": "additional", "date_start": "2022-05-01", "link": "https://council.example/hmo"},
                    {"type": "planning"},
                ],
                "article4": True,
                "advice_text": "Planning permission needed for C4 use.",
            },
        }

        determination = parse_determination_response(data)

        assert determination.is_verified
        assert [s.scheme_type for s in determination.schemes] == [SchemeType.MANDATORY, SchemeType.ADDITIONAL]
        assert determination.schemes[0].occupant_threshold == 5
        assert determination.schemes[0].valid_from == date(2018, 10, 1)
        assert determination.article4 is True
        assert determination.advice_text == "Planning permission needed for C4 use."
        assert determination.complexity() is ComplianceComplexity.HIGH

    def test_error_status_is_unknown(self):
        determination = parse_determination_response({"status": {"code": 500, "message": "error"}})
        assert determination.status is DeterminationStatus.UNKNOWN

    def test_non_dict_is_unknown(self):
        assert not parse_determination_response(["unexpected"]).is_verified

    def test_empty_body_is_verified_and_low(self):
        determination = parse_determination_response({})
        assert determination.is_verified
        assert determination.complexity() is ComplianceComplexity.LOW

    def test_parse_scheme_alternate_keys(self):
        parsed = parse_scheme({"licence_type": "Selective", "start_date": "2021-01-01", "end_date": "2026-01-01"})
        assert parsed.scheme_type is SchemeType.SELECTIVE
        assert parsed.valid_to == date(2026, 1, 1)

    def test_scheme_ending_before_it_starts_is_dropped(self):
        data = {
            "schemes": [
                {"type": "additional", "date_start": "2024-05-01", "date_end": "2020-01-01"},
                {"type": "selective", "date_start": "2021-01-01"},
            ],
        }

        determination = parse_determination_response(data)

        assert determination.is_verified
        assert [s.scheme_type for s in determination.schemes] == [SchemeType.SELECTIVE]
        assert parse_scheme(data["schemes"][0]) is None
