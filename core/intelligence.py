"""
Data Intelligence Service - Compliance Risks, Opportunities and Enrichment Plans

Reads a property record and reports what could go wrong (compliance risks),
what could be acted on (opportunities) and which lookups would fill the
remaining gaps (an advisory enrichment plan).
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Final, Iterable, Optional

from core.models import (
    DataProvenance,
    EnrichedProperty,
    HmoClassification,
    OwnerType,
    PropertyListing,
    Reliability,
    YieldBand,
)
from core.scoring_tables import MANDATORY_LICENSING_MIN_OCCUPANTS, SUBSTANDARD_EPC_RATINGS, YIELD_BAND_HIGH_PERCENT
from utils.formatting import format_percent


RISK_LICENCE_EXPIRY_MONTHS = 6
OPPORTUNITY_LICENCE_EXPIRY_MONTHS = 3

# Weight of each provider tier in the confidence score
RELIABILITY_WEIGHTS: Final[dict[Reliability, float]] = {
    Reliability.AUTHORITATIVE: 1.0,
    Reliability.HIGH: 0.85,
    Reliability.MEDIUM: 0.7,
    Reliability.LOW: 0.5,
}


class Severity(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EnrichmentStep(Enum):
    """Advisory lookups, in the order they should be attempted."""

    GEOCODE_TO_UPRN = "geocode_to_uprn"
    FETCH_EPC = "fetch_epc"
    FETCH_OWNERSHIP = "fetch_ownership"
    CHECK_PLANNING_CONSTRAINTS = "check_planning_constraints"
    FETCH_COMPANY_DETAILS = "fetch_company_details"
    LOOKUP_COMPANY_NUMBER = "lookup_company_number"


@dataclass(frozen=True)
class ComplianceRisk:
    risk_type: str
    severity: Severity
    description: str
    recommendation: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.risk_type,
            "severity": self.severity.value,
            "description": self.description,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class Opportunity:
    opportunity_type: str
    priority: Severity
    description: str
    actionable: bool = True
    expiry_date: Optional[date] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.opportunity_type,
            "priority": self.priority.value,
            "description": self.description,
            "actionable": self.actionable,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
        }


@dataclass(frozen=True)
class IntelligenceReport:
    property_id: str
    risks: list[ComplianceRisk] = field(default_factory=list)
    opportunities: list[Opportunity] = field(default_factory=list)
    enrichment_plan: list[EnrichmentStep] = field(default_factory=list)
    provenance: list[DataProvenance] = field(default_factory=list)
    confidence_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "property_id": self.property_id,
            "risks": [risk.to_dict() for risk in self.risks],
            "opportunities": [opportunity.to_dict() for opportunity in self.opportunities],
            "enrichment_plan": [step.value for step in self.enrichment_plan],
            "provenance": [entry.to_dict() for entry in self.provenance],
            "confidence_score": self.confidence_score,
        }


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of the month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def confidence_score(provenance: Iterable[DataProvenance]) -> float:
    """Mean reliability weight of the contributing providers, 0 when there are none."""
    weights = [RELIABILITY_WEIGHTS[entry.reliability] for entry in provenance]
    if not weights:
        return 0.0
    return round(sum(weights) / len(weights), 2)


class DataIntelligenceService:
    """
    Derives risks, opportunities and enrichment plans from property records.

    ``today`` may be fixed at construction for deterministic reports.
    """

    def __init__(self, today: Optional[date] = None):
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def analyze_compliance_risks(self, record: EnrichedProperty) -> list[ComplianceRisk]:
        listing = record.listing
        risks: list[ComplianceRisk] = []
        today = self.today

        end_date = listing.licence.end_date
        if end_date and end_date < add_months(today, RISK_LICENCE_EXPIRY_MONTHS):
            expired = end_date < today
            risks.append(ComplianceRisk(
                risk_type="licence_expiry",
                severity=Severity.HIGH if expired else Severity.MEDIUM,
                description=(
                    f"HMO licence {'has expired' if expired else 'expires soon'} "
                    f"on {end_date.isoformat()}"
                ),
                recommendation="Contact property owner about licence renewal or acquisition opportunity",
            ))

        if listing.epc.rating in SUBSTANDARD_EPC_RATINGS:
            risks.append(ComplianceRisk(
                risk_type="epc_compliance",
                severity=Severity.HIGH,
                description=f"EPC rating {listing.epc.rating} does not meet minimum rental standards",
                recommendation="Property requires energy efficiency improvements before letting",
            ))

        if listing.planning.article_4_area:
            risks.append(ComplianceRisk(
                risk_type="article_4_restriction",
                severity=Severity.MEDIUM,
                description=(
                    "Property is in an Article 4 direction area - planning permission "
                    "required for HMO conversion"
                ),
                recommendation="Check local planning authority requirements before conversion",
            ))

        if listing.bedrooms >= MANDATORY_LICENSING_MIN_OCCUPANTS and not listing.licence.licence_id:
            risks.append(ComplianceRisk(
                risk_type="mandatory_licensing",
                severity=Severity.HIGH,
                description="Property with 5+ bedrooms requires mandatory HMO licence",
                recommendation="Verify licensing status with local authority",
            ))

        return risks

    def identify_opportunities(self, record: EnrichedProperty) -> list[Opportunity]:
        listing = record.listing
        analysis = record.analysis
        opportunities: list[Opportunity] = []
        today = self.today

        end_date = listing.licence.end_date
        if end_date and today < end_date < add_months(today, OPPORTUNITY_LICENCE_EXPIRY_MONTHS):
            opportunities.append(Opportunity(
                opportunity_type="licence_expiry_acquisition",
                priority=Severity.HIGH,
                description="Licence expiring soon - owner may be willing to sell",
                expiry_date=end_date,
            ))

        if analysis is None:
            return opportunities

        if analysis.is_potential_hmo or analysis.classification is HmoClassification.READY_TO_GO:
            opportunities.append(Opportunity(
                opportunity_type="hmo_conversion",
                priority=Severity.HIGH,
                description="Property identified as suitable for HMO conversion",
            ))

        if analysis.has_value_add_potential:
            opportunities.append(Opportunity(
                opportunity_type="value_add",
                priority=Severity.MEDIUM,
                description="Property has potential for value improvement",
            ))

        if (
            analysis.yield_band is YieldBand.HIGH
            or analysis.estimated_yield_percentage > YIELD_BAND_HIGH_PERCENT
        ):
            opportunities.append(Opportunity(
                opportunity_type="high_yield",
                priority=Severity.HIGH,
                description=(
                    "Property offers above-average yield potential "
                    f"({format_percent(analysis.estimated_yield_percentage)} gross)"
                ),
            ))

        return opportunities

    @staticmethod
    def plan_enrichment_chain(listing: PropertyListing) -> list[EnrichmentStep]:
        """
        Advisory list of lookups that would fill gaps in the listing.

        Steps are only planned while the fields they populate are absent.
        """
        steps: list[EnrichmentStep] = []
        has_postcode = bool(listing.postcode)
        has_uprn = bool(listing.uprn)

        if has_postcode and not has_uprn:
            steps.append(EnrichmentStep.GEOCODE_TO_UPRN)

        if has_postcode or has_uprn:
            if not listing.epc.rating:
                steps.append(EnrichmentStep.FETCH_EPC)
            if not listing.owner.owner_name:
                steps.append(EnrichmentStep.FETCH_OWNERSHIP)
            if listing.planning.article_4_area is None:
                steps.append(EnrichmentStep.CHECK_PLANNING_CONSTRAINTS)

        owner = listing.owner
        if owner.company_number and owner.directors is None:
            steps.append(EnrichmentStep.FETCH_COMPANY_DETAILS)

        if owner.owner_type is OwnerType.COMPANY and owner.company_name and not owner.company_number:
            steps.append(EnrichmentStep.LOOKUP_COMPANY_NUMBER)

        return steps

    def build_report(self, record: EnrichedProperty) -> IntelligenceReport:
        return IntelligenceReport(
            property_id=record.id,
            risks=self.analyze_compliance_risks(record),
            opportunities=self.identify_opportunities(record),
            enrichment_plan=self.plan_enrichment_chain(record.listing),
            provenance=list(record.provenance),
            confidence_score=confidence_score(record.provenance),
        )
