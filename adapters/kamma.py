"""
Kamma licensing determinations.

Answers which HMO licensing schemes apply at an address and whether an
Article 4 direction is in force. Used both as the last DETAILED stage
adapter and directly by the compliance check endpoint.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from adapters.http import DEFAULT_TIMEOUT_SECONDS, DEFAULT_USER_AGENT, HttpAdapterMixin
from core.compliance import ComplianceDetermination, ComplianceRequest, parse_determination_response
from core.ingestion.adapter import EnrichmentAdapter, EnrichmentPatch
from core.ingestion.rate_limit import ProviderRateLimiter
from core.models import PlanningDetails, PropertyListing, Reliability, utc_now


logger = logging.getLogger(__name__)


class KammaDeterminationAdapter(EnrichmentAdapter, HttpAdapterMixin):
    """
    Licensing scheme determinations from Kamma.

    All three credentials are required. Without them, or when the lookup
    fails, ``determine`` returns an unknown determination and ``enrich``
    an empty patch.
    """

    provider = "kamma"
    reliability = Reliability.HIGH

    def __init__(
        self,
        api_key: Optional[str],
        service_key: Optional[str],
        group_id: Optional[str],
        base_url: str = "https://api.kamma.co.uk",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        self._init_http(base_url, timeout, user_agent, session, rate_limiter)
        self._api_key = api_key
        self._service_key = service_key
        self._group_id = group_id

    @property
    def name(self) -> str:
        return "Kamma"

    def has_credentials(self) -> bool:
        return bool(self._api_key and self._service_key and self._group_id)

    def determine(self, request: ComplianceRequest) -> ComplianceDetermination:
        """Look up the determination for one property."""
        if not self._check_credentials():
            return ComplianceDetermination.unknown()

        data = self._request_json(
            "POST",
            "/v3/determinations/check",
            json=request.to_payload(),
            headers={
                "X-SSO-API-Key": self._api_key,
                "X-SSO-Service-Key": self._service_key,
                "X-SSO-Group-ID": self._group_id,
            },
        )
        if data is None:
            return ComplianceDetermination.unknown()
        return parse_determination_response(data)

    def enrich(self, listing: PropertyListing) -> EnrichmentPatch:
        try:
            request = ComplianceRequest(
                postcode=listing.postcode,
                uprn=listing.uprn,
                address=listing.address,
            )
        except ValueError:
            return EnrichmentPatch()

        determination = self.determine(request)
        if not determination.is_verified:
            return EnrichmentPatch()

        # A negative answer leaves Article 4 to the planning lookup
        return EnrichmentPatch(planning=PlanningDetails(
            article_4_area=True if determination.article4 else None,
            licensing_schemes=list(determination.schemes),
            compliance_advice=determination.advice_text,
            compliance_status=determination.status,
            compliance_checked_at=utc_now(),
        ))
