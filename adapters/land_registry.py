"""
HM Land Registry price paid data.

BASIC stage. Estimates a value for listings that have no purchase price or
estimate yet, using the median of recent completed sales at the same
postcode from the public SPARQL endpoint.
"""

from __future__ import annotations

import logging
import statistics
from datetime import date
from typing import Optional

import requests

from adapters.http import DEFAULT_TIMEOUT_SECONDS, DEFAULT_USER_AGENT, HttpAdapterMixin
from core.ingestion.adapter import EnrichmentAdapter, EnrichmentPatch, EnrichmentStage
from core.ingestion.rate_limit import ProviderRateLimiter
from core.intelligence import add_months
from core.models import PropertyListing, Reliability


logger = logging.getLogger(__name__)


MAX_SALE_AGE_YEARS = 3
MAX_SALES = 50

PRICE_PAID_QUERY = """
PREFIX lrppi: <http://landregistry.data.gov.uk/def/ppi/>
PREFIX lrcommon: <http://landregistry.data.gov.uk/def/common/>
PREFIX xsd: <http://www.w3.org/2001/XMLSchema#>
SELECT ?amount ?date WHERE {{
  ?transx lrppi:pricePaid ?amount ;
          lrppi:transactionDate ?date ;
          lrppi:propertyAddress ?addr .
  ?addr lrcommon:postcode "{postcode}" .
  FILTER (?date >= "{since}"^^xsd:date)
}}
ORDER BY DESC(?date)
LIMIT {limit}
"""


class LandRegistryValuationAdapter(EnrichmentAdapter, HttpAdapterMixin):
    """Median recent sale price at the listing's postcode."""

    stage = EnrichmentStage.BASIC
    provider = "land_registry"
    reliability = Reliability.AUTHORITATIVE

    def __init__(
        self,
        base_url: str = "https://landregistry.data.gov.uk",
        enabled: bool = True,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
        today: Optional[date] = None,
    ):
        self._init_http(base_url, timeout, user_agent, session, rate_limiter)
        self._enabled = enabled
        self._today = today

    @property
    def name(self) -> str:
        return "Land Registry"

    def has_credentials(self) -> bool:
        # Open data; no key, but can be switched off
        return self._enabled

    def enrich(self, listing: PropertyListing) -> EnrichmentPatch:
        if listing.purchase_price is not None or listing.estimated_value is not None:
            return EnrichmentPatch()
        if not self._check_credentials():
            return EnrichmentPatch()

        today = self._today or date.today()
        since = add_months(today, -12 * MAX_SALE_AGE_YEARS)
        query = PRICE_PAID_QUERY.format(
            postcode=listing.postcode,
            since=since.isoformat(),
            limit=MAX_SALES,
        )
        data = self._request_json(
            "POST",
            "/landregistry/query",
            data={"query": query},
            headers={"Accept": "application/sparql-results+json"},
        )
        if not isinstance(data, dict):
            return EnrichmentPatch()

        prices = []
        for binding in (data.get("results") or {}).get("bindings") or []:
            try:
                prices.append(int(float(binding["amount"]["value"])))
            except (KeyError, TypeError, ValueError):
                continue
        if not prices:
            logger.debug("No price paid data for %s", listing.postcode)
            return EnrichmentPatch()

        estimate = int(statistics.median(prices))
        logger.info("Land Registry estimate for %s: %d from %d sale(s)", listing.postcode, estimate, len(prices))
        return EnrichmentPatch(estimated_value=estimate)
