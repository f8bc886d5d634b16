"""
PropertyData national HMO register.

Phase 1 source. Fetches licensed HMOs postcode by postcode; a failing
postcode is logged and skipped so the rest of the batch still arrives.
"""

from __future__ import annotations

import hashlib
import logging
import math
from typing import Any, Optional

import requests

from adapters.http import DEFAULT_TIMEOUT_SECONDS, DEFAULT_USER_AGENT, HttpAdapterMixin
from core.ingestion.adapter import SourceAdapter
from core.ingestion.rate_limit import ProviderRateLimiter
from core.ingestion.schema import normalise_uk_postcode
from core.models import ListingType, PropertyListing, Reliability


logger = logging.getLogger(__name__)


DEFAULT_POSTCODES = ("N7 6PA", "E2 9PL", "SE5 8TR", "NW5 2HB", "E8 1EJ")
BEDROOMS_PER_BATHROOM = 2.5


def _extract_records(data: Any) -> Optional[list[dict]]:
    """Pull register entries out of the several response shapes the API uses."""
    if not isinstance(data, dict):
        return None
    for key in ("data", "hmo_licences", "results"):
        if isinstance(data.get(key), list):
            return data[key]
    if isinstance(data.get("result"), dict):
        return [data["result"]]
    if isinstance(data.get("data"), dict):
        return [data["data"]]
    return None


class PropertyDataHMOAdapter(SourceAdapter, HttpAdapterMixin):
    """Licensed HMOs from the PropertyData national HMO register."""

    provider = "propertydata"
    reliability = Reliability.HIGH

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.propertydata.co.uk",
        postcodes: Optional[list[str]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        SourceAdapter.__init__(self)
        self._init_http(base_url, timeout, user_agent, session, rate_limiter)
        self._api_key = api_key
        self._postcodes = [normalise_uk_postcode(pc) for pc in (postcodes or DEFAULT_POSTCODES)]

    @property
    def name(self) -> str:
        return "PropertyData HMO"

    def has_credentials(self) -> bool:
        return bool(self._api_key)

    def fetch(self) -> list[PropertyListing]:
        self.clear_rejections()
        if not self._check_credentials():
            return []

        listings: list[PropertyListing] = []
        for postcode in self._postcodes:
            data = self._request_json(
                "GET",
                "/national-hmo-register",
                params={"key": self._api_key, "postcode": postcode},
            )
            if data is None:
                continue
            if data.get("status") == "error":
                logger.warning("PropertyData error for %s: %s", postcode, data.get("message"))
                continue

            records = _extract_records(data)
            if records is None:
                logger.warning("Unexpected PropertyData response for %s: %s", postcode, sorted(data))
                continue

            for record in records:
                listing = self._normalise(record, postcode)
                if listing is not None:
                    listings.append(listing)
            logger.info("PropertyData returned %d HMO(s) for %s", len(records), postcode)

        return listings

    def _normalise(self, record: dict[str, Any], queried_postcode: str) -> Optional[PropertyListing]:
        address = record.get("address") or record.get("property_address") or ""
        postcode = record.get("postcode") or queried_postcode
        licence_number = record.get("licence_number") or record.get("licence_reference")
        external_id = licence_number or self._fallback_id(postcode, address)

        bedrooms = record.get("bedrooms") or record.get("number_of_bedrooms") or record.get("max_occupants")
        try:
            bedrooms = int(bedrooms) if bedrooms else 0
        except (TypeError, ValueError):
            bedrooms = 0
        authority = record.get("local_authority")

        raw = {
            "address": address,
            "postcode": postcode,
            "city": authority,
            "title": f"Licensed HMO - {address}" if address else None,
            "listing_type": ListingType.RENT,
            "property_type": "HMO",
            "bedrooms": bedrooms,
            "bathrooms": math.ceil(bedrooms / BEDROOMS_PER_BATHROOM) if bedrooms else 0,
            "latitude": record.get("latitude"),
            "longitude": record.get("longitude"),
            "uprn": record.get("uprn"),
            "source_url": "https://propertydata.co.uk",
            "description": (
                f"Licensed HMO registered with {authority or 'local council'}. "
                f"Reference: {licence_number or 'N/A'}."
            ),
            "licence": dict(
                licence_id=licence_number,
                start_date=record.get("licence_start") or record.get("licence_issue_date"),
                end_date=record.get("licence_end") or record.get("licence_expiry_date"),
                status=record.get("status") or record.get("licence_status") or "active",
                max_occupants=record.get("max_occupants") or record.get("maximum_occupancy"),
                holder_name=record.get("licence_holder"),
            ),
        }
        return self.validate_and_normalise(raw, external_id)

    @staticmethod
    def _fallback_id(postcode: str, address: str) -> str:
        """Stable id for register entries published without a licence number."""
        digest = hashlib.sha256(f"{postcode}|{address}".lower().encode()).hexdigest()[:12]
        return f"PD-{normalise_uk_postcode(postcode).replace(' ', '')}-{digest}"
