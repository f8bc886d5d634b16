"""
Shared fixtures: fake HTTP plumbing, listing factories and stores.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import requests

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.ingestion.rate_limit import ProviderRateLimiter
from core.models import EnrichedProperty, PropertyListing
from core.persistence import InMemoryPropertyStore


# =============================================================================
# Fake HTTP
# =============================================================================

class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code=200, invalid_json=False):
        self._payload = payload
        self.status_code = status_code
        self._invalid_json = invalid_json

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._invalid_json:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """
    Records requests and answers them from a route table.

    Routes map (METHOD, url substring) to a FakeResponse or an exception
    instance. The first matching route wins; unmatched requests get a 404.
    """

    def __init__(self, routes=None):
        self.routes = list((routes or {}).items())
        self.headers = {}
        self.calls = []
        self.closed = False

    def add(self, method, fragment, response):
        self.routes.append(((method, fragment), response))

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        for (route_method, fragment), response in self.routes:
            if route_method == method and fragment in url:
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse({"error": "not found"}, status_code=404)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def no_wait_limiter():
    """Rate limiter with zero spacing for every provider."""
    return ProviderRateLimiter(default_interval=0.0, sleep=lambda seconds: None)


@pytest.fixture
def timeout_error():
    return requests.Timeout("timed out")


# =============================================================================
# Listings and Records
# =============================================================================

@pytest.fixture
def reference_time():
    """Fixed clock for deterministic lifecycle tests."""
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_listing():
    """Factory fixture for creating property listings."""
    def _create(
        external_id="L-1",
        postcode="M14 5RQ",
        address="12 Wilmslow Road, Manchester",
        bedrooms=6,
        bathrooms=2,
        **overrides,
    ) -> PropertyListing:
        return PropertyListing(
            external_id=external_id,
            postcode=postcode,
            address=address,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            **overrides,
        )
    return _create


@pytest.fixture
def make_record(make_listing, reference_time):
    """Factory fixture for creating persisted property records."""
    def _create(listing=None, seen_at=None, **listing_overrides) -> EnrichedProperty:
        listing = listing or make_listing(**listing_overrides)
        return EnrichedProperty.create(listing, source_name="Test Source", seen_at=seen_at or reference_time)
    return _create


@pytest.fixture
def memory_store():
    return InMemoryPropertyStore()
