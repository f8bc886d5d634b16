"""
HTTP plumbing shared by provider adapters.

Every call goes through a requests.Session with a timeout and waits on the
provider's rate limiter first. Network errors, timeouts, non-2xx responses
and invalid JSON all come back as None.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Optional

import requests

from core.ingestion.rate_limit import ProviderRateLimiter


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_USER_AGENT = "HMODealEngine/1.0 (+property research)"


class HttpAdapterMixin:
    """
    Mixin for adapters backed by a JSON HTTP API.

    Subclasses set ``provider`` (the rate limiter key), call ``_init_http``
    from their constructor and implement ``has_credentials``.
    """

    provider: ClassVar[str] = ""

    def _init_http(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": user_agent,
            "Accept": "application/json",
        })
        self._rate_limiter = rate_limiter or ProviderRateLimiter()
        self._warned_missing_credentials = False

    def has_credentials(self) -> bool:
        return True

    def _check_credentials(self) -> bool:
        """False (with one warning per adapter instance) when credentials are missing."""
        if self.has_credentials():
            return True
        if not self._warned_missing_credentials:
            logger.warning("%s credentials not configured; adapter disabled", self.name)
            self._warned_missing_credentials = True
        return False

    def _request_json(self, method: str, path: str, **kwargs: Any) -> Optional[Any]:
        """
        Make a rate-limited request and decode the JSON body.

        Args:
            method: HTTP method
            path: Path relative to the base URL, or an absolute URL
            **kwargs: Passed to requests (params, json, headers, auth, data)

        Returns:
            Decoded JSON, or None on any failure
        """
        url = path if path.startswith("http") else f"{self._base_url}{path}"
        self._rate_limiter.wait(self.provider)
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.Timeout:
            logger.warning("%s request timed out after %ss: %s", self.name, self._timeout, path)
            return None
        except requests.RequestException as e:
            logger.warning("%s request failed for %s: %s", self.name, path, e)
            return None

        if not response.ok:
            logger.warning("%s returned HTTP %s for %s", self.name, response.status_code, path)
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("%s returned invalid JSON for %s", self.name, path)
            return None

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()


def format_address(address: Any, keys: tuple[str, ...]) -> Optional[str]:
    """Join the non-empty parts of a structured address."""
    if not address:
        return None
    if isinstance(address, str):
        return address.strip() or None
    if isinstance(address, dict):
        parts = [str(address[key]).strip() for key in keys if address.get(key)]
        return ", ".join(parts) or None
    return None


def normalise_address(address: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    cleaned = "".join(ch for ch in address.lower() if ch.isalnum() or ch.isspace())
    return " ".join(cleaned.split())


def address_similarity(a: str, b: str) -> float:
    """Share of words in common, relative to the longer address."""
    words_a = set(normalise_address(a).split())
    words_b = set(normalise_address(b).split())
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))
