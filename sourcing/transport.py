"""
HTTP Transport

The orchestrator only needs get/post with a timeout returning status,
body and headers. RequestsTransport is the production implementation;
tests pass a fake with the same two methods.
"""

from typing import Any, Mapping, Optional, Protocol
from dataclasses import dataclass, field

import requests


# =============================================================================
# Configuration
# =============================================================================

USER_AGENT = "ARVValuationEngine/1.0"
REQUEST_TIMEOUT_SECONDS = 30


# =============================================================================
# Errors
# =============================================================================

class SourceError(Exception):
    """A source call failed in a way retrying will not fix (4xx, bad payload)."""

    def __init__(self, message: str, source_id: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.source_id = source_id
        self.status = status


class TransientSourceError(SourceError):
    """A source call failed in a way that may succeed on retry (network, 429, 5xx)."""


# =============================================================================
# Transport
# =============================================================================

@dataclass(frozen=True)
class TransportResponse:
    """Status, decoded body and headers of one HTTP exchange."""
    status: int
    body: Any
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpTransport(Protocol):
    """HTTP collaborator injected into the orchestrator."""

    def get(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        ...

    def post(
        self,
        url: str,
        json: Optional[Any] = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        ...


def raise_for_status(response: TransportResponse, source_id: str) -> None:
    """
    Convert an error status into the matching SourceError.

    Raises:
        TransientSourceError: 429 and 5xx
        SourceError: other 4xx
    """
    if response.ok:
        return
    message = f"{source_id} returned HTTP {response.status}"
    if response.status == 429 or response.status >= 500:
        raise TransientSourceError(message, source_id=source_id, status=response.status)
    raise SourceError(message, source_id=source_id, status=response.status)


class RequestsTransport:
    """
    requests-backed transport.

    Network failures and timeouts become TransientSourceError; HTTP error
    statuses are returned, not raised, so usage headers can still be read.
    """

    def __init__(self, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        })

    def get(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        return self._request("GET", url, params=params, headers=headers, timeout=timeout)

    def post(
        self,
        url: str,
        json: Optional[Any] = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        return self._request(
            "POST", url, json=json, params=params, headers=headers, timeout=timeout
        )

    def _request(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> TransportResponse:
        try:
            response = self._session.request(
                method,
                url,
                timeout=timeout or self._timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise TransientSourceError(f"{method} {url} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = response.text

        return TransportResponse(
            status=response.status_code,
            body=body,
            headers=dict(response.headers),
        )

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
