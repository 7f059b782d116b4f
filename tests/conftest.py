"""
Shared fixtures: fixed dates, settable clocks and a scripted HTTP transport.
"""

from datetime import date, datetime
from pathlib import Path
import sys

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sourcing.transport import TransportResponse


class ScriptedTransport:
    """
    HTTP transport that answers from a script instead of the network.

    `routes` maps a URL substring to a list of responses (TransportResponse
    or an exception to raise). Responses are consumed in order; the last
    one repeats.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        return self._answer("GET", url, params)

    def post(self, url, json=None, params=None, headers=None, timeout=None):
        return self._answer("POST", url, params)

    def _answer(self, method, url, params):
        self.calls.append((method, url, params))
        for needle, script in self.routes.items():
            if needle in url:
                outcome = script.pop(0) if len(script) > 1 else script[0]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return TransportResponse(status=404, body={"error": "not found"})

    def calls_to(self, needle):
        return [c for c in self.calls if needle in c[1]]


class SettableClock:
    """Callable clock whose value tests move forward by hand."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def ok(body, headers=None):
    return TransportResponse(status=200, body=body, headers=headers or {})


@pytest.fixture
def reference_date():
    """Fixed reference date for deterministic tests."""
    return date(2024, 6, 1)


@pytest.fixture
def now_clock():
    """Wall clock for the quota ledger."""
    return SettableClock(datetime(2024, 6, 15, 12, 0))


@pytest.fixture
def epoch_clock():
    """Epoch-seconds clock for the cache."""
    return SettableClock(1_717_200_000.0)


@pytest.fixture
def scripted_transport():
    """Factory for scripted transports."""
    return ScriptedTransport


@pytest.fixture
def ok_response():
    """Factory for 200 responses."""
    return ok
