"""
Tests for the Source Registry and Quota Ledger

Verifies:
- Local counting and provider-reported usage headers
- Threshold blocking and fallback call order
- Period rollover by key, daily vs monthly budgets
- Usage never decreases within a period
- One warning per source per period
"""

import logging
import pytest
from datetime import datetime
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sourcing.quota import (
    QuotaLedger,
    QuotaStatus,
    extract_quota_headers,
    format_duration,
    format_selection_log,
    status_for,
    time_until_reset,
)
from sourcing.registry import (
    DEFAULT_PRIORITY,
    QuotaPeriod,
    SourceRegistration,
    get_source,
    register_source,
)
from sourcing.stores import InMemoryStore
from utils.config import ValuationConfig


# =============================================================================
# Test Fixtures
# =============================================================================

class FakeNow:
    """Settable datetime clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeNow(datetime(2024, 6, 15, 12, 0))


@pytest.fixture
def ledger(clock):
    return QuotaLedger(InMemoryStore(), clock=clock)


def usage_headers(limit: int, remaining: int) -> dict:
    return {
        "X-RapidAPI-Requests-Limit": str(limit),
        "X-RapidAPI-Requests-Remaining": str(remaining),
    }


# =============================================================================
# Registry
# =============================================================================

class TestSourceRegistry:
    """Tests for source registration records."""

    def test_default_sources_registered(self):
        assert get_source("private_zillow").limit == 250
        assert get_source("us_real_estate").limit == 300
        assert get_source("redfin").limit == 111
        assert get_source("gemini").period == QuotaPeriod.DAY
        assert DEFAULT_PRIORITY[0] == "private_zillow"

    def test_duplicate_registration_rejected(self):
        with pytest.raises(ValueError, match="already registered"):
            register_source(get_source("redfin"))

    @pytest.mark.parametrize("kwargs", [
        {"source_id": "Bad Id", "source_name": "x", "limit": 10, "period": QuotaPeriod.DAY},
        {"source_id": "ok", "source_name": "", "limit": 10, "period": QuotaPeriod.DAY},
        {"source_id": "ok", "source_name": "x", "limit": 0, "period": QuotaPeriod.DAY},
        {"source_id": "ok", "source_name": "x", "limit": 10, "period": QuotaPeriod.DAY,
         "threshold_percent": 120},
    ])
    def test_invalid_registration(self, kwargs):
        with pytest.raises(ValueError):
            SourceRegistration(**kwargs)


# =============================================================================
# Usage Counting
# =============================================================================

class TestUsageCounting:
    """Tests for local counters and reported headers."""

    def test_local_counter(self, ledger):
        """Each call without headers increments the counter."""
        for _ in range(3):
            ledger.record_call("us_real_estate")

        usage = ledger.get_usage("us_real_estate")

        assert usage.used == 3
        assert usage.remaining == 297
        assert usage.period_key == "2024-06"

    def test_reported_headers_win_when_higher(self, ledger):
        """Provider-reported usage overrides a lower local count."""
        record = ledger.record_call("private_zillow", usage_headers(250, 25))

        assert record.used == 225
        assert record.percentage == pytest.approx(90.0)

    def test_usage_never_decreases(self, ledger):
        """A later, lower report does not roll usage back."""
        ledger.record_call("private_zillow", usage_headers(250, 25))
        record = ledger.record_call("private_zillow", usage_headers(250, 30))

        assert record.used == 225

    def test_monotonic_over_many_calls(self, ledger):
        previous = 0
        for remaining in (290, 295, 280, 285, 270):
            used = ledger.record_call("us_real_estate", usage_headers(300, remaining)).used
            assert used >= previous
            previous = used

    def test_header_names_case_insensitive(self):
        assert extract_quota_headers({"x-rapidapi-requests-limit": "100", "X-RAPIDAPI-REQUESTS-REMAINING": "40"}) == (100, 40)
        assert extract_quota_headers({"x-rapidapi-requests-limit": "100"}) is None
        assert extract_quota_headers(None) is None

    def test_reset_usage(self, ledger):
        ledger.record_call("redfin", usage_headers(111, 10))
        ledger.reset_usage("redfin")

        assert ledger.get_usage("redfin").used == 0

    def test_unknown_source(self, ledger):
        with pytest.raises(ValueError, match="Unknown source"):
            ledger.record_call("nowhere")


# =============================================================================
# Blocking and Call Order
# =============================================================================

class TestBlocking:
    """Tests for threshold blocking and fallback order."""

    def test_source_at_threshold_is_skipped(self, ledger):
        """225/250 is 90%, so the preferred source drops out of the order."""
        ledger.record_call("private_zillow", usage_headers(250, 25))

        assert not ledger.is_available("private_zillow")
        assert ledger.call_order("private_zillow") == ["us_real_estate", "redfin", "gemini"]

    def test_below_threshold_is_available(self, ledger):
        ledger.record_call("private_zillow", usage_headers(250, 26))

        assert ledger.is_available("private_zillow")
        assert ledger.call_order("private_zillow")[0] == "private_zillow"

    def test_preferred_first_then_priority(self, ledger):
        assert ledger.candidate_order("redfin") == ["redfin", "private_zillow", "us_real_estate", "gemini"]
        assert ledger.candidate_order("auto") == list(DEFAULT_PRIORITY)
        assert ledger.candidate_order("unknown_source") == list(DEFAULT_PRIORITY)

    def test_per_source_threshold(self, clock):
        """A source-specific threshold overrides the global one."""
        config = ValuationConfig(source_thresholds={"redfin": 50.0})
        ledger = QuotaLedger(InMemoryStore(), config=config, clock=clock)

        ledger.record_call("redfin", usage_headers(100, 50))

        assert not ledger.is_available("redfin")

    def test_configured_limit(self, clock):
        """Configured limits replace the registered budget."""
        config = ValuationConfig(source_limits={"gemini": 10})
        ledger = QuotaLedger(InMemoryStore(), config=config, clock=clock)

        for _ in range(9):
            ledger.record_call("gemini")

        assert ledger.get_usage("gemini").limit == 10
        assert not ledger.is_available("gemini")

    def test_blocked_for_rest_of_period(self, ledger, clock):
        """Once blocked, a source stays blocked until the key rolls over."""
        ledger.record_call("private_zillow", usage_headers(250, 0))
        assert not ledger.is_available("private_zillow")

        clock.now = datetime(2024, 6, 30, 23, 59)
        assert not ledger.is_available("private_zillow")

        clock.now = datetime(2024, 7, 1, 0, 0)
        assert ledger.is_available("private_zillow")
        assert ledger.get_usage("private_zillow").used == 0

    def test_daily_budget_rolls_daily(self, ledger, clock):
        ledger.record_call("gemini")
        assert ledger.get_usage("gemini").period_key == "2024-06-15"

        clock.now = datetime(2024, 6, 16, 0, 1)
        assert ledger.get_usage("gemini").used == 0

    def test_custom_sources(self, clock):
        """Ledgers can be built over an explicit source list."""
        sources = [
            SourceRegistration(source_id="alpha", source_name="Alpha", limit=10, period=QuotaPeriod.DAY),
            SourceRegistration(source_id="beta", source_name="Beta", limit=10, period=QuotaPeriod.DAY),
        ]
        ledger = QuotaLedger(InMemoryStore(), sources=sources, priority=("beta", "alpha"), clock=clock)

        assert ledger.priority == ["beta", "alpha"]
        assert ledger.call_order("alpha") == ["alpha", "beta"]


class TestWarnings:
    """Tests for threshold warnings."""

    def test_warns_once_per_period(self, ledger, caplog):
        with caplog.at_level(logging.WARNING, logger="sourcing.quota"):
            ledger.record_call("private_zillow", usage_headers(250, 25))
            ledger.record_call("private_zillow", usage_headers(250, 20))

        warnings = [r for r in caplog.records if "blocked until period rolls over" in r.getMessage()]
        assert len(warnings) == 1

    def test_new_period_warns_again_and_drops_old_marker(self, ledger, clock, caplog):
        """Markers are kept per source, so rollover replaces rather than accumulates."""
        with caplog.at_level(logging.WARNING, logger="sourcing.quota"):
            ledger.record_call("private_zillow", usage_headers(250, 25))
            clock.now = datetime(2024, 7, 1, 9, 0)
            ledger.record_call("private_zillow", usage_headers(250, 20))

        warnings = [r for r in caplog.records if "blocked until period rolls over" in r.getMessage()]
        assert ["for 2024-07;" in r.getMessage() for r in warnings] == [False, True]
        assert ledger._warned == {"private_zillow": "2024-07"}


# =============================================================================
# Reporting
# =============================================================================

class TestReporting:
    """Tests for status levels, reset timing and summaries."""

    @pytest.mark.parametrize("percentage,remaining,expected", [
        (10, 90, QuotaStatus.HEALTHY),
        (80, 20, QuotaStatus.WARNING),
        (95, 5, QuotaStatus.CRITICAL),
        (100, 0, QuotaStatus.EXHAUSTED),
    ])
    def test_status_levels(self, percentage, remaining, expected):
        assert status_for(percentage, remaining) == expected

    def test_time_until_reset(self, clock):
        monthly = time_until_reset(QuotaPeriod.MONTH, clock())
        daily = time_until_reset(QuotaPeriod.DAY, clock())

        assert format_duration(monthly) == "15d 12h"
        assert format_duration(daily) == "12h 0m"

    def test_december_rolls_into_january(self):
        delta = time_until_reset(QuotaPeriod.MONTH, datetime(2024, 12, 31, 12, 0))
        assert format_duration(delta) == "12h 0m"

    def test_summary(self, ledger):
        ledger.record_call("private_zillow", usage_headers(250, 25))

        summary = ledger.summary()

        assert set(summary["sources"]) == set(DEFAULT_PRIORITY)
        assert "private_zillow" not in summary["available_sources"]
        assert summary["sources"]["private_zillow"]["status"] == "critical"
        assert summary["sources"]["private_zillow"]["usage"]["percentage"] == 90.0
        assert summary["total_used"] == 225

    def test_selection_log(self):
        assert format_selection_log(None, "redfin") == "Auto mode selected redfin"
        assert format_selection_log("redfin", "redfin") == "Using primary API: redfin"
        assert format_selection_log("private_zillow", "redfin") == \
            "Primary private_zillow unavailable, using fallback: redfin"
