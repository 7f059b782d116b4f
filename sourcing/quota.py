"""
Quota Ledger - Per-Source Call Budgets

Tracks usage per external source per tracking period and decides which
sources may still be called:

- Usage is keyed by source and period key ("2025-11" or "2025-11-03");
  a new period is a new key, so rollover needs no reset routine
- Provider-reported limit/remaining headers are used when present,
  otherwise a local increment-on-call counter
- A source is blocked once usage reaches its threshold (default 90%)
  and stays blocked for the rest of the period
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional, Sequence

from utils.config import ValuationConfig

from sourcing.registry import (
    DEFAULT_PRIORITY,
    QuotaPeriod,
    SourceRegistration,
    build_source_map,
)
from sourcing.stores import KeyValueStore


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Constants
# =============================================================================

LIMIT_HEADER = "x-rapidapi-requests-limit"
REMAINING_HEADER = "x-rapidapi-requests-remaining"

AUTO = "auto"

# Status level thresholds (percent of limit)
STATUS_WARNING_PERCENT = 75
STATUS_CRITICAL_PERCENT = 90

# Counters outlive their period slightly, then the store drops them
COUNTER_TTL_SECONDS = {
    QuotaPeriod.MONTH: 32 * 24 * 3600,
    QuotaPeriod.DAY: 2 * 24 * 3600,
}


class QuotaStatus(Enum):
    """Display level for a source's usage."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


def status_for(percentage: float, remaining: int) -> QuotaStatus:
    """Map a usage percentage to its display level."""
    if remaining <= 0 or percentage >= 100:
        return QuotaStatus.EXHAUSTED
    if percentage >= STATUS_CRITICAL_PERCENT:
        return QuotaStatus.CRITICAL
    if percentage >= STATUS_WARNING_PERCENT:
        return QuotaStatus.WARNING
    return QuotaStatus.HEALTHY


# =============================================================================
# Period Helpers
# =============================================================================

def period_key(period: QuotaPeriod, now: datetime) -> str:
    """Period key: "YYYY-MM" for monthly budgets, "YYYY-MM-DD" for daily ones."""
    if period == QuotaPeriod.DAY:
        return now.strftime("%Y-%m-%d")
    return now.strftime("%Y-%m")


def usage_key(source_id: str, key: str) -> str:
    """Store key for a source's usage in one period."""
    return f"api_usage_{source_id}_{key}"


def time_until_reset(period: QuotaPeriod, now: datetime) -> timedelta:
    """Time until the period key rolls over."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == QuotaPeriod.DAY:
        return midnight + timedelta(days=1) - now

    first = midnight.replace(day=1)
    if first.month == 12:
        next_first = first.replace(year=first.year + 1, month=1)
    else:
        next_first = first.replace(month=first.month + 1)
    return next_first - now


def format_duration(delta: timedelta) -> str:
    """Compact duration, e.g. '3d 4h' or '5h 12m'."""
    total_minutes = int(delta.total_seconds() // 60)
    days, rem = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h"
    return f"{hours}h {minutes}m"


def extract_quota_headers(headers: Optional[Mapping[str, str]]) -> Optional[tuple[int, int]]:
    """
    Read provider-reported (limit, remaining) from response headers.

    Header names match case-insensitively. Returns None unless both are
    present and numeric.
    """
    if not headers:
        return None
    lowered = {str(k).lower(): v for k, v in headers.items()}
    try:
        limit = int(lowered[LIMIT_HEADER])
        remaining = int(lowered[REMAINING_HEADER])
    except (KeyError, TypeError, ValueError):
        return None
    if limit <= 0:
        return None
    return limit, max(0, remaining)


def format_selection_log(preferred: Optional[str], selected: str) -> str:
    """Human-readable note on which source served a request."""
    if not preferred or preferred == AUTO:
        return f"Auto mode selected {selected}"
    if preferred == selected:
        return f"Using primary API: {selected}"
    return f"Primary {preferred} unavailable, using fallback: {selected}"


# =============================================================================
# Usage Record
# =============================================================================

@dataclass(frozen=True)
class UsageRecord:
    """Usage of one source in one period."""
    source_id: str
    period_key: str
    limit: int
    used: int
    remaining: int
    percentage: float
    timestamp: str

    @classmethod
    def from_counts(
        cls,
        source_id: str,
        key: str,
        limit: int,
        used: int,
        now: datetime,
    ) -> "UsageRecord":
        return cls(
            source_id=source_id,
            period_key=key,
            limit=limit,
            used=used,
            remaining=max(0, limit - used),
            percentage=(used / limit * 100) if limit else 100.0,
            timestamp=now.isoformat(),
        )

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "period_key": self.period_key,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "percentage": round(self.percentage, 1),
            "timestamp": self.timestamp,
        }


class QuotaLedger:
    """
    Usage counters and block decisions for external sources.

    State lives in the injected store, so several processes can share
    one ledger through Redis.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[ValuationConfig] = None,
        sources: Optional[Iterable[SourceRegistration]] = None,
        priority: Sequence[str] = DEFAULT_PRIORITY,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize ledger.

        Args:
            store: Counter store
            config: Thresholds and limit overrides (default: ValuationConfig())
            sources: Source registrations (default: active registered sources)
            priority: Default call order
            clock: Current local time
        """
        self._store = store
        self._config = config or ValuationConfig()
        self._sources = build_source_map(sources)
        self._priority = [s for s in priority if s in self._sources]
        self._clock = clock
        self._warned: dict[str, str] = {}  # source_id -> period key already warned for
        self._warned_lock = threading.Lock()

    # =========================================================================
    # Source Lookups
    # =========================================================================

    @property
    def priority(self) -> list[str]:
        return list(self._priority)

    def registration(self, source_id: str) -> SourceRegistration:
        """
        Raises:
            ValueError: For an unregistered source
        """
        try:
            return self._sources[source_id]
        except KeyError:
            raise ValueError(f"Unknown source: {source_id}") from None

    def limit_for(self, source_id: str) -> int:
        return self._config.source_limits.get(source_id, self.registration(source_id).limit)

    def threshold_for(self, source_id: str) -> float:
        return self._config.threshold_for(
            source_id, self.registration(source_id).threshold_percent
        )

    def period_key_for(self, source_id: str) -> str:
        return period_key(self.registration(source_id).period, self._clock())

    # =========================================================================
    # Usage
    # =========================================================================

    def get_usage(self, source_id: str) -> UsageRecord:
        """Current usage for a source in the current period."""
        now = self._clock()
        key = period_key(self.registration(source_id).period, now)
        base = usage_key(source_id, key)

        count = int(self._store.get(f"{base}_count") or 0)
        reported = self._store.get(base) or {}

        limit = int(reported.get("limit") or self.limit_for(source_id))
        used = max(count, int(reported.get("used") or 0))
        return UsageRecord.from_counts(source_id, key, limit, used, now)

    def record_call(
        self,
        source_id: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> UsageRecord:
        """
        Account for one live call.

        The local counter always increments. When the response carried
        limit/remaining headers they are stored too; usage is the larger
        of the two so it never moves backwards within a period.
        """
        registration = self.registration(source_id)
        key = period_key(registration.period, self._clock())
        base = usage_key(source_id, key)
        ttl = COUNTER_TTL_SECONDS[registration.period]

        self._store.increment(f"{base}_count", 1, ttl_seconds=ttl)

        reported = extract_quota_headers(headers)
        if reported is not None:
            limit, remaining = reported
            previous = self._store.get(base) or {}
            used = max(limit - remaining, int(previous.get("used") or 0))
            self._store.set(base, {"limit": limit, "used": used}, ttl_seconds=ttl)

        record = self.get_usage(source_id)
        self._warn_once_over_threshold(record)
        return record

    def reset_usage(self, source_id: str) -> None:
        """Clear the current period's usage for a source (external reset)."""
        base = usage_key(source_id, self.period_key_for(source_id))
        self._store.delete(base)
        self._store.delete(f"{base}_count")
        with self._warned_lock:
            if self._warned.get(source_id) == self.period_key_for(source_id):
                del self._warned[source_id]

    def _warn_once_over_threshold(self, record: UsageRecord) -> None:
        threshold = self.threshold_for(record.source_id)
        if record.percentage < threshold:
            return

        # One marker per source; a new period key replaces the old one
        with self._warned_lock:
            if self._warned.get(record.source_id) == record.period_key:
                return
            self._warned[record.source_id] = record.period_key

        logger.warning(
            "%s usage at %.1f%% (%d/%d) for %s; blocked until period rolls over",
            record.source_id,
            record.percentage,
            record.used,
            record.limit,
            record.period_key,
        )

    # =========================================================================
    # Availability and Call Order
    # =========================================================================

    def is_available(self, source_id: str) -> bool:
        """Whether a source is below its block threshold this period."""
        if source_id not in self._sources or not self._sources[source_id].active:
            return False
        record = self.get_usage(source_id)
        return record.remaining > 0 and record.percentage < self.threshold_for(source_id)

    def candidate_order(self, preferred: Optional[str] = None) -> list[str]:
        """
        Preferred source first, then the rest in default priority.

        "auto", None or an unknown source give the default order.
        """
        if preferred and preferred != AUTO and preferred in self._priority:
            return [preferred] + [s for s in self._priority if s != preferred]
        return list(self._priority)

    def call_order(self, preferred: Optional[str] = None) -> list[str]:
        """Candidate order with blocked sources removed."""
        return [s for s in self.candidate_order(preferred) if self.is_available(s)]

    # =========================================================================
    # Reporting
    # =========================================================================

    def status(self, source_id: str) -> dict:
        """Usage, level and reset timing for one source."""
        registration = self.registration(source_id)
        record = self.get_usage(source_id)
        reset_in = time_until_reset(registration.period, self._clock())
        return {
            "source_name": registration.source_name,
            "period": registration.period.value,
            "usage": record.to_dict(),
            "status": status_for(record.percentage, record.remaining).value,
            "threshold_percent": self.threshold_for(source_id),
            "available": self.is_available(source_id),
            "resets_in_seconds": int(reset_in.total_seconds()),
            "resets_in": format_duration(reset_in),
        }

    def summary(self) -> dict:
        """Status of every source plus totals."""
        statuses = {s: self.status(s) for s in self._priority}
        return {
            "sources": statuses,
            "available_sources": [s for s, st in statuses.items() if st["available"]],
            "total_used": sum(st["usage"]["used"] for st in statuses.values()),
            "total_limit": sum(st["usage"]["limit"] for st in statuses.values()),
        }
