"""
Cache Store - TTL Caching for Sourced Data

Wraps a KeyValueStore with:
- Per-data-class TTL policy (property 7d, location 30d, market 1d)
- Deterministic key derivation from normalised address parts
- Freshness classification (fresh / stale / expired) and refresh decisions
- Zip-code guard for cached comps
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from utils.config import ValuationConfig
from valuation.comp_engine.models import ComparableSale
from valuation.models import PropertyDescriptor

from sourcing.stores import KeyValueStore


logger = logging.getLogger(__name__)

CACHE_VERSION = "1.0"


class DataClass(Enum):
    """Kinds of cached data, each with its own TTL."""
    PROPERTY_DETAILS = "property_details"
    COMPS = "comps"
    ESTIMATES = "estimates"
    SCHOOLS = "schools"
    WALK_SCORE = "walk_score"
    NOISE_SCORE = "noise_score"
    MARKET_RATES = "market_rates"
    RENTAL_RATES = "rental_rates"


class Freshness(Enum):
    """
    Age classification of a cache entry.

    FRESH: age <= stale_fraction * ttl
    STALE: age <= ttl (still served, but flagged)
    EXPIRED: age > ttl
    """
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


# =============================================================================
# Key Derivation
# =============================================================================

def _normalise(value: str) -> str:
    return (value or "").lower().strip()


def property_cache_key(address: str, city: str, state: str, zip_code: str) -> str:
    """Key for property-specific data, e.g. 'property_12 oak st_austin_tx_78701'."""
    parts = [_normalise(address), _normalise(city), _normalise(state), (zip_code or "").strip()]
    return "property_" + "_".join(parts)


def comps_cache_key(address: str, city: str, state: str, zip_code: str) -> str:
    """Key for comps fetched for one subject property."""
    parts = [_normalise(address), _normalise(city), _normalise(state), (zip_code or "").strip()]
    return "comps_" + "_".join(parts)


def zip_code_cache_key(zip_code: str, data_type: str) -> str:
    """Key for zip-level data (schools, walk score, noise score)."""
    return f"zipcode_{(zip_code or '').strip()}_{data_type}"


def area_cache_key(city: str, state: str, data_type: str) -> str:
    """Key for area-level data (market and rental trends)."""
    return f"area_{_normalise(city)}_{_normalise(state)}_{data_type}"


def cache_key_for(data_class: DataClass, prop: PropertyDescriptor) -> str:
    """Pick the key granularity appropriate to a data class."""
    if data_class == DataClass.COMPS:
        return comps_cache_key(prop.address, prop.city, prop.state, prop.zip_code)
    if data_class == DataClass.PROPERTY_DETAILS:
        return property_cache_key(prop.address, prop.city, prop.state, prop.zip_code)
    if data_class == DataClass.ESTIMATES:
        base = property_cache_key(prop.address, prop.city, prop.state, prop.zip_code)
        return f"{base}_{data_class.value}"
    if data_class in (DataClass.SCHOOLS, DataClass.WALK_SCORE, DataClass.NOISE_SCORE):
        return zip_code_cache_key(prop.zip_code, data_class.value)
    return area_cache_key(prop.city, prop.state, data_class.value)


# =============================================================================
# Cache Entry
# =============================================================================

@dataclass(frozen=True)
class CacheEntry:
    """
    A cached payload.

    Created on a successful fetch and superseded (never edited) on refresh.
    `timestamp` is epoch seconds.
    """
    data: Any
    timestamp: float
    source: str
    data_class: str
    version: str = CACHE_VERSION

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.timestamp)

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["CacheEntry"]:
        """Rebuild from stored form; malformed records yield None."""
        if not isinstance(raw, dict) or "data" not in raw or "timestamp" not in raw:
            return None
        try:
            timestamp = float(raw["timestamp"])
        except (TypeError, ValueError):
            return None
        return cls(
            data=raw["data"],
            timestamp=timestamp,
            source=str(raw.get("source") or "unknown"),
            data_class=str(raw.get("data_class") or ""),
            version=str(raw.get("version") or CACHE_VERSION),
        )

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "timestamp": self.timestamp,
            "source": self.source,
            "data_class": self.data_class,
            "version": self.version,
        }


class CacheStore:
    """
    TTL cache over a KeyValueStore.

    Stale entries are still served; only expired entries, or a forced
    refresh, trigger a refetch.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[ValuationConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize cache.

        Args:
            store: Backing key/value store
            config: TTL policy and stale fraction (default: ValuationConfig())
            clock: Epoch-seconds clock
        """
        self._store = store
        self._config = config or ValuationConfig()
        self._clock = clock

    def ttl_for(self, data_class: DataClass) -> int:
        """TTL in seconds for a data class."""
        return self._config.ttl_for(data_class.value)

    def get(self, key: str) -> Optional[CacheEntry]:
        """Read an entry, or None if absent or malformed."""
        raw = self._store.get(key)
        if raw is None:
            return None
        entry = CacheEntry.from_dict(raw)
        if entry is None:
            logger.warning("Ignoring malformed cache entry for %s", key)
        return entry

    def set(self, key: str, data: Any, source: str, data_class: DataClass) -> CacheEntry:
        """Store a freshly fetched payload, superseding any previous entry."""
        entry = CacheEntry(
            data=data,
            timestamp=self._clock(),
            source=source,
            data_class=data_class.value,
        )
        self._store.set(key, entry.to_dict(), ttl_seconds=self.ttl_for(data_class))
        logger.debug("Cached %s from %s", key, source)
        return entry

    def invalidate(self, key: str) -> None:
        self._store.delete(key)

    def _resolve_ttl(self, entry: CacheEntry, ttl: Optional[int]) -> int:
        if ttl is not None:
            return ttl
        try:
            return self.ttl_for(DataClass(entry.data_class))
        except ValueError:
            return self._config.ttl_for(entry.data_class)

    def is_valid(self, entry: Optional[CacheEntry], ttl: Optional[int] = None) -> bool:
        """Whether an entry is within its TTL."""
        if entry is None:
            return False
        return entry.age_seconds(self._clock()) <= self._resolve_ttl(entry, ttl)

    def freshness(self, entry: CacheEntry, ttl: Optional[int] = None) -> Freshness:
        """Classify an entry as fresh, stale or expired."""
        limit = self._resolve_ttl(entry, ttl)
        age = entry.age_seconds(self._clock())
        if age <= limit * self._config.stale_fraction:
            return Freshness.FRESH
        if age <= limit:
            return Freshness.STALE
        return Freshness.EXPIRED

    def should_refresh(
        self,
        entry: Optional[CacheEntry],
        force_refresh: bool = False,
        ttl: Optional[int] = None,
    ) -> bool:
        """True when forced, when nothing is cached, or when the entry has expired."""
        if force_refresh or entry is None:
            return True
        return self.freshness(entry, ttl) == Freshness.EXPIRED

    def stats(self, entry: CacheEntry, ttl: Optional[int] = None) -> dict:
        """Age and provenance of an entry, for display."""
        age = entry.age_seconds(self._clock())
        return {
            "source": entry.source,
            "age_minutes": round(age / 60),
            "age_hours": round(age / 3600, 1),
            "freshness": self.freshness(entry, ttl).value,
            "version": entry.version,
        }


def filter_comps_by_zip(comps: List[ComparableSale], zip_code: str) -> List[ComparableSale]:
    """
    Keep only comps in exactly the requested zip code.

    Guards against cached comps from a neighbouring zip being trusted for
    this request. Comps without a zip are dropped.
    """
    wanted = (zip_code or "").strip()
    if not wanted:
        return []
    return [c for c in comps if (c.zip_code or "").strip() == wanted]
