"""
Data Sourcing Layer

Quota-aware, TTL-cached, fallback-ordered access to external property
data sources.
"""

from .stores import KeyValueStore, InMemoryStore, RedisStore, create_store
from .cache import CacheStore, CacheEntry, DataClass, Freshness, filter_comps_by_zip
from .registry import (
    QuotaPeriod,
    SourceRegistration,
    DEFAULT_PRIORITY,
    get_source,
    register_source,
)
from .quota import QuotaLedger, QuotaStatus, UsageRecord
from .transport import (
    HttpTransport,
    RequestsTransport,
    TransportResponse,
    SourceError,
    TransientSourceError,
)
from .retry import retry_with_backoff
from .providers import DataKind, SourceProvider, build_providers
from .orchestrator import SourceOrchestrator, SourcedData

__all__ = [
    # Stores
    "KeyValueStore",
    "InMemoryStore",
    "RedisStore",
    "create_store",
    # Cache
    "CacheStore",
    "CacheEntry",
    "DataClass",
    "Freshness",
    "filter_comps_by_zip",
    # Registry and quota
    "QuotaPeriod",
    "SourceRegistration",
    "DEFAULT_PRIORITY",
    "get_source",
    "register_source",
    "QuotaLedger",
    "QuotaStatus",
    "UsageRecord",
    # Transport
    "HttpTransport",
    "RequestsTransport",
    "TransportResponse",
    "SourceError",
    "TransientSourceError",
    "retry_with_backoff",
    # Orchestration
    "DataKind",
    "SourceProvider",
    "build_providers",
    "SourceOrchestrator",
    "SourcedData",
]
