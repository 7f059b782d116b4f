"""
Source Orchestrator - Quota-Aware, Cached, Fallback-Ordered Fetching

For each request:
1. Serve from cache unless the entry is expired or a refresh is forced
   (cached comps must match the request's zip exactly)
2. Otherwise walk the call order: preferred source first, blocked
   sources skipped
3. Record usage after every live HTTP call, retries included
4. Return the first success, or one aggregate SOURCE_UNAVAILABLE error
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Union

from utils.config import ValuationConfig
from valuation.comp_engine.models import ComparableSale
from valuation.models import ErrorKind, ErrorResult, PropertyDescriptor

from sourcing.cache import CacheStore, Freshness, cache_key_for, filter_comps_by_zip
from sourcing.providers import DATA_CLASS_FOR_KIND, DataKind, SourceProvider
from sourcing.quota import QuotaLedger, format_selection_log
from sourcing.retry import retry_with_backoff
from sourcing.transport import HttpTransport, SourceError, TransportResponse


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourcedData:
    """Data served for one request, with its provenance."""
    kind: DataKind
    source: str
    data: Any
    from_cache: bool = False
    freshness: Freshness = Freshness.FRESH
    attempts: List[str] = field(default_factory=list)

    @property
    def is_stale(self) -> bool:
        return self.freshness == Freshness.STALE

    @property
    def error(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "error": False,
            "kind": self.kind.value,
            "source": self.source,
            "from_cache": self.from_cache,
            "freshness": self.freshness.value,
            "attempts": list(self.attempts),
        }


FetchOutcome = Union[SourcedData, ErrorResult]


class MeteredTransport:
    """Transport wrapper that records one usage per live HTTP response."""

    def __init__(self, transport: HttpTransport, ledger: QuotaLedger, source_id: str):
        self._transport = transport
        self._ledger = ledger
        self._source_id = source_id

    def get(self, url: str, **kwargs) -> TransportResponse:
        return self._record(self._transport.get(url, **kwargs))

    def post(self, url: str, **kwargs) -> TransportResponse:
        return self._record(self._transport.post(url, **kwargs))

    def _record(self, response: TransportResponse) -> TransportResponse:
        self._ledger.record_call(self._source_id, response.headers)
        return response


class SourceOrchestrator:
    """
    Decides whether to serve cached data or call source N, N+1, ...

    Holds no per-request state; the ledger and cache are the only state
    shared across requests.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        cache: CacheStore,
        providers: Mapping[str, SourceProvider],
        transport: HttpTransport,
        config: Optional[ValuationConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            ledger: Quota ledger for block decisions and usage
            cache: Cache store
            providers: Provider per source ID; sources without one are skipped
            transport: HTTP transport shared by all providers
            config: Retry settings (default: ValuationConfig())
            sleep: Sleep function for retry backoff (default: time.sleep)
        """
        self._ledger = ledger
        self._cache = cache
        self._providers = dict(providers)
        self._transport = transport
        self._config = config or ValuationConfig()
        self._sleep = sleep

    def fetch(
        self,
        kind: DataKind,
        prop: PropertyDescriptor,
        preferred: Optional[str] = None,
        force_refresh: bool = False,
    ) -> FetchOutcome:
        """
        Fetch one kind of data for a property.

        Args:
            kind: What to fetch
            prop: Subject property
            preferred: Source to try first ("auto" or None for default order)
            force_refresh: Ignore any cached entry

        Returns:
            SourcedData, or SOURCE_UNAVAILABLE ErrorResult naming every
            source tried or skipped
        """
        data_class = DATA_CLASS_FOR_KIND[kind]
        key = cache_key_for(data_class, prop)

        cached = self._from_cache(kind, key, prop, force_refresh)
        if cached is not None:
            return cached

        attempts: List[str] = []
        for source_id in self._ledger.candidate_order(preferred):
            provider = self._providers.get(source_id)
            if provider is None or not provider.supports(kind):
                logger.debug("Skipping %s for %s: no fetcher", source_id, kind.value)
                continue
            if not self._ledger.is_available(source_id):
                attempts.append(f"{source_id}: blocked")
                continue

            try:
                data = self._call(provider, kind, prop)
            except SourceError as exc:
                logger.warning("%s failed for %s: %s", source_id, kind.value, exc)
                attempts.append(f"{source_id}: {exc}")
                continue

            self._cache.set(key, data, source_id, data_class)
            logger.info("%s (%s)", format_selection_log(preferred, source_id), kind.value)
            attempts.append(f"{source_id}: ok")
            return SourcedData(kind=kind, source=source_id, data=data, attempts=attempts)

        logger.warning("All sources exhausted for %s: %s", kind.value, "; ".join(attempts) or "none configured")
        return ErrorResult(
            kind=ErrorKind.SOURCE_UNAVAILABLE,
            message=f"No data source available for {kind.value}",
            details=tuple(attempts),
        )

    def _from_cache(
        self,
        kind: DataKind,
        key: str,
        prop: PropertyDescriptor,
        force_refresh: bool,
    ) -> Optional[SourcedData]:
        entry = self._cache.get(key)
        if self._cache.should_refresh(entry, force_refresh):
            return None

        data = entry.data
        if kind == DataKind.COMPS:
            comps = [ComparableSale.from_dict(row) for row in data or []]
            matching = filter_comps_by_zip(comps, prop.zip_code)
            if not matching:
                return None
            data = [c.to_dict() for c in matching]

        freshness = self._cache.freshness(entry)
        logger.info("Cache hit for %s (%s, %s)", key, entry.source, freshness.value)
        return SourcedData(
            kind=kind,
            source=entry.source,
            data=data,
            from_cache=True,
            freshness=freshness,
        )

    def _call(self, provider: SourceProvider, kind: DataKind, prop: PropertyDescriptor) -> Any:
        metered = MeteredTransport(self._transport, self._ledger, provider.source_id)
        return retry_with_backoff(
            lambda: provider.fetch(kind, prop, metered),
            attempts=self._config.retry_attempts,
            base_delay=self._config.retry_base_delay,
            sleep=self._sleep,
            label=f"{provider.source_id} {kind.value}",
        )
