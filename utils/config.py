"""
Configuration management.

Two layers:
- ValuationConfig: immutable tuning values passed explicitly into every
  pipeline component (thresholds, tolerances, TTLs, premiums).
- Config: process-level settings loaded from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


# =============================================================================
# Defaults
# =============================================================================

DAY_SECONDS = 24 * 60 * 60

# Cache lifetimes by data class (seconds)
DEFAULT_CACHE_TTL_SECONDS: Dict[str, int] = {
    "property_details": 7 * DAY_SECONDS,
    "comps": 7 * DAY_SECONDS,
    "estimates": 7 * DAY_SECONDS,
    "schools": 30 * DAY_SECONDS,
    "walk_score": 30 * DAY_SECONDS,
    "noise_score": 30 * DAY_SECONDS,
    "market_rates": 1 * DAY_SECONDS,
    "rental_rates": 7 * DAY_SECONDS,
}


@dataclass(frozen=True)
class ValuationConfig:
    """
    Tuning values for the valuation and data-sourcing pipeline.

    Components never read the environment themselves; they receive one of
    these. Every field has a documented default.
    """

    # Quota Ledger
    quota_threshold_percent: float = 90.0  # block a source at this usage %
    source_thresholds: Dict[str, float] = field(default_factory=dict)
    source_limits: Dict[str, int] = field(default_factory=dict)

    # Cache Store
    cache_ttl_seconds: Dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_CACHE_TTL_SECONDS)
    )
    stale_fraction: float = 0.5  # age beyond this share of TTL is "stale"

    # Comps Filter & Scorer
    comps_lookback_years: int = 2
    sqft_tolerance: float = 0.20
    beds_tolerance: int = 1
    baths_tolerance: float = 1
    min_similar_comps: int = 3
    min_quality_score: int = 60

    # Valuation Engine
    renovation_premium_cap: float = 0.25
    unremodeled_only_premium: float = 0.25
    fallback_premium: float = 0.20
    comps_weight: float = 0.50
    external_estimate_weight: float = 0.25

    # Historical Validator
    historical_deviation_threshold: float = 15.0

    # Network
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    request_timeout: int = 30

    def threshold_for(self, source_id: str, override: Optional[float] = None) -> float:
        """Resolve the block threshold for a source."""
        if override is not None:
            return override
        return self.source_thresholds.get(source_id, self.quota_threshold_percent)

    def ttl_for(self, data_class: str) -> int:
        """Resolve the cache TTL in seconds for a data class name."""
        return self.cache_ttl_seconds.get(
            data_class, DEFAULT_CACHE_TTL_SECONDS["property_details"]
        )


@dataclass
class Config:
    """
    Application configuration.

    Loads from environment variables with sensible defaults.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    # Storage
    store_backend: str = field(default_factory=lambda: os.getenv("STORE_BACKEND", "memory"))
    redis_url: str = field(
        default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )

    # Sources
    rapidapi_key: str = field(default_factory=lambda: os.getenv("RAPIDAPI_KEY", ""))
    gemini_api_key: str = field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))

    # Endpoint paths for these vary by RapidAPI subscription
    private_zillow_host: str = field(default_factory=lambda: os.getenv("PRIVATE_ZILLOW_HOST", ""))
    private_zillow_comps_path: str = field(
        default_factory=lambda: os.getenv("PRIVATE_ZILLOW_COMPS_PATH", "")
    )
    private_zillow_estimate_path: str = field(
        default_factory=lambda: os.getenv("PRIVATE_ZILLOW_ESTIMATE_PATH", "")
    )
    private_zillow_walk_score_path: str = field(
        default_factory=lambda: os.getenv("PRIVATE_ZILLOW_WALK_SCORE_PATH", "")
    )
    redfin_host: str = field(default_factory=lambda: os.getenv("REDFIN_HOST", ""))
    redfin_comps_path: str = field(default_factory=lambda: os.getenv("REDFIN_COMPS_PATH", ""))

    request_timeout: int = field(default_factory=lambda: int(os.getenv("REQUEST_TIMEOUT", "30")))
    max_retries: int = field(default_factory=lambda: int(os.getenv("MAX_RETRIES", "3")))

    # Quota
    quota_threshold_percent: float = field(
        default_factory=lambda: float(os.getenv("QUOTA_THRESHOLD_PERCENT", "90.0"))
    )

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    def valuation_config(self) -> ValuationConfig:
        """Build the pipeline configuration from these settings."""
        return ValuationConfig(
            quota_threshold_percent=self.quota_threshold_percent,
            retry_attempts=self.max_retries,
            request_timeout=self.request_timeout,
        )

    def to_dict(self) -> dict:
        """Convert config to dictionary. Secrets (API keys, Redis URL) are reported as set/unset only."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "store_backend": self.store_backend,
            "redis_url_set": bool(self.redis_url),
            "rapidapi_key_set": bool(self.rapidapi_key),
            "gemini_api_key_set": bool(self.gemini_api_key),
            "private_zillow_host": self.private_zillow_host,
            "redfin_host": self.redfin_host,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "quota_threshold_percent": self.quota_threshold_percent,
        }
