"""
Source Registry - External Data Source Registration

Every external data source is registered with its call budget before the
orchestrator may use it. Registration records are immutable; the default
priority order decides which source is tried first.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Final, Iterable, Optional


class QuotaPeriod(Enum):
    """Tracking period for a source's call budget."""
    MONTH = "month"
    DAY = "day"


@dataclass(frozen=True)
class SourceRegistration:
    """
    Immutable source registration record.

    Defines the source's identity and call budget. `threshold_percent`
    overrides the global block threshold for this source only.
    """

    # === Identity ===
    source_id: str
    source_name: str

    # === Budget ===
    limit: int
    period: QuotaPeriod
    threshold_percent: Optional[float] = None

    # === Operational ===
    reports_usage_headers: bool = False
    active: bool = True

    def __post_init__(self) -> None:
        """Validate registration constraints."""
        if not self.source_id:
            raise ValueError("source_id is required")
        if not self.source_name:
            raise ValueError("source_name is required")

        # Lowercase alphanumeric with underscores; also used in store keys
        if not re.match(r"^[a-z0-9_]+$", self.source_id):
            raise ValueError(
                f"source_id must be lowercase alphanumeric with underscores: {self.source_id}"
            )

        if self.limit <= 0:
            raise ValueError("limit must be positive")

        if self.threshold_percent is not None and not 0 < self.threshold_percent <= 100:
            raise ValueError("threshold_percent must be in (0, 100]")


# =============================================================================
# Default Sources
# =============================================================================

DEFAULT_PRIORITY: Final[tuple[str, ...]] = (
    "private_zillow",
    "us_real_estate",
    "redfin",
    "gemini",
)

DEFAULT_SOURCES: Final[tuple[SourceRegistration, ...]] = (
    SourceRegistration(
        source_id="private_zillow",
        source_name="Private Zillow (RapidAPI)",
        limit=250,
        period=QuotaPeriod.MONTH,
        reports_usage_headers=True,
    ),
    SourceRegistration(
        source_id="us_real_estate",
        source_name="US Real Estate (RapidAPI)",
        limit=300,
        period=QuotaPeriod.MONTH,
        reports_usage_headers=True,
    ),
    SourceRegistration(
        source_id="redfin",
        source_name="Redfin (RapidAPI)",
        limit=111,
        period=QuotaPeriod.MONTH,
        reports_usage_headers=True,
    ),
    SourceRegistration(
        source_id="gemini",
        source_name="Gemini AI",
        limit=1500,
        period=QuotaPeriod.DAY,
    ),
)


# =============================================================================
# Source Registry
# =============================================================================

# Global registry of all registered sources
_SOURCE_REGISTRY: dict[str, SourceRegistration] = {}


def register_source(registration: SourceRegistration) -> None:
    """
    Register a new data source.

    Args:
        registration: The source registration record

    Raises:
        ValueError: If source_id is already registered
    """
    if registration.source_id in _SOURCE_REGISTRY:
        raise ValueError(f"Source already registered: {registration.source_id}")
    _SOURCE_REGISTRY[registration.source_id] = registration


def get_source(source_id: str) -> Optional[SourceRegistration]:
    """
    Get a registered source by ID.

    Args:
        source_id: The source identifier

    Returns:
        The source registration if found, None otherwise
    """
    return _SOURCE_REGISTRY.get(source_id)


def get_active_sources() -> list[SourceRegistration]:
    """Get all active registered sources."""
    return [s for s in _SOURCE_REGISTRY.values() if s.active]


def build_source_map(
    sources: Optional[Iterable[SourceRegistration]] = None,
) -> dict[str, SourceRegistration]:
    """Index registrations by ID; defaults to the active registered sources."""
    if sources is None:
        sources = get_active_sources()
    return {s.source_id: s for s in sources}


for _registration in DEFAULT_SOURCES:
    register_source(_registration)
