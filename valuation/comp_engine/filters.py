"""
Comp Filters for the Comp Engine

Implements the narrowing steps applied to raw comparable sales:
- Recency (lookback window, unparsable dates dropped)
- Similarity (sqft / beds / baths tolerances, with fallback)
- Condition partition (remodeled / unremodeled / unknown)
- Price helpers and summary statistics
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from utils.config import ValuationConfig
from valuation.models import PropertyDescriptor

from .models import ComparableSale, CompsStatistics, Condition


@dataclass(frozen=True)
class ConditionPartition:
    """Comps split by explicit condition tag."""
    remodeled: List[ComparableSale]
    unremodeled: List[ComparableSale]
    unknown: List[ComparableSale]


def _years_before(reference: date, years: int) -> date:
    try:
        return reference.replace(year=reference.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return reference.replace(year=reference.year - years, day=28)


class CompFilter:
    """
    Recency and similarity filtering for comparable sales.

    Both steps are pure and order-preserving, and the combined `select`
    is idempotent.
    """

    def __init__(self, reference_date: date = None, config: Optional[ValuationConfig] = None):
        """
        Initialize filter.

        Args:
            reference_date: Date to calculate age from (default: today)
            config: Tolerances and lookback window (default: ValuationConfig())
        """
        self._reference_date = reference_date or date.today()
        self._config = config or ValuationConfig()

    @property
    def cutoff_date(self) -> date:
        """Oldest sale date still considered recent."""
        return _years_before(self._reference_date, self._config.comps_lookback_years)

    def filter_by_recency(self, comps: List[ComparableSale]) -> List[ComparableSale]:
        """Drop comps with no parsable sale date or one older than the lookback window."""
        cutoff = self.cutoff_date
        return [c for c in comps if c.sale_date is not None and c.sale_date >= cutoff]

    def filter_by_similarity(
        self,
        comps: List[ComparableSale],
        target: PropertyDescriptor,
    ) -> List[ComparableSale]:
        """
        Keep comps within tolerance of the target.

        A dimension is only compared when both the comp and the target
        carry a value for it.
        """
        return [c for c in comps if self._is_similar(c, target)]

    def select(
        self,
        comps: List[ComparableSale],
        target: Optional[PropertyDescriptor] = None,
    ) -> List[ComparableSale]:
        """
        Recency filter, then similarity filter with fallback.

        If fewer than the configured minimum (default 3) comps survive the
        similarity filter, the full recency-filtered set is used instead.

        Args:
            comps: Raw comparable sales
            target: Subject property (similarity is skipped when None)

        Returns:
            Filtered comps in original relative order
        """
        recent = self.filter_by_recency(comps)
        if target is None:
            return recent

        similar = self.filter_by_similarity(recent, target)
        if len(similar) >= self._config.min_similar_comps:
            return similar
        return recent

    def _is_similar(self, comp: ComparableSale, target: PropertyDescriptor) -> bool:
        config = self._config

        if comp.sqft and target.sqft:
            if abs(comp.sqft - target.sqft) > target.sqft * config.sqft_tolerance:
                return False

        if comp.beds is not None and target.beds is not None:
            if abs(comp.beds - target.beds) > config.beds_tolerance:
                return False

        if comp.baths is not None and target.baths is not None:
            if abs(comp.baths - target.baths) > config.baths_tolerance:
                return False

        return True


# =============================================================================
# Condition and Price Helpers
# =============================================================================

def partition_by_condition(comps: List[ComparableSale]) -> ConditionPartition:
    """Split comps by their explicit condition tag, preserving order."""
    return ConditionPartition(
        remodeled=[c for c in comps if c.condition == Condition.REMODELED],
        unremodeled=[c for c in comps if c.condition == Condition.UNREMODELED],
        unknown=[c for c in comps if c.condition == Condition.UNKNOWN],
    )


def priced(comps: List[ComparableSale]) -> List[ComparableSale]:
    """Comps that can take part in price averages."""
    return [c for c in comps if c.has_price]


def average_price(comps: List[ComparableSale]) -> float:
    """
    Mean sale price, ignoring comps without a positive price.

    Returns 0.0 when no comp is priced.
    """
    prices = [c.price for c in priced(comps)]
    if not prices:
        return 0.0
    return sum(prices) / len(prices)


def average_price_per_sqft(comps: List[ComparableSale]) -> float:
    """Mean $/sqft over comps with both price and sqft."""
    values = [c.price_per_sqft for c in comps if c.price_per_sqft is not None]
    if not values:
        return 0.0
    return sum(values) / len(values)


def comps_statistics(comps: List[ComparableSale]) -> CompsStatistics:
    """
    Summary statistics over the priced comps.

    An empty or unpriced set yields all-zero statistics.
    """
    prices = [c.price for c in priced(comps)]
    if not prices:
        return CompsStatistics(
            count=0,
            avg_price=0.0,
            min_price=0.0,
            max_price=0.0,
            avg_price_per_sqft=0.0,
            price_range=0.0,
        )

    return CompsStatistics(
        count=len(prices),
        avg_price=round(sum(prices) / len(prices), 2),
        min_price=min(prices),
        max_price=max(prices),
        avg_price_per_sqft=round(average_price_per_sqft(comps), 2),
        price_range=max(prices) - min(prices),
    )
