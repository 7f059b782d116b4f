"""
Comp Quality Scoring

Additive 0-100 score per comparable sale:
- Data completeness: +10 each for address, price, sqft, sale date (max 40)
- Recency: 20/15/10/5/0 for <=3/<=6/<=12/<=24/>24 months
- Distance: 20/15/10/5/0 for <=0.5/<=1/<=2/<=5/>5 miles
- Source tier: 20 AI-matched, 15 filtered search, 10 generic search,
  5 AI-generated/synthetic, 0 unknown
"""

from datetime import date
from typing import Final, List, Optional, Tuple

from utils.config import ValuationConfig
from valuation.models import PropertyDescriptor

from .filters import CompFilter
from .models import ComparableSale


# =============================================================================
# Scoring Tables
# =============================================================================

COMPLETENESS_POINTS = 10
DAYS_PER_MONTH = 30

# (max months, points), checked in order
RECENCY_BUCKETS: Final[Tuple[Tuple[int, int], ...]] = (
    (3, 20),
    (6, 15),
    (12, 10),
    (24, 5),
)

# (max miles, points), checked in order
DISTANCE_BUCKETS: Final[Tuple[Tuple[float, int], ...]] = (
    (0.5, 20),
    (1.0, 15),
    (2.0, 10),
    (5.0, 5),
)

# (data_source substrings, points), first match wins
SOURCE_TIERS: Final[Tuple[Tuple[Tuple[str, ...], int], ...]] = (
    (("property_comps", "similar_homes"), 20),
    (("sold_homes",), 15),
    (("generic_search", "_search"), 10),
    (("gemini", "_ai", "estimated", "synthetic"), 5),
)


def source_tier_points(data_source: str) -> int:
    """Points for the tier of the source that produced a comp."""
    tag = (data_source or "").lower()
    for needles, points in SOURCE_TIERS:
        if any(needle in tag for needle in needles):
            return points
    return 0


class CompQualityScorer:
    """
    Scores and orders comparable sales by relevance.

    Scoring never mutates a comp; each scored comp is a new record.
    """

    def __init__(self, reference_date: date = None, config: Optional[ValuationConfig] = None):
        """
        Initialize scorer.

        Args:
            reference_date: Date to calculate comp age from (default: today)
            config: Pipeline configuration (default: ValuationConfig())
        """
        self._reference_date = reference_date or date.today()
        self._config = config or ValuationConfig()
        self._filter = CompFilter(reference_date=self._reference_date, config=self._config)

    def score(
        self,
        comps: List[ComparableSale],
        target: Optional[PropertyDescriptor] = None,
    ) -> List[ComparableSale]:
        """
        Filter, score and order comps most-to-least relevant.

        Args:
            comps: Raw comparable sales
            target: Subject property used for the similarity filter

        Returns:
            Scored comps sorted by quality_score descending. Ties keep
            their original relative order. Empty input gives empty output.
        """
        selected = self._filter.select(comps, target)
        scored = [c.with_quality_score(self.score_comp(c)) for c in selected]
        return sorted(scored, key=lambda c: c.quality_score, reverse=True)

    def score_comp(self, comp: ComparableSale) -> int:
        """Quality score (0-100) for a single comp."""
        score = 0

        if comp.address:
            score += COMPLETENESS_POINTS
        if comp.has_price:
            score += COMPLETENESS_POINTS
        if comp.sqft and comp.sqft > 0:
            score += COMPLETENESS_POINTS
        if comp.sale_date is not None:
            score += COMPLETENESS_POINTS

        score += self._recency_points(comp.sale_date)
        score += self._distance_points(comp.distance)
        score += source_tier_points(comp.data_source)

        return min(score, 100)

    def _recency_points(self, sale_date: Optional[date]) -> int:
        if sale_date is None:
            return 0
        months = (self._reference_date - sale_date).days / DAYS_PER_MONTH
        for max_months, points in RECENCY_BUCKETS:
            if months <= max_months:
                return points
        return 0

    def _distance_points(self, distance: Optional[float]) -> int:
        if distance is None or distance < 0:
            return 0
        for max_miles, points in DISTANCE_BUCKETS:
            if distance <= max_miles:
                return points
        return 0


def filter_by_quality(comps: List[ComparableSale], min_score: int = 60) -> List[ComparableSale]:
    """Keep scored comps at or above a minimum quality score."""
    return [c for c in comps if c.quality_score is not None and c.quality_score >= min_score]
