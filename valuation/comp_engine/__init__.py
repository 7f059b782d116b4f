"""
Comp Engine

Comparable sales filtering, quality scoring and multi-source ARV valuation
for residential renovation deals.
"""

from .models import (
    ComparableSale,
    Condition,
    QualityLabel,
    Confidence,
    ValuationTier,
    PointEstimate,
    SourceContribution,
    RenovationPremium,
    CompsValuation,
    ValuationResult,
    ConfidenceInterval,
    CompsStatistics,
)
from .filters import CompFilter, partition_by_condition, average_price, comps_statistics
from .scoring import CompQualityScorer, filter_by_quality, source_tier_points
from .valuation import CompValuationEngine, confidence_from_cv

__all__ = [
    # Models
    "ComparableSale",
    "Condition",
    "QualityLabel",
    "Confidence",
    "ValuationTier",
    "PointEstimate",
    "SourceContribution",
    "RenovationPremium",
    "CompsValuation",
    "ValuationResult",
    "ConfidenceInterval",
    "CompsStatistics",
    # Filtering and scoring
    "CompFilter",
    "partition_by_condition",
    "average_price",
    "comps_statistics",
    "CompQualityScorer",
    "filter_by_quality",
    "source_tier_points",
    # Engine
    "CompValuationEngine",
    "confidence_from_cv",
]

__version__ = "1.0"
