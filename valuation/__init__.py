"""
ARV Valuation Engine - Core Business Logic

Pure, synchronous valuation steps:
1. Comps Filter & Scorer (recency, similarity, quality score)
2. Valuation Engine (tiered comps ARV, multi-source blend, confidence)
3. Location Adjuster (schools, walkability, noise)
4. Historical Validator (trend deviation warning)

The end-to-end pipeline, which also drives the sourcing layer, lives in
`valuation.pipeline`.
"""

from .models import PropertyDescriptor, ErrorKind, ErrorResult, is_error
from .validation import validate_property, validate_comp, validate_estimate

# Comp Engine
from .comp_engine import (
    ComparableSale,
    Condition,
    Confidence,
    PointEstimate,
    ValuationResult,
    CompFilter,
    CompQualityScorer,
    CompValuationEngine,
)

# Location and history
from .location import LocationAdjuster, LocationAdjustment
from .historical import HistoricalValidator, HistoricalValidation

__all__ = [
    "PropertyDescriptor",
    "ErrorKind",
    "ErrorResult",
    "is_error",
    "validate_property",
    "validate_comp",
    "validate_estimate",
    "ComparableSale",
    "Condition",
    "Confidence",
    "PointEstimate",
    "ValuationResult",
    "CompFilter",
    "CompQualityScorer",
    "CompValuationEngine",
    "LocationAdjuster",
    "LocationAdjustment",
    "HistoricalValidator",
    "HistoricalValidation",
]

__version__ = "1.0"
