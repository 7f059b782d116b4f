"""
Data models for the Comp Engine

Defines comparable sales, point estimates from third-party sources and the
valuation results built from them.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import List, Optional

from valuation.validation import parse_sale_date


class Condition(Enum):
    """
    Renovation condition of a comparable sale.

    Taken from an explicit tag only; never inferred from price.
    """
    REMODELED = "remodeled"
    UNREMODELED = "unremodeled"
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "Condition":
        """Convert string to Condition, case-insensitive. Unrecognised tags are UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        normalised = str(value).lower().strip().replace("-", "").replace("_", "")
        for member in cls:
            if member.value == normalised:
                return member
        return cls.UNKNOWN


class QualityLabel(Enum):
    """
    Quality band for a scored comp.

    High: score >= 80
    Medium: score >= 60
    Low: below 60
    """
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @classmethod
    def from_score(cls, score: float) -> "QualityLabel":
        """Map a 0-100 quality score to its band."""
        if score >= 80:
            return cls.HIGH
        if score >= 60:
            return cls.MEDIUM
        return cls.LOW


class Confidence(Enum):
    """
    Confidence rating for a valuation.

    Comps tiers: High (>=3 remodeled, or >=3 of each for a premium),
    Medium (>=2 of each, or unremodeled-only), Low (fallback).
    Blended: High >= 90, Medium >= 70, else Low.
    """
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @classmethod
    def from_score(cls, score: float) -> "Confidence":
        """Map a 0-100 confidence score to its label."""
        if score >= 90:
            return cls.HIGH
        if score >= 70:
            return cls.MEDIUM
        return cls.LOW


class ValuationTier(Enum):
    """Which comps tier produced the comps-derived ARV."""
    REMODELED = "remodeled"
    MIXED = "mixed"
    UNREMODELED_ONLY = "unremodeled_only"
    FALLBACK = "fallback"


def _optional_number(value) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class ComparableSale:
    """
    A comparable sale fetched from an external source.

    Immutable once fetched. Scoring produces a new record with
    quality_score set; nothing edits a comp in place.
    """
    address: str
    price: Optional[float]
    sale_date: Optional[date]
    sqft: Optional[float] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    distance: Optional[float] = None  # Miles from the subject
    condition: Condition = Condition.UNKNOWN
    data_source: str = ""
    zip_code: str = ""

    # Derived
    quality_score: Optional[int] = None

    @property
    def has_price(self) -> bool:
        """Whether the comp can take part in price averages."""
        return self.price is not None and self.price > 0

    @property
    def price_per_sqft(self) -> Optional[float]:
        """Sale price per square foot, if both are known."""
        if not self.has_price or not self.sqft or self.sqft <= 0:
            return None
        return self.price / self.sqft

    @property
    def quality_label(self) -> Optional[QualityLabel]:
        """Quality band, once scored."""
        if self.quality_score is None:
            return None
        return QualityLabel.from_score(self.quality_score)

    def with_quality_score(self, score: int) -> "ComparableSale":
        """Return a copy carrying the given quality score."""
        return replace(self, quality_score=score)

    @classmethod
    def from_dict(cls, data: dict) -> "ComparableSale":
        """
        Build from a normalised source payload or cached record.

        Accepts both snake_case and the camelCase keys providers emit.
        Zero and blank numerics are treated as absent.
        """
        def number(*keys) -> Optional[float]:
            for key in keys:
                value = _optional_number(data.get(key))
                if value is not None and value != 0:
                    return value
            return None

        score = data.get("quality_score")
        return cls(
            address=str(data.get("address") or "").strip(),
            price=number("price"),
            sale_date=parse_sale_date(data.get("sale_date", data.get("saleDate"))),
            sqft=number("sqft"),
            beds=number("beds"),
            baths=number("baths"),
            distance=_optional_number(data.get("distance")),
            condition=Condition.from_string(data.get("condition")),
            data_source=str(data.get("data_source") or data.get("dataSource") or ""),
            zip_code=str(data.get("zip_code") or data.get("zip") or "").strip(),
            quality_score=int(score) if score is not None else None,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output and caching."""
        label = self.quality_label
        return {
            "address": self.address,
            "price": self.price,
            "sale_date": self.sale_date.isoformat() if self.sale_date else None,
            "sqft": self.sqft,
            "beds": self.beds,
            "baths": self.baths,
            "distance": self.distance,
            "condition": self.condition.value,
            "data_source": self.data_source,
            "zip_code": self.zip_code,
            "quality_score": self.quality_score,
            "quality_label": label.value if label else None,
        }


@dataclass(frozen=True)
class PointEstimate:
    """
    A third-party point estimate of value.

    Ephemeral; constructed per valuation request.
    """
    source: str
    value: float
    weight: float

    def __post_init__(self) -> None:
        """Validate estimate constraints."""
        if not self.source:
            raise ValueError("source is required")
        if self.value <= 0:
            raise ValueError(f"value must be positive: {self.value}")
        if not 0 < self.weight <= 1:
            raise ValueError(f"weight must be in (0, 1]: {self.weight}")


@dataclass(frozen=True)
class SourceContribution:
    """One source's share of a blended ARV."""
    source: str
    value: float
    weight: float  # Normalised
    weighted_value: float

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "value": self.value,
            "weight": self.weight,
            "weighted_value": self.weighted_value,
        }


@dataclass(frozen=True)
class RenovationPremium:
    """
    Premium implied by remodeled vs. unremodeled comp prices.

    `source` is "comps" when derived from both partitions, "default" when
    either partition was empty and the flat default was used.
    """
    premium: float
    confidence: Confidence
    remodeled_count: int
    unremodeled_count: int
    avg_remodeled: Optional[float] = None
    avg_unremodeled: Optional[float] = None
    source: str = "comps"

    def to_dict(self) -> dict:
        return {
            "premium": self.premium,
            "confidence": self.confidence.value,
            "remodeled_count": self.remodeled_count,
            "unremodeled_count": self.unremodeled_count,
            "avg_remodeled": self.avg_remodeled,
            "avg_unremodeled": self.avg_unremodeled,
            "source": self.source,
        }


@dataclass(frozen=True)
class CompsValuation:
    """ARV derived from comps alone, with the tier that produced it."""
    arv: float
    method: str
    tier: ValuationTier
    premium: float
    confidence: Confidence
    comps_used: int
    remodeled_count: int = 0
    unremodeled_count: int = 0

    def to_dict(self) -> dict:
        return {
            "arv": self.arv,
            "method": self.method,
            "tier": self.tier.value,
            "premium": self.premium,
            "confidence": self.confidence.value,
            "comps_used": self.comps_used,
            "remodeled_count": self.remodeled_count,
            "unremodeled_count": self.unremodeled_count,
        }


@dataclass(frozen=True)
class ValuationResult:
    """
    Complete valuation result.

    Produced once per request; never mutated. `confidence_score` is only
    set when derived from dispersion across several sources.
    """
    arv: float
    method: str
    confidence: Confidence
    confidence_score: Optional[int] = None
    sources: List[SourceContribution] = field(default_factory=list)
    std_dev: Optional[float] = None
    coefficient_of_variation: Optional[float] = None

    # Comps detail (when comps took part)
    comps_valuation: Optional[CompsValuation] = None
    renovation_premium: float = 0.0
    comps_used: int = 0
    arv_per_sqft: Optional[float] = None

    @property
    def error(self) -> bool:
        return False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "error": False,
            "arv": self.arv,
            "method": self.method,
            "confidence": self.confidence.value,
            "confidence_score": self.confidence_score,
            "sources": [s.to_dict() for s in self.sources],
            "std_dev": self.std_dev,
            "coefficient_of_variation": self.coefficient_of_variation,
            "comps": self.comps_valuation.to_dict() if self.comps_valuation else None,
            "renovation_premium": self.renovation_premium,
            "comps_used": self.comps_used,
            "arv_per_sqft": self.arv_per_sqft,
        }


@dataclass(frozen=True)
class ConfidenceInterval:
    """Mean +/- one standard deviation over a flat list of estimates."""
    conservative: float
    moderate: float
    aggressive: float
    std_dev: float
    confidence_level: int = 68

    def to_dict(self) -> dict:
        return {
            "conservative": self.conservative,
            "moderate": self.moderate,
            "aggressive": self.aggressive,
            "std_dev": self.std_dev,
            "confidence_level": self.confidence_level,
        }


@dataclass(frozen=True)
class CompsStatistics:
    """Summary figures over the priced comps in a set."""
    count: int
    avg_price: float
    min_price: float
    max_price: float
    avg_price_per_sqft: float
    price_range: float

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "avg_price": self.avg_price,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "avg_price_per_sqft": self.avg_price_per_sqft,
            "price_range": self.price_range,
        }
