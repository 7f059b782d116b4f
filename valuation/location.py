"""
Location Adjuster

Applies bounded percentage adjustments to a base ARV from three optional
location signals. Factor premiums are summed, not compounded:

- Schools: +15% / +5% / 0% / -3% / -5% by average rating (0-10)
- Walkability: +7% / +5% / +2% / 0% / -2% by walk score, plus transit
  (+2% / +1%) and bike (+1%) bonuses, capped at +10% overall
- Environmental: +3% / +1% / 0% / -2% / -3% by noise score (higher = louder)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from utils.formatting import format_currency, format_percent
from valuation.models import ErrorKind, ErrorResult


# =============================================================================
# Configuration Constants
# =============================================================================

# (min avg rating, premium, grade, quality), checked in order
SCHOOL_BANDS = (
    (8.0, 0.15, "A", "Excellent schools"),
    (6.0, 0.05, "B", "Good schools"),
    (4.0, 0.0, "C", "Average schools"),
    (2.0, -0.03, "D", "Below-average schools"),
)
POOR_SCHOOLS = (-0.05, "F", "Poor schools")

# (min walk score, premium, category, description), checked in order
WALK_BANDS = (
    (90, 0.07, "Walker's Paradise", "Daily errands do not require a car"),
    (70, 0.05, "Very Walkable", "Most errands can be accomplished on foot"),
    (50, 0.02, "Somewhat Walkable", "Some errands can be accomplished on foot"),
    (25, 0.0, "Car-Dependent", "Most errands require a car"),
)
VERY_CAR_DEPENDENT = (-0.02, "Very Car-Dependent", "Almost all errands require a car")

WALKABILITY_CAP = 0.10

# (noise score upper bound, premium, level, description), checked in order
NOISE_BANDS = (
    (40, 0.03, "very_quiet", "Very quiet area - Peaceful residential setting"),
    (50, 0.01, "quiet", "Quiet area - Low noise levels"),
    (60, 0.0, "moderate", "Moderate noise - Typical residential area"),
    (70, -0.02, "noisy", "Noisy area - Higher than average noise levels"),
)
VERY_NOISY = (-0.03, "very_noisy", "Very noisy area - Significant noise pollution")


# =============================================================================
# Signals
# =============================================================================

@dataclass(frozen=True)
class SchoolSignal:
    """Average school rating on a 0-10 scale."""
    avg_rating: float
    school_count: int = 0

    @classmethod
    def from_ratings(cls, ratings: Sequence[float]) -> Optional["SchoolSignal"]:
        """Average a list of school ratings, ignoring unrated (<= 0) schools."""
        rated = [float(r) for r in ratings if r is not None and r > 0]
        if not rated:
            return None
        return cls(avg_rating=round(sum(rated) / len(rated), 1), school_count=len(rated))


@dataclass(frozen=True)
class WalkabilitySignal:
    """Walk, transit and bike scores (0-100)."""
    walk_score: float
    transit_score: float = 0
    bike_score: float = 0


@dataclass(frozen=True)
class NoiseSignal:
    """Noise score (0-100, higher is louder) and any named noise sources."""
    noise_score: float
    factors: tuple = ()


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class FactorAdjustment:
    """One location factor's contribution."""
    premium: float
    dollar_amount: float
    description: str
    label: str = ""  # grade, category or noise level
    score: Optional[float] = None

    @property
    def multiplier(self) -> float:
        return 1 + self.premium

    def to_dict(self) -> dict:
        return {
            "premium": self.premium,
            "multiplier": self.multiplier,
            "dollar_amount": self.dollar_amount,
            "description": self.description,
            "label": self.label,
            "score": self.score,
        }


@dataclass(frozen=True)
class LocationAdjustment:
    """Base ARV, adjusted ARV and the per-factor breakdown."""
    base_arv: float
    adjusted_arv: float
    total_adjustment: float
    breakdown: Dict[str, FactorAdjustment] = field(default_factory=dict)

    @property
    def error(self) -> bool:
        return False

    @property
    def total_multiplier(self) -> float:
        return 1 + self.total_adjustment

    @property
    def total_dollar_amount(self) -> float:
        return self.adjusted_arv - self.base_arv

    @property
    def summary(self) -> str:
        """One-line summary, e.g. 'Location quality: +21.0% (+$105,000)'."""
        pct = format_percent(self.total_adjustment * 100, signed=True)
        sign = "+" if self.total_adjustment >= 0 else "-"
        dollars = format_currency(abs(self.total_dollar_amount))
        return f"Location quality: {pct} ({sign}{dollars})"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "error": False,
            "base_arv": self.base_arv,
            "adjusted_arv": self.adjusted_arv,
            "total_adjustment": self.total_adjustment,
            "total_multiplier": self.total_multiplier,
            "total_dollar_amount": self.total_dollar_amount,
            "breakdown": {name: f.to_dict() for name, f in self.breakdown.items()},
            "summary": self.summary,
        }


LocationOutcome = Union[LocationAdjustment, ErrorResult]


class LocationAdjuster:
    """
    Computes location adjustments for a base ARV.

    Each factor is optional and computed independently; an absent factor
    contributes 0%.
    """

    def adjust(
        self,
        base_arv: float,
        schools: Optional[SchoolSignal] = None,
        walkability: Optional[WalkabilitySignal] = None,
        environmental: Optional[NoiseSignal] = None,
    ) -> LocationOutcome:
        """
        Apply location adjustments.

        Args:
            base_arv: ARV before location adjustment, must be positive
            schools: Average school rating signal
            walkability: Walk/transit/bike score signal
            environmental: Noise score signal

        Returns:
            LocationAdjustment, or INPUT ErrorResult for a non-positive base
        """
        if base_arv is None or base_arv <= 0:
            return ErrorResult(
                kind=ErrorKind.INPUT,
                message="Base ARV must be a positive number",
            )

        premiums = {
            "schools": self.school_premium(schools),
            "walkability": self.walkability_premium(walkability),
            "environmental": self.environmental_premium(environmental),
        }

        breakdown = {
            name: FactorAdjustment(
                premium=premium,
                dollar_amount=round(base_arv * premium),
                description=description,
                label=label,
                score=score,
            )
            for name, (premium, description, label, score) in premiums.items()
        }
        total = sum(f.premium for f in breakdown.values())

        return LocationAdjustment(
            base_arv=round(base_arv),
            adjusted_arv=round(base_arv * (1 + total)),
            total_adjustment=total,
            breakdown=breakdown,
        )

    # =========================================================================
    # Factors
    # =========================================================================
    # Each returns (premium, description, label, score).

    def school_premium(self, schools: Optional[SchoolSignal]) -> tuple:
        if schools is None or schools.avg_rating is None or schools.avg_rating <= 0:
            return 0.0, "School data not available", "Unknown", None

        rating = schools.avg_rating
        premium, grade, quality = POOR_SCHOOLS
        for min_rating, band_premium, band_grade, band_quality in SCHOOL_BANDS:
            if rating >= min_rating:
                premium, grade, quality = band_premium, band_grade, band_quality
                break

        return premium, f"{quality} (avg rating: {rating:.1f}/10)", grade, rating

    def walkability_premium(self, walkability: Optional[WalkabilitySignal]) -> tuple:
        if walkability is None or walkability.walk_score is None:
            return 0.0, "Walkability data not available", "Unknown", None

        walk_score = walkability.walk_score
        premium, category, description = VERY_CAR_DEPENDENT
        for min_score, band_premium, band_category, band_description in WALK_BANDS:
            if walk_score >= min_score:
                premium, category, description = band_premium, band_category, band_description
                break

        details: List[str] = [description]
        transit = walkability.transit_score or 0
        if transit >= 70:
            premium += 0.02
            details.append("Excellent public transit")
        elif transit >= 50:
            premium += 0.01
            details.append("Good public transit")

        if (walkability.bike_score or 0) >= 70:
            premium += 0.01
            details.append("Very bikeable")

        premium = min(premium, WALKABILITY_CAP)
        return premium, " • ".join(details), category, walk_score

    def environmental_premium(self, environmental: Optional[NoiseSignal]) -> tuple:
        if environmental is None or environmental.noise_score is None:
            return 0.0, "Environmental data not available", "Unknown", None

        noise = environmental.noise_score
        premium, level, description = VERY_NOISY
        for upper, band_premium, band_level, band_description in NOISE_BANDS:
            if noise < upper:
                premium, level, description = band_premium, band_level, band_description
                break

        if environmental.factors:
            description += f" (Sources: {', '.join(environmental.factors)})"
        return premium, description, level, noise
