"""
Valuation Engine for the Comp Engine

Implements:
- Tiered ARV from comps (remodeled / mixed / unremodeled-only / fallback)
- Renovation premium from remodeled vs. unremodeled prices (capped)
- Multi-source weighted blend with dispersion-based confidence
- Mean +/- 1 standard deviation confidence interval
"""

import math
from typing import List, Optional, Sequence, Union

from utils.config import ValuationConfig
from utils.formatting import format_percent
from valuation.models import ErrorKind, ErrorResult, PropertyDescriptor

from .filters import average_price, partition_by_condition, priced
from .models import (
    ComparableSale,
    CompsValuation,
    Confidence,
    ConfidenceInterval,
    PointEstimate,
    RenovationPremium,
    SourceContribution,
    ValuationResult,
    ValuationTier,
)


# =============================================================================
# Configuration Constants
# =============================================================================

# Minimum comps of a condition for a tier to apply
MIN_TIER_COMPS = 3

# Dispersion -> confidence mapping
CV_FULL_CONFIDENCE = 0.05
CV_FLOOR = 0.20
CONFIDENCE_FLOOR = 50

COMPS_SOURCE = "comps"
MULTI_SOURCE_METHOD = "Multi-source weighted average"

ValuationOutcome = Union[ValuationResult, ErrorResult]


def confidence_from_cv(cv: float) -> int:
    """
    Confidence score (50-100) for a coefficient of variation.

    100 at or below 5%, falling linearly to 50 at 20%, clamped at 50 beyond.
    """
    if cv <= CV_FULL_CONFIDENCE:
        return 100
    span = CV_FLOOR - CV_FULL_CONFIDENCE
    score = 100 - ((cv - CV_FULL_CONFIDENCE) / span) * (100 - CONFIDENCE_FLOOR)
    return int(round(max(CONFIDENCE_FLOOR, score)))


class CompValuationEngine:
    """
    Produces a single ARV from comps and third-party point estimates.

    Pipeline order:
    1. COMPS - derive an ARV from the first satisfied comps tier
    2. BLEND - join it with point estimates, weights normalised to 1.0
    3. CONFIDENCE - score agreement between sources via CV
    """

    def __init__(self, config: Optional[ValuationConfig] = None):
        """
        Initialize valuation engine.

        Args:
            config: Pipeline configuration (default: ValuationConfig())
        """
        self._config = config or ValuationConfig()

    def valuate(
        self,
        comps: List[ComparableSale],
        point_estimates: Sequence[PointEstimate] = (),
        target: Optional[PropertyDescriptor] = None,
    ) -> ValuationOutcome:
        """
        Perform complete valuation.

        The comps-derived ARV joins the point estimates as a "comps" source
        weighted by `config.comps_weight`.

        Args:
            comps: Filtered (and usually scored) comparable sales
            point_estimates: Third-party estimates, any positive weights
            target: Subject property, used for ARV per sqft

        Returns:
            ValuationResult, or INSUFFICIENT_DATA ErrorResult when there is
            neither a priced comp nor a point estimate
        """
        comps_valuation = self.derive_from_comps(comps) if comps else None
        if isinstance(comps_valuation, ErrorResult):
            comps_valuation = None

        estimates = list(point_estimates)
        if comps_valuation is not None:
            estimates.insert(0, PointEstimate(
                source=COMPS_SOURCE,
                value=comps_valuation.arv,
                weight=self._config.comps_weight,
            ))

        if not estimates:
            return ErrorResult(
                kind=ErrorKind.INSUFFICIENT_DATA,
                message="No priced comps and no point estimates to value from",
            )

        blended = self.blend(estimates)
        if isinstance(blended, ErrorResult):
            return blended

        method = blended.method
        confidence = blended.confidence
        if comps_valuation is not None and len(estimates) == 1:
            method = f"Single source: {comps_valuation.method}"
            confidence = comps_valuation.confidence

        arv_per_sqft = None
        if target is not None and target.sqft:
            arv_per_sqft = round(blended.arv / target.sqft, 2)

        return ValuationResult(
            arv=blended.arv,
            method=method,
            confidence=confidence,
            confidence_score=blended.confidence_score,
            sources=blended.sources,
            std_dev=blended.std_dev,
            coefficient_of_variation=blended.coefficient_of_variation,
            comps_valuation=comps_valuation,
            renovation_premium=comps_valuation.premium if comps_valuation else 0.0,
            comps_used=comps_valuation.comps_used if comps_valuation else 0,
            arv_per_sqft=arv_per_sqft,
        )

    # =========================================================================
    # Comps Tiers
    # =========================================================================

    def derive_from_comps(
        self,
        comps: List[ComparableSale],
    ) -> Union[CompsValuation, ErrorResult]:
        """
        Derive an ARV from comps using the first satisfied tier.

        1. >=3 remodeled: mean of remodeled, 0% premium
        2. remodeled and unremodeled both present: capped premium over
           the unremodeled mean
        3. >=3 unremodeled only: unremodeled mean plus flat premium
        4. anything else: mean of all priced comps plus fallback premium

        Comps without a positive price are ignored throughout.

        Args:
            comps: Filtered comparable sales

        Returns:
            CompsValuation, or INSUFFICIENT_DATA ErrorResult when no comp
            is priced
        """
        usable = priced(comps)
        if not usable:
            return ErrorResult(
                kind=ErrorKind.INSUFFICIENT_DATA,
                message="No comps with a sale price available for valuation",
            )

        partition = partition_by_condition(usable)
        remodeled = partition.remodeled
        unremodeled = partition.unremodeled
        config = self._config

        if len(remodeled) >= MIN_TIER_COMPS:
            return CompsValuation(
                arv=average_price(remodeled),
                method=f"Average of {len(remodeled)} remodeled comps (0% premium)",
                tier=ValuationTier.REMODELED,
                premium=0.0,
                confidence=Confidence.HIGH,
                comps_used=len(remodeled),
                remodeled_count=len(remodeled),
                unremodeled_count=len(unremodeled),
            )

        if remodeled and unremodeled:
            renovation = self.calculate_renovation_premium(usable)
            cap_label = format_percent(config.renovation_premium_cap * 100, decimals=0)
            return CompsValuation(
                arv=renovation.avg_unremodeled * (1 + renovation.premium),
                method=(
                    f"{len(remodeled)} remodeled + {len(unremodeled)} unremodeled comps "
                    f"({format_percent(renovation.premium * 100)} premium, capped at {cap_label})"
                ),
                tier=ValuationTier.MIXED,
                premium=renovation.premium,
                confidence=renovation.confidence,
                comps_used=len(remodeled) + len(unremodeled),
                remodeled_count=len(remodeled),
                unremodeled_count=len(unremodeled),
            )

        if len(unremodeled) >= MIN_TIER_COMPS:
            premium = config.unremodeled_only_premium
            return CompsValuation(
                arv=average_price(unremodeled) * (1 + premium),
                method=(
                    f"Average of {len(unremodeled)} unremodeled comps + "
                    f"{format_percent(premium * 100, decimals=0)} renovation premium"
                ),
                tier=ValuationTier.UNREMODELED_ONLY,
                premium=premium,
                confidence=Confidence.MEDIUM,
                comps_used=len(unremodeled),
                remodeled_count=0,
                unremodeled_count=len(unremodeled),
            )

        # TODO: reconcile the flat fallback premium with the renovation premium cap
        # once there is sale data to calibrate against.
        premium = config.fallback_premium
        return CompsValuation(
            arv=average_price(usable) * (1 + premium),
            method=(
                f"Average of {len(usable)} mixed comps + "
                f"{format_percent(premium * 100, decimals=0)} premium"
            ),
            tier=ValuationTier.FALLBACK,
            premium=premium,
            confidence=Confidence.LOW,
            comps_used=len(usable),
            remodeled_count=len(remodeled),
            unremodeled_count=len(unremodeled),
        )

    def calculate_renovation_premium(self, comps: List[ComparableSale]) -> RenovationPremium:
        """
        Premium implied by remodeled over unremodeled prices.

        premium = avg(remodeled) / avg(unremodeled) - 1, capped at the
        configured maximum (default 25%). Falls back to the flat default
        premium with Low confidence when either side is missing.

        Args:
            comps: Comparable sales (unpriced comps are ignored)

        Returns:
            RenovationPremium with counts and averages
        """
        partition = partition_by_condition(priced(comps))
        remodeled = partition.remodeled
        unremodeled = partition.unremodeled

        if not remodeled or not unremodeled:
            return RenovationPremium(
                premium=self._config.unremodeled_only_premium,
                confidence=Confidence.LOW,
                remodeled_count=len(remodeled),
                unremodeled_count=len(unremodeled),
                source="default",
            )

        avg_remodeled = average_price(remodeled)
        avg_unremodeled = average_price(unremodeled)
        raw_premium = (avg_remodeled - avg_unremodeled) / avg_unremodeled
        premium = min(raw_premium, self._config.renovation_premium_cap)

        if len(remodeled) >= 3 and len(unremodeled) >= 3:
            confidence = Confidence.HIGH
        elif len(remodeled) >= 2 and len(unremodeled) >= 2:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW

        return RenovationPremium(
            premium=premium,
            confidence=confidence,
            remodeled_count=len(remodeled),
            unremodeled_count=len(unremodeled),
            avg_remodeled=avg_remodeled,
            avg_unremodeled=avg_unremodeled,
        )

    # =========================================================================
    # Multi-source Blending
    # =========================================================================

    def blend(self, estimates: Sequence[PointEstimate]) -> ValuationOutcome:
        """
        Weighted average of point estimates.

        Weights are normalised to sum to 1.0. With two or more sources the
        weighted standard deviation and CV drive a 50-100 confidence score.
        A single source carries 100% weight and a "single source" label.

        Args:
            estimates: Point estimates with positive weights

        Returns:
            ValuationResult, or INSUFFICIENT_DATA ErrorResult for no estimates
        """
        if not estimates:
            return ErrorResult(
                kind=ErrorKind.INSUFFICIENT_DATA,
                message="No valid point estimates provided",
            )

        if len(estimates) == 1:
            only = estimates[0]
            return ValuationResult(
                arv=only.value,
                method=f"Single source: {only.source}",
                confidence=Confidence.LOW,
                sources=[SourceContribution(
                    source=only.source,
                    value=only.value,
                    weight=1.0,
                    weighted_value=only.value,
                )],
            )

        total_weight = sum(e.weight for e in estimates)
        weights = [e.weight / total_weight for e in estimates]

        mean = sum(e.value * w for e, w in zip(estimates, weights))
        variance = sum(w * (e.value - mean) ** 2 for e, w in zip(estimates, weights))
        std_dev = math.sqrt(variance)
        cv = std_dev / mean
        score = confidence_from_cv(cv)

        contributions = [
            SourceContribution(
                source=e.source,
                value=e.value,
                weight=w,
                weighted_value=e.value * w,
            )
            for e, w in zip(estimates, weights)
        ]
        shares = ", ".join(
            f"{c.source} {format_percent(c.weight * 100, decimals=0)}" for c in contributions
        )

        return ValuationResult(
            arv=mean,
            method=f"{MULTI_SOURCE_METHOD} ({shares})",
            confidence=Confidence.from_score(score),
            confidence_score=score,
            sources=contributions,
            std_dev=std_dev,
            coefficient_of_variation=cv,
        )

    def confidence_interval(
        self,
        values: Sequence[float],
    ) -> Union[ConfidenceInterval, ErrorResult]:
        """
        Mean +/- one population standard deviation (68% interval).

        Non-positive values are ignored.
        """
        usable = [float(v) for v in values if v is not None and v > 0]
        if not usable:
            return ErrorResult(
                kind=ErrorKind.INSUFFICIENT_DATA,
                message="No valid estimates for a confidence interval",
            )

        mean = sum(usable) / len(usable)
        std_dev = math.sqrt(sum((v - mean) ** 2 for v in usable) / len(usable))

        return ConfidenceInterval(
            conservative=mean - std_dev,
            moderate=mean,
            aggressive=mean + std_dev,
            std_dev=std_dev,
        )
