"""
Valuation Pipeline - End-to-End ARV Analysis

Runs the full chain for one subject property:

    sourcing -> comps filter & scorer -> valuation engine
             -> location adjuster -> historical validator -> report

`evaluate` works on data the caller already holds. `run` fetches it first
through the SourceOrchestrator.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, List, Optional, Sequence, Union

from utils.config import ValuationConfig
from utils.formatting import format_currency
from sourcing.providers import DataKind

from .comp_engine import (
    ComparableSale,
    CompQualityScorer,
    CompsStatistics,
    CompValuationEngine,
    ConfidenceInterval,
    PointEstimate,
    ValuationResult,
    comps_statistics,
)
from .historical import HistoricalValidation, HistoricalValidator
from .location import (
    LocationAdjuster,
    LocationAdjustment,
    NoiseSignal,
    SchoolSignal,
    WalkabilitySignal,
)
from .models import ErrorKind, ErrorResult, PropertyDescriptor, is_error
from .validation import validate_property


logger = logging.getLogger(__name__)


# =============================================================================
# Inputs
# =============================================================================

@dataclass(frozen=True)
class LocationSignals:
    """Optional location inputs for the adjuster."""
    schools: Optional[SchoolSignal] = None
    walkability: Optional[WalkabilitySignal] = None
    environmental: Optional[NoiseSignal] = None

    @property
    def is_empty(self) -> bool:
        return self.schools is None and self.walkability is None and self.environmental is None

    @classmethod
    def from_payloads(
        cls,
        schools: Optional[dict] = None,
        walkability: Optional[dict] = None,
        environmental: Optional[dict] = None,
    ) -> "LocationSignals":
        """Build from normalised provider payloads (any may be None)."""
        return cls(
            schools=SchoolSignal(
                avg_rating=float(schools["avg_rating"]),
                school_count=int(schools.get("school_count") or 0),
            ) if schools and schools.get("avg_rating") else None,
            walkability=WalkabilitySignal(
                walk_score=float(walkability["walk_score"]),
                transit_score=float(walkability.get("transit_score") or 0),
                bike_score=float(walkability.get("bike_score") or 0),
            ) if walkability and walkability.get("walk_score") is not None else None,
            environmental=NoiseSignal(
                noise_score=float(environmental["noise_score"]),
                factors=tuple(environmental.get("factors") or ()),
            ) if environmental and environmental.get("noise_score") is not None else None,
        )


@dataclass(frozen=True)
class SaleHistory:
    """Last recorded sale and local appreciation, for the historical check."""
    last_sale_price: Optional[float]
    last_sale_date: Optional[date]
    appreciation_rate: float = 0.0  # Annual, in percent


# =============================================================================
# Output
# =============================================================================

@dataclass(frozen=True)
class ValuationReport:
    """
    Final valuation record for one property.

    Plain data; downstream collaborators (sheets, PDFs, dashboards) read
    `to_dict()` and nothing else.
    """
    property: PropertyDescriptor
    valuation: ValuationResult
    comps: List[ComparableSale] = field(default_factory=list)
    statistics: Optional[CompsStatistics] = None
    location: Optional[LocationAdjustment] = None
    historical: Optional[HistoricalValidation] = None
    confidence_interval: Optional[ConfidenceInterval] = None
    provenance: Dict[str, dict] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def error(self) -> bool:
        return False

    @property
    def final_arv(self) -> float:
        """Location-adjusted ARV when available, else the blended ARV."""
        if self.location is not None:
            return self.location.adjusted_arv
        return self.valuation.arv

    @property
    def potential_profit(self) -> Optional[float]:
        """Final ARV minus purchase price, when a purchase price is known."""
        if not self.property.purchase_price:
            return None
        return self.final_arv - self.property.purchase_price

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "error": False,
            "property": self.property.to_dict(),
            "final_arv": self.final_arv,
            "potential_profit": self.potential_profit,
            "valuation": self.valuation.to_dict(),
            "comps": [c.to_dict() for c in self.comps],
            "statistics": self.statistics.to_dict() if self.statistics else None,
            "location": self.location.to_dict() if self.location else None,
            "historical": self.historical.to_dict() if self.historical else None,
            "confidence_interval": (
                self.confidence_interval.to_dict() if self.confidence_interval else None
            ),
            "provenance": dict(self.provenance),
            "warnings": list(self.warnings),
        }


PipelineOutcome = Union[ValuationReport, ErrorResult]


class ValuationPipeline:
    """
    Complete valuation pipeline.

    Pipeline order:
    1. VALIDATE - reject bad property input before any work
    2. SCORE - filter comps by recency/similarity and score quality
    3. VALUATE - tiered comps ARV blended with point estimates
    4. ADJUST - location premiums/discounts
    5. VALIDATE HISTORY - flag large deviations from trend
    """

    def __init__(
        self,
        config: Optional[ValuationConfig] = None,
        reference_date: date = None,
        orchestrator=None,
    ):
        """
        Initialize pipeline.

        Args:
            config: Pipeline configuration (default: ValuationConfig())
            reference_date: Reference date for comp age and history (default: today)
            orchestrator: SourceOrchestrator, required only for `run`
        """
        self._config = config or ValuationConfig()
        self._reference_date = reference_date or date.today()
        self._scorer = CompQualityScorer(reference_date=self._reference_date, config=self._config)
        self._engine = CompValuationEngine(config=self._config)
        self._adjuster = LocationAdjuster()
        self._historical = HistoricalValidator(reference_date=self._reference_date, config=self._config)
        self._orchestrator = orchestrator

    def evaluate(
        self,
        prop: PropertyDescriptor,
        comps: Sequence[ComparableSale],
        point_estimates: Sequence[PointEstimate] = (),
        location: Optional[LocationSignals] = None,
        history: Optional[SaleHistory] = None,
    ) -> PipelineOutcome:
        """
        Value a property from data already in hand.

        Args:
            prop: Subject property
            comps: Raw comparable sales
            point_estimates: Third-party estimates
            location: Location signals
            history: Last sale and appreciation rate

        Returns:
            ValuationReport, or ErrorResult (INPUT / INSUFFICIENT_DATA)
        """
        validation = validate_property(prop)
        if not validation.valid:
            return validation.to_error()

        warnings: List[str] = []

        scored = self._scorer.score(list(comps), prop)
        if comps and not scored:
            warnings.append(f"All {len(comps)} comps were outside the recency window")

        valuation = self._engine.valuate(scored, point_estimates, prop)
        if is_error(valuation):
            return valuation

        adjustment = None
        if location is not None and not location.is_empty:
            adjustment = self._adjuster.adjust(
                valuation.arv,
                schools=location.schools,
                walkability=location.walkability,
                environmental=location.environmental,
            )
            if is_error(adjustment):
                warnings.append(adjustment.message)
                adjustment = None

        final_arv = adjustment.adjusted_arv if adjustment else valuation.arv

        verdict = None
        if history is not None:
            verdict = self._historical.validate(
                final_arv,
                history.last_sale_price,
                history.last_sale_date,
                history.appreciation_rate,
            )
            if is_error(verdict):
                warnings.append(verdict.message)
                verdict = None
            elif verdict.warning:
                warnings.append(verdict.warning)

        interval = None
        if len(valuation.sources) >= 2:
            interval = self._engine.confidence_interval([s.value for s in valuation.sources])
            if is_error(interval):
                interval = None

        logger.info(
            "Valued %s at %s (%s, %s confidence)",
            prop.full_address,
            format_currency(final_arv),
            valuation.method,
            valuation.confidence.value,
        )

        return ValuationReport(
            property=prop,
            valuation=valuation,
            comps=scored,
            statistics=comps_statistics(scored),
            location=adjustment,
            historical=verdict,
            confidence_interval=interval,
            warnings=warnings,
        )

    def run(
        self,
        prop: PropertyDescriptor,
        preferred_source: Optional[str] = None,
        force_refresh: bool = False,
        history: Optional[SaleHistory] = None,
    ) -> PipelineOutcome:
        """
        Fetch comps, an estimate and location data, then evaluate.

        Location data failures only drop that factor. If neither comps nor
        an estimate can be sourced the SOURCE_UNAVAILABLE error is returned
        as-is.

        Raises:
            ValueError: If the pipeline was built without an orchestrator
        """
        if self._orchestrator is None:
            raise ValueError("run() requires a SourceOrchestrator")

        validation = validate_property(prop)
        if not validation.valid:
            return validation.to_error()

        fetched = {
            kind: self._orchestrator.fetch(kind, prop, preferred=preferred_source, force_refresh=force_refresh)
            for kind in DataKind
        }

        comps_result = fetched[DataKind.COMPS]
        estimate_result = fetched[DataKind.ESTIMATE]
        if is_error(comps_result) and is_error(estimate_result):
            return ErrorResult(
                kind=ErrorKind.SOURCE_UNAVAILABLE,
                message="No data source available for comps or estimates",
                details=comps_result.details + estimate_result.details,
            )

        comps: List[ComparableSale] = []
        if not is_error(comps_result):
            comps = [ComparableSale.from_dict(row) for row in comps_result.data]

        estimates: List[PointEstimate] = []
        if not is_error(estimate_result):
            estimates.append(PointEstimate(
                source=estimate_result.data["source"],
                value=float(estimate_result.data["value"]),
                weight=self._config.external_estimate_weight,
            ))

        def payload(kind):
            result = fetched[kind]
            return None if is_error(result) else result.data

        location = LocationSignals.from_payloads(
            schools=payload(DataKind.SCHOOLS),
            walkability=payload(DataKind.WALK_SCORE),
            environmental=payload(DataKind.NOISE_SCORE),
        )

        report = self.evaluate(prop, comps, estimates, location, history)
        if is_error(report):
            return report

        provenance = {}
        warnings = list(report.warnings)
        for kind, result in fetched.items():
            provenance[kind.value] = result.to_dict()
            if not is_error(result) and result.is_stale:
                warnings.append(f"Cached {kind.value} from {result.source} is stale")

        return replace(report, provenance=provenance, warnings=warnings)
