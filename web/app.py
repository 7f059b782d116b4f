"""
FastAPI application for the ARV valuation service.

Endpoints:
- POST /api/valuation: full pipeline, from supplied data or live sources
- POST /api/location-adjustment: location premiums on a base ARV
- POST /api/historical-validation: ARV against last sale and trend
- GET /api/usage: quota usage per source

Production deployment configuration via environment variables.
"""

import logging
import os
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sourcing import (
    CacheStore,
    DataKind,
    QuotaLedger,
    RequestsTransport,
    SourceOrchestrator,
    build_providers,
    create_store,
)
from utils.config import Config, ValuationConfig
from valuation.comp_engine import ComparableSale, PointEstimate
from valuation.historical import HistoricalValidator
from valuation.location import (
    LocationAdjuster,
    NoiseSignal,
    SchoolSignal,
    WalkabilitySignal,
)
from valuation.models import ErrorKind, ErrorResult, PropertyDescriptor, is_error
from valuation.pipeline import LocationSignals, SaleHistory, ValuationPipeline
from valuation.validation import parse_sale_date, validate_comp, validate_estimate


logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# =============================================================================
# Environment Configuration
# =============================================================================

IS_PRODUCTION = os.getenv("PRODUCTION", "").lower() == "true"

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else []
if not ALLOWED_ORIGINS and not IS_PRODUCTION:
    # Development fallback only
    ALLOWED_ORIGINS = ["http://localhost:8000", "http://127.0.0.1:8000"]

# HTTP status per error kind
ERROR_STATUS = {
    ErrorKind.INPUT: 400,
    ErrorKind.INSUFFICIENT_DATA: 422,
    ErrorKind.SOURCE_UNAVAILABLE: 503,
}


# =============================================================================
# Request Models
# =============================================================================

class PropertyInput(BaseModel):
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    sqft: Optional[float] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    purchase_price: Optional[float] = None

    def to_descriptor(self) -> PropertyDescriptor:
        return PropertyDescriptor.from_dict({
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "sqft": self.sqft,
            "beds": self.beds,
            "baths": self.baths,
            "purchase_price": self.purchase_price,
        })


class EstimateInput(BaseModel):
    source: str
    value: float
    weight: Optional[float] = None


class LocationInput(BaseModel):
    school_ratings: List[float] = []
    walk_score: Optional[float] = None
    transit_score: float = 0
    bike_score: float = 0
    noise_score: Optional[float] = None
    noise_factors: List[str] = []

    def to_signals(self) -> LocationSignals:
        return LocationSignals(
            schools=SchoolSignal.from_ratings(self.school_ratings),
            walkability=WalkabilitySignal(
                walk_score=self.walk_score,
                transit_score=self.transit_score,
                bike_score=self.bike_score,
            ) if self.walk_score is not None else None,
            environmental=NoiseSignal(
                noise_score=self.noise_score,
                factors=tuple(self.noise_factors),
            ) if self.noise_score is not None else None,
        )


class HistoryInput(BaseModel):
    last_sale_price: Optional[float] = None
    last_sale_date: Optional[str] = None
    appreciation_rate: float = 0.0

    def to_history(self) -> SaleHistory:
        return SaleHistory(
            last_sale_price=self.last_sale_price,
            last_sale_date=parse_sale_date(self.last_sale_date),
            appreciation_rate=self.appreciation_rate,
        )


class ValuationRequest(BaseModel):
    """
    Valuation request.

    With `fetch` false the supplied comps and estimates are used as-is.
    With `fetch` true they are sourced live and the supplied lists are
    ignored.
    """
    property: PropertyInput
    comps: List[Dict[str, Any]] = []
    estimates: List[EstimateInput] = []
    location: Optional[LocationInput] = None
    history: Optional[HistoryInput] = None
    fetch: bool = False
    preferred_source: Optional[str] = None
    force_refresh: bool = False


class LocationAdjustmentRequest(BaseModel):
    base_arv: float
    location: LocationInput


class HistoricalValidationRequest(BaseModel):
    estimated_arv: float
    last_sale_price: Optional[float] = None
    last_sale_date: Optional[str] = None
    appreciation_rate: float = 0.0


# =============================================================================
# Service Wiring
# =============================================================================

@dataclass
class ValuationServices:
    """Long-lived components shared across requests."""
    config: ValuationConfig
    ledger: QuotaLedger
    cache: CacheStore
    pipeline: ValuationPipeline
    adjuster: LocationAdjuster
    reference_date: Optional[date] = None

    def historical_validator(self) -> HistoricalValidator:
        return HistoricalValidator(reference_date=self.reference_date, config=self.config)


def build_services(config: Config, reference_date: Optional[date] = None) -> ValuationServices:
    """
    Wire store, ledger, cache, providers and pipeline from app settings.

    Args:
        config: Application settings
        reference_date: Fixed "today" for comp age and history (default: today)

    Returns:
        ValuationServices
    """
    valuation_config = config.valuation_config()
    # Quota counters stay out of the size-bounded cache store
    counter_store = create_store(config.store_backend, config.redis_url, maxsize=None)
    cache_store = create_store(config.store_backend, config.redis_url)
    ledger = QuotaLedger(counter_store, config=valuation_config)
    cache = CacheStore(cache_store, config=valuation_config)

    private_zillow = None
    if config.private_zillow_host:
        private_zillow = (config.private_zillow_host, {
            kind: path for kind, path in (
                (DataKind.COMPS, config.private_zillow_comps_path),
                (DataKind.ESTIMATE, config.private_zillow_estimate_path),
                (DataKind.WALK_SCORE, config.private_zillow_walk_score_path),
            ) if path
        })
    redfin = None
    if config.redfin_host and config.redfin_comps_path:
        redfin = (config.redfin_host, {DataKind.COMPS: config.redfin_comps_path})

    providers = build_providers(
        rapidapi_key=config.rapidapi_key,
        gemini_api_key=config.gemini_api_key,
        private_zillow=private_zillow,
        redfin=redfin,
        timeout=config.request_timeout,
    )
    logger.info("Configured sources: %s", ", ".join(providers) or "none")

    orchestrator = SourceOrchestrator(
        ledger=ledger,
        cache=cache,
        providers=providers,
        transport=RequestsTransport(timeout=config.request_timeout),
        config=valuation_config,
    )
    pipeline = ValuationPipeline(
        config=valuation_config,
        reference_date=reference_date,
        orchestrator=orchestrator,
    )
    return ValuationServices(
        config=valuation_config,
        ledger=ledger,
        cache=cache,
        pipeline=pipeline,
        adjuster=LocationAdjuster(),
        reference_date=reference_date,
    )


def error_response(error: ErrorResult) -> JSONResponse:
    """Map an ErrorResult to a JSON error response."""
    return JSONResponse(
        status_code=ERROR_STATUS.get(error.kind, 400),
        content={
            "success": False,
            "message": error.message,
            "error": error.to_dict(),
        },
    )


def _input_error(errors: List[str]) -> JSONResponse:
    return error_response(ErrorResult(
        kind=ErrorKind.INPUT,
        message="; ".join(errors),
    ))


# =============================================================================
# Application
# =============================================================================

def create_app(
    config: Optional[Config] = None,
    services: Optional[ValuationServices] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Application settings (default: Config.load())
        services: Pre-built services, mainly for tests (default: built from config)
    """
    config = config or Config.load()

    app = FastAPI(
        title="ARV Valuation Engine",
        description="After-repair value estimates from comps, estimates and location data",
        version=VERSION,
        docs_url=None if IS_PRODUCTION else "/docs",
        redoc_url=None if IS_PRODUCTION else "/redoc",
        openapi_url=None if IS_PRODUCTION else "/openapi.json",
        debug=config.debug and not IS_PRODUCTION,
    )

    # Healthchecks are registered first and perform no IO
    @app.get("/", include_in_schema=False)
    def root():
        return {"status": "ok"}

    @app.get("/health", include_in_schema=False)
    def health():
        return {"status": "healthy", "version": VERSION}

    if ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    state = services or build_services(config)
    app.state.services = state

    @app.post("/api/valuation")
    def valuation_endpoint(request_data: ValuationRequest):
        """
        Value one property.

        Returns:
            - success: true with the full valuation report
            - success: false with message and error on failure
        """
        prop = request_data.property.to_descriptor()
        history = request_data.history.to_history() if request_data.history else None

        if request_data.fetch:
            outcome = state.pipeline.run(
                prop,
                preferred_source=request_data.preferred_source,
                force_refresh=request_data.force_refresh,
                history=history,
            )
        else:
            errors: List[str] = []
            comps: List[ComparableSale] = []
            for index, raw in enumerate(request_data.comps):
                result = validate_comp(raw)
                if not result.valid:
                    errors.extend(f"comps[{index}]: {e}" for e in result.errors)
                    continue
                comps.append(ComparableSale.from_dict(raw))

            estimates: List[PointEstimate] = []
            for index, raw in enumerate(request_data.estimates):
                payload = {"source": raw.source, "value": raw.value, "weight": raw.weight}
                result = validate_estimate(payload)
                if not result.valid:
                    errors.extend(f"estimates[{index}]: {e}" for e in result.errors)
                    continue
                estimates.append(PointEstimate(
                    source=raw.source,
                    value=raw.value,
                    weight=raw.weight if raw.weight is not None else state.config.external_estimate_weight,
                ))

            if errors:
                return _input_error(errors)

            location = request_data.location.to_signals() if request_data.location else None
            outcome = state.pipeline.evaluate(prop, comps, estimates, location, history)

        if is_error(outcome):
            return error_response(outcome)
        return JSONResponse({"success": True, **outcome.to_dict()})

    @app.post("/api/location-adjustment")
    def location_adjustment_endpoint(request_data: LocationAdjustmentRequest):
        """Apply location premiums and discounts to a base ARV."""
        signals = request_data.location.to_signals()
        outcome = state.adjuster.adjust(
            request_data.base_arv,
            schools=signals.schools,
            walkability=signals.walkability,
            environmental=signals.environmental,
        )
        if is_error(outcome):
            return error_response(outcome)
        return JSONResponse({"success": True, **outcome.to_dict()})

    @app.post("/api/historical-validation")
    def historical_validation_endpoint(request_data: HistoricalValidationRequest):
        """Check an ARV against the property's last sale and trend."""
        outcome = state.historical_validator().validate(
            request_data.estimated_arv,
            request_data.last_sale_price,
            parse_sale_date(request_data.last_sale_date),
            request_data.appreciation_rate,
        )
        if is_error(outcome):
            return error_response(outcome)
        return JSONResponse({"success": True, **outcome.to_dict()})

    @app.get("/api/usage")
    def usage_endpoint():
        """Quota usage, status and reset timing for every source."""
        return {"success": True, **state.ledger.summary()}

    @app.get("/api/health")
    def api_health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": VERSION,
            "environment": "production" if IS_PRODUCTION else "development",
        }

    return app


# Create app instance for uvicorn
app = create_app()
