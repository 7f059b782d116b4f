"""
Historical Validator

Sanity-checks a proposed ARV against a trend-extrapolated expectation:

    expected = last_sale_price * (1 + annual_rate / 100) ** years_since_sale

A deviation beyond the configured threshold (default 15%) is a non-fatal
warning attached to the verdict; the caller makes the final call.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from utils.config import ValuationConfig
from utils.formatting import format_percent
from valuation.models import ErrorKind, ErrorResult

DAYS_PER_YEAR = 365
INSUFFICIENT_HISTORY_WARNING = "Insufficient historical data for validation"


@dataclass(frozen=True)
class HistoricalValidation:
    """Verdict of a historical trend check."""
    is_valid: bool
    deviation_percent: Optional[float] = None
    expected_value: Optional[float] = None
    years_since_sale: Optional[float] = None
    warning: Optional[str] = None

    @property
    def error(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "error": False,
            "is_valid": self.is_valid,
            "deviation_percent": self.deviation_percent,
            "expected_value": self.expected_value,
            "years_since_sale": self.years_since_sale,
            "warning": self.warning,
        }


class HistoricalValidator:
    """Compares an estimated ARV with appreciation from the last recorded sale."""

    def __init__(self, reference_date: date = None, config: Optional[ValuationConfig] = None):
        self._reference_date = reference_date or date.today()
        self._config = config or ValuationConfig()

    def validate(
        self,
        estimated_arv: float,
        last_sale_price: Optional[float],
        last_sale_date: Optional[date],
        appreciation_rate: float = 0.0,
    ) -> Union[HistoricalValidation, ErrorResult]:
        """
        Check an ARV against the historical trend.

        Args:
            estimated_arv: Proposed ARV, must be positive
            last_sale_price: Price at the property's last sale
            last_sale_date: Date of the last sale
            appreciation_rate: Annual appreciation in percent (3.5 = 3.5%)

        Returns:
            HistoricalValidation. Missing sale history is valid with a
            warning rather than an error. A non-positive ARV is an INPUT
            ErrorResult.
        """
        if estimated_arv is None or estimated_arv <= 0:
            return ErrorResult(
                kind=ErrorKind.INPUT,
                message="Estimated ARV must be a positive number",
            )

        if not last_sale_price or last_sale_price <= 0 or last_sale_date is None:
            return HistoricalValidation(is_valid=True, warning=INSUFFICIENT_HISTORY_WARNING)

        years = max(0, (self._reference_date - last_sale_date).days) / DAYS_PER_YEAR
        expected = last_sale_price * (1 + (appreciation_rate or 0.0) / 100) ** years
        raw_deviation = (estimated_arv - expected) / expected * 100
        deviation = round(raw_deviation, 1)

        # Judged unrounded: 15.04% is beyond a 15% threshold
        is_valid = abs(raw_deviation) <= self._config.historical_deviation_threshold

        warning = None
        if not is_valid:
            if deviation > 0:
                warning = (
                    f"Estimated ARV is {format_percent(deviation)} higher than historical "
                    f"trend suggests. Verify comps and market conditions."
                )
            else:
                warning = (
                    f"Estimated ARV is {format_percent(abs(deviation))} lower than historical "
                    f"trend suggests. May be undervalued."
                )

        return HistoricalValidation(
            is_valid=is_valid,
            deviation_percent=deviation,
            expected_value=round(expected, 2),
            years_since_sale=round(years, 2),
            warning=warning,
        )
