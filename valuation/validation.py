"""
Input Validation - Property, Comp and Estimate Checks

Implements the InputError side of the error taxonomy. Validation fails fast:
callers get every problem in one pass and no partial computation happens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Union

from valuation.models import ErrorKind, ErrorResult, PropertyDescriptor


# =============================================================================
# Configuration Constants
# =============================================================================

# 5-digit ZIP or ZIP+4
US_ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")

REQUIRED_ADDRESS_FIELDS = ("address", "city", "state", "zip_code")


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation pass."""

    valid: bool
    errors: tuple[str, ...]
    missing_required_fields: tuple[str, ...] = ()

    def to_error(self) -> Optional[ErrorResult]:
        """Convert a failed result into an INPUT ErrorResult."""
        if self.valid:
            return None
        return ErrorResult(
            kind=ErrorKind.INPUT,
            message="; ".join(self.errors),
            details=self.missing_required_fields,
        )


# =============================================================================
# Field Validators
# =============================================================================


def validate_zip_code(zip_code: str) -> bool:
    """Check a US ZIP code (5 digits or ZIP+4)."""
    return bool(US_ZIP_PATTERN.match(zip_code.strip()))


def parse_sale_date(value: Any) -> Optional[date]:
    """
    Parse a sale date from a date, datetime or ISO-style string.

    Returns None for anything unparsable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    # Accept full ISO timestamps by keeping the date part
    text = text.split("T")[0].split(" ")[0]
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _is_positive_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


# =============================================================================
# Validation Functions
# =============================================================================


def validate_address(address: str, city: str, state: str, zip_code: str) -> ValidationResult:
    """
    Validate the address block required for sourcing and cache keys.

    Args:
        address: Street address
        city: City
        state: State code
        zip_code: ZIP code

    Returns:
        ValidationResult listing every failed field
    """
    errors: list[str] = []
    missing: list[str] = []

    values = {"address": address, "city": city, "state": state, "zip_code": zip_code}
    labels = {"address": "Address", "city": "City", "state": "State", "zip_code": "Zip code"}

    for name in REQUIRED_ADDRESS_FIELDS:
        if not values[name] or not str(values[name]).strip():
            missing.append(name)
            errors.append(f"{labels[name]} is required")

    if "zip_code" not in missing and not validate_zip_code(str(zip_code)):
        errors.append("Zip code must be 5 digits (e.g., 92101) or 9 digits (e.g., 92101-1234)")

    return ValidationResult(
        valid=not errors,
        errors=tuple(errors),
        missing_required_fields=tuple(missing),
    )


def validate_property(
    prop: Union[PropertyDescriptor, dict],
    require_purchase_price: bool = False,
) -> ValidationResult:
    """
    Validate a subject property.

    Args:
        prop: PropertyDescriptor or raw mapping
        require_purchase_price: Treat a missing purchase price as an error

    Returns:
        ValidationResult
    """
    if isinstance(prop, dict):
        prop = PropertyDescriptor.from_dict(prop)

    result = validate_address(prop.address, prop.city, prop.state, prop.zip_code)
    errors = list(result.errors)
    missing = list(result.missing_required_fields)

    if prop.purchase_price is None:
        if require_purchase_price:
            missing.append("purchase_price")
            errors.append("Purchase price must be greater than 0")
    elif prop.purchase_price <= 0:
        errors.append("Purchase price must be greater than 0")

    for name in ("sqft", "beds", "baths"):
        value = getattr(prop, name)
        if value is not None and value < 0:
            errors.append(f"{name} cannot be negative")

    return ValidationResult(
        valid=not errors,
        errors=tuple(errors),
        missing_required_fields=tuple(missing),
    )


def validate_comp(data: dict) -> ValidationResult:
    """
    Validate a raw comparable sale record.

    A comp needs an address, a positive price and a parsable sale date to
    be usable for valuation.
    """
    errors: list[str] = []

    if not str(data.get("address") or "").strip():
        errors.append("Comp address is required")
    if not _is_positive_number(data.get("price")):
        errors.append("Comp price must be greater than 0")
    if parse_sale_date(data.get("sale_date", data.get("saleDate"))) is None:
        errors.append("Comp sale date is missing or unparsable")

    return ValidationResult(valid=not errors, errors=tuple(errors))


def validate_estimate(data: dict) -> ValidationResult:
    """Validate a raw point estimate: named source, value > 0, weight in (0, 1]."""
    errors: list[str] = []

    if not str(data.get("source") or "").strip():
        errors.append("Estimate source is required")
    if not _is_positive_number(data.get("value")):
        errors.append("Estimate value must be greater than 0")

    weight = data.get("weight")
    if weight is not None:
        if not _is_positive_number(weight) or float(weight) > 1:
            errors.append("Estimate weight must be in (0, 1]")

    return ValidationResult(valid=not errors, errors=tuple(errors))
