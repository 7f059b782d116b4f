"""
Tests for input validation.
"""

from datetime import date, datetime
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from valuation.models import ErrorKind, PropertyDescriptor
from valuation.validation import (
    parse_sale_date,
    validate_comp,
    validate_estimate,
    validate_property,
    validate_zip_code,
)


class TestPropertyValidation:
    """Tests for subject property checks."""

    def test_valid_property(self):
        prop = PropertyDescriptor(
            address="123 Main St", city="Austin", state="TX", zip_code="78701",
            sqft=1500, beds=3, baths=2, purchase_price=250000,
        )

        assert validate_property(prop).valid

    def test_every_missing_field_reported(self):
        """All problems are reported in one pass."""
        result = validate_property({"address": "", "city": " ", "state": "TX"})

        assert not result.valid
        assert result.missing_required_fields == ("address", "city", "zip_code")
        assert "Address is required" in result.errors
        assert "City is required" in result.errors
        assert "Zip code is required" in result.errors

    def test_to_error_is_input_kind(self):
        """A failed validation converts to an INPUT ErrorResult."""
        error = validate_property({"address": "1 Oak St", "city": "Austin", "state": "TX", "zip": "787"}).to_error()

        assert error.kind == ErrorKind.INPUT
        assert error.message.startswith("Zip code must be 5 digits")
        assert error.to_dict()["error"] is True

    def test_purchase_price_rules(self):
        """Purchase price is optional unless required, and must be positive."""
        base = {"address": "1 Oak St", "city": "Austin", "state": "TX", "zip_code": "78701"}

        assert validate_property(base).valid
        assert not validate_property(base, require_purchase_price=True).valid
        assert not validate_property({**base, "purchase_price": -5}).valid

    def test_negative_dimensions_rejected(self):
        base = {"address": "1 Oak St", "city": "Austin", "state": "TX", "zip_code": "78701"}

        result = validate_property({**base, "sqft": -100})

        assert "sqft cannot be negative" in result.errors

    def test_zip_formats(self):
        assert validate_zip_code("92101")
        assert validate_zip_code("92101-1234")
        assert not validate_zip_code("9210")
        assert not validate_zip_code("ABCDE")


class TestCompAndEstimateValidation:
    """Tests for raw comp and estimate records."""

    def test_comp_requires_address_price_and_date(self):
        result = validate_comp({"address": "", "price": 0, "sale_date": "not a date"})

        assert not result.valid
        assert len(result.errors) == 3

    def test_valid_comp(self):
        assert validate_comp({"address": "1 Oak St", "price": 300000, "saleDate": "03/15/2024"}).valid

    def test_estimate_weight_range(self):
        assert validate_estimate({"source": "zestimate", "value": 500000}).valid
        assert validate_estimate({"source": "zestimate", "value": 500000, "weight": 1}).valid
        assert not validate_estimate({"source": "zestimate", "value": 500000, "weight": 1.2}).valid
        assert not validate_estimate({"source": "", "value": -1}).valid


class TestSaleDateParsing:
    """Tests for the tolerant sale date parser."""

    def test_formats(self):
        assert parse_sale_date("2024-03-15") == date(2024, 3, 15)
        assert parse_sale_date("2024-03-15T10:30:00Z") == date(2024, 3, 15)
        assert parse_sale_date("03/15/2024") == date(2024, 3, 15)
        assert parse_sale_date(datetime(2024, 3, 15, 9, 0)) == date(2024, 3, 15)

    def test_unparsable_is_none(self):
        assert parse_sale_date("last spring") is None
        assert parse_sale_date("") is None
        assert parse_sale_date(None) is None
