"""
Core data models shared across the valuation pipeline.

- PropertyDescriptor: the subject property being valued
- ErrorKind / ErrorResult: explicit error values returned at the core boundary
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


def _optional_float(value: Any) -> Optional[float]:
    """Parse a numeric field, treating blanks and garbage as absent."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PropertyDescriptor:
    """
    The subject property.

    Address fields are required for sourcing; the physical attributes are
    optional and only participate in similarity filtering when present.
    """
    address: str
    city: str
    state: str
    zip_code: str
    sqft: Optional[float] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    purchase_price: Optional[float] = None

    @property
    def full_address(self) -> str:
        """Single-line address, e.g. '12 Oak St, Austin, TX 78701'."""
        return f"{self.address}, {self.city}, {self.state} {self.zip_code}"

    @classmethod
    def from_dict(cls, data: dict) -> "PropertyDescriptor":
        """Build from a loosely-typed mapping (API payloads, sheet rows)."""
        return cls(
            address=str(data.get("address") or "").strip(),
            city=str(data.get("city") or "").strip(),
            state=str(data.get("state") or "").strip(),
            zip_code=str(data.get("zip_code") or data.get("zip") or "").strip(),
            sqft=_optional_float(data.get("sqft")),
            beds=_optional_float(data.get("beds")),
            baths=_optional_float(data.get("baths")),
            purchase_price=_optional_float(data.get("purchase_price")),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "sqft": self.sqft,
            "beds": self.beds,
            "baths": self.baths,
            "purchase_price": self.purchase_price,
        }


class ErrorKind(Enum):
    """
    Error taxonomy for the core boundary.

    INPUT: missing/invalid required fields, fails fast
    INSUFFICIENT_DATA: nothing usable to value from
    SOURCE_UNAVAILABLE: every candidate external source blocked or failed
    """
    INPUT = "input"
    INSUFFICIENT_DATA = "insufficient_data"
    SOURCE_UNAVAILABLE = "source_unavailable"


@dataclass(frozen=True)
class ErrorResult:
    """
    An explicit failure value.

    Returned instead of raising so callers can tell "no usable data"
    apart from "zero dollars".
    """
    kind: ErrorKind
    message: str
    details: tuple = ()

    @property
    def error(self) -> bool:
        """Always True; mirrors the `{error: true}` contract."""
        return True

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        result = {
            "error": True,
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = list(self.details)
        return result


def is_error(value: Any) -> bool:
    """Check whether a pipeline return value is an ErrorResult."""
    return isinstance(value, ErrorResult)
