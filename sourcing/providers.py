"""
Source Providers - Fetch and Normalise External Data

One provider per external source. Each knows its endpoints and how to
normalise responses into plain, cacheable payloads:

- COMPS: list of comparable-sale dicts (ComparableSale.to_dict shape)
- ESTIMATE: {"source", "value"}
- SCHOOLS: {"avg_rating", "school_count", "schools"}
- WALK_SCORE: {"walk_score", "transit_score", "bike_score"}
- NOISE_SCORE: {"noise_score", "factors"}

Providers never invent values: a response without the expected figures
raises SourceError so the orchestrator moves on to the next source.
"""

from __future__ import annotations

import json
import math
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Final, Mapping, Optional

from valuation.comp_engine.models import ComparableSale
from valuation.models import PropertyDescriptor

from sourcing.cache import DataClass
from sourcing.transport import HttpTransport, SourceError, TransportResponse, raise_for_status


class DataKind(Enum):
    """What the orchestrator is asked to fetch."""
    COMPS = "comps"
    ESTIMATE = "estimate"
    SCHOOLS = "schools"
    WALK_SCORE = "walk_score"
    NOISE_SCORE = "noise_score"


DATA_CLASS_FOR_KIND: Final[dict[DataKind, DataClass]] = {
    DataKind.COMPS: DataClass.COMPS,
    DataKind.ESTIMATE: DataClass.ESTIMATES,
    DataKind.SCHOOLS: DataClass.SCHOOLS,
    DataKind.WALK_SCORE: DataClass.WALK_SCORE,
    DataKind.NOISE_SCORE: DataClass.NOISE_SCORE,
}


# =============================================================================
# Normalisation Helpers
# =============================================================================

def _first(data: Mapping, *paths: str) -> Any:
    """First truthy value among dotted paths, e.g. "description.sqft"."""
    for path in paths:
        value: Any = data
        for part in path.split("."):
            if not isinstance(value, Mapping):
                value = None
                break
            value = value.get(part)
        if value:
            return value
    return None


def _payload(body: Any, source_id: str) -> Mapping:
    """Unwrap a JSON object body, tolerating a top-level "data" envelope."""
    if not isinstance(body, Mapping):
        raise SourceError(f"{source_id} returned a non-JSON body", source_id=source_id)
    if body.get("error"):
        error = body["error"]
        message = error.get("message") if isinstance(error, Mapping) else str(error)
        raise SourceError(f"{source_id} error: {message}", source_id=source_id)
    data = body.get("data")
    return data if isinstance(data, Mapping) else body


def normalise_comp(
    raw: Mapping,
    field_map: Mapping[str, tuple[str, ...]],
    data_source: str,
    default_zip: str,
) -> dict:
    """Map one raw home record into the comparable-sale dict shape."""
    values = {name: _first(raw, *paths) for name, paths in field_map.items()}
    comp = ComparableSale.from_dict({
        "address": values.get("address") or "Unknown",
        "price": values.get("price"),
        "sqft": values.get("sqft"),
        "beds": values.get("beds"),
        "baths": values.get("baths"),
        "sale_date": values.get("sale_date"),
        "distance": values.get("distance"),
        "condition": values.get("condition"),
        "zip_code": values.get("zip_code") or default_zip,
        "data_source": data_source,
    })
    return comp.to_dict()


# =============================================================================
# Provider Base
# =============================================================================

class SourceProvider(ABC):
    """Fetches and normalises data from one external source."""

    source_id: str = ""

    def __init__(self, endpoints: Mapping[DataKind, str], timeout: float = 30):
        self._endpoints = dict(endpoints)
        self._timeout = timeout

    def supports(self, kind: DataKind) -> bool:
        return kind in self._endpoints

    def fetch(self, kind: DataKind, prop: PropertyDescriptor, transport: HttpTransport) -> Any:
        """
        Fetch one kind of data for a property.

        Raises:
            SourceError: Unsupported kind, error status or unusable payload
            TransientSourceError: Retryable failure
        """
        if not self.supports(kind):
            raise SourceError(f"{self.source_id} does not provide {kind.value}", source_id=self.source_id)
        response = self._call(kind, prop, transport)
        raise_for_status(response, self.source_id)
        return self._normalise(kind, _payload(response.body, self.source_id), prop)

    @abstractmethod
    def _call(self, kind: DataKind, prop: PropertyDescriptor, transport: HttpTransport) -> TransportResponse:
        ...

    @abstractmethod
    def _normalise(self, kind: DataKind, data: Mapping, prop: PropertyDescriptor) -> Any:
        ...

    def _require(self, value: Any, what: str) -> Any:
        if value is None or value == [] or value == 0:
            raise SourceError(f"{self.source_id} returned no {what}", source_id=self.source_id)
        return value

    def _number(self, value: Any, what: str, positive: bool = False) -> float:
        """Coerce a raw figure to float; anything unusable is a SourceError."""
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise SourceError(
                f"{self.source_id} returned a non-numeric {what}: {value!r}",
                source_id=self.source_id,
            ) from None
        if not math.isfinite(number) or (positive and number <= 0):
            raise SourceError(f"{self.source_id} returned an invalid {what}: {value!r}", source_id=self.source_id)
        return number


class RapidApiProvider(SourceProvider):
    """Provider reached through RapidAPI (key and host headers)."""

    def __init__(self, api_key: str, host: str, endpoints: Mapping[DataKind, str], timeout: float = 30):
        super().__init__(endpoints, timeout)
        self._api_key = api_key
        self._host = host

    def _call(self, kind: DataKind, prop: PropertyDescriptor, transport: HttpTransport) -> TransportResponse:
        return transport.get(
            f"https://{self._host}{self._endpoints[kind]}",
            params=self._params(kind, prop),
            headers={
                "x-rapidapi-key": self._api_key,
                "x-rapidapi-host": self._host,
            },
            timeout=self._timeout,
        )

    def _params(self, kind: DataKind, prop: PropertyDescriptor) -> dict:
        return {"address": prop.full_address}

    def _comps(self, rows: Any, field_map: Mapping[str, tuple[str, ...]], tag: str, prop: PropertyDescriptor) -> list:
        rows = self._require(rows, "comps")
        return [normalise_comp(row, field_map, tag, prop.zip_code) for row in rows if isinstance(row, Mapping)]


# =============================================================================
# US Real Estate
# =============================================================================

US_REAL_ESTATE_HOST = "us-real-estate.p.rapidapi.com"

US_REAL_ESTATE_ENDPOINTS: Final[dict[DataKind, str]] = {
    DataKind.ESTIMATE: "/for-sale/home-estimate-value",
    DataKind.COMPS: "/for-sale/similiar-homes",
    DataKind.SCHOOLS: "/location/schools",
    DataKind.NOISE_SCORE: "/location/noise-score",
}

US_REAL_ESTATE_COMP_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "address": ("address", "location.address.line"),
    "price": ("price", "list_price"),
    "sqft": ("sqft", "description.sqft"),
    "beds": ("beds", "description.beds"),
    "baths": ("baths", "description.baths"),
    "sale_date": ("sold_date", "list_date"),
    "distance": ("distance",),
    "condition": ("condition",),
    "zip_code": ("location.address.postal_code",),
}


class UsRealEstateProvider(RapidApiProvider):
    """US Real Estate API: AI-matched similar homes, home estimates and location data."""

    source_id = "us_real_estate"

    def __init__(self, api_key: str, host: str = US_REAL_ESTATE_HOST, timeout: float = 30):
        super().__init__(api_key, host, US_REAL_ESTATE_ENDPOINTS, timeout)

    def _params(self, kind: DataKind, prop: PropertyDescriptor) -> dict:
        if kind in (DataKind.SCHOOLS, DataKind.NOISE_SCORE):
            return {"location": prop.zip_code}
        return {
            "address": prop.address,
            "city": prop.city,
            "state_code": prop.state,
            "zip_code": prop.zip_code,
        }

    def _normalise(self, kind: DataKind, data: Mapping, prop: PropertyDescriptor) -> Any:
        if kind == DataKind.COMPS:
            rows = data.get("homes") or data.get("properties")
            return self._comps(rows, US_REAL_ESTATE_COMP_FIELDS, "us_real_estate_similar_homes", prop)

        if kind == DataKind.ESTIMATE:
            value = self._require(_first(data, "estimate", "estimatedValue"), "estimate")
            return {"source": "us_real_estate_estimate", "value": self._number(value, "estimate", positive=True)}

        if kind == DataKind.SCHOOLS:
            schools = self._require(data.get("schools"), "schools")
            ratings = [
                self._number(s.get("rating") or 0, "school rating") for s in schools if isinstance(s, Mapping)
            ]
            rated = [r for r in ratings if r > 0]
            self._require(rated, "school ratings")
            return {
                "avg_rating": round(sum(rated) / len(rated), 1),
                "school_count": len(rated),
                "schools": [
                    {"name": s.get("name") or "Unknown", "rating": s.get("rating") or 0}
                    for s in schools if isinstance(s, Mapping)
                ],
            }

        value = self._require(_first(data, "noiseScore", "score"), "noise score")
        factors = data.get("factors") or []
        return {"noise_score": self._number(value, "noise score"), "factors": [str(f) for f in factors]}


# =============================================================================
# Private Zillow / Redfin (endpoint paths supplied by deployment)
# =============================================================================

ZILLOW_COMP_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "address": ("address", "streetAddress"),
    "price": ("price", "soldPrice"),
    "sqft": ("livingArea", "sqft"),
    "beds": ("bedrooms", "beds"),
    "baths": ("bathrooms", "baths"),
    "sale_date": ("dateSold", "soldDate"),
    "distance": ("distance",),
    "condition": ("condition",),
    "zip_code": ("zipcode", "zipCode"),
}

REDFIN_COMP_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "address": ("address", "streetAddress"),
    "price": ("price", "soldPrice"),
    "sqft": ("sqft", "livingArea"),
    "beds": ("beds", "bedrooms"),
    "baths": ("baths", "bathrooms"),
    "sale_date": ("saleDate", "soldDate"),
    "distance": ("distance",),
    "condition": ("condition",),
    "zip_code": ("zip", "zipCode"),
}


class PrivateZillowProvider(RapidApiProvider):
    """Private Zillow API: property comps, zestimate, walk/transit scores."""

    source_id = "private_zillow"

    def _normalise(self, kind: DataKind, data: Mapping, prop: PropertyDescriptor) -> Any:
        if kind == DataKind.COMPS:
            rows = data.get("comps") or data.get("comparables")
            return self._comps(rows, ZILLOW_COMP_FIELDS, "private_zillow_comps", prop)

        if kind == DataKind.ESTIMATE:
            value = self._require(_first(data, "zestimate", "price", "value"), "zestimate")
            return {"source": "private_zillow_zestimate", "value": self._number(value, "zestimate", positive=True)}

        if kind == DataKind.WALK_SCORE:
            walk = self._require(data.get("walkScore"), "walk score")
            return {
                "walk_score": self._number(walk, "walk score"),
                "transit_score": self._number(data.get("transitScore") or 0, "transit score"),
                "bike_score": self._number(data.get("bikeScore") or 0, "bike score"),
            }

        raise SourceError(f"{self.source_id} does not provide {kind.value}", source_id=self.source_id)


class RedfinProvider(RapidApiProvider):
    """Redfin API: comparable properties."""

    source_id = "redfin"

    def _normalise(self, kind: DataKind, data: Mapping, prop: PropertyDescriptor) -> Any:
        if kind == DataKind.COMPS:
            rows = data.get("comps") or data.get("comparables")
            return self._comps(rows, REDFIN_COMP_FIELDS, "redfin_comps", prop)
        raise SourceError(f"{self.source_id} does not provide {kind.value}", source_id=self.source_id)


# =============================================================================
# Gemini (AI-generated comps)
# =============================================================================

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
GEMINI_GENERATE_PATH = "/v1beta/models/gemini-2.0-flash-exp:generateContent"

GEMINI_COMPS_PROMPT = """
Generate 6 comparable homes that recently sold near {address}:
- 3 unremodeled/as-is properties (lower prices)
- 3 recently remodeled/renovated properties (higher prices)

Include realistic sale dates from the past 6 months, approximate distances, and condition status.
Return a valid JSON array only, like:
[{{"address":"123 Main St","price":825000,"sqft":1600,"saleDate":"2024-08-15","distance":0.5,"condition":"remodeled"}}]

Condition should be either "unremodeled" or "remodeled".
Do NOT include markdown or explanations.
"""

GEMINI_COMP_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "address": ("address",),
    "price": ("price",),
    "sqft": ("sqft",),
    "beds": ("beds",),
    "baths": ("baths",),
    "sale_date": ("saleDate",),
    "distance": ("distance",),
    "condition": ("condition",),
}

CODE_FENCE = re.compile(r"```json|```", re.IGNORECASE)


def parse_generated_comps(body: Mapping) -> list:
    """
    Pull the JSON array out of a generateContent response.

    Raises:
        SourceError: No text block, or text that is not a JSON array
    """
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise SourceError("gemini response has no text block", source_id="gemini") from None

    text = CODE_FENCE.sub("", text).strip()
    try:
        rows = json.loads(text)
    except ValueError as exc:
        raise SourceError(f"Failed to parse gemini response: {exc}", source_id="gemini") from exc
    if not isinstance(rows, list):
        raise SourceError("gemini response is not a JSON array", source_id="gemini")
    return rows


class GeminiProvider(SourceProvider):
    """Gemini generateContent: synthetic comps, the last-resort source."""

    source_id = "gemini"

    def __init__(self, api_key: str, base_url: str = GEMINI_BASE_URL, timeout: float = 30):
        super().__init__({DataKind.COMPS: GEMINI_GENERATE_PATH}, timeout)
        self._api_key = api_key
        self._base_url = base_url

    def _call(self, kind: DataKind, prop: PropertyDescriptor, transport: HttpTransport) -> TransportResponse:
        prompt = GEMINI_COMPS_PROMPT.format(address=prop.full_address)
        return transport.post(
            f"{self._base_url}{self._endpoints[kind]}",
            json={"contents": [{"parts": [{"text": prompt}]}]},
            params={"key": self._api_key},
            timeout=self._timeout,
        )

    def _normalise(self, kind: DataKind, data: Mapping, prop: PropertyDescriptor) -> Any:
        rows = self._require(parse_generated_comps(data), "comps")
        return [
            normalise_comp(row, GEMINI_COMP_FIELDS, "gemini_ai", prop.zip_code)
            for row in rows if isinstance(row, Mapping)
        ]


def build_providers(
    rapidapi_key: str = "",
    gemini_api_key: str = "",
    private_zillow: Optional[tuple[str, Mapping[DataKind, str]]] = None,
    redfin: Optional[tuple[str, Mapping[DataKind, str]]] = None,
    timeout: float = 30,
) -> dict[str, SourceProvider]:
    """
    Build the providers that have credentials.

    Private Zillow and Redfin need a (host, endpoints) pair because their
    endpoint paths vary by subscription.
    """
    providers: dict[str, SourceProvider] = {}
    if rapidapi_key:
        providers["us_real_estate"] = UsRealEstateProvider(rapidapi_key, timeout=timeout)
        if private_zillow:
            host, endpoints = private_zillow
            providers["private_zillow"] = PrivateZillowProvider(rapidapi_key, host, endpoints, timeout)
        if redfin:
            host, endpoints = redfin
            providers["redfin"] = RedfinProvider(rapidapi_key, host, endpoints, timeout)
    if gemini_api_key:
        providers["gemini"] = GeminiProvider(gemini_api_key, timeout=timeout)
    return providers
