from __future__ import annotations

import re
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import InvalidRequestError
from .forecast import MAX_PERIODS

_MODEL_NAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class CamelModel(BaseModel):
    """Browser payloads use camelCase keys; snake_case is accepted too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ApiRequest(CamelModel):
    """`model` optionally overrides the default LLM."""

    required_fields: ClassVar[tuple[str, ...]] = ()
    required_message: ClassVar[str] = "Missing required fields"

    model: str | None = None

    @field_validator("model")
    @classmethod
    def _validate_model(cls, v: str | None) -> str | None:
        if v is not None and not _MODEL_NAME_RE.fullmatch(v):
            raise ValueError("Invalid model name")
        return v

    @model_validator(mode="after")
    def _check_required(self) -> "ApiRequest":
        for name in self.required_fields:
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValueError(self.required_message)
        return self


class GenerateRequest(ApiRequest):
    required_fields = ("prompt",)
    required_message = "Prompt is required"

    prompt: str | None = None


class RentalAnalysisRequest(ApiRequest):
    required_fields = ("location",)
    required_message = "Location is required"

    location: str | None = None
    property_type: str | None = None
    bedrooms: int | None = None


class MarketTrendsRequest(ApiRequest):
    required_fields = ("location",)
    required_message = "Location is required for market trend analysis"

    location: str | None = None
    property_type: str | None = None
    timeframe: int = 12
    metric_focus: list[str] = Field(default_factory=lambda: ["price", "transactions", "demand"])
    compare_locations: list[str] = Field(default_factory=list)
    include_developer_activity: bool = False
    include_regulatory_changes: bool = False
    include_infrastructure_projects: bool = False
    forecast_period: int = 12
    segment_analysis: bool = False


class InvestmentAnalysisRequest(ApiRequest):
    required_fields = ("location", "property_type", "purchase_price", "expected_rent", "area")
    required_message = "Location, property type, purchase price, expected rent, and area are required"

    location: str | None = None
    property_type: str | None = None
    purchase_price: float | None = None
    expected_rent: float | None = None
    area: float | None = None
    down_payment: float | None = None
    loan_term: int = 25
    interest_rate: float = 3.99
    maintenance_costs: float = 5
    service_charges: float = 15
    occupancy_rate: float = 90
    investment_period: int = 5
    property_appreciation_rate: float = 5

    @field_validator("purchase_price", "expected_rent", "area")
    @classmethod
    def _positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("Purchase price, expected rent, and area must be positive")
        return v


class PropertyValuationRequest(ApiRequest):
    required_fields = ("location", "property_type", "area")
    required_message = "Location, property type, and area are required for valuation"

    location: str | None = None
    property_type: str | None = None
    area: float | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    age: int | None = None
    amenities: list[str] = Field(default_factory=list)
    view: str = ""
    floor: int | None = None
    finish_quality: str = "standard"
    furnishing_status: str = "unfurnished"
    include_rental_estimate: bool = True
    include_market_comparison: bool = True
    include_investment_metrics: bool = True


class PropertyEstimationRequest(ApiRequest):
    required_fields = ("location", "property_type", "area")
    required_message = "Location, property type, and area are required"

    location: str | None = None
    property_type: str | None = None
    area: float | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    age: int | None = None
    amenities: list[str] = Field(default_factory=list)
    view_type: str = ""
    furnishing_status: str = ""


class NeighborhoodReportRequest(ApiRequest):
    required_fields = ("neighborhood",)
    required_message = "Neighborhood is required for analysis"

    neighborhood: str | None = None
    include_lifestyle_amenities: bool = True
    include_transportation: bool = True
    include_schools: bool = True
    include_healthcare: bool = True
    include_retail: bool = True
    include_dining: bool = True
    include_property_types: bool = True
    include_investment_potential: bool = True
    include_expats_guide: bool = False
    include_future_projects: bool = True


class CompetitorAnalysisRequest(ApiRequest):
    required_fields = ("property_address", "property_type")
    required_message = "Property address and property type are required"

    property_address: str | None = None
    property_type: str | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    area: float | None = None
    price_range: list[str] | None = None
    radius: float = 5
    amenities: list[str] = Field(default_factory=list)


class DeveloperInfoRequest(ApiRequest):
    required_fields = ("developer_name",)
    required_message = "Developer name is required"

    developer_name: str | None = None


class DemographicAnalysisRequest(ApiRequest):
    required_fields = ("location",)
    required_message = "Location is required for demographic analysis"

    location: str | None = None
    property_type: str | None = None


class PropertyLookupRequest(ApiRequest):
    search_term: str | None = None
    location: str | None = None
    property_type: str | None = None
    bedrooms: int | None = None
    price_range: str | None = None
    amenities: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _name_or_location(self) -> "PropertyLookupRequest":
        if not (self.search_term or "").strip() and not (self.location or "").strip():
            raise ValueError("Property name or location is required")
        return self


class AnalyzeRequest(ApiRequest):
    required_fields = ("query",)
    required_message = "Query is required"

    query: str | None = None
    location: str | None = None
    property_type: str | None = None
    use_functions: bool = True


class ForecastRequest(ApiRequest):
    prices: list[float] = Field(default_factory=list)
    dates: list[str] = Field(default_factory=list)
    periods: int = 0
    interval: str = ""
    confidence_level: float = 0.95
    property_type: str | None = None
    location: str | None = None

    @field_validator("periods")
    @classmethod
    def _validate_periods(cls, v: int) -> int:
        if v > MAX_PERIODS:
            raise ValueError(f"Invalid number of periods (must be 1-{MAX_PERIODS})")
        return v

    @field_validator("confidence_level")
    @classmethod
    def _validate_confidence(cls, v: float) -> float:
        if not (0.0 < v < 1.0):
            raise ValueError("confidence_level must be between 0 and 1.")
        return v


class IngestionOptions(CamelModel):
    translate_to_english: bool = False
    translate_to_arabic: bool = False
    chunk_size: int | None = None
    remove_pii: bool = Field(default=False, alias="removePII")

    @field_validator("chunk_size")
    @classmethod
    def _validate_chunk_size(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("chunkSize must be > 0.")
        return v


class DataIngestionRequest(ApiRequest):
    required_fields = ("source", "properties")
    required_message = "Missing required parameters: source, properties"

    source: str | None = None
    properties: list[dict[str, Any]] | None = None
    options: IngestionOptions = Field(default_factory=IngestionOptions)


class SetApiKeyRequest(ApiRequest):
    required_fields = ("api_key",)
    required_message = "Invalid API key format"

    api_key: str | None = None
    org_id: str | None = None


class ApiResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    data: Any = None
    error: str | None = None

    def body(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def parse_request(model_cls: type[ApiRequest], payload: Any) -> Any:
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    try:
        return model_cls.model_validate(payload)
    except ValidationError as e:
        raise InvalidRequestError(first_error_message(e)) from e


def first_error_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    msg = str(err.get("msg") or "Invalid request")
    if msg.startswith("Value error, "):
        return msg[len("Value error, "):]
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
    return f"{loc}: {msg}" if loc else msg
