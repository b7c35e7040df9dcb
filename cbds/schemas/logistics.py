"""Logistics request/quote schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from cbds.schemas.common import DeliveryMode, ErrorDetail, Money

ServiceClass = Literal["ECONOMY", "STANDARD", "EXPRESS", "PACKET"]
SortBy = Literal["COST", "TIME", "RELIABILITY", "SCORE"]

_TO_KG = {"KG": 1.0, "G": 0.001, "LB": 0.45359237, "OZ": 0.028349523125}
_TO_CM = {"CM": 1.0, "IN": 2.54}


class Weight(BaseModel):
    value: float
    unit: Literal["KG", "LB", "G", "OZ"] = "KG"

    def to_kg(self) -> float:
        return self.value * _TO_KG[self.unit]


class PackageDimensions(BaseModel):
    length: float
    width: float
    height: float
    unit: Literal["CM", "IN"] = "CM"

    def to_cm(self) -> tuple[float, float, float]:
        f = _TO_CM[self.unit]
        return self.length * f, self.width * f, self.height * f


class Address(BaseModel):
    """Postal address."""

    country_code: str
    state_code: str | None = None
    city: str | None = None
    postal_code: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    company: str | None = None
    contact_name: str | None = None
    phone: str | None = None
    email: str | None = None

    @field_validator("country_code", "state_code", mode="after")
    @classmethod
    def upper(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else v


class Package(BaseModel):
    weight: Weight
    dimensions: PackageDimensions | None = None
    value: Money
    hs_code: str | None = None
    description: str | None = None
    quantity: int = 1
    is_dangerous: bool = False
    requires_signature: bool = False


class LogisticsRequest(BaseModel):
    """Shipment to be quoted."""

    origin: Address
    destination: Address
    packages: list[Package] = Field(default_factory=list)
    shipment_value: Money | None = None
    preferred_mode: DeliveryMode | None = None
    required_services: list[str] = Field(default_factory=list)
    order_id: str | None = None


class QuoteOptions(BaseModel):
    """Aggregation filters and ordering."""

    preferred_providers: list[str] = Field(default_factory=list)
    excluded_providers: list[str] = Field(default_factory=list)
    max_cost: float | None = None
    min_delivery_days: int | None = None
    max_delivery_days: int | None = None
    delivery_mode: DeliveryMode | None = None
    sort_by: SortBy = "COST"
    max_results: int | None = None
    use_cache: bool = True


class QuoteRequest(BaseModel):
    """POST /v1/logistics/quotes request."""

    request: LogisticsRequest
    options: QuoteOptions = Field(default_factory=QuoteOptions)


class Pricing(BaseModel):
    base_cost: float
    fuel_surcharge: float = 0.0
    remote_area_surcharge: float = 0.0
    duties_and_taxes: float = 0.0
    handling_fee: float = 0.0
    total_cost: float
    net_cost: float
    currency: str = "USD"


class DeliveryTime(BaseModel):
    estimated_days: int
    min_days: int
    max_days: int
    business_days_only: bool = True
    guaranteed_delivery: bool = False


class TrackingCapability(BaseModel):
    available: bool = True
    real_time_updates: bool = False
    sms_notification: bool = False
    email_notification: bool = True


class InsuranceOption(BaseModel):
    available: bool = False
    cost: float = 0.0
    max_coverage: float | None = None


class LogisticsQuote(BaseModel):
    """Priced carrier service offer."""

    quote_id: str
    provider_id: str
    provider_name: str
    service_code: str
    service_name: str
    service_class: ServiceClass
    delivery_mode: DeliveryMode
    pricing: Pricing
    delivery_time: DeliveryTime
    features: list[str] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    tracking: TrackingCapability = Field(default_factory=TrackingCapability)
    insurance: InsuranceOption = Field(default_factory=InsuranceOption)
    valid_until: datetime


class ProviderFailure(BaseModel):
    provider_id: str
    error_code: str
    message: str


class QuoteCollection(BaseModel):
    """Raw fan-out outcome before filtering."""

    quotes: list[LogisticsQuote] = Field(default_factory=list)
    failures: list[ProviderFailure] = Field(default_factory=list)
    from_cache: bool = False


class QuoteAnalysis(BaseModel):
    total_quotes: int = 0
    currency: str = "USD"
    cheapest: LogisticsQuote | None = None
    most_expensive: LogisticsQuote | None = None
    average_cost: float = 0.0
    potential_savings: float = 0.0
    savings_percentage: float = 0.0
    fastest: LogisticsQuote | None = None
    slowest: LogisticsQuote | None = None
    average_delivery_days: float = 0.0
    recommended: LogisticsQuote | None = None


class BestQuotesResult(BaseModel):
    """Result of get_best_quotes."""

    success: bool
    quotes: list[LogisticsQuote] = Field(default_factory=list)
    analysis: QuoteAnalysis = Field(default_factory=QuoteAnalysis)
    failures: list[ProviderFailure] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
    from_cache: bool = False


class DeliveryModeComparison(BaseModel):
    ddp_quotes: list[LogisticsQuote] = Field(default_factory=list)
    dap_quotes: list[LogisticsQuote] = Field(default_factory=list)
    ddp_average_cost: float = 0.0
    dap_average_cost: float = 0.0
    currency: str = "USD"
    savings: float = 0.0
    savings_percentage: float = 0.0
    recommended_mode: DeliveryMode | None = None
    reason: str = ""


class AddressCheck(BaseModel):
    is_valid: bool
    normalized: Address | None = None
    messages: list[str] = Field(default_factory=list)


class AddressValidationResult(BaseModel):
    is_valid: bool
    valid_count: int
    total: int
    results: dict[str, AddressCheck] = Field(default_factory=dict)


class Shipment(BaseModel):
    shipment_id: str
    order_id: str | None = None
    provider_id: str
    quote_id: str
    tracking_number: str
    status: str = "CREATED"
    label_url: str | None = None
    created_at: datetime


class ShipmentResult(BaseModel):
    success: bool
    shipment: Shipment | None = None
    errors: list[ErrorDetail] = Field(default_factory=list)


class TrackingEvent(BaseModel):
    timestamp: datetime
    status: str
    location: str | None = None
    description: str = ""


class TrackingInfo(BaseModel):
    tracking_number: str
    provider_id: str
    status: str
    events: list[TrackingEvent] = Field(default_factory=list)
    estimated_delivery: datetime | None = None


class ShippingLabel(BaseModel):
    order_id: str
    format: str = "PDF"
    url: str


class Manifest(BaseModel):
    manifest_id: str
    provider_id: str
    order_ids: list[str]
    created_at: datetime


class ServiceOffering(BaseModel):
    service_code: str
    service_name: str
    service_class: ServiceClass
    delivery_modes: list[DeliveryMode] = Field(default_factory=lambda: ["DDP", "DAP"])
    min_days: int
    max_days: int


class ProviderPerformance(BaseModel):
    """Rolling metrics for one provider."""

    provider_id: str
    average_cost: float = 0.0
    average_delivery_days: float = 0.0
    on_time_delivery_rate: float = 0.5
    success_rate: float = 0.5
    customer_satisfaction: float = 0.5
    quotes_ok: int = 0
    quotes_failed: int = 0
    shipments_created: int = 0
    shipments_failed: int = 0
    last_updated: datetime | None = None

    @property
    def reliability(self) -> float:
        return (self.on_time_delivery_rate + self.success_rate + self.customer_satisfaction) / 3
