"""Tax calculation request/result schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from cbds.schemas.common import DeliveryMode, ErrorDetail

Currency = Literal["USD", "EUR", "GBP", "CNY"]
TaxType = Literal["VAT", "DUTY", "CONSUMPTION_TAX", "HANDLING_FEE"]
RegimeType = Literal["SECTION_321", "IOSS", "UK_LOW_VALUE"]
Period = Literal["DAILY", "MONTHLY", "QUARTERLY"]


class ItemDimensions(BaseModel):
    """Item dimensions in centimetres."""

    length: float
    width: float
    height: float


class TaxItem(BaseModel):
    """Order line."""

    name: str = ""
    unit_price: float
    quantity: int = 1
    total_value: float | None = None
    hs_code: str | None = None
    category: str | None = None
    weight: float | None = None
    dimensions: ItemDimensions | None = None
    origin_country: str | None = None
    is_digital: bool = False
    is_dangerous: bool = False
    is_restricted: bool = False

    @model_validator(mode="after")
    def fill_total_value(self) -> "TaxItem":
        if self.total_value is None:
            self.total_value = round(self.unit_price * self.quantity, 2)
        return self

    @property
    def is_prohibited(self) -> bool:
        return self.is_dangerous or self.is_restricted


class Destination(BaseModel):
    """Where the order is imported."""

    country_code: str = ""
    state_code: str | None = None
    city: str | None = None
    postal_code: str | None = None
    is_eu_member: bool | None = None

    @field_validator("country_code", "state_code", mode="after")
    @classmethod
    def upper(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else v


class Customer(BaseModel):
    """Buyer identity relevant to import taxes."""

    type: Literal["B2C", "B2B"] = "B2C"
    customer_id: str | None = None
    vat_number: str | None = None
    eori_number: str | None = None
    is_registered_importer: bool = False


class ShippingInfo(BaseModel):
    """Shipping choice the tax is computed for."""

    service_type: DeliveryMode = "DAP"
    carrier: str | None = None
    shipping_cost: float = 0.0


class CalculationOptions(BaseModel):
    """Per-request switches."""

    enable_cache: bool = True
    include_breakdown: bool = False
    include_shipping_in_tax: bool = False


class TaxCalculationRequest(BaseModel):
    """POST /v1/tax/calculations request."""

    order_id: str | None = None
    currency: Currency = "USD"
    items: list[TaxItem] = Field(default_factory=list)
    destination: Destination = Field(default_factory=Destination)
    customer: Customer = Field(default_factory=Customer)
    shipping: ShippingInfo = Field(default_factory=ShippingInfo)
    seller_id: str | None = None
    options: CalculationOptions = Field(default_factory=CalculationOptions)

    @property
    def total_value(self) -> float:
        return round(sum(i.total_value or 0.0 for i in self.items), 2)


class TaxBreakdownEntry(BaseModel):
    """One aggregated tax kind."""

    tax_type: TaxType
    tax_name: str
    rate: float
    tax_base: float
    amount: float
    applicable_items: list[str] = Field(default_factory=list)
    notes: str | None = None


class Threshold(BaseModel):
    """Relief threshold definition."""

    amount: float
    currency: str
    period: Period
    per_recipient: bool


class Accumulated(BaseModel):
    """Usage already counted against a regime window."""

    daily: float = 0.0
    monthly: float = 0.0
    quarterly: float = 0.0


class RegimeStatus(BaseModel):
    """Outcome of evaluating one relief regime for an order."""

    regime: RegimeType
    name: str
    applicable: bool
    status: Literal["PASS", "FAIL", "WARNING"]
    threshold: Threshold
    accumulated: Accumulated = Field(default_factory=Accumulated)
    order_value: float
    remaining: float
    savings: float = 0.0
    near_threshold: bool = False
    reason: str


class ComplianceInfo(BaseModel):
    """Relief regimes considered for the destination."""

    regime: RegimeType | None = None
    is_compliant: bool = True
    regimes: list[RegimeStatus] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    required_documents: list[str] = Field(default_factory=list)

    def get(self, regime: str) -> RegimeStatus | None:
        for r in self.regimes:
            if r.regime == regime:
                return r
        return None

    @property
    def section_de_minimis(self) -> RegimeStatus | None:
        return self.get("SECTION_321")

    @property
    def ioss(self) -> RegimeStatus | None:
        return self.get("IOSS")

    @property
    def uk_low_value_relief(self) -> RegimeStatus | None:
        return self.get("UK_LOW_VALUE")


class TaxRecommendation(BaseModel):
    """Suggested change that lowers or clarifies the tax outcome."""

    type: Literal["SPLIT_ORDER", "ADJUST_PRICE", "CHANGE_SHIPPING", "USE_DIFFERENT_CLASSIFICATION"]
    title: str
    description: str
    potential_savings: float | None = None
    priority: Literal["LOW", "MEDIUM", "HIGH"] = "MEDIUM"


class TaxWarning(BaseModel):
    """Non-fatal observation about the order."""

    code: str
    message: str
    severity: Literal["LOW", "MEDIUM", "HIGH"] = "MEDIUM"
    item: str | None = None


class DebugInfo(BaseModel):
    """Decision trace, only populated when include_breakdown is set."""

    applied_rules: list[str] = Field(default_factory=list)
    skipped_rules: list[str] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)


class CalculationMetadata(BaseModel):
    """Bookkeeping for a calculation."""

    timestamp: datetime
    calculation_time_ms: float = 0.0
    engine_version: str
    calculation_id: str
    from_cache: bool = False
    rate_version: str | None = None
    debug_info: DebugInfo | None = None


class TaxCalculationResult(BaseModel):
    """Result of calculate_tax."""

    success: bool
    total_tax: float = 0.0
    currency: str
    shipping_mode: DeliveryMode | None = None
    breakdown: list[TaxBreakdownEntry] = Field(default_factory=list)
    compliance_info: ComplianceInfo = Field(default_factory=ComplianceInfo)
    recommendations: list[TaxRecommendation] = Field(default_factory=list)
    warnings: list[TaxWarning] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
    metadata: CalculationMetadata

    def amount_for(self, tax_type: str) -> float:
        return round(sum(b.amount for b in self.breakdown if b.tax_type == tax_type), 2)
