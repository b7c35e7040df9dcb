"""Integrated quote schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from cbds.schemas.common import DeliveryMode, ErrorDetail
from cbds.schemas.logistics import Address, Package
from cbds.schemas.tax import Currency, Customer, RegimeType, TaxItem


class IntegrationPreferences(BaseModel):
    delivery_mode: DeliveryMode | None = None
    max_cost: float | None = None
    max_delivery_days: int | None = None
    preferred_providers: list[str] = Field(default_factory=list)
    excluded_providers: list[str] = Field(default_factory=list)
    include_insurance: bool = False
    max_quotes: int | None = None


class IntegratedQuoteRequest(BaseModel):
    """POST /v1/integrated-quotes request."""

    order_id: str | None = None
    currency: Currency = "USD"
    seller_id: str | None = None
    items: list[TaxItem] = Field(default_factory=list)
    origin: Address
    destination: Address
    customer: Customer = Field(default_factory=Customer)
    packages: list[Package] = Field(default_factory=list)
    tax_numbers: dict[str, str] = Field(default_factory=dict)
    preferences: IntegrationPreferences = Field(default_factory=IntegrationPreferences)


class TaxLine(BaseModel):
    tax_type: str
    rate: float
    amount: float


class TaxSummary(BaseModel):
    vat: float = 0.0
    duty: float = 0.0
    consumption_tax: float = 0.0
    other: float = 0.0
    total: float = 0.0
    lines: list[TaxLine] = Field(default_factory=list)


class QuoteCosts(BaseModel):
    currency: str
    product_value: float
    shipping: float
    taxes: TaxSummary
    insurance: float = 0.0
    total: float


class QuoteDelivery(BaseModel):
    estimated_days: int
    min_days: int
    max_days: int
    guaranteed_delivery: bool = False


class QuoteCompliance(BaseModel):
    regime: RegimeType | None = None
    tax_number: str | None = None
    is_compliant: bool
    warnings: list[str] = Field(default_factory=list)


class QuoteScore(BaseModel):
    overall: float
    cost: float
    time: float
    compliance: float
    reliability: float


class IntegratedQuoteMetadata(BaseModel):
    tax_calculation_id: str | None = None
    logistics_quote_id: str


class IntegratedQuote(BaseModel):
    """Logistics quote joined with the matching tax outcome."""

    quote_id: str
    provider_id: str
    provider_name: str
    service_code: str
    service_name: str
    delivery_mode: DeliveryMode
    costs: QuoteCosts
    delivery: QuoteDelivery
    compliance: QuoteCompliance
    features: list[str] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    score: QuoteScore
    metadata: IntegratedQuoteMetadata


class ValueRange(BaseModel):
    min: float = 0.0
    max: float = 0.0


class IntegratedAnalysis(BaseModel):
    total_quotes: int = 0
    cost_range: ValueRange = Field(default_factory=ValueRange)
    time_range: ValueRange = Field(default_factory=ValueRange)
    best_value_quote_id: str | None = None
    fastest_quote_id: str | None = None
    most_compliant_quote_id: str | None = None
    compliant_count: int = 0
    partially_compliant_count: int = 0
    non_compliant_count: int = 0
    potential_savings: float = 0.0
    savings_percentage: float = 0.0


class IntegrationRecommendation(BaseModel):
    type: Literal["COST_OPTIMIZATION", "COMPLIANCE", "TIME_OPTIMIZATION"]
    priority: Literal["LOW", "MEDIUM", "HIGH"]
    title: str
    description: str
    potential_savings: float | None = None


class IntegratedQuoteResponse(BaseModel):
    """Result of get_integrated_quotes."""

    request_id: str
    success: bool
    quotes: list[IntegratedQuote] = Field(default_factory=list)
    analysis: IntegratedAnalysis = Field(default_factory=IntegratedAnalysis)
    recommendations: list[IntegrationRecommendation] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    timestamp: datetime


class ModeSummary(BaseModel):
    mode: DeliveryMode
    quote_count: int = 0
    best_quote: IntegratedQuote | None = None
    best_total_cost: float | None = None


class DeliveryModeDecision(BaseModel):
    """Result of the integrated DDP vs DAP comparison."""

    success: bool
    ddp: ModeSummary
    dap: ModeSummary
    recommended_mode: DeliveryMode | None = None
    savings: float = 0.0
    savings_percentage: float = 0.0
    reason: str = ""
    considerations: list[str] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
