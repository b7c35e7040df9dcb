"""Rate table and relief policy schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from cbds.schemas.tax import Period, RegimeType

VatClass = Literal["standard", "reduced", "zero"]


class TaxRate(BaseModel):
    """Flat rate row as served by get_tax_rates."""

    country_code: str
    state_code: str | None = None
    tax_type: Literal["VAT", "DUTY", "CONSUMPTION_TAX", "HANDLING_FEE"]
    rate: float
    category: str | None = None
    threshold: float | None = None
    threshold_currency: str | None = None
    source: str
    effective_date: str


class RateFilters(BaseModel):
    tax_type: str | None = None
    state_code: str | None = None
    category: str | None = None


class CountryRates(BaseModel):
    """Everything the calculator needs for one destination country."""

    country_code: str
    name: str
    currency: str
    is_eu_member: bool = False
    vat_rates: dict[VatClass, float] = Field(default_factory=dict)
    duty_rate: float = 0.0
    duty_free_threshold: float | None = None
    consumption_tax: dict[str, float] = Field(default_factory=dict)
    version: str
    source: str
    effective_date: str

    def vat_rate(self, vat_class: VatClass) -> float | None:
        if not self.vat_rates:
            return None
        return self.vat_rates.get(vat_class, self.vat_rates.get("standard"))


class RegimePolicy(BaseModel):
    """Relief regime definition. Evaluated by cbds.engine.regimes."""

    regime: RegimeType
    name: str
    countries: list[str]
    threshold: float
    currency: str
    period: Period
    per_recipient: bool
    exempts: list[Literal["VAT", "DUTY"]] = Field(default_factory=list)
    over_threshold_status: Literal["FAIL", "WARNING"]
    pass_documents: list[str] = Field(default_factory=list)
    description: str


class ConversionResult(BaseModel):
    converted_amount: float
    exchange_rate: float
    timestamp: datetime
