"""Tax calculator - validates an order, applies relief regimes and builds the tax breakdown."""

import logging
import time
from datetime import datetime, timezone

from cbds.config import settings
from cbds.engine.classification import ItemClassification, classify_item, is_valid_hs_code, suggest_hs_code
from cbds.engine.rates import RATE_VERSION, RatePolicySource
from cbds.engine.regimes import build_compliance_info, evaluate_order
from cbds.schemas.common import ErrorDetail
from cbds.schemas.rates import CountryRates
from cbds.schemas.tax import (
    CalculationMetadata,
    ComplianceInfo,
    DebugInfo,
    TaxBreakdownEntry,
    TaxCalculationRequest,
    TaxCalculationResult,
    TaxRecommendation,
    TaxWarning,
)
from cbds.storage.accumulation import AccumulationStore
from cbds.storage.cache import TTLCache
from cbds.utils.canonical import short_id

logger = logging.getLogger(__name__)

HANDLING_FEE_RATE = 0.001
HANDLING_FEE_CAP = 10.0
HIGH_TAX_RATIO = 0.30

TAX_NAMES = {
    "VAT": "Value Added Tax",
    "DUTY": "Import Duty",
    "CONSUMPTION_TAX": "State Consumption Tax",
    "HANDLING_FEE": "Customs Handling Fee",
}


def structural_key(request: TaxCalculationRequest) -> dict:
    """Inputs that determine the tax outcome. Order ids and wall-clock time are excluded."""
    return {
        "items": [i.model_dump(mode="json") for i in request.items],
        "destination": request.destination.model_dump(mode="json"),
        "customer": request.customer.model_dump(mode="json"),
        "shipping": request.shipping.model_dump(mode="json"),
        "currency": request.currency,
        "seller_id": request.seller_id,
        "include_shipping_in_tax": request.options.include_shipping_in_tax,
    }


def calculation_id(request: TaxCalculationRequest) -> str:
    return short_id("calc", structural_key(request))


def validate_request(request: TaxCalculationRequest) -> list[ErrorDetail]:
    """Structural checks. Any error here is terminal."""
    errors: list[ErrorDetail] = []
    if not request.items:
        errors.append(ErrorDetail(
            code="MISSING_ITEMS", message="Order must contain at least one item",
            type="VALIDATION", field="items",
        ))
    if not request.destination.country_code:
        errors.append(ErrorDetail(
            code="MISSING_DESTINATION", message="Destination country is required",
            type="VALIDATION", field="destination.country_code",
        ))
    for idx, item in enumerate(request.items):
        if not item.name.strip():
            errors.append(ErrorDetail(
                code="MISSING_ITEM_NAME", message=f"Item {idx} has no name",
                type="VALIDATION", field=f"items[{idx}].name",
            ))
        if item.unit_price <= 0 or item.quantity <= 0 or (item.total_value or 0) <= 0:
            errors.append(ErrorDetail(
                code="INVALID_ITEM_VALUE",
                message=f"Item {idx} must have positive unit price, quantity and total value",
                type="VALIDATION", field=f"items[{idx}]",
            ))
    return errors


class _Bucket:
    def __init__(self) -> None:
        self.amount = 0.0
        self.base = 0.0
        self.rates: set[float] = set()
        self.items: list[str] = []
        self.notes: str | None = None

    def add(self, name: str, base: float, rate: float) -> None:
        self.amount += base * rate
        self.base += base
        self.rates.add(rate)
        if name not in self.items:
            self.items.append(name)

    def entry(self, tax_type: str) -> TaxBreakdownEntry:
        if len(self.rates) == 1:
            rate = next(iter(self.rates))
        else:
            rate = round(self.amount / self.base, 4) if self.base else 0.0
        return TaxBreakdownEntry(
            tax_type=tax_type,
            tax_name=TAX_NAMES[tax_type],
            rate=rate,
            tax_base=round(self.base, 2),
            amount=round(self.amount, 2),
            applicable_items=self.items,
            notes=self.notes,
        )


class TaxCalculator:
    """calculate_tax entry point plus its result cache."""

    def __init__(
        self,
        source: RatePolicySource,
        store: AccumulationStore,
        cache_ttl_seconds: float | None = None,
    ):
        self.source = source
        self.store = store
        self._cache: TTLCache[TaxCalculationResult] = TTLCache(
            settings.tax_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        )

    async def calculate_tax(self, request: TaxCalculationRequest) -> TaxCalculationResult:
        """Never raises; unexpected failures come back as SYSTEM_ERROR results."""
        started = time.perf_counter()
        calc_id = calculation_id(request)
        try:
            return await self._calculate(request, calc_id, started)
        except Exception as e:
            logger.exception("Tax calculation %s failed", calc_id)
            return self._result(
                request, calc_id, started,
                errors=[ErrorDetail(code="SYSTEM_ERROR", message=str(e) or type(e).__name__, type="SYSTEM")],
            )

    async def _calculate(self, request: TaxCalculationRequest, calc_id: str, started: float) -> TaxCalculationResult:
        use_cache = settings.cache_enabled and request.options.enable_cache
        cache_key = f"{calc_id}:debug" if request.options.include_breakdown else calc_id
        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached.model_copy(
                    update={"metadata": cached.metadata.model_copy(update={"from_cache": True})},
                    deep=True,
                )

        errors = validate_request(request)
        if errors:
            return self._result(request, calc_id, started, errors=errors)

        debug = DebugInfo()
        country = request.destination.country_code
        rates = await self.source.get_country_rates(country)
        if rates is None:
            errors.append(ErrorDetail(
                code="RATE_NOT_FOUND", message=f"No tax rates available for {country}",
                type="DATA", field="destination.country_code",
            ))

        statuses = await evaluate_order(request, self.source, self.store)
        info = build_compliance_info(request, statuses)
        for s in statuses:
            (debug.applied_rules if s.applicable else debug.skipped_rules).append(f"regime:{s.regime}")
            debug.steps.append(f"{s.regime} {s.status}: {s.reason}")

        classifications: list[ItemClassification] = []
        breakdown: list[TaxBreakdownEntry] = []
        if rates is not None:
            classifications = [classify_item(i, rates) for i in request.items]
            breakdown = await self._breakdown(request, rates, classifications, info, debug)

        total_tax = round(sum(b.amount for b in breakdown), 2)
        result = self._result(
            request, calc_id, started,
            total_tax=total_tax,
            breakdown=breakdown,
            compliance_info=info,
            recommendations=self._recommendations(request, rates, breakdown, total_tax, info),
            warnings=self._warnings(request, total_tax, info),
            errors=errors,
            debug=debug,
        )
        if use_cache and result.success:
            self._cache.set(cache_key, result)
        return result

    async def _breakdown(
        self,
        request: TaxCalculationRequest,
        rates: CountryRates,
        classifications: list[ItemClassification],
        info: ComplianceInfo,
        debug: DebugInfo,
    ) -> list[TaxBreakdownEntry]:
        exempt: set[str] = set()
        applicable = next((s for s in info.regimes if s.applicable), None)
        if applicable is not None:
            policy = await self.source.get_compliance_policy(applicable.regime)
            exempt = set(policy.exempts) if policy else set()

        total_value = request.total_value
        shipping = request.shipping.shipping_cost if request.options.include_shipping_in_tax else 0.0

        duty_over_threshold = True
        if rates.duty_free_threshold is not None:
            native = await self.source.convert_currency(total_value, request.currency, rates.currency)
            duty_over_threshold = native.converted_amount > rates.duty_free_threshold

        reverse_charge = (
            rates.is_eu_member and request.customer.type == "B2B" and bool(request.customer.vat_number)
        )
        state_rate = rates.consumption_tax.get(request.destination.state_code or "")

        vat, duty, consumption = _Bucket(), _Bucket(), _Bucket()
        duty_saved = 0.0
        for item, cls in zip(request.items, classifications):
            base = item.total_value + (shipping * item.total_value / total_value if total_value else 0.0)

            vat_rate = rates.vat_rate(cls.vat_class)
            if vat_rate is not None:
                if reverse_charge:
                    debug.skipped_rules.append(f"vat_reverse_charge:{item.name}")
                elif "VAT" in exempt:
                    debug.skipped_rules.append(f"vat_exemption:{applicable.regime}:{item.name}")
                else:
                    vat.add(item.name, base, vat_rate)
                    debug.applied_rules.append(f"vat:{cls.vat_class}:{vat_rate}:{item.name}")

            if cls.duty_rate and not item.is_digital and duty_over_threshold:
                if "DUTY" in exempt:
                    duty_saved += base * cls.duty_rate
                    debug.skipped_rules.append(f"duty_exemption:{applicable.regime}:{item.name}")
                else:
                    duty.add(item.name, base, cls.duty_rate)
                    debug.applied_rules.append(f"duty:{cls.duty_rate}:{item.name}")

            if state_rate:
                consumption.add(item.name, base, state_rate)
                debug.applied_rules.append(f"consumption_tax:{request.destination.state_code}:{item.name}")

        if applicable is not None:
            applicable.savings = round(duty_saved, 2)
            if applicable.regime == "IOSS" and vat.items:
                vat.notes = "Collected at point of sale via IOSS"
            elif applicable.regime == "UK_LOW_VALUE" and vat.items:
                vat.notes = "Charged at point of sale under low value consignment relief"

        entries = [
            b.entry(kind)
            for kind, b in (("VAT", vat), ("DUTY", duty), ("CONSUMPTION_TAX", consumption))
            if b.items
        ]
        if any(e.amount > 0 for e in entries):
            fee = round(min(total_value * HANDLING_FEE_RATE, HANDLING_FEE_CAP), 2)
            if fee > 0:
                entries.append(TaxBreakdownEntry(
                    tax_type="HANDLING_FEE",
                    tax_name=TAX_NAMES["HANDLING_FEE"],
                    rate=HANDLING_FEE_RATE,
                    tax_base=total_value,
                    amount=fee,
                ))
        debug.steps.append(f"breakdown: {', '.join(f'{e.tax_type}={e.amount}' for e in entries) or 'none'}")
        return entries

    def _recommendations(
        self,
        request: TaxCalculationRequest,
        rates: CountryRates | None,
        breakdown: list[TaxBreakdownEntry],
        total_tax: float,
        info: ComplianceInfo,
    ) -> list[TaxRecommendation]:
        recs: list[TaxRecommendation] = []
        total_value = request.total_value
        duty = round(sum(b.amount for b in breakdown if b.tax_type == "DUTY"), 2)
        fallback_duty = round(total_value * (rates.duty_rate if rates else 0.0), 2)

        de_minimis = info.section_de_minimis
        if de_minimis is not None and de_minimis.order_value > de_minimis.threshold.amount:
            recs.append(TaxRecommendation(
                type="SPLIT_ORDER",
                title="Split the order to qualify for de minimis entry",
                description=(
                    f"Order value {de_minimis.order_value:.2f} USD exceeds the "
                    f"{de_minimis.threshold.amount:.0f} USD de minimis threshold. Shipping it as "
                    "separate consignments on different days avoids import duty."
                ),
                potential_savings=duty or fallback_duty,
                priority="HIGH",
            ))

        ioss = info.ioss
        if ioss is not None and ioss.order_value > ioss.threshold.amount:
            recs.append(TaxRecommendation(
                type="ADJUST_PRICE",
                title="Adjust price or batch shipments to stay within IOSS",
                description=(
                    f"Consignment value {ioss.order_value:.2f} EUR exceeds the "
                    f"{ioss.threshold.amount:.0f} EUR IOSS limit, so VAT and duty are due at import."
                ),
                potential_savings=duty or fallback_duty,
                priority="MEDIUM",
            ))

        if (
            request.shipping.service_type != "DDP"
            and total_value > 0
            and total_tax > total_value * settings.change_shipping_tax_ratio
        ):
            recs.append(TaxRecommendation(
                type="CHANGE_SHIPPING",
                title="Ship DDP",
                description=(
                    f"Taxes are {total_tax / total_value:.0%} of the order value. Prepaying them with "
                    "DDP avoids collection fees and refused deliveries."
                ),
                potential_savings=0.0,
                priority="MEDIUM",
            ))

        suggestions = []
        for item in request.items:
            if not is_valid_hs_code(item.hs_code):
                s = suggest_hs_code(item.name, item.category)
                if s is not None:
                    suggestions.append(f"{item.name}: {s.hs_code} ({s.description})")
        if suggestions:
            recs.append(TaxRecommendation(
                type="USE_DIFFERENT_CLASSIFICATION",
                title="Declare HS codes",
                description="Suggested classifications: " + "; ".join(suggestions),
                priority="LOW",
            ))
        return recs

    def _warnings(self, request: TaxCalculationRequest, total_tax: float, info: ComplianceInfo) -> list[TaxWarning]:
        warnings: list[TaxWarning] = []
        total_value = request.total_value
        if total_value > 0 and total_tax > total_value * HIGH_TAX_RATIO:
            warnings.append(TaxWarning(
                code="HIGH_TAX_RATE",
                message=f"Taxes are {total_tax / total_value:.0%} of the order value",
                severity="HIGH",
            ))
        for item in request.items:
            if not is_valid_hs_code(item.hs_code):
                warnings.append(TaxWarning(
                    code="MISSING_HSCODE",
                    message=f"Item '{item.name}' has no valid HS code; default rates were used",
                    severity="MEDIUM",
                    item=item.name,
                ))
        for s in info.regimes:
            if s.near_threshold and s.applicable:
                warnings.append(TaxWarning(
                    code="APPROACHING_THRESHOLD",
                    message=f"{s.name}: {s.remaining:.2f} {s.threshold.currency} left before the threshold",
                    severity="LOW",
                ))
        prohibited = [i.name for i in request.items if i.is_prohibited]
        if prohibited:
            warnings.append(TaxWarning(
                code="PROHIBITED_ITEMS",
                message=f"Restricted or dangerous goods: {', '.join(prohibited)}",
                severity="HIGH",
            ))
        return warnings

    def _result(
        self,
        request: TaxCalculationRequest,
        calc_id: str,
        started: float,
        *,
        total_tax: float = 0.0,
        errors: list[ErrorDetail] | None = None,
        debug: DebugInfo | None = None,
        **fields,
    ) -> TaxCalculationResult:
        errors = errors or []
        success = not errors
        if not success:
            # a failed calculation reports no tax
            total_tax = 0.0
            fields["breakdown"] = []
        return TaxCalculationResult(
            success=success,
            total_tax=total_tax,
            currency=request.currency,
            shipping_mode=request.shipping.service_type,
            errors=errors,
            metadata=CalculationMetadata(
                timestamp=datetime.now(timezone.utc),
                calculation_time_ms=round((time.perf_counter() - started) * 1000, 3),
                engine_version=settings.engine_version,
                calculation_id=calc_id,
                rate_version=RATE_VERSION,
                debug_info=debug if request.options.include_breakdown else None,
            ),
            **fields,
        )

    def clear_cache(self) -> int:
        return self._cache.clear()

    def get_cache_stats(self) -> dict:
        return self._cache.stats()
