"""Integration orchestrator - joins tax outcomes with carrier quotes into ranked landed-cost options."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from uuid import uuid4

from cbds.config import settings
from cbds.engine.calculator import TaxCalculator
from cbds.engine.rates import RatePolicySource
from cbds.logistics.aggregator import QuoteAggregator
from cbds.schemas.common import DeliveryMode, ErrorDetail, Money
from cbds.schemas.integration import (
    DeliveryModeDecision,
    IntegratedAnalysis,
    IntegratedQuote,
    IntegratedQuoteMetadata,
    IntegratedQuoteRequest,
    IntegratedQuoteResponse,
    IntegrationRecommendation,
    ModeSummary,
    QuoteCompliance,
    QuoteCosts,
    QuoteDelivery,
    QuoteScore,
    TaxLine,
    TaxSummary,
    ValueRange,
)
from cbds.schemas.logistics import LogisticsQuote, LogisticsRequest, Package, QuoteOptions, Weight
from cbds.schemas.tax import Destination, ShippingInfo, TaxCalculationRequest, TaxCalculationResult

logger = logging.getLogger(__name__)

WEIGHTS = {"cost": 0.3, "time": 0.25, "compliance": 0.25, "reliability": 0.2}
COST_CEILING = 1000.0
DAYS_CEILING = 30.0
FULLY_COMPLIANT = 100.0
PARTIALLY_COMPLIANT = 70.0
NO_REGIME = 30.0
DEFAULT_ITEM_WEIGHT_KG = 0.5
SAVINGS_RECOMMENDATION_PCT = 20.0
TIME_RANGE_RECOMMENDATION_DAYS = 10
TAX_NUMBER_REGIMES = {"IOSS", "UK_LOW_VALUE"}


def tax_summary(result: TaxCalculationResult | None) -> TaxSummary:
    if result is None or not result.success:
        return TaxSummary()
    return TaxSummary(
        vat=result.amount_for("VAT"),
        duty=result.amount_for("DUTY"),
        consumption_tax=result.amount_for("CONSUMPTION_TAX"),
        other=result.amount_for("HANDLING_FEE"),
        total=result.total_tax,
        lines=[TaxLine(tax_type=b.tax_type, rate=b.rate, amount=b.amount) for b in result.breakdown],
    )


def compliance_score(compliance: QuoteCompliance) -> float:
    if compliance.regime and compliance.is_compliant and not compliance.warnings:
        return FULLY_COMPLIANT
    if compliance.regime:
        return PARTIALLY_COMPLIANT
    return NO_REGIME


def score_quote(shipping_cost: float, days: int, compliance: QuoteCompliance, reliability: float) -> QuoteScore:
    cost = 100 * (1 - min(shipping_cost / COST_CEILING, 1.0))
    time_score = 100 * (1 - min(days / DAYS_CEILING, 1.0))
    comp = compliance_score(compliance)
    rel = 100 * reliability
    overall = (
        WEIGHTS["cost"] * cost
        + WEIGHTS["time"] * time_score
        + WEIGHTS["compliance"] * comp
        + WEIGHTS["reliability"] * rel
    )
    return QuoteScore(
        overall=round(overall, 2),
        cost=round(cost, 2),
        time=round(time_score, 2),
        compliance=comp,
        reliability=round(rel, 2),
    )


class IntegrationOrchestrator:
    """Runs the tax engine and the quote aggregator together for one order."""

    def __init__(self, calculator: TaxCalculator, aggregator: QuoteAggregator, source: RatePolicySource):
        self.calculator = calculator
        self.aggregator = aggregator
        self.source = source

    async def get_integrated_quotes(self, request: IntegratedQuoteRequest) -> IntegratedQuoteResponse:
        started = time.perf_counter()
        request_id = f"req_{uuid4().hex[:16]}"
        try:
            response = await self._integrate(request, request_id)
        except Exception as e:
            logger.exception("Integrated quote %s failed", request_id)
            response = IntegratedQuoteResponse(
                request_id=request_id,
                success=False,
                errors=[ErrorDetail(code="SYSTEM_ERROR", message=str(e) or type(e).__name__, type="SYSTEM")],
                timestamp=datetime.now(timezone.utc),
            )
        response.processing_time_ms = round((time.perf_counter() - started) * 1000, 3)
        return response

    def tax_request(self, request: IntegratedQuoteRequest, mode: DeliveryMode) -> TaxCalculationRequest:
        d = request.destination
        return TaxCalculationRequest(
            order_id=request.order_id,
            currency=request.currency,
            items=request.items,
            destination=Destination(
                country_code=d.country_code, state_code=d.state_code, city=d.city, postal_code=d.postal_code,
            ),
            customer=request.customer,
            shipping=ShippingInfo(service_type=mode),
            seller_id=request.seller_id,
        )

    def logistics_request(self, request: IntegratedQuoteRequest) -> LogisticsRequest:
        packages = request.packages or [
            Package(
                weight=Weight(value=item.weight or DEFAULT_ITEM_WEIGHT_KG),
                value=Money(amount=item.unit_price, currency=request.currency),
                hs_code=item.hs_code,
                description=item.name,
                quantity=item.quantity,
                is_dangerous=item.is_dangerous,
            )
            for item in request.items
        ]
        return LogisticsRequest(
            origin=request.origin,
            destination=request.destination,
            packages=packages,
            shipment_value=Money(amount=round(sum(i.total_value or 0.0 for i in request.items), 2), currency=request.currency),
            preferred_mode=request.preferences.delivery_mode,
            order_id=request.order_id,
        )

    async def _integrate(self, request: IntegratedQuoteRequest, request_id: str) -> IntegratedQuoteResponse:
        prefs = request.preferences
        modes: list[DeliveryMode] = [prefs.delivery_mode] if prefs.delivery_mode else ["DDP", "DAP"]
        options = QuoteOptions(
            preferred_providers=prefs.preferred_providers,
            excluded_providers=prefs.excluded_providers,
            max_delivery_days=prefs.max_delivery_days,
            delivery_mode=prefs.delivery_mode,
        )
        best, *tax_results = await asyncio.gather(
            self.aggregator.get_best_quotes(self.logistics_request(request), options),
            *(self.calculator.calculate_tax(self.tax_request(request, m)) for m in modes),
        )
        taxes = dict(zip(modes, tax_results))

        warnings = [f"Provider {f.provider_id} unavailable: {f.message}" for f in best.failures]
        errors: list[ErrorDetail] = []
        for result in tax_results:
            for err in result.errors:
                if all(e.code != err.code for e in errors):
                    errors.append(err)
            for w in result.warnings:
                if w.message not in warnings:
                    warnings.append(w.message)

        if not best.success:
            return IntegratedQuoteResponse(
                request_id=request_id,
                success=False,
                warnings=warnings,
                errors=best.errors + errors,
                timestamp=datetime.now(timezone.utc),
            )

        quotes = []
        for q in best.quotes:
            tax = taxes.get(q.delivery_mode) or tax_results[0]
            quotes.append(await self._build_quote(request, q, tax))
        if prefs.max_cost is not None:
            quotes = [q for q in quotes if q.costs.total <= prefs.max_cost]
        quotes.sort(key=lambda q: q.score.overall, reverse=True)
        quotes = quotes[: prefs.max_quotes or settings.max_integrated_quotes]

        if not quotes:
            return IntegratedQuoteResponse(
                request_id=request_id,
                success=False,
                warnings=warnings,
                errors=errors + [ErrorDetail(
                    code="NO_QUOTES", message="No shipping option satisfies the preferences", type="PROVIDER",
                )],
                timestamp=datetime.now(timezone.utc),
            )

        analysis = self.analyze(quotes)
        return IntegratedQuoteResponse(
            request_id=request_id,
            success=True,
            quotes=quotes,
            analysis=analysis,
            recommendations=self.recommend(analysis),
            warnings=warnings,
            errors=errors,
            timestamp=datetime.now(timezone.utc),
        )

    async def _to_order_currency(self, amount: float, currency: str, order_currency: str) -> float:
        if currency == order_currency or not amount:
            return round(amount, 2)
        return (await self.source.convert_currency(amount, currency, order_currency)).converted_amount

    async def _build_quote(
        self, request: IntegratedQuoteRequest, quote: LogisticsQuote, tax: TaxCalculationResult
    ) -> IntegratedQuote:
        shipping = await self._to_order_currency(quote.pricing.net_cost, quote.pricing.currency, request.currency)
        insurance = 0.0
        if request.preferences.include_insurance and quote.insurance.available:
            insurance = await self._to_order_currency(quote.insurance.cost, quote.pricing.currency, request.currency)
        taxes = tax_summary(tax)
        product_value = round(sum(i.total_value or 0.0 for i in request.items), 2)

        info = tax.compliance_info
        tax_number = request.tax_numbers.get(info.regime) if info.regime else None
        compliance_warnings = list(info.warnings)
        if info.regime in TAX_NUMBER_REGIMES and not tax_number:
            compliance_warnings.append(f"No {info.regime} registration number supplied")
        if not tax.success:
            compliance_warnings.append("Tax could not be calculated for this option")
        compliance = QuoteCompliance(
            regime=info.regime,
            tax_number=tax_number,
            is_compliant=info.is_compliant and tax.success,
            warnings=compliance_warnings,
        )
        total = round(product_value + shipping + taxes.total + insurance, 2)
        return IntegratedQuote(
            quote_id=f"iq_{quote.quote_id}",
            provider_id=quote.provider_id,
            provider_name=quote.provider_name,
            service_code=quote.service_code,
            service_name=quote.service_name,
            delivery_mode=quote.delivery_mode,
            costs=QuoteCosts(
                currency=request.currency,
                product_value=product_value,
                shipping=shipping,
                taxes=taxes,
                insurance=insurance,
                total=total,
            ),
            delivery=QuoteDelivery(
                estimated_days=quote.delivery_time.estimated_days,
                min_days=quote.delivery_time.min_days,
                max_days=quote.delivery_time.max_days,
                guaranteed_delivery=quote.delivery_time.guaranteed_delivery,
            ),
            compliance=compliance,
            features=quote.features,
            restrictions=quote.restrictions,
            score=score_quote(
                shipping,
                quote.delivery_time.estimated_days,
                compliance,
                self.aggregator.performance.reliability(quote.provider_id),
            ),
            metadata=IntegratedQuoteMetadata(
                tax_calculation_id=tax.metadata.calculation_id,
                logistics_quote_id=quote.quote_id,
            ),
        )

    @staticmethod
    def analyze(quotes: list[IntegratedQuote]) -> IntegratedAnalysis:
        if not quotes:
            return IntegratedAnalysis()
        costs = [q.costs.total for q in quotes]
        days = [q.delivery.estimated_days for q in quotes]
        savings = round(max(costs) - min(costs), 2)
        levels = [q.score.compliance for q in quotes]
        return IntegratedAnalysis(
            total_quotes=len(quotes),
            cost_range=ValueRange(min=min(costs), max=max(costs)),
            time_range=ValueRange(min=min(days), max=max(days)),
            best_value_quote_id=quotes[0].quote_id,
            fastest_quote_id=min(quotes, key=lambda q: q.delivery.estimated_days).quote_id,
            most_compliant_quote_id=max(quotes, key=lambda q: q.score.compliance).quote_id,
            compliant_count=levels.count(FULLY_COMPLIANT),
            partially_compliant_count=levels.count(PARTIALLY_COMPLIANT),
            non_compliant_count=levels.count(NO_REGIME),
            potential_savings=savings,
            savings_percentage=round(savings / max(costs) * 100, 2) if max(costs) else 0.0,
        )

    @staticmethod
    def recommend(analysis: IntegratedAnalysis) -> list[IntegrationRecommendation]:
        recs: list[IntegrationRecommendation] = []
        if analysis.savings_percentage > SAVINGS_RECOMMENDATION_PCT:
            recs.append(IntegrationRecommendation(
                type="COST_OPTIMIZATION",
                priority="HIGH",
                title="Large spread between options",
                description=(
                    f"The cheapest option saves {analysis.potential_savings:.2f} "
                    f"({analysis.savings_percentage:.1f}%) against the most expensive."
                ),
                potential_savings=analysis.potential_savings,
            ))
        if analysis.non_compliant_count > 0:
            recs.append(IntegrationRecommendation(
                type="COMPLIANCE",
                priority="HIGH",
                title="Some options are not compliant",
                description=f"{analysis.non_compliant_count} option(s) fall under no relief regime; review before booking.",
            ))
        if analysis.time_range.max - analysis.time_range.min > TIME_RANGE_RECOMMENDATION_DAYS:
            recs.append(IntegrationRecommendation(
                type="TIME_OPTIMIZATION",
                priority="MEDIUM",
                title="Delivery times vary widely",
                description=(
                    f"Transit ranges from {analysis.time_range.min:.0f} to {analysis.time_range.max:.0f} days; "
                    "consider offering a faster option at checkout."
                ),
            ))
        return recs

    async def compare_delivery_modes(self, request: IntegratedQuoteRequest) -> DeliveryModeDecision:
        """Run the pipeline once per mode and recommend the one whose best option costs less."""
        per_mode = {}
        for mode in ("DDP", "DAP"):
            prefs = request.preferences.model_copy(update={"delivery_mode": mode})
            per_mode[mode] = request.model_copy(update={"preferences": prefs})
        ddp, dap = await asyncio.gather(
            self.get_integrated_quotes(per_mode["DDP"]), self.get_integrated_quotes(per_mode["DAP"])
        )
        summaries = {}
        for mode, response in (("DDP", ddp), ("DAP", dap)):
            best = min(response.quotes, key=lambda q: q.costs.total) if response.quotes else None
            summaries[mode] = ModeSummary(
                mode=mode,
                quote_count=len(response.quotes),
                best_quote=best,
                best_total_cost=best.costs.total if best else None,
            )
        decision = DeliveryModeDecision(success=False, ddp=summaries["DDP"], dap=summaries["DAP"])
        ddp_cost, dap_cost = summaries["DDP"].best_total_cost, summaries["DAP"].best_total_cost
        if ddp_cost is None and dap_cost is None:
            decision.errors = ddp.errors or dap.errors or [
                ErrorDetail(code="NO_QUOTES", message="No quotes in either mode", type="PROVIDER")
            ]
            decision.reason = "No quotes available in either mode"
            return decision

        decision.success = True
        if ddp_cost is None or dap_cost is None:
            decision.recommended_mode = "DAP" if ddp_cost is None else "DDP"
            decision.reason = f"Only {decision.recommended_mode} is offered for this route"
        else:
            decision.recommended_mode = "DDP" if ddp_cost <= dap_cost else "DAP"
            diff = abs(ddp_cost - dap_cost)
            decision.savings = round(diff, 2)
            decision.savings_percentage = round(diff / max(ddp_cost, dap_cost) * 100, 2) if max(ddp_cost, dap_cost) else 0.0
            decision.reason = (
                f"Best {decision.recommended_mode} option lands at {min(ddp_cost, dap_cost):.2f} "
                f"against {max(ddp_cost, dap_cost):.2f}"
            )
        decision.considerations = self._considerations(summaries)
        return decision

    @staticmethod
    def _considerations(summaries: dict[str, ModeSummary]) -> list[str]:
        notes = [
            "DDP: the customer pays nothing on delivery, which lowers refusal and return rates.",
            "DAP: the customer settles duties and taxes with the carrier before release.",
        ]
        dap = summaries["DAP"].best_quote
        if dap is not None and dap.costs.taxes.total > 0:
            notes.append(
                f"DAP leaves {dap.costs.taxes.total:.2f} {dap.costs.currency} of taxes to collect at the door; "
                "unpaid charges delay clearance."
            )
        ddp = summaries["DDP"].best_quote
        if ddp is not None and ddp.compliance.regime is None:
            notes.append("No relief regime applies; DDP shipments need a formal customs entry by the carrier.")
        return notes
