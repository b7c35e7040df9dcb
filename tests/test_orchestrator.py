"""Tests for the integration orchestrator."""

import pytest
from conftest import FakeProvider, make_quote

from cbds.integration.orchestrator import (
    IntegrationOrchestrator,
    compliance_score,
    score_quote,
)
from cbds.logistics.aggregator import QuoteAggregator
from cbds.schemas.integration import (
    IntegratedAnalysis,
    IntegratedQuoteRequest,
    IntegrationPreferences,
    QuoteCompliance,
    ValueRange,
)
from cbds.schemas.logistics import Address
from cbds.schemas.tax import TaxItem


def _providers(extra=None):
    providers = [
        FakeProvider("alpha", [
            make_quote("alpha", 10.0, 5, currency="EUR"),
            make_quote("alpha", 14.0, 4, mode="DDP", currency="EUR"),
        ]),
        FakeProvider("beta", [make_quote("beta", 8.0, 12, currency="EUR")]),
    ]
    return providers + (extra or [])


def _orchestrator(calculator, source, providers=None) -> IntegrationOrchestrator:
    return IntegrationOrchestrator(calculator, QuoteAggregator(providers or _providers()), source)


def _request(country_code="DE", **kwargs) -> IntegratedQuoteRequest:
    kwargs.setdefault("tax_numbers", {"IOSS": "IM2760000001"})
    return IntegratedQuoteRequest(
        order_id="ORD-100",
        currency="EUR",
        items=[TaxItem(name="Wireless Headphones", unit_price=89.0, hs_code="851830", weight=0.4)],
        origin=Address(country_code="CN", city="Shenzhen", postal_code="518000"),
        destination=Address(country_code=country_code, city="Berlin", postal_code="10115"),
        **kwargs,
    )


def test_compliance_score_levels():
    """Clean regimes score 100, regimes with warnings 70, no regime 30."""
    assert compliance_score(QuoteCompliance(regime="IOSS", is_compliant=True)) == 100
    assert compliance_score(QuoteCompliance(regime="IOSS", is_compliant=True, warnings=["x"])) == 70
    assert compliance_score(QuoteCompliance(is_compliant=True)) == 30


def test_score_quote_weights():
    """Cheaper and faster options score higher."""
    compliance = QuoteCompliance(regime="IOSS", is_compliant=True)
    cheap = score_quote(100.0, 3, compliance, 0.5)
    dear = score_quote(900.0, 20, compliance, 0.5)
    assert cheap.overall > dear.overall
    assert cheap.cost == 90.0
    assert cheap.time == 90.0
    assert cheap.reliability == 50.0


def test_logistics_request_derives_packages(calculator, source):
    """Without explicit packages each item becomes a package."""
    orch = _orchestrator(calculator, source)
    req = orch.logistics_request(_request())
    assert len(req.packages) == 1
    assert req.packages[0].weight.value == 0.4
    assert req.shipment_value.amount == 89.0
    assert req.order_id == "ORD-100"
    tax_req = orch.tax_request(_request(), "DDP")
    assert tax_req.shipping.service_type == "DDP"
    assert tax_req.destination.country_code == "DE"


@pytest.mark.asyncio
async def test_integrated_quotes_join_tax_and_shipping(calculator, source):
    """Each option carries landed cost, tax and compliance, best score first."""
    response = await _orchestrator(calculator, source).get_integrated_quotes(_request())
    assert response.success is True
    assert response.request_id.startswith("req_")
    assert len(response.quotes) == 3

    overall = [q.score.overall for q in response.quotes]
    assert overall == sorted(overall, reverse=True)
    assert response.quotes[0].provider_id == "alpha"
    assert response.quotes[0].delivery_mode == "DDP"

    alpha_dap = next(q for q in response.quotes if q.provider_id == "alpha" and q.delivery_mode == "DAP")
    assert alpha_dap.costs.taxes.vat == 16.91
    assert alpha_dap.costs.total == 116.0
    assert alpha_dap.compliance.regime == "IOSS"
    assert alpha_dap.compliance.tax_number == "IM2760000001"
    assert alpha_dap.score.compliance == 100
    assert alpha_dap.metadata.tax_calculation_id.startswith("calc_")

    assert response.analysis.cost_range.min == 114.0
    assert response.analysis.cost_range.max == 120.0
    assert response.analysis.best_value_quote_id == response.quotes[0].quote_id


@pytest.mark.asyncio
async def test_missing_registration_number_warns(calculator, source):
    """IOSS without a registration number lowers the compliance score."""
    response = await _orchestrator(calculator, source).get_integrated_quotes(_request(tax_numbers={}))
    quote = response.quotes[0]
    assert "No IOSS registration number supplied" in quote.compliance.warnings
    assert quote.score.compliance == 70


@pytest.mark.asyncio
async def test_preferences_filter_and_truncate(calculator, source):
    """max_cost and max_quotes trim the option list."""
    orch = _orchestrator(calculator, source)
    cheap = await orch.get_integrated_quotes(_request(preferences=IntegrationPreferences(max_cost=115.0)))
    assert [q.provider_id for q in cheap.quotes] == ["beta"]

    one = await orch.get_integrated_quotes(_request(preferences=IntegrationPreferences(max_quotes=1)))
    assert len(one.quotes) == 1

    none = await orch.get_integrated_quotes(_request(preferences=IntegrationPreferences(max_cost=50.0)))
    assert none.success is False
    assert none.errors[-1].code == "NO_QUOTES"


@pytest.mark.asyncio
async def test_provider_failures_become_warnings(calculator, source):
    """A failing carrier is reported as a warning while the rest still quote."""
    orch = _orchestrator(calculator, source, _providers([FakeProvider("gamma", error=RuntimeError("boom"))]))
    response = await orch.get_integrated_quotes(_request())
    assert response.success is True
    assert "Provider gamma unavailable: boom" in response.warnings


@pytest.mark.asyncio
async def test_all_providers_failing(calculator, source):
    """No quotes at all yields an unsuccessful response."""
    orch = _orchestrator(calculator, source, [FakeProvider("gamma", error=RuntimeError("boom"))])
    response = await orch.get_integrated_quotes(_request())
    assert response.success is False
    assert response.errors[0].code == "NO_QUOTES"


@pytest.mark.asyncio
async def test_shipping_is_converted_to_order_currency(calculator, source):
    """USD carrier prices are expressed in the order currency."""
    orch = _orchestrator(calculator, source, [FakeProvider("usd", [make_quote("usd", 10.0, 5)])])
    response = await orch.get_integrated_quotes(_request())
    assert response.quotes[0].costs.shipping == 8.5
    assert response.quotes[0].costs.currency == "EUR"


@pytest.mark.asyncio
async def test_tax_failure_marks_quotes_non_compliant(calculator, source):
    """Without rate tables the options are still listed but flagged."""
    response = await _orchestrator(calculator, source).get_integrated_quotes(_request("ZZ"))
    assert response.success is True
    assert response.errors[0].code == "RATE_NOT_FOUND"
    assert all(not q.compliance.is_compliant for q in response.quotes)
    assert any(r.type == "COMPLIANCE" for r in response.recommendations)


@pytest.mark.asyncio
async def test_compare_delivery_modes(calculator, source):
    """The mode whose best option lands cheaper wins."""
    decision = await _orchestrator(calculator, source).compare_delivery_modes(_request())
    assert decision.success is True
    assert decision.ddp.best_total_cost == 120.0
    assert decision.dap.best_total_cost == 114.0
    assert decision.recommended_mode == "DAP"
    assert decision.savings == 6.0
    assert any("17.00 EUR" in c for c in decision.considerations)


def test_recommendations_from_analysis():
    """Wide cost and time spreads produce recommendations."""
    analysis = IntegratedAnalysis(
        total_quotes=2,
        cost_range=ValueRange(min=50, max=100),
        time_range=ValueRange(min=2, max=20),
        potential_savings=50.0,
        savings_percentage=50.0,
    )
    types = [r.type for r in IntegrationOrchestrator.recommend(analysis)]
    assert types == ["COST_OPTIMIZATION", "TIME_OPTIMIZATION"]


@pytest.mark.asyncio
async def test_cost_score_reflects_shipping_not_landed_total(calculator, source):
    """A large order does not flatten the cost score of cheap and dear carriers alike."""
    orch = _orchestrator(calculator, source, [
        FakeProvider("cheap", [make_quote("cheap", 10.0, 5)]),
        FakeProvider("dear", [make_quote("dear", 500.0, 5)]),
    ])
    request = IntegratedQuoteRequest(
        order_id="ORD-200",
        currency="USD",
        items=[TaxItem(name="Laptop", unit_price=1200.0, hs_code="847130", weight=2.0)],
        origin=Address(country_code="CN", city="Shenzhen", postal_code="518000"),
        destination=Address(country_code="US", state_code="CA", city="San Jose", postal_code="95113"),
    )
    response = await orch.get_integrated_quotes(request)
    scores = {q.provider_id: q.score.cost for q in response.quotes}
    assert scores == {"cheap": 99.0, "dear": 50.0}
    assert all(q.costs.total > 1000 for q in response.quotes)


@pytest.mark.asyncio
async def test_analysis_counts_compliance_levels(calculator, source):
    """Options are counted as fully, partially or not compliant from their compliance score."""
    orch = _orchestrator(calculator, source)
    clean = (await orch.get_integrated_quotes(_request())).analysis
    assert (clean.compliant_count, clean.partially_compliant_count, clean.non_compliant_count) == (3, 0, 0)

    missing_number = (await orch.get_integrated_quotes(_request(tax_numbers={}))).analysis
    assert missing_number.compliant_count == 0
    assert missing_number.partially_compliant_count == 3
    assert missing_number.non_compliant_count == 0

    no_regime = (await orch.get_integrated_quotes(_request("ZZ"))).analysis
    assert no_regime.partially_compliant_count == 0
    assert no_regime.non_compliant_count == 3


@pytest.mark.asyncio
async def test_compare_delivery_modes_prefers_cheaper_ddp(calculator, source):
    """DDP is recommended when its best option lands cheaper."""
    orch = _orchestrator(calculator, source, [
        FakeProvider("alpha", [
            make_quote("alpha", 12.0, 5, currency="EUR"),
            make_quote("alpha", 5.0, 4, mode="DDP", currency="EUR"),
        ]),
    ])
    decision = await orch.compare_delivery_modes(_request())
    assert decision.success is True
    assert decision.ddp.best_total_cost == 111.0
    assert decision.dap.best_total_cost == 118.0
    assert decision.recommended_mode == "DDP"
    assert decision.savings == 7.0
