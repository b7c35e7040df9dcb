"""HTTP tests against the FastAPI app with fresh service instances."""

import pytest
from fastapi.testclient import TestClient

from cbds import dependencies
from cbds.engine.calculator import TaxCalculator
from cbds.engine.compliance import ComplianceValidator
from cbds.engine.rates import RatePolicySource
from cbds.integration.orchestrator import IntegrationOrchestrator
from cbds.logistics.aggregator import QuoteAggregator
from cbds.main import app
from cbds.storage.accumulation import AccumulationStore

ORIGIN = {"country_code": "CN", "city": "Shenzhen", "postal_code": "518000"}
DESTINATION = {"country_code": "DE", "city": "Berlin", "postal_code": "10115"}
HEADPHONES = {"name": "Wireless Headphones", "unit_price": 89.0, "hs_code": "851830"}


@pytest.fixture
def client():
    source = RatePolicySource()
    store = AccumulationStore()
    calculator = TaxCalculator(source, store)
    aggregator = QuoteAggregator.from_configs()
    overrides = {
        dependencies.get_rate_source: lambda: source,
        dependencies.get_accumulation_store: lambda: store,
        dependencies.get_calculator: lambda: calculator,
        dependencies.get_validator: lambda: ComplianceValidator(source, store),
        dependencies.get_aggregator: lambda: aggregator,
        dependencies.get_orchestrator: lambda: IntegrationOrchestrator(calculator, aggregator, source),
    }
    app.dependency_overrides.update(overrides)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def test_health_and_root(client):
    """Service liveness endpoints respond."""
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").json()["service"] == "CBDS"
    metrics = client.get("/metrics").json()
    assert "tax_cache" in metrics
    assert metrics["quote_cache"]["providers"] == 2


def test_calculate_tax(client):
    """POST /v1/tax/calculations returns the breakdown."""
    resp = client.post("/v1/tax/calculations", json={
        "currency": "EUR", "items": [HEADPHONES], "destination": {"country_code": "de"},
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["compliance_info"]["regime"] == "IOSS"
    vat = next(b for b in body["breakdown"] if b["tax_type"] == "VAT")
    assert vat["amount"] == 16.91


def test_calculate_tax_validation_error_is_in_body(client):
    """Business validation errors are returned with success=false, not HTTP errors."""
    resp = client.post("/v1/tax/calculations", json={"items": [], "destination": {"country_code": "DE"}})
    assert resp.status_code == 200
    assert resp.json()["errors"][0]["code"] == "MISSING_ITEMS"


def test_malformed_body_is_rejected(client):
    """Schema violations are 422."""
    resp = client.post("/v1/tax/calculations", json={"items": [{"name": "x"}]})
    assert resp.status_code == 422


def test_tax_rates_lookup(client):
    """Rate rows are filterable; unknown countries are 404."""
    rows = client.get("/v1/tax/rates/us", params={"tax_type": "CONSUMPTION_TAX", "state_code": "CA"}).json()
    assert [r["rate"] for r in rows] == [0.0725]
    assert client.get("/v1/tax/rates/ZZ").status_code == 404


def test_hs_code_suggestion(client):
    """Suggestions come from product keywords."""
    body = client.get("/v1/tax/hs-codes/suggestions", params={"name": "running sneakers"}).json()
    assert body["hs_code"] == "6402990000"
    assert client.get("/v1/tax/hs-codes/suggestions", params={"name": "mystery"}).json() is None


def test_compliance_validation(client):
    """POST /v1/compliance/validations audits the order."""
    body = client.post("/v1/compliance/validations", json={
        "currency": "EUR", "items": [HEADPHONES], "destination": DESTINATION,
    }).json()
    assert body["success"] is True
    assert body["compliance_level"] == "FULL"


def test_logistics_quotes_and_modes(client):
    """Rate card carriers quote the route and DDP/DAP can be compared."""
    payload = {
        "request": {
            "origin": ORIGIN,
            "destination": DESTINATION,
            "packages": [{"weight": {"value": 1.0}, "value": {"amount": 89.0, "currency": "EUR"}}],
        },
        "options": {"sort_by": "COST", "max_results": 3},
    }
    body = client.post("/v1/logistics/quotes", json=payload).json()
    assert body["success"] is True
    costs = [q["pricing"]["net_cost"] for q in body["quotes"]]
    assert len(costs) == 3
    assert costs == sorted(costs)
    assert {q["provider_id"] for q in body["quotes"]} <= {"swiftpost", "budgetline"}

    comparison = client.post("/v1/logistics/delivery-modes/compare", json=payload).json()
    assert comparison["recommended_mode"] == "DAP"
    assert comparison["dap_average_cost"] < comparison["ddp_average_cost"]


def test_address_validation_and_services(client):
    """Address checks vote across carriers; unknown carriers are 404."""
    body = client.post("/v1/logistics/addresses/validate", json=DESTINATION).json()
    assert body["is_valid"] is True
    assert body["total"] == 2
    resp = client.post("/v1/logistics/addresses/validate", params={"provider_id": "nope"}, json=DESTINATION)
    assert resp.status_code == 404

    services = client.get("/v1/logistics/services/de").json()
    assert set(services) == {"swiftpost", "budgetline"}
    assert client.get("/v1/logistics/tracking/UNKNOWN123").status_code == 404


def test_integrated_quotes(client):
    """Integrated quotes join tax and shipping for each option."""
    payload = {
        "currency": "EUR",
        "items": [HEADPHONES],
        "origin": ORIGIN,
        "destination": DESTINATION,
        "tax_numbers": {"IOSS": "IM2760000001"},
        "preferences": {"max_quotes": 5},
    }
    body = client.post("/v1/integrated-quotes", json=payload).json()
    assert body["success"] is True
    assert 0 < len(body["quotes"]) <= 5
    first = body["quotes"][0]
    assert first["costs"]["taxes"]["vat"] == 16.91
    assert first["compliance"]["regime"] == "IOSS"

    decision = client.post("/v1/integrated-quotes/delivery-modes/compare", json=payload).json()
    assert decision["success"] is True
    assert decision["recommended_mode"] in ("DDP", "DAP")


def test_admin_usage_and_caches(client):
    """Recorded usage feeds the next calculation; caches can be inspected and cleared."""
    order = {
        "items": [{"name": "Tablet", "unit_price": 300.0, "hs_code": "847130"}],
        "destination": {"country_code": "US", "state_code": "NY"},
        "customer": {"customer_id": "cust-1"},
    }
    assert client.post("/v1/tax/calculations", json=order).json()["compliance_info"]["regimes"][0]["status"] == "PASS"

    resp = client.post("/v1/admin/accumulations", json={"regime": "SECTION_321", "key": "cust-1", "amount": 600})
    assert resp.status_code == 200
    assert resp.json()["daily"] == 600.0

    after = client.post("/v1/tax/calculations", json=order).json()
    assert after["metadata"]["from_cache"] is False
    assert after["compliance_info"]["regimes"][0]["status"] == "WARNING"

    assert client.post("/v1/admin/accumulations", json={"regime": "NOPE", "key": "k", "amount": 1}).status_code == 422
    assert client.post(
        "/v1/admin/accumulations", json={"regime": "IOSS", "key": "k", "amount": -5}
    ).status_code == 422

    stats = client.get("/v1/admin/cache/stats").json()
    assert stats["tax"]["size"] == 1
    cleared = client.post("/v1/admin/cache/clear").json()
    assert cleared["tax"] == 1

    assert client.post("/v1/admin/rates/de/refresh").json() == {"country_code": "DE", "refreshed": True}
    assert client.post("/v1/admin/rates/ZZ/refresh").status_code == 404


def test_admin_provider_performance(client):
    """Performance is listed per configured carrier."""
    rows = client.get("/v1/admin/providers/performance").json()
    assert [r["provider_id"] for r in rows] == ["swiftpost", "budgetline"]
    assert client.get("/v1/admin/providers/performance", params={"provider_id": "nope"}).status_code == 404
