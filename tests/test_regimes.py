"""Unit tests for relief regime evaluation."""

from cbds.engine.rates import REGIME_POLICIES
from cbds.engine.regimes import evaluate_regime, recipient_key, required_document_codes
from cbds.schemas.tax import Accumulated, Customer, Destination, TaxCalculationRequest, TaxItem

SECTION_321 = REGIME_POLICIES["SECTION_321"]
IOSS = REGIME_POLICIES["IOSS"]
UK = REGIME_POLICIES["UK_LOW_VALUE"]


def test_within_threshold_applies():
    """Value at or under the threshold passes and applies."""
    status = evaluate_regime(IOSS, 150.0)
    assert status.applicable is True
    assert status.status == "PASS"
    assert status.remaining == 0.0


def test_over_threshold_status_comes_from_policy():
    """De minimis fails above threshold; IOSS and UK only warn."""
    assert evaluate_regime(SECTION_321, 999.0).status == "FAIL"
    assert evaluate_regime(IOSS, 151.0).status == "WARNING"
    assert evaluate_regime(UK, 136.0).status == "WARNING"
    assert evaluate_regime(SECTION_321, 999.0).applicable is False


def test_prohibited_items_block_relief():
    """Restricted goods make every regime inapplicable."""
    status = evaluate_regime(UK, 50.0, has_prohibited=True)
    assert status.applicable is False
    assert status.status == "FAIL"
    assert "restricted" in status.reason


def test_recipient_daily_usage_warns_but_still_applies():
    """Daily usage over the limit warns without changing applicability."""
    status = evaluate_regime(SECTION_321, 300.0, Accumulated(daily=600.0))
    assert status.applicable is True
    assert status.status == "WARNING"
    assert status.remaining == 0.0


def test_near_threshold_flag():
    """Orders at 90% of the threshold are flagged."""
    assert evaluate_regime(IOSS, 140.0).near_threshold is True
    assert evaluate_regime(IOSS, 50.0).near_threshold is False


def test_recipient_key_prefers_customer_id():
    """Customer id wins over the address digest."""
    base = dict(items=[TaxItem(name="x", unit_price=1)], destination=Destination(country_code="US", postal_code="94105"))
    with_id = TaxCalculationRequest(customer=Customer(customer_id="c-1"), **base)
    without = TaxCalculationRequest(**base)
    assert recipient_key(with_id) == "c-1"
    assert recipient_key(without).startswith("addr_")
    assert recipient_key(without) == recipient_key(TaxCalculationRequest(**base))


def test_required_documents():
    """Passing regimes add their declarations; high value adds origin proof."""
    docs = required_document_codes([evaluate_regime(IOSS, 89.0)], "DE", 89.0)
    assert docs[:2] == ["COMMERCIAL_INVOICE", "PACKING_LIST"]
    assert "IOSS_NUMBER" in docs
    assert "CERTIFICATE_OF_ORIGIN" not in docs
    docs = required_document_codes([evaluate_regime(SECTION_321, 1200.0)], "US", 1200.0)
    assert "TYPE_86_ENTRY" not in docs
    assert "CERTIFICATE_OF_ORIGIN" in docs
