"""Tests for the compliance validator."""

import pytest
from conftest import tax_request

from cbds.engine.compliance import risk_level
from cbds.schemas.tax import Destination


def _check(checks, check_id):
    return next(c for c in checks if c.check_id == check_id)


def test_risk_level_bands():
    """Scores map onto LOW/MEDIUM/HIGH/CRITICAL."""
    assert risk_level(0) == "LOW"
    assert risk_level(20) == "MEDIUM"
    assert risk_level(45) == "HIGH"
    assert risk_level(60) == "CRITICAL"


@pytest.mark.asyncio
async def test_ioss_order_fully_compliant(validator):
    """A classified EUR 89 order to Germany passes every check."""
    result = await validator.validate_compliance(tax_request(
        "DE", [{"name": "Wireless Headphones", "unit_price": 89.0, "hs_code": "851830"}], currency="EUR",
    ))
    assert result.success is True
    assert result.compliance_level == "FULL"
    ioss = _check(result.regime_checks, "IOSS")
    assert ioss.status == "PASS"
    assert ioss.threshold == 150
    assert ioss.remaining_quota == 61.0
    assert result.risk_assessment.level == "LOW"
    docs = [d.document_type for d in result.required_documents]
    assert "IOSS_NUMBER" in docs
    assert any(r.type == "PROCESS_IMPROVEMENT" for r in result.recommendations)
    assert result.summary.total_checks == 4
    assert result.summary.passed == 4


@pytest.mark.asyncio
async def test_us_over_de_minimis_fails(validator):
    """USD 1200 to the US fails Section 321 and needs a certificate of origin."""
    result = await validator.validate_compliance(tax_request(
        "US",
        [{"name": "Camera", "unit_price": 1200.0, "hs_code": "852580"}],
        destination=Destination(country_code="US", state_code="NY"),
    ))
    assert result.compliance_level == "NON_COMPLIANT"
    s321 = _check(result.regime_checks, "SECTION_321")
    assert s321.status == "FAIL"
    assert s321.remaining_quota == 0
    docs = [d.document_type for d in result.required_documents]
    assert "CERTIFICATE_OF_ORIGIN" in docs
    assert "TYPE_86_ENTRY" not in docs
    assert any(r.priority == "HIGH" and r.type == "OPTIMIZATION" for r in result.recommendations)


@pytest.mark.asyncio
async def test_restricted_goods_fail_general_and_regime_checks(validator):
    """Restricted items block relief and the PROHIBITED_GOODS check."""
    result = await validator.validate_compliance(tax_request(
        "GB",
        [{"name": "Lithium battery pack", "unit_price": 30.0, "hs_code": "850760", "is_dangerous": True}],
        currency="GBP",
    ))
    assert _check(result.general_checks, "PROHIBITED_GOODS").status == "FAIL"
    assert _check(result.regime_checks, "UK_LOW_VALUE").status == "FAIL"
    assert result.compliance_level == "NON_COMPLIANT"
    assert result.summary.failed == 2


@pytest.mark.asyncio
async def test_missing_hs_and_low_value_warn(validator):
    """Unclassified and suspiciously cheap items downgrade to PARTIAL."""
    result = await validator.validate_compliance(tax_request(
        "DE",
        [{"name": "Sticker", "unit_price": 0.5, "quantity": 10}],
        currency="EUR",
    ))
    assert _check(result.general_checks, "HS_CODES").status == "WARNING"
    assert _check(result.general_checks, "DECLARED_VALUE").status == "WARNING"
    assert result.compliance_level == "PARTIAL"
    assert result.summary.warnings == 2


@pytest.mark.asyncio
async def test_country_without_regimes(validator):
    """Destinations without relief regimes get a NOT_APPLICABLE regime check."""
    result = await validator.validate_compliance(tax_request(
        "CA", [{"name": "Laptop", "unit_price": 500.0, "hs_code": "847130"}],
    ))
    check = _check(result.regime_checks, "NO_REGIME")
    assert check.status == "NOT_APPLICABLE"
    assert result.summary.not_applicable == 1
    assert result.compliance_level == "FULL"


@pytest.mark.asyncio
async def test_high_value_adds_financial_risk(validator):
    """Orders above 5000 carry a financial risk factor."""
    result = await validator.validate_compliance(tax_request(
        "US",
        [{"name": "Laptop", "unit_price": 6000.0, "hs_code": "847130"}],
        destination=Destination(country_code="US", state_code="TX"),
    ))
    risk = result.risk_assessment
    assert any(f.type == "FINANCIAL" for f in risk.factors)
    assert risk.score == 50
    assert risk.level == "HIGH"


@pytest.mark.asyncio
async def test_invalid_request_returns_errors(validator):
    """Structural validation errors are returned, not raised."""
    result = await validator.validate_compliance(tax_request("DE", []))
    assert result.success is False
    assert result.errors[0].code == "MISSING_ITEMS"
    assert result.regime_checks == []


@pytest.mark.asyncio
async def test_risk_score_is_capped_at_100(validator):
    """Stacked failures and warnings never push the risk score past 100."""
    result = await validator.validate_compliance(tax_request(
        "US",
        [{"name": "Sparklers", "unit_price": 0.5, "quantity": 12000, "is_restricted": True}],
        destination=Destination(country_code="US", state_code="TX"),
    ))
    risk = result.risk_assessment
    assert sum(f.impact for f in risk.factors) == 110
    assert risk.score == 100
    assert risk.level == "CRITICAL"
    assert "score 100" in risk.explanation
