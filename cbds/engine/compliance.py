"""Compliance validator - audit view of the relief regimes plus general declaration checks."""

import logging
from datetime import datetime, timezone

from cbds.engine.calculator import validate_request
from cbds.engine.classification import is_valid_hs_code
from cbds.engine.rates import RatePolicySource
from cbds.engine.regimes import evaluate_order, required_document_codes
from cbds.schemas.common import ErrorDetail
from cbds.schemas.compliance import (
    ComplianceCheck,
    ComplianceRecommendation,
    ComplianceSummary,
    ComplianceValidationResult,
    RequiredDocument,
    RiskAssessment,
    RiskFactor,
)
from cbds.schemas.tax import RegimeStatus, TaxCalculationRequest
from cbds.storage.accumulation import AccumulationStore

logger = logging.getLogger(__name__)

STATUS_RISK = {"PASS": 0, "WARNING": 15, "FAIL": 30, "NOT_APPLICABLE": 5}
HIGH_VALUE = 5000
HIGH_VALUE_RISK = 20
MIN_UNIT_PRICE = 1.0

DOCUMENTS = {
    "COMMERCIAL_INVOICE": ("Commercial invoice", "Itemised invoice with values, HS codes and origin", True),
    "PACKING_LIST": ("Packing list", "Contents, quantities and weights per package", True),
    "IOSS_NUMBER": ("IOSS number", "Seller IOSS registration declared on the customs data", True),
    "TYPE_86_ENTRY": ("Type 86 entry", "Electronic de minimis entry filed by the carrier", True),
    "UK_VAT_REGISTRATION": ("UK VAT registration", "Seller VAT number for point-of-sale VAT", False),
    "CERTIFICATE_OF_ORIGIN": ("Certificate of origin", "Proof of origin for preferential duty", True),
}


def risk_level(score: int) -> str:
    if score >= 60:
        return "CRITICAL"
    if score >= 40:
        return "HIGH"
    if score >= 20:
        return "MEDIUM"
    return "LOW"


def _regime_check(s: RegimeStatus) -> ComplianceCheck:
    window = {"DAILY": s.accumulated.daily, "MONTHLY": s.accumulated.monthly, "QUARTERLY": s.accumulated.quarterly}
    return ComplianceCheck(
        check_id=s.regime,
        name=s.name,
        status=s.status,
        message=s.reason,
        order_value=s.order_value,
        threshold=s.threshold.amount,
        currency=s.threshold.currency,
        remaining_quota=s.remaining,
        accumulated=window[s.threshold.period],
        details={"period": s.threshold.period, "per_recipient": s.threshold.per_recipient},
    )


class ComplianceValidator:
    """validate_compliance entry point."""

    def __init__(self, source: RatePolicySource, store: AccumulationStore):
        self.source = source
        self.store = store

    async def validate_compliance(self, request: TaxCalculationRequest) -> ComplianceValidationResult:
        try:
            return await self._validate(request)
        except Exception as e:
            logger.exception("Compliance validation failed for order %s", request.order_id)
            return ComplianceValidationResult(
                success=False,
                errors=[ErrorDetail(code="SYSTEM_ERROR", message=str(e) or type(e).__name__, type="SYSTEM")],
                validated_at=datetime.now(timezone.utc),
            )

    async def _validate(self, request: TaxCalculationRequest) -> ComplianceValidationResult:
        errors = validate_request(request)
        if errors:
            return ComplianceValidationResult(success=False, errors=errors, validated_at=datetime.now(timezone.utc))

        statuses = await evaluate_order(request, self.source, self.store)
        regime_checks = [_regime_check(s) for s in statuses]
        if not regime_checks:
            regime_checks.append(ComplianceCheck(
                check_id="NO_REGIME",
                name="Relief regimes",
                status="NOT_APPLICABLE",
                message=f"No relief regime is defined for {request.destination.country_code}",
            ))
        general_checks = self._general_checks(request)
        checks = regime_checks + general_checks

        risk = self._risk(request, checks)
        documents = [
            RequiredDocument(document_type=code, name=name, description=desc, required=required)
            for code in required_document_codes(statuses, request.destination.country_code, request.total_value)
            for name, desc, required in [DOCUMENTS[code]]
        ]
        summary = ComplianceSummary(
            total_checks=len(checks),
            passed=sum(c.status == "PASS" for c in checks),
            failed=sum(c.status == "FAIL" for c in checks),
            warnings=sum(c.status == "WARNING" for c in checks),
            not_applicable=sum(c.status == "NOT_APPLICABLE" for c in checks),
        )
        return ComplianceValidationResult(
            success=True,
            compliance_level=self._level(checks, risk),
            regime_checks=regime_checks,
            general_checks=general_checks,
            risk_assessment=risk,
            required_documents=documents,
            recommendations=self._recommendations(statuses),
            summary=summary,
            validated_at=datetime.now(timezone.utc),
        )

    def _general_checks(self, request: TaxCalculationRequest) -> list[ComplianceCheck]:
        checks: list[ComplianceCheck] = []
        missing = [i.name for i in request.items if not is_valid_hs_code(i.hs_code)]
        checks.append(ComplianceCheck(
            check_id="HS_CODES",
            name="HS code declaration",
            status="WARNING" if missing else "PASS",
            message=f"Missing or invalid HS code: {', '.join(missing)}" if missing else "All items classified",
        ))
        prohibited = [i.name for i in request.items if i.is_prohibited]
        checks.append(ComplianceCheck(
            check_id="PROHIBITED_GOODS",
            name="Restricted and dangerous goods",
            status="FAIL" if prohibited else "PASS",
            message=f"Cannot ship under relief: {', '.join(prohibited)}" if prohibited else "No restricted goods",
        ))
        low = [i.name for i in request.items if i.unit_price < MIN_UNIT_PRICE]
        checks.append(ComplianceCheck(
            check_id="DECLARED_VALUE",
            name="Declared unit value",
            status="WARNING" if low else "PASS",
            message=(
                f"Unit value below {MIN_UNIT_PRICE:.2f} may be flagged as undervaluation: {', '.join(low)}"
                if low else "Declared values plausible"
            ),
        ))
        return checks

    def _risk(self, request: TaxCalculationRequest, checks: list[ComplianceCheck]) -> RiskAssessment:
        factors: list[RiskFactor] = []
        score = 0
        for c in checks:
            impact = STATUS_RISK[c.status]
            score += impact
            if c.status in ("FAIL", "WARNING"):
                factors.append(RiskFactor(
                    type="REGULATORY",
                    description=f"{c.name}: {c.message}",
                    severity="HIGH" if c.status == "FAIL" else "MEDIUM",
                    impact=impact,
                ))
        if request.total_value > HIGH_VALUE:
            score += HIGH_VALUE_RISK
            factors.append(RiskFactor(
                type="FINANCIAL",
                description=f"High order value {request.total_value:.2f} {request.currency}",
                severity="MEDIUM",
                impact=HIGH_VALUE_RISK,
            ))
        score = min(score, 100)
        level = risk_level(score)
        if factors:
            explanation = f"Risk {level} (score {score}) from {len(factors)} factor(s): " + "; ".join(
                f.description for f in factors
            )
        else:
            explanation = f"Risk {level} (score {score}); no failing or warning checks"
        return RiskAssessment(score=score, level=level, factors=factors, explanation=explanation)

    @staticmethod
    def _level(checks: list[ComplianceCheck], risk: RiskAssessment) -> str:
        statuses = {c.status for c in checks}
        if "FAIL" in statuses:
            return "NON_COMPLIANT"
        if "WARNING" in statuses or risk.level in ("HIGH", "CRITICAL"):
            return "PARTIAL"
        if statuses - {"NOT_APPLICABLE"}:
            return "FULL"
        return "UNKNOWN"

    @staticmethod
    def _recommendations(statuses: list[RegimeStatus]) -> list[ComplianceRecommendation]:
        recs: list[ComplianceRecommendation] = []
        for s in statuses:
            if s.status == "PASS" and s.near_threshold:
                recs.append(ComplianceRecommendation(
                    type="OPTIMIZATION",
                    priority="MEDIUM",
                    title=f"Close to the {s.name} limit",
                    description=f"Only {s.remaining:.2f} {s.threshold.currency} headroom; watch basket upsells.",
                ))
            elif s.status == "PASS" and s.regime == "IOSS":
                recs.append(ComplianceRecommendation(
                    type="PROCESS_IMPROVEMENT",
                    priority="LOW",
                    title="Declare the IOSS number",
                    description="Pass the IOSS number to the carrier so VAT is not charged again at import.",
                ))
            elif s.status == "FAIL" and s.applicable is False and "exceeds" in s.reason:
                recs.append(ComplianceRecommendation(
                    type="OPTIMIZATION",
                    priority="HIGH",
                    title=f"Order is above the {s.name} threshold",
                    description="Split the shipment or file a formal entry and budget for duty.",
                ))
            elif s.status == "WARNING":
                recs.append(ComplianceRecommendation(
                    type="RISK_MITIGATION",
                    priority="HIGH" if s.threshold.per_recipient else "MEDIUM",
                    title=f"{s.name} needs attention",
                    description=s.reason,
                ))
            elif s.status == "FAIL":
                recs.append(ComplianceRecommendation(
                    type="RISK_MITIGATION",
                    priority="HIGH",
                    title="Remove restricted goods",
                    description="Restricted or dangerous goods cannot use simplified relief.",
                ))
        return recs
