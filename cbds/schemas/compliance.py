"""Compliance validation schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from cbds.schemas.common import ErrorDetail

CheckStatus = Literal["PASS", "FAIL", "WARNING", "NOT_APPLICABLE"]
RiskLevel = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
ComplianceLevel = Literal["FULL", "PARTIAL", "NON_COMPLIANT", "UNKNOWN"]


class ComplianceCheck(BaseModel):
    """Audit line for a regime or general rule."""

    check_id: str
    name: str
    status: CheckStatus
    message: str
    order_value: float | None = None
    threshold: float | None = None
    currency: str | None = None
    remaining_quota: float | None = None
    accumulated: float | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class RiskFactor(BaseModel):
    type: Literal["REGULATORY", "FINANCIAL", "OPERATIONAL"]
    description: str
    severity: RiskLevel
    impact: int


class RiskAssessment(BaseModel):
    score: int
    level: RiskLevel
    factors: list[RiskFactor] = Field(default_factory=list)
    explanation: str


class RequiredDocument(BaseModel):
    document_type: str
    name: str
    description: str
    required: bool = True


class ComplianceRecommendation(BaseModel):
    type: Literal["OPTIMIZATION", "RISK_MITIGATION", "PROCESS_IMPROVEMENT"]
    priority: Literal["LOW", "MEDIUM", "HIGH"]
    title: str
    description: str


class ComplianceSummary(BaseModel):
    total_checks: int = 0
    passed: int = 0
    failed: int = 0
    warnings: int = 0
    not_applicable: int = 0


class ComplianceValidationResult(BaseModel):
    """Result of validate_compliance."""

    success: bool
    compliance_level: ComplianceLevel = "UNKNOWN"
    regime_checks: list[ComplianceCheck] = Field(default_factory=list)
    general_checks: list[ComplianceCheck] = Field(default_factory=list)
    risk_assessment: RiskAssessment | None = None
    required_documents: list[RequiredDocument] = Field(default_factory=list)
    recommendations: list[ComplianceRecommendation] = Field(default_factory=list)
    summary: ComplianceSummary = Field(default_factory=ComplianceSummary)
    errors: list[ErrorDetail] = Field(default_factory=list)
    validated_at: datetime
