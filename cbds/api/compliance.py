"""Compliance validation endpoint."""

from fastapi import APIRouter

from cbds.dependencies import ValidatorDep
from cbds.schemas.compliance import ComplianceValidationResult
from cbds.schemas.tax import TaxCalculationRequest

router = APIRouter()


@router.post("/compliance/validations", response_model=ComplianceValidationResult)
async def validate_compliance(body: TaxCalculationRequest, validator: ValidatorDep):
    """Audit an order against the relief regimes and general declaration rules."""
    return await validator.validate_compliance(body)
