"""Tax calculation and rate lookup endpoints."""

from fastapi import APIRouter, HTTPException, status

from cbds.dependencies import CalculatorDep, RateSourceDep
from cbds.engine.classification import HSSuggestion, suggest_hs_code
from cbds.schemas.rates import RateFilters, TaxRate
from cbds.schemas.tax import TaxCalculationRequest, TaxCalculationResult

router = APIRouter()


@router.post("/tax/calculations", response_model=TaxCalculationResult)
async def calculate_tax(body: TaxCalculationRequest, calculator: CalculatorDep):
    """
    Calculate import taxes for an order.
    Validation and data problems come back in the result's errors with success=false.
    """
    return await calculator.calculate_tax(body)


@router.get("/tax/rates/{country_code}", response_model=list[TaxRate])
async def get_tax_rates(
    country_code: str,
    source: RateSourceDep,
    tax_type: str | None = None,
    state_code: str | None = None,
    category: str | None = None,
):
    """Rate rows for a destination country."""
    rows = await source.get_tax_rates(
        country_code, RateFilters(tax_type=tax_type, state_code=state_code, category=category)
    )
    if not rows and await source.get_country_rates(country_code) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No rate table for {country_code.upper()}",
        )
    return rows


@router.get("/tax/hs-codes/suggestions", response_model=HSSuggestion | None)
async def suggest_classification(name: str, category: str | None = None):
    """Keyword-based HS code suggestion for a product name."""
    return suggest_hs_code(name, category)
