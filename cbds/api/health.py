"""Health and metrics endpoints."""

from fastapi import APIRouter

from cbds.config import settings
from cbds.dependencies import AggregatorDep, CalculatorDep

router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/metrics")
async def metrics(calculator: CalculatorDep, aggregator: AggregatorDep):
    """Basic metrics endpoint for observability."""
    return {
        "service": "cbds",
        "version": settings.engine_version,
        "tax_cache": calculator.get_cache_stats(),
        "quote_cache": aggregator.get_cache_stats(),
    }
