"""Admin endpoints - caches, rate refresh, provider metrics, relief usage."""

import logging

from fastapi import APIRouter, HTTPException, status

from cbds.dependencies import AccumulationDep, AggregatorDep, CalculatorDep, RateSourceDep
from cbds.engine.rates import REGIME_POLICIES
from cbds.schemas.admin import RecordUsageRequest
from cbds.schemas.logistics import ProviderPerformance
from cbds.schemas.tax import Accumulated

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/cache/stats")
async def cache_stats(calculator: CalculatorDep, aggregator: AggregatorDep, source: RateSourceDep):
    """Size and hit counts of every cache."""
    return {
        "tax": calculator.get_cache_stats(),
        "quotes": aggregator.get_cache_stats(),
        "rates": source.get_cache_stats(),
    }


@router.post("/cache/clear")
async def clear_caches(calculator: CalculatorDep, aggregator: AggregatorDep, source: RateSourceDep):
    """Drop cached tax results and quotes; evict expired rate entries."""
    cleared = {
        "tax": calculator.clear_cache(),
        "quotes": aggregator.clear_cache(),
        "rates_expired": source.clear_expired_cache(),
    }
    logger.info("Caches cleared: %s", cleared)
    return cleared


@router.post("/rates/{country_code}/refresh")
async def refresh_rates(country_code: str, source: RateSourceDep, calculator: CalculatorDep):
    """Reload one country's rate table. Cached tax results are dropped too."""
    if await source.get_country_rates(country_code) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No rate table for {country_code.upper()}",
        )
    await source.force_update_rates(country_code)
    calculator.clear_cache()
    return {"country_code": country_code.upper(), "refreshed": True}


@router.get("/providers/performance", response_model=list[ProviderPerformance])
async def provider_performance(aggregator: AggregatorDep, provider_id: str | None = None):
    """Rolling performance metrics per carrier."""
    if provider_id and provider_id not in aggregator.providers:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown provider '{provider_id}'",
        )
    return aggregator.get_provider_performance(provider_id)


@router.post("/accumulations", response_model=Accumulated)
async def record_usage(body: RecordUsageRequest, store: AccumulationDep, calculator: CalculatorDep):
    """
    Count a shipped order against a relief window.
    key is the recipient (per-recipient regimes) or seller id; amount is in the regime currency.
    """
    if body.regime not in REGIME_POLICIES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid regime: {body.regime}. Allowed: {sorted(REGIME_POLICIES)}",
        )
    if body.amount < 0:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="amount must be non-negative",
        )
    accumulated = store.record(body.regime, body.key, body.amount, body.at)
    # cached results were computed against the old usage
    calculator.clear_cache()
    return accumulated
