"""Integrated landed-cost quote endpoints."""

from fastapi import APIRouter

from cbds.dependencies import OrchestratorDep
from cbds.schemas.integration import DeliveryModeDecision, IntegratedQuoteRequest, IntegratedQuoteResponse

router = APIRouter()


@router.post("/integrated-quotes", response_model=IntegratedQuoteResponse)
async def get_integrated_quotes(body: IntegratedQuoteRequest, orchestrator: OrchestratorDep):
    """
    Shipping options with taxes, compliance and a composite score, best first.
    Carrier outages show up as warnings; success=false only when nothing could be quoted.
    """
    return await orchestrator.get_integrated_quotes(body)


@router.post("/integrated-quotes/delivery-modes/compare", response_model=DeliveryModeDecision)
async def compare_delivery_modes(body: IntegratedQuoteRequest, orchestrator: OrchestratorDep):
    """Recommend DDP or DAP from the best landed cost in each mode."""
    return await orchestrator.compare_delivery_modes(body)
