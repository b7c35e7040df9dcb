"""Carrier quote, address and tracking endpoints."""

from fastapi import APIRouter, HTTPException, status

from cbds.dependencies import AggregatorDep
from cbds.logistics.providers.base import ConfigurationError
from cbds.schemas.logistics import (
    Address,
    AddressValidationResult,
    BestQuotesResult,
    DeliveryModeComparison,
    QuoteRequest,
    ServiceOffering,
    TrackingInfo,
)

router = APIRouter()


@router.post("/logistics/quotes", response_model=BestQuotesResult)
async def get_best_quotes(body: QuoteRequest, aggregator: AggregatorDep):
    """Quotes from every eligible carrier, filtered and ranked."""
    return await aggregator.get_best_quotes(body.request, body.options)


@router.post("/logistics/delivery-modes/compare", response_model=DeliveryModeComparison)
async def compare_delivery_modes(body: QuoteRequest, aggregator: AggregatorDep):
    """Average DDP vs DAP carrier cost for the shipment."""
    return await aggregator.compare_delivery_modes(body.request, body.options)


@router.post("/logistics/addresses/validate", response_model=AddressValidationResult)
async def validate_address(body: Address, aggregator: AggregatorDep, provider_id: str | None = None):
    """Majority vote across carriers, or a single carrier's verdict when provider_id is given."""
    try:
        return await aggregator.validate_address(body, provider_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.get("/logistics/services/{country_code}", response_model=dict[str, list[ServiceOffering]])
async def get_available_services(country_code: str, aggregator: AggregatorDep):
    """Services each carrier offers into a country."""
    return await aggregator.get_available_services(country_code.upper())


@router.get("/logistics/tracking/{tracking_number}", response_model=TrackingInfo)
async def track_shipment(tracking_number: str, aggregator: AggregatorDep, provider_id: str | None = None):
    """Tracking events for a shipment."""
    try:
        info = await aggregator.track_shipment(tracking_number, provider_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tracking number not found",
        )
    return info
