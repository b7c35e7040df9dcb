"""Shared fixtures and fake carriers."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from cbds.config import ProviderConfig
from cbds.engine.calculator import TaxCalculator
from cbds.engine.compliance import ComplianceValidator
from cbds.engine.rates import RatePolicySource
from cbds.logistics.providers.base import CarrierProvider
from cbds.schemas.common import Money
from cbds.schemas.logistics import (
    Address,
    AddressCheck,
    DeliveryTime,
    LogisticsQuote,
    LogisticsRequest,
    Manifest,
    Package,
    Pricing,
    ServiceOffering,
    Shipment,
    ShippingLabel,
    TrackingEvent,
    TrackingInfo,
    Weight,
)
from cbds.schemas.tax import Destination, TaxCalculationRequest, TaxItem
from cbds.storage.accumulation import AccumulationStore


def make_quote(
    provider_id: str,
    cost: float,
    days: int,
    mode: str = "DAP",
    service: str = "STANDARD",
    valid_hours: float = 24,
    currency: str = "USD",
) -> LogisticsQuote:
    return LogisticsQuote(
        quote_id=f"{provider_id}-{service.lower()}-{mode.lower()}-{cost}",
        provider_id=provider_id,
        provider_name=provider_id.title(),
        service_code=service,
        service_name=service.title(),
        service_class=service,
        delivery_mode=mode,
        pricing=Pricing(base_cost=cost, total_cost=cost, net_cost=cost, currency=currency),
        delivery_time=DeliveryTime(estimated_days=days, min_days=max(1, days - 1), max_days=days + 1),
        valid_until=datetime.now(timezone.utc) + timedelta(hours=valid_hours),
    )


class FakeProvider(CarrierProvider):
    """Scripted carrier: fixed quotes, optional error and delay."""

    def __init__(
        self,
        provider_id: str,
        quotes: list[LogisticsQuote] | None = None,
        error: Exception | None = None,
        fail_times: int | None = None,
        delay: float = 0.0,
        address_valid: bool = True,
    ):
        super().__init__()
        self.initialize(ProviderConfig(provider_id=provider_id, name=provider_id.title(), adapter="fake"))
        self.quotes = quotes or []
        self.error = error
        self.fail_times = fail_times
        self.delay = delay
        self.address_valid = address_valid
        self.calls = 0
        self.shipments: dict[str, Shipment] = {}

    async def test_connection(self) -> bool:
        return self.error is None

    async def get_quotes(self, request: LogisticsRequest) -> list[LogisticsQuote]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None and (self.fail_times is None or self.calls <= self.fail_times):
            raise self.error
        return [
            q.model_copy() for q in self.quotes
            if request.preferred_mode is None or q.delivery_mode == request.preferred_mode
        ]

    async def create_shipment(self, quote: LogisticsQuote, request: LogisticsRequest) -> Shipment:
        shipment = Shipment(
            shipment_id=f"{self.provider_id}-1",
            order_id=request.order_id,
            provider_id=self.provider_id,
            quote_id=quote.quote_id,
            tracking_number=f"{self.provider_id.upper()}0001",
            created_at=datetime.now(timezone.utc),
        )
        self.shipments[shipment.tracking_number] = shipment
        return shipment

    async def cancel_shipment(self, order_id: str) -> bool:
        return False

    async def track_shipment(self, tracking_number: str) -> TrackingInfo | None:
        if tracking_number not in self.shipments:
            return None
        return TrackingInfo(
            tracking_number=tracking_number,
            provider_id=self.provider_id,
            status="CREATED",
            events=[TrackingEvent(timestamp=datetime.now(timezone.utc), status="CREATED")],
        )

    async def generate_label(self, order_id: str) -> ShippingLabel:
        return ShippingLabel(order_id=order_id, url=f"/labels/{order_id}.pdf")

    async def generate_manifest(self, order_ids: list[str]) -> Manifest:
        return Manifest(
            manifest_id="m1", provider_id=self.provider_id, order_ids=order_ids,
            created_at=datetime.now(timezone.utc),
        )

    async def validate_address(self, address: Address) -> AddressCheck:
        return AddressCheck(is_valid=self.address_valid)

    async def get_available_services(self, country_code: str) -> list[ServiceOffering]:
        return [ServiceOffering(
            service_code="STANDARD", service_name="Standard", service_class="STANDARD", min_days=5, max_days=9,
        )]


def logistics_request(country_code: str = "DE", **kwargs) -> LogisticsRequest:
    return LogisticsRequest(
        origin=Address(country_code="CN", city="Shenzhen", postal_code="518000"),
        destination=Address(country_code=country_code, city="Berlin", postal_code="10115"),
        packages=[Package(weight=Weight(value=1.0), value=Money(amount=89.0, currency="EUR"))],
        **kwargs,
    )


def tax_request(country_code: str, items: list[dict], currency: str = "USD", **kwargs) -> TaxCalculationRequest:
    destination = kwargs.pop("destination", None) or Destination(country_code=country_code)
    return TaxCalculationRequest(
        currency=currency,
        items=[TaxItem(**i) for i in items],
        destination=destination,
        **kwargs,
    )


@pytest.fixture
def source() -> RatePolicySource:
    return RatePolicySource()


@pytest.fixture
def store() -> AccumulationStore:
    return AccumulationStore()


@pytest.fixture
def calculator(source, store) -> TaxCalculator:
    return TaxCalculator(source, store)


@pytest.fixture
def validator(source, store) -> ComplianceValidator:
    return ComplianceValidator(source, store)
