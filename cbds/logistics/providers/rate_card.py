"""Table-driven carrier adapter.

Prices come from a published zone/weight rate card instead of a remote API:
first 0.5 kg at the zone base price, each further 0.5 kg at the zone step price,
scaled by the service multiplier and the carrier's price factor. Billable weight
is the larger of actual and volumetric weight (L x W x H / 5000 in cm).
"""

import itertools
import logging
import math
from datetime import datetime, timedelta, timezone

from cbds.config import settings
from cbds.engine.rates import EU_MEMBERS, exchange_rate
from cbds.logistics.providers.base import CarrierProvider, ConfigurationError, register_provider
from cbds.schemas.common import DeliveryMode
from cbds.schemas.logistics import (
    Address,
    AddressCheck,
    DeliveryTime,
    InsuranceOption,
    LogisticsQuote,
    LogisticsRequest,
    Manifest,
    Pricing,
    ServiceOffering,
    Shipment,
    ShippingLabel,
    TrackingCapability,
    TrackingEvent,
    TrackingInfo,
)
from cbds.utils.canonical import fingerprint

logger = logging.getLogger(__name__)

# zone -> (first 0.5 kg, each further 0.5 kg), USD
ZONE_BASE = {
    "DOMESTIC": (3.5, 1.0),
    "REGIONAL": (6.0, 2.0),
    "INTERCONTINENTAL": (12.0, 4.0),
}
VOLUMETRIC_DIVISOR = 5000.0
REGIONS = {
    "EU": EU_MEMBERS,
    "NA": frozenset({"US", "CA", "MX"}),
}

# code -> (name, multiplier, min_days, max_days, modes, max_kg)
SERVICES: dict[str, tuple[str, float, int, int, tuple[DeliveryMode, ...], float | None]] = {
    "EXPRESS": ("Express Worldwide", 1.6, 2, 4, ("DDP", "DAP"), None),
    "STANDARD": ("Standard International", 1.0, 5, 9, ("DDP", "DAP"), None),
    "ECONOMY": ("Economy Parcel", 0.8, 10, 18, ("DDP", "DAP"), None),
    "PACKET": ("Tracked Packet", 0.6, 12, 25, ("DAP",), 2.0),
}

POSTAL_CODE_REQUIRED = {"US", "CA", "GB", "AU", "JP"} | EU_MEMBERS
DDP_HANDLING_BASE = 2.0
DDP_HANDLING_RATE = 0.01
INSURANCE_RATE = 0.01
INSURANCE_MIN = 1.0


def zone_for(origin: str, destination: str) -> str:
    if origin == destination:
        return "DOMESTIC"
    for members in REGIONS.values():
        if origin in members and destination in members:
            return "REGIONAL"
    return "INTERCONTINENTAL"


def billable_weight(request: LogisticsRequest) -> float:
    total = 0.0
    for p in request.packages:
        actual = max(0.01, p.weight.to_kg())
        if p.dimensions is not None:
            length, width, height = p.dimensions.to_cm()
            actual = max(actual, length * width * height / VOLUMETRIC_DIVISOR)
        total += actual * p.quantity
    return total


def price_for(zone: str, weight_kg: float, multiplier: float) -> float:
    first, step = ZONE_BASE[zone]
    halves = max(1, math.ceil(weight_kg / 0.5))
    return (first + step * (halves - 1)) * multiplier


@register_provider("rate-card")
class RateCardProvider(CarrierProvider):
    """In-process carrier priced from a rate card. Shipments are kept in memory."""

    def __init__(self) -> None:
        super().__init__()
        self._shipments: dict[str, Shipment] = {}
        self._events: dict[str, list[TrackingEvent]] = {}
        self._seq = itertools.count(1)

    def _opt(self, key: str, default):
        return self.config.options.get(key, default) if self.config else default

    def validate_config(self) -> bool:
        if not super().validate_config():
            return False
        unknown = set(self._opt("services", SERVICES)) - set(SERVICES)
        if unknown:
            raise ConfigurationError(f"Unknown services {sorted(unknown)}", self.config.provider_id)
        return float(self._opt("price_factor", 1.0)) > 0

    async def test_connection(self) -> bool:
        return True

    def _serves(self, country_code: str) -> bool:
        countries = self._opt("countries", None)
        return countries is None or country_code in countries

    def _services(self) -> list[str]:
        return [s for s in SERVICES if s in self._opt("services", SERVICES)]

    async def get_quotes(self, request: LogisticsRequest) -> list[LogisticsQuote]:
        dest = request.destination.country_code
        if not request.packages or not self._serves(dest):
            return []
        if any(p.is_dangerous for p in request.packages) and not self._opt("accepts_dangerous_goods", False):
            logger.info("%s declines dangerous goods to %s", self.provider_id, dest)
            return []

        currency = self._opt("currency", "USD")
        factor = float(self._opt("price_factor", 1.0))
        fuel_rate = float(self._opt("fuel_surcharge_rate", 0.0))
        offset = int(self._opt("transit_days_offset", 0))
        remote = tuple(self._opt("remote_postcode_prefixes", ()))
        zone = zone_for(request.origin.country_code, dest)
        weight = billable_weight(request)
        fx = exchange_rate("USD", currency)

        if request.shipment_value is not None:
            value = request.shipment_value.amount * exchange_rate(request.shipment_value.currency, currency)
        else:
            value = sum(p.value.amount * p.quantity * exchange_rate(p.value.currency, currency) for p in request.packages)

        is_remote = bool(remote and (request.destination.postal_code or "").startswith(remote))
        valid_until = datetime.now(timezone.utc) + timedelta(hours=settings.quote_validity_hours)
        request_fp = fingerprint(request)[:12]

        quotes: list[LogisticsQuote] = []
        for code in self._services():
            name, mult, min_days, max_days, modes, max_kg = SERVICES[code]
            if max_kg is not None and weight > max_kg:
                continue
            if zone == "DOMESTIC":
                min_days, max_days = max(1, min_days // 2), max(1, max_days // 2)
            min_days, max_days = min_days + offset, max_days + offset
            base = round(price_for(zone, weight, mult) * factor * fx, 2)
            fuel = round(base * fuel_rate, 2)
            remote_fee = round(5.0 * fx, 2) if is_remote else 0.0
            for mode in modes:
                if request.preferred_mode and mode != request.preferred_mode:
                    continue
                handling = round(DDP_HANDLING_BASE * fx + value * DDP_HANDLING_RATE, 2) if mode == "DDP" else 0.0
                total = round(base + fuel + remote_fee + handling, 2)
                quotes.append(LogisticsQuote(
                    quote_id=f"{self.provider_id}-{code.lower()}-{mode.lower()}-{request_fp}",
                    provider_id=self.provider_id,
                    provider_name=self.name,
                    service_code=code,
                    service_name=f"{name} ({mode})",
                    service_class=code,
                    delivery_mode=mode,
                    pricing=Pricing(
                        base_cost=base,
                        fuel_surcharge=fuel,
                        remote_area_surcharge=remote_fee,
                        handling_fee=handling,
                        total_cost=total,
                        net_cost=total,
                        currency=currency,
                    ),
                    delivery_time=DeliveryTime(
                        estimated_days=(min_days + max_days) // 2,
                        min_days=min_days,
                        max_days=max_days,
                        guaranteed_delivery=code == "EXPRESS",
                    ),
                    features=self._features(code, mode),
                    restrictions=["No dangerous goods"] + ([f"Max {max_kg:g} kg"] if max_kg else []),
                    tracking=TrackingCapability(
                        available=True,
                        real_time_updates=code == "EXPRESS",
                        sms_notification=code in ("EXPRESS", "STANDARD"),
                    ),
                    insurance=InsuranceOption(
                        available=code != "PACKET",
                        cost=round(max(INSURANCE_MIN * fx, value * INSURANCE_RATE), 2) if code != "PACKET" else 0.0,
                        max_coverage=round(5000 * fx, 2) if code != "PACKET" else None,
                    ),
                    valid_until=valid_until,
                ))
        return quotes

    @staticmethod
    def _features(code: str, mode: DeliveryMode) -> list[str]:
        features = ["tracking"]
        if mode == "DDP":
            features.append("duties_prepaid")
        if code == "EXPRESS":
            features += ["door_to_door", "signature_on_delivery"]
        return features

    async def create_shipment(self, quote: LogisticsQuote, request: LogisticsRequest) -> Shipment:
        n = next(self._seq)
        prefix = self._opt("tracking_prefix", self.provider_id[:3].upper())
        order_id = request.order_id or f"ORD{n:06d}"
        shipment = Shipment(
            shipment_id=f"{self.provider_id}-shp-{n:06d}",
            order_id=order_id,
            provider_id=self.provider_id,
            quote_id=quote.quote_id,
            tracking_number=f"{prefix}{n:09d}",
            label_url=f"/labels/{self.provider_id}/{order_id}.pdf",
            created_at=datetime.now(timezone.utc),
        )
        self._shipments[shipment.tracking_number] = shipment
        self._events[shipment.tracking_number] = [TrackingEvent(
            timestamp=shipment.created_at,
            status="CREATED",
            location=request.origin.city,
            description="Shipment information received",
        )]
        return shipment

    def _by_order(self, order_id: str) -> Shipment | None:
        return next((s for s in self._shipments.values() if s.order_id == order_id), None)

    async def cancel_shipment(self, order_id: str) -> bool:
        shipment = self._by_order(order_id)
        if shipment is None or shipment.status == "CANCELLED":
            return False
        shipment.status = "CANCELLED"
        self._events[shipment.tracking_number].append(TrackingEvent(
            timestamp=datetime.now(timezone.utc), status="CANCELLED", description="Shipment cancelled",
        ))
        return True

    async def track_shipment(self, tracking_number: str) -> TrackingInfo | None:
        shipment = self._shipments.get(tracking_number)
        if shipment is None:
            return None
        return TrackingInfo(
            tracking_number=tracking_number,
            provider_id=self.provider_id,
            status=shipment.status,
            events=list(self._events.get(tracking_number, [])),
        )

    async def generate_label(self, order_id: str) -> ShippingLabel:
        shipment = self._by_order(order_id)
        if shipment is None:
            raise ConfigurationError(f"No shipment for order {order_id}", self.provider_id)
        return ShippingLabel(order_id=order_id, url=shipment.label_url or "")

    async def generate_manifest(self, order_ids: list[str]) -> Manifest:
        known = [o for o in order_ids if self._by_order(o) is not None]
        now = datetime.now(timezone.utc)
        return Manifest(
            manifest_id=f"{self.provider_id}-mf-{now:%Y%m%d%H%M%S}",
            provider_id=self.provider_id,
            order_ids=known,
            created_at=now,
        )

    async def validate_address(self, address: Address) -> AddressCheck:
        messages = []
        if len(address.country_code) != 2 or not address.country_code.isalpha():
            messages.append("country_code must be ISO 3166-1 alpha-2")
        if not address.city:
            messages.append("city is required")
        if address.country_code in POSTAL_CODE_REQUIRED and not address.postal_code:
            messages.append(f"postal_code is required for {address.country_code}")
        if address.country_code == "US" and not address.state_code:
            messages.append("state_code is required for US")
        if not self._serves(address.country_code):
            messages.append(f"{self.name} does not deliver to {address.country_code}")
        normalized = address.model_copy(update={
            "postal_code": address.postal_code.replace(" ", "").upper() if address.postal_code else None,
            "city": address.city.strip().title() if address.city else None,
        })
        return AddressCheck(is_valid=not messages, normalized=normalized, messages=messages)

    async def get_available_services(self, country_code: str) -> list[ServiceOffering]:
        if not self._serves(country_code.upper()):
            return []
        offset = int(self._opt("transit_days_offset", 0))
        return [
            ServiceOffering(
                service_code=code,
                service_name=SERVICES[code][0],
                service_class=code,
                delivery_modes=list(SERVICES[code][4]),
                min_days=SERVICES[code][2] + offset,
                max_days=SERVICES[code][3] + offset,
            )
            for code in self._services()
        ]
