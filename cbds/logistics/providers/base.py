"""Carrier adapter contract, error taxonomy and registry."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from cbds.config import ProviderConfig
from cbds.schemas.logistics import (
    Address,
    AddressCheck,
    LogisticsQuote,
    LogisticsRequest,
    Manifest,
    ServiceOffering,
    Shipment,
    ShippingLabel,
    TrackingInfo,
)


class ProviderError(Exception):
    """Base for carrier failures. error_code lands in ProviderFailure records."""

    error_code = "PROVIDER_ERROR"

    def __init__(self, message: str, provider_id: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id
        self.details = details or {}


class ConfigurationError(ProviderError):
    error_code = "CONFIG_ERROR"


class APIError(ProviderError):
    error_code = "API_ERROR"

    def __init__(self, message: str, provider_id: str | None = None, status_code: int | None = None, **kwargs):
        super().__init__(message, provider_id, **kwargs)
        self.status_code = status_code


class RateLimitError(ProviderError):
    error_code = "RATE_LIMIT"


class ProviderTimeoutError(ProviderError):
    error_code = "TIMEOUT"


class QuoteExpiredError(ProviderError):
    error_code = "QUOTE_EXPIRED"


# transient failures worth another attempt
RETRYABLE_ERRORS = (APIError, RateLimitError, ProviderTimeoutError)


class CarrierProvider(ABC):
    """What the aggregator needs from a carrier integration."""

    def __init__(self) -> None:
        self.config: ProviderConfig | None = None

    @property
    def provider_id(self) -> str:
        if self.config is None:
            raise ConfigurationError("Provider used before initialize()")
        return self.config.provider_id

    @property
    def name(self) -> str:
        return self.config.name if self.config else type(self).__name__

    def initialize(self, config: ProviderConfig) -> None:
        self.config = config
        if not self.validate_config():
            raise ConfigurationError(f"Invalid configuration for {config.provider_id}", config.provider_id)

    def validate_config(self) -> bool:
        return self.config is not None and bool(self.config.provider_id)

    @abstractmethod
    async def test_connection(self) -> bool: ...

    @abstractmethod
    async def get_quotes(self, request: LogisticsRequest) -> list[LogisticsQuote]: ...

    @abstractmethod
    async def create_shipment(self, quote: LogisticsQuote, request: LogisticsRequest) -> Shipment: ...

    @abstractmethod
    async def cancel_shipment(self, order_id: str) -> bool: ...

    @abstractmethod
    async def track_shipment(self, tracking_number: str) -> TrackingInfo | None: ...

    async def get_shipment_status(self, tracking_number: str) -> str | None:
        info = await self.track_shipment(tracking_number)
        return info.status if info else None

    @abstractmethod
    async def generate_label(self, order_id: str) -> ShippingLabel: ...

    @abstractmethod
    async def generate_manifest(self, order_ids: list[str]) -> Manifest: ...

    @abstractmethod
    async def validate_address(self, address: Address) -> AddressCheck: ...

    @abstractmethod
    async def get_available_services(self, country_code: str) -> list[ServiceOffering]: ...


_REGISTRY: dict[str, type[CarrierProvider]] = {}


def register_provider(key: str) -> Callable[[type[CarrierProvider]], type[CarrierProvider]]:
    """Class decorator: make an adapter constructible from ProviderConfig.adapter."""
    def wrap(cls: type[CarrierProvider]) -> type[CarrierProvider]:
        if key in _REGISTRY and _REGISTRY[key] is not cls:
            raise ConfigurationError(f"Adapter key already registered: {key}")
        _REGISTRY[key] = cls
        return cls
    return wrap


def registered_adapters() -> list[str]:
    return sorted(_REGISTRY)


def create_provider(config: ProviderConfig) -> CarrierProvider:
    cls = _REGISTRY.get(config.adapter)
    if cls is None:
        raise ConfigurationError(f"Unknown adapter '{config.adapter}'", config.provider_id)
    provider = cls()
    provider.initialize(config)
    return provider
