"""Application configuration."""

from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderConfig(BaseModel):
    """One carrier adapter instance to register with the aggregator."""

    provider_id: str
    name: str
    adapter: str = "rate-card"
    enabled: bool = True
    api_key: str | None = None
    api_secret: str | None = None
    base_url: str | None = None
    timeout_seconds: float | None = None
    options: dict[str, Any] = Field(default_factory=dict)


def _default_providers() -> list[ProviderConfig]:
    return [
        ProviderConfig(
            provider_id="swiftpost",
            name="SwiftPost International",
            options={"price_factor": 1.0, "fuel_surcharge_rate": 0.12},
        ),
        ProviderConfig(
            provider_id="budgetline",
            name="BudgetLine Parcel",
            options={
                "price_factor": 0.8,
                "fuel_surcharge_rate": 0.08,
                "transit_days_offset": 3,
                "services": ["ECONOMY", "STANDARD", "PACKET"],
            },
        ),
    ]


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="CBDS_")

    log_level: str = "INFO"
    engine_version: str = "1.0.0"

    cache_enabled: bool = True
    tax_cache_ttl_seconds: float = 300
    rate_cache_ttl_seconds: float = 3600
    quote_cache_ttl_seconds: float = 900

    provider_timeout_seconds: float = 10.0
    provider_max_attempts: int = 3
    provider_retry_min_wait_seconds: float = 0.2
    provider_retry_max_wait_seconds: float = 2.0

    default_currency: str = "USD"
    default_seller_id: str = "default"
    max_integrated_quotes: int = 10
    change_shipping_tax_ratio: float = 0.15
    quote_validity_hours: int = 24

    carrier_providers: list[ProviderConfig] = Field(default_factory=_default_providers)

    @field_validator("log_level", mode="after")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept lowercase level names from the environment."""
        return v.upper()

    @field_validator("carrier_providers", mode="after")
    @classmethod
    def unique_provider_ids(cls, v: list[ProviderConfig]) -> list[ProviderConfig]:
        """Provider ids key the registry and performance table, so they must be unique."""
        seen: set[str] = set()
        for p in v:
            if p.provider_id in seen:
                raise ValueError(f"Duplicate provider_id: {p.provider_id}")
            seen.add(p.provider_id)
        return v


settings = Settings()
