"""Shared schema pieces."""

from typing import Any, Literal

from pydantic import BaseModel, Field

ErrorType = Literal["VALIDATION", "DATA", "PROVIDER", "SYSTEM"]
DeliveryMode = Literal["DDP", "DAP"]


class ErrorDetail(BaseModel):
    """Structured error carried inside a result object."""

    code: str
    message: str
    type: ErrorType = "SYSTEM"
    field: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class Money(BaseModel):
    """Amount with explicit currency."""

    amount: float
    currency: str = "USD"
