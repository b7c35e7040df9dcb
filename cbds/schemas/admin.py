"""Admin request schemas."""

from datetime import datetime

from pydantic import BaseModel


class RecordUsageRequest(BaseModel):
    """POST /v1/admin/accumulations request - count a shipped order against relief windows."""

    regime: str
    key: str
    amount: float
    at: datetime | None = None
