"""Canonical JSON and fingerprint utilities."""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _canonical_value(obj: Any) -> Any:
    """Convert value for canonical representation."""
    if obj is None:
        return None
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, Enum):
        return _canonical_value(obj.value)
    if isinstance(obj, (int, float, Decimal)):
        return float(obj) if isinstance(obj, (float, Decimal)) else int(obj)
    if isinstance(obj, BaseModel):
        return _canonical_value(obj.model_dump(mode="json"))
    if isinstance(obj, dict):
        return {str(k): _canonical_value(v) for k, v in sorted(obj.items(), key=lambda kv: str(kv[0]))}
    if isinstance(obj, (list, tuple)):
        return [_canonical_value(v) for v in obj]
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, str):
        return obj
    return str(obj)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON string (sorted keys, consistent formatting)."""
    canonical = _canonical_value(obj)
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"))


def fingerprint(obj: Any) -> str:
    """SHA256 of the canonical JSON form. Equal structures give equal fingerprints."""
    return hashlib.sha256(canonical_json(obj).encode()).hexdigest()


def short_id(prefix: str, obj: Any, length: int = 16) -> str:
    """Stable identifier like ``calc_3f9a...`` derived from content."""
    return f"{prefix}_{fingerprint(obj)[:length]}"
