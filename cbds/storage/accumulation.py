"""Relief-window usage counters.

Counts how much value has already been shipped under a regime for a recipient
(daily window) or seller (monthly and quarterly windows). Process-local and
strictly consistent within the process. Reads never record usage; callers book
usage explicitly once an order actually ships.
"""

import logging
import threading
from datetime import datetime, timezone

from cbds.schemas.tax import Accumulated

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def window_ids(at: datetime) -> dict[str, str]:
    """Window identifiers containing ``at`` for each period."""
    quarter = (at.month - 1) // 3 + 1
    return {
        "daily": at.strftime("%Y-%m-%d"),
        "monthly": at.strftime("%Y-%m"),
        "quarterly": f"{at.year}-Q{quarter}",
    }


class AccumulationStore:
    """In-memory (regime, key, window) -> amount table."""

    def __init__(self) -> None:
        self._totals: dict[tuple[str, str, str], float] = {}
        self._lock = threading.Lock()

    def get(self, regime: str, key: str | None, at: datetime | None = None) -> Accumulated:
        if not key:
            return Accumulated()
        ids = window_ids(at or _utcnow())
        with self._lock:
            return Accumulated(**{
                period: self._totals.get((regime, key, wid), 0.0)
                for period, wid in ids.items()
            })

    def record(self, regime: str, key: str, amount: float, at: datetime | None = None) -> Accumulated:
        """Add ``amount`` (in the regime currency) to every window containing ``at``."""
        if amount < 0:
            raise ValueError("amount must be non-negative")
        ids = window_ids(at or _utcnow())
        with self._lock:
            for wid in ids.values():
                k = (regime, key, wid)
                self._totals[k] = round(self._totals.get(k, 0.0) + amount, 2)
        logger.info("Recorded %.2f against %s for %s", amount, regime, key)
        return self.get(regime, key, at)

    def clear(self) -> None:
        with self._lock:
            self._totals.clear()
