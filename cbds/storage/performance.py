"""Per-provider rolling performance metrics."""

import threading
from datetime import datetime, timezone

from cbds.schemas.logistics import LogisticsQuote, ProviderPerformance

NEUTRAL_RELIABILITY = 0.5
# weight of the newest observation in the moving averages
ALPHA = 0.2


def _ewma(current: float, observed: float) -> float:
    return round((1 - ALPHA) * current + ALPHA * observed, 4)


class ProviderPerformanceTracker:
    """Lock-guarded provider_id -> ProviderPerformance table."""

    def __init__(self) -> None:
        self._records: dict[str, ProviderPerformance] = {}
        self._lock = threading.Lock()

    def _record(self, provider_id: str) -> ProviderPerformance:
        rec = self._records.get(provider_id)
        if rec is None:
            rec = ProviderPerformance(provider_id=provider_id)
            self._records[provider_id] = rec
        rec.last_updated = datetime.now(timezone.utc)
        return rec

    def record_quotes(self, provider_id: str, quotes: list[LogisticsQuote]) -> None:
        with self._lock:
            rec = self._record(provider_id)
            rec.quotes_ok += 1
            rec.success_rate = _ewma(rec.success_rate, 1.0)
            if quotes:
                cost = sum(q.pricing.net_cost for q in quotes) / len(quotes)
                days = sum(q.delivery_time.estimated_days for q in quotes) / len(quotes)
                first = rec.quotes_ok == 1
                rec.average_cost = round(cost if first else _ewma(rec.average_cost, cost), 2)
                rec.average_delivery_days = round(
                    days if first else _ewma(rec.average_delivery_days, days), 2
                )

    def record_quote_failure(self, provider_id: str) -> None:
        with self._lock:
            rec = self._record(provider_id)
            rec.quotes_failed += 1
            rec.success_rate = _ewma(rec.success_rate, 0.0)

    def record_shipment(self, provider_id: str, success: bool) -> None:
        with self._lock:
            rec = self._record(provider_id)
            if success:
                rec.shipments_created += 1
            else:
                rec.shipments_failed += 1
            rec.success_rate = _ewma(rec.success_rate, 1.0 if success else 0.0)

    def record_delivery(self, provider_id: str, on_time: bool) -> None:
        with self._lock:
            rec = self._record(provider_id)
            rec.on_time_delivery_rate = _ewma(rec.on_time_delivery_rate, 1.0 if on_time else 0.0)

    def get(self, provider_id: str) -> ProviderPerformance:
        with self._lock:
            rec = self._records.get(provider_id)
            return rec.model_copy() if rec else ProviderPerformance(provider_id=provider_id)

    def reliability(self, provider_id: str) -> float:
        with self._lock:
            rec = self._records.get(provider_id)
            return rec.reliability if rec else NEUTRAL_RELIABILITY

    def all(self) -> list[ProviderPerformance]:
        with self._lock:
            return [r.model_copy() for r in self._records.values()]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
