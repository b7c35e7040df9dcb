"""Tests for caches, accumulation windows and provider metrics."""

import asyncio
from datetime import datetime, timezone

import pytest
from conftest import make_quote

from cbds.storage.accumulation import AccumulationStore, window_ids
from cbds.storage.cache import SingleFlight, TTLCache
from cbds.storage.performance import NEUTRAL_RELIABILITY, ProviderPerformanceTracker


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_ttl_cache_expires_entries():
    """Entries vanish once their TTL has elapsed."""
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("k", "v")
    assert cache.get("k") == "v"
    clock.now += 10
    assert cache.get("k") is None
    assert len(cache) == 0
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_ttl_cache_evict_and_clear():
    """evict_expired drops only stale entries; clear drops everything."""
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("old", 1)
    cache.set("long", 2, ttl_seconds=60)
    clock.now += 30
    assert cache.evict_expired() == 1
    assert cache.get("long") == 2
    assert cache.clear() == 1


@pytest.mark.asyncio
async def test_single_flight_shares_one_call():
    """Concurrent callers with the same key share a single execution."""
    flight = SingleFlight()
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return calls

    results = await asyncio.gather(*(flight.do("key", fetch) for _ in range(5)))
    assert results == [1] * 5
    assert calls == 1
    assert flight.inflight == 0


@pytest.mark.asyncio
async def test_single_flight_propagates_errors():
    """Every waiter sees the shared failure."""
    flight = SingleFlight()

    async def fail():
        await asyncio.sleep(0.01)
        raise RuntimeError("upstream")

    results = await asyncio.gather(flight.do("k", fail), flight.do("k", fail), return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)


def test_window_ids():
    """Windows are keyed by day, month and quarter."""
    ids = window_ids(datetime(2024, 8, 15, tzinfo=timezone.utc))
    assert ids == {"daily": "2024-08-15", "monthly": "2024-08", "quarterly": "2024-Q3"}


def test_accumulation_windows_roll_over():
    """Usage counts in every window containing the timestamp and resets with the window."""
    store = AccumulationStore()
    day1 = datetime(2024, 3, 30, 10, tzinfo=timezone.utc)
    day2 = datetime(2024, 3, 31, 10, tzinfo=timezone.utc)
    next_q = datetime(2024, 4, 1, 10, tzinfo=timezone.utc)
    store.record("IOSS", "seller", 100.0, at=day1)
    store.record("IOSS", "seller", 50.0, at=day2)

    acc = store.get("IOSS", "seller", at=day2)
    assert acc.daily == 50.0
    assert acc.monthly == 150.0
    assert acc.quarterly == 150.0
    assert store.get("IOSS", "seller", at=next_q).quarterly == 0.0
    assert store.get("IOSS", None).daily == 0.0


def test_accumulation_rejects_negative_amounts():
    """Negative usage is refused."""
    with pytest.raises(ValueError):
        AccumulationStore().record("IOSS", "seller", -1.0)


def test_performance_defaults_are_neutral():
    """Unknown providers report neutral reliability."""
    tracker = ProviderPerformanceTracker()
    assert tracker.reliability("nobody") == NEUTRAL_RELIABILITY
    assert tracker.get("nobody").quotes_ok == 0


def test_performance_tracks_success_and_failure():
    """Successes raise and failures lower the success rate."""
    tracker = ProviderPerformanceTracker()
    tracker.record_quotes("a", [make_quote("a", 10.0, 4), make_quote("a", 20.0, 6)])
    rec = tracker.get("a")
    assert rec.average_cost == 15.0
    assert rec.average_delivery_days == 5.0
    assert rec.success_rate > 0.5

    tracker.record_quote_failure("b")
    assert tracker.get("b").success_rate < 0.5
    assert tracker.reliability("a") > tracker.reliability("b")

    tracker.record_delivery("a", on_time=True)
    assert tracker.get("a").on_time_delivery_rate > 0.5
    assert {r.provider_id for r in tracker.all()} == {"a", "b"}
