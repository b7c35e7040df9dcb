"""Logistics quote aggregator - concurrent multi-carrier fan-out, filtering and ranking."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cbds.config import ProviderConfig, settings
from cbds.engine.rates import exchange_rate
from cbds.logistics.providers import rate_card  # noqa: F401  registers the rate-card adapter
from cbds.logistics.providers.base import (
    RETRYABLE_ERRORS,
    CarrierProvider,
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    create_provider,
)
from cbds.schemas.common import ErrorDetail
from cbds.schemas.logistics import (
    Address,
    AddressCheck,
    AddressValidationResult,
    BestQuotesResult,
    DeliveryModeComparison,
    LogisticsQuote,
    LogisticsRequest,
    ProviderFailure,
    ProviderPerformance,
    QuoteAnalysis,
    QuoteCollection,
    QuoteOptions,
    ServiceOffering,
    ShipmentResult,
    TrackingInfo,
)
from cbds.storage.cache import SingleFlight, TTLCache
from cbds.storage.performance import ProviderPerformanceTracker
from cbds.utils.canonical import fingerprint

logger = logging.getLogger(__name__)

T = TypeVar("T")

COST_WEIGHT = 0.4
TIME_WEIGHT = 0.3
RELIABILITY_WEIGHT = 0.3
COST_CEILING = 1000.0
DAYS_CEILING = 30.0


def comparable_cost(quote: LogisticsQuote) -> float:
    """Net cost in the default currency, so carriers quoting in different currencies rank fairly."""
    return quote.pricing.net_cost * exchange_rate(quote.pricing.currency, settings.default_currency)


def composite_score(quote: LogisticsQuote, reliability: float) -> float:
    """Lower is better."""
    cost = min(comparable_cost(quote) / COST_CEILING, 1.0)
    days = min(quote.delivery_time.estimated_days / DAYS_CEILING, 1.0)
    return COST_WEIGHT * cost + TIME_WEIGHT * days + RELIABILITY_WEIGHT * (1 - reliability)


def _average(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


class QuoteAggregator:
    """Fan a logistics request out to every eligible carrier and rank the merged quotes."""

    def __init__(
        self,
        providers: list[CarrierProvider],
        performance: ProviderPerformanceTracker | None = None,
        cache_ttl_seconds: float | None = None,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
    ):
        self.providers: dict[str, CarrierProvider] = {p.provider_id: p for p in providers}
        self.performance = performance or ProviderPerformanceTracker()
        self._deliveries_recorded: set[str] = set()
        self.timeout_seconds = timeout_seconds or settings.provider_timeout_seconds
        self.max_attempts = max_attempts or settings.provider_max_attempts
        self._cache: TTLCache[list[LogisticsQuote]] = TTLCache(
            settings.quote_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self._flight = SingleFlight()

    @classmethod
    def from_configs(
        cls,
        configs: list[ProviderConfig] | None = None,
        performance: ProviderPerformanceTracker | None = None,
    ) -> "QuoteAggregator":
        configs = settings.carrier_providers if configs is None else configs
        return cls([create_provider(c) for c in configs if c.enabled], performance=performance)

    def eligible_providers(self, options: QuoteOptions) -> list[CarrierProvider]:
        ids = options.preferred_providers or list(self.providers)
        excluded = set(options.excluded_providers)
        return [self.providers[pid] for pid in ids if pid in self.providers and pid not in excluded]

    async def _call_provider(self, provider: CarrierProvider, request: LogisticsRequest) -> list[LogisticsQuote]:
        """One provider call, bounded by the timeout and retried on transient errors."""
        timeout = (provider.config.timeout_seconds if provider.config else None) or self.timeout_seconds

        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=settings.provider_retry_min_wait_seconds,
                min=settings.provider_retry_min_wait_seconds,
                max=settings.provider_retry_max_wait_seconds,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        )
        async def _attempt() -> list[LogisticsQuote]:
            try:
                return await asyncio.wait_for(provider.get_quotes(request), timeout)
            except asyncio.TimeoutError as e:
                raise ProviderTimeoutError(
                    f"No response within {timeout:g}s", provider.provider_id
                ) from e

        return await _attempt()

    async def _quote_one(
        self, provider: CarrierProvider, request: LogisticsRequest
    ) -> tuple[list[LogisticsQuote], ProviderFailure | None]:
        pid = provider.provider_id
        try:
            quotes = await self._call_provider(provider, request)
        except Exception as e:
            # one carrier failing contributes nothing; siblings keep going
            code = e.error_code if isinstance(e, ProviderError) else "UNEXPECTED_ERROR"
            logger.warning("Provider %s failed to quote: %s (%s)", pid, e, code)
            self.performance.record_quote_failure(pid)
            return [], ProviderFailure(provider_id=pid, error_code=code, message=str(e) or type(e).__name__)
        tagged = [q.model_copy(update={"provider_id": pid, "provider_name": provider.name}) for q in quotes]
        self.performance.record_quotes(pid, tagged)
        return tagged, None

    async def collect_quotes(self, request: LogisticsRequest, options: QuoteOptions | None = None) -> QuoteCollection:
        """Unfiltered union of every eligible provider's quotes, with per-provider failures."""
        options = options or QuoteOptions()
        providers = self.eligible_providers(options)
        key = fingerprint({"request": request, "providers": sorted(p.provider_id for p in providers)})
        use_cache = options.use_cache and settings.cache_enabled
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return QuoteCollection(quotes=list(cached), from_cache=True)
        return await self._flight.do(key, lambda: self._fetch(key, request, providers, use_cache))

    async def _fetch(
        self, key: str, request: LogisticsRequest, providers: list[CarrierProvider], use_cache: bool
    ) -> QuoteCollection:
        results = await asyncio.gather(*(self._quote_one(p, request) for p in providers))
        quotes = [q for qs, _ in results for q in qs]
        failures = [f for _, f in results if f is not None]
        if quotes and use_cache:
            self._cache.set(key, quotes)
        logger.info(
            "Collected %d quotes from %d providers (%d failed)", len(quotes), len(providers), len(failures)
        )
        return QuoteCollection(quotes=quotes, failures=failures)

    def _filter(self, quotes: list[LogisticsQuote], request: LogisticsRequest, options: QuoteOptions) -> list[LogisticsQuote]:
        mode = options.delivery_mode or request.preferred_mode
        out = []
        for q in quotes:
            if options.max_cost is not None and comparable_cost(q) > options.max_cost:
                continue
            if options.min_delivery_days is not None and q.delivery_time.estimated_days < options.min_delivery_days:
                continue
            if options.max_delivery_days is not None and q.delivery_time.estimated_days > options.max_delivery_days:
                continue
            if mode and q.delivery_mode != mode:
                continue
            out.append(q)
        return out

    def _sort(self, quotes: list[LogisticsQuote], sort_by: str) -> list[LogisticsQuote]:
        if sort_by == "TIME":
            key = lambda q: q.delivery_time.estimated_days  # noqa: E731
        elif sort_by == "RELIABILITY":
            key = lambda q: -self.performance.reliability(q.provider_id)  # noqa: E731
        elif sort_by == "SCORE":
            key = lambda q: composite_score(q, self.performance.reliability(q.provider_id))  # noqa: E731
        else:
            key = comparable_cost
        return sorted(quotes, key=key)

    def rank(self, quotes: list[LogisticsQuote], request: LogisticsRequest, options: QuoteOptions) -> list[LogisticsQuote]:
        ranked = self._sort(self._filter(quotes, request, options), options.sort_by)
        if options.max_results is not None:
            ranked = ranked[: options.max_results]
        return ranked

    async def get_all_quotes(self, request: LogisticsRequest, options: QuoteOptions | None = None) -> list[LogisticsQuote]:
        options = options or QuoteOptions()
        collection = await self.collect_quotes(request, options)
        return self.rank(collection.quotes, request, options)

    async def get_best_quotes(self, request: LogisticsRequest, options: QuoteOptions | None = None) -> BestQuotesResult:
        """Ranked quotes plus cost/time analysis. Never raises."""
        options = options or QuoteOptions()
        try:
            collection = await self.collect_quotes(request, options)
            ranked = self.rank(collection.quotes, request, options)
            analysis = self.analyze(collection.quotes, ranked)
        except Exception as e:
            logger.exception("Quote aggregation failed")
            return BestQuotesResult(
                success=False,
                errors=[ErrorDetail(code="SYSTEM_ERROR", message=str(e) or type(e).__name__, type="SYSTEM")],
            )
        if not collection.quotes:
            return BestQuotesResult(
                success=False,
                failures=collection.failures,
                errors=[ErrorDetail(
                    code="NO_QUOTES",
                    message="No provider returned a quote for this shipment",
                    type="PROVIDER",
                    details={"failed_providers": [f.provider_id for f in collection.failures]},
                )],
            )
        return BestQuotesResult(
            success=True,
            quotes=ranked,
            analysis=analysis,
            failures=collection.failures,
            from_cache=collection.from_cache,
        )

    @staticmethod
    def analyze(all_quotes: list[LogisticsQuote], ranked: list[LogisticsQuote]) -> QuoteAnalysis:
        if not all_quotes:
            return QuoteAnalysis()
        by_cost = sorted(all_quotes, key=comparable_cost)
        by_days = sorted(all_quotes, key=lambda q: q.delivery_time.estimated_days)
        cheapest, dearest = by_cost[0], by_cost[-1]
        low, high = comparable_cost(cheapest), comparable_cost(dearest)
        savings = round(high - low, 2)
        pct = round(savings / high * 100, 2) if high else 0.0
        return QuoteAnalysis(
            total_quotes=len(all_quotes),
            cheapest=cheapest,
            most_expensive=dearest,
            currency=settings.default_currency,
            average_cost=_average([comparable_cost(q) for q in all_quotes]),
            potential_savings=savings,
            savings_percentage=pct,
            fastest=by_days[0],
            slowest=by_days[-1],
            average_delivery_days=_average([q.delivery_time.estimated_days for q in all_quotes]),
            recommended=ranked[0] if ranked else cheapest,
        )

    async def compare_delivery_modes(
        self, request: LogisticsRequest, options: QuoteOptions | None = None
    ) -> DeliveryModeComparison:
        options = (options or QuoteOptions()).model_copy(update={"delivery_mode": None})
        ddp_req = request.model_copy(update={"preferred_mode": "DDP"})
        dap_req = request.model_copy(update={"preferred_mode": "DAP"})
        ddp, dap = await asyncio.gather(
            self.get_all_quotes(ddp_req, options), self.get_all_quotes(dap_req, options)
        )
        ddp_avg = _average([comparable_cost(q) for q in ddp])
        dap_avg = _average([comparable_cost(q) for q in dap])
        comparison = DeliveryModeComparison(
            ddp_quotes=ddp, dap_quotes=dap, ddp_average_cost=ddp_avg, dap_average_cost=dap_avg,
            currency=settings.default_currency,
        )
        if not ddp and not dap:
            comparison.reason = "No quotes available in either mode"
            return comparison
        if not ddp or not dap:
            comparison.recommended_mode = "DDP" if ddp else "DAP"
            comparison.reason = f"Only {comparison.recommended_mode} is offered for this route"
            return comparison
        diff = abs(ddp_avg - dap_avg)
        comparison.savings = round(diff, 2)
        comparison.savings_percentage = round(diff / max(ddp_avg, dap_avg) * 100, 2) if max(ddp_avg, dap_avg) else 0.0
        comparison.recommended_mode = "DDP" if ddp_avg <= dap_avg else "DAP"
        comparison.reason = (
            f"{comparison.recommended_mode} averages {min(ddp_avg, dap_avg):.2f} against "
            f"{max(ddp_avg, dap_avg):.2f}"
        )
        return comparison

    def _provider(self, provider_id: str) -> CarrierProvider:
        provider = self.providers.get(provider_id)
        if provider is None:
            raise ConfigurationError(f"Unknown provider '{provider_id}'", provider_id)
        return provider

    async def _isolated(self, provider: CarrierProvider, fn: Callable[[], Awaitable[T]]) -> T | None:
        try:
            return await asyncio.wait_for(fn(), self.timeout_seconds)
        except Exception as e:
            logger.warning("Provider %s call failed: %s", provider.provider_id, e)
            return None

    async def validate_address(self, address: Address, provider_id: str | None = None) -> AddressValidationResult:
        """Accepted when a strict majority of the polled providers accept it."""
        providers = [self._provider(provider_id)] if provider_id else list(self.providers.values())
        checks = await asyncio.gather(
            *(self._isolated(p, lambda p=p: p.validate_address(address)) for p in providers)
        )
        results = {
            p.provider_id: c or AddressCheck(is_valid=False, messages=["provider unavailable"])
            for p, c in zip(providers, checks)
        }
        valid = sum(1 for c in results.values() if c.is_valid)
        return AddressValidationResult(
            is_valid=valid > len(results) / 2,
            valid_count=valid,
            total=len(results),
            results=results,
        )

    async def create_shipment(self, quote: LogisticsQuote, request: LogisticsRequest) -> ShipmentResult:
        valid_until = quote.valid_until
        if valid_until.tzinfo is None:
            valid_until = valid_until.replace(tzinfo=timezone.utc)
        if valid_until <= datetime.now(timezone.utc):
            return ShipmentResult(success=False, errors=[ErrorDetail(
                code="QUOTE_EXPIRED",
                message=f"Quote {quote.quote_id} expired at {quote.valid_until.isoformat()}",
                type="VALIDATION",
            )])
        provider = self.providers.get(quote.provider_id)
        if provider is None:
            return ShipmentResult(success=False, errors=[ErrorDetail(
                code="PROVIDER_NOT_FOUND", message=f"Unknown provider '{quote.provider_id}'", type="VALIDATION",
            )])
        try:
            shipment = await asyncio.wait_for(provider.create_shipment(quote, request), self.timeout_seconds)
        except Exception as e:
            code = e.error_code if isinstance(e, ProviderError) else "UNEXPECTED_ERROR"
            logger.warning("Provider %s failed to create shipment: %s", provider.provider_id, e)
            self.performance.record_shipment(provider.provider_id, success=False)
            return ShipmentResult(success=False, errors=[ErrorDetail(
                code=code, message=str(e) or type(e).__name__, type="PROVIDER",
                details={"provider_id": provider.provider_id},
            )])
        self.performance.record_shipment(provider.provider_id, success=True)
        logger.info("Created shipment %s with %s", shipment.tracking_number, provider.provider_id)
        return ShipmentResult(success=True, shipment=shipment)

    async def cancel_shipment(self, provider_id: str, order_id: str) -> bool:
        return await self._provider(provider_id).cancel_shipment(order_id)

    async def track_shipment(self, tracking_number: str, provider_id: str | None = None) -> TrackingInfo | None:
        """Ask one provider, or every provider and take the first in registration order that knows it."""
        providers = [self._provider(provider_id)] if provider_id else list(self.providers.values())
        infos = await asyncio.gather(
            *(self._isolated(p, lambda p=p: p.track_shipment(tracking_number)) for p in providers)
        )
        info = next((i for i in infos if i is not None and i.events), None)
        if (
            info is not None
            and info.status == "DELIVERED"
            and info.estimated_delivery is not None
            and tracking_number not in self._deliveries_recorded
        ):
            self._deliveries_recorded.add(tracking_number)
            self.performance.record_delivery(
                info.provider_id, on_time=info.events[-1].timestamp <= info.estimated_delivery
            )
        return info

    async def get_available_services(self, country_code: str) -> dict[str, list[ServiceOffering]]:
        providers = list(self.providers.values())
        offers = await asyncio.gather(
            *(self._isolated(p, lambda p=p: p.get_available_services(country_code)) for p in providers)
        )
        return {p.provider_id: o for p, o in zip(providers, offers) if o}

    def get_provider_performance(self, provider_id: str | None = None) -> list[ProviderPerformance]:
        if provider_id:
            return [self.performance.get(provider_id)]
        known = {r.provider_id: r for r in self.performance.all()}
        return [known.get(pid) or self.performance.get(pid) for pid in self.providers]

    def clear_cache(self) -> int:
        return self._cache.clear()

    def get_cache_stats(self) -> dict:
        return {**self._cache.stats(), "inflight": self._flight.inflight, "providers": len(self.providers)}
