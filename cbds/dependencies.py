"""Process-wide service instances for FastAPI dependency injection."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from cbds.engine.calculator import TaxCalculator
from cbds.engine.compliance import ComplianceValidator
from cbds.engine.rates import RatePolicySource
from cbds.integration.orchestrator import IntegrationOrchestrator
from cbds.logistics.aggregator import QuoteAggregator
from cbds.storage.accumulation import AccumulationStore


@lru_cache
def get_rate_source() -> RatePolicySource:
    return RatePolicySource()


@lru_cache
def get_accumulation_store() -> AccumulationStore:
    return AccumulationStore()


@lru_cache
def get_calculator() -> TaxCalculator:
    return TaxCalculator(get_rate_source(), get_accumulation_store())


@lru_cache
def get_validator() -> ComplianceValidator:
    return ComplianceValidator(get_rate_source(), get_accumulation_store())


@lru_cache
def get_aggregator() -> QuoteAggregator:
    return QuoteAggregator.from_configs()


@lru_cache
def get_orchestrator() -> IntegrationOrchestrator:
    return IntegrationOrchestrator(get_calculator(), get_aggregator(), get_rate_source())


RateSourceDep = Annotated[RatePolicySource, Depends(get_rate_source)]
AccumulationDep = Annotated[AccumulationStore, Depends(get_accumulation_store)]
CalculatorDep = Annotated[TaxCalculator, Depends(get_calculator)]
ValidatorDep = Annotated[ComplianceValidator, Depends(get_validator)]
AggregatorDep = Annotated[QuoteAggregator, Depends(get_aggregator)]
OrchestratorDep = Annotated[IntegrationOrchestrator, Depends(get_orchestrator)]
