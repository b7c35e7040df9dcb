"""Relief regime evaluation.

One place decides whether de minimis, IOSS or UK low value relief applies to an
order; the tax calculator and the compliance validator both read from here.
"""

import hashlib

from cbds.config import settings
from cbds.engine.rates import REGIME_POLICIES, RatePolicySource
from cbds.schemas.rates import RegimePolicy
from cbds.schemas.tax import Accumulated, ComplianceInfo, RegimeStatus, TaxCalculationRequest, Threshold
from cbds.storage.accumulation import AccumulationStore

NEAR_THRESHOLD_RATIO = 0.9

_PERIOD_FIELD = {"DAILY": "daily", "MONTHLY": "monthly", "QUARTERLY": "quarterly"}


def window_usage(policy: RegimePolicy, accumulated: Accumulated) -> float:
    return getattr(accumulated, _PERIOD_FIELD[policy.period])


def evaluate_regime(
    policy: RegimePolicy,
    order_value: float,
    accumulated: Accumulated | None = None,
    has_prohibited: bool = False,
) -> RegimeStatus:
    """
    Evaluate one regime for an order valued in the regime currency.
    Applicable iff value <= threshold and nothing prohibited is in the order.
    Accumulated usage never changes applicability, only the status.
    """
    accumulated = accumulated or Accumulated()
    used = window_usage(policy, accumulated)
    within = order_value <= policy.threshold
    applicable = within and not has_prohibited
    remaining = max(policy.threshold - order_value, 0.0)
    if policy.per_recipient:
        remaining = max(policy.threshold - used - order_value, 0.0)
    near = order_value >= policy.threshold * NEAR_THRESHOLD_RATIO or (
        policy.per_recipient and used + order_value >= policy.threshold * NEAR_THRESHOLD_RATIO
    )
    limit = f"{policy.threshold:.2f} {policy.currency}"
    value = f"{order_value:.2f} {policy.currency}"

    if has_prohibited:
        status, reason = "FAIL", "order contains restricted or dangerous goods"
    elif not within:
        status, reason = policy.over_threshold_status, f"value {value} exceeds {limit}"
    elif policy.per_recipient and used + order_value > policy.threshold:
        status = "WARNING"
        reason = f"value {value} within {limit} but recipient already used {used:.2f} today"
    else:
        status, reason = "PASS", f"value {value} within {limit}"

    return RegimeStatus(
        regime=policy.regime,
        name=policy.name,
        applicable=applicable,
        status=status,
        threshold=Threshold(
            amount=policy.threshold,
            currency=policy.currency,
            period=policy.period,
            per_recipient=policy.per_recipient,
        ),
        accumulated=accumulated,
        order_value=round(order_value, 2),
        remaining=round(remaining, 2),
        near_threshold=near,
        reason=reason,
    )


def recipient_key(request: TaxCalculationRequest) -> str:
    """Stable recipient identity: customer id, else a digest of the delivery address."""
    if request.customer.customer_id:
        return request.customer.customer_id
    d = request.destination
    raw = "|".join(p or "" for p in (d.country_code, d.state_code, d.city, d.postal_code))
    return "addr_" + hashlib.sha256(raw.encode()).hexdigest()[:16]


def accumulation_key(policy: RegimePolicy, request: TaxCalculationRequest) -> str:
    if policy.per_recipient:
        return recipient_key(request)
    return request.seller_id or settings.default_seller_id


async def evaluate_order(
    request: TaxCalculationRequest,
    source: RatePolicySource,
    store: AccumulationStore,
) -> list[RegimeStatus]:
    """Evaluate every regime defined for the destination country."""
    has_prohibited = any(i.is_prohibited for i in request.items)
    statuses: list[RegimeStatus] = []
    for policy in await source.get_policies_for(request.destination.country_code):
        converted = await source.convert_currency(request.total_value, request.currency, policy.currency)
        accumulated = store.get(policy.regime, accumulation_key(policy, request))
        statuses.append(evaluate_regime(policy, converted.converted_amount, accumulated, has_prohibited))
    return statuses


CERTIFICATE_OF_ORIGIN_VALUE = 1000


def required_document_codes(statuses: list[RegimeStatus], country_code: str, order_value: float) -> list[str]:
    """Paperwork an order needs given its regime outcomes."""
    docs = ["COMMERCIAL_INVOICE", "PACKING_LIST"]
    for s in statuses:
        if s.status == "PASS":
            policy = REGIME_POLICIES[s.regime]
            docs.extend(d for d in policy.pass_documents if d not in docs)
    if country_code == "GB" and "UK_VAT_REGISTRATION" not in docs:
        docs.append("UK_VAT_REGISTRATION")
    if order_value > CERTIFICATE_OF_ORIGIN_VALUE:
        docs.append("CERTIFICATE_OF_ORIGIN")
    return docs


def build_compliance_info(request: TaxCalculationRequest, statuses: list[RegimeStatus]) -> ComplianceInfo:
    has_prohibited = any(i.is_prohibited for i in request.items)
    applicable = next((s for s in statuses if s.applicable), None)
    warnings = [f"{s.name}: {s.reason}" for s in statuses if s.status != "PASS"]
    return ComplianceInfo(
        regime=applicable.regime if applicable else None,
        is_compliant=not has_prohibited,
        regimes=statuses,
        warnings=warnings,
        required_documents=required_document_codes(
            statuses, request.destination.country_code, request.total_value
        ),
    )
