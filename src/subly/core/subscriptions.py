"""SubscriberLedger - budget-gated enrollment, cancellation grace and payments."""

from __future__ import annotations

from subly.constants import BILLING_PERIOD_SECONDS, MAX_PAYOUT_RECEIVER_LEN
from subly.core.catalog import find_service
from subly.core.checked import add_ts, add_u64, sub_u64
from subly.errors import ErrorCode, ValidationError
from subly.models.state import (
    PayoutTarget,
    RecipientKind,
    ServiceCatalog,
    SubscriberLedger,
    Subscription,
    SubscriptionService,
    SubscriptionStatus,
)

_LIVE = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING_CANCELLATION)


def refresh(ledger: SubscriberLedger, now: int) -> list[Subscription]:
    """Finalize matured cancellations. Returns the subscriptions cancelled."""
    cancelled: list[Subscription] = []
    for sub in ledger.subscriptions:
        if (
            sub.status is SubscriptionStatus.PENDING_CANCELLATION
            and sub.pending_cancel_until > 0
            and now >= sub.pending_cancel_until
        ):
            ledger.pending_commitment = sub_u64(ledger.pending_commitment, sub.monthly_price)
            sub.status = SubscriptionStatus.CANCELLED
            sub.pending_cancel_until = 0
            cancelled.append(sub)
    return cancelled


def find_subscription(ledger: SubscriberLedger, subscription_id: int) -> Subscription:
    for sub in ledger.subscriptions:
        if sub.id == subscription_id:
            return sub
    raise ValidationError(ErrorCode.SUBSCRIPTION_NOT_FOUND, str(subscription_id))


def has_live_subscription(ledger: SubscriberLedger, service_id: int) -> bool:
    return any(s.service_id == service_id and s.status in _LIVE for s in ledger.subscriptions)


def enroll(
    ledger: SubscriberLedger,
    catalog: ServiceCatalog,
    service_id: int,
    budget: int,
    now: int,
    period: int = BILLING_PERIOD_SECONDS,
) -> Subscription:
    """Subscribe to `service_id` if the commitment fits within `budget`.

    Refreshes first so matured cancellations release their commitment
    before the budget check.
    """
    refresh(ledger, now)
    if not ledger.payout_target.configured:
        raise ValidationError(ErrorCode.PAYOUT_TARGET_MISSING)
    service = find_service(catalog, service_id)
    if has_live_subscription(ledger, service_id):
        raise ValidationError(ErrorCode.SUBSCRIPTION_ALREADY_EXISTS, str(service_id))

    required = add_u64(ledger.committed, service.monthly_price)
    if budget == 0 or required > budget:
        raise ValidationError(
            ErrorCode.SUBSCRIPTION_BUDGET_EXCEEDED,
            f"needs {required}, budget {budget}",
        )

    sub = Subscription(
        id=ledger.next_subscription_id,
        service_id=service.id,
        monthly_price=service.monthly_price,
        started_at=now,
        next_billing_time=add_ts(now, period),
    )
    ledger.next_subscription_id = add_u64(ledger.next_subscription_id, 1)
    ledger.active_commitment = add_u64(ledger.active_commitment, service.monthly_price)
    ledger.subscriptions.append(sub)
    return sub


def begin_cancellation(
    ledger: SubscriberLedger,
    subscription_id: int,
    now: int,
    period: int = BILLING_PERIOD_SECONDS,
) -> tuple[int, int, int]:
    """Move an active subscription into its grace period.

    Returns (service_id, monthly_price, pending_cancel_until). Access is kept
    through an already-committed billing period.
    """
    sub = find_subscription(ledger, subscription_id)
    if sub.status is not SubscriptionStatus.ACTIVE:
        raise ValidationError(ErrorCode.SUBSCRIPTION_NOT_ACTIVE, str(subscription_id))

    if sub.next_billing_time > now:
        until = sub.next_billing_time
    else:
        until = add_ts(now, period)
    ledger.active_commitment = sub_u64(ledger.active_commitment, sub.monthly_price)
    ledger.pending_commitment = add_u64(ledger.pending_commitment, sub.monthly_price)
    sub.status = SubscriptionStatus.PENDING_CANCELLATION
    sub.pending_cancel_until = until
    return sub.service_id, sub.monthly_price, until


def record_payment(
    ledger: SubscriberLedger,
    subscription_id: int,
    paid_at: int,
    period: int = BILLING_PERIOD_SECONDS,
) -> SubscriptionStatus:
    """Record a provider payment.

    Every payment moves next_billing_time forward one period; the first one
    also marks the initial payment as recorded.
    """
    sub = find_subscription(ledger, subscription_id)
    if sub.status not in _LIVE:
        raise ValidationError(ErrorCode.SUBSCRIPTION_NOT_PAYABLE, str(subscription_id))
    sub.next_billing_time = add_ts(sub.next_billing_time, period)
    sub.initial_payment_recorded = True
    sub.last_payment_time = paid_at
    return sub.status


def available_services(
    catalog: ServiceCatalog, ledger: SubscriberLedger | None, budget: int,
) -> list[SubscriptionService]:
    """Services the owner could still afford and is not already subscribed to."""
    committed = ledger.committed if ledger else 0
    remaining = max(budget - committed, 0)
    return [
        service
        for service in catalog.services
        if service.monthly_price <= remaining
        and not (ledger and has_live_subscription(ledger, service.id))
    ]


# ── Payout target ──────────────────────────────────────


def validate_payout_target(kind: str | RecipientKind, receiver: str) -> PayoutTarget:
    if isinstance(kind, RecipientKind):
        recipient_kind = kind
    else:
        try:
            recipient_kind = RecipientKind(kind.strip().upper())
        except ValueError:
            raise ValidationError(ErrorCode.INVALID_RECIPIENT_TYPE, kind) from None
    trimmed = receiver.strip()
    if not trimmed or len(trimmed) > MAX_PAYOUT_RECEIVER_LEN:
        raise ValidationError(ErrorCode.INVALID_RECEIVER)
    return PayoutTarget(configured=True, kind=recipient_kind, receiver=trimmed)
