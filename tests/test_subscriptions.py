"""Tests 23-32: Catalog, budget-gated enrollment, cancellation and payments."""

from __future__ import annotations

import pytest

from subly.constants import BILLING_PERIOD_SECONDS, MAX_PAYOUT_RECEIVER_LEN, MAX_SERVICE_NAME_LEN
from subly.core import accrual, catalog as catalog_ops, subscriptions as sub_ops
from subly.errors import ErrorCode, ValidationError
from subly.models.state import RecipientKind, SubscriptionStatus
from tests.conftest import ALICE, AUTHORITY, BOB, T0
from tests.factories import make_catalog, make_service, make_subscriber, make_subscription

PERIOD = BILLING_PERIOD_SECONDS
BUDGET = accrual.monthly_budget(12_000_000, 1_000)  # 100,000


# ── Test 23: Budget boundary ──────────────────────────────────────


def test_enroll_at_exact_budget():
    catalog = make_catalog(make_service(0, monthly_price=100_000))
    ledger = make_subscriber()

    sub = sub_ops.enroll(ledger, catalog, 0, BUDGET, T0)
    assert sub.next_billing_time == T0 + PERIOD
    assert sub.status is SubscriptionStatus.ACTIVE
    assert not sub.initial_payment_recorded
    assert ledger.active_commitment == 100_000


def test_enroll_one_over_budget():
    catalog = make_catalog(make_service(0, monthly_price=100_001))
    ledger = make_subscriber()

    with pytest.raises(ValidationError) as exc_info:
        sub_ops.enroll(ledger, catalog, 0, BUDGET, T0)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_BUDGET_EXCEEDED
    assert ledger.subscriptions == []
    assert ledger.active_commitment == 0


def test_zero_budget_rejects_free_service():
    catalog = make_catalog(make_service(0, monthly_price=0))
    with pytest.raises(ValidationError) as exc_info:
        sub_ops.enroll(make_subscriber(), catalog, 0, 0, T0)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_BUDGET_EXCEEDED


# ── Test 24: Enrollment preconditions ─────────────────────────────


def test_enroll_requires_payout_target():
    catalog = make_catalog(make_service(0, monthly_price=10))
    with pytest.raises(ValidationError) as exc_info:
        sub_ops.enroll(make_subscriber(receiver=None), catalog, 0, BUDGET, T0)
    assert exc_info.value.code is ErrorCode.PAYOUT_TARGET_MISSING


def test_enroll_rejects_unknown_and_duplicate_services():
    catalog = make_catalog(make_service(0, monthly_price=10))
    ledger = make_subscriber()

    with pytest.raises(ValidationError) as exc_info:
        sub_ops.enroll(ledger, catalog, 5, BUDGET, T0)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_SERVICE_NOT_FOUND

    sub_ops.enroll(ledger, catalog, 0, BUDGET, T0)
    with pytest.raises(ValidationError) as exc_info:
        sub_ops.enroll(ledger, catalog, 0, BUDGET, T0 + 1)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_ALREADY_EXISTS


# ── Test 25: Cancellation grace ───────────────────────────────────


def test_cancellation_keeps_paid_period():
    ledger = make_subscriber(make_subscription(0, monthly_price=40_000))

    service_id, price, until = sub_ops.begin_cancellation(ledger, 0, T0 + 10)
    assert (service_id, price, until) == (0, 40_000, T0 + PERIOD)
    assert ledger.active_commitment == 0
    assert ledger.pending_commitment == 40_000

    sub = ledger.subscriptions[0]
    assert sub.status is SubscriptionStatus.PENDING_CANCELLATION
    assert sub.pending_cancel_until == T0 + PERIOD

    with pytest.raises(ValidationError) as exc_info:
        sub_ops.begin_cancellation(ledger, 0, T0 + 20)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_NOT_ACTIVE


def test_cancellation_after_billing_time_grants_full_period():
    ledger = make_subscriber(make_subscription(0))
    now = T0 + PERIOD + 5
    _, _, until = sub_ops.begin_cancellation(ledger, 0, now)
    assert until == now + PERIOD


def test_cancel_unknown_subscription():
    with pytest.raises(ValidationError) as exc_info:
        sub_ops.begin_cancellation(make_subscriber(), 3, T0)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_NOT_FOUND


# ── Test 26: Refresh finalizes matured cancellations ──────────────


def test_refresh_at_exact_grace_end():
    ledger = make_subscriber(make_subscription(0, monthly_price=40_000))
    _, _, until = sub_ops.begin_cancellation(ledger, 0, T0)

    assert sub_ops.refresh(ledger, until - 1) == []
    assert ledger.pending_commitment == 40_000

    cancelled = sub_ops.refresh(ledger, until)
    assert [s.id for s in cancelled] == [0]
    assert ledger.subscriptions[0].status is SubscriptionStatus.CANCELLED
    assert ledger.subscriptions[0].pending_cancel_until == 0
    assert ledger.pending_commitment == 0

    # Already cancelled subscriptions are left alone
    assert sub_ops.refresh(ledger, until + PERIOD) == []


def test_pending_commitment_counts_against_budget():
    catalog = make_catalog(
        make_service(0, monthly_price=60_000),
        make_service(1, monthly_price=60_000),
    )
    ledger = make_subscriber()
    sub_ops.enroll(ledger, catalog, 0, BUDGET, T0)
    _, _, until = sub_ops.begin_cancellation(ledger, 0, T0 + 1)

    with pytest.raises(ValidationError) as exc_info:
        sub_ops.enroll(ledger, catalog, 1, BUDGET, until - 1)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_BUDGET_EXCEEDED

    # Once the grace period ends the commitment is released
    sub = sub_ops.enroll(ledger, catalog, 1, BUDGET, until)
    assert sub.id == 1
    assert ledger.committed == 60_000


def test_resubscribe_after_cancellation():
    catalog = make_catalog(make_service(0, monthly_price=10_000))
    ledger = make_subscriber()
    sub_ops.enroll(ledger, catalog, 0, BUDGET, T0)
    _, _, until = sub_ops.begin_cancellation(ledger, 0, T0)

    with pytest.raises(ValidationError) as exc_info:
        sub_ops.enroll(ledger, catalog, 0, BUDGET, until - 1)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_ALREADY_EXISTS

    again = sub_ops.enroll(ledger, catalog, 0, BUDGET, until)
    assert again.id == 1


# ── Test 27: Recording payments ───────────────────────────────────


def test_every_payment_advances_billing():
    ledger = make_subscriber(make_subscription(0))
    sub = ledger.subscriptions[0]

    assert sub_ops.record_payment(ledger, 0, T0 + 1) is SubscriptionStatus.ACTIVE
    assert sub.initial_payment_recorded
    assert sub.next_billing_time == T0 + 2 * PERIOD
    assert sub.last_payment_time == T0 + 1

    sub_ops.record_payment(ledger, 0, T0 + 2 * PERIOD)
    assert sub.initial_payment_recorded
    assert sub.next_billing_time == T0 + 3 * PERIOD
    assert sub.last_payment_time == T0 + 2 * PERIOD


def test_payment_during_grace_and_after_cancel():
    ledger = make_subscriber(make_subscription(0))
    _, _, until = sub_ops.begin_cancellation(ledger, 0, T0)

    status = sub_ops.record_payment(ledger, 0, T0 + 5)
    assert status is SubscriptionStatus.PENDING_CANCELLATION
    assert status.label == "PENDING_CANCELLATION"

    sub_ops.refresh(ledger, until)
    with pytest.raises(ValidationError) as exc_info:
        sub_ops.record_payment(ledger, 0, until)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_NOT_PAYABLE


# ── Test 28: Payout targets ───────────────────────────────────────


def test_validate_payout_target():
    target = sub_ops.validate_payout_target(" email ", "  payee@example.com ")
    assert target.configured
    assert target.kind is RecipientKind.EMAIL
    assert target.receiver == "payee@example.com"

    assert sub_ops.validate_payout_target(RecipientKind.PHONE, "+15550100").kind is RecipientKind.PHONE

    with pytest.raises(ValidationError) as exc_info:
        sub_ops.validate_payout_target("fax", "555")
    assert exc_info.value.code is ErrorCode.INVALID_RECIPIENT_TYPE

    with pytest.raises(ValidationError) as exc_info:
        sub_ops.validate_payout_target("EMAIL", "   ")
    assert exc_info.value.code is ErrorCode.INVALID_RECEIVER

    with pytest.raises(ValidationError) as exc_info:
        sub_ops.validate_payout_target("PAYPAL_ID", "x" * (MAX_PAYOUT_RECEIVER_LEN + 1))
    assert exc_info.value.code is ErrorCode.INVALID_RECEIVER


# ── Test 29: Catalog ──────────────────────────────────────────────


def test_catalog_append_and_limits():
    catalog = make_catalog()
    first = catalog_ops.append_service(catalog, BOB, "News", 5_000, "", "", "Daily", T0)
    second = catalog_ops.append_service(catalog, ALICE, "News", 7_000, "", "", "Daily", T0)

    # Names are not unique; ids are
    assert (first.id, second.id) == (0, 1)
    assert catalog_ops.find_service(catalog, 1).creator == ALICE

    with pytest.raises(ValidationError) as exc_info:
        catalog_ops.append_service(
            catalog, BOB, "n" * (MAX_SERVICE_NAME_LEN + 1), 1, "", "", "", T0,
        )
    assert exc_info.value.code is ErrorCode.STRING_TOO_LONG
    assert len(catalog.services) == 2


def test_available_services_filters_budget_and_live():
    catalog = make_catalog(
        make_service(0, monthly_price=30_000),
        make_service(1, monthly_price=80_000),
        make_service(2, monthly_price=50_000),
    )
    ledger = make_subscriber()
    sub_ops.enroll(ledger, catalog, 0, BUDGET, T0)

    available = sub_ops.available_services(catalog, ledger, BUDGET)
    assert [s.id for s in available] == [2]
    assert [s.id for s in sub_ops.available_services(catalog, None, BUDGET)] == [0, 1, 2]


# ── Test 30: Engine enrollment flow ───────────────────────────────


async def _subscriber_with_stake(engine, owner=ALICE, principal=12_000_000):
    await engine.stake(owner, principal, lock_option=0)
    await engine.register_payout_target(owner, "EMAIL", "payee@example.com")


async def test_engine_subscribe_within_budget(engine, store):
    await _subscriber_with_stake(engine)
    cheap = await engine.register_service(BOB, "Streaming", 100_000, provider="Acme")
    pricey = await engine.register_service(BOB, "Premium", 100_001)

    with pytest.raises(ValidationError) as exc_info:
        await engine.subscribe(ALICE, pricey)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_BUDGET_EXCEEDED

    sub_id = await engine.subscribe(ALICE, cheap, now=T0)
    ledger = await store.get_subscriber_ledger(ALICE)
    assert ledger.subscriptions[0].id == sub_id
    assert ledger.active_commitment == 100_000

    events = await store.get_events("SubscriptionActivated", owner=ALICE)
    assert events[0]["receiver"] == "payee@example.com"
    assert events[0]["next_billing_time"] == T0 + PERIOD


async def test_engine_subscribe_without_target(engine):
    await engine.stake(ALICE, 12_000_000)
    service_id = await engine.register_service(BOB, "Streaming", 10)
    with pytest.raises(ValidationError) as exc_info:
        await engine.subscribe(ALICE, service_id)
    assert exc_info.value.code is ErrorCode.PAYOUT_TARGET_MISSING


# ── Test 31: Engine cancellation ──────────────────────────────────


async def test_engine_unsubscribe_then_refresh(engine, store):
    await _subscriber_with_stake(engine)
    service_id = await engine.register_service(BOB, "Streaming", 50_000)
    sub_id = await engine.subscribe(ALICE, service_id, now=T0)

    until = await engine.unsubscribe(ALICE, sub_id, now=T0 + 100)
    assert until == T0 + PERIOD

    # Any later mutation on the ledger finalizes the cancellation
    await engine.subscribe(ALICE, service_id, now=until)
    ledger = await store.get_subscriber_ledger(ALICE)
    assert ledger.subscriptions[0].status is SubscriptionStatus.CANCELLED
    assert ledger.subscriptions[1].status is SubscriptionStatus.ACTIVE
    assert ledger.pending_commitment == 0

    cancelled = await store.get_events("SubscriptionCancelled", owner=ALICE)
    assert [e["subscription_id"] for e in cancelled] == [sub_id]


# ── Test 32: Engine payment recording ─────────────────────────────


async def test_engine_record_payment(engine, store):
    await _subscriber_with_stake(engine)
    service_id = await engine.register_service(BOB, "Streaming", 50_000)
    sub_id = await engine.subscribe(ALICE, service_id, now=T0)

    with pytest.raises(ValidationError) as exc_info:
        await engine.record_payment(BOB, ALICE, sub_id)
    assert exc_info.value.code is ErrorCode.UNAUTHORIZED_AUTHORITY

    status = await engine.record_payment(AUTHORITY, ALICE, sub_id, now=T0 + 10)
    assert status is SubscriptionStatus.ACTIVE

    events = await store.get_events("PaymentRecorded", owner=ALICE)
    assert events[0]["status"] == "ACTIVE"
    assert events[0]["paid_at"] == T0 + 10
    assert events[0]["operator"] == AUTHORITY

    with pytest.raises(ValidationError) as exc_info:
        await engine.record_payment(AUTHORITY, BOB, 0)
    assert exc_info.value.code is ErrorCode.SUBSCRIPTION_NOT_FOUND
