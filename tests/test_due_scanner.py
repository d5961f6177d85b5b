"""Tests 33-37: Due subscription scanning."""

from __future__ import annotations

import copy

import pytest

from subly.constants import BILLING_PERIOD_SECONDS
from subly.core.due import DueScanner
from subly.errors import ErrorCode, ValidationError
from subly.models.state import SubscriptionStatus
from tests.conftest import ALICE, AUTHORITY, BOB, T0
from tests.factories import (
    make_catalog,
    make_service,
    make_state,
    make_subscriber,
    make_subscription,
)

PERIOD = BILLING_PERIOD_SECONDS
DAY = 86_400


@pytest.fixture
def scanner():
    return DueScanner()


# ── Test 33: Unpaid subscriptions are always due ──────────────────


def test_initial_payment_due_regardless_of_lookahead(scanner):
    catalog = make_catalog(make_service(0, name="Streaming Plus"))
    ledger = make_subscriber(make_subscription(0), owner=ALICE)

    items = scanner.find_due(make_state(), catalog, [ledger], T0, 0)
    assert len(items) == 1
    item = items[0]
    assert item.owner == ALICE
    assert item.service_name == "Streaming Plus"
    assert item.recipient_kind == "EMAIL"
    assert item.receiver == "payee@example.com"
    assert item.due_ts == T0 + PERIOD
    assert not item.initial_payment_recorded


# ── Test 34: Lookahead window ─────────────────────────────────────


def test_paid_subscription_due_within_lookahead(scanner):
    catalog = make_catalog(make_service(0))
    ledger = make_subscriber(make_subscription(0, initial_payment_recorded=True))
    billing = T0 + PERIOD

    assert scanner.find_due(make_state(), catalog, [ledger], billing - DAY - 1, DAY) == []
    assert len(scanner.find_due(make_state(), catalog, [ledger], billing - DAY, DAY)) == 1
    assert len(scanner.find_due(make_state(), catalog, [ledger], billing + DAY, 0)) == 1


# ── Test 35: Filters ──────────────────────────────────────────────


def test_skips_inactive_and_untargeted(scanner):
    catalog = make_catalog(make_service(0), make_service(1))
    pending = make_subscriber(
        make_subscription(0, status=SubscriptionStatus.PENDING_CANCELLATION),
        make_subscription(1, service_id=1, status=SubscriptionStatus.CANCELLED),
        owner=ALICE,
    )
    untargeted = make_subscriber(make_subscription(0), owner=BOB, receiver=None)

    assert scanner.find_due(make_state(), catalog, [pending, untargeted], T0, DAY) == []


def test_paused_scan_rejected(scanner):
    with pytest.raises(ValidationError) as exc_info:
        scanner.find_due(make_state(paused=True), make_catalog(), [], T0, DAY)
    assert exc_info.value.code is ErrorCode.PROGRAM_PAUSED


# ── Test 36: Read-only ────────────────────────────────────────────


def test_scan_never_mutates_inputs(scanner):
    catalog = make_catalog(make_service(0))
    ledger = make_subscriber(make_subscription(0))
    before = copy.deepcopy(ledger)

    scanner.find_due(make_state(), catalog, [ledger], T0 + 3 * PERIOD, DAY)
    assert ledger == before


# ── Test 37: Engine scan across ledgers ───────────────────────────


async def test_engine_find_due_subscriptions(engine, store):
    service_id = await engine.register_service(BOB, "Streaming", 50_000)
    for owner in (ALICE, BOB):
        await engine.stake(owner, 12_000_000)
        await engine.register_payout_target(owner, "EMAIL", f"{owner[:5]}@example.com")
        await engine.subscribe(owner, service_id, now=T0)

    due = await engine.find_due_subscriptions(DAY, now=T0)
    assert sorted(item.owner for item in due) == sorted([ALICE, BOB])

    await engine.record_payment(AUTHORITY, ALICE, 0, now=T0 + 1)
    due = await engine.find_due_subscriptions(DAY, now=T0 + 2)
    assert [item.owner for item in due] == [BOB]

    due = await engine.find_due_subscriptions(DAY, owners=[ALICE], now=T0 + 2 * PERIOD - DAY)
    assert [item.subscription_id for item in due] == [0]
