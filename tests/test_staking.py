"""Tests 14-22: Plaintext engine staking, claims, unstaking and administration."""

from __future__ import annotations

import pytest

from subly.constants import (
    FEE_ASSET,
    INITIAL_TRANCHE_CAPACITY,
    LOCK_OPTIONS,
    SECONDS_PER_YEAR,
    STAKE_ASSET,
    STORAGE_RESERVE_ACCOUNT,
    TRANCHE_RECORD_BYTES,
    VAULT_ACCOUNT,
)
from subly.engine.plaintext import LedgerEngine
from subly.errors import ErrorCode, TransferError, ValidationError
from subly.storage.sqlite import SQLiteLedgerStore

from tests.conftest import ALICE, AUTHORITY, BOB, POOL_FUNDING, STARTING_BALANCE, T0
from tests.mocks import FailingTransfer, RecordingTransfer

STAKE = 1_000_000_000  # 1,000 USDC
ONE_YEAR_YIELD = 100_000_000


# ── Test 14: Stake opens a tranche ────────────────────────────────


async def test_stake_moves_funds_and_opens_tranche(engine, store):
    tranche_id = await engine.stake(ALICE, STAKE, lock_option=0, now=T0)
    assert tranche_id == 0

    assert await store.get_balance(ALICE, STAKE_ASSET) == STARTING_BALANCE - STAKE
    assert await store.get_balance(VAULT_ACCOUNT, STAKE_ASSET) == POOL_FUNDING + STAKE

    state = await store.get_state()
    assert state.total_principal == STAKE

    ledger = await store.get_tranche_ledger(ALICE)
    assert ledger.total_principal == STAKE
    assert ledger.tranches[0].lock_end_time == T0 + LOCK_OPTIONS[0]

    events = await store.get_events("Staked", owner=ALICE)
    assert events[0]["amount"] == STAKE
    assert events[0]["tranche_id"] == 0


async def test_stake_rejects_bad_amount_and_lock(engine, store):
    with pytest.raises(ValidationError) as exc_info:
        await engine.stake(ALICE, 0)
    assert exc_info.value.code is ErrorCode.AMOUNT_TOO_SMALL

    with pytest.raises(ValidationError) as exc_info:
        await engine.stake(ALICE, STAKE, lock_option=9)
    assert exc_info.value.code is ErrorCode.INVALID_LOCK_OPTION

    assert await store.get_tranche_ledger(ALICE) is None


# ── Test 15: Subscriber claims a year of yield ────────────────────


async def test_subscriber_claims_one_year_of_yield(engine, store):
    await engine.stake(ALICE, STAKE, lock_option=0, now=T0)

    claimed = await engine.claim_subscriber(ALICE, now=T0 + SECONDS_PER_YEAR)
    assert claimed == ONE_YEAR_YIELD
    assert await store.get_balance(ALICE, STAKE_ASSET) == STARTING_BALANCE - STAKE + ONE_YEAR_YIELD

    state = await store.get_state()
    assert state.reward_pool == POOL_FUNDING - ONE_YEAR_YIELD

    events = await store.get_events("YieldClaimed", owner=ALICE)
    assert events[-1]["role"] == "subscriber"
    assert events[-1]["destination"] == ALICE


async def test_subscriber_claim_while_locked(engine):
    await engine.stake(ALICE, STAKE, lock_option=3, now=T0)
    with pytest.raises(ValidationError) as exc_info:
        await engine.claim_subscriber(ALICE, now=T0 + 100 * 86_400)
    assert exc_info.value.code is ErrorCode.NOTHING_TO_CLAIM


# ── Test 16: Operator claims ──────────────────────────────────────


async def test_operator_claims_locked_yield_to_authority(engine, store):
    await engine.stake(ALICE, STAKE, lock_option=3, now=T0)
    before = await store.get_balance(AUTHORITY, STAKE_ASSET)

    claimed = await engine.claim_operator(AUTHORITY, ALICE, 40_000_000, now=T0 + SECONDS_PER_YEAR)
    assert claimed == 40_000_000
    assert await store.get_balance(AUTHORITY, STAKE_ASSET) == before + claimed

    snapshot = await engine.sync_yield(ALICE, now=T0 + SECONDS_PER_YEAR)
    assert snapshot.claimed_by_operator == 40_000_000
    assert snapshot.unrealized_yield == ONE_YEAR_YIELD - 40_000_000


async def test_operator_claim_requires_authority(engine):
    await engine.stake(ALICE, STAKE, now=T0)
    with pytest.raises(ValidationError) as exc_info:
        await engine.claim_operator(BOB, ALICE, now=T0 + SECONDS_PER_YEAR)
    assert exc_info.value.code is ErrorCode.UNAUTHORIZED_AUTHORITY


# ── Test 17: Unstake ──────────────────────────────────────────────


async def test_unstake_lifecycle(engine, store):
    tranche_id = await engine.stake(ALICE, STAKE, lock_option=0, now=T0)
    matured = T0 + LOCK_OPTIONS[0]

    with pytest.raises(ValidationError) as exc_info:
        await engine.unstake(ALICE, tranche_id, now=matured - 1)
    assert exc_info.value.code is ErrorCode.STAKE_LOCKED

    with pytest.raises(ValidationError) as exc_info:
        await engine.unstake(ALICE, tranche_id, now=matured)
    assert exc_info.value.code is ErrorCode.OUTSTANDING_YIELD

    claimed = await engine.claim_subscriber(ALICE, now=matured)
    principal = await engine.unstake(ALICE, tranche_id, now=matured)
    assert principal == STAKE
    assert await store.get_balance(ALICE, STAKE_ASSET) == STARTING_BALANCE + claimed

    state = await store.get_state()
    assert state.total_principal == 0


async def test_unstake_unknown_tranche(engine):
    with pytest.raises(ValidationError) as exc_info:
        await engine.unstake(ALICE, 0)
    assert exc_info.value.code is ErrorCode.INVALID_TRANCHE


# ── Test 18: Pause and authority ──────────────────────────────────


async def test_pause_blocks_mutations(engine, store):
    with pytest.raises(ValidationError) as exc_info:
        await engine.pause(BOB)
    assert exc_info.value.code is ErrorCode.UNAUTHORIZED_AUTHORITY

    await engine.pause(AUTHORITY)
    with pytest.raises(ValidationError) as exc_info:
        await engine.stake(ALICE, STAKE)
    assert exc_info.value.code is ErrorCode.PROGRAM_PAUSED

    with pytest.raises(ValidationError) as exc_info:
        await engine.register_service(BOB, "Music", 1_000_000)
    assert exc_info.value.code is ErrorCode.PROGRAM_PAUSED

    await engine.unpause(AUTHORITY)
    assert await engine.stake(ALICE, STAKE) == 0
    assert not (await store.get_state()).paused


async def test_initialize_twice(engine):
    with pytest.raises(ValidationError) as exc_info:
        await engine.initialize(AUTHORITY)
    assert exc_info.value.code is ErrorCode.ALREADY_INITIALIZED


async def test_operations_before_initialize(store):
    engine = LedgerEngine(store)
    with pytest.raises(ValidationError) as exc_info:
        await engine.stake(ALICE, STAKE)
    assert exc_info.value.code is ErrorCode.NOT_INITIALIZED


# ── Test 19: Failed transfers roll back ───────────────────────────


async def test_insufficient_funds_leaves_no_trace(engine, store):
    with pytest.raises(ValidationError) as exc_info:
        await engine.stake(ALICE, STARTING_BALANCE + 1, now=T0)
    assert exc_info.value.code is ErrorCode.INSUFFICIENT_FUNDS

    assert await store.get_tranche_ledger(ALICE) is None
    assert (await store.get_state()).total_principal == 0
    assert await store.get_balance(ALICE, STAKE_ASSET) == STARTING_BALANCE


async def test_external_transfer_failure_rolls_back(store, clock):
    engine = LedgerEngine(store, transfer=FailingTransfer(), clock=clock)
    await engine.initialize(AUTHORITY)

    with pytest.raises(TransferError) as exc_info:
        await engine.stake(ALICE, STAKE)
    assert exc_info.value.code is ErrorCode.TRANSFER_FAILED
    assert await store.get_tranche_ledger(ALICE) is None


# ── Test 20: Storage capacity funding ─────────────────────────────


async def test_capacity_growth_charges_fee_asset(clock):
    store = SQLiteLedgerStore(":memory:", storage_fee_per_byte=1)
    await store.initialize()
    try:
        engine = LedgerEngine(store, clock=clock)
        await engine.initialize(AUTHORITY)
        await store.credit(ALICE, STAKE_ASSET, STARTING_BALANCE)

        with pytest.raises(ValidationError) as exc_info:
            await engine.stake(ALICE, 1_000)
        assert exc_info.value.code is ErrorCode.STORAGE_FUNDING_FAILED
        assert await store.get_balance(ALICE, STAKE_ASSET) == STARTING_BALANCE

        await store.credit(ALICE, FEE_ASSET, 1_000_000)
        for _ in range(INITIAL_TRANCHE_CAPACITY + 1):
            await engine.stake(ALICE, 1_000)

        # Initial allocation plus exactly one extra slot
        expected = (INITIAL_TRANCHE_CAPACITY + 1) * TRANCHE_RECORD_BYTES
        assert await store.get_balance(STORAGE_RESERVE_ACCOUNT, FEE_ASSET) == expected
        assert await store.get_balance(ALICE, FEE_ASSET) == 1_000_000 - expected

        ledger = await store.get_tranche_ledger(ALICE)
        assert ledger.capacity == INITIAL_TRANCHE_CAPACITY + 1
    finally:
        await store.close()


async def test_unfunded_growth_sends_no_transfer(clock):
    """A stake that cannot fund its slot never reaches the value transfer."""
    store = SQLiteLedgerStore(":memory:", storage_fee_per_byte=1)
    await store.initialize()
    try:
        transfer = RecordingTransfer()
        engine = LedgerEngine(store, transfer, clock=clock)
        await engine.initialize(AUTHORITY)
        await store.credit(ALICE, FEE_ASSET, INITIAL_TRANCHE_CAPACITY * TRANCHE_RECORD_BYTES)

        for _ in range(INITIAL_TRANCHE_CAPACITY):
            await engine.stake(ALICE, 7_000_000)
        assert len(transfer.transfer_calls) == INITIAL_TRANCHE_CAPACITY

        with pytest.raises(ValidationError) as exc_info:
            await engine.stake(ALICE, 7_000_000)
        assert exc_info.value.code is ErrorCode.STORAGE_FUNDING_FAILED

        assert len(transfer.transfer_calls) == INITIAL_TRANCHE_CAPACITY
        ledger = await store.get_tranche_ledger(ALICE)
        assert len(ledger.tranches) == INITIAL_TRANCHE_CAPACITY
        state = await store.get_state()
        assert state.total_principal == INITIAL_TRANCHE_CAPACITY * 7_000_000
    finally:
        await store.close()


# ── Test 21: Reward pool ──────────────────────────────────────────


async def test_fund_reward_pool(engine, store):
    pool = await engine.fund_reward_pool(BOB, 5_000)
    assert pool == POOL_FUNDING + 5_000
    assert (await store.get_state()).reward_pool == pool

    with pytest.raises(ValidationError) as exc_info:
        await engine.fund_reward_pool(BOB, 0)
    assert exc_info.value.code is ErrorCode.AMOUNT_TOO_SMALL


async def test_claim_beyond_reward_pool(store, clock):
    engine = LedgerEngine(store, clock=clock)
    await engine.initialize(AUTHORITY, now=T0)
    await store.credit(ALICE, STAKE_ASSET, STARTING_BALANCE)
    await engine.fund_reward_pool(ALICE, 10, now=T0)
    await engine.stake(ALICE, STAKE, lock_option=0, now=T0)

    with pytest.raises(ValidationError) as exc_info:
        await engine.claim_subscriber(ALICE, now=T0 + SECONDS_PER_YEAR)
    assert exc_info.value.code is ErrorCode.INSUFFICIENT_REWARD_POOL

    # The failed claim left the yield unclaimed
    snapshot = await engine.sync_yield(ALICE, now=T0 + SECONDS_PER_YEAR)
    assert snapshot.unrealized_yield == ONE_YEAR_YIELD
    assert snapshot.claimed_by_subscriber == 0


# ── Test 22: Sync yield ───────────────────────────────────────────


async def test_sync_yield_for_unknown_owner(engine):
    snapshot = await engine.sync_yield(BOB, now=T0 + 60)
    assert snapshot.total_principal == 0
    assert snapshot.tranche_count == 0


async def test_sync_yield_persists_checkpoint(engine, store):
    await engine.stake(ALICE, STAKE, now=T0)
    half_year = T0 + SECONDS_PER_YEAR // 2
    snapshot = await engine.sync_yield(ALICE, now=half_year)

    assert snapshot.unrealized_yield == ONE_YEAR_YIELD // 2
    assert snapshot.last_update == half_year
    ledger = await store.get_tranche_ledger(ALICE)
    assert ledger.tranches[0].unrealized_yield == ONE_YEAR_YIELD // 2
    assert ledger.last_sync_time == half_year
