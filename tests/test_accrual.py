"""Tests 1-7: Accrual index, budget projection and reward pool."""

from __future__ import annotations

import pytest

from subly.constants import INDEX_SCALE, SECONDS_PER_DAY, SECONDS_PER_YEAR, U128_MAX
from subly.core import accrual, tranches
from subly.errors import ErrorCode, IntegrityError, ValidationError
from tests.factories import T0, make_ledger, make_state, make_tranche


# ── Test 1: One year at 10% ───────────────────────────────────────


def test_one_year_accrual_is_ten_percent():
    """1,000,000,000 staked at 1000 bps for a year accrues 100,000,000."""
    state = make_state(total_principal=1_000_000_000)
    ledger = make_ledger(make_tranche(principal=1_000_000_000))

    delta = accrual.accrue(state, T0 + SECONDS_PER_YEAR)
    assert delta == INDEX_SCALE // 10
    assert state.index == INDEX_SCALE + INDEX_SCALE // 10

    accrued = tranches.sync_ledger(ledger, state.index, T0 + SECONDS_PER_YEAR)
    assert accrued == 100_000_000
    assert ledger.tranches[0].unrealized_yield == 100_000_000


# ── Test 2: Stale timestamps are ignored ──────────────────────────


def test_accrue_noop_for_past_or_equal_time():
    state = make_state(total_principal=5_000_000, last_update_time=T0 + 100)
    before = (state.index, state.last_update_time)

    assert accrual.accrue(state, T0 + 100) == 0
    assert accrual.accrue(state, T0) == 0
    assert (state.index, state.last_update_time) == before


# ── Test 3: Idle periods advance time only ────────────────────────


def test_zero_principal_advances_timestamp_only():
    """With nothing staked the clock moves but the index does not."""
    state = make_state(total_principal=0)
    assert accrual.accrue(state, T0 + SECONDS_PER_DAY) == 0
    assert state.index == INDEX_SCALE
    assert state.last_update_time == T0 + SECONDS_PER_DAY

    # Principal arriving later never earns for the idle day
    state.total_principal = 1_000_000
    assert accrual.accrue(state, T0 + SECONDS_PER_DAY) == 0


# ── Test 4: Index overflow ────────────────────────────────────────


def test_index_overflow_leaves_state_untouched():
    state = make_state(total_principal=1, index=U128_MAX - 1)

    with pytest.raises(IntegrityError) as exc_info:
        accrual.accrue(state, T0 + SECONDS_PER_YEAR)

    assert exc_info.value.code is ErrorCode.MATH_OVERFLOW
    assert state.index == U128_MAX - 1
    assert state.last_update_time == T0


# ── Test 5: Monotonic index and time ──────────────────────────────


def test_index_and_time_never_decrease():
    state = make_state(total_principal=750_000_000, annual_rate_bps=2_500)
    previous = (state.index, state.last_update_time)
    for ts in (T0, T0 + 1, T0 + 1, T0 + 3_600, T0 + 3_599, T0 + 90 * SECONDS_PER_DAY):
        accrual.accrue(state, ts)
        current = (state.index, state.last_update_time)
        assert current[0] >= previous[0]
        assert current[1] >= previous[1]
        previous = current


# ── Test 6: Monthly budget projection ─────────────────────────────


def test_monthly_budget():
    """12,000,000 at 1000 bps projects 100,000 per month; zero inputs give 0."""
    assert accrual.monthly_budget(12_000_000, 1_000) == 100_000
    assert accrual.monthly_budget(12_000_011, 1_000) == 100_000
    assert accrual.monthly_budget(1_000_000_000, 500) == 4_166_666
    assert accrual.monthly_budget(0, 1_000) == 0
    assert accrual.monthly_budget(12_000_000, 0) == 0


# ── Test 7: Reward pool funding and draws ─────────────────────────


def test_reward_pool_fund_and_draw():
    state = make_state()
    assert accrual.fund_reward_pool(state, 1_000) == 1_000
    assert accrual.draw_reward_pool(state, 400) == 600

    with pytest.raises(ValidationError) as exc_info:
        accrual.draw_reward_pool(state, 601)
    assert exc_info.value.code is ErrorCode.INSUFFICIENT_REWARD_POOL
    assert state.reward_pool == 600

    with pytest.raises(ValidationError) as exc_info:
        accrual.fund_reward_pool(state, 0)
    assert exc_info.value.code is ErrorCode.AMOUNT_TOO_SMALL
