"""AccrualIndex and RewardPool - the global accrual singleton."""

from __future__ import annotations

from subly.constants import (
    BASIS_POINTS_DIVISOR,
    INDEX_SCALE,
    LOCK_OPTIONS,
    MONTHS_PER_YEAR,
    SECONDS_PER_YEAR,
)
from subly.core.checked import add_u64, add_u128, sub_u64, to_u128
from subly.errors import ErrorCode, ValidationError
from subly.models.state import AccrualIndexState


def index_delta(annual_rate_bps: int, elapsed: int) -> int:
    """Index growth for `elapsed` seconds at `annual_rate_bps`."""
    numerator = to_u128(annual_rate_bps * elapsed * INDEX_SCALE)
    return numerator // (BASIS_POINTS_DIVISOR * SECONDS_PER_YEAR)


def accrue(state: AccrualIndexState, now: int) -> int:
    """Advance the index to `now`. Returns the index delta applied.

    No-op when `now` is not past the last update. With zero principal the
    timestamp still advances so idle periods never accrue retroactively.
    Computes everything before assigning, so an overflow leaves `state` as is.
    """
    if now <= state.last_update_time:
        return 0
    elapsed = now - state.last_update_time
    delta = 0
    new_index = state.index
    if state.total_principal > 0:
        delta = index_delta(state.annual_rate_bps, elapsed)
        new_index = add_u128(state.index, delta)
    state.index = new_index
    state.last_update_time = now
    return delta


def ensure_active(state: AccrualIndexState) -> None:
    if state.paused:
        raise ValidationError(ErrorCode.PROGRAM_PAUSED)


def ensure_authority(state: AccrualIndexState, caller: str) -> None:
    if caller != state.authority:
        raise ValidationError(ErrorCode.UNAUTHORIZED_AUTHORITY, caller[:16])


def lock_duration(option: int) -> int:
    if not 0 <= option < len(LOCK_OPTIONS):
        raise ValidationError(ErrorCode.INVALID_LOCK_OPTION, str(option))
    return LOCK_OPTIONS[option]


def increase_principal(state: AccrualIndexState, amount: int) -> None:
    state.total_principal = add_u64(state.total_principal, amount)


def decrease_principal(state: AccrualIndexState, amount: int) -> None:
    state.total_principal = sub_u64(state.total_principal, amount)


# ── Reward pool ────────────────────────────────────────


def fund_reward_pool(state: AccrualIndexState, amount: int) -> int:
    if amount <= 0:
        raise ValidationError(ErrorCode.AMOUNT_TOO_SMALL)
    state.reward_pool = add_u64(state.reward_pool, amount)
    return state.reward_pool


def draw_reward_pool(state: AccrualIndexState, amount: int) -> int:
    if state.reward_pool < amount:
        raise ValidationError(
            ErrorCode.INSUFFICIENT_REWARD_POOL,
            f"requested {amount}, pool holds {state.reward_pool}",
        )
    state.reward_pool -= amount
    return state.reward_pool


# ── Budget projection ──────────────────────────────────


def monthly_budget(total_principal: int, annual_rate_bps: int) -> int:
    """Monthly spending allowance projected from principal and rate."""
    if total_principal == 0 or annual_rate_bps == 0:
        return 0
    annual_yield = total_principal * annual_rate_bps // BASIS_POINTS_DIVISOR
    return annual_yield // MONTHS_PER_YEAR
