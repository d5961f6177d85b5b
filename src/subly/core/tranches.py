"""TrancheLedger - tranche lifecycle, yield sync and claim draining."""

from __future__ import annotations

from enum import Enum

from subly.constants import INDEX_SCALE
from subly.core.accrual import lock_duration
from subly.core.checked import add_ts, add_u64, sub_u64, to_u64
from subly.errors import ErrorCode, ValidationError
from subly.models.snapshots import YieldSnapshot
from subly.models.state import Tranche, TrancheLedger


class ClaimRole(str, Enum):
    OPERATOR = "operator"
    SUBSCRIBER = "subscriber"


# ── Single tranche ─────────────────────────────────────


def sync_tranche(tranche: Tranche, index: int) -> int:
    """Settle accrual since the tranche checkpoint. Returns the accrual."""
    if tranche.principal == 0 or index <= tranche.checkpoint_index:
        return 0
    accrual = to_u64(tranche.principal * (index - tranche.checkpoint_index) // INDEX_SCALE)
    tranche.unrealized_yield = add_u64(tranche.unrealized_yield, accrual)
    tranche.checkpoint_index = index
    return accrual


def is_locked(tranche: Tranche, now: int) -> bool:
    return now < tranche.lock_end_time


def claim_operator(tranche: Tranche, amount: int) -> int:
    """Take up to `amount` (0 = all) of unrealized yield. No lock restriction."""
    available = tranche.unrealized_yield
    if available == 0:
        return 0
    claimed = available if amount == 0 else min(amount, available)
    tranche.unrealized_yield -= claimed
    tranche.claimed_by_operator = add_u64(tranche.claimed_by_operator, claimed)
    return claimed


def claim_subscriber(tranche: Tranche, amount: int, now: int) -> int:
    """Like claim_operator but only once the lock has ended."""
    if is_locked(tranche, now):
        raise ValidationError(ErrorCode.STAKE_LOCKED, f"tranche {tranche.id}")
    available = tranche.unrealized_yield
    if available == 0:
        return 0
    claimed = available if amount == 0 else min(amount, available)
    tranche.unrealized_yield -= claimed
    tranche.claimed_by_subscriber = add_u64(tranche.claimed_by_subscriber, claimed)
    return claimed


def withdraw_principal(tranche: Tranche, now: int) -> int:
    if is_locked(tranche, now):
        raise ValidationError(ErrorCode.STAKE_LOCKED, f"tranche {tranche.id}")
    if tranche.principal == 0:
        raise ValidationError(ErrorCode.NOTHING_TO_UNSTAKE, f"tranche {tranche.id}")
    if tranche.unrealized_yield > 0:
        raise ValidationError(
            ErrorCode.OUTSTANDING_YIELD,
            f"tranche {tranche.id} holds {tranche.unrealized_yield}",
        )
    principal = tranche.principal
    tranche.principal = 0
    return principal


# ── Owner ledger ───────────────────────────────────────


def open_tranche(
    ledger: TrancheLedger, amount: int, lock_option: int, index: int, now: int,
) -> Tranche:
    """Append a new tranche checkpointed at the current index."""
    if amount <= 0:
        raise ValidationError(ErrorCode.AMOUNT_TOO_SMALL)
    duration = lock_duration(lock_option)
    tranche = Tranche(
        id=ledger.next_tranche_id,
        principal=to_u64(amount),
        deposited_at=now,
        lock_duration=duration,
        lock_end_time=add_ts(now, duration),
        entry_index=index,
        checkpoint_index=index,
    )
    ledger.total_principal = add_u64(ledger.total_principal, amount)
    ledger.next_tranche_id = add_u64(ledger.next_tranche_id, 1)
    ledger.tranches.append(tranche)
    return tranche


def sync_ledger(ledger: TrancheLedger, index: int, now: int) -> int:
    """Sync every tranche against `index`. Returns the total accrual."""
    total = 0
    for tranche in ledger.tranches:
        total += sync_tranche(tranche, index)
    ledger.last_sync_time = now
    return total


def find_tranche(ledger: TrancheLedger, tranche_id: int) -> Tranche:
    for tranche in ledger.tranches:
        if tranche.id == tranche_id:
            return tranche
    raise ValidationError(ErrorCode.INVALID_TRANCHE, str(tranche_id))


def available_for_operator(ledger: TrancheLedger) -> int:
    return sum(t.unrealized_yield for t in ledger.tranches)


def available_for_subscriber(ledger: TrancheLedger, now: int) -> int:
    return sum(t.unrealized_yield for t in ledger.tranches if not is_locked(t, now))


def claim_from_ledger(
    ledger: TrancheLedger, role: ClaimRole, amount: int, now: int,
) -> int:
    """Drain up to `amount` (0 = all available) across tranches in storage order.

    On the subscriber path a still-locked tranche visited before the request
    is satisfied raises STAKE_LOCKED. Tranches may be partially drained when
    that happens; callers discard the ledger copy on error.
    """
    if role is ClaimRole.OPERATOR:
        available = available_for_operator(ledger)
    else:
        available = available_for_subscriber(ledger, now)
    desired = available if amount == 0 else min(amount, available)
    if desired == 0:
        raise ValidationError(ErrorCode.NOTHING_TO_CLAIM)

    remaining = desired
    for tranche in ledger.tranches:
        if remaining == 0:
            break
        if role is ClaimRole.OPERATOR:
            taken = claim_operator(tranche, remaining)
        else:
            taken = claim_subscriber(tranche, remaining, now)
        remaining -= taken
    return desired - remaining


def unstake_tranche(ledger: TrancheLedger, tranche_id: int, now: int) -> int:
    tranche = find_tranche(ledger, tranche_id)
    principal = withdraw_principal(tranche, now)
    ledger.total_principal = sub_u64(ledger.total_principal, principal)
    return principal


def yield_snapshot(ledger: TrancheLedger, last_update: int) -> YieldSnapshot:
    return YieldSnapshot(
        owner=ledger.owner,
        total_principal=ledger.total_principal,
        unrealized_yield=sum(t.unrealized_yield for t in ledger.tranches),
        generated_yield=sum(t.generated_yield for t in ledger.tranches),
        claimed_by_operator=sum(t.claimed_by_operator for t in ledger.tranches),
        claimed_by_subscriber=sum(t.claimed_by_subscriber for t in ledger.tranches),
        tranche_count=len(ledger.tranches),
        last_update=last_update,
    )
