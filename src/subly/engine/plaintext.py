"""Plaintext ledger engine - runs every ledger operation in-process.

Each mutation loads the global accrual state and the affected owner records,
accrues the index to `now` first, acts on the fresh copies, and persists
them inside one store transaction together with value transfers and
storage funding. A failure anywhere rolls the whole unit back.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from subly.constants import (
    BILLING_PERIOD_SECONDS,
    DEFAULT_LOCK_INDEX,
    INDEX_SCALE,
    INITIAL_SUBSCRIPTION_CAPACITY,
    INITIAL_TRANCHE_CAPACITY,
    SECONDS_PER_DAY,
    SERVICE_RECORD_BYTES,
    STAKE_ASSET,
    SUBSCRIPTION_RECORD_BYTES,
    TRANCHE_RECORD_BYTES,
    VAULT_ACCOUNT,
)
from subly.core import accrual, catalog as catalog_ops, subscriptions as sub_ops, tranches
from subly.core.due import DueScanner
from subly.core.tranches import ClaimRole
from subly.errors import ErrorCode, ValidationError
from subly.interfaces.store import LedgerStore
from subly.interfaces.transfer import ValueTransfer
from subly.models.events import (
    PaymentRecorded,
    PayoutTargetRegistered,
    RewardPoolFunded,
    ServiceRegistered,
    Staked,
    SubscriptionActivated,
    SubscriptionCancellationScheduled,
    SubscriptionCancelled,
    Unstaked,
    YieldClaimed,
)
from subly.models.records import DueItem
from subly.models.snapshots import YieldSnapshot
from subly.models.state import (
    AccrualIndexState,
    RecipientKind,
    SubscriberLedger,
    SubscriptionStatus,
    TrancheLedger,
)

log = logging.getLogger(__name__)


def _wall_clock() -> int:
    return int(time.time())


class LedgerEngine:
    """In-process plaintext engine over a LedgerStore.

    Mutations are serialized by an asyncio lock (single writer). Reads such
    as `find_due_subscriptions` take no lock.
    """

    def __init__(
        self,
        store: LedgerStore,
        transfer: ValueTransfer | None = None,
        clock: Callable[[], int] | None = None,
        billing_period: int = BILLING_PERIOD_SECONDS,
    ) -> None:
        self._store = store
        self._transfer: ValueTransfer = transfer if transfer is not None else store  # type: ignore[assignment]
        self._clock = clock or _wall_clock
        self._billing_period = billing_period
        self._scanner = DueScanner()
        self._lock = asyncio.Lock()

    @property
    def store(self) -> LedgerStore:
        return self._store

    # ── Internals ──────────────────────────────────────────

    @asynccontextmanager
    async def _mutation(self) -> AsyncIterator[None]:
        async with self._lock:
            async with self._store.transaction():
                yield

    def _resolve_now(self, now: int | None) -> int:
        return self._clock() if now is None else now

    async def _load_state(self) -> AccrualIndexState:
        state = await self._store.get_state()
        if state is None:
            raise ValidationError(ErrorCode.NOT_INITIALIZED)
        return state

    async def _active_state(self, now: int) -> AccrualIndexState:
        """Load the singleton, reject if paused, and accrue it to `now`."""
        state = await self._load_state()
        accrual.ensure_active(state)
        accrual.accrue(state, now)
        return state

    async def _open_tranche_ledger(self, owner: str) -> TrancheLedger:
        ledger = await self._store.get_tranche_ledger(owner)
        if ledger is None:
            capacity = await self._store.ensure_capacity(
                owner, 0, INITIAL_TRANCHE_CAPACITY, TRANCHE_RECORD_BYTES,
            )
            ledger = TrancheLedger(owner=owner, capacity=capacity)
        return ledger

    async def _open_subscriber_ledger(self, owner: str) -> SubscriberLedger:
        ledger = await self._store.get_subscriber_ledger(owner)
        if ledger is None:
            capacity = await self._store.ensure_capacity(
                owner, 0, INITIAL_SUBSCRIPTION_CAPACITY, SUBSCRIPTION_RECORD_BYTES,
            )
            ledger = SubscriberLedger(owner=owner, capacity=capacity)
        return ledger

    async def _refresh(self, ledger: SubscriberLedger, now: int) -> None:
        for sub in sub_ops.refresh(ledger, now):
            log.info(
                "Subscription %d of %s cancelled (grace period over)",
                sub.id, ledger.owner[:16],
            )
            await self._store.record_event(
                SubscriptionCancelled(
                    owner=ledger.owner,
                    timestamp=now,
                    subscription_id=sub.id,
                    service_id=sub.service_id,
                    monthly_price=sub.monthly_price,
                )
            )

    # ── Administration ─────────────────────────────────────

    async def initialize(
        self,
        authority: str,
        annual_rate_bps: int | None = None,
        now: int | None = None,
    ) -> AccrualIndexState:
        now = self._resolve_now(now)
        async with self._mutation():
            if await self._store.get_state() is not None:
                raise ValidationError(ErrorCode.ALREADY_INITIALIZED)
            state = AccrualIndexState(
                authority=authority,
                index=INDEX_SCALE,
                last_update_time=now,
            )
            if annual_rate_bps is not None:
                state.annual_rate_bps = annual_rate_bps
            await self._store.save_state(state)
            await self._store.save_catalog(await self._store.get_catalog())
            await self._store.log_activity(
                "initialized",
                f"Ledger initialized at {state.annual_rate_bps} bps",
                owner=authority,
            )
        log.info("Ledger initialized (authority=%s, rate=%d bps)", authority[:16], state.annual_rate_bps)
        return state

    async def set_paused(self, caller: str, paused: bool) -> None:
        async with self._mutation():
            state = await self._load_state()
            accrual.ensure_authority(state, caller)
            state.paused = paused
            await self._store.save_state(state)
            await self._store.log_activity(
                "paused" if paused else "unpaused",
                "Ledger paused" if paused else "Ledger resumed",
                owner=caller,
            )
        log.warning("Ledger %s by %s", "paused" if paused else "resumed", caller[:16])

    async def pause(self, caller: str) -> None:
        await self.set_paused(caller, True)

    async def unpause(self, caller: str) -> None:
        await self.set_paused(caller, False)

    # ── Staking ────────────────────────────────────────────

    async def stake(
        self,
        caller: str,
        amount: int,
        lock_option: int = DEFAULT_LOCK_INDEX,
        now: int | None = None,
    ) -> int:
        """Lock `amount` for the chosen lock option. Returns the tranche id."""
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._load_state()
            accrual.ensure_active(state)
            if amount <= 0:
                raise ValidationError(ErrorCode.AMOUNT_TOO_SMALL)
            accrual.lock_duration(lock_option)
            accrual.accrue(state, now)

            ledger = await self._open_tranche_ledger(caller)
            tranches.sync_ledger(ledger, state.index, now)

            ledger.capacity = await self._store.ensure_capacity(
                caller, ledger.capacity, len(ledger.tranches) + 1, TRANCHE_RECORD_BYTES,
            )
            tranche = tranches.open_tranche(ledger, amount, lock_option, state.index, now)
            accrual.increase_principal(state, amount)

            # Value transfer is the last fallible step
            await self._transfer.transfer(STAKE_ASSET, caller, VAULT_ACCOUNT, amount)

            await self._store.save_state(state)
            await self._store.save_tranche_ledger(ledger)
            await self._store.record_event(
                Staked(
                    owner=caller,
                    timestamp=now,
                    tranche_id=tranche.id,
                    amount=amount,
                    lock_end_time=tranche.lock_end_time,
                )
            )
        log.info(
            "Staked %d for %s (tranche %d, lock %d days)",
            amount, caller[:16], tranche.id, tranche.lock_duration // SECONDS_PER_DAY,
        )
        return tranche.id

    async def _claim(
        self,
        owner: str,
        destination: str,
        role: ClaimRole,
        amount: int,
        now: int,
        state: AccrualIndexState,
    ) -> int:
        ledger = await self._store.get_tranche_ledger(owner)
        if ledger is None:
            raise ValidationError(ErrorCode.NOTHING_TO_CLAIM)
        tranches.sync_ledger(ledger, state.index, now)
        claimed = tranches.claim_from_ledger(ledger, role, amount, now)
        accrual.draw_reward_pool(state, claimed)
        await self._transfer.transfer(STAKE_ASSET, VAULT_ACCOUNT, destination, claimed)

        await self._store.save_state(state)
        await self._store.save_tranche_ledger(ledger)
        await self._store.record_event(
            YieldClaimed(
                owner=owner,
                timestamp=now,
                role=role.value,
                amount=claimed,
                destination=destination,
            )
        )
        log.info("%s claimed %d of %s's yield", role.value.capitalize(), claimed, owner[:16])
        return claimed

    async def claim_operator(
        self, caller: str, owner: str, amount: int = 0, now: int | None = None,
    ) -> int:
        """Authority claims `amount` (0 = all) of `owner`'s yield. No lock check."""
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._active_state(now)
            accrual.ensure_authority(state, caller)
            return await self._claim(owner, caller, ClaimRole.OPERATOR, amount, now, state)

    async def claim_subscriber(
        self, caller: str, amount: int = 0, now: int | None = None,
    ) -> int:
        """Owner claims `amount` (0 = all) of their own unlocked yield."""
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._active_state(now)
            return await self._claim(caller, caller, ClaimRole.SUBSCRIBER, amount, now, state)

    async def unstake(self, caller: str, tranche_id: int, now: int | None = None) -> int:
        """Withdraw a matured, fully-claimed tranche. Returns the principal."""
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._active_state(now)
            ledger = await self._store.get_tranche_ledger(caller)
            if ledger is None:
                raise ValidationError(ErrorCode.INVALID_TRANCHE, str(tranche_id))
            tranches.sync_ledger(ledger, state.index, now)
            principal = tranches.unstake_tranche(ledger, tranche_id, now)
            accrual.decrease_principal(state, principal)
            await self._transfer.transfer(STAKE_ASSET, VAULT_ACCOUNT, caller, principal)

            await self._store.save_state(state)
            await self._store.save_tranche_ledger(ledger)
            await self._store.record_event(
                Unstaked(owner=caller, timestamp=now, tranche_id=tranche_id, principal=principal)
            )
        log.info("Unstaked tranche %d for %s (%d)", tranche_id, caller[:16], principal)
        return principal

    async def fund_reward_pool(self, caller: str, amount: int, now: int | None = None) -> int:
        """Move `amount` from the caller into the reward pool. Returns the new pool."""
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._active_state(now)
            if amount <= 0:
                raise ValidationError(ErrorCode.AMOUNT_TOO_SMALL)
            pool = accrual.fund_reward_pool(state, amount)
            await self._transfer.transfer(STAKE_ASSET, caller, VAULT_ACCOUNT, amount)
            await self._store.save_state(state)
            await self._store.record_event(
                RewardPoolFunded(owner=caller, timestamp=now, amount=amount, reward_pool=pool)
            )
        log.info("Reward pool funded with %d by %s (pool=%d)", amount, caller[:16], pool)
        return pool

    async def sync_yield(self, caller: str, now: int | None = None) -> YieldSnapshot:
        """Accrue and settle the caller's tranches, returning a yield snapshot."""
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._active_state(now)
            ledger = await self._store.get_tranche_ledger(caller)
            await self._store.save_state(state)
            if ledger is None:
                return tranches.yield_snapshot(TrancheLedger(owner=caller), state.last_update_time)
            tranches.sync_ledger(ledger, state.index, now)
            await self._store.save_tranche_ledger(ledger)
        return tranches.yield_snapshot(ledger, ledger.last_sync_time)

    # ── Catalog ────────────────────────────────────────────

    async def register_service(
        self,
        caller: str,
        name: str,
        monthly_price: int,
        details: str = "",
        logo_url: str = "",
        provider: str = "",
        now: int | None = None,
    ) -> int:
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._load_state()
            accrual.ensure_active(state)
            catalog = await self._store.get_catalog()
            service = catalog_ops.append_service(
                catalog, caller, name, monthly_price, details, logo_url, provider, now,
            )
            catalog.capacity = await self._store.ensure_capacity(
                caller, catalog.capacity, len(catalog.services), SERVICE_RECORD_BYTES,
            )
            await self._store.save_catalog(catalog)
            await self._store.record_event(
                ServiceRegistered(
                    owner=caller,
                    timestamp=now,
                    service_id=service.id,
                    name=service.name,
                    monthly_price=service.monthly_price,
                )
            )
        log.info("Registered service %d '%s' at %d/month", service.id, name, monthly_price)
        return service.id

    # ── Subscriptions ──────────────────────────────────────

    async def register_payout_target(
        self,
        caller: str,
        kind: str | RecipientKind,
        receiver: str,
        now: int | None = None,
    ) -> None:
        now = self._resolve_now(now)
        target = sub_ops.validate_payout_target(kind, receiver)
        async with self._mutation():
            state = await self._load_state()
            accrual.ensure_active(state)
            ledger = await self._open_subscriber_ledger(caller)
            ledger.payout_target = target
            await self._store.save_subscriber_ledger(ledger)
            await self._store.record_event(
                PayoutTargetRegistered(
                    owner=caller,
                    timestamp=now,
                    recipient_kind=target.kind.value,
                    receiver=target.receiver,
                )
            )
        log.info("Payout target set for %s (%s)", caller[:16], target.kind.value)

    async def subscribe(self, caller: str, service_id: int, now: int | None = None) -> int:
        """Enroll in a catalog service within the caller's monthly budget."""
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._load_state()
            accrual.ensure_active(state)
            ledger = await self._store.get_subscriber_ledger(caller)
            if ledger is None:
                raise ValidationError(ErrorCode.PAYOUT_TARGET_MISSING)
            await self._refresh(ledger, now)

            stake = await self._store.get_tranche_ledger(caller)
            budget = accrual.monthly_budget(
                stake.total_principal if stake else 0, state.annual_rate_bps,
            )
            catalog = await self._store.get_catalog()
            sub = sub_ops.enroll(ledger, catalog, service_id, budget, now, self._billing_period)
            ledger.capacity = await self._store.ensure_capacity(
                caller, ledger.capacity, len(ledger.subscriptions), SUBSCRIPTION_RECORD_BYTES,
            )
            await self._store.save_subscriber_ledger(ledger)
            target = ledger.payout_target
            await self._store.record_event(
                SubscriptionActivated(
                    owner=caller,
                    timestamp=now,
                    subscription_id=sub.id,
                    service_id=sub.service_id,
                    monthly_price=sub.monthly_price,
                    next_billing_time=sub.next_billing_time,
                    recipient_kind=target.kind.value if target.kind else "",
                    receiver=target.receiver,
                )
            )
        log.info(
            "%s subscribed to service %d (subscription %d, %d/month of %d budget)",
            caller[:16], service_id, sub.id, sub.monthly_price, budget,
        )
        return sub.id

    async def unsubscribe(self, caller: str, subscription_id: int, now: int | None = None) -> int:
        """Start cancellation. Returns the time access ends."""
        now = self._resolve_now(now)
        async with self._mutation():
            state = await self._load_state()
            accrual.ensure_active(state)
            ledger = await self._store.get_subscriber_ledger(caller)
            if ledger is None:
                raise ValidationError(ErrorCode.SUBSCRIPTION_NOT_FOUND, str(subscription_id))
            await self._refresh(ledger, now)
            service_id, price, until = sub_ops.begin_cancellation(
                ledger, subscription_id, now, self._billing_period,
            )
            await self._store.save_subscriber_ledger(ledger)
            await self._store.record_event(
                SubscriptionCancellationScheduled(
                    owner=caller,
                    timestamp=now,
                    subscription_id=subscription_id,
                    service_id=service_id,
                    monthly_price=price,
                    pending_cancel_until=until,
                )
            )
        log.info("Subscription %d of %s cancelling at %d", subscription_id, caller[:16], until)
        return until

    async def record_payment(
        self,
        caller: str,
        owner: str,
        subscription_id: int,
        payment_time: int | None = None,
        now: int | None = None,
    ) -> SubscriptionStatus:
        """Authority records that `owner`'s subscription was paid."""
        now = self._resolve_now(now)
        paid_at = now if payment_time is None else payment_time
        async with self._mutation():
            state = await self._load_state()
            accrual.ensure_active(state)
            accrual.ensure_authority(state, caller)
            ledger = await self._store.get_subscriber_ledger(owner)
            if ledger is None:
                raise ValidationError(ErrorCode.SUBSCRIPTION_NOT_FOUND, str(subscription_id))
            await self._refresh(ledger, now)
            status = sub_ops.record_payment(ledger, subscription_id, paid_at, self._billing_period)
            await self._store.save_subscriber_ledger(ledger)
            await self._store.record_event(
                PaymentRecorded(
                    owner=owner,
                    timestamp=now,
                    operator=caller,
                    subscription_id=subscription_id,
                    status=status.label,
                    paid_at=paid_at,
                )
            )
        log.info(
            "Payment recorded for %s subscription %d (%s)", owner[:16], subscription_id, status.label,
        )
        return status

    # ── Reads ──────────────────────────────────────────────

    async def find_due_subscriptions(
        self,
        lookahead: int,
        owners: list[str] | None = None,
        now: int | None = None,
    ) -> list[DueItem]:
        """Read-only batch scan for subscriptions needing payment."""
        now = self._resolve_now(now)
        state = await self._load_state()
        catalog = await self._store.get_catalog()
        if owners is None:
            owners = await self._store.list_subscribers()
        ledgers = await self._store.get_subscriber_ledgers(owners)
        return self._scanner.find_due(state, catalog, ledgers, now, lookahead)
