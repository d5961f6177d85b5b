"""Data API aggregator - builds read-only snapshots from persisted ledger state.

Reads take no engine lock. Accrual and cancellation refresh are applied to
freshly loaded copies and never written back.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from subly.core import accrual, subscriptions as sub_ops, tranches
from subly.models.snapshots import (
    ActivityEntry,
    ConfidentialStatusSnapshot,
    DashboardSnapshot,
    GlobalStateSnapshot,
    PayoutTargetSnapshot,
    ServiceSnapshot,
    SubscriberSnapshot,
    SubscriptionSnapshot,
    TrancheSnapshot,
    UserStakeSnapshot,
    YieldSnapshot,
)
from subly.models.state import (
    AccrualIndexState,
    ServiceCatalog,
    SubscriptionService,
    SubscriptionStatus,
    TrancheLedger,
)
from subly.storage.sqlite import SQLiteLedgerStore

log = logging.getLogger(__name__)


def _service_to_snapshot(service: SubscriptionService) -> ServiceSnapshot:
    return ServiceSnapshot(
        id=service.id,
        name=service.name,
        monthly_price=service.monthly_price,
        provider=service.provider,
        details=service.details,
        logo_url=service.logo_url,
    )


def _service_name(catalog: ServiceCatalog, service_id: int) -> str:
    for service in catalog.services:
        if service.id == service_id:
            return service.name
    return ""


class DataAggregator:
    """Builds JSON-serializable snapshots for the CLI and any UI client."""

    def __init__(
        self,
        store: SQLiteLedgerStore,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: int(time.time()))

    async def _accrued_state(self, now: int) -> AccrualIndexState | None:
        state = await self._store.get_state()
        if state is not None:
            accrual.accrue(state, now)
        return state

    async def _synced_ledger(self, owner: str, now: int) -> tuple[TrancheLedger, AccrualIndexState | None]:
        state = await self._accrued_state(now)
        ledger = await self._store.get_tranche_ledger(owner) or TrancheLedger(owner=owner)
        if state is not None:
            tranches.sync_ledger(ledger, state.index, now)
        return ledger, state

    # ── Staking ────────────────────────────────────────────

    async def get_global_state(self, now: int | None = None) -> GlobalStateSnapshot | None:
        now = self._clock() if now is None else now
        state = await self._accrued_state(now)
        if state is None:
            return None
        return GlobalStateSnapshot(
            authority=state.authority,
            total_principal=state.total_principal,
            reward_pool=state.reward_pool,
            index=state.index,
            annual_rate_bps=state.annual_rate_bps,
            last_update_time=state.last_update_time,
            paused=state.paused,
        )

    async def get_yield_snapshot(self, owner: str, now: int | None = None) -> YieldSnapshot:
        now = self._clock() if now is None else now
        ledger, _state = await self._synced_ledger(owner, now)
        return tranches.yield_snapshot(ledger, now)

    async def get_user_stake(self, owner: str, now: int | None = None) -> UserStakeSnapshot:
        now = self._clock() if now is None else now
        ledger, state = await self._synced_ledger(owner, now)
        rate = state.annual_rate_bps if state else 0
        return UserStakeSnapshot(
            owner=owner,
            total_principal=ledger.total_principal,
            available_for_operator=tranches.available_for_operator(ledger),
            available_for_subscriber=tranches.available_for_subscriber(ledger, now),
            monthly_budget=accrual.monthly_budget(ledger.total_principal, rate),
            tranches=[
                TrancheSnapshot(
                    id=t.id,
                    principal=t.principal,
                    deposited_at=t.deposited_at,
                    lock_end_time=t.lock_end_time,
                    locked=tranches.is_locked(t, now),
                    unrealized_yield=t.unrealized_yield,
                    claimed_by_operator=t.claimed_by_operator,
                    claimed_by_subscriber=t.claimed_by_subscriber,
                )
                for t in ledger.tranches
            ],
        )

    # ── Subscriptions ──────────────────────────────────────

    async def _budget(self, owner: str) -> int:
        state = await self._store.get_state()
        stake = await self._store.get_tranche_ledger(owner)
        if state is None or stake is None:
            return 0
        return accrual.monthly_budget(stake.total_principal, state.annual_rate_bps)

    async def get_subscriptions(self, owner: str, now: int | None = None) -> SubscriberSnapshot:
        now = self._clock() if now is None else now
        budget = await self._budget(owner)
        ledger = await self._store.get_subscriber_ledger(owner)
        if ledger is None:
            return SubscriberSnapshot(
                owner=owner,
                monthly_budget=budget,
                active_commitment=0,
                pending_commitment=0,
                available_budget=budget,
                payout_configured=False,
            )
        sub_ops.refresh(ledger, now)
        catalog = await self._store.get_catalog()
        return SubscriberSnapshot(
            owner=owner,
            monthly_budget=budget,
            active_commitment=ledger.active_commitment,
            pending_commitment=ledger.pending_commitment,
            available_budget=max(budget - ledger.committed, 0),
            payout_configured=ledger.payout_target.configured,
            subscriptions=[
                SubscriptionSnapshot(
                    id=s.id,
                    service_id=s.service_id,
                    service_name=_service_name(catalog, s.service_id),
                    monthly_price=s.monthly_price,
                    status=s.status.value,
                    next_billing_time=s.next_billing_time,
                    pending_cancel_until=s.pending_cancel_until,
                    last_payment_time=s.last_payment_time,
                )
                for s in ledger.subscriptions
            ],
        )

    async def get_available_services(self, owner: str, now: int | None = None) -> list[ServiceSnapshot]:
        now = self._clock() if now is None else now
        budget = await self._budget(owner)
        ledger = await self._store.get_subscriber_ledger(owner)
        if ledger is not None:
            sub_ops.refresh(ledger, now)
        catalog = await self._store.get_catalog()
        return [
            _service_to_snapshot(s) for s in sub_ops.available_services(catalog, ledger, budget)
        ]

    async def get_catalog(self) -> list[ServiceSnapshot]:
        catalog = await self._store.get_catalog()
        return [_service_to_snapshot(s) for s in catalog.services]

    async def get_payout_target(self, owner: str) -> PayoutTargetSnapshot:
        ledger = await self._store.get_subscriber_ledger(owner)
        if ledger is None or not ledger.payout_target.configured:
            return PayoutTargetSnapshot(
                owner=owner, configured=False, recipient_kind=None, receiver="",
            )
        target = ledger.payout_target
        return PayoutTargetSnapshot(
            owner=owner,
            configured=True,
            recipient_kind=target.kind.value if target.kind else None,
            receiver=target.receiver,
        )

    # ── Confidential ───────────────────────────────────────

    async def get_confidential_status(self, owner: str) -> ConfidentialStatusSnapshot:
        config = await self._store.get_confidential_config()
        stake = await self._store.get_confidential_stake(owner)
        return ConfidentialStatusSnapshot(
            owner=owner,
            initialized=bool(config and config.initialized),
            config_pending=bool(
                config and (config.pending is not None or config.pending_initialize is not None)
            ),
            stake_pending=bool(stake and stake.pending is not None),
            entry_count=stake.entry_count if stake else 0,
        )

    # ── Dashboard ──────────────────────────────────────────

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityEntry]:
        records = await self._store.get_recent_activity(limit)
        return [
            ActivityEntry(
                event_type=r.event_type,
                owner=r.owner,
                amount=r.amount,
                message=r.message,
                created_at=r.created_at,
            )
            for r in records
        ]

    async def get_dashboard(self, now: int | None = None) -> DashboardSnapshot | None:
        """Build the full dashboard snapshot. None before initialization."""
        now = self._clock() if now is None else now
        state = await self.get_global_state(now)
        if state is None:
            return None

        stakers = await self._store.list_stakers()
        subscribers = await self._store.list_subscribers()
        ledgers = await self._store.get_subscriber_ledgers(subscribers)
        active = 0
        for ledger in ledgers:
            sub_ops.refresh(ledger, now)
            active += sum(1 for s in ledger.subscriptions if s.status is SubscriptionStatus.ACTIVE)
        catalog = await self._store.get_catalog()

        return DashboardSnapshot(
            state=state,
            stakers=len(stakers),
            subscribers=len(subscribers),
            services=len(catalog.services),
            active_subscriptions=active,
            recent_activity=await self.get_recent_activity(20),
        )
