"""SQLite implementation of the LedgerStore and ValueTransfer protocols."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from subly.constants import FEE_ASSET, STORAGE_RESERVE_ACCOUNT
from subly.errors import ErrorCode, ValidationError
from subly.models.confidential import (
    Circuit,
    ComputationRecord,
    ConfidentialConfigRecord,
    ConfidentialStakeRecord,
    EncryptedState,
)
from subly.models.events import LedgerEvent
from subly.models.records import ActivityRecord, PayoutRecord, PayoutResult
from subly.models.state import (
    AccrualIndexState,
    PayoutTarget,
    RecipientKind,
    ServiceCatalog,
    SubscriberLedger,
    Subscription,
    SubscriptionService,
    SubscriptionStatus,
    Tranche,
    TrancheLedger,
)

log = logging.getLogger(__name__)

# Amounts and index values are u64/u128 and can exceed SQLite's signed
# 64-bit INTEGER, so they are stored as decimal TEXT.
SCHEMA = """
-- Global accrual singleton
CREATE TABLE IF NOT EXISTS ledger_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    authority TEXT NOT NULL,
    total_principal TEXT NOT NULL,
    reward_pool TEXT NOT NULL,
    acc_index TEXT NOT NULL,
    annual_rate_bps INTEGER NOT NULL,
    last_update_time INTEGER NOT NULL,
    paused INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Per-owner tranche ledgers
CREATE TABLE IF NOT EXISTS tranche_ledgers (
    owner TEXT PRIMARY KEY,
    total_principal TEXT NOT NULL,
    last_sync_time INTEGER NOT NULL,
    next_tranche_id INTEGER NOT NULL,
    capacity INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS tranches (
    owner TEXT NOT NULL,
    tranche_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    principal TEXT NOT NULL,
    deposited_at INTEGER NOT NULL,
    lock_duration INTEGER NOT NULL,
    lock_end_time INTEGER NOT NULL,
    entry_index TEXT NOT NULL,
    checkpoint_index TEXT NOT NULL,
    claimed_by_operator TEXT NOT NULL,
    claimed_by_subscriber TEXT NOT NULL,
    unrealized_yield TEXT NOT NULL,
    PRIMARY KEY (owner, tranche_id)
);
CREATE INDEX IF NOT EXISTS idx_tranches_position ON tranches(owner, position);

-- Service catalog
CREATE TABLE IF NOT EXISTS catalog (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    next_service_id INTEGER NOT NULL,
    capacity INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS services (
    service_id INTEGER PRIMARY KEY,
    creator TEXT NOT NULL,
    name TEXT NOT NULL,
    monthly_price TEXT NOT NULL,
    details TEXT NOT NULL,
    logo_url TEXT NOT NULL,
    provider TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

-- Per-subscriber ledgers
CREATE TABLE IF NOT EXISTS subscriber_ledgers (
    owner TEXT PRIMARY KEY,
    next_subscription_id INTEGER NOT NULL,
    active_commitment TEXT NOT NULL,
    pending_commitment TEXT NOT NULL,
    capacity INTEGER NOT NULL,
    payout_configured INTEGER NOT NULL DEFAULT 0,
    recipient_kind TEXT,
    receiver TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS subscriptions (
    owner TEXT NOT NULL,
    subscription_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    service_id INTEGER NOT NULL,
    monthly_price TEXT NOT NULL,
    started_at INTEGER NOT NULL,
    last_payment_time INTEGER NOT NULL,
    next_billing_time INTEGER NOT NULL,
    pending_cancel_until INTEGER NOT NULL,
    status TEXT NOT NULL,
    initial_payment_recorded INTEGER NOT NULL,
    PRIMARY KEY (owner, subscription_id)
);
CREATE INDEX IF NOT EXISTS idx_subscriptions_status ON subscriptions(status);

-- Balance book backing value transfers and storage funding
CREATE TABLE IF NOT EXISTS balances (
    account TEXT NOT NULL,
    asset TEXT NOT NULL,
    amount TEXT NOT NULL,
    PRIMARY KEY (account, asset)
);

-- Confidential engine records
CREATE TABLE IF NOT EXISTS confidential_config (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    authority TEXT NOT NULL,
    nonce BLOB NOT NULL,
    ciphertext BLOB NOT NULL,
    pending_initialize TEXT,
    pending TEXT,
    paused INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS confidential_stakes (
    owner TEXT PRIMARY KEY,
    entry_count INTEGER NOT NULL,
    nonce BLOB NOT NULL,
    ciphertext BLOB NOT NULL,
    pending TEXT
);

CREATE TABLE IF NOT EXISTS computations (
    request_id TEXT PRIMARY KEY,
    circuit TEXT NOT NULL,
    owner TEXT NOT NULL,
    amount TEXT NOT NULL,
    argument INTEGER NOT NULL,
    outcome TEXT,
    queued_at TEXT NOT NULL DEFAULT (datetime('now')),
    finalized_at TEXT
);

-- Provider payouts issued by the billing daemon
CREATE TABLE IF NOT EXISTS payouts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    subscription_id INTEGER NOT NULL,
    due_ts INTEGER,
    amount_cents INTEGER NOT NULL,
    status TEXT NOT NULL,
    batch_id TEXT,
    error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_payouts_owner ON payouts(owner, subscription_id);

-- Activity log
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    owner TEXT,
    amount TEXT,
    message TEXT NOT NULL,
    payload TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _opt_int(value: str | None) -> int | None:
    return int(value) if value is not None else None


def _opt_str(value: int | None) -> str | None:
    return str(value) if value is not None else None


class SQLiteLedgerStore:
    """SQLite-backed ledger store with an embedded balance book.

    Every write joins the caller's open transaction when there is one, so a
    ledger mutation, its value transfers and its storage funding commit or
    roll back together.
    """

    def __init__(self, db_path: str, storage_fee_per_byte: int = 0) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._storage_fee_per_byte = storage_fee_per_byte
        self._tx_lock = asyncio.Lock()
        self._tx_owner: asyncio.Task | None = None
        self._tx_depth = 0

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    @property
    def storage_fee_per_byte(self) -> int:
        return self._storage_fee_per_byte

    # ── Transactions ───────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Atomic unit of work. Re-entrant within the same task."""
        task = asyncio.current_task()
        if self._tx_owner is not None and self._tx_owner is task:
            self._tx_depth += 1
            try:
                yield
            finally:
                self._tx_depth -= 1
            return

        async with self._tx_lock:
            self._tx_owner = task
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                await self.db.rollback()
                raise
            else:
                await self.db.commit()
            finally:
                self._tx_owner = None
                self._tx_depth = 0

    # ── Global state ───────────────────────────────────────

    async def get_state(self) -> AccrualIndexState | None:
        async with self.db.execute("SELECT * FROM ledger_state WHERE id=1") as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return AccrualIndexState(
            authority=row["authority"],
            total_principal=int(row["total_principal"]),
            reward_pool=int(row["reward_pool"]),
            index=int(row["acc_index"]),
            annual_rate_bps=row["annual_rate_bps"],
            last_update_time=row["last_update_time"],
            paused=bool(row["paused"]),
        )

    async def save_state(self, state: AccrualIndexState) -> None:
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO ledger_state (id, authority, total_principal, reward_pool,"
                " acc_index, annual_rate_bps, last_update_time, paused, updated_at)"
                " VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(id) DO UPDATE SET authority=excluded.authority,"
                " total_principal=excluded.total_principal, reward_pool=excluded.reward_pool,"
                " acc_index=excluded.acc_index, annual_rate_bps=excluded.annual_rate_bps,"
                " last_update_time=excluded.last_update_time, paused=excluded.paused,"
                " updated_at=excluded.updated_at",
                (
                    state.authority, str(state.total_principal), str(state.reward_pool),
                    str(state.index), state.annual_rate_bps, state.last_update_time,
                    int(state.paused), _now(),
                ),
            )

    # ── Tranche ledgers ────────────────────────────────────

    async def get_tranche_ledger(self, owner: str) -> TrancheLedger | None:
        async with self.db.execute(
            "SELECT * FROM tranche_ledgers WHERE owner=?", (owner,)
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        async with self.db.execute(
            "SELECT * FROM tranches WHERE owner=? ORDER BY position", (owner,)
        ) as cur:
            tranches = [_row_to_tranche(r) async for r in cur]
        return TrancheLedger(
            owner=owner,
            total_principal=int(row["total_principal"]),
            last_sync_time=row["last_sync_time"],
            next_tranche_id=row["next_tranche_id"],
            tranches=tranches,
            capacity=row["capacity"],
        )

    async def save_tranche_ledger(self, ledger: TrancheLedger) -> None:
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO tranche_ledgers"
                " (owner, total_principal, last_sync_time, next_tranche_id, capacity)"
                " VALUES (?, ?, ?, ?, ?)"
                " ON CONFLICT(owner) DO UPDATE SET total_principal=excluded.total_principal,"
                " last_sync_time=excluded.last_sync_time,"
                " next_tranche_id=excluded.next_tranche_id, capacity=excluded.capacity",
                (
                    ledger.owner, str(ledger.total_principal), ledger.last_sync_time,
                    ledger.next_tranche_id, ledger.capacity,
                ),
            )
            await self.db.execute("DELETE FROM tranches WHERE owner=?", (ledger.owner,))
            await self.db.executemany(
                "INSERT INTO tranches (owner, tranche_id, position, principal, deposited_at,"
                " lock_duration, lock_end_time, entry_index, checkpoint_index,"
                " claimed_by_operator, claimed_by_subscriber, unrealized_yield)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        ledger.owner, t.id, pos, str(t.principal), t.deposited_at,
                        t.lock_duration, t.lock_end_time, str(t.entry_index),
                        str(t.checkpoint_index), str(t.claimed_by_operator),
                        str(t.claimed_by_subscriber), str(t.unrealized_yield),
                    )
                    for pos, t in enumerate(ledger.tranches)
                ],
            )

    async def list_stakers(self) -> list[str]:
        async with self.db.execute("SELECT owner FROM tranche_ledgers ORDER BY created_at, owner") as cur:
            return [row["owner"] async for row in cur]

    # ── Catalog ────────────────────────────────────────────

    async def get_catalog(self) -> ServiceCatalog:
        async with self.db.execute("SELECT * FROM catalog WHERE id=1") as cur:
            row = await cur.fetchone()
        async with self.db.execute("SELECT * FROM services ORDER BY service_id") as cur:
            services = [_row_to_service(r) async for r in cur]
        if row is None:
            return ServiceCatalog(services=services)
        return ServiceCatalog(
            next_service_id=row["next_service_id"],
            services=services,
            capacity=row["capacity"],
        )

    async def save_catalog(self, catalog: ServiceCatalog) -> None:
        """Persist the catalog header and any services not yet stored."""
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO catalog (id, next_service_id, capacity) VALUES (1, ?, ?)"
                " ON CONFLICT(id) DO UPDATE SET next_service_id=excluded.next_service_id,"
                " capacity=excluded.capacity",
                (catalog.next_service_id, catalog.capacity),
            )
            await self.db.executemany(
                "INSERT OR IGNORE INTO services (service_id, creator, name, monthly_price,"
                " details, logo_url, provider, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        s.id, s.creator, s.name, str(s.monthly_price), s.details,
                        s.logo_url, s.provider, s.created_at,
                    )
                    for s in catalog.services
                ],
            )

    # ── Subscriber ledgers ─────────────────────────────────

    async def get_subscriber_ledger(self, owner: str) -> SubscriberLedger | None:
        async with self.db.execute(
            "SELECT * FROM subscriber_ledgers WHERE owner=?", (owner,)
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        async with self.db.execute(
            "SELECT * FROM subscriptions WHERE owner=? ORDER BY position", (owner,)
        ) as cur:
            subscriptions = [_row_to_subscription(r) async for r in cur]
        kind = row["recipient_kind"]
        return SubscriberLedger(
            owner=owner,
            next_subscription_id=row["next_subscription_id"],
            active_commitment=int(row["active_commitment"]),
            pending_commitment=int(row["pending_commitment"]),
            subscriptions=subscriptions,
            capacity=row["capacity"],
            payout_target=PayoutTarget(
                configured=bool(row["payout_configured"]),
                kind=RecipientKind(kind) if kind else None,
                receiver=row["receiver"],
            ),
        )

    async def get_subscriber_ledgers(self, owners: list[str]) -> list[SubscriberLedger]:
        ledgers = []
        for owner in owners:
            ledger = await self.get_subscriber_ledger(owner)
            if ledger is not None:
                ledgers.append(ledger)
        return ledgers

    async def save_subscriber_ledger(self, ledger: SubscriberLedger) -> None:
        target = ledger.payout_target
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO subscriber_ledgers (owner, next_subscription_id,"
                " active_commitment, pending_commitment, capacity, payout_configured,"
                " recipient_kind, receiver) VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(owner) DO UPDATE SET"
                " next_subscription_id=excluded.next_subscription_id,"
                " active_commitment=excluded.active_commitment,"
                " pending_commitment=excluded.pending_commitment,"
                " capacity=excluded.capacity, payout_configured=excluded.payout_configured,"
                " recipient_kind=excluded.recipient_kind, receiver=excluded.receiver",
                (
                    ledger.owner, ledger.next_subscription_id,
                    str(ledger.active_commitment), str(ledger.pending_commitment),
                    ledger.capacity, int(target.configured),
                    target.kind.value if target.kind else None, target.receiver,
                ),
            )
            await self.db.execute("DELETE FROM subscriptions WHERE owner=?", (ledger.owner,))
            await self.db.executemany(
                "INSERT INTO subscriptions (owner, subscription_id, position, service_id,"
                " monthly_price, started_at, last_payment_time, next_billing_time,"
                " pending_cancel_until, status, initial_payment_recorded)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        ledger.owner, s.id, pos, s.service_id, str(s.monthly_price),
                        s.started_at, s.last_payment_time, s.next_billing_time,
                        s.pending_cancel_until, s.status.value,
                        int(s.initial_payment_recorded),
                    )
                    for pos, s in enumerate(ledger.subscriptions)
                ],
            )

    async def list_subscribers(self, offset: int = 0, limit: int = -1) -> list[str]:
        async with self.db.execute(
            "SELECT owner FROM subscriber_ledgers ORDER BY created_at, owner LIMIT ? OFFSET ?",
            (limit, offset),
        ) as cur:
            return [row["owner"] async for row in cur]

    # ── Capacity ───────────────────────────────────────────

    async def ensure_capacity(
        self, payer: str, current: int, needed: int, record_bytes: int,
    ) -> int:
        """Grow a list's funded capacity to `needed` slots, charging `payer`.

        Returns the resulting capacity. Growth is exact: a list of N items
        is always funded for at least N slots.
        """
        if needed <= current:
            return current
        fee = (needed - current) * record_bytes * self._storage_fee_per_byte
        if fee > 0:
            async with self.transaction():
                balance = await self.get_balance(payer, FEE_ASSET)
                if balance < fee:
                    raise ValidationError(
                        ErrorCode.STORAGE_FUNDING_FAILED,
                        f"{payer[:16]} needs {fee} {FEE_ASSET}, holds {balance}",
                    )
                await self._move(FEE_ASSET, payer, STORAGE_RESERVE_ACCOUNT, fee)
            log.debug(
                "Grew capacity %d -> %d for %s (fee %d)", current, needed, payer[:16], fee,
            )
        return needed

    # ── Balance book ───────────────────────────────────────

    async def get_balance(self, account: str, asset: str) -> int:
        async with self.db.execute(
            "SELECT amount FROM balances WHERE account=? AND asset=?", (account, asset)
        ) as cur:
            row = await cur.fetchone()
            return int(row["amount"]) if row else 0

    async def credit(self, account: str, asset: str, amount: int) -> int:
        """Mint `amount` into an account. Development and test funding only."""
        if amount <= 0:
            raise ValidationError(ErrorCode.AMOUNT_TOO_SMALL)
        async with self.transaction():
            balance = await self.get_balance(account, asset) + amount
            await self._set_balance(account, asset, balance)
        return balance

    async def transfer(self, asset: str, source: str, destination: str, amount: int) -> None:
        if amount <= 0:
            raise ValidationError(ErrorCode.AMOUNT_TOO_SMALL)
        async with self.transaction():
            balance = await self.get_balance(source, asset)
            if balance < amount:
                raise ValidationError(
                    ErrorCode.INSUFFICIENT_FUNDS,
                    f"{source[:16]} holds {balance} {asset}, needs {amount}",
                )
            await self._move(asset, source, destination, amount)

    async def _move(self, asset: str, source: str, destination: str, amount: int) -> None:
        await self._set_balance(source, asset, await self.get_balance(source, asset) - amount)
        await self._set_balance(
            destination, asset, await self.get_balance(destination, asset) + amount,
        )

    async def _set_balance(self, account: str, asset: str, amount: int) -> None:
        await self.db.execute(
            "INSERT INTO balances (account, asset, amount) VALUES (?, ?, ?)"
            " ON CONFLICT(account, asset) DO UPDATE SET amount=excluded.amount",
            (account, asset, str(amount)),
        )

    # ── Confidential records ───────────────────────────────

    async def get_confidential_config(self) -> ConfidentialConfigRecord | None:
        async with self.db.execute("SELECT * FROM confidential_config WHERE id=1") as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return ConfidentialConfigRecord(
            authority=row["authority"],
            state=EncryptedState(nonce=row["nonce"], ciphertext=row["ciphertext"]),
            pending_initialize=_opt_int(row["pending_initialize"]),
            pending=_opt_int(row["pending"]),
            paused=bool(row["paused"]),
        )

    async def save_confidential_config(self, record: ConfidentialConfigRecord) -> None:
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO confidential_config"
                " (id, authority, nonce, ciphertext, pending_initialize, pending, paused)"
                " VALUES (1, ?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(id) DO UPDATE SET authority=excluded.authority,"
                " nonce=excluded.nonce, ciphertext=excluded.ciphertext,"
                " pending_initialize=excluded.pending_initialize,"
                " pending=excluded.pending, paused=excluded.paused",
                (
                    record.authority, record.state.nonce, record.state.ciphertext,
                    _opt_str(record.pending_initialize), _opt_str(record.pending),
                    int(record.paused),
                ),
            )

    async def get_confidential_stake(self, owner: str) -> ConfidentialStakeRecord | None:
        async with self.db.execute(
            "SELECT * FROM confidential_stakes WHERE owner=?", (owner,)
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return ConfidentialStakeRecord(
            owner=owner,
            entry_count=row["entry_count"],
            state=EncryptedState(nonce=row["nonce"], ciphertext=row["ciphertext"]),
            pending=_opt_int(row["pending"]),
        )

    async def save_confidential_stake(self, record: ConfidentialStakeRecord) -> None:
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO confidential_stakes (owner, entry_count, nonce, ciphertext, pending)"
                " VALUES (?, ?, ?, ?, ?)"
                " ON CONFLICT(owner) DO UPDATE SET entry_count=excluded.entry_count,"
                " nonce=excluded.nonce, ciphertext=excluded.ciphertext, pending=excluded.pending",
                (
                    record.owner, record.entry_count, record.state.nonce,
                    record.state.ciphertext, _opt_str(record.pending),
                ),
            )

    async def save_computation(self, record: ComputationRecord) -> None:
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO computations (request_id, circuit, owner, amount, argument,"
                " outcome, queued_at) VALUES (?, ?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(request_id) DO UPDATE SET outcome=excluded.outcome, amount=excluded.amount,"
                " finalized_at=CASE WHEN excluded.outcome IS NULL THEN NULL ELSE ? END",
                (
                    str(record.request_id), record.circuit.value, record.owner,
                    str(record.amount), record.argument, record.outcome, _now(), _now(),
                ),
            )

    async def get_computation(self, request_id: int) -> ComputationRecord | None:
        async with self.db.execute(
            "SELECT * FROM computations WHERE request_id=?", (str(request_id),)
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return ComputationRecord(
            request_id=int(row["request_id"]),
            circuit=Circuit(row["circuit"]),
            owner=row["owner"],
            amount=int(row["amount"]),
            argument=row["argument"],
            outcome=row["outcome"],
        )

    # ── Payouts ────────────────────────────────────────────

    async def save_payout(
        self, result: PayoutResult, status: str, due_ts: int | None = None,
    ) -> None:
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO payouts (owner, subscription_id, due_ts, amount_cents, status,"
                " batch_id, error, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    result.owner, result.subscription_id, due_ts, result.amount_cents, status,
                    result.batch_id, result.error, _now(),
                ),
            )

    async def get_payouts(self, owner: str | None = None) -> list[PayoutRecord]:
        if owner is None:
            sql, params = "SELECT * FROM payouts ORDER BY id", ()
        else:
            sql, params = "SELECT * FROM payouts WHERE owner=? ORDER BY id", (owner,)
        async with self.db.execute(sql, params) as cur:
            return [_row_to_payout(row) async for row in cur]

    async def find_unrecorded_payout(
        self, owner: str, subscription_id: int, due_ts: int,
    ) -> PayoutRecord | None:
        """A payout already sent for this billing time but not yet on the ledger."""
        async with self.db.execute(
            "SELECT * FROM payouts WHERE owner=? AND subscription_id=? AND due_ts=?"
            " AND status='unrecorded' ORDER BY id DESC LIMIT 1",
            (owner, subscription_id, due_ts),
        ) as cur:
            row = await cur.fetchone()
        return _row_to_payout(row) if row is not None else None

    async def set_payout_status(self, payout_id: int, status: str) -> None:
        async with self.transaction():
            await self.db.execute(
                "UPDATE payouts SET status=? WHERE id=?", (status, payout_id)
            )

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        owner: str | None = None,
        amount: int | None = None,
        payload: dict | None = None,
    ) -> None:
        async with self.transaction():
            await self.db.execute(
                "INSERT INTO activity_log (event_type, owner, amount, message, payload, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (
                    event_type, owner, _opt_str(amount), message,
                    json.dumps(payload) if payload is not None else None, _now(),
                ),
            )

    async def record_event(self, event: LedgerEvent, message: str | None = None) -> None:
        payload = event.to_dict()
        amount = payload.get("amount", payload.get("principal", payload.get("monthly_price")))
        await self.log_activity(
            event.kind,
            message or event.kind,
            owner=event.owner,
            amount=amount,
            payload=payload,
        )

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log ORDER BY id DESC LIMIT ?", (limit,)
        ) as cur:
            return [
                ActivityRecord(
                    id=row["id"],
                    event_type=row["event_type"],
                    owner=row["owner"],
                    amount=_opt_int(row["amount"]),
                    message=row["message"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]

    async def get_events(self, event_type: str, owner: str | None = None) -> list[dict]:
        """Decoded payloads of persisted ledger events, oldest first."""
        sql = "SELECT payload FROM activity_log WHERE event_type=? AND payload IS NOT NULL"
        params: tuple = (event_type,)
        if owner is not None:
            sql += " AND owner=?"
            params = (event_type, owner)
        async with self.db.execute(sql + " ORDER BY id", params) as cur:
            return [json.loads(row["payload"]) async for row in cur]


# ── Row converters ─────────────────────────────────────────


def _row_to_tranche(row: aiosqlite.Row) -> Tranche:
    return Tranche(
        id=row["tranche_id"],
        principal=int(row["principal"]),
        deposited_at=row["deposited_at"],
        lock_duration=row["lock_duration"],
        lock_end_time=row["lock_end_time"],
        entry_index=int(row["entry_index"]),
        checkpoint_index=int(row["checkpoint_index"]),
        claimed_by_operator=int(row["claimed_by_operator"]),
        claimed_by_subscriber=int(row["claimed_by_subscriber"]),
        unrealized_yield=int(row["unrealized_yield"]),
    )


def _row_to_service(row: aiosqlite.Row) -> SubscriptionService:
    return SubscriptionService(
        id=row["service_id"],
        creator=row["creator"],
        name=row["name"],
        monthly_price=int(row["monthly_price"]),
        details=row["details"],
        logo_url=row["logo_url"],
        provider=row["provider"],
        created_at=row["created_at"],
    )


def _row_to_subscription(row: aiosqlite.Row) -> Subscription:
    return Subscription(
        id=row["subscription_id"],
        service_id=row["service_id"],
        monthly_price=int(row["monthly_price"]),
        started_at=row["started_at"],
        next_billing_time=row["next_billing_time"],
        last_payment_time=row["last_payment_time"],
        pending_cancel_until=row["pending_cancel_until"],
        status=SubscriptionStatus(row["status"]),
        initial_payment_recorded=bool(row["initial_payment_recorded"]),
    )


def _row_to_payout(row: aiosqlite.Row) -> PayoutRecord:
    return PayoutRecord(
        id=row["id"],
        owner=row["owner"],
        subscription_id=row["subscription_id"],
        amount_cents=row["amount_cents"],
        status=row["status"],
        batch_id=row["batch_id"],
        error=row["error"],
        created_at=row["created_at"],
        due_ts=row["due_ts"],
    )
