"""Ledger state records shared by the pure core and the engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from subly.constants import (
    DEFAULT_APY_BPS,
    INITIAL_CATALOG_CAPACITY,
    INITIAL_SUBSCRIPTION_CAPACITY,
    INITIAL_TRANCHE_CAPACITY,
    INDEX_SCALE,
)


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PENDING_CANCELLATION = "pending_cancellation"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        """Upper-case label used in emitted events ("PENDING_CANCELLATION")."""
        return self.name


class RecipientKind(str, Enum):
    """PayPal payout recipient types."""

    EMAIL = "EMAIL"
    PHONE = "PHONE"
    PAYPAL_ID = "PAYPAL_ID"


# ---------------------------------------------------------------------------
# Accrual
# ---------------------------------------------------------------------------


@dataclass
class AccrualIndexState:
    """Global singleton: principal, reward pool and the accrual index."""

    authority: str = ""
    total_principal: int = 0
    reward_pool: int = 0
    index: int = INDEX_SCALE  # fixed-point, INDEX_SCALE == 1.0
    annual_rate_bps: int = DEFAULT_APY_BPS
    last_update_time: int = 0
    paused: bool = False


# ---------------------------------------------------------------------------
# Tranches
# ---------------------------------------------------------------------------


@dataclass
class Tranche:
    """One locked deposit with its own lock timer and yield checkpoint."""

    id: int
    principal: int
    deposited_at: int
    lock_duration: int
    lock_end_time: int
    entry_index: int
    checkpoint_index: int
    claimed_by_operator: int = 0
    claimed_by_subscriber: int = 0
    unrealized_yield: int = 0

    @property
    def generated_yield(self) -> int:
        return self.claimed_by_operator + self.claimed_by_subscriber + self.unrealized_yield


@dataclass
class TrancheLedger:
    """Per-owner ordered list of tranches. Created on first stake."""

    owner: str
    total_principal: int = 0
    last_sync_time: int = 0
    next_tranche_id: int = 0
    tranches: list[Tranche] = field(default_factory=list)
    capacity: int = INITIAL_TRANCHE_CAPACITY


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@dataclass
class SubscriptionService:
    """Catalog entry. Immutable once appended."""

    id: int
    creator: str
    name: str
    monthly_price: int
    details: str = ""
    logo_url: str = ""
    provider: str = ""
    created_at: int = 0


@dataclass
class ServiceCatalog:
    """Append-only registry of subscribable services."""

    next_service_id: int = 0
    services: list[SubscriptionService] = field(default_factory=list)
    capacity: int = INITIAL_CATALOG_CAPACITY


@dataclass
class Subscription:
    id: int
    service_id: int
    monthly_price: int  # snapshot at enrollment
    started_at: int
    next_billing_time: int
    last_payment_time: int = 0
    pending_cancel_until: int = 0
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    initial_payment_recorded: bool = False


@dataclass
class PayoutTarget:
    """Where a subscriber's provider payouts are sent."""

    configured: bool = False
    kind: RecipientKind | None = None
    receiver: str = ""


@dataclass
class SubscriberLedger:
    """Per-subscriber subscriptions plus commitment counters."""

    owner: str
    next_subscription_id: int = 0
    active_commitment: int = 0
    pending_commitment: int = 0
    subscriptions: list[Subscription] = field(default_factory=list)
    capacity: int = INITIAL_SUBSCRIPTION_CAPACITY
    payout_target: PayoutTarget = field(default_factory=PayoutTarget)

    @property
    def committed(self) -> int:
        return self.active_commitment + self.pending_commitment
