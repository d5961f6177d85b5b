"""JSON-serializable snapshot models for the Data API."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


def _to_dict(obj: Any) -> dict:
    """Recursively convert a dataclass to a plain dict."""
    return asdict(obj)


# ---------------------------------------------------------------------------
# Staking
# ---------------------------------------------------------------------------


@dataclass
class YieldSnapshot:
    owner: str
    total_principal: int
    unrealized_yield: int
    generated_yield: int
    claimed_by_operator: int
    claimed_by_subscriber: int
    tranche_count: int
    last_update: int

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class TrancheSnapshot:
    id: int
    principal: int
    deposited_at: int
    lock_end_time: int
    locked: bool
    unrealized_yield: int
    claimed_by_operator: int
    claimed_by_subscriber: int


@dataclass
class UserStakeSnapshot:
    owner: str
    total_principal: int
    available_for_operator: int
    available_for_subscriber: int
    monthly_budget: int
    tranches: list[TrancheSnapshot] = field(default_factory=list)

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class GlobalStateSnapshot:
    authority: str
    total_principal: int
    reward_pool: int
    index: int
    annual_rate_bps: int
    last_update_time: int
    paused: bool

    def to_dict(self) -> dict:
        return _to_dict(self)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@dataclass
class ServiceSnapshot:
    id: int
    name: str
    monthly_price: int
    provider: str
    details: str
    logo_url: str


@dataclass
class SubscriptionSnapshot:
    id: int
    service_id: int
    service_name: str
    monthly_price: int
    status: str
    next_billing_time: int
    pending_cancel_until: int
    last_payment_time: int


@dataclass
class SubscriberSnapshot:
    owner: str
    monthly_budget: int
    active_commitment: int
    pending_commitment: int
    available_budget: int
    payout_configured: bool
    subscriptions: list[SubscriptionSnapshot] = field(default_factory=list)

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class PayoutTargetSnapshot:
    owner: str
    configured: bool
    recipient_kind: str | None
    receiver: str


# ---------------------------------------------------------------------------
# Confidential & dashboard
# ---------------------------------------------------------------------------


@dataclass
class ConfidentialStatusSnapshot:
    owner: str
    initialized: bool
    config_pending: bool
    stake_pending: bool
    entry_count: int


@dataclass
class ActivityEntry:
    event_type: str
    owner: str | None
    amount: int | None
    message: str
    created_at: str


@dataclass
class DashboardSnapshot:
    state: GlobalStateSnapshot
    stakers: int
    subscribers: int
    services: int
    active_subscriptions: int
    recent_activity: list[ActivityEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return _to_dict(self)
