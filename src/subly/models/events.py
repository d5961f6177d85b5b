"""Ledger events emitted by the engines and persisted to the activity log."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class LedgerEvent:
    """Base for all emitted events."""

    owner: str
    timestamp: int

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Staked(LedgerEvent):
    tranche_id: int
    amount: int
    lock_end_time: int


@dataclass(frozen=True)
class YieldClaimed(LedgerEvent):
    """Emitted by both claim paths; role is "operator" or "subscriber"."""

    role: str
    amount: int
    destination: str


@dataclass(frozen=True)
class Unstaked(LedgerEvent):
    tranche_id: int
    principal: int


@dataclass(frozen=True)
class RewardPoolFunded(LedgerEvent):
    amount: int
    reward_pool: int  # balance after funding


@dataclass(frozen=True)
class ServiceRegistered(LedgerEvent):
    service_id: int
    name: str
    monthly_price: int


@dataclass(frozen=True)
class SubscriptionActivated(LedgerEvent):
    subscription_id: int
    service_id: int
    monthly_price: int
    next_billing_time: int
    recipient_kind: str
    receiver: str


@dataclass(frozen=True)
class SubscriptionCancellationScheduled(LedgerEvent):
    subscription_id: int
    service_id: int
    monthly_price: int
    pending_cancel_until: int


@dataclass(frozen=True)
class SubscriptionCancelled(LedgerEvent):
    """A pending cancellation matured during refresh."""

    subscription_id: int
    service_id: int
    monthly_price: int


@dataclass(frozen=True)
class PaymentRecorded(LedgerEvent):
    operator: str
    subscription_id: int
    status: str  # ACTIVE / PENDING_CANCELLATION / CANCELLED
    paid_at: int


@dataclass(frozen=True)
class PayoutTargetRegistered(LedgerEvent):
    recipient_kind: str
    receiver: str


@dataclass(frozen=True)
class ComputationQueued(LedgerEvent):
    request_id: int
    circuit: str


@dataclass(frozen=True)
class ComputationFinalized(LedgerEvent):
    request_id: int
    circuit: str
    outcome: str  # applied / aborted / rejected
