"""Operation results and persisted record types."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DueItem:
    """A subscription payment due for the downstream payout executor."""

    owner: str
    subscription_id: int
    service_id: int
    service_name: str
    monthly_price: int  # micro-USDC
    recipient_kind: str
    receiver: str
    due_ts: int
    initial_payment_recorded: bool


@dataclass
class PayoutResult:
    """Result of a single provider payout attempt."""

    success: bool
    owner: str
    subscription_id: int
    amount_cents: int = 0
    batch_id: str | None = None
    skipped: bool = False  # no credentials configured
    error: str | None = None


@dataclass
class ProcessReport:
    """Summary of one billing-daemon scan."""

    started_at: int
    ledgers_scanned: int = 0
    due: int = 0
    paid: int = 0
    recorded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class PayoutRecord:
    """A payout attempt as persisted in the store."""

    id: int
    owner: str
    subscription_id: int
    amount_cents: int
    status: str  # paid / skipped / failed / unrecorded
    batch_id: str | None = None
    error: str | None = None
    created_at: str = ""
    due_ts: int | None = None


@dataclass
class ActivityRecord:
    """A single activity log entry."""

    id: int
    event_type: str
    owner: str | None
    amount: int | None
    message: str
    created_at: str
