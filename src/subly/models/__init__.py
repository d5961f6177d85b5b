"""Data models for the subly ledger."""

from subly.models.config import AppConfig, ConfidentialConfig, PayPalConfig, TransferBackend
from subly.models.confidential import (
    Circuit,
    ComputationOutput,
    ComputationRecord,
    ComputationRequest,
    ComputationStatus,
    ConfidentialConfigRecord,
    ConfidentialStakeRecord,
    EncryptedState,
)
from subly.models.events import (
    ComputationFinalized,
    ComputationQueued,
    LedgerEvent,
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
from subly.models.records import (
    ActivityRecord,
    DueItem,
    PayoutRecord,
    PayoutResult,
    ProcessReport,
)
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

__all__ = [
    "AppConfig", "ConfidentialConfig", "PayPalConfig", "TransferBackend",
    "Circuit", "ComputationOutput", "ComputationRecord", "ComputationRequest", "ComputationStatus",
    "ConfidentialConfigRecord", "ConfidentialStakeRecord", "EncryptedState",
    "ComputationFinalized", "ComputationQueued", "LedgerEvent", "PaymentRecorded",
    "PayoutTargetRegistered", "RewardPoolFunded", "ServiceRegistered", "Staked",
    "SubscriptionActivated", "SubscriptionCancellationScheduled",
    "SubscriptionCancelled", "Unstaked", "YieldClaimed",
    "ActivityRecord", "DueItem", "PayoutRecord", "PayoutResult",
    "ProcessReport",
    "ActivityEntry", "ConfidentialStatusSnapshot", "DashboardSnapshot",
    "GlobalStateSnapshot", "PayoutTargetSnapshot", "ServiceSnapshot",
    "SubscriberSnapshot", "SubscriptionSnapshot", "TrancheSnapshot",
    "UserStakeSnapshot", "YieldSnapshot",
    "AccrualIndexState", "PayoutTarget", "RecipientKind", "ServiceCatalog",
    "SubscriberLedger", "Subscription", "SubscriptionService", "SubscriptionStatus",
    "Tranche", "TrancheLedger",
]
