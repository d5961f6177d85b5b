"""Ledger error codes and exception hierarchy.

Validation errors are business outcomes: checked before any mutation and
surfaced verbatim. Integrity errors signal a defect (overflow, replayed
computation result). ComputationAborted reports an external network failure.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    AMOUNT_TOO_SMALL = "AmountTooSmall"
    INVALID_LOCK_OPTION = "InvalidLockOption"
    MATH_OVERFLOW = "MathOverflow"
    PROGRAM_PAUSED = "ProgramPaused"
    NOT_INITIALIZED = "NotInitialized"
    ALREADY_INITIALIZED = "AlreadyInitialized"
    INSUFFICIENT_REWARD_POOL = "InsufficientRewardPool"
    STAKE_LOCKED = "StakeLocked"
    OUTSTANDING_YIELD = "OutstandingYield"
    NOTHING_TO_UNSTAKE = "NothingToUnstake"
    INVALID_TRANCHE = "InvalidTranche"
    NOTHING_TO_CLAIM = "NothingToClaim"
    UNAUTHORIZED_AUTHORITY = "UnauthorizedAuthority"
    STRING_TOO_LONG = "StringTooLong"
    SUBSCRIPTION_NOT_FOUND = "SubscriptionNotFound"
    SUBSCRIPTION_SERVICE_NOT_FOUND = "SubscriptionServiceNotFound"
    SUBSCRIPTION_NOT_ACTIVE = "SubscriptionNotActive"
    SUBSCRIPTION_ALREADY_EXISTS = "SubscriptionAlreadyExists"
    SUBSCRIPTION_BUDGET_EXCEEDED = "SubscriptionBudgetExceeded"
    SUBSCRIPTION_NOT_PAYABLE = "SubscriptionNotPayable"
    INVALID_RECIPIENT_TYPE = "InvalidRecipientType"
    INVALID_RECEIVER = "InvalidReceiver"
    PAYOUT_TARGET_MISSING = "PayoutTargetMissing"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    STORAGE_FUNDING_FAILED = "StorageFundingFailed"
    TRANSFER_FAILED = "TransferFailed"
    ABORTED_COMPUTATION = "AbortedComputation"
    PENDING_COMPUTATION_MISMATCH = "PendingComputationMismatch"
    PENDING_COMPUTATION_IN_PROGRESS = "PendingComputationInProgress"
    COMPUTATION_VALIDATION_FAILED = "ComputationValidationFailed"


MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.AMOUNT_TOO_SMALL: "Amount must be greater than zero",
    ErrorCode.INVALID_LOCK_OPTION: "Invalid lock option",
    ErrorCode.MATH_OVERFLOW: "Math overflow",
    ErrorCode.PROGRAM_PAUSED: "Program is paused",
    ErrorCode.NOT_INITIALIZED: "Ledger has not been initialized",
    ErrorCode.ALREADY_INITIALIZED: "Ledger is already initialized",
    ErrorCode.INSUFFICIENT_REWARD_POOL: "Insufficient reward pool balance",
    ErrorCode.STAKE_LOCKED: "Stake is still locked",
    ErrorCode.OUTSTANDING_YIELD: "Outstanding yield must be claimed before unstaking",
    ErrorCode.NOTHING_TO_UNSTAKE: "No principal available to unstake",
    ErrorCode.INVALID_TRANCHE: "Requested tranche does not exist",
    ErrorCode.NOTHING_TO_CLAIM: "Nothing to claim",
    ErrorCode.UNAUTHORIZED_AUTHORITY: "Unauthorized authority",
    ErrorCode.STRING_TOO_LONG: "Provided string exceeds the allowed length",
    ErrorCode.SUBSCRIPTION_NOT_FOUND: "Subscription not found",
    ErrorCode.SUBSCRIPTION_SERVICE_NOT_FOUND: "Subscription service not found",
    ErrorCode.SUBSCRIPTION_NOT_ACTIVE: "Subscription is not active",
    ErrorCode.SUBSCRIPTION_ALREADY_EXISTS: "Subscription already exists for this service",
    ErrorCode.SUBSCRIPTION_BUDGET_EXCEEDED: "Subscription exceeds the monthly yield budget",
    ErrorCode.SUBSCRIPTION_NOT_PAYABLE: "Subscription cannot accept payments",
    ErrorCode.INVALID_RECIPIENT_TYPE: "Unsupported payout recipient type",
    ErrorCode.INVALID_RECEIVER: "Payout receiver must be non-empty and bounded",
    ErrorCode.PAYOUT_TARGET_MISSING: "Payout target must be registered first",
    ErrorCode.INSUFFICIENT_FUNDS: "Insufficient balance for transfer",
    ErrorCode.STORAGE_FUNDING_FAILED: "Payer cannot fund the required storage capacity",
    ErrorCode.TRANSFER_FAILED: "External value transfer failed",
    ErrorCode.ABORTED_COMPUTATION: "The computation was aborted",
    ErrorCode.PENDING_COMPUTATION_MISMATCH: "Pending computation does not match callback",
    ErrorCode.PENDING_COMPUTATION_IN_PROGRESS: "Another computation is already pending",
    ErrorCode.COMPUTATION_VALIDATION_FAILED: "Computation result failed validation",
}


class SublyError(Exception):
    """Base class for all ledger errors. Always carries an ErrorCode."""

    category = "error"

    def __init__(self, code: ErrorCode, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        message = MESSAGES.get(code, code.value)
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value})"


class ValidationError(SublyError):
    """Bad input or unmet precondition; no state was changed."""

    category = "validation"


class IntegrityError(SublyError):
    """Fatal defect: overflow or a stale/duplicate computation result."""

    category = "integrity"


class ComputationAborted(SublyError):
    """The external computation network reported failure."""

    category = "computation"


class TransferError(SublyError):
    """The external value-transfer service rejected or failed a transfer."""

    category = "transfer"
