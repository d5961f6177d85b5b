"""Records and wire types for the confidential (encrypted-state) engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ComputationStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class Circuit(str, Enum):
    """Off-ledger computations the network knows how to run."""

    INITIALIZE = "initialize_subly"
    STAKE = "stake_subly"
    UNSTAKE = "unstake_subly"


@dataclass(frozen=True)
class EncryptedState:
    """Opaque sealed state: AES-GCM nonce plus ciphertext."""

    nonce: bytes = b""
    ciphertext: bytes = b""

    @property
    def blank(self) -> bool:
        return not self.ciphertext


@dataclass
class ConfidentialConfigRecord:
    """Global record whose accrual state is only held encrypted."""

    authority: str
    state: EncryptedState = field(default_factory=EncryptedState)
    pending_initialize: int | None = None
    pending: int | None = None
    paused: bool = False

    @property
    def initialized(self) -> bool:
        return self.pending_initialize is None and not self.state.blank


@dataclass
class ConfidentialStakeRecord:
    """Per-owner encrypted tranche list; only entry_count is public."""

    owner: str
    entry_count: int = 0
    state: EncryptedState = field(default_factory=EncryptedState)
    pending: int | None = None


@dataclass(frozen=True)
class ComputationRequest:
    """A queued computation: sealed inputs plus plaintext arguments."""

    request_id: int
    circuit: Circuit
    owner: str
    config_state: EncryptedState | None = None
    stake_state: EncryptedState | None = None
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ComputationOutput:
    """What the network hands back to a callback."""

    status: ComputationStatus
    config_state: EncryptedState | None = None
    stake_state: EncryptedState | None = None
    revealed: dict[str, int] = field(default_factory=dict)

    @classmethod
    def failure(cls) -> ComputationOutput:
        return cls(status=ComputationStatus.FAILURE)


@dataclass
class ComputationRecord:
    """Plaintext context of a queued request, looked up by its callback."""

    request_id: int
    circuit: Circuit
    owner: str
    amount: int = 0  # escrowed principal for stake requests
    argument: int = 0  # lock option or tranche id
    outcome: str | None = None  # applied / aborted / rejected once finalized
