"""AES-256-GCM sealing of confidential ledger state.

Sealed blobs are opaque to the ledger; only the computation network holds
the key. Every seal draws a fresh random 12-byte nonce, so re-sealing the
same plaintext never yields the same bytes.
"""

from __future__ import annotations

import json
import os
from typing import Any

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from subly.models.confidential import EncryptedState

NONCE_SIZE = 12
KEY_SIZE = 32
AAD_DOMAIN_TAG = b"subly/confidential/v1"
CONFIG_LABEL = "config"


class StateSealer:
    """Encrypts and decrypts JSON payloads bound to a record label."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"sealing key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(key)

    @classmethod
    def generate(cls) -> StateSealer:
        return cls(AESGCM.generate_key(bit_length=KEY_SIZE * 8))

    @classmethod
    def from_hex(cls, key_hex: str) -> StateSealer:
        return cls(bytes.fromhex(key_hex))

    def seal(self, payload: dict[str, Any], label: str) -> EncryptedState:
        nonce = os.urandom(NONCE_SIZE)
        plaintext = json.dumps(payload, sort_keys=True).encode("utf-8")
        ciphertext = self._aead.encrypt(nonce, plaintext, AAD_DOMAIN_TAG + label.encode("utf-8"))
        return EncryptedState(nonce=nonce, ciphertext=ciphertext)

    def unseal(self, state: EncryptedState, label: str) -> dict[str, Any]:
        """Decrypt `state`. Raises cryptography's InvalidTag on tampering."""
        plaintext = self._aead.decrypt(
            state.nonce, state.ciphertext, AAD_DOMAIN_TAG + label.encode("utf-8"),
        )
        return json.loads(plaintext)


def stake_label(owner: str) -> str:
    return f"stake:{owner}"
