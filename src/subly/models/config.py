"""Configuration models for the ledger, daemon and integrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from subly.constants import DEFAULT_APY_BPS


class TransferBackend(str, Enum):
    """Where value transfers are settled."""

    BOOK = "book"  # SQLite balance book, atomic with ledger writes
    STELLAR = "stellar"  # Stellar payments via Horizon


@dataclass
class PayPalConfig:
    """PayPal Payouts API credentials and endpoint."""

    client_id: str = ""
    client_secret: str = ""
    base_url: str = "https://api-m.sandbox.paypal.com"
    currency: str = "USD"
    timeout: int = 30  # seconds

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass
class ConfidentialConfig:
    """Local computation network settings for the confidential engine."""

    sealing_key: str = ""  # hex-encoded 32-byte AES-GCM key


@dataclass
class AppConfig:
    """Complete application configuration."""

    # Ledger
    authority: str = ""  # operator address, defaults to the keypair address
    annual_rate_bps: int = DEFAULT_APY_BPS
    storage_fee_per_byte: int = 6_960  # fee-asset units per byte of list growth

    # Storage
    db_path: str = "~/.subly/ledger.db"

    # Daemon
    poll_interval: int = 300  # seconds between billing scans
    error_backoff: int = 30  # seconds
    lookahead: int = 86_400  # seconds ahead of now that count as due
    batch_size: int = 16  # subscriber ledgers per scan chunk
    log_level: str = "info"

    # Stellar
    network: str = "testnet"
    horizon_url: str = "https://horizon-testnet.stellar.org"
    network_passphrase: str = "Test SDF Network ; September 2015"
    keypair_secret: str = ""  # loaded from env var SUBLY_SECRET
    usdc_issuer: str = ""
    transfer_backend: TransferBackend = TransferBackend.BOOK

    # Integrations
    paypal: PayPalConfig = field(default_factory=PayPalConfig)
    confidential: ConfidentialConfig = field(default_factory=ConfidentialConfig)
