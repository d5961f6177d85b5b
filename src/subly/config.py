"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from subly.models.config import AppConfig, ConfidentialConfig, PayPalConfig, TransferBackend


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "SUBLY_",
) -> AppConfig:
    """Load configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (SUBLY_SECRET, etc.)
        2. TOML config file
        3. Defaults from AppConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = AppConfig()

    # ── Ledger section ─────────────────────────────────────
    ledger = raw.get("ledger", {})
    if v := ledger.get("authority"):
        cfg.authority = str(v)
    if (v := ledger.get("annual_rate_bps")) is not None:
        cfg.annual_rate_bps = int(v)
    if (v := ledger.get("storage_fee_per_byte")) is not None:
        cfg.storage_fee_per_byte = int(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── Daemon section ─────────────────────────────────────
    daemon = raw.get("daemon", {})
    if v := daemon.get("poll_interval"):
        cfg.poll_interval = int(v)
    if v := daemon.get("error_backoff"):
        cfg.error_backoff = int(v)
    if (v := daemon.get("lookahead")) is not None:
        cfg.lookahead = int(v)
    if v := daemon.get("batch_size"):
        cfg.batch_size = int(v)
    if v := daemon.get("log_level"):
        cfg.log_level = str(v)

    # ── Stellar section ────────────────────────────────────
    stellar = raw.get("stellar", {})
    if v := stellar.get("network"):
        cfg.network = str(v)
    if v := stellar.get("horizon_url"):
        cfg.horizon_url = str(v)
    if v := stellar.get("network_passphrase"):
        cfg.network_passphrase = str(v)
    if v := stellar.get("keypair_secret"):
        cfg.keypair_secret = str(v)
    if v := stellar.get("usdc_issuer"):
        cfg.usdc_issuer = str(v)
    if v := stellar.get("transfer_backend"):
        cfg.transfer_backend = TransferBackend(v)

    # ── PayPal section ─────────────────────────────────────
    paypal = raw.get("paypal", {})
    cfg.paypal = PayPalConfig(
        client_id=paypal.get("client_id", ""),
        client_secret=paypal.get("client_secret", ""),
        base_url=paypal.get("base_url", PayPalConfig.base_url),
        currency=paypal.get("currency", PayPalConfig.currency),
        timeout=paypal.get("timeout", PayPalConfig.timeout),
    )

    # ── Confidential section ───────────────────────────────
    confidential = raw.get("confidential", {})
    cfg.confidential = ConfidentialConfig(sealing_key=confidential.get("sealing_key", ""))

    # ── Environment variable overrides (highest priority) ──
    if secret := os.environ.get(f"{env_prefix}SECRET"):
        cfg.keypair_secret = secret
    if authority := os.environ.get(f"{env_prefix}AUTHORITY"):
        cfg.authority = authority
    if db_path := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db_path
    if client_id := os.environ.get(f"{env_prefix}PAYPAL_CLIENT_ID"):
        cfg.paypal.client_id = client_id
    if client_secret := os.environ.get(f"{env_prefix}PAYPAL_CLIENT_SECRET"):
        cfg.paypal.client_secret = client_secret
    if base_url := os.environ.get(f"{env_prefix}PAYPAL_BASE_URL"):
        cfg.paypal.base_url = base_url
    if sealing_key := os.environ.get(f"{env_prefix}SEALING_KEY"):
        cfg.confidential.sealing_key = sealing_key

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
