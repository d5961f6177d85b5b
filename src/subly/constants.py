"""Protocol constants shared by both ledger engines."""

from __future__ import annotations

# ── Accrual ────────────────────────────────────────────

INDEX_SCALE = 1_000_000_000_000  # 1.0 in index fixed-point
BASIS_POINTS_DIVISOR = 10_000
SECONDS_PER_DAY = 86_400
SECONDS_PER_YEAR = 31_536_000
MONTHS_PER_YEAR = 12
DEFAULT_APY_BPS = 1_000  # 10%

# Widened integer bounds
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1
I64_MAX = 2**63 - 1

# ── Locks & billing ────────────────────────────────────

LOCK_OPTIONS_DAYS = (30, 90, 180, 365)
LOCK_OPTIONS = tuple(days * SECONDS_PER_DAY for days in LOCK_OPTIONS_DAYS)
DEFAULT_LOCK_INDEX = 3
BILLING_PERIOD_SECONDS = 30 * SECONDS_PER_DAY

# ── Catalog text bounds ────────────────────────────────

MAX_SERVICE_NAME_LEN = 64
MAX_SERVICE_DETAILS_LEN = 512
MAX_LOGO_URL_LEN = 256
MAX_PROVIDER_LEN = 128
MAX_PAYOUT_RECEIVER_LEN = 256

# ── Storage capacity ───────────────────────────────────

INITIAL_TRANCHE_CAPACITY = 4
INITIAL_SUBSCRIPTION_CAPACITY = 8
INITIAL_CATALOG_CAPACITY = 8
MAX_CONFIDENTIAL_TRANCHES = 16

# Serialized slot sizes used to price list growth
TRANCHE_RECORD_BYTES = 8 + 8 + 8 + 8 + 8 + 16 + 16 + 8 + 8 + 8
SUBSCRIPTION_RECORD_BYTES = 8 + 8 + 8 + 8 + 8 + 8 + 8 + 1 + 1
SERVICE_RECORD_BYTES = (
    8 + 32 + 8 + 8
    + 4 + MAX_SERVICE_NAME_LEN
    + 4 + MAX_SERVICE_DETAILS_LEN
    + 4 + MAX_LOGO_URL_LEN
    + 4 + MAX_PROVIDER_LEN
)

# ── Accounts & assets ──────────────────────────────────

STAKE_ASSET = "USDC"
FEE_ASSET = "XLM"
VAULT_ACCOUNT = "subly:vault"
STORAGE_RESERVE_ACCOUNT = "subly:storage-reserve"
USDC_DECIMALS = 6
MICRO_PER_CENT = 10_000
