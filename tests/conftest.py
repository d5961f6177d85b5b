"""Shared fixtures for subly tests."""

from __future__ import annotations

import pytest
from pytest_metadata.plugin import metadata_key

from subly.api.data_api import DataAggregator
from subly.confidential.network import LocalComputationNetwork
from subly.confidential.sealing import StateSealer
from subly.constants import FEE_ASSET, STAKE_ASSET
from subly.daemon import BillingDaemon
from subly.engine.plaintext import LedgerEngine
from subly.models.config import AppConfig, PayPalConfig
from subly.storage.sqlite import SQLiteLedgerStore

from tests.mocks import MockPayoutExecutor

TEST_SECRET = "SBWVJTD3F5ETMVWCNI7MM4HUAPUSCUXXMUEJZJTPRWRJGXW2BF4SVQTK"
TEST_PUBLIC = "GDNAG4KFFVF5HCSGRWZIXZNL2SR2KBGJSHW2A6FI6DZI62XF6IBLO4GD"

AUTHORITY = TEST_PUBLIC
ALICE = "GALICEAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
BOB = "GBOBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"

T0 = 1_700_000_000
RATE_BPS = 1_000
STARTING_BALANCE = 1_000_000_000_000  # 1M USDC
POOL_FUNDING = 500_000_000_000


def pytest_configure(config):
    """Add ledger parameters to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Ledger"] = "subly (in-memory SQLite)"
    meta["Annual rate"] = f"{RATE_BPS} bps"
    meta["Authority"] = AUTHORITY


class FakeClock:
    """Deterministic engine clock."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def make_test_config(**overrides) -> AppConfig:
    """Build an AppConfig suitable for testing."""
    defaults = dict(
        authority=AUTHORITY,
        annual_rate_bps=RATE_BPS,
        storage_fee_per_byte=0,
        db_path=":memory:",
        poll_interval=1,
        error_backoff=1,
        lookahead=86_400,
        batch_size=2,
        keypair_secret=TEST_SECRET,
        paypal=PayPalConfig(),
    )
    defaults.update(overrides)
    return AppConfig(**defaults)


@pytest.fixture
def test_config():
    return make_test_config()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteLedgerStore."""
    s = SQLiteLedgerStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def engine(store, clock):
    """Initialized plaintext engine with funded accounts and reward pool."""
    e = LedgerEngine(store, clock=clock)
    await e.initialize(AUTHORITY, RATE_BPS)
    for account in (AUTHORITY, ALICE, BOB):
        await store.credit(account, STAKE_ASSET, STARTING_BALANCE)
        await store.credit(account, FEE_ASSET, STARTING_BALANCE)
    await e.fund_reward_pool(AUTHORITY, POOL_FUNDING)
    return e


@pytest.fixture
def data_api(store, clock):
    return DataAggregator(store, clock=clock)


@pytest.fixture
def sealer():
    return StateSealer.generate()


@pytest.fixture
def network(sealer):
    return LocalComputationNetwork(sealer)


@pytest.fixture
def mock_payout():
    return MockPayoutExecutor(succeed=True)


@pytest.fixture
async def daemon(test_config, store, engine, mock_payout, clock):
    """BillingDaemon wired to the shared store, engine and a recording payout mock."""
    d = BillingDaemon(test_config)
    d.store = store
    d.engine = engine
    d.payout = mock_payout
    d.data_api = DataAggregator(store, clock=clock)
    return d
