"""Tests 79-82: Stellar value transfer against a stubbed Horizon server."""

from __future__ import annotations

from decimal import Decimal

import pytest
from stellar_sdk import Keypair, Network
from stellar_sdk.exceptions import ConnectionError

from subly.constants import FEE_ASSET, STAKE_ASSET, VAULT_ACCOUNT
from subly.errors import ErrorCode, TransferError, ValidationError
from subly.stellar import transfer as transfer_mod
from subly.stellar.transfer import StellarValueTransfer, from_stellar_amount, to_stellar_amount

from tests.conftest import TEST_PUBLIC, TEST_SECRET
from tests.mocks import MockHorizonServer

ISSUER = Keypair.random().public_key
PAYEE = Keypair.random().public_key


@pytest.fixture
def horizon(monkeypatch):
    server = MockHorizonServer()
    monkeypatch.setattr(transfer_mod, "ServerAsync", lambda url, client=None: server)
    monkeypatch.setattr(transfer_mod, "AiohttpClient", lambda: None)
    return server


@pytest.fixture
def stellar():
    return StellarValueTransfer(
        horizon_url="https://horizon.test",
        network_passphrase=Network.TESTNET_NETWORK_PASSPHRASE,
        usdc_issuer=ISSUER,
        signers=[Keypair.from_secret(TEST_SECRET)],
        aliases={VAULT_ACCOUNT: TEST_PUBLIC},
    )


# ── Test 79: Amount conversion ────────────────────────────────────


def test_micro_usdc_to_stellar_amount():
    assert to_stellar_amount(1_500_000, STAKE_ASSET) == "1.5000000"
    assert to_stellar_amount(1, STAKE_ASSET) == "0.0000010"
    assert to_stellar_amount(15, FEE_ASSET) == "0.0000015"


def test_stellar_amount_truncates_extra_digits():
    assert from_stellar_amount("1.2345678", STAKE_ASSET) == 1_234_567
    assert from_stellar_amount("10.0000000", FEE_ASSET) == 100_000_000
    assert from_stellar_amount("0.0000009", STAKE_ASSET) == 0


# ── Test 80: Payments ─────────────────────────────────────────────


async def test_vault_payment_is_signed_and_submitted(stellar, horizon):
    await stellar.transfer(STAKE_ASSET, VAULT_ACCOUNT, PAYEE, 2_500_000)

    assert horizon.loaded == [TEST_PUBLIC]
    envelope = horizon.submitted[0]
    assert len(envelope.signatures) == 1

    op = envelope.transaction.operations[0]
    assert op.destination.account_id == PAYEE
    assert op.asset.code == "USDC"
    assert op.asset.issuer == ISSUER
    assert Decimal(op.amount) == Decimal("2.5")


async def test_fee_asset_is_native(stellar, horizon):
    await stellar.transfer(FEE_ASSET, TEST_PUBLIC, PAYEE, 10_000_000)
    op = horizon.submitted[0].transaction.operations[0]
    assert op.asset.is_native()
    assert Decimal(op.amount) == Decimal("1")


# ── Test 81: Rejections ───────────────────────────────────────────


async def test_transfer_rejections(stellar, horizon):
    with pytest.raises(ValidationError) as exc_info:
        await stellar.transfer(STAKE_ASSET, VAULT_ACCOUNT, PAYEE, 0)
    assert exc_info.value.code is ErrorCode.AMOUNT_TOO_SMALL

    with pytest.raises(TransferError) as exc_info:
        await stellar.transfer(STAKE_ASSET, PAYEE, TEST_PUBLIC, 1_000)
    assert exc_info.value.code is ErrorCode.TRANSFER_FAILED
    assert "no signer" in str(exc_info.value)

    with pytest.raises(TransferError):
        await stellar.transfer("BTC", VAULT_ACCOUNT, PAYEE, 1_000)

    assert horizon.submitted == []


async def test_horizon_errors_become_transfer_errors(stellar, horizon):
    horizon.error = ConnectionError("horizon unreachable")

    with pytest.raises(TransferError) as exc_info:
        await stellar.transfer(STAKE_ASSET, VAULT_ACCOUNT, PAYEE, 1_000)
    assert exc_info.value.code is ErrorCode.TRANSFER_FAILED
    assert "horizon unreachable" in str(exc_info.value)

    with pytest.raises(TransferError):
        await stellar.get_balance(VAULT_ACCOUNT, STAKE_ASSET)


# ── Test 82: Balances ─────────────────────────────────────────────


async def test_balances_by_asset(stellar, horizon):
    horizon.balances = [
        {"asset_type": "native", "balance": "3.0000000"},
        {"asset_type": "credit_alphanum4", "asset_code": "USDC",
         "asset_issuer": Keypair.random().public_key, "balance": "99.0000000"},
        {"asset_type": "credit_alphanum4", "asset_code": "USDC",
         "asset_issuer": ISSUER, "balance": "12.3456789"},
    ]

    assert await stellar.get_balance(VAULT_ACCOUNT, STAKE_ASSET) == 12_345_678
    assert await stellar.get_balance(VAULT_ACCOUNT, FEE_ASSET) == 30_000_000
    assert horizon.loaded == [TEST_PUBLIC, TEST_PUBLIC]

    horizon.balances = []
    assert await stellar.get_balance(PAYEE, STAKE_ASSET) == 0
