"""Stellar value transfer - settles ledger transfers as Horizon payments."""

from __future__ import annotations

import logging
from decimal import Decimal

from stellar_sdk import Asset, Keypair, ServerAsync, TransactionBuilder
from stellar_sdk.client.aiohttp_client import AiohttpClient
from stellar_sdk.exceptions import BaseHorizonError, ConnectionError, NotFoundError

from subly.constants import FEE_ASSET, STAKE_ASSET, USDC_DECIMALS
from subly.errors import ErrorCode, TransferError, ValidationError

log = logging.getLogger(__name__)

STELLAR_DECIMALS = 7
BASE_FEE = 100  # stroops
TX_TIMEOUT = 30  # seconds

_DECIMALS = {STAKE_ASSET: USDC_DECIMALS, FEE_ASSET: STELLAR_DECIMALS}


def to_stellar_amount(amount: int, asset: str) -> str:
    """Integer base units -> Horizon decimal string ("1.5" for 1_500_000 micro-USDC)."""
    decimals = _DECIMALS[asset]
    value = Decimal(amount).scaleb(-decimals)
    return format(value.quantize(Decimal(1).scaleb(-STELLAR_DECIMALS)), "f")


def from_stellar_amount(balance: str, asset: str) -> int:
    """Horizon balance string -> integer base units (truncating extra digits)."""
    return int(Decimal(balance).scaleb(_DECIMALS[asset]))


class StellarValueTransfer:
    """ValueTransfer backed by Stellar payments.

    Ledger account names (such as the vault) are mapped to Stellar
    addresses through `aliases`; a transfer can only be sent from an
    address whose keypair is in `signers`.
    """

    def __init__(
        self,
        horizon_url: str,
        network_passphrase: str,
        usdc_issuer: str,
        signers: list[Keypair],
        aliases: dict[str, str] | None = None,
    ) -> None:
        self._horizon_url = horizon_url
        self._passphrase = network_passphrase
        self._assets = {
            STAKE_ASSET: Asset("USDC", usdc_issuer),
            FEE_ASSET: Asset.native(),
        }
        self._signers = {kp.public_key: kp for kp in signers}
        self._aliases = aliases or {}

    def resolve(self, account: str) -> str:
        return self._aliases.get(account, account)

    def _asset(self, asset: str) -> Asset:
        if asset not in self._assets:
            raise TransferError(ErrorCode.TRANSFER_FAILED, f"unsupported asset {asset}")
        return self._assets[asset]

    async def transfer(self, asset: str, source: str, destination: str, amount: int) -> None:
        if amount <= 0:
            raise ValidationError(ErrorCode.AMOUNT_TOO_SMALL)
        source_addr = self.resolve(source)
        dest_addr = self.resolve(destination)
        signer = self._signers.get(source_addr)
        if signer is None:
            raise TransferError(ErrorCode.TRANSFER_FAILED, f"no signer for {source_addr[:16]}")
        stellar_asset = self._asset(asset)
        stellar_amount = to_stellar_amount(amount, asset)

        log.info(
            "Sending %s %s from %s to %s", stellar_amount, asset, source_addr[:16], dest_addr[:16],
        )
        try:
            async with ServerAsync(self._horizon_url, client=AiohttpClient()) as server:
                account = await server.load_account(source_addr)
                tx = (
                    TransactionBuilder(account, self._passphrase, base_fee=BASE_FEE)
                    .append_payment_op(
                        destination=dest_addr, asset=stellar_asset, amount=stellar_amount,
                    )
                    .set_timeout(TX_TIMEOUT)
                    .build()
                )
                tx.sign(signer)
                response = await server.submit_transaction(tx)
        except (BaseHorizonError, ConnectionError) as exc:
            log.error("Payment from %s failed: %s", source_addr[:16], exc)
            raise TransferError(ErrorCode.TRANSFER_FAILED, str(exc)) from exc

        log.info("Payment submitted: %s", response.get("hash", "?")[:16])

    async def get_balance(self, account: str, asset: str) -> int:
        address = self.resolve(account)
        stellar_asset = self._asset(asset)
        try:
            async with ServerAsync(self._horizon_url, client=AiohttpClient()) as server:
                data = await server.accounts().account_id(address).call()
        except NotFoundError:
            return 0
        except (BaseHorizonError, ConnectionError) as exc:
            raise TransferError(ErrorCode.TRANSFER_FAILED, str(exc)) from exc

        for balance in data.get("balances", []):
            if stellar_asset.is_native():
                if balance.get("asset_type") == "native":
                    return from_stellar_amount(balance["balance"], asset)
            elif (
                balance.get("asset_code") == stellar_asset.code
                and balance.get("asset_issuer") == stellar_asset.issuer
            ):
                return from_stellar_amount(balance["balance"], asset)
        return 0
