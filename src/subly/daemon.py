"""Billing daemon - scans for due subscriptions, pays providers, records payments."""

from __future__ import annotations

import asyncio
import logging
import signal
import time

from stellar_sdk import Keypair

from subly.api.data_api import DataAggregator
from subly.constants import VAULT_ACCOUNT
from subly.engine.plaintext import LedgerEngine
from subly.errors import SublyError
from subly.interfaces.payout import PayoutExecutor
from subly.interfaces.transfer import ValueTransfer
from subly.models.config import AppConfig, TransferBackend
from subly.models.records import DueItem, ProcessReport
from subly.paypal.client import PayPalPayoutClient
from subly.stellar.transfer import StellarValueTransfer
from subly.storage.sqlite import SQLiteLedgerStore

log = logging.getLogger(__name__)

NETWORK_PASSPHRASES = {
    "testnet": "Test SDF Network ; September 2015",
    "mainnet": "Public Global Stellar Network ; September 2015",
}


def build_transfer(cfg: AppConfig, store: SQLiteLedgerStore, keypair: Keypair | None) -> ValueTransfer:
    """Pick the value-transfer backend named in the config."""
    if cfg.transfer_backend is TransferBackend.STELLAR:
        if keypair is None:
            raise ValueError("stellar transfer backend requires a keypair secret")
        return StellarValueTransfer(
            cfg.horizon_url,
            cfg.network_passphrase or NETWORK_PASSPHRASES.get(cfg.network, ""),
            cfg.usdc_issuer,
            signers=[keypair],
            aliases={VAULT_ACCOUNT: keypair.public_key},
        )
    return store


class BillingDaemon:
    """Periodic subscription billing.

    Each pass walks subscriber ledgers in chunks, pays every due item
    through the payout executor and records successful payments on the
    ledger as the authority.
    """

    def __init__(self, cfg: AppConfig) -> None:
        self._cfg = cfg
        self._running = False

        keypair = Keypair.from_secret(cfg.keypair_secret) if cfg.keypair_secret else None
        self.authority = cfg.authority or (keypair.public_key if keypair else "")

        self.store = SQLiteLedgerStore(cfg.db_path, cfg.storage_fee_per_byte)
        self.engine = LedgerEngine(self.store, build_transfer(cfg, self.store, keypair))
        self.payout: PayoutExecutor = PayPalPayoutClient(cfg.paypal)
        self.data_api = DataAggregator(self.store)

    async def start(self) -> None:
        """Initialize components and run the main loop."""
        log.info("Starting subly billing daemon")
        log.info("  Authority: %s", self.authority[:16])
        log.info("  Database: %s", self._cfg.db_path)
        log.info("  Poll interval: %ds, lookahead: %ds", self._cfg.poll_interval, self._cfg.lookahead)

        await self.store.initialize()
        self._running = True
        await self.store.log_activity("daemon_started", "Daemon started")

        try:
            await self._main_loop()
        finally:
            await self.payout.close()
            await self.store.log_activity("daemon_stopped", "Daemon stopped")
            await self.store.close()
            log.info("Daemon shut down cleanly")

    async def stop(self) -> None:
        """Signal the daemon to stop gracefully."""
        log.info("Stop requested")
        self._running = False

    async def _main_loop(self) -> None:
        while self._running:
            try:
                report = await self.process_once()
                if report.due:
                    log.info(
                        "Billing pass: %d due, %d paid, %d skipped, %d recorded, %d failed",
                        report.due, report.paid, report.skipped, report.recorded, report.failed,
                    )
                await asyncio.sleep(self._cfg.poll_interval)

            except asyncio.CancelledError:
                log.info("Main loop cancelled")
                break
            except Exception as exc:
                log.error("Main loop error: %s", exc, exc_info=True)
                await self.store.log_activity("error", str(exc))
                await asyncio.sleep(self._cfg.error_backoff)

    # ── Billing pass ───────────────────────────────────────

    async def process_once(self, now: int | None = None) -> ProcessReport:
        """Run one scan over every subscriber ledger."""
        now = int(time.time()) if now is None else now
        report = ProcessReport(started_at=now)
        batch_size = max(self._cfg.batch_size, 1)

        offset = 0
        while True:
            owners = await self.store.list_subscribers(offset, batch_size)
            if not owners:
                break
            offset += len(owners)
            report.ledgers_scanned += len(owners)

            items = await self.engine.find_due_subscriptions(self._cfg.lookahead, owners, now=now)
            report.due += len(items)
            for item in items:
                await self._handle_due(item, report, now)

        return report

    async def _handle_due(self, item: DueItem, report: ProcessReport, now: int) -> None:
        log.info(
            "Processing subscription %d for %s (%s) due at %d",
            item.subscription_id, item.owner[:16], item.service_name, item.due_ts,
        )
        sent = await self.store.find_unrecorded_payout(
            item.owner, item.subscription_id, item.due_ts,
        )
        if sent is not None:
            log.info(
                "Payout %d already sent for %s/%d, retrying the ledger record only",
                sent.id, item.owner[:16], item.subscription_id,
            )
            if await self._record(item, report, now):
                await self.store.set_payout_status(
                    sent.id, "paid" if sent.batch_id else "skipped",
                )
            return

        result = await self.payout.send_payout(item)
        if not result.success:
            report.failed += 1
            report.errors.append(f"{item.owner[:16]}/{item.subscription_id}: {result.error}")
            await self.store.save_payout(result, "failed", item.due_ts)
            await self.store.log_activity(
                "payout_failed",
                f"Payout for subscription {item.subscription_id} failed: {result.error}",
                owner=item.owner,
                amount=item.monthly_price,
            )
            return

        if result.skipped:
            report.skipped += 1
        else:
            report.paid += 1

        if await self._record(item, report, now):
            status = "skipped" if result.skipped else "paid"
        else:
            status = "unrecorded"
        await self.store.save_payout(result, status, item.due_ts)

    async def _record(self, item: DueItem, report: ProcessReport, now: int) -> bool:
        """Record a sent payout on the ledger as the authority."""
        try:
            await self.engine.record_payment(
                self.authority, item.owner, item.subscription_id, now=now,
            )
        except SublyError as exc:
            log.error(
                "Payout sent but recording failed for %s/%d: %s",
                item.owner[:16], item.subscription_id, exc,
            )
            report.failed += 1
            report.errors.append(f"{item.owner[:16]}/{item.subscription_id}: {exc}")
            return False
        report.recorded += 1
        return True


async def run_daemon(cfg: AppConfig) -> None:
    """Entry point for running the daemon."""
    daemon = BillingDaemon(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()
