"""CLI entry point for the subly ledger and billing daemon."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable

import click
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from stellar_sdk import Keypair

from subly.api.data_api import DataAggregator
from subly.confidential.engine import ConfidentialLedgerEngine
from subly.confidential.network import LocalComputationNetwork
from subly.confidential.sealing import KEY_SIZE, StateSealer
from subly.config import load_config
from subly.constants import DEFAULT_LOCK_INDEX, LOCK_OPTIONS_DAYS, STAKE_ASSET, USDC_DECIMALS
from subly.daemon import BillingDaemon, build_transfer, run_daemon
from subly.engine.plaintext import LedgerEngine
from subly.errors import SublyError
from subly.models.config import AppConfig, TransferBackend
from subly.storage.sqlite import SQLiteLedgerStore


def _usdc(micro: int) -> str:
    scale = 10 ** USDC_DECIMALS
    return f"{micro // scale}.{micro % scale:06d} USDC"


def _require_secret(cfg: AppConfig) -> None:
    """Exit with error if no keypair secret is configured."""
    if not cfg.keypair_secret:
        click.echo("Error: No keypair secret configured.", err=True)
        click.echo("Set SUBLY_SECRET env var or keypair_secret in config.", err=True)
        sys.exit(1)


def _caller(cfg: AppConfig) -> str:
    _require_secret(cfg)
    return Keypair.from_secret(cfg.keypair_secret).public_key


def _run(cfg: AppConfig, action: Callable[[LedgerEngine, SQLiteLedgerStore], Awaitable[Any]]) -> Any:
    """Open the store, build an engine, run `action`, and report ledger errors."""

    async def _go():
        store = SQLiteLedgerStore(cfg.db_path, cfg.storage_fee_per_byte)
        await store.initialize()
        try:
            keypair = Keypair.from_secret(cfg.keypair_secret) if cfg.keypair_secret else None
            engine = LedgerEngine(store, build_transfer(cfg, store, keypair))
            return await action(engine, store)
        finally:
            await store.close()

    try:
        return asyncio.run(_go())
    except SublyError as exc:
        click.echo(f"Error [{exc.code.value}]: {exc}", err=True)
        sys.exit(1)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True))


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """subly - yield-funded subscription ledger."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Administration ─────────────────────────────────────


@cli.command()
@click.option("--rate", "rate_bps", type=int, default=None, help="Annual rate in basis points")
@click.pass_context
def init(ctx: click.Context, rate_bps: int | None) -> None:
    """Initialize the ledger with the configured authority."""
    cfg = load_config(ctx.obj["config_path"])
    authority = cfg.authority or _caller(cfg)
    rate = rate_bps if rate_bps is not None else cfg.annual_rate_bps

    async def _init(engine: LedgerEngine, store: SQLiteLedgerStore):
        return await engine.initialize(authority, rate)

    state = _run(cfg, _init)
    click.echo(f"Ledger initialized (authority {state.authority}, {state.annual_rate_bps} bps)")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show configuration and global ledger state."""
    cfg = load_config(ctx.obj["config_path"])
    click.echo(f"Network:    {cfg.network}")
    click.echo(f"Transfers:  {cfg.transfer_backend.value}")
    click.echo(f"DB path:    {cfg.db_path}")
    click.echo(f"Secret:     {'***configured***' if cfg.keypair_secret else '(not set)'}")
    click.echo(f"PayPal:     {'configured' if cfg.paypal.configured else '(not set)'}")

    async def _status(engine: LedgerEngine, store: SQLiteLedgerStore):
        return await DataAggregator(store).get_global_state()

    state = _run(cfg, _status)
    click.echo("")
    if state is None:
        click.echo("Ledger:     NOT INITIALIZED")
        click.echo("  Run 'subly init' to create it.")
        return
    click.echo(f"Authority:  {state.authority}")
    click.echo(f"Paused:     {state.paused}")
    click.echo(f"Rate:       {state.annual_rate_bps} bps")
    click.echo(f"Principal:  {_usdc(state.total_principal)}")
    click.echo(f"Pool:       {_usdc(state.reward_pool)}")
    click.echo(f"Index:      {state.index}")


@cli.command()
@click.argument("account")
@click.argument("amount", type=int)
@click.option("--asset", default=STAKE_ASSET, help="Asset code (USDC or XLM)")
@click.pass_context
def credit(ctx: click.Context, account: str, amount: int, asset: str) -> None:
    """Mint a development balance into the local balance book."""
    cfg = load_config(ctx.obj["config_path"])
    if cfg.transfer_backend is not TransferBackend.BOOK:
        click.echo("Error: credit only works with the book transfer backend.", err=True)
        sys.exit(1)

    async def _credit(engine: LedgerEngine, store: SQLiteLedgerStore):
        return await store.credit(account, asset, amount)

    balance = _run(cfg, _credit)
    click.echo(f"{account[:16]} now holds {balance} {asset}")


@cli.command()
@click.pass_context
def pause(ctx: click.Context) -> None:
    """Pause every mutating operation (authority only)."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    _run(cfg, lambda engine, store: engine.pause(caller))
    click.echo("Ledger paused")


@cli.command()
@click.pass_context
def unpause(ctx: click.Context) -> None:
    """Resume a paused ledger (authority only)."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    _run(cfg, lambda engine, store: engine.unpause(caller))
    click.echo("Ledger resumed")


# ── Staking ────────────────────────────────────────────


@cli.command()
@click.argument("amount", type=int)
@click.pass_context
def fund(ctx: click.Context, amount: int) -> None:
    """Add AMOUNT micro-USDC to the reward pool."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    pool = _run(cfg, lambda engine, store: engine.fund_reward_pool(caller, amount))
    click.echo(f"Reward pool: {_usdc(pool)}")


@cli.command()
@click.argument("amount", type=int)
@click.option(
    "--lock", "lock_option", type=click.IntRange(0, len(LOCK_OPTIONS_DAYS) - 1),
    default=DEFAULT_LOCK_INDEX,
    help="Lock option: " + ", ".join(f"{i}={d}d" for i, d in enumerate(LOCK_OPTIONS_DAYS)),
)
@click.pass_context
def stake(ctx: click.Context, amount: int, lock_option: int) -> None:
    """Stake AMOUNT micro-USDC into a new tranche."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    tranche_id = _run(cfg, lambda engine, store: engine.stake(caller, amount, lock_option))
    click.echo(
        f"Staked {_usdc(amount)} in tranche {tranche_id} "
        f"(locked {LOCK_OPTIONS_DAYS[lock_option]} days)"
    )


@cli.command()
@click.option("--amount", type=int, default=0, help="Amount to claim (0 = everything available)")
@click.option("--operator", "owner", default=None, help="Claim OWNER's yield as the operator")
@click.pass_context
def claim(ctx: click.Context, amount: int, owner: str | None) -> None:
    """Claim accrued yield."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)

    async def _claim(engine: LedgerEngine, store: SQLiteLedgerStore):
        if owner is not None:
            return await engine.claim_operator(caller, owner, amount)
        return await engine.claim_subscriber(caller, amount)

    claimed = _run(cfg, _claim)
    click.echo(f"Claimed {_usdc(claimed)}")


@cli.command()
@click.argument("tranche_id", type=int)
@click.pass_context
def unstake(ctx: click.Context, tranche_id: int) -> None:
    """Withdraw a matured, fully-claimed tranche."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    principal = _run(cfg, lambda engine, store: engine.unstake(caller, tranche_id))
    click.echo(f"Unstaked tranche {tranche_id}: {_usdc(principal)}")


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Settle accrued yield into your tranches and show a summary."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    snapshot = _run(cfg, lambda engine, store: engine.sync_yield(caller))
    _echo_json(snapshot.to_dict())


# ── Subscriptions ──────────────────────────────────────


@cli.command("register-service")
@click.option("--name", required=True)
@click.option("--price", type=int, required=True, help="Monthly price in micro-USDC")
@click.option("--details", default="")
@click.option("--logo-url", default="")
@click.option("--provider", default="")
@click.pass_context
def register_service(
    ctx: click.Context, name: str, price: int, details: str, logo_url: str, provider: str,
) -> None:
    """Append a service to the catalog."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    service_id = _run(
        cfg,
        lambda engine, store: engine.register_service(
            caller, name, price, details, logo_url, provider,
        ),
    )
    click.echo(f"Registered service {service_id}: {name} ({_usdc(price)}/month)")


@cli.command()
@click.option("--available", is_flag=True, help="Only services you can still subscribe to")
@click.pass_context
def services(ctx: click.Context, available: bool) -> None:
    """List catalog services."""
    cfg = load_config(ctx.obj["config_path"])
    owner = _caller(cfg) if available else None

    async def _services(engine: LedgerEngine, store: SQLiteLedgerStore):
        data_api = DataAggregator(store)
        if owner is not None:
            return await data_api.get_available_services(owner)
        return await data_api.get_catalog()

    listing = _run(cfg, _services)
    if not listing:
        click.echo("No services.")
        return
    for s in listing:
        click.echo(f"{s.id:>4}  {s.name:<32} {_usdc(s.monthly_price):>20}  {s.provider}")


@cli.command()
@click.argument("service_id", type=int)
@click.pass_context
def subscribe(ctx: click.Context, service_id: int) -> None:
    """Subscribe to SERVICE_ID within your monthly yield budget."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    sub_id = _run(cfg, lambda engine, store: engine.subscribe(caller, service_id))
    click.echo(f"Subscribed (subscription {sub_id})")


@cli.command()
@click.argument("subscription_id", type=int)
@click.pass_context
def unsubscribe(ctx: click.Context, subscription_id: int) -> None:
    """Cancel a subscription at the end of its billing period."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    until = _run(cfg, lambda engine, store: engine.unsubscribe(caller, subscription_id))
    click.echo(f"Subscription {subscription_id} ends at {until}")


@cli.command("payout-target")
@click.argument("kind", type=click.Choice(["EMAIL", "PHONE", "PAYPAL_ID"], case_sensitive=False))
@click.argument("receiver")
@click.pass_context
def payout_target(ctx: click.Context, kind: str, receiver: str) -> None:
    """Register where your subscription providers get paid."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    _run(cfg, lambda engine, store: engine.register_payout_target(caller, kind, receiver))
    click.echo(f"Payout target set: {kind.upper()} {receiver.strip()}")


@cli.command("record-payment")
@click.argument("owner")
@click.argument("subscription_id", type=int)
@click.option("--payment-time", type=int, default=None, help="Unix time of the payment")
@click.pass_context
def record_payment(
    ctx: click.Context, owner: str, subscription_id: int, payment_time: int | None,
) -> None:
    """Record a provider payment for OWNER's subscription (authority only)."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    result = _run(
        cfg,
        lambda engine, store: engine.record_payment(caller, owner, subscription_id, payment_time),
    )
    click.echo(f"Payment recorded (status {result.label})")


# ── Confidential ───────────────────────────────────────


def _sealer(cfg: AppConfig) -> StateSealer:
    """Exit with error if no valid sealing key is configured."""
    if not cfg.confidential.sealing_key:
        click.echo("Error: No sealing key configured.", err=True)
        click.echo("Set SUBLY_SEALING_KEY env var or [confidential] sealing_key in config.", err=True)
        sys.exit(1)
    try:
        return StateSealer.from_hex(cfg.confidential.sealing_key)
    except ValueError as exc:
        click.echo(f"Error: Invalid sealing key: {exc}", err=True)
        sys.exit(1)


def _run_confidential(
    cfg: AppConfig,
    action: Callable[[ConfidentialLedgerEngine, LocalComputationNetwork], Awaitable[Any]],
) -> Any:
    """Queue a confidential request and wait for its callback to land."""
    sealer = _sealer(cfg)

    async def _go():
        store = SQLiteLedgerStore(cfg.db_path, cfg.storage_fee_per_byte)
        await store.initialize()
        try:
            keypair = Keypair.from_secret(cfg.keypair_secret) if cfg.keypair_secret else None
            network = LocalComputationNetwork(sealer)
            engine = ConfidentialLedgerEngine(store, network, build_transfer(cfg, store, keypair))
            result = await action(engine, network)
            await network.drain()
            return result, network.callback_errors
        finally:
            await store.close()

    try:
        result, errors = asyncio.run(_go())
    except SublyError as exc:
        click.echo(f"Error [{exc.code.value}]: {exc}", err=True)
        sys.exit(1)
    for exc in errors:
        click.echo(f"Error [{exc.code.value}]: {exc}", err=True)
    if errors:
        sys.exit(1)
    return result


@cli.group()
def confidential() -> None:
    """Stake over sealed state through the local computation network."""


@confidential.command()
def keygen() -> None:
    """Print a fresh hex sealing key."""
    click.echo(AESGCM.generate_key(bit_length=KEY_SIZE * 8).hex())


@confidential.command("init")
@click.pass_context
def confidential_init(ctx: click.Context) -> None:
    """Initialize the sealed global state."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    authority = cfg.authority or caller
    request_id = _run_confidential(
        cfg, lambda engine, network: engine.initialize(caller, authority),
    )
    click.echo(f"Confidential ledger initialized (request {request_id})")


@confidential.command("stake")
@click.argument("amount", type=int)
@click.option(
    "--lock", "lock_option", type=click.IntRange(0, len(LOCK_OPTIONS_DAYS) - 1),
    default=DEFAULT_LOCK_INDEX,
)
@click.pass_context
def confidential_stake(ctx: click.Context, amount: int, lock_option: int) -> None:
    """Escrow AMOUNT micro-USDC and place a sealed tranche."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    request_id = _run_confidential(
        cfg, lambda engine, network: engine.stake(caller, amount, lock_option),
    )
    click.echo(f"Confidential stake of {_usdc(amount)} applied (request {request_id})")


@confidential.command("unstake")
@click.argument("tranche_id", type=int)
@click.pass_context
def confidential_unstake(ctx: click.Context, tranche_id: int) -> None:
    """Withdraw a matured sealed tranche."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)
    request_id = _run_confidential(
        cfg, lambda engine, network: engine.unstake(caller, tranche_id),
    )
    click.echo(f"Confidential unstake of tranche {tranche_id} applied (request {request_id})")


@confidential.command("status")
@click.pass_context
def confidential_status(ctx: click.Context) -> None:
    """Show your sealed tranches, decrypted locally."""
    cfg = load_config(ctx.obj["config_path"])
    caller = _caller(cfg)

    async def _status(engine: ConfidentialLedgerEngine, network: LocalComputationNetwork):
        stake = await engine.get_stake_record(caller)
        status = await DataAggregator(engine.store).get_confidential_status(caller)
        return status, network.open_ledger(stake.state if stake else None, caller)

    status, ledger = _run_confidential(cfg, _status)
    click.echo(f"Initialized: {status.initialized}")
    click.echo(f"Pending:     {status.config_pending or status.stake_pending}")
    click.echo(f"Entries:     {status.entry_count}")
    for t in ledger.tranches:
        click.echo(f"  tranche {t.id:<4} {_usdc(t.principal):>20}  unlocks at {t.lock_end_time}")


# ── Billing ────────────────────────────────────────────


@cli.command()
@click.option("--lookahead", type=int, default=None, help="Seconds ahead that count as due")
@click.pass_context
def due(ctx: click.Context, lookahead: int | None) -> None:
    """List subscriptions needing payment."""
    cfg = load_config(ctx.obj["config_path"])
    window = cfg.lookahead if lookahead is None else lookahead
    items = _run(cfg, lambda engine, store: engine.find_due_subscriptions(window))
    if not items:
        click.echo("Nothing due.")
        return
    for item in items:
        click.echo(
            f"{item.owner[:16]}  sub {item.subscription_id:<4} {item.service_name:<24} "
            f"{_usdc(item.monthly_price):>20}  -> {item.recipient_kind}:{item.receiver}"
        )


@cli.command()
@click.pass_context
def process(ctx: click.Context) -> None:
    """Run a single billing pass: pay due items and record them."""
    cfg = load_config(ctx.obj["config_path"])
    _require_secret(cfg)

    async def _process():
        daemon = BillingDaemon(cfg)
        await daemon.store.initialize()
        try:
            return await daemon.process_once()
        finally:
            await daemon.payout.close()
            await daemon.store.close()

    try:
        report = asyncio.run(_process())
    except SublyError as exc:
        click.echo(f"Error [{exc.code.value}]: {exc}", err=True)
        sys.exit(1)

    click.echo(
        f"Scanned {report.ledgers_scanned} ledgers: {report.due} due, {report.paid} paid, "
        f"{report.skipped} skipped, {report.recorded} recorded, {report.failed} failed"
    )
    for error in report.errors:
        click.echo(f"  {error}", err=True)


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the billing daemon."""
    cfg = load_config(ctx.obj["config_path"])
    _require_secret(cfg)

    click.echo(f"Starting subly billing daemon (every {cfg.poll_interval}s)")
    asyncio.run(run_daemon(cfg))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
