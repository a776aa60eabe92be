#!/usr/bin/env python3
"""Solana Trade Journal - ingestion daemon and operator CLI."""
import signal
import sys
import threading
from types import SimpleNamespace
from typing import Any, Dict, Optional

import click
from rich.table import Table

from api_client import SolanaTrackerClient
from config_loader import ConfigError, load_config, get_db_path, get_api_key, get_api_settings, get_ingestion_settings
from database import Database, DuplicateWalletError
from health_server import HealthServer, get_health_status
from ingestion_gate import IngestionGate
from pnl import PositionAggregator, summarize_positions
from scheduler import IngestionScheduler
from trade_fetcher import WalletTradeFetcher
from utils import (
    InvalidWalletAddressError,
    console,
    format_decimal,
    format_sol,
    format_time_ago,
    setup_logging,
    truncate_address,
    validate_wallet_address,
)

# Global shutdown event for graceful termination
shutdown_event = threading.Event()


def signal_handler(signum: int, frame) -> None:
    """Handle shutdown signals gracefully."""
    signal_name = signal.Signals(signum).name
    console.print(f"\n[bold yellow]Received {signal_name}, shutting down...[/bold yellow]")
    shutdown_event.set()


def build_components(config: Dict[str, Any], db: Optional[Database] = None) -> SimpleNamespace:
    """Wire storage, client, gate, fetcher and scheduler from config."""
    api = get_api_settings(config)
    ingestion = get_ingestion_settings(config)
    db = db or Database(get_db_path(config))
    client = SolanaTrackerClient(
        api_key=get_api_key(config),
        base_url=api["base_url"],
        max_retries=int(api["max_retries"]),
        min_wait=float(api["min_wait"]),
        max_wait=float(api["max_wait"]),
        timeout=float(api["timeout"]),
    )
    gate = IngestionGate(db)
    fetcher = WalletTradeFetcher(
        client,
        gate,
        max_pages=int(ingestion["max_pages"]),
        page_delay=float(ingestion["page_delay"]),
    )
    scheduler = IngestionScheduler(
        db,
        fetcher,
        interval_seconds=float(ingestion["interval_seconds"]),
        wallet_delay=float(ingestion["wallet_delay"]),
        max_rate_limit_wait=float(api["max_rate_limit_wait"]),
        health_status=get_health_status(),
    )
    return SimpleNamespace(db=db, client=client, gate=gate, fetcher=fetcher, scheduler=scheduler)


CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'])


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option('--config', '-c', type=click.Path(), default=None,
              help='Path to config file (optional, uses config.yaml by default)')
@click.pass_context
def cli(ctx, config):
    """Solana Trade Journal - ingest on-chain swaps into your journal."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    try:
        ctx.obj['config'] = load_config(config)
    except ConfigError as e:
        console.print(f"[red]Config error: {e}[/red]")
        sys.exit(1)

    log_level = ctx.obj['config'].get('reporting', {}).get('log_level', 'INFO')
    ctx.obj['logger'] = setup_logging(log_level)


def _open_db(ctx) -> Database:
    return Database(get_db_path(ctx.obj['config']))


def _require_address(address: str) -> str:
    try:
        return validate_wallet_address(address)
    except InvalidWalletAddressError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option('--health-port', type=int, default=None, help='Port for health check server')
@click.option('--startup-run/--no-startup-run', default=None,
              help='Run one ingestion cycle immediately (default from config)')
@click.pass_context
def run(ctx, health_port: Optional[int], startup_run: Optional[bool]):
    """Run the ingestion daemon (every 30 minutes and once at startup)."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    if get_api_key(config) is None:
        logger.warning("No SolanaTracker API key configured; requests may be rejected")

    health_port = health_port if health_port is not None else int(config.get('health', {}).get('port', 8080))
    health_server = HealthServer(port=health_port)
    health_server.start()

    components = build_components(config)
    ingestion = get_ingestion_settings(config)
    run_now = ingestion["run_on_startup"] if startup_run is None else startup_run

    console.print("\n[bold blue]Solana Trade Journal[/bold blue]")
    console.print(f"Database: [cyan]{components.db.db_path}[/cyan]")
    console.print(f"Interval: [cyan]{int(components.scheduler.interval_seconds)}s[/cyan]")
    console.print(f"Health endpoint: [cyan]http://localhost:{health_port}/health[/cyan]\n")

    shutdown_event.clear()
    components.scheduler.start(run_immediately=run_now)
    try:
        while not shutdown_event.wait(1.0):
            pass
    finally:
        components.scheduler.stop()
        components.client.close()
        health_server.stop()
        components.db.close()
        console.print("[bold]Stopped.[/bold]")


@cli.command()
@click.pass_context
def ingest(ctx):
    """Run a single ingestion cycle and print its summary."""
    components = build_components(ctx.obj['config'])
    try:
        summary = components.scheduler.run_ingestion_cycle()
    finally:
        components.client.close()
        components.db.close()

    table = Table(title="Ingestion cycle")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("New trades", str(summary.new_trades))
    table.add_row("Addresses fetched", str(summary.addresses_fetched))
    table.add_row("Wallets processed", str(summary.wallets_processed))
    table.add_row("Wallets failed", str(summary.wallets_failed))
    table.add_row("Duration", f"{summary.duration_seconds:.1f}s")
    console.print(table)
    if summary.aborted:
        console.print(f"[red]Cycle aborted: {summary.error}[/red]")
        sys.exit(1)


@cli.command('fetch-wallet')
@click.argument('address')
@click.option('--user-id', '-u', type=int, required=True, help='Owner of the tracked wallet')
@click.pass_context
def fetch_wallet(ctx, address: str, user_id: int):
    """Fetch trades for one tracked wallet now."""
    address = _require_address(address)
    components = build_components(ctx.obj['config'])
    try:
        wallet = components.db.get_tracked_wallet_by_address(user_id, address)
        if wallet is None:
            console.print(f"[red]Error: user {user_id} does not track {address}[/red]")
            sys.exit(1)
        count = components.fetcher.fetch_trades_for_wallet(wallet)
    finally:
        components.client.close()
        components.db.close()
    console.print(f"Added [green]{count}[/green] new trades for {truncate_address(address)}")


@cli.command('add-user')
@click.argument('username')
@click.pass_context
def add_user(ctx, username: str):
    """Create a journal user."""
    db = _open_db(ctx)
    try:
        user_id = db.create_user(username)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    finally:
        db.close()
    console.print(f"Created user [cyan]{username}[/cyan] (id {user_id})")


@cli.command()
@click.argument('user_id', type=int)
@click.argument('address')
@click.pass_context
def track(ctx, user_id: int, address: str):
    """Track a wallet address for a user."""
    address = _require_address(address)
    db = _open_db(ctx)
    try:
        db.track_wallet(user_id, address)
    except DuplicateWalletError:
        console.print("[yellow]Wallet address already tracked[/yellow]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    finally:
        db.close()
    console.print(f"Tracking [cyan]{truncate_address(address)}[/cyan] for user {user_id}")


@cli.command()
@click.argument('user_id', type=int)
@click.argument('address')
@click.pass_context
def untrack(ctx, user_id: int, address: str):
    """Stop tracking a wallet address."""
    address = _require_address(address)
    db = _open_db(ctx)
    try:
        removed = db.untrack_wallet(user_id, address)
    finally:
        db.close()
    if not removed:
        console.print("[red]Tracked wallet not found[/red]")
        sys.exit(1)
    console.print(f"Stopped tracking [cyan]{truncate_address(address)}[/cyan]")


@cli.command()
@click.argument('user_id', type=int)
@click.pass_context
def wallets(ctx, user_id: int):
    """List a user's tracked wallets."""
    db = _open_db(ctx)
    try:
        rows = db.get_tracked_wallets_by_user(user_id)
    finally:
        db.close()
    if not rows:
        console.print("No tracked wallets.")
        return
    for w in rows:
        console.print(f"  {w.address}  [dim]added {format_time_ago(w.created_at)}[/dim]")


@cli.command()
@click.argument('user_id', type=int)
@click.option('--contract', type=str, default=None, help='Only this token contract address')
@click.option('--active', is_flag=True, help='Only positions still holding tokens')
@click.pass_context
def positions(ctx, user_id: int, contract: Optional[str], active: bool):
    """Show per-token positions and realized P&L."""
    db = _open_db(ctx)
    try:
        aggregator = PositionAggregator(db)
        rows = aggregator.aggregate(user_id, contract)
    finally:
        db.close()
    if active:
        rows = [p for p in rows if p.is_open]

    if not rows:
        console.print("No positions.")
        return

    table = Table(title=f"Positions for user {user_id}")
    table.add_column("Token")
    table.add_column("Remaining", justify="right")
    table.add_column("Spent", justify="right")
    table.add_column("Received", justify="right")
    table.add_column("Avg buy", justify="right")
    table.add_column("Realized P&L", justify="right")
    table.add_column("Last activity")
    for p in rows:
        label = p.token_symbol or truncate_address(p.contract_address)
        pnl = p.realized_pnl_sol
        color = "green" if pnl > 0 else ("red" if pnl < 0 else "white")
        table.add_row(
            label,
            format_decimal(p.remaining_token_amount),
            format_sol(p.total_sol_spent),
            format_sol(p.total_sol_received),
            format_decimal(p.avg_buy_price_sol),
            f"[{color}]{format_sol(pnl)}[/{color}]",
            format_time_ago(p.last_activity_date) if p.last_activity_date else "-",
        )
    console.print(table)

    totals = summarize_positions(rows)
    console.print(
        f"{totals['position_count']} positions, {totals['open_positions']} open, "
        f"realized {format_sol(totals['realized_pnl_sol'])}"
    )


if __name__ == '__main__':
    cli()
