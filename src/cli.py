"""
CLI entrypoint for the dashboard state layer.

Provides commands for streaming the engine, inspecting the trade ledger,
and the telemetry ring.
"""
import asyncio
from pathlib import Path
from typing import Optional

import typer

from src.cli_output import (
    format_history_row,
    format_log_row,
    format_tick_line,
    new_history_records,
    print_critical_error,
)
from src.config.config import Config, load_config
from src.domain.models import FinalStatus
from src.exceptions import TransportError
from src.monitoring.logger import get_logger, setup_logging
from src.monitoring.performance import calculate_history_metrics, calculate_portfolio_metrics
from src.storage.history_store import HistoryStore, LogStore

app = typer.Typer(
    name="engine-dashboard",
    help="Streaming state reconciliation for the strategy engine dashboard",
    add_completion=False,
)

logger = get_logger(__name__)

__version__ = "1.0.0"


def _load(config_path: Path) -> Config:
    config = load_config(str(config_path))
    monitoring = config.monitoring
    setup_logging(
        monitoring.log_level,
        monitoring.log_format,
        monitoring.log_file,
        max_bytes=monitoring.log_max_bytes,
        backup_count=monitoring.log_backup_count,
    )
    return config


@app.command()
def stream(
    config_path: Path = typer.Option("src/config/config.yaml", "--config", help="Path to config file"),
    seconds: Optional[float] = typer.Option(None, "--seconds", help="Stop after N seconds"),
):
    """
    Connect to the engine and print a status line per reconciliation tick.

    Example:
        python -m src.cli stream --seconds 60
    """
    config = _load(config_path)
    logger.info("Starting stream", url=config.transport.url, environment=config.environment)

    from src.live.engine import ReconciliationEngine

    async def run_stream():
        engine = ReconciliationEngine(config)
        await engine.start()
        newest = engine.history.items[0] if engine.history.items else None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds if seconds else None
        try:
            while deadline is None or loop.time() < deadline:
                await asyncio.sleep(1.0)
                snapshot = engine.snapshot()
                typer.echo(format_tick_line(snapshot))
                for record in new_history_records(snapshot.history, newest):
                    typer.secho(
                        format_history_row(record),
                        fg=typer.colors.GREEN if record.final_status == FinalStatus.FILLED else typer.colors.YELLOW,
                    )
                newest = snapshot.history[0] if snapshot.history else None
        finally:
            await engine.close()

    try:
        asyncio.run(run_stream())
    except KeyboardInterrupt:
        logger.info("Stream stopped by user")
    except Exception as e:
        print_critical_error("stream", e)
        raise typer.Exit(1)


@app.command()
def history(
    config_path: Path = typer.Option("src/config/config.yaml", "--config", help="Path to config file"),
    limit: int = typer.Option(20, "--limit", help="Records to show"),
):
    """Show the locally persisted trade ledger and its analytics."""
    config = _load(config_path)
    store = HistoryStore(config.store.history_path, config.store.history_cap)
    store.restore()

    typer.echo(f"Trade History ({len(store)} records)")
    typer.echo("=" * 60)
    if not store.items:
        typer.echo("No trades recorded yet.")
        return

    for record in store.items[:limit]:
        color = typer.colors.GREEN if record.pnl > 0 else typer.colors.RED if record.pnl < 0 else None
        typer.secho(format_history_row(record), fg=color)

    metrics = calculate_history_metrics(store.items)
    typer.echo("-" * 60)
    typer.echo(f"Trades:        {metrics['total_trades']}")
    typer.echo(f"Win Rate:      {metrics['win_rate']:.1f}%")
    typer.echo(f"Profit Factor: {metrics['profit_factor']:.2f}")
    typer.echo(f"Expectancy:    {metrics['expectancy']:,.2f}")
    typer.echo(f"Best / Worst:  {metrics['best_trade']:,.2f} / {metrics['worst_trade']:,.2f}")
    for symbol, pnl in sorted(metrics["symbol_pnl"].items(), key=lambda kv: kv[1], reverse=True):
        typer.echo(f"  {symbol:<8} {pnl:,.2f}")


@app.command("clear-history")
def clear_history(
    config_path: Path = typer.Option("src/config/config.yaml", "--config", help="Path to config file"),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation"),
):
    """Wipe the trade ledger locally and on the engine's mirror."""
    config = _load(config_path)
    if not yes and not typer.confirm("Clear all trade history?"):
        raise typer.Abort()

    from src.storage.remote_sync import RemoteMirror

    async def run_clear():
        mirror = RemoteMirror(
            config.transport.url,
            headers=config.transport.extra_headers,
            timeout_seconds=config.store.remote_timeout_seconds,
            enabled=config.store.remote_sync_enabled,
        )
        store = HistoryStore(config.store.history_path, config.store.history_cap, mirror=mirror.mirror_history)
        store.restore()
        cleared = len(store)
        store.clear()
        await mirror.drain()
        return cleared

    cleared = asyncio.run(run_clear())
    typer.secho(f"Cleared {cleared} records", fg=typer.colors.YELLOW)


@app.command()
def logs(
    config_path: Path = typer.Option("src/config/config.yaml", "--config", help="Path to config file"),
    limit: int = typer.Option(50, "--limit", help="Lines to show"),
):
    """Show the persisted telemetry ring, newest first."""
    config = _load(config_path)
    store = LogStore(config.store.logs_path, config.store.logs_cap)
    store.restore()

    colors = {"success": typer.colors.GREEN, "warning": typer.colors.YELLOW, "error": typer.colors.RED}
    for entry in store.items[:limit]:
        typer.secho(format_log_row(entry), fg=colors.get(entry.type.value))


@app.command()
def portfolio(
    config_path: Path = typer.Option("src/config/config.yaml", "--config", help="Path to config file"),
    seconds: float = typer.Option(5.0, "--seconds", help="How long to listen before reporting"),
):
    """Listen briefly, then print live exposure for the current positions."""
    config = _load(config_path)

    from src.live.engine import ReconciliationEngine

    async def run_snapshot():
        engine = ReconciliationEngine(config)
        await engine.start()
        try:
            await engine.session.wait_connected(config.transport.handshake_timeout_seconds)
            await asyncio.sleep(seconds)
            return engine.snapshot()
        finally:
            await engine.close()

    try:
        snapshot = asyncio.run(run_snapshot())
    except TransportError as e:
        typer.secho(f"Engine unreachable: {e}", fg=typer.colors.RED)
        raise typer.Exit(1)
    metrics = calculate_portfolio_metrics(snapshot.active_positions, snapshot.account)

    typer.echo(format_tick_line(snapshot))
    typer.echo("=" * 60)
    typer.echo(f"Longs / Shorts: {metrics['active_longs']} / {metrics['active_shorts']}")
    typer.echo(f"Unrealized:     {metrics['total_unrealized_pnl']:,.2f}")
    typer.echo(f"Open PnL:       {metrics['open_pnl']:,.2f}")
    typer.echo(f"Exposure:       ${metrics['exposure']:,.2f} ({metrics['exposure_pct']:.1f}% of equity)")
    for position in snapshot.active_positions:
        pnl_color = typer.colors.GREEN if position.pnl >= 0 else typer.colors.RED
        typer.secho(
            f"  {position.symbol:<7} L{position.layer} {position.type.value:<5} @ {position.entry_price:,.2f} "
            f"| {position.pnl:,.2f} | {position.reason}",
            fg=pnl_color,
        )


def _version_callback(value: bool):
    if value:
        typer.echo(f"Engine Dashboard v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """
    Engine Dashboard

    Keeps a consistent client-side picture of a remote strategy engine.
    """


if __name__ == "__main__":
    app()
