"""portfolio-pulse CLI."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import KNOWN_RELAYS, TUNABLE_KEYS, Config, get_config, save_settings
from .errors import PortfolioError
from .quotes.client import QuoteClient
from .scheduler import is_market_open, next_market_close, to_ist
from .service import ImportSummary, PortfolioService, RefreshSummary
from .storage.database import Database

T = TypeVar("T")

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def run_service(config: Config, action: Callable[[PortfolioService], Awaitable[T]]) -> T:
    """Open storage and an HTTP client, run an async action, close both."""

    async def runner() -> T:
        with Database(config) as db:
            async with QuoteClient(config) as client:
                return await action(PortfolioService(config, db, client))

    try:
        return asyncio.run(runner())
    except PortfolioError as e:
        raise click.ClickException(str(e)) from e


def _ist_now() -> datetime:
    return to_ist(datetime.now(timezone.utc))


def _money(value: float) -> str:
    return f"₹{value:,.2f}"


def _signed(value: float, suffix: str = "") -> str:
    style = "green" if value > 0 else "red" if value < 0 else "dim"
    return f"[{style}]{value:+,.2f}{suffix}[/{style}]"


def _print_refresh(summary: RefreshSummary, label: str = "Refresh") -> None:
    if summary.market_closed:
        click.echo(f"{label}: market closed, showing cached prices (use --force to fetch anyway)")
        return
    click.echo(f"{label}: {len(summary.succeeded)} updated, {len(summary.failed)} failed")
    for alert in summary.alerts:
        console.print(f"  [yellow]Alert:[/yellow] {escape(alert.message)}")
    if summary.should_notify:
        console.print("[red]Failed to fetch prices. Cached prices are shown; try again later.[/red]")


def _print_import(summary: ImportSummary) -> None:
    click.echo(f"Detected {summary.sheet_format} statement: {summary.path}")
    click.echo(f"  Imported:   {len(summary.imported)}")
    click.echo(f"  Duplicates: {len(summary.duplicates)}")
    if summary.sold_out:
        click.echo(f"  Sold out:   {', '.join(summary.sold_out)}")
    if summary.skipped_rows:
        click.echo(f"  Skipped rows: {summary.skipped_rows}")
    if summary.unmatched_sells:
        click.echo(f"  Sells with no matching buy: {', '.join(summary.unmatched_sells)}")
    if summary.pending_codes:
        console.print("[yellow]These funds need a scheme code (use 'folio fix-code'):[/yellow]")
        for name in summary.pending_codes:
            click.echo(f"  - {name}")
    if summary.prices:
        _print_refresh(summary.prices, "Prices")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """portfolio-pulse - Indian equity and mutual fund portfolio tracker."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = get_config()
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--no-fetch", is_flag=True, help="Skip fetching live prices for new holdings")
@click.pass_context
def import_cmd(ctx: click.Context, path: Path, no_fetch: bool) -> None:
    """Import a broker, fund-house or exported statement (.csv, .xlsx, .xls)."""
    config = ctx.obj["config"]
    summary = run_service(config, lambda s: s.import_file(path, fetch_prices=not no_fetch))
    _print_import(summary)


@cli.command("export")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output file or directory")
@click.pass_context
def export(ctx: click.Context, output: Path | None) -> None:
    """Export holdings to CSV."""
    config = ctx.obj["config"]
    with Database(config) as db:
        holdings = db.get_holdings()
        if not holdings:
            click.echo("No holdings to export. Use 'import' first.")
            return

    async def action(service: PortfolioService) -> Path:
        return service.export_csv(output)

    path = run_service(config, action)
    click.echo(f"Exported {len(holdings)} holding(s): {path}")


@cli.command("holdings")
@click.pass_context
def holdings_cmd(ctx: click.Context) -> None:
    """List holdings at their latest known prices."""

    async def action(service: PortfolioService):
        return service.stats()

    stats = run_service(ctx.obj["config"], action)
    if not stats.holdings:
        click.echo("No holdings. Use 'import' to add some.")
        return

    table = Table(title="Holdings")
    table.add_column("Symbol", style="cyan")
    table.add_column("Name")
    table.add_column("Qty", justify="right")
    table.add_column("Avg Cost", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Day %", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("Gain", justify="right")
    table.add_column("Gain %", justify="right")

    for v in stats.holdings:
        if v.current_price is None:
            price = "[dim]-[/dim]"
        else:
            price = _money(v.current_price) + (" [dim](cached)[/dim]" if v.is_cached else "")
        symbol = escape(v.symbol) + (" [yellow]*[/yellow]" if v.code_pending else "")
        table.add_row(
            symbol,
            escape(v.name[:40]),
            f"{v.quantity:g}",
            _money(v.average_cost),
            price,
            _signed(v.day_change_percent, "%") if v.day_change_percent is not None else "-",
            _money(v.current_value),
            _signed(v.gain_loss),
            _signed(v.gain_loss_percent, "%"),
        )

    console.print(table)
    if any(v.code_pending for v in stats.holdings):
        console.print("[yellow]*[/yellow] scheme code pending; set it with 'folio fix-code'")


@cli.command("stats")
@click.pass_context
def stats_cmd(ctx: click.Context) -> None:
    """Show portfolio totals and allocation."""

    async def action(service: PortfolioService):
        return service.stats()

    stats = run_service(ctx.obj["config"], action)
    click.echo(f"Invested: {_money(stats.total_invested)}")
    click.echo(f"Current:  {_money(stats.total_current)}")
    console.print(f"Gain:     {_signed(stats.gain_loss)} ({_signed(stats.gain_loss_percent, '%')})")

    for title, allocation in (("Sector", stats.sector_allocation), ("Asset Type", stats.asset_allocation)):
        if not allocation:
            continue
        table = Table(title=f"{title} Allocation")
        table.add_column(title, style="cyan")
        table.add_column("Value", justify="right")
        table.add_column("Weight", justify="right")
        for key, value in sorted(allocation.items(), key=lambda kv: kv[1], reverse=True):
            weight = value / stats.total_current * 100 if stats.total_current else 0
            table.add_row(escape(key), _money(value), f"{weight:.1f}%")
        console.print(table)


@cli.command("refresh")
@click.option("--once", is_flag=True, help="Single pass instead of two")
@click.option("--force", is_flag=True, help="With --once, fetch even when the market is closed")
@click.pass_context
def refresh(ctx: click.Context, once: bool, force: bool) -> None:
    """Fetch live prices for all holdings."""
    config = ctx.obj["config"]
    if once:
        summary = run_service(config, lambda s: s.refresh_prices(forced=force))
        _print_refresh(summary)
        return

    summaries = run_service(config, lambda s: s.manual_refresh())
    for i, summary in enumerate(summaries, 1):
        _print_refresh(summary, f"Pass {i}")


@cli.command("alerts")
@click.option("--all", "show_all", is_flag=True, help="Include alerts already read")
@click.option("--limit", default=10, help="Number of alerts (default: 10)")
@click.option("--mark-read", "mark_read", type=int, help="Mark an alert as read by ID")
@click.pass_context
def alerts(ctx: click.Context, show_all: bool, limit: int, mark_read: int | None) -> None:
    """Show price movement alerts."""
    config = ctx.obj["config"]
    with Database(config) as db:
        if mark_read is not None:
            if not db.mark_alert_read(mark_read):
                raise click.ClickException(f"No alert with ID {mark_read}")
            click.echo(f"Marked alert {mark_read} as read.")
            return
        items = db.get_alerts(unread_only=not show_all, limit=limit)

    if not items:
        click.echo("No alerts.")
        return

    table = Table(title="Alerts")
    table.add_column("ID", justify="right")
    table.add_column("When", style="dim")
    table.add_column("Change", justify="right")
    table.add_column("Message")
    for alert in items:
        message = escape(alert.message) if not alert.is_read else f"[dim]{escape(alert.message)}[/dim]"
        table.add_row(str(alert.id), alert.created_at[:16], _signed(alert.change_percent, "%"), message)
    console.print(table)


@cli.command("snapshots")
@click.option("--limit", default=20, help="Most recent N snapshots (default: 20)")
@click.pass_context
def snapshots(ctx: click.Context, limit: int) -> None:
    """Show portfolio value history."""
    with Database(ctx.obj["config"]) as db:
        items = db.get_snapshots(limit)

    if not items:
        click.echo("No snapshots yet. They are recorded after each refresh.")
        return

    table = Table(title="Portfolio History")
    table.add_column("Recorded", style="dim")
    table.add_column("Invested", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("Gain", justify="right")
    table.add_column("Gain %", justify="right")
    for s in items:
        table.add_row(
            s.recorded_at[:16],
            _money(s.total_invested),
            _money(s.total_value),
            _signed(s.gain_loss),
            _signed(s.gain_loss_percent, "%"),
        )
    console.print(table)


@cli.command("history")
@click.argument("symbol")
@click.option("--range", "range_", default="1mo", help="Yahoo range, e.g. 5d, 1mo, 6mo (default: 1mo)")
@click.pass_context
def history(ctx: click.Context, symbol: str, range_: str) -> None:
    """Show recent daily closes for a symbol or scheme code."""
    points = run_service(ctx.obj["config"], lambda s: s.history(symbol, range_))
    if not points:
        click.echo(f"No history for {symbol}.")
        return

    table = Table(title=f"{symbol} History")
    table.add_column("Date", style="dim")
    table.add_column("Close", justify="right")
    for p in points:
        table.add_row(p.date, _money(p.price))
    console.print(table)


@cli.command("fix-code")
@click.argument("symbol")
@click.argument("code")
@click.option("--no-fetch", is_flag=True, help="Skip fetching the NAV for the fund")
@click.pass_context
def fix_code(ctx: click.Context, symbol: str, code: str, no_fetch: bool) -> None:
    """Set the AMFI scheme CODE for a fund imported as SYMBOL (its name)."""

    async def action(service: PortfolioService) -> RefreshSummary | None:
        holding = service.set_scheme_code(symbol, code)
        click.echo(f"{holding.name} now uses scheme code {holding.symbol}")
        if no_fetch:
            return None
        return await service.refresh_prices(forced=True, holdings=[holding])

    summary = run_service(ctx.obj["config"], action)
    if summary:
        _print_refresh(summary, "NAV")


@cli.command("remove")
@click.argument("symbol")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def remove(ctx: click.Context, symbol: str, yes: bool) -> None:
    """Remove a holding."""
    with Database(ctx.obj["config"]) as db:
        holding = db.get_holding(symbol)
        if not holding:
            click.echo(f"{symbol} is not held.")
            return

        if not yes:
            if not click.confirm(f"Remove {holding.name} ({holding.symbol})?", default=False):
                click.echo("Aborted.")
                return

        db.delete_holding(symbol)
    click.echo(f"Removed {symbol}.")


@cli.command("watch")
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Refresh now if the market is open, then at every market close (Ctrl+C to stop)."""
    config = ctx.obj["config"]
    click.echo(f"Watching; next market-close refresh at {next_market_close(_ist_now()):%Y-%m-%d %H:%M} IST")
    try:
        run_service(config, lambda s: s.watch())
    except KeyboardInterrupt:
        click.echo("\nStopped.")


@cli.command("market")
def market() -> None:
    """Show whether the market is open and when it next closes."""
    now = _ist_now()
    state = "OPEN" if is_market_open(now) else "CLOSED"
    click.echo(f"Market {state} ({now:%a %H:%M} IST)")
    click.echo(f"Next close: {next_market_close(now):%Y-%m-%d %H:%M} IST")


@cli.command("settings")
@click.option("--set", "pairs", multiple=True, metavar="KEY=VALUE", help="Override a setting")
@click.option("--use-known-relays", is_flag=True, help="Route Yahoo requests through public relays")
@click.option("--direct", is_flag=True, help="Clear relays and request Yahoo directly")
@click.pass_context
def settings(ctx: click.Context, pairs: tuple[str, ...], use_known_relays: bool, direct: bool) -> None:
    """Show or change settings (stored in settings.yaml)."""
    config = ctx.obj["config"]
    overrides: dict = {}

    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or key not in TUNABLE_KEYS or key == "relays":
            raise click.ClickException(f"Invalid setting: {pair}")
        current = getattr(config, key)
        try:
            overrides[key] = type(current)(value.strip())
        except ValueError as e:
            raise click.ClickException(f"Invalid value for {key}: {value}") from e

    if use_known_relays:
        overrides["relays"] = list(KNOWN_RELAYS)
    elif direct:
        overrides["relays"] = []

    if overrides:
        save_settings(config, **overrides)
        click.echo(f"Saved {', '.join(overrides)} to {config.settings_file}")

    table = Table(title="Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key in sorted(TUNABLE_KEYS):
        value = getattr(config, key)
        if key == "relays":
            value = "\n".join(value) if value else "(direct)"
        table.add_row(key, escape(str(value)))
    console.print(table)
    click.echo(f"Data directory: {config.data_dir}")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
