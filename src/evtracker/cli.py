"""Command-line interface for EV charging session tracking."""

import json
import logging
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import db, importer
from .analysis.sessions import consumption_rule, dispatch_rule
from .collectors import octopus
from .config import load_config
from .tariffs import resolve_rate
from .timefmt import civil_date

console = Console()


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def print_summary(summary) -> None:
    """Print an import summary in the same shape for every import command."""
    console.print(f"[green]Sessions detected: {summary.detected}[/green]")
    console.print(f"[green]Imported (new): {summary.inserted}[/green]")
    if summary.updated:
        console.print(f"[cyan]Updated existing: {summary.updated}[/cyan]")
    if summary.deleted:
        console.print(f"[cyan]Removed superseded rows: {summary.deleted}[/cyan]")
    if summary.skipped:
        console.print(f"[yellow]Skipped {summary.skipped} duplicates[/yellow]")
    console.print(
        f"Total energy: {summary.total_energy_kwh:.2f} kWh, "
        f"total cost: £{summary.total_cost_gbp:.2f}"
    )


def sessions_table(records, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Date", style="cyan")
    table.add_column("Time")
    table.add_column("Energy", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Blocks", justify="right")
    table.add_column("Source", style="dim")

    for r in records:
        table.add_row(
            r.date,
            f"{r.start_time} - {r.end_time}",
            f"{r.energy_kwh:.3f} kWh",
            f"{r.tariff_rate_pence:g}p",
            f"£{r.cost_gbp:.2f}",
            str(r.dispatch_count or "-"),
            r.source,
        )
    return table


@click.group()
@click.option("--db-path", type=click.Path(), help="Path to SQLite database")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Path to evtracker.yaml")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, db_path, config_path, verbose):
    """EV charging tracker - import and review charging sessions from Octopus Energy."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = Path(db_path) if db_path else None
    ctx.obj["config"] = load_config(Path(config_path) if config_path else None)


# Database commands
@cli.group()
def database():
    """Database management commands."""
    pass


@database.command("init")
@click.pass_context
def db_init(ctx):
    """Initialize the database schema."""
    db.init_db(ctx.obj["db_path"])
    console.print("[green]Database initialized successfully[/green]")


@database.command("stats")
@click.pass_context
def db_stats(ctx):
    """Show database statistics."""
    stats = db.get_stats(ctx.obj["db_path"])

    table = Table(title="Database Statistics")
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Range")

    sessions = stats["charging_sessions"]
    table.add_row(
        "Charging sessions",
        str(sessions["count"]),
        f"{sessions['earliest'] or 'N/A'} → {sessions['latest'] or 'N/A'}",
    )

    for source, count in stats.get("sessions_by_source", {}).items():
        table.add_row(f"  └ {source}", str(count), "")

    console.print(table)

    last_import = stats.get("last_import")
    if last_import:
        console.print(
            f"[dim]Last import {last_import['timestamp']}: "
            f"{last_import['inserted']} new, {last_import['updated']} updated, "
            f"{last_import['skipped']} skipped[/dim]"
        )


# Import commands
@cli.group("import")
def import_cmd():
    """Import charging sessions from Octopus Energy."""
    pass


@import_cmd.command("consumption")
@click.option("--days", default=7, help="Number of days to fetch (default: 7)")
@click.option("--from-date", help="Start date (YYYY-MM-DD)")
@click.option("--to-date", help="End date (YYYY-MM-DD)")
@click.option("--threshold", type=float, help="Minimum kWh per half hour to count as charging")
@click.option("--rate", type=float, help="Tariff rate in pence/kWh")
@click.option("--auto-rate", is_flag=True, help="Use the smart-charging off-peak rate")
@click.option("--vehicle", help="Vehicle tag for new sessions (or set DEFAULT_VEHICLE)")
@click.pass_context
def import_consumption(ctx, days, from_date, to_date, threshold, rate, auto_rate, vehicle):
    """Detect charging sessions from half-hourly meter consumption.

    Requires OCTOPUS_API_KEY, OCTOPUS_MPAN and OCTOPUS_SERIAL environment variables.
    """
    config = ctx.obj["config"]
    try:
        # Determine date range
        end = date.fromisoformat(to_date) if to_date else date.today()
        start = date.fromisoformat(from_date) if from_date else end - timedelta(days=days)
        rate_pence = resolve_rate(
            rate, auto_rate, config.default_rate_pence, config.smart_charging_rate_pence
        )
        rule = consumption_rule(
            threshold if threshold is not None else config.consumption.threshold_kwh,
            config.consumption.gap_minutes,
            config.consumption.same_location,
        )
        credentials = octopus.get_credentials(require_meter=True)

        console.print(f"[cyan]Fetching consumption {start} → {end}...[/cyan]")
        db.init_db(ctx.obj["db_path"])
        with db.get_connection(ctx.obj["db_path"]) as conn:
            store = db.SqliteSessionStore(conn)
            summary = importer.import_consumption(
                credentials, store, start, end, rate_pence, rule, vehicle or config.vehicle
            )

        db.record_last_import(summary, ctx.obj["db_path"])
        print_summary(summary)

    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except octopus.OctopusError as e:
        console.print(f"[red]Octopus API error: {e}[/red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Failed to import consumption data: {e}[/red]")
        raise


@import_cmd.command("dispatches")
@click.option("--days", type=int, help="Days of completed dispatches to re-read (default: 3)")
@click.option("--gap-minutes", type=float, help="Max gap between blocks in one session")
@click.option("--rate", type=float, help="Tariff rate in pence/kWh")
@click.option("--auto-rate/--no-auto-rate", default=True, help="Use the smart-charging off-peak rate")
@click.option("--vehicle", help="Vehicle tag for new sessions (or set DEFAULT_VEHICLE)")
@click.option("--account", help="Account number (or set OCTOPUS_ACCOUNT_NUMBER)")
@click.pass_context
def import_dispatches(ctx, days, gap_minutes, rate, auto_rate, vehicle, account):
    """Import Intelligent Octopus completed dispatches as charging sessions.

    Re-reads the last few days on every run; sessions already stored are
    merged in place rather than duplicated. Suitable for a daily cron job.
    """
    config = ctx.obj["config"]
    try:
        rate_pence = resolve_rate(
            rate, auto_rate, config.default_rate_pence, config.smart_charging_rate_pence
        )
        rule = dispatch_rule(
            gap_minutes if gap_minutes is not None else config.dispatch.gap_minutes,
            config.dispatch.same_location,
        )
        credentials = octopus.get_credentials(require_account=account is None)
        if account:
            credentials = octopus.OctopusCredentials(
                api_key=credentials.api_key,
                mpan=credentials.mpan,
                serial=credentials.serial,
                account_number=account,
            )
        lookback = days if days is not None else config.dispatch.lookback_days

        console.print(f"[cyan]Fetching completed dispatches (last {lookback} days)...[/cyan]")
        db.init_db(ctx.obj["db_path"])
        with db.get_connection(ctx.obj["db_path"]) as conn:
            store = db.SqliteSessionStore(conn)
            summary = importer.import_dispatches(
                credentials, store, rate_pence, rule, lookback, vehicle or config.vehicle
            )

        db.record_last_import(summary, ctx.obj["db_path"])
        print_summary(summary)

    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except octopus.OctopusError as e:
        console.print(f"[red]Octopus API error: {e}[/red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Failed to import dispatches: {e}[/red]")
        raise


# Session commands
@click.group()
def sessions_cmd():
    """Charging session commands."""
    pass


@sessions_cmd.command("list")
@click.option("--days", default=30, help="Number of days to show")
@click.pass_context
def sessions_list(ctx, days):
    """List recent charging sessions."""
    start = civil_date(datetime.now(timezone.utc) - timedelta(days=days))
    records = db.list_sessions(start_date=start, db_path=ctx.obj["db_path"])

    if not records:
        console.print("[yellow]No sessions found[/yellow]")
        return

    console.print(sessions_table(records, f"Charging Sessions (last {days} days)"))


@sessions_cmd.command("stats")
@click.pass_context
def sessions_stats(ctx):
    """Show totals across all sessions."""
    stats = db.get_session_stats(ctx.obj["db_path"])
    console.print(f"Sessions: {stats['total_sessions']}")
    console.print(f"Total energy: {stats['total_energy_kwh']:.2f} kWh")
    console.print(f"Total cost: £{stats['total_cost_gbp']:.2f}")
    console.print(f"Average energy: {stats['average_energy_kwh']:.2f} kWh")


@sessions_cmd.command("delete-before")
@click.argument("cutoff")
@click.pass_context
def sessions_delete_before(ctx, cutoff):
    """Delete sessions dated before CUTOFF (YYYY-MM-DD)."""
    try:
        date.fromisoformat(cutoff)
    except ValueError:
        console.print("[red]Invalid date format. Use YYYY-MM-DD, e.g. 2026-02-16[/red]")
        sys.exit(1)

    count = db.delete_sessions_before(cutoff, ctx.obj["db_path"])
    console.print(f"[green]Deleted {count} session(s) with date before {cutoff}[/green]")


@sessions_cmd.command("preview")
@click.option("--file", "file_path", type=click.Path(exists=True), required=True, help="Dispatch JSON export")
@click.option("--gap-minutes", type=float, help="Max gap between blocks in one session")
@click.option("--rate", type=float, help="Tariff rate in pence/kWh")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def sessions_preview(ctx, file_path, gap_minutes, rate, as_json):
    """Group exported dispatches into sessions without saving them."""
    config = ctx.obj["config"]
    try:
        with open(file_path) as f:
            dispatches = importer.extract_dispatches(json.load(f))
        rate_pence = resolve_rate(rate, rate is None, config.default_rate_pence, config.smart_charging_rate_pence)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    rule = dispatch_rule(
        gap_minutes if gap_minutes is not None else config.dispatch.gap_minutes,
        config.dispatch.preview_same_location,
    )
    records = importer.preview_dispatches(dispatches, rule, rate_pence)

    if as_json:
        data = [
            {
                "date": r.date,
                "start_time": r.start_time,
                "end_time": r.end_time,
                "energy_kwh": r.energy_kwh,
                "cost_gbp": r.cost_gbp,
                "dispatch_count": r.dispatch_count,
                "location": r.session.location,
                "idempotency_key": r.idempotency_key,
            }
            for r in records
        ]
        click.echo(json.dumps(data, indent=2))
        return

    if not records:
        console.print("[yellow]No sessions found[/yellow]")
        return

    console.print(sessions_table(records, f"Dispatch sessions ({len(dispatches)} dispatches)"))


# Register session command group
cli.add_command(sessions_cmd, name="sessions")


if __name__ == "__main__":
    cli()
