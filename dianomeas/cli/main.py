"""
CLI interface for dianomeas.

Provides command-line access to provisioning, teardown and usage reports.
"""

import json
import logging
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dianomeas.config.loader import Settings, load_settings, parse_date_range
from dianomeas.core.analytics import UsageReport, compute_usage_report
from dianomeas.core.capacity import CapacityLocator
from dianomeas.core.errors import DianomeasError
from dianomeas.core.provisioning import NameGenerator, ProvisioningController
from dianomeas.core.reconciler import EventReconciler, ReconciliationResult
from dianomeas.provider.client import MetalClient
from dianomeas.provider.models import Host

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

# Failures reported to the user instead of a traceback
HANDLED_ERRORS = (DianomeasError, ValueError, OSError, yaml.YAMLError)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML settings file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    ),
):
    """Provision Equinix Metal devices and report on their usage."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    ctx.obj = {"config": config}
    if ctx.invoked_subcommand is None:
        console.print("dianomeas - Use --help to see available commands")


def _load(ctx: typer.Context) -> Settings:
    config = (ctx.obj or {}).get("config")
    return load_settings(str(config) if config else None)


def _build_client(settings: Settings) -> MetalClient:
    return MetalClient(
        auth_token=settings.require_auth_token(),
        api_url=settings.api.url,
        timeout=settings.api.timeout_seconds,
    )


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {escape(str(error))}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def availability(
    ctx: typer.Context,
    plan: Optional[str] = typer.Option(
        None,
        "--plan",
        "-p",
        help="Plan to look up (defaults to the configured plan)"
    ),
):
    """Show the first allowed metro with capacity for a plan."""
    try:
        settings = _load(ctx)
        locator = CapacityLocator(_build_client(settings), settings.metros)
        requested = plan or settings.plan
        metro = locator.check_availability_for(requested)
    except HANDLED_ERRORS as e:
        _fail(e)
        return

    console.print(f"[green]✓[/] {requested} available in metro [bold]{metro}[/]")
    sys.exit(EXIT_CODE_OK)


@app.command()
def setup(
    ctx: typer.Context,
    prefix: str = typer.Argument(..., help="Hostname prefix for the device"),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Seed for the hostname suffix"
    ),
):
    """Create (or reuse) a device and wait until it is active."""
    try:
        settings = _load(ctx)
        client = _build_client(settings)
        controller = ProvisioningController(
            client=client,
            locator=CapacityLocator(client, settings.metros),
            project_id=settings.require_project_id(),
            plan=settings.plan,
            operating_system=settings.operating_system,
            poll_interval=settings.polling.interval_seconds,
            poll_timeout=settings.polling.timeout_seconds,
            name_generator=NameGenerator(seed),
        )
        host = controller.setup(prefix)
    except HANDLED_ERRORS as e:
        _fail(e)
        return

    _print_host(host)
    sys.exit(EXIT_CODE_OK)


@app.command()
def teardown(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Hostname of the device to delete"),
):
    """Delete a device by hostname. Succeeds if it is already gone."""
    try:
        settings = _load(ctx)
        client = _build_client(settings)
        controller = ProvisioningController(
            client=client,
            locator=CapacityLocator(client, settings.metros),
            project_id=settings.require_project_id(),
            plan=settings.plan,
            operating_system=settings.operating_system,
        )
        controller.teardown(name)
    except HANDLED_ERRORS as e:
        _fail(e)
        return

    console.print(f"[green]✓[/] {name} torn down")
    sys.exit(EXIT_CODE_OK)


@app.command()
def report(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(
        None,
        "--days",
        "-d",
        help="Lookback window in days (defaults to the configured value)"
    ),
    from_date: Optional[str] = typer.Option(
        None,
        "--from",
        help="First day of the range (YYYY-MM-DD)"
    ),
    to_date: Optional[str] = typer.Option(
        None,
        "--to",
        help="Last day of the range (YYYY-MM-DD)"
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Emit the report as JSON"
    ),
):
    """
    Report device usage, cost and leaks from the project event log.

    Scans the last N days (today excluded) or an explicit date range.
    """
    try:
        if (from_date is None) != (to_date is None):
            raise ValueError("--from and --to must be given together")
        if from_date is not None and days is not None:
            raise ValueError("--days cannot be combined with --from/--to")

        settings = _load(ctx)
        reconciler = EventReconciler(
            _build_client(settings),
            settings.require_project_id(),
            device_prefix=settings.device_prefix,
        )
        if from_date is not None:
            result = reconciler.reconcile_range(
                parse_date_range(from_date, to_date),
                max_pages=settings.reconcile.max_pages,
                page_size=settings.reconcile.page_size,
            )
        else:
            result = reconciler.reconcile(
                days if days is not None else settings.reconcile.lookback_days,
                max_pages=settings.reconcile.max_pages,
                page_size=settings.reconcile.page_size,
            )

        usage = compute_usage_report(
            result.records,
            result.daily_creations,
            hourly_rate=settings.cost.hourly_rate,
            leak_hours_threshold=settings.cost.leak_hours_threshold,
        )
    except HANDLED_ERRORS as e:
        _fail(e)
        return

    if as_json:
        payload = usage.to_dict()
        payload["anomalies"] = {
            kind.value: count for kind, count in result.anomaly_counts().items()
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    else:
        _display_report(usage, result)
    sys.exit(EXIT_CODE_OK)


def _print_host(host: Host) -> None:
    console.print(f"[green]✓[/] Device [bold]{host.name}[/] is active")
    console.print(f"ID: {host.id}")
    console.print(f"Address: {host.address or 'n/a'}")


def _format_currency(amount: Decimal) -> str:
    """Format a dollar amount with cents, e.g. $1,234.00."""
    return f"${amount:,.2f}"


def _format_duration(duration: timedelta) -> str:
    """Format a duration as hours, minutes and seconds."""
    total = int(duration.total_seconds())
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}h{minutes:02d}m{seconds:02d}s"


def _display_report(usage: UsageReport, result: ReconciliationResult) -> None:
    """Print daily creations, uptime, leak and cost lines, then anomalies."""
    console.print("\n[bold]Device Usage Report[/bold]")
    console.print("-" * 40)

    if usage.daily_creations:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Date")
        table.add_column("Instances", justify="right")
        for day, count in usage.daily_creations:
            table.add_row(day.isoformat(), str(count))
        console.print(table)
    else:
        console.print("\n[dim]No device creations found in the window.[/]")

    console.print(f"Total instances: {usage.total_instances}")
    console.print()

    if usage.average_uptime is None:
        console.print("Average instance uptime: no data")
    else:
        console.print(f"Average instance uptime: {_format_duration(usage.average_uptime)}")
    console.print(
        f"Num leaks (uptime > {usage.leak_hours_threshold:g}h): {usage.leak_count}"
    )
    console.print()
    console.print(f"Total uptime: {_format_duration(usage.total_uptime)}")
    if usage.max_uptime is not None:
        console.print(
            f"Max instance uptime: {_format_duration(usage.max_uptime.uptime)} "
            f"({usage.max_uptime.device_id})"
        )
    console.print()
    console.print(f"Total cost: {_format_currency(usage.total_cost)}")
    if usage.max_cost is not None:
        console.print(
            f"Most expensive instance: {usage.max_cost.device_id} "
            f"({_format_duration(usage.max_cost.uptime)}, "
            f"{_format_currency(usage.max_cost.cost)})"
        )

    counts = result.anomaly_counts()
    if counts:
        console.print()
        console.print(f"[yellow]Data anomalies: {len(result.anomalies)}[/]")
        for kind in sorted(counts, key=lambda k: k.value):
            console.print(f"  {kind.value}: {counts[kind]}")


if __name__ == "__main__":
    app()
