"""
Glowmarkt CLI.

Command-line client for the Glowmarkt smart meter API.
Built with Typer for commands and Rich for formatted output.

Usage:
    glowmarkt -u USER -p PASS device                  # List metering devices
    glowmarkt -u USER -p PASS device DEVICE_ID        # Show one device
    glowmarkt -u USER -p PASS resource                # List resources
    glowmarkt -u USER -p PASS readings RESOURCE_ID --period hour --format influx
    glowmarkt export --once                           # Push recent readings to InfluxDB
    glowmarkt export --schedule                       # Export daily (blocks)

Credentials and InfluxDB settings are also read from the environment and
from a .env file (GLOWMARKT_USERNAME, GLOWMARKT_PASSWORD, INFLUXDB_TOKEN, ...).
"""

import json
import logging
import sys
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from glowmarkt import __version__
from glowmarkt.client import GlowmarktApi, GlowmarktError
from glowmarkt.config import Config, load_config, missing_for_export
from glowmarkt.influx import InfluxDBExporter, reading_measurements
from glowmarkt.metrics import ExportMetrics
from glowmarkt.models import Device, DeviceType, Resource, ResourceType, VirtualEntity
from glowmarkt.periods import ReadingPeriod
from glowmarkt.service import ExportJob, api_from_config

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="glowmarkt",
    help="Glowmarkt smart meter CLI - devices, resources, tariffs and readings.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


class OutputFormat(str, Enum):
    TABLE = "table"
    JSON = "json"


class ReadingsFormat(str, Enum):
    TABLE = "table"
    JSON = "json"
    INFLUX = "influx"


@dataclass
class CliState:
    config: Config
    api: Optional[GlowmarktApi] = None


def setup_logging(verbose: int) -> None:
    """Configure logging on stderr; stdout is reserved for command output."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def _fail(message: str) -> None:
    err_console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(1)


def _get_api(ctx: typer.Context) -> GlowmarktApi:
    """Return the API client for this invocation, authenticating on first use."""
    state: CliState = ctx.obj
    if state.api is None:
        config = state.config
        if not config.token and not (config.username and config.password):
            _fail("Must pass username and password.")
        try:
            state.api = api_from_config(config)
        except GlowmarktError as e:
            _fail(e.message)
        ctx.call_on_close(state.api.close)
    return state.api


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


def _yes_no(value: bool) -> str:
    return "[green]yes[/green]" if value else "[red]no[/red]"


def _print_records(records: Iterable[Any], output: OutputFormat, table: Optional[Table] = None, row=None) -> None:
    records = list(records)
    if output is OutputFormat.JSON:
        _echo_json([record.to_dict() for record in records])
        return
    for record in records:
        table.add_row(*row(record))
    console.print(table)


def _device_table(devices: List[Device], output: OutputFormat) -> None:
    table = Table(title="Devices", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Description")
    table.add_column("Active")
    table.add_column("Hardware ID")
    table.add_column("Resources")

    _print_records(devices, output, table, lambda d: (
        d.id,
        d.description or "-",
        _yes_no(d.active),
        d.hardware_id,
        ", ".join(d.resource_ids()) or "-",
    ))


def _resource_table(resources: List[Resource], output: OutputFormat) -> None:
    table = Table(title="Resources", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Classifier")
    table.add_column("Unit")
    table.add_column("Active")

    _print_records(resources, output, table, lambda r: (
        r.id,
        r.name,
        r.classifier or "-",
        r.base_unit or "-",
        _yes_no(r.active),
    ))


def _entity_table(entities: List[VirtualEntity], output: OutputFormat) -> None:
    table = Table(title="Virtual Entities", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Active")
    table.add_column("Resources")

    _print_records(entities, output, table, lambda e: (
        e.id,
        e.name,
        e.type_id,
        _yes_no(e.active),
        ", ".join(r.resource_id for r in e.resources) or "-",
    ))


@app.callback()
def main(
    ctx: typer.Context,
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Account username"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Account password"),
    token: Optional[str] = typer.Option(None, "--token", help="Use an existing token instead of credentials"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="API base URL"),
    app_id: Optional[str] = typer.Option(None, "--app-id", help="API application ID"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Verbose output (-vv for debug)"),
) -> None:
    """Glowmarkt smart meter CLI."""
    setup_logging(verbose)
    config = load_config()

    overrides = {
        "username": username,
        "password": password,
        "token": token,
        "base_url": base_url,
        "app_id": app_id,
    }
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})
    ctx.obj = CliState(config=config)


@app.command()
def version() -> None:
    """Show the version."""
    typer.echo(__version__)


@app.command()
def auth(ctx: typer.Context) -> None:
    """Authenticate and print the issued token and its expiry."""
    api = _get_api(ctx)
    if api.token_expiry is None:
        # A token passed with --token has no known expiry until validated
        try:
            api.validate()
        except GlowmarktError as e:
            _fail(e.message)
    typer.echo(api.token)
    if api.token_expiry:
        err_console.print(f"[dim]Valid until {api.token_expiry.isoformat()}[/dim]")


@app.command()
def validate(ctx: typer.Context) -> None:
    """Check that the token is still valid."""
    api = _get_api(ctx)
    try:
        api.validate()
    except GlowmarktError as e:
        _fail(e.message)

    expiry = api.token_expiry.isoformat() if api.token_expiry else "unknown"
    console.print(f"[green]Token is valid[/green] until {expiry}")


@app.command()
def device(
    ctx: typer.Context,
    device_id: Optional[str] = typer.Argument(None, help="Show a single device"),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """
    List the metering devices registered to the account.

    Examples:
        glowmarkt device
        glowmarkt device DEVICE_ID --format json
    """
    api = _get_api(ctx)
    try:
        if device_id:
            found = api.device(device_id)
            if found is None:
                _fail(f"Device {device_id} not found")
            devices = [found]
        else:
            devices = list(api.devices().values())
    except GlowmarktError as e:
        _fail(e.message)

    _device_table(devices, output)


@app.command("device-type")
def device_type(
    ctx: typer.Context,
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """List the known device types."""
    api = _get_api(ctx)
    try:
        types = list(api.device_types().values())
    except GlowmarktError as e:
        _fail(e.message)

    table = Table(title="Device Types", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Description")
    table.add_column("Protocol")
    table.add_column("Active")

    def row(t: DeviceType):
        return t.id, t.description or "-", t.protocol.protocol, _yes_no(t.active)

    _print_records(types, output, table, row)


@app.command()
def entity(
    ctx: typer.Context,
    entity_id: Optional[str] = typer.Argument(None, help="Show a single virtual entity"),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """List the virtual entities of the account."""
    api = _get_api(ctx)
    try:
        if entity_id:
            found = api.virtual_entity(entity_id)
            if found is None:
                _fail(f"Virtual entity {entity_id} not found")
            entities = [found]
        else:
            entities = list(api.virtual_entities().values())
    except GlowmarktError as e:
        _fail(e.message)

    _entity_table(entities, output)


@app.command("resource-type")
def resource_type(
    ctx: typer.Context,
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """List the known resource types."""
    api = _get_api(ctx)
    try:
        types = list(api.resource_types().values())
    except GlowmarktError as e:
        _fail(e.message)

    table = Table(title="Resource Types", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Classifier")
    table.add_column("Unit")
    table.add_column("Data source")

    def row(t: ResourceType):
        return t.id, t.name, t.classifier or "-", t.base_unit or "-", t.data_source_type

    _print_records(types, output, table, row)


@app.command()
def resource(
    ctx: typer.Context,
    resource_id: Optional[str] = typer.Argument(None, help="Show a single resource"),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """List the resources (consumption and cost streams) of the account."""
    api = _get_api(ctx)
    try:
        if resource_id:
            found = api.resource(resource_id)
            if found is None:
                _fail(f"Resource {resource_id} not found")
            resources = [found]
        else:
            resources = list(api.resources().values())
    except GlowmarktError as e:
        _fail(e.message)

    _resource_table(resources, output)


@app.command()
def tariff(ctx: typer.Context, resource_id: str = typer.Argument(..., help="Resource ID")) -> None:
    """Print the tariff currently applied to a resource (JSON)."""
    api = _get_api(ctx)
    try:
        tariffs = api.latest_tariff(resource_id)
    except GlowmarktError as e:
        _fail(e.message)

    _echo_json([t.to_dict() for t in tariffs])


@app.command("tariff-list")
def tariff_list(ctx: typer.Context, resource_id: str = typer.Argument(..., help="Resource ID")) -> None:
    """Print the tariff history of a resource (JSON)."""
    api = _get_api(ctx)
    try:
        tariffs = api.tariff_list(resource_id)
    except GlowmarktError as e:
        _fail(e.message)

    _echo_json([t.to_dict() for t in tariffs])


@app.command()
def readings(
    ctx: typer.Context,
    resource_id: str = typer.Argument(..., help="Resource ID"),
    start: Optional[datetime] = typer.Option(None, "--from", formats=DATETIME_FORMATS, help="Start (UTC, default: 24 hours ago)"),
    end: Optional[datetime] = typer.Option(None, "--to", formats=DATETIME_FORMATS, help="End (UTC, default: now)"),
    period: ReadingPeriod = typer.Option(ReadingPeriod.HALF_HOUR, "--period", help="Reading period"),
    output: ReadingsFormat = typer.Option(ReadingsFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """
    Print the readings of a resource.

    Long ranges are split into several requests automatically.

    Examples:
        glowmarkt readings RESOURCE_ID
        glowmarkt readings RESOURCE_ID --from 2024-01-01 --to 2024-02-01 --period day
        glowmarkt readings RESOURCE_ID --format influx
    """
    if end is None:
        end = datetime.now(timezone.utc)
    if start is None:
        start = end - timedelta(days=1)

    api = _get_api(ctx)
    try:
        found = api.resource(resource_id)
        if found is None:
            _fail(f"Resource {resource_id} not found")
        results = api.readings_range(resource_id, start, end, period)

        owner = None
        if output is ReadingsFormat.INFLUX:
            owner = next(
                (d for d in api.devices().values() if resource_id in d.resource_ids()),
                None,
            )
    except GlowmarktError as e:
        _fail(e.message)

    if output is ReadingsFormat.JSON:
        _echo_json([r.to_dict() for r in results])
    elif output is ReadingsFormat.INFLUX:
        for measurement in reading_measurements(results, found, owner):
            typer.echo(measurement.to_line_protocol())
    else:
        table = Table(title=f"{found.name} ({period.value})", show_header=True)
        table.add_column("Start (UTC)", style="cyan")
        table.add_column(f"Value ({found.base_unit or '-'})", justify="right")
        for reading in results:
            table.add_row(reading.start.strftime("%Y-%m-%d %H:%M"), f"{reading.value:.3f}")
        console.print(table)


@app.command()
def export(
    ctx: typer.Context,
    schedule: bool = typer.Option(False, "--schedule/--once", help="Run daily (blocks) or once"),
    resources: Optional[List[str]] = typer.Option(None, "--resource", "-r", help="Resource to export (repeatable, default: all)"),
    days: Optional[int] = typer.Option(None, "--days", min=1, help="Days of readings to fetch"),
    period: Optional[ReadingPeriod] = typer.Option(None, "--period", help="Reading period"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print line protocol instead of writing to InfluxDB"),
) -> None:
    """
    Forward recent readings to InfluxDB.

    InfluxDB settings come from INFLUXDB_URL, INFLUXDB_TOKEN, INFLUXDB_ORG
    and INFLUXDB_BUCKET.

    Examples:
        glowmarkt export --once --days 7
        glowmarkt export --schedule
        glowmarkt export --dry-run -r RESOURCE_ID
    """
    state: CliState = ctx.obj
    overrides = {"resources": resources or None, "lookback_days": days, "period": period}
    config = replace(state.config, **{k: v for k, v in overrides.items() if v is not None})

    missing = missing_for_export(config)
    if dry_run:
        missing = [m for m in missing if not m.startswith("INFLUXDB_")]
    if missing:
        _fail(f"Missing required settings: {', '.join(missing)}")

    if dry_run:
        job = ExportJob(config, api_factory=api_from_config)
        try:
            measurements = job.collect()
        except GlowmarktError as e:
            _fail(e.message)
        for measurement in measurements:
            typer.echo(measurement.to_line_protocol())
        return

    influx = InfluxDBExporter(
        url=config.influxdb_url,
        token=config.influxdb_token,
        org=config.influxdb_org,
        bucket=config.influxdb_bucket,
    )
    if not influx.connect():
        _fail(f"Failed to connect to InfluxDB at {config.influxdb_url}")

    metrics = None
    if schedule and config.exporter_port:
        metrics = ExportMetrics(port=config.exporter_port)
        metrics.start()
        console.print(f"Prometheus metrics available at http://localhost:{config.exporter_port}/metrics")

    job = ExportJob(config, influx=influx, metrics=metrics, api_factory=api_from_config)
    if schedule:
        job.schedule()
        return

    try:
        succeeded = job.run()
    finally:
        influx.close()

    if not succeeded:
        raise typer.Exit(1)
    console.print("[green]Export completed[/green]")
