"""
Implements command-line commands and user interaction.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table

from cidsync.core.client import AcquisitionError, IPFSClient
from cidsync.core.config import ConfigManager, SyncDefaults
from cidsync.core.listing import list_source_cids, read_cids_from_file, write_cids_to_file
from cidsync.core.transfer import SyncManager, SyncResult, TransferProgress
from cidsync.core.transfer_log import RunLogEntry, TransferLogger

logger = logging.getLogger("cidsync")

# Rich console for pretty output
console = Console()


def setup_logging(verbose: bool = False):
    """Send log records through rich"""
    handler = RichHandler(console=console, show_path=False, markup=False)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def format_duration(seconds: float) -> str:
    """Format a duration in seconds for display"""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, seconds = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {seconds:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m {seconds:02d}s"


def format_progress(p: TransferProgress) -> str:
    """Format sync progress for display"""
    return f"{p.sequence}/{p.total} synced: {p.synced} failed: {p.failed}"


def get_config(ctx: click.Context) -> ConfigManager:
    """Get the configuration manager of the current invocation"""
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        ctx.obj["config"] = ConfigManager(ctx.obj.get("config_dir"))
    return ctx.obj["config"]


def get_transfer_logger(ctx: click.Context) -> TransferLogger:
    """Get the run logger, stored next to the configuration"""
    config = get_config(ctx)
    return TransferLogger(str(config.config_dir / "logs"))


def _resolve_endpoint(config: ConfigManager, value: str) -> str:
    try:
        return config.resolve_endpoint(value)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _print_summary(result: SyncResult):
    """Print the final statistics of a run"""
    table = Table(title="Sync Summary")
    table.add_column("Total", justify="right", style="cyan")
    table.add_column("Synced", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Batches", justify="right", style="blue")
    table.add_column("Duration", justify="right", style="magenta")
    table.add_row(
        str(result.total),
        str(result.synced),
        str(result.failed),
        str(result.batches),
        format_duration(result.duration),
    )
    console.print(table)


@click.group()
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False),
    envvar="CIDSYNC_CONFIG_DIR",
    help="Configuration directory (default: ~/.config/cidsync)"
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.pass_context
def cli(ctx: click.Context, config_dir: Optional[str], verbose: bool):
    """cidsync - Sync IPFS objects between two IPFS endpoints

    Objects are fetched from the source endpoint, added to the destination
    endpoint and verified by comparing the resulting CID.

    Common commands:
    \b
    - sync           Sync objects from source to destination
    - list           List CIDs pinned on an endpoint
    - logs           View previous sync runs
    - endpoint       Manage named endpoints
    - config         Manage default settings
    """
    ctx.ensure_object(dict)
    ctx.obj["config_dir"] = config_dir
    setup_logging(verbose)


@cli.command()
@click.option("--source", "-s", required=True, help="IPFS source endpoint (URL or name)")
@click.option("--destination", "-d", required=True, help="IPFS destination endpoint (URL or name)")
@click.option(
    "--from-file", "-f",
    type=click.Path(dir_okay=False),
    help="Sync CIDs from file (one per line) instead of the source pins"
)
@click.option(
    "--batch-size", "-b",
    type=click.IntRange(min=1),
    help="Maximum CIDs synced concurrently (default: 50)"
)
@click.option("--timeout", type=click.FLOAT, help="Request timeout in seconds (default: none)")
@click.option("--retries", type=click.IntRange(min=0), help="Extra attempts per request (default: 0)")
@click.option(
    "--count-upload-failure-twice",
    is_flag=True,
    help="Also verify (and count again) objects whose upload failed"
)
@click.option(
    "--failed-output",
    type=click.Path(dir_okay=False),
    help="Write CIDs that failed to this file"
)
@click.option("--no-log", is_flag=True, help="Do not record this run in the sync logs")
@click.pass_context
def sync(
    ctx: click.Context,
    source: str,
    destination: str,
    from_file: Optional[str],
    batch_size: Optional[int],
    timeout: Optional[float],
    retries: Optional[int],
    count_upload_failure_twice: bool,
    failed_output: Optional[str],
    no_log: bool,
):
    """Sync IPFS objects between two different IPFS endpoints

    Every CID is fetched from SOURCE, added to DESTINATION and verified.
    Failed objects are counted and reported; they never stop the run.

    Examples:
    \b
    - Sync everything pinned on the source:
      cidsync sync -s http://127.0.0.1:5001 -d http://10.0.0.2:5001

    - Sync a list of CIDs:
      cidsync sync -s old -d new -f cids.txt

    - Retry the failures of a previous run:
      cidsync sync -s old -d new -f failed.txt --retries 3
    """
    config = get_config(ctx)
    defaults: SyncDefaults = config.defaults

    src = _resolve_endpoint(config, source)
    dst = _resolve_endpoint(config, destination)

    batch_size = batch_size or defaults.batch_size
    timeout = timeout if timeout is not None else defaults.timeout
    retries = retries if retries is not None else defaults.retries
    count_upload_failure_twice = count_upload_failure_twice or defaults.count_upload_failure_twice

    client_options = dict(
        timeout=timeout,
        retries=retries,
        retry_backoff=defaults.retry_backoff,
        max_connections=batch_size,
    )

    with IPFSClient(src, **client_options) as source_client, \
            IPFSClient(dst, **client_options) as destination_client:
        try:
            if from_file:
                logger.info(f"Syncing from {src} to {dst} using the file <{from_file}> as input")
                records = read_cids_from_file(from_file)
            else:
                logger.info(f"Syncing from {src} to {dst}")
                with console.status("[bold blue]Listing CIDs on the source...[/bold blue]"):
                    records = list_source_cids(source_client)
        except AcquisitionError as e:
            console.print(f"[red]Failed to get the CIDs to sync: {e}[/red]")
            sys.exit(1)

        console.print(f"\nFound {len(records)} CIDs to sync")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Syncing CIDs...", total=len(records))

            def update_progress(p: TransferProgress):
                progress.update(task, advance=1, description=format_progress(p))

            manager = SyncManager(
                source_client,
                destination_client,
                max_batch_size=batch_size,
                count_upload_failure_twice=count_upload_failure_twice,
                progress_callback=update_progress,
            )
            result = manager.run(records)

    _print_summary(result)

    if result.failed_cids:
        console.print(f"[red]Failed to sync {len(result.failed_cids)} CIDs[/red]")
        if failed_output:
            write_cids_to_file(failed_output, result.failed_cids)
            console.print(f"[yellow]Failed CIDs written to {failed_output}[/yellow]")
    elif result.total:
        console.print(f"[green]Successfully synced {result.synced} CIDs[/green]")

    if not no_log:
        get_transfer_logger(ctx).add_entry(RunLogEntry(
            timestamp=datetime.now().isoformat(),
            source=src,
            destination=dst,
            total=result.total,
            synced=result.synced,
            failed=result.failed,
            duration=result.duration,
            batch_size=batch_size,
            failed_cids=result.failed_cids,
        ))


@cli.command("list")
@click.option("--source", "-s", required=True, help="IPFS endpoint (URL or name)")
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False),
    help="Write the CIDs to a file instead of printing them"
)
@click.option("--timeout", type=click.FLOAT, help="Request timeout in seconds (default: none)")
@click.pass_context
def list_cids(ctx: click.Context, source: str, output: Optional[str], timeout: Optional[float]):
    """List CIDs pinned on an IPFS endpoint

    The output file can be passed to 'cidsync sync --from-file'.
    """
    config = get_config(ctx)
    src = _resolve_endpoint(config, source)
    if timeout is None:
        timeout = config.defaults.timeout

    try:
        with IPFSClient(src, timeout=timeout) as client:
            with console.status(f"[bold blue]Listing CIDs on {src}...[/bold blue]"):
                records = list_source_cids(client)
    except AcquisitionError as e:
        console.print(f"[red]Failed to list CIDs: {e}[/red]")
        sys.exit(1)

    if output:
        write_cids_to_file(output, (r.cid for r in records))
        console.print(f"[green]Wrote {len(records)} CIDs to {output}[/green]")
        return

    for record in records:
        console.print(record.cid, highlight=False)
    console.print(f"\n[cyan]{len(records)} CIDs[/cyan]")


@cli.command()
@click.option(
    "--date",
    type=str,
    help="Show logs for specific date (YYYY-MM-DD format)"
)
@click.option(
    "--show-cids",
    is_flag=True,
    help="Show the CIDs that failed in each run"
)
@click.pass_context
def logs(ctx: click.Context, date: Optional[str] = None, show_cids: bool = False):
    """View sync run logs

    Examples:
    \b
    - View the most recent logs:
      cidsync logs

    - View logs for specific date:
      cidsync logs --date 2025-03-22

    - View logs with failed CIDs:
      cidsync logs --show-cids
    """
    transfer_logger = get_transfer_logger(ctx)

    if date is None:
        dates = transfer_logger.get_log_dates()
        if not dates:
            console.print("[yellow]No sync logs found[/yellow]")
            return
        date = dates[-1]  # Use most recent date

    entries = transfer_logger.get_entries(date)
    if not entries:
        console.print(f"[yellow]No sync logs found for {date}[/yellow]")
        return

    table = Table(title=f"Sync Logs for {date}")
    table.add_column("Time", style="cyan")
    table.add_column("Source", style="green")
    table.add_column("Destination", style="blue")
    table.add_column("Status", style="yellow")
    table.add_column("Failed", style="red", justify="right")
    table.add_column("Duration", style="cyan")

    for entry in entries:
        time = datetime.fromisoformat(entry.timestamp).strftime("%H:%M:%S")

        if entry.total == 0:
            status = "No CIDs"
        else:
            success_rate = entry.synced / entry.total * 100
            status = f"{entry.synced}/{entry.total} ({success_rate:.1f}%)"

        table.add_row(
            time,
            entry.source,
            entry.destination,
            status,
            str(entry.failed),
            format_duration(entry.duration),
        )

        if show_cids and entry.failed_cids:
            console.print(f"\n[red]Failed at {time}:[/red]")
            for cid in entry.failed_cids:
                console.print(f"  ✗ {cid}", highlight=False)

    console.print(table)


@click.group()
def endpoint():
    """Manage named IPFS endpoints"""
    pass


@endpoint.command("list")
@click.pass_context
def list_endpoints(ctx: click.Context):
    """List named endpoints"""
    endpoints = get_config(ctx).get_endpoints()
    if not endpoints:
        console.print("[yellow]No endpoints configured[/yellow]")
        return

    table = Table(title="Endpoints")
    table.add_column("Name", style="cyan")
    table.add_column("URL", style="green")
    for name, url in sorted(endpoints.items()):
        table.add_row(name, url)
    console.print(table)


@endpoint.command()
@click.argument("name")
@click.argument("url")
@click.pass_context
def add(ctx: click.Context, name: str, url: str):
    """Add a named endpoint"""
    try:
        get_config(ctx).set_endpoint(name, url)
        console.print(f"[green]Added endpoint {name}: {url}[/green]")
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@endpoint.command()
@click.argument("name")
@click.pass_context
def remove(ctx: click.Context, name: str):
    """Remove a named endpoint"""
    try:
        get_config(ctx).remove_endpoint(name)
        console.print(f"[green]Removed endpoint: {name}[/green]")
    except KeyError:
        console.print(f"[red]Error: Unknown endpoint: {name}[/red]")
        sys.exit(1)


@click.group("config")
def config_group():
    """Manage default sync settings"""
    pass


@config_group.command()
@click.pass_context
def show(ctx: click.Context):
    """Show default sync settings"""
    config = get_config(ctx)
    table = Table(title=f"Settings ({config.config_file})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in vars(config.defaults).items():
        table.add_row(key, "none" if value is None else str(value))
    console.print(table)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def set_value(ctx: click.Context, key: str, value: str):
    """Set a default sync setting"""
    try:
        get_config(ctx).set_default(key, value)
        console.print(f"[green]Set {key} to {value}[/green]")
    except (KeyError, ValueError) as e:
        console.print(f"[red]Error: {e.args[0] if e.args else e}[/red]")
        sys.exit(1)


# Register command groups
cli.add_command(endpoint)
cli.add_command(config_group)

if __name__ == "__main__":
    cli()
