#!/usr/bin/env python3
"""
AWS Info CLI
------------

Command-line interface for updating, publishing and querying the local AWS
resource inventory. This module contains all CLI logic separated from core
inventory functionality.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from awsinfo import (
    build_context,
    build_stores,
    display_banner,
    get_session,
    update_all_stores,
)
from awsinfo_lib.breakdown import breakdown, render_breakdown
from awsinfo_lib.config import InventoryConfig, create_skeleton_config, load_config
from awsinfo_lib.exceptions import InventoryError, StoreMissingError
from awsinfo_lib.freshness import FreshnessArbiter
from awsinfo_lib.logging import configure_logging, create_debug_log_file, get_logger
from awsinfo_lib.models import ResourceKind, ResourceRecord
from awsinfo_lib.outputs import (
    TABLE_MINIMUM_WIDTH,
    create_dns_table,
    create_elb_cert_table,
    create_elb_health_table,
    create_elb_table,
    create_instance_table,
    create_stack_table,
    create_zone_table,
    dns_rows,
    elb_cert_rows,
    elb_health_rows,
    elb_rows,
    instance_rows,
    stack_rows,
    zone_rows,
)
from awsinfo_lib.planner import parse_refresh_scope
from awsinfo_lib.store import LocalStore
from awsinfo_lib.sync import SyncAction, sync_to_remote
from awsinfo_lib.updater import UpdateOutcome

# Create the CLI application
app = typer.Typer(
    name="awsinfo",
    help="AWS Info\n\nQuery and maintain a local, multi-account inventory of AWS resources.",
    add_completion=True,
    no_args_is_help=True,
)
console = Console()

logger = get_logger()

FILTER_HELP = "Case-insensitive filter over the listed attributes"


@contextmanager
def _exit_on_error() -> Iterator[None]:
    """Turn inventory errors into a printed message and exit code 1."""
    try:
        yield
    except InventoryError as e:
        if logger.is_debug_enabled():
            logger.log_error_context(e, {"cause": repr(e.__cause__)})
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)


def _config(ctx: typer.Context) -> InventoryConfig:
    options = ctx.obj or {}
    return load_config(config_dir=options.get("config_dir"), profile=options.get("profile"))


def _load(ctx: typer.Context, kind: ResourceKind) -> List[ResourceRecord]:
    """Newest copy of a store for a listing; any read failure is fatal."""
    return build_stores(_config(ctx)).load(kind)


def _load_or_empty(arbiter: FreshnessArbiter, kind: ResourceKind) -> List[ResourceRecord]:
    try:
        return arbiter.load(kind)
    except StoreMissingError:
        logger.warning("No %s store found, treating it as empty", kind.file_name)
        return []


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Write debug logs to this file or directory (with --debug)"
    ),
    trace_aws: bool = typer.Option(
        False, "--trace-aws", help="Log botocore and HTTP wire traffic (with --debug)"
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", "-p", help="AWS profile to use"
    ),
    config_dir: Optional[Path] = typer.Option(
        None, "--config-dir", help="Directory holding config.yaml and the stores"
    ),
) -> None:
    """
    AWS Info

    Keeps local stores of EC2 instances, Route53 zones and records, classic
    load balancers and CloudFormation stacks for every account you update
    from, and shares them through an S3 bucket.
    """
    debug_log = create_debug_log_file(log_file) if debug and log_file else None
    configure_logging(debug=debug, log_file=debug_log, trace_aws=trace_aws)
    ctx.obj = {"profile": profile, "config_dir": config_dir}


def _display_update_summary(outcomes: List[UpdateOutcome]) -> None:
    table = Table(title="Store Update", min_width=TABLE_MINIMUM_WIDTH, border_style="bright_blue")
    table.add_column("Store", style="cyan")
    table.add_column("Result", style="yellow")
    table.add_column("Records", style="green", justify="right")
    table.add_column("Changes", style="white")

    for outcome in outcomes:
        if outcome.result is None:
            table.add_row(outcome.kind.file_name, "skipped", "-", outcome.skipped_reason or "-")
            continue
        table.add_row(
            outcome.kind.file_name,
            "updated",
            str(len(outcome.result.records)),
            str(outcome.result.changes),
        )
    console.print(table)


@app.command(name="update")
def update_command(
    ctx: typer.Context,
    scope: Optional[str] = typer.Argument(
        None,
        metavar="[MIN|ZONES]",
        help="Only refresh what changed in the last MIN minutes (1-10080), "
        "or only the DNS records of ZONES, e.g. 'mysite.com,a.mydns.com'",
    ),
) -> None:
    """Update local stores from the current AWS account."""
    with _exit_on_error():
        minutes_ago, zone_names = parse_refresh_scope(scope)
        config = _config(ctx)
        display_banner()
        inventory = build_context(config)

        details = Table(show_header=False, box=None, min_width=TABLE_MINIMUM_WIDTH)
        details.add_column("Parameter", style="cyan", width=18)
        details.add_column("Value", style="yellow", width=60)
        details.add_row("Account", f"{inventory.identity.account_alias} ({inventory.account_id})")
        details.add_row("Region", inventory.config.region or "-")
        details.add_row("Stores", str(inventory.config.config_dir))
        if minutes_ago:
            details.add_row("Window", f"last {minutes_ago} minutes")
        elif zone_names:
            details.add_row("Zones", ", ".join(zone_names))
        console.print(
            Panel(
                details,
                title="[bold white]Update[/bold white]",
                title_align="center",
                border_style="bright_blue",
                padding=(0, 1),
                width=TABLE_MINIMUM_WIDTH,
            )
        )

        outcomes = update_all_stores(inventory, minutes_ago, zone_names)
    _display_update_summary(outcomes)


@app.command(name="sync")
def sync_command(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f", help="Ignore file time stamps and upload every store"
    ),
) -> None:
    """Copy local stores to the S3 bucket defined in the config file."""
    with _exit_on_error():
        config = _config(ctx)
        session = get_session(config.profile)
        if not config.region and session.region_name:
            config = config.with_region(session.region_name)
        arbiter = build_stores(config, session)
        outcomes = sync_to_remote(arbiter.local, arbiter.remote, force=force)

    uploaded = [o for o in outcomes if o.action is SyncAction.UPLOADED]
    console.print(f"[green]✅ {len(uploaded)} of {len(outcomes)} stores uploaded[/green]")


@app.command(name="purge")
def purge_command(ctx: typer.Context) -> None:
    """Delete the local store files, to start afresh."""
    with _exit_on_error():
        config = _config(ctx)
    removed = LocalStore(config.config_dir).purge()
    for path in removed:
        console.print(f"[dim]Deleted {path}[/dim]")
    console.print(f"[green]✅ {len(removed)} local stores deleted[/green]")


@app.command(name="init-config")
def init_config_command(ctx: typer.Context) -> None:
    """Create a skeleton config file."""
    with _exit_on_error():
        config = _config(ctx)
        created = create_skeleton_config(config)
    if created is None:
        console.print(f"There's already a {config.config_file} file.")
        return
    console.print(f"[green]✅ Created {created}[/green]")


@app.command(name="zones")
def zones_command(
    ctx: typer.Context,
    needle: Optional[str] = typer.Argument(None, metavar="[FILTER]", help=FILTER_HELP),
) -> None:
    """List hosted zones."""
    with _exit_on_error():
        zones = _load(ctx, ResourceKind.ZONE)
    console.print(create_zone_table(zone_rows(zones, needle)))


@app.command(name="dns")
def dns_command(
    ctx: typer.Context,
    needle: Optional[str] = typer.Argument(None, metavar="[FILTER]", help=FILTER_HELP),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="List every record type, not only A/ALIAS/CNAME"
    ),
) -> None:
    """List DNS records."""
    with _exit_on_error():
        records = _load(ctx, ResourceKind.DNS)
    console.print(create_dns_table(dns_rows(records, needle, verbose)))


@app.command(name="elbs")
def elbs_command(
    ctx: typer.Context,
    needle: Optional[str] = typer.Argument(None, metavar="[FILTER]", help=FILTER_HELP),
) -> None:
    """List classic load balancers."""
    with _exit_on_error():
        balancers = _load(ctx, ResourceKind.ELB)
    console.print(create_elb_table(elb_rows(balancers, needle)))


@app.command(name="elb-certs")
def elb_certs_command(
    ctx: typer.Context,
    needle: Optional[str] = typer.Argument(None, metavar="[FILTER]", help=FILTER_HELP),
) -> None:
    """List load balancer SSL certificates."""
    with _exit_on_error():
        balancers = _load(ctx, ResourceKind.ELB)
    console.print(create_elb_cert_table(elb_cert_rows(balancers, needle)))


@app.command(name="elb-health")
def elb_health_command(
    ctx: typer.Context,
    needle: Optional[str] = typer.Argument(None, metavar="[FILTER]", help=FILTER_HELP),
) -> None:
    """List load balancer health checks."""
    with _exit_on_error():
        balancers = _load(ctx, ResourceKind.ELB)
    console.print(create_elb_health_table(elb_health_rows(balancers, needle)))


@app.command(name="instances")
def instances_command(
    ctx: typer.Context,
    needle: Optional[str] = typer.Argument(None, metavar="[FILTER]", help=FILTER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every column"),
) -> None:
    """List EC2 instances."""
    with _exit_on_error():
        instances = _load(ctx, ResourceKind.INSTANCE)
    console.print(create_instance_table(instance_rows(instances, needle, verbose), verbose))


@app.command(name="stacks")
def stacks_command(
    ctx: typer.Context,
    needle: Optional[str] = typer.Argument(None, metavar="[FILTER]", help=FILTER_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show stack parameters"),
) -> None:
    """List active CloudFormation stacks."""
    with _exit_on_error():
        stacks = _load(ctx, ResourceKind.STACK)
    console.print(create_stack_table(stack_rows(stacks, needle), verbose))


@app.command(name="breakdown")
def breakdown_command(
    ctx: typer.Context,
    dns_name: str = typer.Argument(..., metavar="DNSNAME", help="DNS name to break down"),
) -> None:
    """Print the load balancer and instances behind a DNS name."""
    with _exit_on_error():
        arbiter = build_stores(_config(ctx))
        result = breakdown(
            dns_name,
            _load_or_empty(arbiter, ResourceKind.ELB),
            records=lambda: arbiter.load(ResourceKind.DNS),
            instances=lambda: arbiter.load(ResourceKind.INSTANCE),
        )
    render_breakdown(console, result)


if __name__ == "__main__":
    app()
