"""
Outputs module for AWS Info

Builds the rich tables for every listing. Each listing has a row builder
that applies the case-insensitive filter over the listed attributes, and a
table builder that renders the rows.
"""

import json
from typing import Iterable, List, Optional, Sequence, Tuple

from rich.table import Table

from .models import (
    ComputeInstance,
    DeploymentStack,
    DNSRecord,
    DNSZone,
    LoadBalancer,
)

# Minimum width for tables to ensure readability
TABLE_MINIMUM_WIDTH = 86

# Record types shown by the default (non-verbose) DNS listing
BRIEF_DNS_TYPES = ("A", "ALIAS", "CNAME")

Row = Tuple[str, ...]


def str_contains(text: str, needle: str) -> bool:
    """Case-insensitive substring match."""
    return needle.lower() in text.lower()


def matches(needle: Optional[str], fields: Iterable[str]) -> bool:
    """An empty filter matches everything."""
    if not needle:
        return True
    return any(str_contains(str(value), needle) for value in fields)


def short_name(name: str, width: int) -> str:
    """Truncate to width and replace spaces with periods."""
    return name[:width].replace(" ", ".")


def quote_value(value: str) -> str:
    if " " in value and not value.startswith('"'):
        return json.dumps(value)
    return value


def zone_rows(zones: Sequence[DNSZone], needle: Optional[str] = None) -> List[Row]:
    rows = []
    for zone in zones:
        if matches(needle, (zone.name, zone.zone_type, zone.zone_id)):
            rows.append((zone.name, zone.zone_type, str(zone.record_count), zone.zone_id))
    return rows


def dns_rows(
    records: Sequence[DNSRecord], needle: Optional[str] = None, verbose: bool = False
) -> List[Row]:
    """
    DNS listing rows: name, type, TTL, account, value count, values.
    The zone id is never displayed but can be filtered on.
    """
    rows = []
    for record in records:
        values = [quote_value(value) for value in record.values]
        joined = " ".join(values)
        fields = (
            record.name,
            joined,
            record.record_type,
            record.ttl,
            record.account_alias,
            record.zone_id,
        )
        if not matches(needle, fields):
            continue
        if not verbose and record.record_type.upper() not in BRIEF_DNS_TYPES:
            continue
        rows.append(
            (
                record.name,
                record.record_type,
                record.ttl,
                record.account_alias or "-",
                str(len(values)),
                joined,
            )
        )
    return rows


def elb_rows(balancers: Sequence[LoadBalancer], needle: Optional[str] = None) -> List[Row]:
    rows = []
    for lb in balancers:
        instances = " ".join(lb.instance_ids)
        if matches(needle, (lb.name, lb.dns_name, instances)):
            rows.append((lb.name, lb.dns_name, str(len(lb.instance_ids)), instances))
    return rows


def elb_cert_rows(
    balancers: Sequence[LoadBalancer], needle: Optional[str] = None
) -> List[Row]:
    rows = []
    for lb in balancers:
        if matches(needle, (lb.dns_name, lb.certificate)):
            rows.append((lb.dns_name, lb.certificate))
    return rows


def elb_health_rows(
    balancers: Sequence[LoadBalancer], needle: Optional[str] = None
) -> List[Row]:
    """Only load balancers with a health check policy are listed."""
    rows = []
    for lb in balancers:
        check = lb.health_check
        if not check:
            continue

        def value(key: str) -> str:
            return str(check[key]) if check.get(key) is not None else "-"

        target = value("Target")
        if matches(needle, (lb.dns_name, target)):
            rows.append(
                (
                    lb.dns_name,
                    value("HealthyThreshold"),
                    value("UnhealthyThreshold"),
                    value("Interval"),
                    value("Timeout"),
                    target,
                )
            )
    return rows


def instance_summary(inst: ComputeInstance) -> Row:
    """Name, id, type, state, address, account: the columns the breakdown shows."""
    return (
        short_name(inst.name, 38),
        inst.instance_id,
        inst.instance_type,
        inst.state,
        inst.private_ip,
        inst.account_alias or "-",
    )


def instance_rows(
    instances: Sequence[ComputeInstance],
    needle: Optional[str] = None,
    verbose: bool = False,
) -> List[Row]:
    rows = []
    for inst in instances:
        brief = (
            inst.name,
            inst.instance_id,
            inst.instance_type,
            inst.state,
            inst.private_ip,
            inst.account_alias or "-",
            inst.launch_time,
        )
        extra = (
            inst.environment,
            inst.billing_code,
            inst.availability_zone,
            inst.subnet_id,
            inst.image_id,
            inst.key_name,
            inst.instance_profile,
        )
        if not matches(needle, brief + extra):
            continue
        row = (short_name(inst.name, 38),) + brief[1:]
        rows.append(row + extra if verbose else row)
    return rows


def stack_rows(
    stacks: Sequence[DeploymentStack], needle: Optional[str] = None
) -> List[Tuple[Row, List[Tuple[str, str]]]]:
    """Active stacks with their parameters; deleted stacks are left out."""
    rows = []
    for stack in stacks:
        if stack.is_deleted:
            continue
        alias = stack.account_alias or "-"
        if matches(needle, (stack.name, stack.stack_id, alias, stack.status)):
            row = (short_name(stack.name, 50), alias, stack.status, stack.last_updated)
            rows.append((row, stack.parameters))
    return rows


def _table(title: str, columns: Sequence[Tuple[str, str]], rows: Iterable[Row]) -> Table:
    table = Table(title=title, min_width=TABLE_MINIMUM_WIDTH, border_style="bright_blue")
    for header, style in columns:
        table.add_column(header, style=style)
    for row in rows:
        table.add_row(*row)
    return table


def create_zone_table(rows: Sequence[Row]) -> Table:
    return _table(
        "Hosted Zones",
        [("Zone", "green"), ("Type", "yellow"), ("Records", "cyan"), ("Zone ID", "white")],
        rows,
    )


def create_dns_table(rows: Sequence[Row]) -> Table:
    return _table(
        "DNS Records",
        [
            ("Name", "green"),
            ("Type", "yellow"),
            ("TTL", "cyan"),
            ("Account", "blue"),
            ("#", "cyan"),
            ("Values", "white"),
        ],
        rows,
    )


def create_elb_table(rows: Sequence[Row]) -> Table:
    return _table(
        "Load Balancers",
        [("Name", "green"), ("DNS Name", "white"), ("#", "cyan"), ("Instances", "yellow")],
        rows,
    )


def create_elb_cert_table(rows: Sequence[Row]) -> Table:
    return _table(
        "Load Balancer Certificates", [("DNS Name", "white"), ("Certificate", "green")], rows
    )


def create_elb_health_table(rows: Sequence[Row]) -> Table:
    return _table(
        "Load Balancer Health Checks",
        [
            ("DNS Name", "white"),
            ("Healthy", "green"),
            ("Unhealthy", "red"),
            ("Interval", "cyan"),
            ("Timeout", "cyan"),
            ("Target", "yellow"),
        ],
        rows,
    )


INSTANCE_COLUMNS = [
    ("Name", "green"),
    ("Instance ID", "white"),
    ("Type", "yellow"),
    ("State", "cyan"),
    ("Private IP", "white"),
    ("Account", "blue"),
    ("Launched", "dim"),
]

VERBOSE_INSTANCE_COLUMNS = INSTANCE_COLUMNS + [
    ("Environment", "magenta"),
    ("Billing", "magenta"),
    ("AZ", "cyan"),
    ("Subnet", "white"),
    ("Image", "white"),
    ("Key", "white"),
    ("Instance Profile", "dim"),
]


def create_instance_table(rows: Sequence[Row], verbose: bool = False) -> Table:
    columns = VERBOSE_INSTANCE_COLUMNS if verbose else INSTANCE_COLUMNS
    return _table("EC2 Instances", columns, rows)


def create_stack_table(
    rows: Sequence[Tuple[Row, List[Tuple[str, str]]]], verbose: bool = False
) -> Table:
    table = Table(
        title="CloudFormation Stacks", min_width=TABLE_MINIMUM_WIDTH, border_style="bright_blue"
    )
    table.add_column("Stack", style="green")
    table.add_column("Account", style="blue")
    table.add_column("Status", style="yellow")
    table.add_column("Last Updated", style="dim")

    for row, parameters in rows:
        table.add_row(*row)
        if verbose:
            for key, value in parameters:
                table.add_row(f"  [dim]{key}[/dim]", "", "", value)
    return table
