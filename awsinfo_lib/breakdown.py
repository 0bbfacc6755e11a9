"""
Breakdown module for AWS Info

Resolves a DNS name down to the load balancer behind it and the instances
registered with that load balancer, using the local stores.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Union

import dns.exception
import dns.resolver
from rich.console import Console

from .exceptions import ResolutionError
from .logging import get_logger
from .models import ComputeInstance, DNSRecord, LoadBalancer, normal_dns_name
from .outputs import instance_summary

logger = get_logger()

# Guards against CNAME loops
MAX_CNAME_HOPS = 16

SUMMARY_WIDTHS = (38, 20, 12, 10, 16, 16)


def make_resolver() -> dns.resolver.Resolver:
    resolver = dns.resolver.Resolver(configure=True)
    resolver.timeout = 2.0
    resolver.lifetime = 4.0
    return resolver


def follow_cname_chain(name: str, resolver: Optional[dns.resolver.Resolver] = None) -> str:
    """Follow CNAMEs from ``name`` and return the last name in the chain."""
    resolver = resolver or make_resolver()
    current = normal_dns_name(name)
    for _ in range(MAX_CNAME_HOPS):
        try:
            answer = resolver.resolve(current, "CNAME", raise_on_no_answer=False)
        except dns.resolver.NXDOMAIN as e:
            raise ResolutionError(f"{current} does not exist") from e
        except dns.exception.DNSException as e:
            raise ResolutionError(f"CNAME lookup failed for {current}: {e}") from e

        if answer.rrset is None:
            return current
        target = normal_dns_name(str(answer.rrset[0].target))
        logger.debug("CNAME %s -> %s", current, target)
        if target.lower() == current.lower():
            return target
        current = target
    raise ResolutionError(f"Too many CNAME hops resolving {name}")


def find_load_balancer(
    balancers: Sequence[LoadBalancer], dns_name: str
) -> Optional[LoadBalancer]:
    wanted = normal_dns_name(dns_name).lower()
    for lb in balancers:
        if lb.get("DNSName") and normal_dns_name(lb.dns_name).lower() == wanted:
            return lb
    return None


def find_dns_record(records: Sequence[DNSRecord], dns_name: str) -> Optional[DNSRecord]:
    wanted = normal_dns_name(dns_name).lower()
    for record in records:
        if record.get("Name") and normal_dns_name(record.name).lower() == wanted:
            return record
    return None


@dataclass
class Breakdown:
    """The load balancer a name resolves to and its backend instances."""

    name: str
    final_name: str
    load_balancer: Optional[LoadBalancer] = None
    instances: List[Union[ComputeInstance, str]] = field(default_factory=list)


def breakdown(
    name: str,
    balancers: Sequence[LoadBalancer],
    records: Callable[[], Sequence[DNSRecord]],
    instances: Callable[[], Sequence[ComputeInstance]],
    resolver: Optional[dns.resolver.Resolver] = None,
) -> Breakdown:
    """
    Resolve ``name`` to a load balancer from the stores.

    The final name of the CNAME chain is looked up as a load balancer DNS
    name first, then as an ALIAS record pointing at one. The DNS record and
    instance stores are only loaded when needed. Instance ids missing from
    the instance store are returned as plain strings.
    """
    final_name = follow_cname_chain(name, resolver)
    result = Breakdown(name=name, final_name=final_name)

    lb = find_load_balancer(balancers, final_name)
    if lb is None:
        record = find_dns_record(records(), final_name)
        if record is not None and record.alias_target:
            lb = find_load_balancer(balancers, record.alias_target)
    if lb is None:
        return result

    result.load_balancer = lb
    if lb.instance_ids:
        known = {inst.instance_id.lower(): inst for inst in instances()}
        for instance_id in lb.instance_ids:
            result.instances.append(known.get(instance_id.lower(), instance_id))
    return result


def render_breakdown(console: Console, result: Breakdown) -> None:
    lb = result.load_balancer
    if lb is None:
        console.print(f"[yellow]{result.final_name} is not a known load balancer[/yellow]")
        return

    console.print(f"[bold]{normal_dns_name(lb.dns_name)}[/bold]")
    listeners = lb.listeners
    if not listeners:
        console.print("  No listeners defined")
    for listener in listeners:
        lb_port = "" if listener.load_balancer_port is None else str(listener.load_balancer_port)
        inst_port = "" if listener.instance_port is None else str(listener.instance_port)
        console.print(f"  {lb_port:<5} -> {inst_port:>5}")

    for inst in result.instances:
        if isinstance(inst, str):
            console.print(f"    {inst} not found in instance store")
        else:
            columns = zip(instance_summary(inst), SUMMARY_WIDTHS)
            console.print(
                "    " + "  ".join(f"{value:<{width}}" for value, width in columns),
                highlight=False,
                markup=False,
            )
