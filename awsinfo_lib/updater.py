"""
Updater module for AWS Info

Drives one store update: plan the refresh, load the existing store through
the freshness arbiter, fetch the current account's records and reconcile.
A store that cannot be read is skipped without touching it; fetch failures
propagate.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .context import InventoryContext
from .exceptions import StoreError
from .logging import get_logger
from .models import DNSRecord, DNSZone, ResourceKind, ResourceRecord
from .planner import RefreshPlan, plan_dns_refresh, plan_refresh
from .reconcile import ReconcileResult, load_existing, reconcile

logger = get_logger()


@dataclass
class UpdateOutcome:
    kind: ResourceKind
    plan: Optional[RefreshPlan] = None
    result: Optional[ReconcileResult] = None
    skipped_reason: Optional[str] = None

    @property
    def updated(self) -> bool:
        return self.result is not None


def _load_for_update(
    ctx: InventoryContext, kind: ResourceKind
) -> Optional[List[ResourceRecord]]:
    try:
        return load_existing(ctx.arbiter.load, kind)
    except StoreError as e:
        logger.warning("Skipping %s update, existing store unreadable: %s", kind.file_name, e)
        return None


def _report(result: ReconcileResult) -> None:
    logger.info(
        "Local %s store now holds %d records (%s)",
        result.kind.label,
        len(result.records),
        result.changes,
    )


def update_store(
    ctx: InventoryContext,
    kind: ResourceKind,
    minutes_ago: int,
    fetch: Callable[[InventoryContext], Sequence[ResourceRecord]],
) -> UpdateOutcome:
    """Update the store of a kind without sub-resource granularity."""
    plan = plan_refresh(kind, minutes_ago, ctx.audit)
    if not plan.proceed:
        logger.info("Skipping local %s store update (%s)", kind.label, plan.describe())
        return UpdateOutcome(kind, plan, skipped_reason=plan.describe())

    logger.info("Updating local %s store (%s)", kind.label, plan.describe())
    existing = _load_for_update(ctx, kind)
    if existing is None:
        return UpdateOutcome(kind, plan, skipped_reason="store unreadable")

    with logger.timer(f"Fetch {kind.label} records"):
        fresh = fetch(ctx)

    result = reconcile(ctx.local, kind, ctx.account_id, fresh, existing=existing)
    _report(result)
    return UpdateOutcome(kind, plan, result)


def update_dns_store(
    ctx: InventoryContext,
    minutes_ago: int,
    zone_names: Sequence[str],
    fetch_zone: Callable[[InventoryContext, DNSZone], Sequence[DNSRecord]],
) -> UpdateOutcome:
    """
    Update the DNS record store from the zone store.

    Only zones owned by the current account are fetched; the records of the
    targeted zones are replaced, all others are kept.
    """
    kind = ResourceKind.DNS
    zone_records = _load_for_update(ctx, ResourceKind.ZONE)
    if zone_records is None:
        return UpdateOutcome(kind, skipped_reason="zone store unreadable")
    zones = [zone for zone in zone_records if isinstance(zone, DNSZone)]

    plan = plan_dns_refresh(zones, minutes_ago, zone_names, ctx.audit)
    if not plan.proceed:
        logger.info("Skipping local %s store update (%s)", kind.label, plan.describe())
        return UpdateOutcome(kind, plan, skipped_reason=plan.describe())

    logger.info("Updating local %s store (%s)", kind.label, plan.describe())
    existing = _load_for_update(ctx, kind)
    if existing is None:
        return UpdateOutcome(kind, plan, skipped_reason="store unreadable")

    owned = [zone for zone in plan.target_zones if zone.account_id == ctx.account_id]
    fresh: List[DNSRecord] = []
    with logger.timer(f"Fetch {kind.label} records"):
        for zone in owned:
            logger.info("Updating zone: %s [%d]", zone.name, zone.record_count)
            fresh.extend(fetch_zone(ctx, zone))

    result = reconcile(
        ctx.local, kind, ctx.account_id, fresh, existing=existing, zone_ids=plan.zone_ids
    )
    _report(result)
    return UpdateOutcome(kind, plan, result)
