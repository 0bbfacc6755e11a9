"""
Reconcile module for AWS Info

Merges a freshly fetched per-account batch into a multi-account store.
Everything the current account owned in the store (within the refreshed
zones, for DNS) is replaced by the batch; records of other accounts are
never touched.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Set

from deepdiff import DeepDiff

from .exceptions import InventoryError, StoreMissingError
from .logging import get_logger
from .models import DNSRecord, ResourceKind, ResourceRecord
from .store import LocalStore

logger = get_logger()


@dataclass
class ChangeSummary:
    added: int = 0
    removed: int = 0
    changed: int = 0

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    def __str__(self) -> str:
        if not self:
            return "no changes"
        return f"{self.added} added, {self.removed} removed, {self.changed} changed"


@dataclass
class ReconcileResult:
    kind: ResourceKind
    kept: int
    replaced: int
    added: int
    records: List[ResourceRecord] = field(default_factory=list)
    changes: ChangeSummary = field(default_factory=ChangeSummary)


def _is_replaced(
    record: ResourceRecord, account_id: str, zone_ids: Optional[Set[str]]
) -> bool:
    if record.account_id != account_id:
        return False
    if zone_ids is None:
        return True
    # Zone scoping only applies to DNS records
    if not isinstance(record, DNSRecord):
        return True
    return record.zone_id.lower() in zone_ids


def merge_records(
    existing: Iterable[ResourceRecord],
    account_id: str,
    fresh: Sequence[ResourceRecord],
    zone_ids: Optional[Set[str]] = None,
) -> List[ResourceRecord]:
    """
    Keep every existing record not owned by ``account_id`` (or, when
    ``zone_ids`` is given, outside those zones) and append ``fresh``.
    ``zone_ids`` are compared case-insensitively and must be lowercase.
    """
    merged = [r for r in existing if not _is_replaced(r, account_id, zone_ids)]
    merged.extend(fresh)
    return merged


def summarize_changes(
    previous: Sequence[ResourceRecord], fresh: Sequence[ResourceRecord]
) -> ChangeSummary:
    """Compare an account's previous records with the fresh batch by natural key."""
    old = {record.natural_key: record for record in previous}
    new = {record.natural_key: record for record in fresh}
    changed = sum(
        1
        for key in old.keys() & new.keys()
        if DeepDiff(old[key].to_dict(), new[key].to_dict(), ignore_order=True)
    )
    return ChangeSummary(
        added=len(new.keys() - old.keys()),
        removed=len(old.keys() - new.keys()),
        changed=changed,
    )


def load_existing(
    loader: Callable[[ResourceKind], List[ResourceRecord]], kind: ResourceKind
) -> List[ResourceRecord]:
    """Load a store for merging; a store that does not exist yet is empty."""
    try:
        return loader(kind)
    except StoreMissingError:
        logger.debug("No %s store yet, starting empty", kind.file_name)
        return []


def reconcile(
    store: LocalStore,
    kind: ResourceKind,
    account_id: str,
    fresh: Sequence[ResourceRecord],
    existing: Optional[Sequence[ResourceRecord]] = None,
    zone_ids: Optional[Set[str]] = None,
) -> ReconcileResult:
    """
    Merge ``fresh`` into the ``kind`` store for ``account_id`` and persist it.

    ``existing`` defaults to the current local store. Store read errors other
    than absence propagate so the caller can skip this kind.
    """
    if not account_id:
        raise InventoryError(f"Cannot reconcile {kind.label} records without an account id")
    untagged = [r for r in fresh if not r.account_id]
    if untagged:
        raise InventoryError(
            f"{len(untagged)} fresh {kind.label} records have no AccountId"
        )

    if existing is None:
        existing = load_existing(store.load, kind)

    previous = [r for r in existing if _is_replaced(r, account_id, zone_ids)]
    merged = merge_records(existing, account_id, fresh, zone_ids)
    store.save(kind, merged)

    result = ReconcileResult(
        kind=kind,
        kept=len(merged) - len(fresh),
        replaced=len(previous),
        added=len(fresh),
        records=merged,
        changes=summarize_changes(previous, fresh),
    )
    logger.debug(
        "Reconciled %s for account %s: kept=%d replaced=%d added=%d",
        kind.file_name,
        account_id,
        result.kept,
        result.replaced,
        result.added,
    )
    return result
