"""
Planner module for AWS Info

Decides how much of a store an update has to refresh:

- Full refresh (no window): always proceeds.
- Windowed refresh (1..10080 minutes): consults CloudTrail for mutations in
  the kind's event source; no mutations means the store is left untouched.
  Route53 events are further narrowed to the hosted zones they touched.
- Explicit zone list: restricts the DNS record refresh to named zones.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from .exceptions import ConfigError
from .logging import get_logger
from .models import DNSZone, ResourceKind

logger = get_logger()

MAX_WINDOW_MINUTES = 10080  # 7 days, the CloudTrail lookup horizon we rely on
DEFAULT_LOOKBACK = timedelta(days=7)

# Read-only API calls that show up in CloudTrail but change nothing
NOISE_TOKENS = ("List", "Describe")

ZONE_ID_PREFIX = "/hostedzone/"


@dataclass(frozen=True)
class AuditEvent:
    """A CloudTrail event; ``payload`` is the raw CloudTrailEvent JSON."""

    name: str
    time: Optional[datetime] = None
    payload: str = ""


class AuditLogProvider(Protocol):
    def lookup_events(
        self, source: str, since: datetime, until: datetime
    ) -> List[AuditEvent]:
        ...


class RefreshMode(Enum):
    FULL = "full"
    WINDOWED = "windowed"
    EXPLICIT = "explicit"


@dataclass
class RefreshPlan:
    """What an update pass for one kind should do."""

    kind: ResourceKind
    mode: RefreshMode
    proceed: bool
    minutes_ago: int = 0
    change_count: int = 0
    # DNS only: zones to fetch and the zone ids whose records get replaced.
    # None means every zone of the account.
    target_zones: List[DNSZone] = field(default_factory=list)
    zone_ids: Optional[Set[str]] = None

    def describe(self) -> str:
        if not self.proceed:
            return f"no mods within {self.minutes_ago} minutes"
        if self.mode is RefreshMode.WINDOWED:
            return f"{self.change_count} modified within {self.minutes_ago} minutes"
        if self.mode is RefreshMode.EXPLICIT:
            return f"{len(self.target_zones)} requested zones"
        return "full refresh"


def validate_window(minutes_ago: Optional[int]) -> int:
    """None means full refresh; otherwise 1..MAX_WINDOW_MINUTES."""
    if minutes_ago is None:
        return 0
    if minutes_ago < 1 or minutes_ago > MAX_WINDOW_MINUTES:
        raise ConfigError(
            f"Error. MIN minutes ({minutes_ago}) must be between 1 and "
            f"{MAX_WINDOW_MINUTES} (7 days)."
        )
    return minutes_ago


def parse_refresh_scope(scope: Optional[str]) -> Tuple[int, List[str]]:
    """
    Parse the optional update argument: a number of minutes, or a
    comma-separated list of zone names. The two are mutually exclusive.
    """
    if not scope or not scope.strip():
        return 0, []
    scope = scope.strip()
    try:
        minutes = int(scope)
    except ValueError:
        zones = [name.strip().lower() for name in scope.split(",") if name.strip()]
        return 0, zones
    return validate_window(minutes), []


def lookup_window(
    minutes_ago: int, now: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    until = now or datetime.now(timezone.utc)
    lookback = timedelta(minutes=minutes_ago) if minutes_ago else DEFAULT_LOOKBACK
    return until - lookback, until


def is_mutation(event: AuditEvent) -> bool:
    return not any(token in event.name for token in NOISE_TOKENS)


def mutation_events(
    audit: AuditLogProvider,
    kind: ResourceKind,
    minutes_ago: int,
    now: Optional[datetime] = None,
) -> List[AuditEvent]:
    since, until = lookup_window(minutes_ago, now)
    logger.info("Checking CloudTrail for updates in source: %s", kind.event_source)
    events = audit.lookup_events(kind.event_source, since, until)
    mutations = [event for event in events if is_mutation(event)]
    logger.debug(
        "%s: %d events, %d mutations since %s",
        kind.event_source,
        len(events),
        len(mutations),
        since.isoformat(),
    )
    return mutations


def normalize_zone_id(zone_id: str) -> str:
    if zone_id.lower().startswith(ZONE_ID_PREFIX):
        return zone_id
    return ZONE_ID_PREFIX + zone_id


def _field(mapping: Dict[str, Any], name: str) -> Any:
    """Case-insensitive key lookup."""
    for key, value in mapping.items():
        if key.lower() == name.lower():
            return value
    return None


def extract_zone_id(payload: str) -> Optional[str]:
    """
    Hosted zone id a Route53 event refers to.

    Zone modifications carry it in requestParameters.hostedZoneId (bare id),
    zone creations in responseElements.hostedZone.id (prefixed id). Anything
    else, including undecodable payloads, yields None.
    """
    try:
        document = json.loads(payload)
    except (TypeError, ValueError):
        return None
    if not isinstance(document, dict):
        return None

    request = _field(document, "requestParameters")
    if isinstance(request, dict):
        zone_id = _field(request, "hostedZoneId")
        if isinstance(zone_id, str) and zone_id:
            return normalize_zone_id(zone_id)

    response = _field(document, "responseElements")
    if isinstance(response, dict):
        hosted_zone = _field(response, "hostedZone")
        if isinstance(hosted_zone, dict):
            zone_id = _field(hosted_zone, "id")
            if isinstance(zone_id, str) and zone_id:
                return normalize_zone_id(zone_id)

    return None


def touched_zone_ids(events: Sequence[AuditEvent]) -> List[str]:
    """Deduplicated (case-insensitive) hosted zone ids, in event order."""
    seen: Set[str] = set()
    zone_ids: List[str] = []
    for event in events:
        zone_id = extract_zone_id(event.payload)
        if zone_id is None:
            logger.debug("No hosted zone id in %s event, skipping", event.name)
            continue
        if zone_id.lower() in seen:
            continue
        seen.add(zone_id.lower())
        zone_ids.append(zone_id)
    return zone_ids


def plan_refresh(
    kind: ResourceKind,
    minutes_ago: int,
    audit: Optional[AuditLogProvider],
    now: Optional[datetime] = None,
) -> RefreshPlan:
    """Plan the refresh of a store without sub-resource granularity."""
    if not minutes_ago:
        return RefreshPlan(kind=kind, mode=RefreshMode.FULL, proceed=True)
    if audit is None:
        raise ConfigError("A windowed refresh needs an audit log provider")

    events = mutation_events(audit, kind, minutes_ago, now)
    if kind is ResourceKind.ZONE:
        change_count = len(touched_zone_ids(events))
    else:
        change_count = len(events)

    return RefreshPlan(
        kind=kind,
        mode=RefreshMode.WINDOWED,
        proceed=change_count > 0,
        minutes_ago=minutes_ago,
        change_count=change_count,
    )


def _zone_name_key(name: str) -> str:
    return name.rstrip(".").lower()


def plan_dns_refresh(
    zones: Sequence[DNSZone],
    minutes_ago: int,
    zone_names: Sequence[str],
    audit: Optional[AuditLogProvider],
    now: Optional[datetime] = None,
) -> RefreshPlan:
    """
    Plan the DNS record refresh against the current zone store.

    Target zones may belong to any account; the updater only fetches the
    ones owned by the current account.
    """
    kind = ResourceKind.DNS
    if minutes_ago and zone_names:
        raise ConfigError("A refresh window and a zone list cannot be combined")

    if zone_names:
        wanted = {_zone_name_key(name) for name in zone_names}
        targets = [zone for zone in zones if _zone_name_key(zone.name) in wanted]
        return RefreshPlan(
            kind=kind,
            mode=RefreshMode.EXPLICIT,
            proceed=True,
            change_count=len(targets),
            target_zones=targets,
            zone_ids={zone.zone_id.lower() for zone in targets},
        )

    if not minutes_ago:
        return RefreshPlan(
            kind=kind,
            mode=RefreshMode.FULL,
            proceed=True,
            change_count=len(zones),
            target_zones=list(zones),
        )

    if audit is None:
        raise ConfigError("A windowed refresh needs an audit log provider")

    updated = {zone_id.lower() for zone_id in touched_zone_ids(
        mutation_events(audit, ResourceKind.ZONE, minutes_ago, now)
    )}
    targets = [zone for zone in zones if zone.zone_id.lower() in updated]
    return RefreshPlan(
        kind=kind,
        mode=RefreshMode.WINDOWED,
        proceed=len(updated) > 0,
        minutes_ago=minutes_ago,
        change_count=len(updated),
        target_zones=targets,
        zone_ids={zone.zone_id.lower() for zone in targets},
    )
