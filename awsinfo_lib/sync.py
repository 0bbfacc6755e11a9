"""
Sync module for AWS Info

Publishes local stores to the shared bucket when the local copy is newer
than the remote one, or unconditionally when forced.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from .logging import get_logger
from .models import STORE_KINDS, ResourceKind
from .store import LocalStore, RemoteStore

logger = get_logger()


class SyncAction(Enum):
    UPLOADED = "uploaded"
    SKIPPED_OLDER = "skipped-older"
    SKIPPED_MISSING = "skipped-missing"


@dataclass
class SyncOutcome:
    kind: ResourceKind
    action: SyncAction
    location: Optional[str] = None


def sync_to_remote(
    local: LocalStore,
    remote: RemoteStore,
    force: bool = False,
    kinds: Sequence[ResourceKind] = STORE_KINDS,
) -> List[SyncOutcome]:
    """
    Upload each local store that is newer than its remote copy.

    SyncError from an upload propagates and ends the sync.
    """
    outcomes = []
    for kind in kinds:
        path = local.path(kind)
        if not path.exists():
            logger.warning("Skipping %s. There is no local copy.", kind.file_name)
            outcomes.append(SyncOutcome(kind, SyncAction.SKIPPED_MISSING))
            continue

        local_time = local.modified_time(kind)
        remote_time = remote.modified_time(kind)
        if force or local_time > remote_time:
            location = remote.upload(kind, path)
            logger.info("Remote upload to %s", location)
            outcomes.append(SyncOutcome(kind, SyncAction.UPLOADED, location))
        else:
            logger.info(
                "Skipping %s. The S3 copy is newer than local one.", kind.file_name
            )
            outcomes.append(SyncOutcome(kind, SyncAction.SKIPPED_OLDER))
    return outcomes
