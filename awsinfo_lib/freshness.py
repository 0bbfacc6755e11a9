"""
Freshness module for AWS Info

Decides whether the local or the shared remote copy of a store is
authoritative for a read. A strictly newer remote copy wins and is written
back locally; ties and everything else go to the local copy.
"""

from typing import List

from .logging import get_logger
from .models import ResourceKind, ResourceRecord
from .store import LocalStore, RemoteStore

logger = get_logger()


class FreshnessArbiter:
    def __init__(self, local: LocalStore, remote: RemoteStore):
        self.local = local
        self.remote = remote

    def is_remote_newer(self, kind: ResourceKind) -> bool:
        local_time = self.local.modified_time(kind)
        remote_time = self.remote.modified_time(kind)
        logger.debug(
            "%s freshness: local=%s remote=%s", kind.file_name, local_time, remote_time
        )
        return remote_time > local_time

    def load(self, kind: ResourceKind) -> List[ResourceRecord]:
        """
        Return the records of the newest copy of the store.

        Raises StoreError subclasses when the chosen copy cannot be read;
        a failed remote read does not fall back to the older local copy.
        """
        if self.is_remote_newer(kind):
            records = self.remote.load(kind)
            self.local.save(kind, records)
            logger.debug("Refreshed local %s from remote copy", kind.file_name)
            return records
        return self.local.load(kind)
