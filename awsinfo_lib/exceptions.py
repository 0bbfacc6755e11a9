"""
Exceptions module for AWS Info

Every failure the inventory engine can report derives from InventoryError.
The CLI is the only place that turns these into an exit code.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for all awsinfo errors."""


class ConfigError(InventoryError):
    """Invalid or incomplete configuration."""


class IdentityError(InventoryError):
    """The current AWS account identity could not be resolved."""


class FetchAbortedError(InventoryError):
    """A paginated fetch exhausted its retry budget."""

    def __init__(self, operation: str, attempts: int, cause: Optional[Exception] = None):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Aborting {operation} after {attempts} failed attempts: {cause}"
        )


class StoreError(InventoryError):
    """A store could not provide its records."""


class StoreReadError(StoreError):
    """A local store file exists but cannot be read or decoded."""


class StoreMissingError(StoreReadError):
    """No local store file exists yet."""


class RemoteStoreError(StoreError):
    """The remote copy of a store cannot be fetched or decoded."""


class SyncError(InventoryError):
    """Uploading a store to the shared bucket failed."""


class ResolutionError(InventoryError):
    """A DNS name could not be resolved."""
