"""
Context module for AWS Info

InventoryContext bundles everything an update needs: configuration, the
boto3 session, the resolved account identity, the stores and the audit log.
It is built once before any fetch and is read-only afterwards.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import boto3
import botocore.config

from .config import InventoryConfig
from .freshness import FreshnessArbiter
from .models import AccountIdentity
from .planner import AuditLogProvider
from .store import LocalStore


def get_client_with_config(
    session: boto3.Session, service_name: str, region_name: Optional[str]
) -> Any:
    """Get AWS client; retries are left to the fetch protocol."""
    config = botocore.config.Config(
        retries={"max_attempts": 1, "mode": "standard"},
        read_timeout=60,
        connect_timeout=10,
    )
    return session.client(service_name, region_name=region_name, config=config)


@dataclass(frozen=True)
class InventoryContext:
    config: InventoryConfig
    session: boto3.Session
    identity: AccountIdentity
    local: LocalStore
    arbiter: FreshnessArbiter
    audit: Optional[AuditLogProvider] = None
    sleep: Callable[[float], None] = field(default=time.sleep)

    @property
    def account_id(self) -> str:
        return self.identity.account_id

    def client(self, service_name: str) -> Any:
        return get_client_with_config(self.session, service_name, self.config.region)
