"""
AWS Info Library Package

This package contains the inventory engine behind the awsinfo CLI: stores,
freshness arbitration, the paginated fetch protocol, refresh planning and
multi-account reconciliation.
"""

__version__ = "1.0.0"

# Import commonly used functions for convenience
from .fetch import fetch_all
from .freshness import FreshnessArbiter
from .planner import plan_dns_refresh, plan_refresh
from .reconcile import reconcile
from .store import LocalStore, RemoteStore
from .sync import sync_to_remote

__all__ = [
    "fetch_all",
    "FreshnessArbiter",
    "plan_refresh",
    "plan_dns_refresh",
    "reconcile",
    "LocalStore",
    "RemoteStore",
    "sync_to_remote",
]
