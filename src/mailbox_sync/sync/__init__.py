"""Ingestion and synchronization engine.

This package contains the credential guard, the paginated fetch coordinator,
the upsert and retention layers, the cycle orchestrator and its scheduler.
"""

from .credentials import CredentialGuard
from .fetch import FetchCoordinator
from .orchestrator import OwnerLocks, SyncOrchestrator
from .retention import RetentionSweeper
from .upsert import UpsertEngine

__all__ = [
    "CredentialGuard",
    "FetchCoordinator",
    "OwnerLocks",
    "RetentionSweeper",
    "SyncOrchestrator",
    "UpsertEngine",
]
