"""Data models for Mailbox Sync.

This module contains Pydantic models for data validation and serialization.
"""

from mailbox_sync.models.credential import Credential
from mailbox_sync.models.message import NO_SUBJECT, MessageFilter, MessageRecord
from mailbox_sync.models.sync import (
    FetchStats,
    OwnerStats,
    OwnerSyncResult,
    OwnerSyncStatus,
    SyncSummary,
    UpsertResult,
)

__all__ = [
    "NO_SUBJECT",
    "Credential",
    "FetchStats",
    "MessageFilter",
    "MessageRecord",
    "OwnerStats",
    "OwnerSyncResult",
    "OwnerSyncStatus",
    "SyncSummary",
    "UpsertResult",
]
