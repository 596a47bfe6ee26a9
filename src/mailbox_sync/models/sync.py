"""Result records produced by the sync engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class OwnerSyncStatus(str, Enum):
    """Outcome of syncing a single owner."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REAUTH_REQUIRED = "reauth_required"


class UpsertResult(BaseModel):
    """Counts produced by one upsert batch."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0


class FetchStats(BaseModel):
    """Counters accumulated while paging the remote API for one owner."""

    pages: int = 0
    listed: int = 0
    fetched: int = 0
    failed: int = 0


class OwnerSyncResult(BaseModel):
    """Outcome of one owner's pass through a sync cycle."""

    owner: str
    status: OwnerSyncStatus
    messages_fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is OwnerSyncStatus.SUCCEEDED


class SyncSummary(BaseModel):
    """Per-cycle summary: the observable output of a sync cycle."""

    started_at: datetime
    finished_at: datetime
    total_owners: int = 0
    succeeded: int = 0
    failed: int = 0
    messages_fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    reauth_required: list[str] = Field(default_factory=list)
    results: list[OwnerSyncResult] = Field(default_factory=list)

    @classmethod
    def from_results(
        cls,
        results: list[OwnerSyncResult],
        *,
        started_at: datetime,
        finished_at: datetime,
    ) -> SyncSummary:
        return cls(
            started_at=started_at,
            finished_at=finished_at,
            total_owners=len(results),
            succeeded=sum(1 for r in results if r.succeeded),
            failed=sum(1 for r in results if not r.succeeded),
            messages_fetched=sum(r.messages_fetched for r in results),
            inserted=sum(r.inserted for r in results),
            updated=sum(r.updated for r in results),
            skipped=sum(r.skipped for r in results),
            reauth_required=[
                r.owner for r in results if r.status is OwnerSyncStatus.REAUTH_REQUIRED
            ],
            results=results,
        )


class OwnerStats(BaseModel):
    """Stored-message counts for one owner."""

    owner: str
    total: int = 0
    unread: int = 0
    starred: int = 0
    read: int = 0
    last_synced_at: datetime | None = None
    connected_at: datetime | None = None
