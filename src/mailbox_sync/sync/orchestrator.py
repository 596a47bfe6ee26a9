"""Sync cycle driver.

A cycle enumerates owners, then for each owner, independently and under an
owner-scoped lock: validate credential -> fetch -> parse -> upsert -> mark
synced. One owner's failure is recorded in the summary and never stops the
others. Only a failure to enumerate credentials propagates.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from mailbox_sync.exceptions import ReauthRequired
from mailbox_sync.models import (
    Credential,
    FetchStats,
    MessageRecord,
    OwnerSyncResult,
    OwnerSyncStatus,
    SyncSummary,
)
from mailbox_sync.store import TokenStore
from mailbox_sync.sync.credentials import CredentialGuard
from mailbox_sync.sync.fetch import FetchCoordinator
from mailbox_sync.sync.upsert import UpsertEngine
from mailbox_sync.utils import utc_now

logger = structlog.get_logger()


class OwnerLocks:
    """One asyncio.Lock per owner, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, owner: str) -> asyncio.Lock:
        return self._locks.setdefault(owner, asyncio.Lock())


class SyncOrchestrator:
    """Runs sync cycles across all owners, or a single owner on demand."""

    def __init__(
        self,
        token_store: TokenStore,
        guard: CredentialGuard,
        fetcher: FetchCoordinator,
        upsert_engine: UpsertEngine,
        *,
        concurrency: int = 4,
        locks: OwnerLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._token_store = token_store
        self._guard = guard
        self._fetcher = fetcher
        self._upsert = upsert_engine
        self._concurrency = max(1, concurrency)
        self._locks = locks or OwnerLocks()
        self._clock = clock

    @property
    def locks(self) -> OwnerLocks:
        return self._locks

    @property
    def guard(self) -> CredentialGuard:
        return self._guard

    async def run_sync_cycle(
        self,
        owner: str | None = None,
        limit: int | None = None,
        *,
        query: str | None = None,
    ) -> SyncSummary:
        """Run one cycle and return its summary.

        Args:
            owner: Sync only this owner; None syncs every stored credential.
            limit: Per-owner message cap; None fetches every page.
            query: Optional Gmail search query applied to every owner.

        Returns:
            SyncSummary: Counts for the cycle. Partial failures never raise.
        """

        started_at = self._clock()
        logger.info("sync_cycle_started", owner=owner, limit=limit)

        if owner is None:
            credentials = self._token_store.find_all()
        else:
            found = self._token_store.find_by_owner(owner)
            credentials = [found] if found is not None else []

        if owner is not None and not credentials:
            results = [
                OwnerSyncResult(
                    owner=owner,
                    status=OwnerSyncStatus.FAILED,
                    error="no stored credential for owner",
                )
            ]
        else:
            semaphore = asyncio.Semaphore(self._concurrency)

            async def run_one(credential: Credential) -> OwnerSyncResult:
                async with semaphore:
                    return await self.sync_owner(credential, limit, query=query)

            results = list(await asyncio.gather(*(run_one(c) for c in credentials)))

        summary = SyncSummary.from_results(
            results, started_at=started_at, finished_at=self._clock()
        )
        logger.info(
            "sync_cycle_completed",
            total_owners=summary.total_owners,
            succeeded=summary.succeeded,
            failed=summary.failed,
            messages_fetched=summary.messages_fetched,
            inserted=summary.inserted,
            updated=summary.updated,
            skipped=summary.skipped,
            reauth_required=summary.reauth_required,
        )
        return summary

    async def sync_owner(
        self,
        credential: Credential,
        limit: int | None = None,
        *,
        query: str | None = None,
    ) -> OwnerSyncResult:
        """Sync a single owner. Never raises for owner-level failures."""

        owner = credential.owner
        async with self._locks.lock_for(owner):
            try:
                return await self._sync_owner_locked(owner, limit, query)
            except Exception as exc:  # noqa: BLE001
                logger.exception("owner_sync_failed", owner=owner, error=str(exc))
                return OwnerSyncResult(owner=owner, status=OwnerSyncStatus.FAILED, error=str(exc))

    async def fetch_message(self, owner: str, message_id: str) -> MessageRecord:
        """Fetch one message by id for an owner and store it.

        Raises:
            ReauthRequired: If the owner has no usable credential.
            TransientFetchFailure: If the message cannot be retrieved.
            ParseFailure: If the message cannot be parsed.
        """

        async with self._locks.lock_for(owner):
            current = self._token_store.find_by_owner(owner)
            if current is None:
                raise ReauthRequired(owner, "no stored credential for owner")

            valid = await self._guard.ensure_valid(current)
            record = await self._fetcher.fetch_one(valid, message_id)
            upserted = self._upsert.upsert(owner, [record])

        logger.info(
            "message_fetched",
            owner=owner,
            message_id=message_id,
            inserted=upserted.inserted,
            updated=upserted.updated,
        )
        return record.model_copy(update={"owner": owner})

    async def _sync_owner_locked(
        self,
        owner: str,
        limit: int | None,
        query: str | None,
    ) -> OwnerSyncResult:
        # Re-read under the lock: another operation may have refreshed the token.
        current = self._token_store.find_by_owner(owner)
        if current is None:
            return OwnerSyncResult(
                owner=owner,
                status=OwnerSyncStatus.FAILED,
                error="credential was removed before sync",
            )

        try:
            valid = await self._guard.ensure_valid(current)
        except ReauthRequired as exc:
            return OwnerSyncResult(
                owner=owner,
                status=OwnerSyncStatus.REAUTH_REQUIRED,
                error=exc.reason,
            )

        stats = FetchStats()
        records: list[MessageRecord] = []
        fetch_error: Exception | None = None
        try:
            async for record in self._fetcher.fetch_records(
                valid, limit, query=query, stats=stats
            ):
                records.append(record)
        except Exception as exc:  # noqa: BLE001
            fetch_error = exc
            logger.warning(
                "owner_fetch_aborted",
                owner=owner,
                fetched=len(records),
                error=str(exc),
            )

        # Already-fetched records are still stored; upsert is idempotent.
        upserted = self._upsert.upsert(owner, records)

        if fetch_error is not None:
            return OwnerSyncResult(
                owner=owner,
                status=OwnerSyncStatus.FAILED,
                messages_fetched=len(records),
                inserted=upserted.inserted,
                updated=upserted.updated,
                skipped=upserted.skipped,
                error=str(fetch_error),
            )

        now = self._clock()
        self._token_store.mark_synced(owner, now)

        logger.info(
            "owner_sync_completed",
            owner=owner,
            messages_fetched=len(records),
            failed_messages=stats.failed,
            inserted=upserted.inserted,
            updated=upserted.updated,
            skipped=upserted.skipped,
        )
        return OwnerSyncResult(
            owner=owner,
            status=OwnerSyncStatus.SUCCEEDED,
            messages_fetched=len(records),
            inserted=upserted.inserted,
            updated=upserted.updated,
            skipped=upserted.skipped,
        )
