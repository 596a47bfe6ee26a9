"""Public entry points consumed by transports (CLI, HTTP, schedulers)."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from pydantic import SecretStr

from mailbox_sync.config import Settings
from mailbox_sync.gmail.client import GmailClient, MessageApi
from mailbox_sync.gmail.oauth import GoogleTokenRefresher, TokenRefresher
from mailbox_sync.models import Credential, MessageFilter, MessageRecord, OwnerStats, SyncSummary
from mailbox_sync.store import (
    Database,
    MessageStore,
    SqliteMessageStore,
    SqliteTokenStore,
    TokenStore,
)
from mailbox_sync.sync import (
    CredentialGuard,
    FetchCoordinator,
    RetentionSweeper,
    SyncOrchestrator,
    UpsertEngine,
)
from mailbox_sync.utils import utc_now

logger = structlog.get_logger()


class MailboxSyncService:
    """Facade over the sync engine and the stores.

    Every call takes the owner explicitly; there is no ambient "current
    account" state.
    """

    def __init__(
        self,
        token_store: TokenStore,
        message_store: MessageStore,
        orchestrator: SyncOrchestrator,
        sweeper: RetentionSweeper,
        *,
        retention_days: int = 365,
        max_messages: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.token_store = token_store
        self.message_store = message_store
        self.orchestrator = orchestrator
        self.sweeper = sweeper
        self._retention = timedelta(days=retention_days)
        self._max_messages = max_messages
        self._clock = clock

    async def run_sync_cycle(
        self,
        owner: str | None = None,
        limit: int | None = None,
        *,
        full: bool = False,
        query: str | None = None,
    ) -> SyncSummary:
        """Sync one owner or all owners.

        Routine cycles are capped at `limit` (default: the configured
        max_messages) per owner; `full=True` follows every page.
        """

        cap = None if full else (limit or self._max_messages)
        return await self.orchestrator.run_sync_cycle(owner, cap, query=query)

    def run_retention_sweep(self, cutoff: datetime | None = None) -> dict[str, int]:
        """Sweep every owner; the default cutoff is now minus the retention window."""

        cutoff = cutoff or self._clock() - self._retention
        return self.sweeper.sweep_all(cutoff)

    def get_stats_for_owner(self, owner: str) -> OwnerStats:
        total = self.message_store.count_by_owner(owner)
        unread = self.message_store.count_by_owner(owner, is_read=False)
        starred = self.message_store.count_by_owner(owner, is_starred=True)
        credential = self.token_store.find_by_owner(owner)

        logger.info("owner_stats", owner=owner, total=total, unread=unread, starred=starred)
        return OwnerStats(
            owner=owner,
            total=total,
            unread=unread,
            starred=starred,
            read=total - unread,
            last_synced_at=credential.last_synced_at if credential else None,
            connected_at=credential.created_at if credential else None,
        )

    def search_messages(self, owner: str, message_filter: MessageFilter) -> list[MessageRecord]:
        """Search one owner's stored messages.

        Raises:
            InvalidFilterError: If the filter's date range or limit is invalid.
        """

        message_filter.check()
        results = self.message_store.search(owner, message_filter)
        logger.info("owner_search", owner=owner, results=len(results))
        return results

    def list_accounts(self) -> list[Credential]:
        return self.token_store.find_all()

    def needs_reauth(self, credential: Credential) -> bool:
        """True when the credential is stale and cannot be refreshed."""

        return not self.orchestrator.guard.validate(credential)

    async def fetch_message(self, owner: str, message_id: str) -> MessageRecord:
        """Fetch a single message by id and store it for the owner."""

        return await self.orchestrator.fetch_message(owner, message_id)

    async def connect_owner(
        self,
        owner: str,
        *,
        account_email: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> Credential:
        """Store the output of an authorization flow as the owner's credential."""

        async with self.orchestrator.locks.lock_for(owner):
            now = self._clock()
            existing = self.token_store.find_by_owner(owner)
            credential = Credential(
                owner=owner,
                account_email=account_email,
                access_token=SecretStr(access_token),
                refresh_token=SecretStr(refresh_token) if refresh_token else None,
                access_token_expires_at=expires_at,
                last_synced_at=existing.last_synced_at if existing else None,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self.token_store.save(credential)

        logger.info("owner_connected", owner=owner, account_email=account_email)
        return credential

    async def disconnect_owner(self, owner: str) -> int:
        """Delete the owner's credential and every stored message.

        Returns:
            Number of messages deleted.
        """

        async with self.orchestrator.locks.lock_for(owner):
            removed = self.token_store.delete_by_owner(owner)
            deleted = self.message_store.delete_by_owner(owner)

        logger.info("owner_disconnected", owner=owner, credential_removed=removed, deleted=deleted)
        return deleted


def build_service(
    settings: Settings,
    *,
    api: MessageApi | None = None,
    refresher: TokenRefresher | None = None,
) -> MailboxSyncService:
    """Wire the default SQLite stores and Gmail collaborators together."""

    db = Database(settings.db_path)
    db.initialize()

    token_store = SqliteTokenStore(db)
    message_store = SqliteMessageStore(db)

    guard = CredentialGuard(
        token_store,
        refresher or GoogleTokenRefresher(settings),
        skew=timedelta(seconds=settings.refresh_skew_seconds),
    )
    fetcher = FetchCoordinator(api or GmailClient(settings), page_size=settings.gmail_page_size)
    orchestrator = SyncOrchestrator(
        token_store,
        guard,
        fetcher,
        UpsertEngine(message_store),
        concurrency=settings.sync_concurrency,
    )
    return MailboxSyncService(
        token_store,
        message_store,
        orchestrator,
        RetentionSweeper(message_store, token_store),
        retention_days=settings.retention_days,
        max_messages=settings.sync_max_messages,
    )
