"""Paginated remote fetch with per-message failure isolation."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import structlog

from mailbox_sync.gmail.client import MessageApi
from mailbox_sync.gmail.parsing import parse_message
from mailbox_sync.models import Credential, FetchStats, MessageRecord

logger = structlog.get_logger()


class FetchCoordinator:
    """Pages through the message list and retrieves each full message.

    Two tiers per page: list message-id stubs, then one get per stub. A
    message that fails to retrieve or parse is skipped; a page that fails
    to list ends the fetch with TransientFetchFailure. Nothing is retried
    here; the next scheduled cycle is the retry.
    """

    def __init__(self, api: MessageApi, *, page_size: int = 100) -> None:
        self._api = api
        self._page_size = page_size

    async def fetch_all(
        self,
        credential: Credential,
        limit: int | None = None,
        *,
        query: str | None = None,
        stats: FetchStats | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield full raw messages for an owner.

        Each call starts from the first page.

        Args:
            credential: A credential already validated by CredentialGuard.
            limit: Stop after this many message stubs; None follows every page.
            query: Optional Gmail search query.
            stats: Optional counters updated in place.

        Raises:
            TransientFetchFailure: If a page cannot be listed.
        """

        stats = stats if stats is not None else FetchStats()
        page_token: str | None = None

        while True:
            if limit is not None and stats.listed >= limit:
                break

            remaining = None if limit is None else limit - stats.listed
            per_page = self._page_size if remaining is None else min(self._page_size, remaining)

            page = await self._api.list_messages_page(
                credential, page_token=page_token, max_results=per_page, query=query
            )
            stats.pages += 1

            ids = page.message_ids if remaining is None else page.message_ids[:remaining]
            for message_id in ids:
                stats.listed += 1
                try:
                    raw = await self._api.get_message(credential, message_id)
                except Exception as exc:  # noqa: BLE001
                    stats.failed += 1
                    logger.warning(
                        "message_fetch_skipped",
                        owner=credential.owner,
                        message_id=message_id,
                        error=str(exc),
                    )
                    continue

                stats.fetched += 1
                yield raw

            page_token = page.next_page_token
            if page_token is None:
                break

        logger.info(
            "fetch_completed",
            owner=credential.owner,
            pages=stats.pages,
            listed=stats.listed,
            fetched=stats.fetched,
            failed=stats.failed,
        )

    async def fetch_records(
        self,
        credential: Credential,
        limit: int | None = None,
        *,
        query: str | None = None,
        stats: FetchStats | None = None,
    ) -> AsyncIterator[MessageRecord]:
        """Yield parsed records; messages that fail to parse are skipped."""

        stats = stats if stats is not None else FetchStats()
        async for raw in self.fetch_all(credential, limit, query=query, stats=stats):
            try:
                record = parse_message(raw)
            except Exception as exc:  # noqa: BLE001
                stats.fetched -= 1
                stats.failed += 1
                logger.warning(
                    "message_parse_skipped",
                    owner=credential.owner,
                    message_id=raw.get("id") if isinstance(raw, dict) else None,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue

            yield record

    async def fetch_one(self, credential: Credential, message_id: str) -> MessageRecord:
        """Fetch and parse a single message by id."""

        raw = await self._api.get_message(credential, message_id)
        return parse_message(raw)
