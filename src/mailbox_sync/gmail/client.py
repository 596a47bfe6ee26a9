"""Gmail API client implementation.

This module provides a client for listing and fetching messages with an
owner's stored access token.

Notes:
    The Google API client is synchronous. This project wraps those calls using
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
    The client never refreshes tokens itself; that is the job of
    `CredentialGuard`, which runs before any call made here.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import TransientFetchFailure
from mailbox_sync.models import Credential

logger = structlog.get_logger()


@dataclass(frozen=True)
class MessagePage:
    """One page of message-id stubs from users.messages.list."""

    message_ids: list[str] = field(default_factory=list)
    next_page_token: str | None = None


class MessageApi(Protocol):
    """Remote message listing/get API."""

    async def list_messages_page(
        self,
        credential: Credential,
        *,
        page_token: str | None = None,
        max_results: int | None = None,
        query: str | None = None,
    ) -> MessagePage: ...

    async def get_message(self, credential: Credential, message_id: str) -> dict[str, Any]: ...


class GmailClient:
    """Gmail API client for multi-owner message retrieval.

    A Gmail service object is built per access token and cached until the
    token changes.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize Gmail client.

        Args:
            settings: Application settings. If None, uses default settings.
        """
        from mailbox_sync.config import get_settings

        self.settings = settings or get_settings()
        self._services: dict[str, tuple[str, Any]] = {}
        logger.info("gmail_client_initialized", timeout=self.settings.http_timeout_seconds)

    async def list_messages_page(
        self,
        credential: Credential,
        *,
        page_token: str | None = None,
        max_results: int | None = None,
        query: str | None = None,
    ) -> MessagePage:
        """List one page of message ids for an owner.

        Args:
            credential: A credential already validated by CredentialGuard.
            page_token: Cursor returned by the previous page, if any.
            max_results: Page size; defaults to settings.gmail_page_size.
            query: Optional Gmail search query string.

        Returns:
            MessagePage with ids and the next cursor (None on the last page).

        Raises:
            TransientFetchFailure: If the API request fails or times out.
        """

        per_page = max_results or self.settings.gmail_page_size
        logger.debug(
            "listing_messages_page",
            owner=credential.owner,
            max_results=per_page,
            has_cursor=page_token is not None,
            query=query,
        )

        try:
            response = await asyncio.to_thread(
                self._list_messages_sync, credential, page_token, per_page, query
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("gmail_list_messages_failed", owner=credential.owner, error=str(exc))
            raise TransientFetchFailure(f"List failed for {credential.owner}: {exc}") from exc

        ids = [
            str(m["id"])
            for m in response.get("messages", []) or []
            if isinstance(m, dict) and m.get("id")
        ]
        return MessagePage(message_ids=ids, next_page_token=response.get("nextPageToken") or None)

    async def get_message(self, credential: Credential, message_id: str) -> dict[str, Any]:
        """Get a full message (headers, labels, part tree) by ID.

        Args:
            credential: A credential already validated by CredentialGuard.
            message_id: The Gmail message ID.

        Returns:
            Message data dictionary (format=full).

        Raises:
            TransientFetchFailure: If the API request fails or times out.
        """

        logger.debug("getting_message", owner=credential.owner, message_id=message_id)

        try:
            return await asyncio.to_thread(self._get_message_sync, credential, message_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "gmail_get_message_failed",
                owner=credential.owner,
                message_id=message_id,
                error=str(exc),
            )
            raise TransientFetchFailure(f"Get {message_id} failed: {exc}") from exc

    def _service_for(self, credential: Credential) -> Any:
        token = credential.access_token.get_secret_value()
        cached = self._services.get(credential.owner)
        if cached is not None and cached[0] == token:
            return cached[1]

        service = self._build_service(token)
        self._services[credential.owner] = (token, service)
        return service

    def _build_service(self, access_token: str) -> Any:
        # Imported lazily to keep import-time cost low and tests fast.
        import google_auth_httplib2
        import httplib2
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build

        creds = Credentials(token=access_token)
        http = google_auth_httplib2.AuthorizedHttp(
            creds, http=httplib2.Http(timeout=self.settings.http_timeout_seconds)
        )
        # cache_discovery=False prevents writing discovery docs to disk.
        return build("gmail", "v1", http=http, cache_discovery=False)

    def _list_messages_sync(
        self,
        credential: Credential,
        page_token: str | None,
        max_results: int,
        query: str | None,
    ) -> dict[str, Any]:
        service = self._service_for(credential)
        request = (
            service.users()
            .messages()
            .list(
                userId=self.settings.gmail_user_id,
                maxResults=max_results,
                q=query,
                pageToken=page_token,
            )
        )
        return request.execute(num_retries=0)

    def _get_message_sync(self, credential: Credential, message_id: str) -> dict[str, Any]:
        service = self._service_for(credential)
        request = (
            service.users()
            .messages()
            .get(userId=self.settings.gmail_user_id, id=message_id, format="full")
        )
        return request.execute(num_retries=0)
