"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from pydantic import SecretStr

from mailbox_sync.exceptions import TransientFetchFailure
from mailbox_sync.gmail.client import MessagePage
from mailbox_sync.gmail.oauth import TokenGrant
from mailbox_sync.models import Credential

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeMessageApi:
    """In-memory MessageApi.

    `mailboxes` maps owner -> ordered message ids; `messages` maps message
    id -> raw Gmail message. Pages are cut from the id list by max_results.
    """

    def __init__(self, messages: dict[str, dict[str, Any]] | None = None) -> None:
        self.messages: dict[str, dict[str, Any]] = dict(messages or {})
        self.mailboxes: dict[str, list[str]] = {}
        self.failing_gets: set[str] = set()
        self.failing_list_owners: set[str] = set()
        self.fail_list_on_page: dict[str, int] = {}
        self.list_calls: list[dict[str, Any]] = []
        self.get_calls: list[str] = []

    def add(self, owner: str, message: dict[str, Any]) -> None:
        self.messages[message["id"]] = message
        self.mailboxes.setdefault(owner, []).append(message["id"])

    async def list_messages_page(
        self,
        credential: Credential,
        *,
        page_token: str | None = None,
        max_results: int | None = None,
        query: str | None = None,
    ) -> MessagePage:
        owner = credential.owner
        page_index = int(page_token or 0)
        self.list_calls.append(
            {"owner": owner, "page_token": page_token, "max_results": max_results, "query": query}
        )
        if owner in self.failing_list_owners or self.fail_list_on_page.get(owner) == page_index:
            raise TransientFetchFailure(f"list failed for {owner}")

        ids = self.mailboxes.get(owner, [])
        size = max_results or 100
        start = page_index * size
        chunk = ids[start : start + size]
        next_token = str(page_index + 1) if start + size < len(ids) else None
        return MessagePage(message_ids=list(chunk), next_page_token=next_token)

    async def get_message(self, credential: Credential, message_id: str) -> dict[str, Any]:
        self.get_calls.append(message_id)
        if message_id in self.failing_gets:
            raise TransientFetchFailure(f"get failed for {message_id}")
        return self.messages[message_id]


class FakeTokenRefresher:
    """TokenRefresher that returns queued grants or raises a queued error."""

    def __init__(self, grant: TokenGrant | None = None, error: Exception | None = None) -> None:
        self.grant = grant or TokenGrant(access_token="refreshed-token", expires_in=3600)
        self.error = error
        self.calls: list[str] = []

    def refresh(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        return self.grant


def make_credential(
    owner: str = "owner-1",
    *,
    access_token: str = "access-token",
    refresh_token: str | None = "refresh-token",
    expires_at: datetime | None = None,
) -> Credential:
    return Credential(
        owner=owner,
        account_email=f"{owner}@example.com",
        access_token=SecretStr(access_token),
        refresh_token=SecretStr(refresh_token) if refresh_token else None,
        access_token_expires_at=expires_at,
        created_at=FIXED_NOW - timedelta(days=30),
        updated_at=FIXED_NOW - timedelta(days=30),
    )


def make_gmail_message(
    message_id: str,
    *,
    subject: str | None = "Hello",
    sender: str = "Sender <sender@example.com>",
    labels: list[str] | None = None,
    internal_date: datetime | None = FIXED_NOW,
    body_data: str = "UGxhaW4gYm9keQ",
) -> dict[str, Any]:
    """Build a minimal format=full Gmail message with a single text/plain body."""

    headers = [{"name": "From", "value": sender}, {"name": "To", "value": "me@example.com"}]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})

    message: dict[str, Any] = {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "labelIds": labels if labels is not None else ["INBOX"],
        "snippet": f"snippet {message_id}",
        "sizeEstimate": 1024,
        "payload": {
            "mimeType": "text/plain",
            "headers": headers,
            "body": {"data": body_data},
        },
    }
    if internal_date is not None:
        message["internalDate"] = str(int(internal_date.timestamp() * 1000))
    return message


@pytest.fixture
def mock_settings(tmp_path):
    """Provide mock settings for testing."""
    from mailbox_sync.config import Settings

    return Settings(
        db_path=tmp_path / "mailbox.sqlite3",
        oauth_client_id="client-id",
        oauth_client_secret="client-secret",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database(tmp_path):
    from mailbox_sync.store import Database

    db = Database(tmp_path / "mailbox.sqlite3")
    db.initialize()
    return db


@pytest.fixture
def token_store(database):
    from mailbox_sync.store import SqliteTokenStore

    return SqliteTokenStore(database)


@pytest.fixture
def message_store(database):
    from mailbox_sync.store import SqliteMessageStore

    return SqliteMessageStore(database)


@pytest.fixture
def fake_api() -> FakeMessageApi:
    return FakeMessageApi()


@pytest.fixture
def fake_refresher() -> FakeTokenRefresher:
    return FakeTokenRefresher()


@pytest.fixture
def sample_gmail_message() -> dict[str, Any]:
    """Provide a multipart/alternative Gmail message (format=full)."""
    return {
        "id": "msg123456",
        "threadId": "thread789",
        "labelIds": ["INBOX", "STARRED"],
        "snippet": "Hello",
        "sizeEstimate": 2048,
        "internalDate": "1700000000000",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": '"A" <a@x.com>'},
                {"name": "Subject", "value": "Hi"},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": "SGVsbG8"}},
                {"mimeType": "text/html", "body": {"data": "PHA-SGVsbG88L3A-"}},
            ],
        },
    }
