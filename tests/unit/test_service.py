"""Unit tests for MailboxSyncService and its wiring."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FIXED_NOW, FakeClock, FakeMessageApi, make_gmail_message
from mailbox_sync.exceptions import InvalidFilterError, ReauthRequired
from mailbox_sync.models import MessageFilter
from mailbox_sync.service import MailboxSyncService, build_service


class GatedMessageApi(FakeMessageApi):
    """FakeMessageApi whose listing waits until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.listing = asyncio.Event()
        self.release = asyncio.Event()

    async def list_messages_page(self, credential, **kwargs):
        self.listing.set()
        await self.release.wait()
        return await super().list_messages_page(credential, **kwargs)


@pytest.fixture
def service(mock_settings, fake_api, fake_refresher) -> MailboxSyncService:
    built = build_service(mock_settings, api=fake_api, refresher=fake_refresher)
    built._clock = FakeClock()
    return built


async def _connect(
    service: MailboxSyncService,
    owner: str,
    *,
    access_token: str = "access-token",
    refresh_token: str | None = "refresh-token",
    expires_at: datetime | None = None,
) -> None:
    await service.connect_owner(
        owner,
        account_email=f"{owner}@example.com",
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
    )


class TestMailboxSyncService:
    """Test suite for MailboxSyncService class."""

    @pytest.mark.asyncio
    async def test_sync_then_stats(self, service, fake_api) -> None:
        await _connect(service, "owner-1")
        fake_api.add("owner-1", make_gmail_message("m1", labels=["UNREAD"]))
        fake_api.add("owner-1", make_gmail_message("m2", labels=["STARRED"]))
        fake_api.add("owner-1", make_gmail_message("m3", labels=[]))

        summary = await service.run_sync_cycle()
        stats = service.get_stats_for_owner("owner-1")

        assert summary.inserted == 3
        assert stats.total == 3
        assert stats.unread == 1
        assert stats.read == 2
        assert stats.starred == 1
        assert stats.last_synced_at is not None

    def test_stats_for_unknown_owner_are_zero(self, service) -> None:
        stats = service.get_stats_for_owner("nobody")

        assert stats.total == 0
        assert stats.last_synced_at is None

    @pytest.mark.asyncio
    async def test_disconnect_removes_credential_and_messages(self, service, fake_api) -> None:
        await _connect(service, "owner-1")
        await _connect(service, "owner-2")
        fake_api.add("owner-1", make_gmail_message("m1"))
        fake_api.add("owner-2", make_gmail_message("m2"))
        await service.run_sync_cycle()

        deleted = await service.disconnect_owner("owner-1")

        assert deleted == 1
        assert [c.owner for c in service.list_accounts()] == ["owner-2"]
        assert service.get_stats_for_owner("owner-2").total == 1

    @pytest.mark.asyncio
    async def test_reconnect_preserves_created_at(self, service) -> None:
        await _connect(service, "owner-1")
        first = service.token_store.find_by_owner("owner-1")

        service._clock.advance(timedelta(days=1))
        await _connect(service, "owner-1")
        second = service.token_store.find_by_owner("owner-1")

        assert second.created_at == first.created_at
        assert second.updated_at == FIXED_NOW + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_reconnect_during_sync_keeps_new_token(
        self, mock_settings, fake_refresher
    ) -> None:
        api = GatedMessageApi()
        service = build_service(mock_settings, api=api, refresher=fake_refresher)
        service._clock = FakeClock()
        await _connect(service, "owner-1")
        api.add("owner-1", make_gmail_message("m1"))

        sync = asyncio.create_task(service.run_sync_cycle("owner-1"))
        await api.listing.wait()
        reconnect = asyncio.create_task(_connect(service, "owner-1", access_token="new-token"))
        await asyncio.sleep(0)

        assert not reconnect.done()

        api.release.set()
        summary = await sync
        await reconnect

        stored = service.token_store.find_by_owner("owner-1")
        assert summary.succeeded == 1
        assert stored.access_token.get_secret_value() == "new-token"
        assert stored.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_successful_sync_does_not_rewrite_tokens(self, service, fake_api) -> None:
        await _connect(service, "owner-1", access_token="original")
        fake_api.add("owner-1", make_gmail_message("m1"))

        await service.run_sync_cycle("owner-1")

        stored = service.token_store.find_by_owner("owner-1")
        assert stored.access_token.get_secret_value() == "original"
        assert stored.refresh_token.get_secret_value() == "refresh-token"

    def test_search_validates_filter(self, service) -> None:
        with pytest.raises(InvalidFilterError):
            service.search_messages(
                "owner-1",
                MessageFilter(start_date=FIXED_NOW, end_date=FIXED_NOW - timedelta(days=1)),
            )

    @pytest.mark.asyncio
    async def test_retention_sweep_uses_configured_window(self, service, fake_api) -> None:
        await _connect(service, "owner-1")
        for message_id, age in (("old", 400), ("new", 10)):
            fake_api.add(
                "owner-1",
                make_gmail_message(message_id, internal_date=FIXED_NOW - timedelta(days=age)),
            )
        await service.run_sync_cycle()

        deleted = service.run_retention_sweep()

        assert deleted == {"owner-1": 1}
        assert service.get_stats_for_owner("owner-1").total == 1

    @pytest.mark.asyncio
    async def test_routine_cycle_is_capped_and_full_cycle_is_not(self, service, fake_api) -> None:
        await _connect(service, "owner-1")
        for i in range(120):
            fake_api.add("owner-1", make_gmail_message(f"m{i}"))

        capped = await service.run_sync_cycle()
        full = await service.run_sync_cycle(full=True)

        assert capped.messages_fetched == 100
        assert full.messages_fetched == 120
        assert service.get_stats_for_owner("owner-1").total == 120

    @pytest.mark.asyncio
    async def test_sync_query_is_forwarded_to_listing(self, service, fake_api) -> None:
        await _connect(service, "owner-1")

        await service.run_sync_cycle("owner-1", query="is:unread")

        assert fake_api.list_calls[0]["query"] == "is:unread"


class TestFetchMessage:
    """Test suite for single-message fetch."""

    @pytest.mark.asyncio
    async def test_fetch_message_stores_record(self, service, fake_api) -> None:
        await _connect(service, "owner-1")
        fake_api.messages["m9"] = make_gmail_message("m9", subject="Invoice")

        record = await service.fetch_message("owner-1", "m9")

        assert record.owner == "owner-1"
        assert record.subject == "Invoice"
        assert fake_api.get_calls == ["m9"]
        assert service.get_stats_for_owner("owner-1").total == 1

    @pytest.mark.asyncio
    async def test_fetch_message_is_idempotent(self, service, fake_api) -> None:
        await _connect(service, "owner-1")
        fake_api.messages["m9"] = make_gmail_message("m9")

        await service.fetch_message("owner-1", "m9")
        await service.fetch_message("owner-1", "m9")

        assert service.get_stats_for_owner("owner-1").total == 1

    @pytest.mark.asyncio
    async def test_fetch_message_for_unknown_owner_requires_reauth(self, service) -> None:
        with pytest.raises(ReauthRequired):
            await service.fetch_message("nobody", "m1")


class TestNeedsReauth:
    """Test suite for credential status reporting."""

    @pytest.mark.asyncio
    async def test_fresh_credential_is_usable(self, service) -> None:
        await _connect(service, "owner-1")

        assert service.needs_reauth(service.token_store.find_by_owner("owner-1")) is False

    @pytest.mark.asyncio
    async def test_expired_credential_with_refresh_token_is_usable(self, service) -> None:
        await _connect(
            service, "owner-1", expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc)
        )

        assert service.needs_reauth(service.token_store.find_by_owner("owner-1")) is False

    @pytest.mark.asyncio
    async def test_expired_credential_without_refresh_token_needs_reauth(self, service) -> None:
        await _connect(
            service,
            "owner-1",
            refresh_token=None,
            expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )

        assert service.needs_reauth(service.token_store.find_by_owner("owner-1")) is True
