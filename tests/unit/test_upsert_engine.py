"""Unit tests for UpsertEngine."""

from __future__ import annotations

from datetime import timedelta

from conftest import FIXED_NOW
from mailbox_sync.exceptions import PersistenceFailure
from mailbox_sync.models import MessageRecord
from mailbox_sync.sync import UpsertEngine


def _record(message_id: str | None, **fields) -> MessageRecord:
    fields.setdefault("received_at", FIXED_NOW - timedelta(days=1))
    return MessageRecord(message_id=message_id, **fields)


class TestUpsertEngine:
    """Test suite for UpsertEngine class."""

    def test_insert_then_update_is_idempotent(self, message_store, clock) -> None:
        engine = UpsertEngine(message_store, clock=clock)
        batch = [_record("m1", subject="One"), _record("m2", subject="Two")]

        first = engine.upsert("owner-1", batch)
        second = engine.upsert("owner-1", batch)

        assert (first.inserted, first.updated, first.skipped) == (2, 0, 0)
        assert (second.inserted, second.updated, second.skipped) == (0, 2, 0)
        assert message_store.count_by_owner("owner-1") == 2

    def test_same_id_for_different_owners_is_not_deduplicated(self, message_store, clock) -> None:
        engine = UpsertEngine(message_store, clock=clock)

        engine.upsert("owner-1", [_record("shared")])
        engine.upsert("owner-2", [_record("shared")])

        assert message_store.count_by_owner("owner-1") == 1
        assert message_store.count_by_owner("owner-2") == 1

    def test_update_keeps_received_and_created_but_refreshes_flags(
        self, message_store, clock
    ) -> None:
        engine = UpsertEngine(message_store, clock=clock)
        first_received = FIXED_NOW - timedelta(days=3)
        engine.upsert("owner-1", [_record("m1", received_at=first_received, is_read=False)])

        clock.advance(timedelta(hours=1))
        engine.upsert(
            "owner-1",
            [
                _record(
                    "m1",
                    received_at=FIXED_NOW,
                    is_read=True,
                    is_starred=True,
                    labels=frozenset({"STARRED"}),
                )
            ],
        )

        stored = message_store.find_by_owner_and_message_id("owner-1", "m1")
        assert stored.received_at == first_received
        assert stored.created_at == FIXED_NOW
        assert stored.updated_at == FIXED_NOW + timedelta(hours=1)
        assert stored.is_read is True
        assert stored.is_starred is True
        assert stored.labels == frozenset({"STARRED"})

    def test_update_fills_received_when_previously_missing(self, message_store, clock) -> None:
        engine = UpsertEngine(message_store, clock=clock)
        engine.upsert("owner-1", [_record("m1", received_at=None)])

        engine.upsert("owner-1", [_record("m1", received_at=FIXED_NOW, internal_date_ms=1)])

        stored = message_store.find_by_owner_and_message_id("owner-1", "m1")
        assert stored.received_at == FIXED_NOW
        assert stored.internal_date_ms == 1

    def test_record_without_id_is_skipped(self, message_store, clock) -> None:
        engine = UpsertEngine(message_store, clock=clock)

        result = engine.upsert("owner-1", [_record(None), _record("m1")])

        assert (result.inserted, result.skipped) == (1, 1)
        assert message_store.count_by_owner("owner-1") == 1

    def test_store_failure_skips_record_and_continues(self, message_store, clock) -> None:
        class FlakyStore:
            def __init__(self, inner) -> None:
                self.inner = inner

            def find_by_owner_and_message_id(self, owner, message_id):
                return self.inner.find_by_owner_and_message_id(owner, message_id)

            def save(self, record):
                if record.message_id == "bad":
                    raise PersistenceFailure("disk full")
                self.inner.save(record)

        engine = UpsertEngine(FlakyStore(message_store), clock=clock)

        result = engine.upsert("owner-1", [_record("bad"), _record("good")])

        assert (result.inserted, result.skipped) == (1, 1)
        assert message_store.find_by_owner_and_message_id("owner-1", "good") is not None
