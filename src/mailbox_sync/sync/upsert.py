"""Idempotent insert-or-update of message records keyed by (owner, message id)."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime

import structlog

from mailbox_sync.models import MessageRecord, UpsertResult
from mailbox_sync.store import MessageStore
from mailbox_sync.utils import utc_now

logger = structlog.get_logger()


def merge_record(existing: MessageRecord, incoming: MessageRecord, now: datetime) -> MessageRecord:
    """Overlay an incoming record onto a stored one.

    Every mutable field is last-write-wins. `received_at` and
    `internal_date_ms` are kept once set, and `created_at` is never changed.
    """

    keep_received = existing.received_at is not None
    return incoming.model_copy(
        update={
            "owner": existing.owner,
            "message_id": existing.message_id,
            "received_at": existing.received_at if keep_received else incoming.received_at,
            "internal_date_ms": (
                existing.internal_date_ms if keep_received else incoming.internal_date_ms
            ),
            "created_at": existing.created_at or now,
            "updated_at": now,
        }
    )


class UpsertEngine:
    """Applies parsed records to the message store for one owner at a time."""

    def __init__(
        self,
        message_store: MessageStore,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = message_store
        self._clock = clock

    def upsert(self, owner: str, records: Iterable[MessageRecord]) -> UpsertResult:
        """Insert new records and update known ones.

        Records without a message id are skipped. A store failure on one
        record is logged and counted as skipped; the batch continues.
        """

        result = UpsertResult()
        for record in records:
            if not record.message_id:
                logger.warning("upsert_skipped_missing_message_id", owner=owner)
                result.skipped += 1
                continue

            try:
                now = self._clock()
                existing = self._store.find_by_owner_and_message_id(owner, record.message_id)
                if existing is not None:
                    self._store.save(merge_record(existing, record, now))
                    result.updated += 1
                else:
                    self._store.save(
                        record.model_copy(
                            update={"owner": owner, "created_at": now, "updated_at": now}
                        )
                    )
                    result.inserted += 1
            except Exception as exc:  # noqa: BLE001
                result.skipped += 1
                logger.exception(
                    "upsert_record_failed",
                    owner=owner,
                    message_id=record.message_id,
                    error=str(exc),
                )

        logger.info(
            "upsert_completed",
            owner=owner,
            inserted=result.inserted,
            updated=result.updated,
            skipped=result.skipped,
        )
        return result
