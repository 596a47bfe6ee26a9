"""Per-owner retention sweep."""

from __future__ import annotations

from datetime import datetime

import structlog

from mailbox_sync.store import MessageStore, TokenStore

logger = structlog.get_logger()


class RetentionSweeper:
    """Deletes messages received before a cutoff, one owner at a time."""

    def __init__(self, message_store: MessageStore, token_store: TokenStore) -> None:
        self._message_store = message_store
        self._token_store = token_store

    def sweep(self, owner: str, cutoff: datetime) -> int:
        """Delete the owner's messages received strictly before `cutoff`.

        Messages without a received timestamp are never swept.
        """

        deleted = self._message_store.delete_where(owner, cutoff)
        logger.info("retention_sweep_owner", owner=owner, cutoff=cutoff.isoformat(), deleted=deleted)
        return deleted

    def sweep_all(self, cutoff: datetime) -> dict[str, int]:
        """Sweep every owner with a stored credential.

        An owner whose sweep fails is logged and left out of the result.
        """

        results: dict[str, int] = {}
        for credential in self._token_store.find_all():
            try:
                results[credential.owner] = self.sweep(credential.owner, cutoff)
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    "retention_sweep_owner_failed", owner=credential.owner, error=str(exc)
                )

        logger.info(
            "retention_sweep_completed",
            owners=len(results),
            deleted=sum(results.values()),
        )
        return results
