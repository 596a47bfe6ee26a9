"""Store interfaces consumed by the sync engine."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from mailbox_sync.models import Credential, MessageFilter, MessageRecord


class TokenStore(Protocol):
    """Persists one credential per owner."""

    def find_by_owner(self, owner: str) -> Credential | None: ...

    def save(self, credential: Credential) -> None: ...

    def mark_synced(self, owner: str, at: datetime) -> bool: ...

    def delete_by_owner(self, owner: str) -> bool: ...

    def find_all(self) -> list[Credential]: ...


class MessageStore(Protocol):
    """Persists message records partitioned by owner."""

    def find_by_owner_and_message_id(self, owner: str, message_id: str) -> MessageRecord | None: ...

    def save(self, record: MessageRecord) -> None: ...

    def delete_where(self, owner: str, received_before: datetime) -> int: ...

    def delete_by_owner(self, owner: str) -> int: ...

    def count_by_owner(
        self,
        owner: str,
        *,
        is_read: bool | None = None,
        is_starred: bool | None = None,
    ) -> int: ...

    def search(self, owner: str, message_filter: MessageFilter) -> list[MessageRecord]: ...
