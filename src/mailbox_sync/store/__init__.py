"""Credential and message persistence.

The sync engine depends only on the `TokenStore` and `MessageStore`
protocols; the SQLite implementations are the default backing store.
"""

from .base import MessageStore, TokenStore
from .sqlite import Database, SqliteMessageStore, SqliteTokenStore

__all__ = [
    "Database",
    "MessageStore",
    "SqliteMessageStore",
    "SqliteTokenStore",
    "TokenStore",
]
