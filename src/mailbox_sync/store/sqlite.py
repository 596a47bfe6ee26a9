"""SQLite-backed credential and message stores.

Both stores share a single database file. Messages are partitioned by owner:
every query is scoped by `owner`, and UNIQUE(owner, message_id) enforces the
dedup key at the storage level too.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import SecretStr

from mailbox_sync.exceptions import PersistenceFailure
from mailbox_sync.models import Credential, MessageFilter, MessageRecord
from mailbox_sync.utils import from_epoch_ms, to_epoch_ms, utc_now

logger = structlog.get_logger()


_SCHEMA_VERSION = 1


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Database:
    """Owns the SQLite file, its schema and connections."""

    def __init__(self, db_path: Path) -> None:
        """Create a database handle.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = db_path

    @property
    def path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Create or upgrade the schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("store_schema_created", version=_SCHEMA_VERSION, path=str(self._db_path))
                return

            if current_version != _SCHEMA_VERSION:
                raise PersistenceFailure(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as exc:
            raise PersistenceFailure(str(exc)) from exc
        finally:
            conn.close()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS credentials (
                owner TEXT PRIMARY KEY,
                account_email TEXT NOT NULL,
                access_token TEXT NOT NULL,
                refresh_token TEXT,
                access_token_expires_at_iso TEXT,
                last_synced_at_iso TEXT,
                created_at_iso TEXT NOT NULL,
                updated_at_iso TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                rowid INTEGER PRIMARY KEY,
                owner TEXT NOT NULL,
                message_id TEXT NOT NULL,
                thread_id TEXT,
                subject TEXT NOT NULL,
                from_email TEXT NOT NULL,
                to_email TEXT NOT NULL,
                cc_email TEXT NOT NULL,
                bcc_email TEXT NOT NULL,
                body_text TEXT NOT NULL,
                body_html TEXT NOT NULL,
                received_at_ms INTEGER,
                internal_date_ms INTEGER,
                is_read INTEGER NOT NULL,
                is_starred INTEGER NOT NULL,
                has_attachments INTEGER NOT NULL,
                attachment_names_json TEXT NOT NULL,
                labels_json TEXT NOT NULL,
                snippet TEXT NOT NULL,
                size_estimate INTEGER,
                created_at_iso TEXT NOT NULL,
                updated_at_iso TEXT NOT NULL,
                UNIQUE(owner, message_id)
            );

            CREATE INDEX IF NOT EXISTS idx_messages_owner_received
                ON messages(owner, received_at_ms);

            CREATE INDEX IF NOT EXISTS idx_messages_owner_from_email
                ON messages(owner, from_email);
            """
        )


class SqliteTokenStore:
    """TokenStore backed by the `credentials` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_owner(self, owner: str) -> Credential | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM credentials WHERE owner = ?", (owner,)).fetchone()
        return self._row_to_credential(row) if row else None

    def find_all(self) -> list[Credential]:
        with self._db.connect() as conn:
            rows = conn.execute("SELECT * FROM credentials ORDER BY owner").fetchall()
        return [self._row_to_credential(row) for row in rows]

    def save(self, credential: Credential) -> None:
        refresh_token = (
            credential.refresh_token.get_secret_value() if credential.refresh_token else None
        )
        with self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO credentials (
                    owner,
                    account_email,
                    access_token,
                    refresh_token,
                    access_token_expires_at_iso,
                    last_synced_at_iso,
                    created_at_iso,
                    updated_at_iso
                )
                VALUES (
                    :owner,
                    :account_email,
                    :access_token,
                    :refresh_token,
                    :access_token_expires_at_iso,
                    :last_synced_at_iso,
                    :created_at_iso,
                    :updated_at_iso
                )
                ON CONFLICT(owner) DO UPDATE SET
                    account_email=excluded.account_email,
                    access_token=excluded.access_token,
                    refresh_token=excluded.refresh_token,
                    access_token_expires_at_iso=excluded.access_token_expires_at_iso,
                    last_synced_at_iso=excluded.last_synced_at_iso,
                    updated_at_iso=excluded.updated_at_iso
                """,
                {
                    "owner": credential.owner,
                    "account_email": credential.account_email,
                    "access_token": credential.access_token.get_secret_value(),
                    "refresh_token": refresh_token,
                    "access_token_expires_at_iso": _iso(credential.access_token_expires_at),
                    "last_synced_at_iso": _iso(credential.last_synced_at),
                    "created_at_iso": _iso(credential.created_at),
                    "updated_at_iso": _iso(credential.updated_at),
                },
            )
            conn.commit()

    def mark_synced(self, owner: str, at: datetime) -> bool:
        """Set last_synced_at without touching the stored tokens."""

        with self._db.connect() as conn:
            cursor = conn.execute(
                """
                UPDATE credentials
                SET last_synced_at_iso = ?, updated_at_iso = ?
                WHERE owner = ?
                """,
                (_iso(at), _iso(at), owner),
            )
            conn.commit()
            updated = cursor.rowcount > 0
        return updated

    def delete_by_owner(self, owner: str) -> bool:
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM credentials WHERE owner = ?", (owner,))
            conn.commit()
            deleted = cursor.rowcount > 0
        return deleted

    def _row_to_credential(self, row: sqlite3.Row) -> Credential:
        return Credential(
            owner=row["owner"],
            account_email=row["account_email"],
            access_token=SecretStr(row["access_token"]),
            refresh_token=SecretStr(row["refresh_token"]) if row["refresh_token"] else None,
            access_token_expires_at=_from_iso(row["access_token_expires_at_iso"]),
            last_synced_at=_from_iso(row["last_synced_at_iso"]),
            created_at=_from_iso(row["created_at_iso"]),
            updated_at=_from_iso(row["updated_at_iso"]),
        )


class SqliteMessageStore:
    """MessageStore backed by the `messages` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_owner_and_message_id(self, owner: str, message_id: str) -> MessageRecord | None:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM messages WHERE owner = ? AND message_id = ?",
                (owner, message_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def save(self, record: MessageRecord) -> None:
        if not record.owner or not record.message_id:
            raise PersistenceFailure("A message record needs an owner and a message id")

        now = utc_now()
        with self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO messages (
                    owner,
                    message_id,
                    thread_id,
                    subject,
                    from_email,
                    to_email,
                    cc_email,
                    bcc_email,
                    body_text,
                    body_html,
                    received_at_ms,
                    internal_date_ms,
                    is_read,
                    is_starred,
                    has_attachments,
                    attachment_names_json,
                    labels_json,
                    snippet,
                    size_estimate,
                    created_at_iso,
                    updated_at_iso
                )
                VALUES (
                    :owner,
                    :message_id,
                    :thread_id,
                    :subject,
                    :from_email,
                    :to_email,
                    :cc_email,
                    :bcc_email,
                    :body_text,
                    :body_html,
                    :received_at_ms,
                    :internal_date_ms,
                    :is_read,
                    :is_starred,
                    :has_attachments,
                    :attachment_names_json,
                    :labels_json,
                    :snippet,
                    :size_estimate,
                    :created_at_iso,
                    :updated_at_iso
                )
                ON CONFLICT(owner, message_id) DO UPDATE SET
                    thread_id=excluded.thread_id,
                    subject=excluded.subject,
                    from_email=excluded.from_email,
                    to_email=excluded.to_email,
                    cc_email=excluded.cc_email,
                    bcc_email=excluded.bcc_email,
                    body_text=excluded.body_text,
                    body_html=excluded.body_html,
                    received_at_ms=excluded.received_at_ms,
                    internal_date_ms=excluded.internal_date_ms,
                    is_read=excluded.is_read,
                    is_starred=excluded.is_starred,
                    has_attachments=excluded.has_attachments,
                    attachment_names_json=excluded.attachment_names_json,
                    labels_json=excluded.labels_json,
                    snippet=excluded.snippet,
                    size_estimate=excluded.size_estimate,
                    created_at_iso=excluded.created_at_iso,
                    updated_at_iso=excluded.updated_at_iso
                """,
                {
                    "owner": record.owner,
                    "message_id": record.message_id,
                    "thread_id": record.thread_id,
                    "subject": record.subject,
                    "from_email": record.from_email,
                    "to_email": record.to_email,
                    "cc_email": record.cc_email,
                    "bcc_email": record.bcc_email,
                    "body_text": record.body_text,
                    "body_html": record.body_html,
                    "received_at_ms": to_epoch_ms(record.received_at) if record.received_at else None,
                    "internal_date_ms": record.internal_date_ms,
                    "is_read": 1 if record.is_read else 0,
                    "is_starred": 1 if record.is_starred else 0,
                    "has_attachments": 1 if record.has_attachments else 0,
                    "attachment_names_json": json.dumps(record.attachment_names),
                    "labels_json": json.dumps(sorted(record.labels)),
                    "snippet": record.snippet,
                    "size_estimate": record.size_estimate,
                    "created_at_iso": _iso(record.created_at or now),
                    "updated_at_iso": _iso(record.updated_at or now),
                },
            )
            conn.commit()

    def delete_where(self, owner: str, received_before: datetime) -> int:
        with self._db.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM messages WHERE owner = ? AND received_at_ms < ?",
                (owner, to_epoch_ms(received_before)),
            )
            conn.commit()
            deleted = cursor.rowcount
        return deleted

    def delete_by_owner(self, owner: str) -> int:
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM messages WHERE owner = ?", (owner,))
            conn.commit()
            deleted = cursor.rowcount
        return deleted

    def count_by_owner(
        self,
        owner: str,
        *,
        is_read: bool | None = None,
        is_starred: bool | None = None,
    ) -> int:
        clauses = ["owner = ?"]
        params: list[Any] = [owner]
        if is_read is not None:
            clauses.append("is_read = ?")
            params.append(1 if is_read else 0)
        if is_starred is not None:
            clauses.append("is_starred = ?")
            params.append(1 if is_starred else 0)

        with self._db.connect() as conn:
            (count,) = conn.execute(
                f"SELECT COUNT(*) FROM messages WHERE {' AND '.join(clauses)}",
                params,
            ).fetchone()
        return int(count or 0)

    def search(self, owner: str, message_filter: MessageFilter) -> list[MessageRecord]:
        """Return the owner's messages matching a filter, newest first."""

        clauses = ["owner = ?"]
        params: list[Any] = [owner]

        for column, value in (
            ("from_email", message_filter.from_email),
            ("to_email", message_filter.to_email),
            ("subject", message_filter.subject),
        ):
            if value:
                clauses.append(f"{column} LIKE ? ESCAPE '\\'")
                params.append(f"%{_escape_like(value)}%")

        if message_filter.start_date:
            clauses.append("received_at_ms >= ?")
            params.append(to_epoch_ms(message_filter.start_date))
        if message_filter.end_date:
            clauses.append("received_at_ms <= ?")
            params.append(to_epoch_ms(message_filter.end_date))
        if message_filter.is_read is not None:
            clauses.append("is_read = ?")
            params.append(1 if message_filter.is_read else 0)
        if message_filter.is_starred is not None:
            clauses.append("is_starred = ?")
            params.append(1 if message_filter.is_starred else 0)
        if message_filter.labels:
            placeholders = ", ".join("?" for _ in message_filter.labels)
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(messages.labels_json) "
                f"WHERE json_each.value IN ({placeholders}))"
            )
            params.extend(message_filter.labels)

        sql = (
            f"SELECT * FROM messages WHERE {' AND '.join(clauses)} "
            "ORDER BY received_at_ms DESC, rowid DESC"
        )
        if message_filter.max_results is not None:
            sql += " LIMIT ?"
            params.append(message_filter.max_results)

        with self._db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: sqlite3.Row) -> MessageRecord:
        received_ms = row["received_at_ms"]
        return MessageRecord(
            owner=row["owner"],
            message_id=row["message_id"],
            thread_id=row["thread_id"],
            subject=row["subject"],
            from_email=row["from_email"],
            to_email=row["to_email"],
            cc_email=row["cc_email"],
            bcc_email=row["bcc_email"],
            body_text=row["body_text"],
            body_html=row["body_html"],
            received_at=from_epoch_ms(received_ms) if received_ms is not None else None,
            internal_date_ms=row["internal_date_ms"],
            is_read=bool(row["is_read"]),
            is_starred=bool(row["is_starred"]),
            has_attachments=bool(row["has_attachments"]),
            attachment_names=json.loads(row["attachment_names_json"]),
            labels=frozenset(json.loads(row["labels_json"])),
            snippet=row["snippet"],
            size_estimate=row["size_estimate"],
            created_at=_from_iso(row["created_at_iso"]),
            updated_at=_from_iso(row["updated_at_iso"]),
        )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
