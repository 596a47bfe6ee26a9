"""Normalized message record and search filter models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from mailbox_sync.exceptions import InvalidFilterError
from mailbox_sync.utils import ensure_aware

NO_SUBJECT = "(No Subject)"


class MessageRecord(BaseModel):
    """A remote message flattened into a single record, scoped to an owner."""

    owner: str | None = Field(default=None, description="Owner identifier")
    message_id: str | None = Field(default=None, description="Remote message ID")
    thread_id: str | None = Field(default=None, description="Remote thread ID")

    subject: str = Field(default=NO_SUBJECT, description="Subject header")
    from_email: str = Field(default="", description="Sender address")
    to_email: str = Field(default="", description="To address")
    cc_email: str = Field(default="", description="Cc address")
    bcc_email: str = Field(default="", description="Bcc address")

    body_text: str = Field(default="", description="First text/plain body")
    body_html: str = Field(default="", description="First text/html body")

    received_at: datetime | None = Field(
        default=None, description="Remote internal date as a local-timezone instant"
    )
    internal_date_ms: int | None = Field(
        default=None, description="Remote internal date in milliseconds since epoch"
    )

    is_read: bool = Field(default=True, description="Whether message is read")
    is_starred: bool = Field(default=False, description="Whether message is starred")
    has_attachments: bool = Field(default=False, description="Whether any part has a filename")
    attachment_names: list[str] = Field(default_factory=list, description="Attachment filenames")
    labels: frozenset[str] = Field(default_factory=frozenset, description="Remote label IDs")

    snippet: str = Field(default="", description="Remote snippet")
    size_estimate: int | None = Field(default=None, description="Remote size estimate in bytes")

    created_at: datetime | None = Field(default=None, description="First stored")
    updated_at: datetime | None = Field(default=None, description="Last stored")


class MessageFilter(BaseModel):
    """Criteria for searching an owner's stored messages."""

    from_email: str | None = None
    to_email: str | None = None
    subject: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_read: bool | None = None
    is_starred: bool | None = None
    labels: list[str] = Field(default_factory=list)
    max_results: int | None = None

    def check(self) -> None:
        """Raise InvalidFilterError if the filter cannot match anything sensible."""

        if (
            self.start_date
            and self.end_date
            and ensure_aware(self.start_date) > ensure_aware(self.end_date)
        ):
            raise InvalidFilterError("start_date cannot be after end_date")
        if self.max_results is not None and self.max_results < 1:
            raise InvalidFilterError("max_results must be at least 1")

    def to_gmail_query(self) -> str:
        """Render the filter using Gmail search-box syntax."""

        terms: list[str] = []
        if self.from_email:
            terms.append(f"from:{self.from_email}")
        if self.to_email:
            terms.append(f"to:{self.to_email}")
        if self.subject:
            terms.append(f"subject:{self.subject}")
        if self.start_date:
            terms.append(f"after:{self.start_date:%Y/%m/%d}")
        if self.end_date:
            terms.append(f"before:{self.end_date:%Y/%m/%d}")
        if self.is_read is not None:
            terms.append("is:read" if self.is_read else "is:unread")
        if self.is_starred:
            terms.append("is:starred")
        terms.extend(f"label:{label}" for label in self.labels)
        return " ".join(terms)
