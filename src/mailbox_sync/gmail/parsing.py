"""Helpers for parsing Gmail messages (format=full) into MessageRecord.

The Gmail payload is a tree of parts. Each part has a MIME type, optional
inline body data (base64url), an optional filename and optional child parts.
Parsing is pure: no I/O, no clock, same input gives the same record.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mailbox_sync.exceptions import ParseFailure
from mailbox_sync.models import NO_SUBJECT, MessageRecord
from mailbox_sync.utils import from_epoch_ms

_RECOGNIZED_HEADERS = frozenset({"from", "to", "cc", "bcc", "subject"})


def _header_map(payload: Mapping[str, Any]) -> dict[str, str]:
    headers = payload.get("headers") or []
    result: dict[str, str] = {}
    for h in headers:
        if not isinstance(h, Mapping):
            continue
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            key = name.lower()
            # Gmail can include duplicates; keep the first.
            if key in _RECOGNIZED_HEADERS:
                result.setdefault(key, value)
    return result


def extract_address(value: str | None) -> str:
    """Reduce `Display Name <addr>` to `addr`; otherwise return the trimmed value."""

    if not value:
        return ""
    start = value.find("<")
    if start != -1:
        end = value.find(">", start + 1)
        if end != -1:
            return value[start + 1 : end].strip()
    return value.strip()


def decode_body(data: str) -> str:
    """Decode base64url body data to UTF-8 text, or "" if it cannot be decoded."""

    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return ""


def _iter_parts(root: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    # Pre-order: a part is visited before its children, children left to right.
    stack: list[Mapping[str, Any]] = [root]
    while stack:
        part = stack.pop()
        yield part
        children = part.get("parts") or []
        stack.extend(reversed([c for c in children if isinstance(c, Mapping)]))


def _inline_data(part: Mapping[str, Any]) -> str | None:
    body = part.get("body")
    if not isinstance(body, Mapping):
        return None
    data = body.get("data")
    return data if isinstance(data, str) and data else None


@dataclass
class _PartScan:
    body_text: str | None = None
    body_html: str | None = None
    attachment_names: list[str] = field(default_factory=list)


def _scan_parts(payload: Mapping[str, Any]) -> _PartScan:
    scan = _PartScan()
    for part in _iter_parts(payload):
        filename = part.get("filename")
        if isinstance(filename, str) and filename:
            scan.attachment_names.append(filename)

        mime_type = part.get("mimeType")
        if mime_type == "text/plain" and scan.body_text is None:
            data = _inline_data(part)
            if data is not None:
                scan.body_text = decode_body(data)
        elif mime_type == "text/html" and scan.body_html is None:
            data = _inline_data(part)
            if data is not None:
                scan.body_html = decode_body(data)
    return scan


def _subject(value: str | None) -> str:
    if value is None or not value.strip():
        return NO_SUBJECT
    return value


def _parse_internal_date(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _received_at(internal_date_ms: int | None) -> datetime | None:
    if internal_date_ms is None:
        return None
    try:
        return from_epoch_ms(internal_date_ms)
    except (OverflowError, OSError, ValueError):
        return None


def parse_message(message: Mapping[str, Any]) -> MessageRecord:
    """Convert a Gmail API message (format=full) to a MessageRecord.

    The returned record has no owner; the upsert layer stamps it.

    Args:
        message: Gmail API message dict.

    Returns:
        MessageRecord: Flattened record.

    Raises:
        ParseFailure: If the message or its payload is not a mapping.
    """

    if not isinstance(message, Mapping):
        raise ParseFailure(f"Expected a message mapping, got {type(message).__name__}")

    payload = message.get("payload") or {}
    if not isinstance(payload, Mapping):
        raise ParseFailure(f"Message {message.get('id')!r} has a malformed payload")

    hm = _header_map(payload)
    scan = _scan_parts(payload)

    label_ids = message.get("labelIds") or []
    if not isinstance(label_ids, list):
        label_ids = []
    labels = frozenset(x for x in label_ids if isinstance(x, str))

    internal_date_ms = _parse_internal_date(message.get("internalDate"))
    size_estimate = message.get("sizeEstimate")

    return MessageRecord(
        message_id=str(message.get("id") or "") or None,
        thread_id=str(message.get("threadId") or "") or None,
        subject=_subject(hm.get("subject")),
        from_email=extract_address(hm.get("from")),
        to_email=extract_address(hm.get("to")),
        cc_email=extract_address(hm.get("cc")),
        bcc_email=extract_address(hm.get("bcc")),
        body_text=scan.body_text or "",
        body_html=scan.body_html or "",
        received_at=_received_at(internal_date_ms),
        internal_date_ms=internal_date_ms,
        is_read="UNREAD" not in labels,
        is_starred="STARRED" in labels,
        has_attachments=bool(scan.attachment_names),
        attachment_names=scan.attachment_names,
        labels=labels,
        snippet=str(message.get("snippet") or ""),
        size_estimate=size_estimate if isinstance(size_estimate, int) else None,
    )
