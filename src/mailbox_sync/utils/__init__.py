"""Utility functions for Mailbox Sync."""

import logging
from datetime import datetime, timezone

import structlog


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds."""
    return int(ensure_aware(value).timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to a local-timezone aware datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).astimezone()


def configure_logging(log_level: str) -> None:
    """Configure structlog filtering at the given level name.

    Args:
        log_level: Standard logging level name such as "INFO".
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
