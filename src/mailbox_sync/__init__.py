"""Mailbox Sync - multi-owner Gmail ingestion and synchronization.

This package connects many owners' Gmail accounts, refreshes their OAuth
tokens ahead of expiry, pages new messages, flattens each MIME tree into a
record and stores it idempotently per owner.
"""

__version__ = "0.1.0"

from mailbox_sync.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
