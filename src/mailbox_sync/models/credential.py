"""Stored OAuth credential for one owner."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field, SecretStr

from mailbox_sync.utils import ensure_aware, utc_now


class Credential(BaseModel):
    """OAuth access/refresh token pair and expiry for a single owner."""

    owner: str = Field(description="Owner identifier (unique)")
    account_email: str = Field(default="", description="External mailbox address")

    access_token: SecretStr = Field(description="OAuth access token")
    refresh_token: SecretStr | None = Field(default=None, description="OAuth refresh token")
    access_token_expires_at: datetime | None = Field(
        default=None,
        description="When the access token expires; None means non-expiring",
    )

    last_synced_at: datetime | None = Field(default=None, description="Last successful sync")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update timestamp")

    @property
    def has_access_token(self) -> bool:
        return bool(self.access_token.get_secret_value())

    @property
    def has_refresh_token(self) -> bool:
        return self.refresh_token is not None and bool(self.refresh_token.get_secret_value())

    def is_stale(self, now: datetime, skew: timedelta) -> bool:
        """Return True when the access token must be refreshed before use.

        An empty access token is always stale. A missing expiry means the
        token never expires. Otherwise the token is stale once `now` is within
        `skew` of the expiry.
        """

        if not self.has_access_token:
            return True
        if self.access_token_expires_at is None:
            return False
        return ensure_aware(self.access_token_expires_at) - skew <= ensure_aware(now)
