"""Credential validation and proactive refresh."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from pydantic import SecretStr

from mailbox_sync.exceptions import ReauthRequired
from mailbox_sync.gmail.oauth import InvalidGrant, TokenRefresher
from mailbox_sync.models import Credential
from mailbox_sync.store import TokenStore
from mailbox_sync.utils import utc_now

logger = structlog.get_logger()


class CredentialGuard:
    """Makes sure a credential is usable before any remote call is made.

    Refresh is eager: a token within `skew` of its expiry is refreshed up
    front instead of waiting for a 401 halfway through a page.
    """

    def __init__(
        self,
        token_store: TokenStore,
        refresher: TokenRefresher,
        *,
        skew: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._token_store = token_store
        self._refresher = refresher
        self._skew = skew
        self._clock = clock

    @property
    def skew(self) -> timedelta:
        return self._skew

    def validate(self, credential: Credential) -> bool:
        """Return True if the credential is usable now or can be refreshed."""

        if not credential.is_stale(self._clock(), self._skew):
            return True
        return credential.has_refresh_token

    async def ensure_valid(self, credential: Credential) -> Credential:
        """Return a credential whose access token is safe to use.

        A stale credential is refreshed and persisted before it is returned,
        so a crash right after the refresh never loses the new token.

        Raises:
            ReauthRequired: If the token is stale and cannot be refreshed.
            TransientFetchFailure: If the token endpoint could not be reached.
        """

        owner = credential.owner
        if not credential.is_stale(self._clock(), self._skew):
            return credential

        if not credential.has_refresh_token:
            logger.warning("credential_reauth_required", owner=owner, reason="no_refresh_token")
            raise ReauthRequired(owner, "access token expired and no refresh token is stored")

        logger.info(
            "credential_refresh_started",
            owner=owner,
            expires_at=(
                credential.access_token_expires_at.isoformat()
                if credential.access_token_expires_at
                else None
            ),
        )

        assert credential.refresh_token is not None
        try:
            grant = await asyncio.to_thread(
                self._refresher.refresh, credential.refresh_token.get_secret_value()
            )
        except InvalidGrant as exc:
            logger.warning("credential_reauth_required", owner=owner, reason="invalid_grant")
            raise ReauthRequired(owner, f"refresh token rejected: {exc}") from exc

        now = self._clock()
        refreshed = credential.model_copy(
            update={
                "access_token": SecretStr(grant.access_token),
                "access_token_expires_at": (
                    now + timedelta(seconds=grant.expires_in)
                    if grant.expires_in is not None
                    else None
                ),
                "refresh_token": (
                    SecretStr(grant.refresh_token) if grant.refresh_token else credential.refresh_token
                ),
                "updated_at": now,
            }
        )
        self._token_store.save(refreshed)

        logger.info(
            "credential_refreshed",
            owner=owner,
            expires_at=(
                refreshed.access_token_expires_at.isoformat()
                if refreshed.access_token_expires_at
                else None
            ),
            rotated_refresh_token=grant.refresh_token is not None,
        )
        return refreshed
