"""OAuth collaborators: the token-refresh endpoint and the installed-app flow."""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import AuthenticationError, ConfigurationError, TransientFetchFailure

logger = structlog.get_logger()


@dataclass(frozen=True)
class TokenGrant:
    """Result of a refresh-token grant."""

    access_token: str
    expires_in: int | None = None
    refresh_token: str | None = None


class InvalidGrant(AuthenticationError):
    """The token endpoint rejected the refresh token (revoked, expired, unknown)."""


class TokenRefresher(Protocol):
    """Remote token-refresh endpoint."""

    def refresh(self, refresh_token: str) -> TokenGrant: ...


class GoogleTokenRefresher:
    """Refresh access tokens against Google's OAuth token endpoint."""

    def __init__(self, settings: Settings | None = None) -> None:
        from mailbox_sync.config import get_settings

        self.settings = settings or get_settings()

    def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises:
            ConfigurationError: If the OAuth client is not configured.
            InvalidGrant: If the endpoint rejects the refresh token.
            TransientFetchFailure: On transport errors and retryable endpoint errors.
        """

        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth import exceptions as google_exceptions
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials

        client_secret = self.settings.oauth_client_secret.get_secret_value()
        if not self.settings.oauth_client_id or not client_secret:
            raise ConfigurationError(
                "OAuth client is not configured. Set MAILBOX_SYNC_OAUTH_CLIENT_ID and "
                "MAILBOX_SYNC_OAUTH_CLIENT_SECRET."
            )

        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.settings.oauth_token_uri,
            client_id=self.settings.oauth_client_id,
            client_secret=client_secret,
        )
        request = functools.partial(Request(), timeout=self.settings.http_timeout_seconds)

        try:
            creds.refresh(request)
        except google_exceptions.RefreshError as exc:
            if getattr(exc, "retryable", False):
                raise TransientFetchFailure(f"Token refresh failed: {exc}") from exc
            raise InvalidGrant(str(exc)) from exc
        except google_exceptions.TransportError as exc:
            raise TransientFetchFailure(f"Token endpoint unreachable: {exc}") from exc

        return TokenGrant(
            access_token=creds.token,
            expires_in=_seconds_until(creds.expiry),
            refresh_token=creds.refresh_token if creds.refresh_token != refresh_token else None,
        )


def _seconds_until(expiry: datetime | None) -> int | None:
    if expiry is None:
        return None
    # google-auth stores expiry as naive UTC.
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return max(0, int((expiry - datetime.now(timezone.utc)).total_seconds()))


def run_installed_app_flow(
    credentials_path: Path,
    scope: str,
) -> tuple[str, str | None, datetime | None]:
    """Run the interactive installed-app flow in a local browser.

    This is the authorization-code exchange; its output becomes an owner's
    stored credential.

    Returns:
        Tuple of (access token, refresh token, expiry as aware UTC datetime).

    Raises:
        ConfigurationError: If the client secrets file is missing.
    """

    from google_auth_oauthlib.flow import InstalledAppFlow

    if not credentials_path.exists():
        raise ConfigurationError(f"OAuth client secrets file not found: {credentials_path}")

    logger.info("oauth_flow_started", credentials_path=str(credentials_path), scope=scope)

    flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
    # access_type=offline plus consent prompt guarantees a refresh token.
    creds = flow.run_local_server(port=0, access_type="offline", prompt="consent")

    expiry = creds.expiry.replace(tzinfo=timezone.utc) if creds.expiry else None
    logger.info("oauth_flow_completed", has_refresh_token=bool(creds.refresh_token))
    return creds.token, creds.refresh_token, expiry


def fetch_account_email(access_token: str, timeout: float) -> str:
    """Look up the mailbox address for an access token via users.getProfile."""

    import google_auth_httplib2
    import httplib2
    from google.oauth2.credentials import Credentials
    from googleapiclient.discovery import build

    http = google_auth_httplib2.AuthorizedHttp(
        Credentials(token=access_token), http=httplib2.Http(timeout=timeout)
    )
    service = build("gmail", "v1", http=http, cache_discovery=False)
    profile = service.users().getProfile(userId="me").execute()
    return str(profile.get("emailAddress") or "")
