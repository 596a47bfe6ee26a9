"""Custom exceptions for Mailbox Sync."""


class MailboxSyncError(Exception):
    """Base exception for all Mailbox Sync errors."""


class ConfigurationError(MailboxSyncError):
    """Exception raised for configuration related errors."""


class AuthenticationError(MailboxSyncError):
    """Exception raised for authentication failures."""


class ReauthRequired(AuthenticationError):
    """Raised when an owner's credential can no longer be refreshed.

    This is terminal for the owner until it is re-authorized.
    """

    def __init__(self, owner: str, reason: str) -> None:
        super().__init__(f"Re-authorization required for {owner}: {reason}")
        self.owner = owner
        self.reason = reason


class GmailAPIError(MailboxSyncError):
    """Exception raised for Gmail API related errors."""


class TransientFetchFailure(GmailAPIError):
    """A network, timeout or server failure talking to a remote endpoint."""


class ParseFailure(MailboxSyncError):
    """Exception raised when a remote message cannot be parsed."""


class PersistenceFailure(MailboxSyncError):
    """Exception raised when the store fails to read or write a record."""


class InvalidFilterError(MailboxSyncError):
    """Exception raised for invalid message search filters."""
