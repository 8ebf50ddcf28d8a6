"""
Error taxonomy shared by connectors, the account manager and the API.

Library exceptions (googleapiclient, google-auth, imapclient, socket) are
translated into these types at the connector boundary so that callers only
ever deal with four failure kinds.
"""
from typing import Optional


class MailboardError(Exception):
    """Base class for all mailboard errors."""

    error_type = "error"

    def __init__(self, message: str, account_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.account_id = account_id

    def __str__(self) -> str:
        if self.account_id:
            return f"[{self.account_id}] {self.message}"
        return self.message


class AuthError(MailboardError):
    """Credentials are invalid, expired or were revoked."""

    error_type = "auth"


class NetworkError(MailboardError):
    """Transport failure: DNS, TLS, timeouts, dropped connections."""

    error_type = "network"


class ProviderError(MailboardError):
    """The backend rejected the operation (quota, permission, bad id...)."""

    error_type = "provider"


class ValidationError(MailboardError, ValueError):
    """Caller supplied an empty batch, an unknown account or similar."""

    error_type = "validation"


class MessageNotFoundError(ProviderError):
    """The message id does not exist (or no longer exists) in the mailbox."""
