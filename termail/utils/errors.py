"""Exception hierarchy shared by the store, the Gmail client and the UI.

Every error carries a ``category`` used for logging and a ``user_message``
short enough for the status line. ``details`` holds structured context that
ends up in the JSON log, never on screen.
"""

from enum import Enum
from typing import Any, Dict, Optional

from termail.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    DATABASE = "database"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    REMOTE_MUTATION = "remote_mutation"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class TermailError(Exception):
    """Base exception for all termail errors."""

    category = ErrorCategory.UNKNOWN
    user_message = "Something went wrong"

    def __init__(
        self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None
    ):
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Storage Errors


class StorageError(TermailError):
    """Persistent cache I/O failure."""

    category = ErrorCategory.DATABASE
    user_message = "The local mail cache could not be accessed"


class DatabaseConnectionError(StorageError):
    """Exception for database connection failures."""

    user_message = "Failed to connect to the local mail cache"


class DatabaseTransactionError(StorageError):
    """Exception for database transaction failures."""

    user_message = "A local mail cache transaction failed"


class MessageNotFoundError(StorageError):
    """Exception when a message is not present in the cache."""

    user_message = "Message not found in the local cache"


## Network Errors


class NetworkError(TermailError):
    """Base exception for network-related errors."""

    category = ErrorCategory.NETWORK
    user_message = "A network error occurred"


class TransientNetworkError(NetworkError):
    """Remote call failed because of connectivity or a timeout."""

    user_message = (
        "Could not reach the mail server. Please check your internet connection."
    )


class RemoteServiceError(NetworkError):
    """Remote service answered with an unexpected error status."""

    user_message = "The mail server returned an error"


## Authentication Errors


class AuthenticationError(TermailError):
    """Base exception for authentication-related errors."""

    category = ErrorCategory.AUTHENTICATION
    user_message = "An authentication error occurred"


class AuthExpiredError(AuthenticationError):
    """Bearer token rejected by the remote service (HTTP 401)."""

    user_message = (
        "Authentication expired or invalid. Run 'termail --clear-keyring' "
        "and restart to re-authenticate."
    )


class MissingCredentialsError(AuthenticationError):
    """No bearer token is available."""

    user_message = "No mail credentials configured"


## Remote Mutation Errors


class RemoteMutationError(TermailError):
    """Archive/delete confirmation failed on the server.

    The local cache keeps the optimistic change, so the remote mailbox
    may now differ from what is shown.
    """

    category = ErrorCategory.REMOTE_MUTATION
    user_message = "The server did not confirm the change; it will be retried"


## Configuration Errors


class ConfigurationError(TermailError):
    """Base exception for configuration-related errors."""

    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class InvalidConfigError(ConfigurationError):
    """Exception for invalid configuration settings."""

    user_message = "Invalid configuration settings"


class MissingConfigError(ConfigurationError):
    """Exception for missing configuration settings."""

    user_message = "Missing configuration settings"


## Key Store Errors


class KeyStoreError(TermailError):
    """Base exception for key store-related errors."""

    category = ErrorCategory.AUTHENTICATION
    user_message = "A key store error occurred"


class KeyringUnavailableError(KeyStoreError):
    """Exception when keyring service is unavailable."""

    user_message = "Keyring service is unavailable"


## Error Handler


class ErrorHandler:
    """Logs an error with its category and returns the status line for it."""

    FALLBACK = "An unexpected error occurred - check logs for details."

    @staticmethod
    def handle(error: Exception, context: str = "", log_traceback: bool = True) -> str:
        if isinstance(error, TermailError):
            record = error.to_dict()
            status = error.message
        else:
            record = {
                "error_type": type(error).__name__,
                "category": ErrorCategory.UNKNOWN.value,
                "message": str(error),
                "details": {},
            }
            status = f"{context}: {error}" if context else ErrorHandler.FALLBACK

        logger.error(
            f"{context or record['error_type']}: {record['message']}",
            exc_info=error if log_traceback else None,
            extra={"context": record},
        )
        return status


def format_error_message(error: Exception) -> str:
    """Status-line text for an error, hiding internals of unexpected ones."""
    if isinstance(error, TermailError):
        return error.message
    return ErrorHandler.FALLBACK
