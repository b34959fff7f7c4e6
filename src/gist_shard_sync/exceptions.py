"""
Exceptions raised by the sync engine and its adapters.
"""


class SyncError(Exception):
    """Base exception for sync operations."""


class ConflictError(SyncError):
    """Raised when the remote index changed since the caller last saw it."""


class NotFoundError(SyncError):
    """Raised when a category, item or remote container does not exist."""


class AuthRequiredError(SyncError):
    """Raised when a secure document needs a vault key that is not set."""


class ParseError(SyncError):
    """Raised when a shard list or manifest cannot be decoded.

    Always absorbed by the engine, which falls back to the last known-good
    value and logs a warning.
    """


class TransportError(SyncError):
    """Raised by the remote store when a request fails.

    Attributes:
        status: HTTP status code, or ``None`` for connection-level failures.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
