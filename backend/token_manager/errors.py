"""Typed errors for broker dispatch, reply decoding and token operations."""

from __future__ import annotations


class TokenManagerError(Exception):
    """Base class for token manager errors."""


class InvalidTaskError(TokenManagerError, ValueError):
    """Raised when a task cannot be built from the given fields."""


class BrokerUnreachable(TokenManagerError):
    """Raised when the broker cannot be reached or rejects a request."""

    def __init__(self, message: str, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class MalformedReply(TokenManagerError):
    """Raised when a result frame cannot be parsed into a site reply."""


class SiteError(TokenManagerError):
    """A site answered with an explicit error."""

    def __init__(self, site: str, status_code: int, message: str) -> None:
        super().__init__(f"{site} returned {status_code}: {message}")
        self.site = site
        self.status_code = status_code
        self.message = message


class NoRepliesReceived(TokenManagerError):
    """Raised when a result stream closes without a single usable reply."""

    def __init__(self, task_id: str, last_error: str | None = None) -> None:
        message = last_error or "No messages received or processed"
        super().__init__(message)
        self.task_id = task_id
        self.last_error = last_error


class TokenNotFound(TokenManagerError):
    """Raised when no stored token matches a user and project."""


class PersistenceError(TokenManagerError):
    """Raised when a site's result could not be written to the token store."""
