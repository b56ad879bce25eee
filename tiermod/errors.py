"""Exception hierarchy shared by the moderation core, the CLI and the API."""

from __future__ import annotations


class ModerationError(Exception):
    """Base class for errors surfaced to callers of the moderation core."""


class ValidationError(ModerationError):
    """The caller supplied malformed input (bad id, out-of-range threshold)."""


class NotFoundError(ModerationError):
    """The referenced record does not exist."""


class ConflictError(ModerationError):
    """The record changed underneath the caller or is already final."""


class ServiceError(ModerationError):
    """An external service failed or answered with an unusable response.

    ``retryable`` marks failures worth another attempt (network errors,
    5xx).  Rate limiting (429) is never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        service: str = "",
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.retryable = retryable


class StorageError(ModerationError):
    """Persisted records could not be read or written.

    Writes abort on this error instead of replacing a collection that could
    not be read, so stored records are never overwritten with a partial list.
    """
