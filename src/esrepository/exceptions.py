"""
esrepository Exceptions — Error Taxonomy
========================================

Every failure surfaced by the repository, bulk session or search projection
is an instance of :class:`RepositoryError`. Errors raised by the underlying
``elasticsearch`` client are translated here so callers never have to
import the client's exception classes.

    RepositoryError
    ├── NotFound
    ├── VersionConflict
    ├── UpdateConflictExhausted
    ├── ValidationError
    │   ├── SerializationError
    │   └── DeserializationError
    ├── ServerError
    ├── TransportFailure
    ├── RefreshNotAllowed
    └── Cancelled
"""

from typing import Any, Optional

from elasticsearch import (
    ApiError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    TransportError,
)


class RepositoryError(Exception):
    """Base class for all repository errors."""

    def __init__(self, message: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFound(RepositoryError):
    """The document (or the index) does not exist."""


class VersionConflict(RepositoryError):
    """The stored document changed since the writer last read it."""


class UpdateConflictExhausted(RepositoryError):
    """Raised by ``update`` when every attempt hit a version conflict."""

    def __init__(self, doc_id: str, attempts: int):
        super().__init__(
            f"update of {doc_id!r} conflicted {attempts} times, giving up",
            status=409,
        )
        self.doc_id = doc_id
        self.attempts = attempts


class ValidationError(RepositoryError):
    """Malformed request or mapping mismatch."""


class SerializationError(ValidationError):
    """A typed value could not be converted to a JSON document."""


class DeserializationError(ValidationError):
    """A JSON document could not be converted to the typed value."""


class ServerError(RepositoryError):
    """The store answered with a 5xx status."""


class TransportFailure(RepositoryError):
    """The store could not be reached."""


class RefreshNotAllowed(RepositoryError):
    """``refresh()`` called on a repository built without ``refresh=True``."""


class Cancelled(RepositoryError):
    """An asynchronous flush was cancelled before the store answered."""


def error_from_status(status: int, reason: str = "") -> RepositoryError:
    """
    Map an HTTP status (typically a bulk item status) to the taxonomy.

    Args:
        status: HTTP status code reported by the store
        reason: Human-readable reason, used as the error message

    Returns:
        An unraised RepositoryError instance
    """
    message = reason or f"status {status}"
    if status == 404:
        return NotFound(message, status=status)
    if status == 409:
        return VersionConflict(message, status=status)
    if status >= 500:
        return ServerError(message, status=status)
    return ValidationError(message, status=status)


def describe_error(error: Any) -> str:
    """Flatten an ``error`` object from a store response into one line."""
    if isinstance(error, dict):
        kind = error.get("type", "error")
        reason = error.get("reason", "")
        caused_by = error.get("caused_by")
        text = f"{kind}: {reason}" if reason else kind
        if caused_by:
            text += f" (caused by {describe_error(caused_by)})"
        return text
    return str(error) if error else ""


def translate_error(exc: Exception) -> RepositoryError:
    """
    Convert an exception raised by the ``elasticsearch`` client.

    The returned error should be raised ``from exc`` so the client's
    exception stays available as ``__cause__``.
    """
    if isinstance(exc, RepositoryError):
        return exc
    if isinstance(exc, NotFoundError):
        return NotFound(str(exc), status=404)
    if isinstance(exc, ConflictError):
        return VersionConflict(str(exc), status=409)
    if isinstance(exc, BadRequestError):
        return ValidationError(str(exc), status=400)
    if isinstance(exc, ApiError):
        status = exc.status_code
        body = exc.body if isinstance(exc.body, dict) else {}
        return error_from_status(status, describe_error(body.get("error")) or str(exc))
    if isinstance(exc, TransportError):
        return TransportFailure(str(exc))
    return RepositoryError(str(exc))
