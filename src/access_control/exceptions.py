"""Error taxonomy for the access-control engine."""

from contextlib import contextmanager
from typing import Any

from django.db import DatabaseError


class AccessControlError(Exception):
    """Base class for all engine errors."""

    default_message = "Access control error."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(AccessControlError):
    """Malformed input, rejected before any mutation.

    ``errors`` maps field names to lists of messages so administrative
    callers can render per-field feedback.
    """

    default_message = "Invalid input."

    def __init__(self, message: str | None = None, errors: dict[str, list[str]] | None = None):
        super().__init__(message)
        self.errors = errors or {}

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors={field: [message]})

    def as_list(self) -> list[Any]:
        if not self.errors:
            return [self.message]
        return [{field: messages} for field, messages in self.errors.items()]


class NotFoundError(AccessControlError):
    """A referenced resource, role, permission or menu item does not exist."""

    default_message = "Not found."


class CyclicReferenceError(AccessControlError):
    """A menu parent assignment would create a cycle."""

    default_message = "Invalid parent selection: it would create a circular reference."


class ResourceUnresolved(AccessControlError):
    """No registered resource matches the requested url and method."""

    default_message = "No resource matches this request."

    def __init__(self, url: str, method: str):
        super().__init__(f"No resource matches {method} {url}.")
        self.url = url
        self.method = method


class CacheUnavailable(AccessControlError):
    """The cache store could not be reached. Never surfaced to callers."""

    default_message = "Cache store unavailable."


class PersistenceFailure(AccessControlError):
    """Wraps an underlying database error."""

    default_message = "Service temporarily unavailable."


@contextmanager
def persistence_guard():
    """Re-raise database errors as PersistenceFailure."""
    try:
        yield
    except DatabaseError as exc:
        raise PersistenceFailure() from exc


__all__ = [
    "AccessControlError",
    "ValidationError",
    "NotFoundError",
    "CyclicReferenceError",
    "ResourceUnresolved",
    "CacheUnavailable",
    "PersistenceFailure",
    "persistence_guard",
]
