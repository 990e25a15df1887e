from __future__ import annotations


class WorkbookError(Exception):
    """Base class for every failure raised by the material workbook engine."""

    retryable = False


class ValidationError(WorkbookError):
    """Malformed user input. The caller should re-prompt."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class RangeError(ValidationError):
    """Input parsed but falls outside what storage can represent."""


class ConflictError(WorkbookError):
    """An operation precondition does not hold (e.g. editing a locked version)."""


class NotFoundError(ConflictError):
    """The record an operation targets does not exist."""


class StateError(WorkbookError):
    """A stored invariant is broken, which points at upstream data corruption."""


class StorageError(WorkbookError):
    """The storage collaborator failed mid-transaction; prior state is intact."""

    retryable = True


__all__ = [
    "WorkbookError",
    "ValidationError",
    "RangeError",
    "ConflictError",
    "NotFoundError",
    "StateError",
    "StorageError",
]
