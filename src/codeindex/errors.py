"""Error taxonomy shared by every codeindex service.

Each error carries a human-readable message and a machine-checkable
``kind`` so front ends can map failures without string matching.
"""

from enum import StrEnum
from typing import ClassVar


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    INVALID_PARAMS = "invalid_params"
    CONFLICT = "conflict"
    DEPENDENCY_FAILURE = "dependency_failure"
    TIMEOUT = "timeout"
    INTEGRITY_VIOLATION = "integrity_violation"
    INTERNAL = "internal"


class CodeIndexError(Exception):
    """Base class for all codeindex errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFoundError(CodeIndexError):
    """A lookup did not resolve to an existing record."""

    kind = ErrorKind.NOT_FOUND


class InvalidParamsError(CodeIndexError):
    """Input was malformed. Raised before any I/O happens."""

    kind = ErrorKind.INVALID_PARAMS


class ConflictError(CodeIndexError):
    """A record with the same unique key already exists."""

    kind = ErrorKind.CONFLICT


class FileChangedError(ConflictError):
    """A file was modified while it was being indexed."""


class DependencyFailureError(CodeIndexError):
    """An external capability required by the operation is unavailable."""

    kind = ErrorKind.DEPENDENCY_FAILURE


class EmbeddingUnavailableError(DependencyFailureError):
    """The embedding model could not be loaded or produced unusable output."""


class OperationTimeoutError(CodeIndexError):
    """A bounded operation did not finish before its deadline."""

    kind = ErrorKind.TIMEOUT


class IntegrityViolationError(CodeIndexError):
    """The index contains dangling references."""

    kind = ErrorKind.INTEGRITY_VIOLATION

    def __init__(self, message: str, issues: list[str] | None = None) -> None:
        super().__init__(message)
        self.issues = issues or []


__all__ = [
    "CodeIndexError",
    "ConflictError",
    "DependencyFailureError",
    "EmbeddingUnavailableError",
    "ErrorKind",
    "FileChangedError",
    "IntegrityViolationError",
    "InvalidParamsError",
    "NotFoundError",
    "OperationTimeoutError",
]
