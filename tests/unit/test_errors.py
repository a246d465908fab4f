"""Unit tests for the error taxonomy."""

import pytest

from codeindex.errors import (
    CodeIndexError,
    ConflictError,
    DependencyFailureError,
    EmbeddingUnavailableError,
    ErrorKind,
    FileChangedError,
    IntegrityViolationError,
    InvalidParamsError,
    NotFoundError,
    OperationTimeoutError,
)


@pytest.mark.parametrize(
    ("error_class", "kind"),
    [
        (NotFoundError, ErrorKind.NOT_FOUND),
        (InvalidParamsError, ErrorKind.INVALID_PARAMS),
        (ConflictError, ErrorKind.CONFLICT),
        (FileChangedError, ErrorKind.CONFLICT),
        (DependencyFailureError, ErrorKind.DEPENDENCY_FAILURE),
        (EmbeddingUnavailableError, ErrorKind.DEPENDENCY_FAILURE),
        (OperationTimeoutError, ErrorKind.TIMEOUT),
        (IntegrityViolationError, ErrorKind.INTEGRITY_VIOLATION),
    ],
)
def test_error_kinds(error_class: type[CodeIndexError], kind: ErrorKind) -> None:
    error = error_class("something went wrong")

    assert error.kind is kind
    assert str(error) == "something went wrong"
    assert isinstance(error, CodeIndexError)


def test_base_error_is_internal() -> None:
    assert CodeIndexError("boom").kind is ErrorKind.INTERNAL


def test_integrity_violation_carries_issues() -> None:
    error = IntegrityViolationError("broken", issues=["a", "b"])

    assert error.issues == ["a", "b"]
    assert IntegrityViolationError("broken").issues == []
