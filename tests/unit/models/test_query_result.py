from uuid import uuid4

import pytest
from pydantic import ValidationError

from codeindex.models.enums import FileType
from codeindex.models.hit import QueryResult


def _make_result(score: float, chunk_index: int = 0, file_path: str = "/repo/a.py") -> QueryResult:
    return QueryResult(
        chunk_id=str(uuid4()),
        file_id=str(uuid4()),
        repository_id=str(uuid4()),
        file_path=file_path,
        file_type=FileType.CODE,
        language="python",
        chunk_index=chunk_index,
        line_start=1,
        line_end=10,
        content="def handler(): ...",
        score=score,
    )


def test_query_result_accepts_cosine_range() -> None:
    assert _make_result(1.0).score == 1.0
    assert _make_result(-1.0).score == -1.0


def test_query_result_rejects_out_of_range_score() -> None:
    with pytest.raises(ValidationError):
        _make_result(1.5)


def test_sort_key_orders_by_score_then_index_then_path() -> None:
    results = [
        _make_result(0.5, chunk_index=1, file_path="/repo/a.py"),
        _make_result(0.9, chunk_index=4, file_path="/repo/z.py"),
        _make_result(0.5, chunk_index=0, file_path="/repo/b.py"),
        _make_result(0.5, chunk_index=0, file_path="/repo/a.py"),
    ]

    ordered = sorted(results, key=lambda r: r.sort_key)

    assert [(r.score, r.chunk_index, r.file_path) for r in ordered] == [
        (0.9, 4, "/repo/z.py"),
        (0.5, 0, "/repo/a.py"),
        (0.5, 0, "/repo/b.py"),
        (0.5, 1, "/repo/a.py"),
    ]


def test_query_result_is_immutable() -> None:
    result = _make_result(0.1)

    with pytest.raises(ValidationError):
        result.score = 0.2
