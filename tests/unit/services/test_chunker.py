"""Unit tests for the Chunker service."""

import hashlib
from uuid import uuid4

import pytest

from codeindex.services.chunker import Chunker, chunk_id_for


def _lines(count: int, prefix: str = "line") -> str:
    return "".join(f"{prefix}_{i} = {i}\n" for i in range(count))


class TestChunkerInitialization:
    """Tests for Chunker initialization and configuration."""

    def test_default_initialization(self) -> None:
        chunker = Chunker()
        assert chunker._max_chunk_size == 100
        assert chunker._overlap == 10

    def test_overlap_must_be_less_than_size(self) -> None:
        with pytest.raises(ValueError, match="overlap must be less than max_chunk_size"):
            Chunker(max_chunk_size=10, overlap=10)

    def test_rejects_zero_size(self) -> None:
        with pytest.raises(ValueError, match="max_chunk_size must be at least 1"):
            Chunker(max_chunk_size=0, overlap=0)

    def test_rejects_negative_overlap(self) -> None:
        with pytest.raises(ValueError, match="overlap must not be negative"):
            Chunker(max_chunk_size=10, overlap=-1)


class TestChunkerBasicChunking:
    """Tests for basic chunking functionality."""

    def test_short_content_returns_single_chunk_equal_to_content(self) -> None:
        chunker = Chunker(max_chunk_size=100, overlap=10)
        file_id = str(uuid4())
        content = _lines(5)

        chunks = chunker.chunk(content, file_id)

        assert len(chunks) == 1
        assert chunks[0].content == content
        assert chunks[0].file_id == file_id

    def test_content_without_trailing_newline_is_kept_verbatim(self) -> None:
        chunker = Chunker(max_chunk_size=10, overlap=2)
        content = "first\r\nsecond\nthird"

        assert chunker.split(content) == [content]

    def test_empty_content_returns_no_chunks(self) -> None:
        chunker = Chunker()

        assert chunker.chunk("", str(uuid4())) == []

    def test_whitespace_only_is_one_chunk(self) -> None:
        chunker = Chunker(max_chunk_size=100, overlap=10)

        assert chunker.split("\n\n") == ["\n\n"]

        chunks = chunker.chunk("   \n\n\t  ", str(uuid4()))
        assert [c.content for c in chunks] == ["   \n\n\t  "]
        assert (chunks[0].line_start, chunks[0].line_end) == (1, 3)

    def test_exactly_max_lines_is_one_chunk(self) -> None:
        chunker = Chunker(max_chunk_size=100, overlap=10)

        assert len(chunker.split(_lines(100))) == 1

    def test_long_content_splits_with_overlap(self) -> None:
        chunker = Chunker(max_chunk_size=100, overlap=10)
        content = _lines(150)
        lines = content.splitlines(keepends=True)

        pieces = chunker.split(content)

        assert len(pieces) == 2
        assert pieces[0] == "".join(lines[:100])
        assert pieces[1] == "".join(lines[90:])

    def test_chunks_have_dense_indices(self) -> None:
        chunker = Chunker(max_chunk_size=7, overlap=3)

        chunks = chunker.chunk(_lines(60), str(uuid4()))

        assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))

    def test_no_overlap_partitions_content(self) -> None:
        chunker = Chunker(max_chunk_size=4, overlap=0)
        content = _lines(10)

        pieces = chunker.split(content)

        assert len(pieces) == 3
        assert "".join(pieces) == content

    def test_split_is_deterministic(self) -> None:
        chunker = Chunker(max_chunk_size=5, overlap=2)
        content = _lines(23)

        assert chunker.split(content) == chunker.split(content)


class TestChunkerPositionTracking:
    """Tests for character and line position tracking."""

    def test_line_positions_follow_overlap(self) -> None:
        chunker = Chunker(max_chunk_size=100, overlap=10)

        chunks = chunker.chunk(_lines(150), str(uuid4()))

        assert (chunks[0].line_start, chunks[0].line_end) == (1, 100)
        assert (chunks[1].line_start, chunks[1].line_end) == (91, 150)

    def test_char_offsets_slice_original_content(self) -> None:
        chunker = Chunker(max_chunk_size=4, overlap=1)
        content = _lines(11, prefix="value")

        chunks = chunker.chunk(content, str(uuid4()))

        for chunk in chunks:
            assert content[chunk.char_start : chunk.char_end] == chunk.content


class TestChunkerIdentity:
    """Tests for content hashes and chunk ids."""

    def test_chunk_has_valid_hash(self) -> None:
        chunker = Chunker()
        content = "Test content\n"

        chunks = chunker.chunk(content, str(uuid4()))

        assert chunks[0].content_hash == hashlib.sha256(content.encode()).hexdigest()

    def test_chunk_ids_are_derived_from_file_and_index(self) -> None:
        chunker = Chunker(max_chunk_size=3, overlap=1)
        file_id = str(uuid4())

        first = chunker.chunk(_lines(8), file_id)
        second = chunker.chunk(_lines(8), file_id)

        assert [c.chunk_id for c in first] == [c.chunk_id for c in second]
        assert first[1].chunk_id == chunk_id_for(file_id, 1)
        assert len({c.chunk_id for c in first}) == len(first)

    def test_chunk_ids_differ_between_files(self) -> None:
        assert chunk_id_for(str(uuid4()), 0) != chunk_id_for(str(uuid4()), 0)
