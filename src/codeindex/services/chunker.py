"""Chunker service for splitting file content into overlapping line windows."""

import hashlib
import uuid

import structlog

from codeindex.models.chunk import Chunk

# Chunk ids are derived from (file_id, chunk_index) so re-chunking is reproducible.
_CHUNK_NAMESPACE = uuid.UUID("6f1d9a52-3c47-4e0b-9d0e-2b8f6c3a71e4")


class Chunker:
    """Splits text content into ordered, line-bounded chunks.

    Lines are accumulated until adding the next one would exceed
    ``max_chunk_size`` lines. The next chunk then restarts with the last
    ``overlap`` lines of the previous chunk. Line endings are preserved, so
    a single chunk of short content is byte-for-byte the original text.
    """

    def __init__(
        self,
        max_chunk_size: int = 100,
        overlap: int = 10,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        """Initialize the chunker.

        Args:
            max_chunk_size: Maximum number of lines per chunk.
            overlap: Number of trailing lines repeated at the start of the next chunk.
            logger: Structured logger instance.
        """
        if max_chunk_size < 1:
            raise ValueError("max_chunk_size must be at least 1")
        if overlap < 0:
            raise ValueError("overlap must not be negative")
        if overlap >= max_chunk_size:
            raise ValueError("overlap must be less than max_chunk_size")

        self._max_chunk_size = max_chunk_size
        self._overlap = overlap
        self._logger = logger or structlog.get_logger(__name__)

    def split(self, content: str) -> list[str]:
        """Split content into chunk texts. Pure and deterministic."""
        return ["".join(lines) for lines, _ in self._windows(content)]

    def chunk(self, content: str, file_id: str) -> list[Chunk]:
        """Split content into Chunk models with position metadata.

        Args:
            content: The text content to chunk.
            file_id: The ID of the parent file.

        Returns:
            Chunks with dense chunk_index values 0..n-1.
        """
        windows = self._windows(content)
        if not windows:
            return []

        self._logger.debug(
            "chunking_started",
            file_id=file_id,
            content_length=len(content),
            max_chunk_size=self._max_chunk_size,
            overlap=self._overlap,
        )

        line_offsets = self._line_offsets(content)
        chunks: list[Chunk] = []
        for index, (lines, first_line) in enumerate(windows):
            text = "".join(lines)
            char_start = line_offsets[first_line]
            chunks.append(
                Chunk(
                    chunk_id=chunk_id_for(file_id, index),
                    file_id=file_id,
                    chunk_index=index,
                    content=text,
                    content_hash=hashlib.sha256(text.encode()).hexdigest(),
                    char_start=char_start,
                    char_end=char_start + len(text),
                    line_start=first_line + 1,
                    line_end=first_line + len(lines),
                )
            )

        self._logger.debug(
            "chunking_completed",
            file_id=file_id,
            chunk_count=len(chunks),
        )

        return chunks

    def _windows(self, content: str) -> list[tuple[list[str], int]]:
        """Group lines into windows, returning each window with its 0-based first line."""
        if not content:
            return []

        lines = content.splitlines(keepends=True)
        windows: list[tuple[list[str], int]] = []
        current: list[str] = []
        start = 0

        for position, line in enumerate(lines):
            if len(current) + 1 > self._max_chunk_size:
                windows.append((current, start))
                carried = current[-self._overlap :] if self._overlap else []
                start = position - len(carried)
                current = list(carried)
            current.append(line)

        if current:
            windows.append((current, start))

        return windows

    def _line_offsets(self, content: str) -> list[int]:
        """Character offset of the start of every line."""
        offsets = [0]
        for line in content.splitlines(keepends=True):
            offsets.append(offsets[-1] + len(line))
        return offsets


def chunk_id_for(file_id: str, chunk_index: int) -> str:
    """Deterministic chunk id for a position within a file."""
    return str(uuid.uuid5(_CHUNK_NAMESPACE, f"{file_id}:{chunk_index}"))
