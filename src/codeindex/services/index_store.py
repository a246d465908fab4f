"""Index store for persisting files, chunks and embeddings to SQLite.

Uses SQLAlchemy's native async support with aiosqlite. Every write goes
through ``transaction()``, which serialises writers behind an asyncio.Lock
and commits or rolls back as one unit. A file's record, chunks and
embeddings are therefore never observable half-written.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

import numpy as np
import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlmodel import SQLModel

from codeindex.models.chunk import Chunk
from codeindex.models.embedding import Embedding
from codeindex.models.enums import FileType
from codeindex.models.file import SourceFile
from codeindex.models.tables import ChunkRecord, EmbeddingRecord, FileRecord

VECTOR_DTYPE = np.dtype("<f4")


@dataclass(frozen=True)
class StoredVector:
    """An embedded chunk joined with its file, as read for similarity search."""

    chunk_id: str
    file_id: str
    repository_id: str
    file_path: str
    file_type: FileType
    language: str | None
    chunk_index: int
    line_start: int
    line_end: int
    content: str
    vector: np.ndarray


class IndexStore:
    """Persists file, chunk and embedding records via SQLModel.

    Accepts an AsyncEngine via dependency injection to support both
    persistent and in-memory databases for testing.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)
        self._write_lock = asyncio.Lock()

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def initialize_schema(self) -> None:
        """Create database tables if they don't exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._logger.info("index_store_initialized")

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read-only session."""
        async with AsyncSession(self._engine, expire_on_commit=False) as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Serialised write transaction; commits on exit, rolls back on error."""
        async with self._write_lock:
            async with AsyncSession(self._engine, expire_on_commit=False) as session:
                async with session.begin():
                    yield session

    async def get_file(self, repository_id: str, file_path: str) -> SourceFile | None:
        """Retrieve a file by repository and absolute path.

        Returns:
            The SourceFile if found, None otherwise.
        """
        async with self.session() as session:
            statement = select(FileRecord).where(
                FileRecord.repository_id == repository_id,
                FileRecord.file_path == file_path,
            )
            result = await session.execute(statement)
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return self._record_to_file(record)

    async def list_files(self, repository_id: str) -> list[SourceFile]:
        """All files of a repository ordered by path."""
        async with self.session() as session:
            statement = (
                select(FileRecord).where(FileRecord.repository_id == repository_id).order_by(FileRecord.file_path)
            )
            result = await session.execute(statement)
            return [self._record_to_file(r) for r in result.scalars().all()]

    async def get_chunks(self, file_id: str) -> list[Chunk]:
        """Chunks of a file ordered by chunk_index."""
        async with self.session() as session:
            statement = select(ChunkRecord).where(ChunkRecord.file_id == file_id).order_by(ChunkRecord.chunk_index)
            result = await session.execute(statement)
            return [self._record_to_chunk(r) for r in result.scalars().all()]

    async def get_embedding(self, chunk_id: str, model_version: str) -> Embedding | None:
        async with self.session() as session:
            statement = select(EmbeddingRecord).where(
                EmbeddingRecord.chunk_id == chunk_id,
                EmbeddingRecord.model_version == model_version,
            )
            result = await session.execute(statement)
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return self._record_to_embedding(record)

    async def count_chunks(self, repository_id: str) -> int:
        async with self.session() as session:
            statement = (
                select(func.count())
                .select_from(ChunkRecord)
                .join(FileRecord, FileRecord.file_id == ChunkRecord.file_id)
                .where(FileRecord.repository_id == repository_id)
            )
            return int((await session.execute(statement)).scalar_one())

    async def count_embeddings(self, repository_id: str, model_version: str | None = None) -> int:
        async with self.session() as session:
            statement = (
                select(func.count())
                .select_from(EmbeddingRecord)
                .join(ChunkRecord, ChunkRecord.chunk_id == EmbeddingRecord.chunk_id)
                .join(FileRecord, FileRecord.file_id == ChunkRecord.file_id)
                .where(FileRecord.repository_id == repository_id)
            )
            if model_version is not None:
                statement = statement.where(EmbeddingRecord.model_version == model_version)
            return int((await session.execute(statement)).scalar_one())

    async def replace_file(
        self,
        source_file: SourceFile,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Embedding],
    ) -> None:
        """Atomically write a file with its complete chunk and embedding set.

        Prior chunks and embeddings of the file are deleted first, so a
        re-ingested file never keeps stale chunk indexes.

        Args:
            source_file: File record to insert or update.
            chunks: Every chunk of the file, dense from index 0.
            embeddings: One embedding per chunk.

        Raises:
            ValueError: If chunks or embeddings don't belong together.
        """
        self._validate_file_set(source_file, chunks, embeddings)

        async with self.transaction() as session:
            # A row for the same path under another id is superseded too.
            statement = select(FileRecord.file_id).where(
                FileRecord.repository_id == source_file.repository_id,
                FileRecord.file_path == source_file.file_path,
            )
            existing_ids = set((await session.execute(statement)).scalars().all())
            existing_ids.add(source_file.file_id)
            await self._delete_file_children(session, list(existing_ids))
            await session.execute(
                delete(FileRecord).where(
                    FileRecord.file_id.in_(sorted(existing_ids - {source_file.file_id}))  # type: ignore[attr-defined]
                )
            )

            record = self._file_to_record(source_file)
            await session.merge(record)
            session.add_all(self._chunk_to_record(chunk) for chunk in chunks)
            session.add_all(self._embedding_to_record(embedding) for embedding in embeddings)

        self._logger.debug(
            "file_replaced",
            file_id=source_file.file_id,
            file_path=source_file.file_path,
            chunk_count=len(chunks),
            embedding_count=len(embeddings),
        )

    async def delete_file(self, file_id: str) -> bool:
        """Delete a file and its chunks and embeddings.

        Returns:
            True if the file existed.
        """
        return await self.delete_files([file_id]) > 0

    async def delete_files(self, file_ids: Sequence[str]) -> int:
        """Delete files with cascade, returning the number of file rows removed."""
        if not file_ids:
            return 0

        async with self.transaction() as session:
            await self._delete_file_children(session, list(file_ids))
            result = await session.execute(
                delete(FileRecord).where(FileRecord.file_id.in_(list(file_ids)))  # type: ignore[attr-defined]
            )

        self._logger.debug("files_deleted", count=result.rowcount)
        return result.rowcount or 0

    async def delete_repository_contents(self, session: AsyncSession, repository_id: str) -> None:
        """Cascade-delete every file of a repository inside an open transaction."""
        statement = select(FileRecord.file_id).where(FileRecord.repository_id == repository_id)
        file_ids = list((await session.execute(statement)).scalars().all())
        await self._delete_file_children(session, file_ids)
        await session.execute(delete(FileRecord).where(FileRecord.repository_id == repository_id))

    async def load_vectors(
        self,
        repository_id: str,
        model_version: str,
        file_type: FileType | None = None,
    ) -> list[StoredVector]:
        """Every embedded chunk of a repository for one model version, optionally of one file type."""
        async with self.session() as session:
            statement = (
                select(EmbeddingRecord, ChunkRecord, FileRecord)
                .join(ChunkRecord, ChunkRecord.chunk_id == EmbeddingRecord.chunk_id)
                .join(FileRecord, FileRecord.file_id == ChunkRecord.file_id)
                .where(
                    FileRecord.repository_id == repository_id,
                    EmbeddingRecord.model_version == model_version,
                )
            )
            if file_type is not None:
                statement = statement.where(FileRecord.file_type == file_type.value)
            rows = (await session.execute(statement)).all()

        return [
            StoredVector(
                chunk_id=chunk.chunk_id,
                file_id=file.file_id,
                repository_id=file.repository_id,
                file_path=file.file_path,
                file_type=FileType(file.file_type),
                language=file.language,
                chunk_index=chunk.chunk_index,
                line_start=chunk.line_start,
                line_end=chunk.line_end,
                content=chunk.content,
                vector=unpack_vector(embedding.vector),
            )
            for embedding, chunk, file in rows
        ]

    async def _delete_file_children(self, session: AsyncSession, file_ids: list[str]) -> None:
        if not file_ids:
            return
        chunk_ids = select(ChunkRecord.chunk_id).where(ChunkRecord.file_id.in_(file_ids))  # type: ignore[attr-defined]
        await session.execute(
            delete(EmbeddingRecord).where(EmbeddingRecord.chunk_id.in_(chunk_ids))  # type: ignore[attr-defined]
        )
        await session.execute(
            delete(ChunkRecord).where(ChunkRecord.file_id.in_(file_ids))  # type: ignore[attr-defined]
        )

    def _validate_file_set(
        self,
        source_file: SourceFile,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Embedding],
    ) -> None:
        if source_file.file_type is FileType.BINARY and chunks:
            raise ValueError("binary files cannot have chunks")
        if [chunk.chunk_index for chunk in chunks] != list(range(len(chunks))):
            raise ValueError("chunk indexes must be dense and ordered from 0")
        if any(chunk.file_id != source_file.file_id for chunk in chunks):
            raise ValueError("every chunk must belong to the file being written")
        if sorted(e.chunk_id for e in embeddings) != sorted(c.chunk_id for c in chunks):
            raise ValueError("exactly one embedding per chunk is required")

    def _file_to_record(self, source_file: SourceFile) -> FileRecord:
        data = source_file.model_dump()
        data["file_type"] = source_file.file_type.value
        return FileRecord.model_validate(data)

    def _record_to_file(self, record: FileRecord) -> SourceFile:
        data = record.model_dump()
        data["file_type"] = FileType(data["file_type"])
        return SourceFile.model_validate(data)

    def _chunk_to_record(self, chunk: Chunk) -> ChunkRecord:
        return ChunkRecord.model_validate(chunk.model_dump())

    def _record_to_chunk(self, record: ChunkRecord) -> Chunk:
        return Chunk.model_validate(record.model_dump())

    def _embedding_to_record(self, embedding: Embedding) -> EmbeddingRecord:
        data = embedding.model_dump()
        data["vector"] = pack_vector(embedding.vector)
        return EmbeddingRecord.model_validate(data)

    def _record_to_embedding(self, record: EmbeddingRecord) -> Embedding:
        data = record.model_dump()
        data["vector"] = unpack_vector(record.vector).tolist()
        return Embedding.model_validate(data)


def pack_vector(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=VECTOR_DTYPE).tobytes()


def unpack_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=VECTOR_DTYPE).astype(np.float64)


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database path.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == ":memory:":
        url = "sqlite+aiosqlite:///:memory:"
    else:
        url = f"sqlite+aiosqlite:///{db_path}"
    return create_async_engine(url)
