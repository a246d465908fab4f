"""Ingestion service that orchestrates the full indexing pipeline.

Coordinates file discovery, classification, chunking, embedding and
persistence to build a searchable index of a repository. Each file ends
in one of three states (done, skipped, failed); a failed file never
aborts the run and never leaves partial rows behind.
"""

import asyncio
import hashlib
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from codeindex.errors import FileChangedError, InvalidParamsError
from codeindex.models.embedding import Embedding
from codeindex.models.enums import FileStatus
from codeindex.models.file import FileDescriptor, SourceFile
from codeindex.models.repository import Repository
from codeindex.services.chunker import Chunker
from codeindex.services.deadline import bounded
from codeindex.services.embeddings import EmbeddingService
from codeindex.services.file_walker import FileWalker
from codeindex.services.index_store import IndexStore
from codeindex.services.ingestion_log import IngestionListener, NullIngestionListener
from codeindex.services.registry import RepositoryRegistry


class FileError(BaseModel):
    """Details of a file processing error."""

    path: str
    error: str

    model_config = {"frozen": True}


class FileOutcome(BaseModel):
    """Terminal state of one file within an ingestion run."""

    path: str
    status: FileStatus
    chunk_count: int = Field(default=0, ge=0)
    elapsed_seconds: float = Field(default=0.0, ge=0.0)
    error: str | None = None

    model_config = {"frozen": True}


class IngestionResult(BaseModel):
    """Session summary of an ingestion run."""

    repository_id: str
    files_processed: int = Field(ge=0)
    files_skipped: int = Field(ge=0)
    files_failed: int = Field(default=0, ge=0)
    files_removed: int = Field(default=0, ge=0)
    chunks_created: int = Field(ge=0)
    embeddings_created: int = Field(default=0, ge=0)
    duration_seconds: float = Field(default=0.0, ge=0.0)
    cancelled: bool = False
    errors: list[FileError] = Field(default_factory=list)

    model_config = {"frozen": True}


class IngestionService:
    """Orchestrates ingestion of a repository into the index.

    Files are processed by a bounded pool of asyncio workers. Embedding
    work runs concurrently; each file's rows are written in one store
    transaction, so cross-file ordering is unspecified but every file is
    either fully indexed or absent. Store and registry calls are bounded
    by ``timeout``. All dependencies are injected via the constructor for
    testability.
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        store: IndexStore,
        file_walker: FileWalker,
        chunker: Chunker,
        embeddings: EmbeddingService,
        max_workers: int = 4,
        timeout: float | None = 120.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._registry = registry
        self._store = store
        self._file_walker = file_walker
        self._chunker = chunker
        self._embeddings = embeddings
        self._max_workers = max_workers
        self._timeout = timeout
        self._logger = logger or structlog.get_logger(__name__)
        self._cancel_event = asyncio.Event()

    def cancel(self) -> None:
        """Stop issuing new file work. Files already being written finish."""
        self._cancel_event.set()

    async def ingest(
        self,
        path: str | Path,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        listener: IngestionListener | None = None,
        force: bool = False,
    ) -> IngestionResult:
        """Ingest every file under a repository root.

        Args:
            path: Repository root directory.
            name: Repository name for first ingestion. Defaults to the directory name.
            metadata: Metadata merged into the repository record.
            listener: Receives progress events.
            force: Re-index files even when their signature is unchanged.

        Returns:
            IngestionResult with processing statistics.

        Raises:
            InvalidParamsError: If path is empty, missing or not a directory.
            ConflictError: If name is already used by another repository.
            EmbeddingUnavailableError: If the embedding model cannot be loaded.
        """
        if not str(path).strip():
            raise InvalidParamsError("path is required")
        root = Path(path).expanduser().resolve()
        if not root.exists():
            raise InvalidParamsError(f"path does not exist: {root}")
        if not root.is_dir():
            raise InvalidParamsError(f"path is not a directory: {root}")

        listener = listener or NullIngestionListener()
        self._cancel_event = asyncio.Event()

        await self._embeddings.initialize()
        repository = await self._prepare_repository(root, name, metadata)

        self._logger.info(
            "ingestion_started",
            repository_id=repository.repository_id,
            root=str(root),
            max_workers=self._max_workers,
        )
        listener.on_session_start(repository, str(root))
        started = time.monotonic()

        outcomes: list[FileOutcome] = []
        seen: set[str] = set()
        queue: asyncio.Queue[FileDescriptor | None] = asyncio.Queue(maxsize=self._max_workers * 2)

        async def produce() -> None:
            async for descriptor in self._file_walker.walk(root):
                if self._cancel_event.is_set():
                    break
                seen.add(str(descriptor.path))
                await queue.put(descriptor)
            for _ in range(self._max_workers):
                await queue.put(None)

        async def consume() -> None:
            while (descriptor := await queue.get()) is not None:
                outcomes.append(await self._process_file(repository, descriptor, listener, force))

        try:
            async with asyncio.TaskGroup() as group:
                group.create_task(produce())
                for _ in range(self._max_workers):
                    group.create_task(consume())
        except ExceptionGroup as group_error:
            raise self._first_worker_error(group_error, repository.repository_id) from group_error

        cancelled = self._cancel_event.is_set()
        files_removed = 0
        if not cancelled:
            files_removed = await self._remove_missing_files(repository, seen)

        await bounded(
            self._registry.update(repository.repository_id, touch=True),
            self._timeout,
            "repository update",
        )

        result = self._summarize(repository, outcomes, files_removed, cancelled, time.monotonic() - started)
        self._logger.info(
            "ingestion_completed",
            repository_id=repository.repository_id,
            files_processed=result.files_processed,
            files_skipped=result.files_skipped,
            files_failed=result.files_failed,
            files_removed=result.files_removed,
            chunks_created=result.chunks_created,
            duration_seconds=round(result.duration_seconds, 3),
            cancelled=cancelled,
        )
        listener.on_session_end(result)
        return result

    def _first_worker_error(self, group_error: ExceptionGroup, repository_id: str) -> Exception:
        """Pick the error to re-raise from a failed worker pool, logging the rest."""
        first, *others = group_error.exceptions
        for other in others:
            self._logger.error(
                "ingestion_worker_failed",
                repository_id=repository_id,
                error=str(other),
                error_type=type(other).__name__,
            )
        return first

    async def _prepare_repository(
        self,
        root: Path,
        name: str | None,
        metadata: dict[str, Any] | None,
    ) -> Repository:
        """Find the repository registered at root, or register it."""
        repository = await bounded(self._registry.get_by_path(root), self._timeout, "repository lookup")
        if repository is None:
            return await bounded(
                self._registry.create(name or root.name, root, metadata), self._timeout, "repository create"
            )
        if metadata:
            return await bounded(
                self._registry.update(repository.repository_id, metadata=metadata),
                self._timeout,
                "repository update",
            )
        return repository

    async def _process_file(
        self,
        repository: Repository,
        descriptor: FileDescriptor,
        listener: IngestionListener,
        force: bool,
    ) -> FileOutcome:
        """Process a single file through the pipeline.

        Returns:
            The file's terminal outcome. Errors are captured, not raised.
        """
        file_path = str(descriptor.path)
        started = time.monotonic()

        try:
            existing = await bounded(
                self._store.get_file(repository.repository_id, file_path), self._timeout, "file lookup"
            )
            if existing is not None and not force and existing.matches_signature(descriptor):
                self._logger.debug("file_skipped_unchanged", file_path=file_path)
                listener.on_file_skip(file_path, "unchanged")
                return FileOutcome(path=file_path, status=FileStatus.SKIPPED)

            listener.on_file_start(file_path)
            self._logger.debug(
                "file_processing_started",
                file_path=file_path,
                file_type=descriptor.file_type.value,
            )
            chunk_count = await self._index_file(repository, descriptor, existing)
        except Exception as e:
            elapsed = time.monotonic() - started
            self._logger.warning(
                "file_processing_failed",
                file_path=file_path,
                error=str(e),
                error_type=type(e).__name__,
            )
            listener.on_file_error(file_path, str(e))
            return FileOutcome(path=file_path, status=FileStatus.FAILED, elapsed_seconds=elapsed, error=str(e))

        elapsed = time.monotonic() - started
        self._logger.debug(
            "file_processing_completed",
            file_path=file_path,
            chunk_count=chunk_count,
        )
        listener.on_file_done(file_path, chunk_count, elapsed)
        return FileOutcome(path=file_path, status=FileStatus.DONE, chunk_count=chunk_count, elapsed_seconds=elapsed)

    async def _index_file(
        self,
        repository: Repository,
        descriptor: FileDescriptor,
        existing: SourceFile | None,
    ) -> int:
        """Read, chunk and embed a file, then write it in one transaction."""
        file_id = existing.file_id if existing is not None else str(uuid4())
        raw = await asyncio.to_thread(descriptor.path.read_bytes)
        # The signature stored with the hash must describe the bytes actually read.
        stat = await asyncio.to_thread(descriptor.path.stat)
        if stat.st_size != len(raw):
            raise FileChangedError(f"{descriptor.path} changed while it was being read")

        chunks = []
        if not descriptor.is_binary:
            # Classification sniffed the head only; undecodable bytes later on are replaced.
            content = raw.decode("utf-8", errors="replace")
            chunks = self._chunker.chunk(content, file_id)

        vectors = await self._embeddings.embed_many([chunk.content for chunk in chunks])
        embeddings = [
            Embedding(
                embedding_id=str(uuid4()),
                chunk_id=chunk.chunk_id,
                vector=vector,
                dimension=self._embeddings.dimension,
                model_version=self._embeddings.model_version,
            )
            for chunk, vector in zip(chunks, vectors)
        ]

        source_file = SourceFile(
            file_id=file_id,
            repository_id=repository.repository_id,
            file_path=str(descriptor.path),
            file_type=descriptor.file_type,
            language=descriptor.language,
            size_bytes=len(raw),
            modified_at=stat.st_mtime_ns,
            content_hash=hashlib.sha256(raw).hexdigest(),
        )
        await bounded(self._store.replace_file(source_file, chunks, embeddings), self._timeout, "file write")
        return len(chunks)

    async def _remove_missing_files(self, repository: Repository, seen: set[str]) -> int:
        """Delete indexed files that no longer exist under the root."""
        indexed = await bounded(self._store.list_files(repository.repository_id), self._timeout, "file listing")
        stale = [f.file_id for f in indexed if f.file_path not in seen]
        if not stale:
            return 0
        removed = await bounded(self._store.delete_files(stale), self._timeout, "stale file removal")
        self._logger.info("stale_files_removed", repository_id=repository.repository_id, count=removed)
        return removed

    def _summarize(
        self,
        repository: Repository,
        outcomes: list[FileOutcome],
        files_removed: int,
        cancelled: bool,
        duration: float,
    ) -> IngestionResult:
        done = [o for o in outcomes if o.status is FileStatus.DONE]
        failed = [o for o in outcomes if o.status is FileStatus.FAILED]
        chunks_created = sum(o.chunk_count for o in done)
        return IngestionResult(
            repository_id=repository.repository_id,
            files_processed=len(done),
            files_skipped=sum(1 for o in outcomes if o.status is FileStatus.SKIPPED),
            files_failed=len(failed),
            files_removed=files_removed,
            chunks_created=chunks_created,
            embeddings_created=chunks_created,
            duration_seconds=duration,
            cancelled=cancelled,
            errors=[FileError(path=o.path, error=o.error or "") for o in failed],
        )
