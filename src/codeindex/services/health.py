"""Integrity checks over the repository → file → chunk → embedding graph.

SQLite does not enforce the declared foreign keys, so a raw delete of a
parent leaves children pointing at nothing. ``HealthChecker`` counts those
orphans, removes them on request, and validates the per-file invariants of
a single repository.
"""

from collections import defaultdict

import structlog
from sqlalchemy import and_, delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codeindex.errors import OperationTimeoutError
from codeindex.models.enums import FileType
from codeindex.models.report import HealthDetails, HealthReport, RepairReport
from codeindex.models.tables import ChunkRecord, EmbeddingRecord, FileRecord, RepositoryRecord
from codeindex.services.deadline import bounded
from codeindex.services.embeddings import EmbeddingService
from codeindex.services.index_store import IndexStore
from codeindex.services.registry import RepositoryRegistry


class HealthChecker:
    """Detects and repairs broken references in the index."""

    def __init__(
        self,
        store: IndexStore,
        registry: RepositoryRegistry,
        embeddings: EmbeddingService,
        timeout: float | None = 120.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._embeddings = embeddings
        self._timeout = timeout
        self._logger = logger or structlog.get_logger(__name__)

    async def check(self) -> HealthReport:
        """Report connectivity, row counts and orphan counts. Never writes."""
        try:
            await bounded(self._ping(), self._timeout, "connectivity check")
        except (SQLAlchemyError, OSError, OperationTimeoutError) as e:
            self._logger.warning("health_connectivity_failed", error=str(e))
            return HealthReport(
                healthy=False,
                issues=[f"database unreachable: {e}"],
                details=HealthDetails(),
            )

        details = await bounded(self._collect_details(), self._timeout, "health check")

        issues: list[str] = []
        if details.orphaned_files:
            issues.append(f"{details.orphaned_files} file(s) reference a missing repository")
        if details.orphaned_chunks:
            issues.append(f"{details.orphaned_chunks} chunk(s) reference a missing file")
        if details.orphaned_embeddings:
            issues.append(f"{details.orphaned_embeddings} embedding(s) reference a missing chunk")

        report = HealthReport(healthy=not issues, issues=issues, details=details)
        self._logger.info(
            "health_check_completed",
            healthy=report.healthy,
            orphans=details.orphan_total,
            files=details.file_count,
            chunks=details.chunk_count,
            embeddings=details.embedding_count,
        )
        return report

    async def repair(self) -> RepairReport:
        """Delete orphaned embeddings, chunks and files in one transaction.

        Removing an orphaned file orphans its chunks, so passes repeat until
        one removes nothing. A second repair therefore always removes zero rows.
        """
        embeddings_removed = chunks_removed = files_removed = 0
        passes = 0

        async with self._store.transaction() as session:
            while True:
                passes += 1
                removed_embeddings = await self._execute_delete(
                    session,
                    delete(EmbeddingRecord).where(
                        EmbeddingRecord.chunk_id.not_in(select(ChunkRecord.chunk_id))  # type: ignore[attr-defined]
                    ),
                )
                removed_chunks = await self._execute_delete(
                    session,
                    delete(ChunkRecord).where(
                        ChunkRecord.file_id.not_in(select(FileRecord.file_id))  # type: ignore[attr-defined]
                    ),
                )
                removed_files = await self._execute_delete(
                    session,
                    delete(FileRecord).where(
                        FileRecord.repository_id.not_in(  # type: ignore[attr-defined]
                            select(RepositoryRecord.repository_id)
                        )
                    ),
                )

                embeddings_removed += removed_embeddings
                chunks_removed += removed_chunks
                files_removed += removed_files
                if removed_embeddings + removed_chunks + removed_files == 0:
                    break

        report = RepairReport(
            embeddings_removed=embeddings_removed,
            chunks_removed=chunks_removed,
            files_removed=files_removed,
        )
        self._logger.info(
            "repair_completed",
            embeddings_removed=embeddings_removed,
            chunks_removed=chunks_removed,
            files_removed=files_removed,
            passes=passes,
        )
        return report

    async def validate_repository(self, repository: str) -> list[str]:
        """Diagnose one repository without modifying it.

        Args:
            repository: Name, path or id of the repository.

        Returns:
            Human-readable issues; an empty list means the repository is valid.
        """
        found = await bounded(self._registry.resolve(repository), self._timeout, "repository lookup")
        if found is None:
            return [f"repository '{repository}' does not exist"]

        files = await bounded(self._store.list_files(found.repository_id), self._timeout, "file listing")
        chunk_rows = await bounded(self._load_chunk_rows(found.repository_id), self._timeout, "chunk listing")

        indexes_by_file: dict[str, list[int]] = defaultdict(list)
        missing_by_file: dict[str, int] = defaultdict(int)
        bad_dimensions: dict[str, int] = defaultdict(int)
        for file_id, chunk_index, dimension in chunk_rows:
            indexes_by_file[file_id].append(chunk_index)
            if dimension is None:
                missing_by_file[file_id] += 1
            elif dimension != self._embeddings.dimension:
                bad_dimensions[file_id] += 1

        issues: list[str] = []
        for source_file in files:
            path = source_file.file_path
            indexes = indexes_by_file.get(source_file.file_id, [])

            if source_file.file_type is FileType.BINARY:
                if indexes:
                    issues.append(f"{path}: binary file has {len(indexes)} chunk(s)")
                continue

            if not indexes:
                if source_file.size_bytes > 0:
                    issues.append(f"{path}: {source_file.file_type.value} file has no chunks")
                continue

            if indexes != list(range(len(indexes))):
                issues.append(f"{path}: chunk indexes are not contiguous from 0")
            if missing_by_file[source_file.file_id]:
                issues.append(
                    f"{path}: {missing_by_file[source_file.file_id]} chunk(s) have no "
                    f"{self._embeddings.model_version} embedding"
                )
            if bad_dimensions[source_file.file_id]:
                issues.append(
                    f"{path}: {bad_dimensions[source_file.file_id]} embedding(s) are not "
                    f"{self._embeddings.dimension}-dimensional"
                )

        self._logger.info(
            "repository_validated",
            repository_id=found.repository_id,
            files=len(files),
            issues=len(issues),
        )
        return issues

    async def _ping(self) -> None:
        async with self._store.session() as session:
            await session.execute(text("SELECT 1"))

    async def _collect_details(self) -> HealthDetails:
        async with self._store.session() as session:
            return HealthDetails(
                can_connect=True,
                can_query=True,
                repository_count=await self._count(session, select(func.count()).select_from(RepositoryRecord)),
                file_count=await self._count(session, select(func.count()).select_from(FileRecord)),
                chunk_count=await self._count(session, select(func.count()).select_from(ChunkRecord)),
                embedding_count=await self._count(session, select(func.count()).select_from(EmbeddingRecord)),
                orphaned_files=await self._count(
                    session,
                    select(func.count())
                    .select_from(FileRecord)
                    .outerjoin(RepositoryRecord, RepositoryRecord.repository_id == FileRecord.repository_id)
                    .where(RepositoryRecord.repository_id.is_(None)),  # type: ignore[union-attr]
                ),
                orphaned_chunks=await self._count(
                    session,
                    select(func.count())
                    .select_from(ChunkRecord)
                    .outerjoin(FileRecord, FileRecord.file_id == ChunkRecord.file_id)
                    .where(FileRecord.file_id.is_(None)),  # type: ignore[union-attr]
                ),
                orphaned_embeddings=await self._count(
                    session,
                    select(func.count())
                    .select_from(EmbeddingRecord)
                    .outerjoin(ChunkRecord, ChunkRecord.chunk_id == EmbeddingRecord.chunk_id)
                    .where(ChunkRecord.chunk_id.is_(None)),  # type: ignore[union-attr]
                ),
            )

    async def _load_chunk_rows(self, repository_id: str) -> list[tuple[str, int, int | None]]:
        """(file_id, chunk_index, embedding dimension or None) for the active model."""
        async with self._store.session() as session:
            statement = (
                select(ChunkRecord.file_id, ChunkRecord.chunk_index, EmbeddingRecord.dimension)
                .join(FileRecord, FileRecord.file_id == ChunkRecord.file_id)
                .outerjoin(
                    EmbeddingRecord,
                    and_(
                        EmbeddingRecord.chunk_id == ChunkRecord.chunk_id,
                        EmbeddingRecord.model_version == self._embeddings.model_version,
                    ),
                )
                .where(FileRecord.repository_id == repository_id)
                .order_by(ChunkRecord.file_id, ChunkRecord.chunk_index)
            )
            rows = (await session.execute(statement)).all()
        return [(file_id, chunk_index, dimension) for file_id, chunk_index, dimension in rows]

    async def _count(self, session: AsyncSession, statement) -> int:  # type: ignore[no-untyped-def]
        return int((await session.execute(statement)).scalar_one())

    async def _execute_delete(self, session: AsyncSession, statement) -> int:  # type: ignore[no-untyped-def]
        result = await session.execute(statement.execution_options(synchronize_session=False))
        return result.rowcount or 0
