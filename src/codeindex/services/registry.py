"""Repository registry: create, look up and update repository records."""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from codeindex.errors import ConflictError, InvalidParamsError, NotFoundError
from codeindex.models.base import parse_uuid, utcnow
from codeindex.models.repository import Repository
from codeindex.models.tables import RepositoryRecord
from codeindex.services.index_store import IndexStore

LookupStrategy = Callable[[str], Awaitable[Repository | None]]


class RepositoryRegistry:
    """CRUD and lookup over repository records.

    Lookups return None when nothing matches; absence is a normal outcome.
    ``resolve`` tries names, then paths, then ids, so a human-friendly name
    always wins over an identifier that happens to look the same.
    """

    def __init__(
        self,
        store: IndexStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._logger = logger or structlog.get_logger(__name__)
        self._strategies: list[tuple[str, LookupStrategy]] = [
            ("name", self.get_by_name),
            ("path", self.get_by_path),
            ("id", self.get_by_id),
        ]

    async def create(self, name: str, path: str | Path, metadata: dict[str, Any] | None = None) -> Repository:
        """Register a repository.

        Raises:
            InvalidParamsError: If name or path is empty.
            ConflictError: If the name or path is already registered.
        """
        if not name or not name.strip():
            raise InvalidParamsError("repository name is required")
        if not str(path).strip():
            raise InvalidParamsError("repository path is required")

        repository = Repository(
            repository_id=str(uuid4()),
            name=name.strip(),
            path=normalize_path(path),
            metadata=metadata or {},
        )

        try:
            async with self._store.transaction() as session:
                await self._ensure_unique(session, repository)
                session.add(self._repository_to_record(repository))
        except IntegrityError as e:
            raise ConflictError(f"repository '{repository.name}' already exists") from e

        self._logger.info(
            "repository_created",
            repository_id=repository.repository_id,
            name=repository.name,
            path=repository.path,
        )
        return repository

    async def get_by_id(self, repository_id: str) -> Repository | None:
        canonical = parse_uuid(repository_id)
        if canonical is None:
            return None
        async with self._store.session() as session:
            record = await session.get(RepositoryRecord, canonical)
            if record is None:
                return None
            return self._record_to_repository(record)

    async def get_by_name(self, name: str) -> Repository | None:
        return await self._get_one(RepositoryRecord.name == name)

    async def get_by_path(self, path: str | Path) -> Repository | None:
        return await self._get_one(RepositoryRecord.path == normalize_path(path))

    async def list(self) -> list[Repository]:
        """All repositories ordered by name."""
        async with self._store.session() as session:
            result = await session.execute(select(RepositoryRecord).order_by(RepositoryRecord.name))
            return [self._record_to_repository(r) for r in result.scalars().all()]

    async def update(
        self,
        repository_id: str,
        metadata: dict[str, Any] | None = None,
        touch: bool = False,
    ) -> Repository:
        """Merge partial metadata into a repository and optionally refresh ingested_at.

        Identity fields (id, name, path) never change here.

        Raises:
            NotFoundError: If the repository does not exist.
        """
        canonical = parse_uuid(repository_id)
        async with self._store.transaction() as session:
            record = await session.get(RepositoryRecord, canonical) if canonical else None
            if record is None:
                raise NotFoundError(f"repository {repository_id} not found")
            if metadata:
                record.extra = {**(record.extra or {}), **metadata}
            if touch:
                record.ingested_at = utcnow()
            session.add(record)
            repository = self._record_to_repository(record)

        self._logger.debug("repository_updated", repository_id=repository.repository_id, touched=touch)
        return repository

    async def delete(self, repository_id: str) -> bool:
        """Delete a repository together with its files, chunks and embeddings.

        Returns:
            True if the repository existed.
        """
        canonical = parse_uuid(repository_id)
        if canonical is None:
            return False

        async with self._store.transaction() as session:
            if await session.get(RepositoryRecord, canonical) is None:
                return False
            await self._store.delete_repository_contents(session, canonical)
            await session.execute(delete(RepositoryRecord).where(RepositoryRecord.repository_id == canonical))

        self._logger.info("repository_deleted", repository_id=canonical)
        return True

    async def resolve(self, identifier: str) -> Repository | None:
        """Resolve a user-supplied string by name, then path, then id.

        Raises:
            InvalidParamsError: If identifier is empty.
        """
        if not identifier or not identifier.strip():
            raise InvalidParamsError("repository parameter is required")

        identifier = identifier.strip()
        for strategy_name, lookup in self._strategies:
            repository = await lookup(identifier)
            if repository is not None:
                self._logger.debug("repository_resolved", identifier=identifier, strategy=strategy_name)
                return repository
        return None

    async def require(self, identifier: str) -> Repository:
        """Resolve or raise NotFoundError."""
        repository = await self.resolve(identifier)
        if repository is None:
            raise NotFoundError(f"repository '{identifier}' not found")
        return repository

    async def _get_one(self, condition: Any) -> Repository | None:
        async with self._store.session() as session:
            result = await session.execute(select(RepositoryRecord).where(condition))
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return self._record_to_repository(record)

    async def _ensure_unique(self, session: Any, repository: Repository) -> None:
        by_name = await session.execute(select(RepositoryRecord).where(RepositoryRecord.name == repository.name))
        if by_name.scalar_one_or_none() is not None:
            raise ConflictError(f"repository '{repository.name}' already exists")
        by_path = await session.execute(select(RepositoryRecord).where(RepositoryRecord.path == repository.path))
        if by_path.scalar_one_or_none() is not None:
            raise ConflictError(f"a repository is already registered at '{repository.path}'")

    def _repository_to_record(self, repository: Repository) -> RepositoryRecord:
        data = repository.model_dump()
        data["extra"] = data.pop("metadata")
        return RepositoryRecord.model_validate(data)

    def _record_to_repository(self, record: RepositoryRecord) -> Repository:
        data = record.model_dump()
        data["metadata"] = data.pop("extra") or {}
        return Repository.model_validate(data)


def normalize_path(path: str | Path) -> str:
    """Absolute, normalised form used as the path lookup key."""
    return str(Path(path).expanduser().resolve(strict=False))
