"""Read-only views of an indexed repository: files, directories, contents and stats."""

from collections import Counter
from pathlib import PurePath, PurePosixPath

import structlog

from codeindex.errors import IntegrityViolationError, InvalidParamsError, NotFoundError
from codeindex.models.enums import FileType
from codeindex.models.file import SourceFile
from codeindex.models.report import RepositoryStats
from codeindex.services.index_store import IndexStore
from codeindex.services.registry import RepositoryRegistry
from codeindex.services.tree import FileTree


class RepositoryBrowser:
    """Lists indexed files and directories of a repository and summarises it."""

    def __init__(
        self,
        registry: RepositoryRegistry,
        store: IndexStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._logger = logger or structlog.get_logger(__name__)

    async def tree(self, repository: str) -> FileTree:
        """File tree of a repository, rooted at its path.

        Raises:
            NotFoundError: If the repository does not exist.
        """
        found = await self._registry.require(repository)
        files = await self._store.list_files(found.repository_id)
        return FileTree.from_paths(found.path, (f.file_path for f in files))

    async def list_files(self, repository: str, prefix: str | None = None) -> list[str]:
        """Root-relative paths of indexed files, optionally filtered by prefix."""
        paths = (await self.tree(repository)).files()
        if prefix:
            paths = [p for p in paths if p.startswith(prefix)]
        return paths

    async def list_directories(self, repository: str, depth: int | None = None) -> list[str]:
        """Root-relative directories containing indexed files, up to ``depth`` levels."""
        return (await self.tree(repository)).directories(max_depth=depth)

    async def file_info(self, repository: str, relative_path: str) -> SourceFile:
        """Indexed metadata of one file, addressed by its repository-relative path.

        Raises:
            InvalidParamsError: If the path is empty or escapes the repository.
            NotFoundError: If the repository or the file is not indexed.
        """
        relative = _relative_path(relative_path)
        found = await self._registry.require(repository)

        source_file = await self._store.get_file(found.repository_id, str(PurePath(found.path) / relative))
        if source_file is None:
            raise NotFoundError(f"file '{relative}' is not indexed in repository '{found.name}'")
        return source_file

    async def read_file(self, repository: str, relative_path: str) -> str:
        """Rebuild a file's text from its indexed chunks.

        Overlapping chunks are stitched by character offset, so the result is
        the content as it was when the file was indexed.

        Raises:
            InvalidParamsError: If the path is malformed or names a binary file.
            NotFoundError: If the repository or the file is not indexed.
            IntegrityViolationError: If the chunks leave a gap in the content.
        """
        source_file = await self.file_info(repository, relative_path)
        if source_file.file_type is FileType.BINARY:
            raise InvalidParamsError(f"'{relative_path}' is a binary file and has no text content")

        parts: list[str] = []
        covered = 0
        for chunk in await self._store.get_chunks(source_file.file_id):
            if chunk.char_start > covered:
                raise IntegrityViolationError(
                    f"{source_file.file_path}: chunk {chunk.chunk_index} starts at {chunk.char_start}, "
                    f"content is only rebuilt up to {covered}",
                    issues=[f"{source_file.file_path}: chunks do not cover the file contiguously"],
                )
            if chunk.char_end > covered:
                parts.append(chunk.content[covered - chunk.char_start :])
                covered = chunk.char_end

        self._logger.debug("file_rebuilt", file_id=source_file.file_id, length=covered)
        return "".join(parts)

    async def stats(self, repository: str) -> RepositoryStats:
        found = await self._registry.require(repository)
        files = await self._store.list_files(found.repository_id)

        stats = RepositoryStats(
            repository_id=found.repository_id,
            name=found.name,
            file_count=len(files),
            files_by_type=dict(Counter(f.file_type.value for f in files)),
            languages=dict(Counter(f.language for f in files if f.language)),
            chunk_count=await self._store.count_chunks(found.repository_id),
            embedding_count=await self._store.count_embeddings(found.repository_id),
            total_size_bytes=sum(f.size_bytes for f in files),
        )
        self._logger.debug("repository_stats_computed", repository_id=found.repository_id, files=stats.file_count)
        return stats


def _relative_path(relative_path: str) -> PurePosixPath:
    if not isinstance(relative_path, str) or not relative_path.strip():
        raise InvalidParamsError("file path is required")
    relative = PurePosixPath(relative_path.strip().lstrip("/"))
    if not relative.parts or ".." in relative.parts:
        raise InvalidParamsError(f"file path must stay inside the repository: {relative_path}")
    return relative
