"""Similarity query engine over indexed chunk embeddings."""

import numpy as np
import structlog

from codeindex.errors import InvalidParamsError
from codeindex.models.enums import FileType
from codeindex.models.hit import QueryResult
from codeindex.services.deadline import bounded
from codeindex.services.embeddings import EmbeddingService
from codeindex.services.index_store import IndexStore
from codeindex.services.registry import RepositoryRegistry

DEFAULT_LIMIT = 5


class QueryEngine:
    """Ranks a repository's chunks by cosine similarity to a text query.

    Ties are broken by chunk_index, then file_path, so equal scores come
    back in a stable order. Only embeddings of the active model version are
    considered.
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        store: IndexStore,
        embeddings: EmbeddingService,
        timeout: float | None = 120.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._embeddings = embeddings
        self._timeout = timeout
        self._logger = logger or structlog.get_logger(__name__)

    async def query(
        self,
        text: str,
        repository: str,
        limit: int = DEFAULT_LIMIT,
        file_type: FileType | str | None = None,
    ) -> list[QueryResult]:
        """Return the ``limit`` chunks most similar to ``text``.

        Args:
            text: Natural-language or code query.
            repository: Name, path or id of the repository to search.
            limit: Maximum number of results; must be a positive int.
            file_type: Only rank chunks of files of this type.

        Returns:
            Results sorted by score descending. Empty if nothing is indexed.

        Raises:
            InvalidParamsError: If an argument is missing or malformed.
            NotFoundError: If the repository does not exist.
            OperationTimeoutError: If embedding or loading exceeds the timeout.
        """
        self._validate(text, repository, limit)
        scope = self._file_type(file_type)

        found = await bounded(self._registry.require(repository), self._timeout, "repository lookup")
        query_vector = np.asarray(await self._embeddings.embed(text), dtype=np.float64)
        stored = await bounded(
            self._store.load_vectors(found.repository_id, self._embeddings.model_version, scope),
            self._timeout,
            "vector load",
        )

        candidates = [s for s in stored if s.vector.shape[0] == query_vector.shape[0]]
        if len(candidates) != len(stored):
            self._logger.warning(
                "embeddings_dimension_mismatch",
                repository_id=found.repository_id,
                skipped=len(stored) - len(candidates),
            )
        if not candidates:
            self._logger.info("query_completed", repository_id=found.repository_id, results=0)
            return []

        scores = cosine_similarities(query_vector, np.vstack([c.vector for c in candidates]))
        results = [
            QueryResult(
                chunk_id=candidate.chunk_id,
                file_id=candidate.file_id,
                repository_id=candidate.repository_id,
                file_path=candidate.file_path,
                file_type=candidate.file_type,
                language=candidate.language,
                chunk_index=candidate.chunk_index,
                line_start=candidate.line_start,
                line_end=candidate.line_end,
                content=candidate.content,
                score=float(score),
            )
            for candidate, score in zip(candidates, scores)
        ]
        results.sort(key=lambda result: result.sort_key)

        self._logger.info(
            "query_completed",
            repository_id=found.repository_id,
            candidates=len(candidates),
            results=min(limit, len(results)),
        )
        return results[:limit]

    def _validate(self, text: str, repository: str, limit: int) -> None:
        if not isinstance(text, str) or not text.strip():
            raise InvalidParamsError("query text is required")
        if not isinstance(repository, str) or not repository.strip():
            raise InvalidParamsError("repository parameter is required")
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidParamsError("limit must be an integer")
        if limit < 1:
            raise InvalidParamsError("limit must be a positive integer")

    def _file_type(self, file_type: FileType | str | None) -> FileType | None:
        if file_type is None or isinstance(file_type, FileType):
            return file_type
        try:
            return FileType(file_type)
        except ValueError as e:
            choices = ", ".join(t.value for t in FileType)
            raise InvalidParamsError(f"file_type must be one of: {choices}") from e


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against each row of ``matrix``.

    Rows or queries with zero norm score 0.0.
    """
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0.0, dots / norms, 0.0)
    return np.clip(scores, -1.0, 1.0)
