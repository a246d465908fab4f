"""Embedding service wrapping a ChromaDB embedding function.

ChromaDB's embedding functions are synchronous and the default one loads an
ONNX model on first use, so every call goes through asyncio.to_thread()
and the model is loaded once, lazily, behind an asyncio.Lock.
"""

import asyncio
from collections.abc import Callable

import numpy as np
import structlog
from chromadb.api.types import Documents, EmbeddingFunction
from chromadb.utils import embedding_functions

from codeindex.errors import EmbeddingUnavailableError, OperationTimeoutError
from codeindex.services.deadline import bounded

ModelLoader = Callable[[], EmbeddingFunction[Documents]]

_WARMUP_TEXT = "warmup"


def default_model_loader() -> EmbeddingFunction[Documents]:
    """ChromaDB's bundled all-MiniLM-L6-v2 (384 dimensions)."""
    return embedding_functions.DefaultEmbeddingFunction()


class EmbeddingService:
    """Computes fixed-dimension embeddings for chunk and query text.

    The same instance is shared by ingestion and querying so both live in
    one vector space. Loading is retried ``load_attempts`` times; this is
    the only operation in the index that retries internally.

    Empty or whitespace-only text maps to the zero vector without calling
    the model, and text longer than ``max_input_chars`` is truncated.
    """

    def __init__(
        self,
        model_loader: ModelLoader | None = None,
        model_version: str = "all-MiniLM-L6-v2",
        dimension: int = 384,
        batch_size: int = 20,
        max_input_chars: int = 8192,
        normalize: bool = True,
        load_attempts: int = 3,
        load_retry_delay: float = 1.0,
        timeout: float | None = 120.0,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if load_attempts < 1:
            raise ValueError("load_attempts must be at least 1")

        self._model_loader = model_loader or default_model_loader
        self._model_version = model_version
        self._dimension = dimension
        self._batch_size = batch_size
        self._max_input_chars = max_input_chars
        self._normalize = normalize
        self._load_attempts = load_attempts
        self._load_retry_delay = load_retry_delay
        self._timeout = timeout
        self._logger = logger or structlog.get_logger(__name__)
        self._function: EmbeddingFunction[Documents] | None = None
        self._lock = asyncio.Lock()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_version(self) -> str:
        return self._model_version

    @property
    def is_loaded(self) -> bool:
        return self._function is not None

    async def initialize(self) -> None:
        """Load the model once. Concurrent callers wait for the same load.

        Raises:
            EmbeddingUnavailableError: If every load attempt failed or the
                model produces vectors of the wrong dimension.
        """
        if self._function is not None:
            return

        async with self._lock:
            if self._function is not None:
                return

            last_error: Exception | None = None
            for attempt in range(1, self._load_attempts + 1):
                self._logger.info(
                    "embedding_model_loading",
                    model_version=self._model_version,
                    attempt=attempt,
                )
                try:
                    function, warmup = await bounded(
                        asyncio.to_thread(self._load),
                        self._timeout,
                        "embedding model load",
                    )
                except Exception as e:
                    last_error = e
                    self._logger.warning(
                        "embedding_model_load_failed",
                        model_version=self._model_version,
                        attempt=attempt,
                        error=str(e),
                    )
                    if attempt < self._load_attempts:
                        await asyncio.sleep(self._load_retry_delay * attempt)
                    continue

                if len(warmup) != self._dimension:
                    raise EmbeddingUnavailableError(
                        f"model {self._model_version} produces {len(warmup)}-dimensional vectors, "
                        f"expected {self._dimension}"
                    )

                self._function = function
                self._logger.info(
                    "embedding_model_loaded",
                    model_version=self._model_version,
                    dimension=self._dimension,
                )
                return

            raise EmbeddingUnavailableError(
                f"embedding model {self._model_version} unavailable after "
                f"{self._load_attempts} attempt(s): {last_error}"
            )

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in batches, preserving order.

        Raises:
            EmbeddingUnavailableError: If the model cannot be loaded, raises
                while embedding or returns malformed output.
            OperationTimeoutError: If a batch exceeds the timeout.
        """
        if not texts:
            return []

        await self.initialize()
        function = self._function
        if function is None:
            raise EmbeddingUnavailableError("embedding model was closed")

        results: list[list[float] | None] = [None] * len(texts)
        pending: list[tuple[int, str]] = []
        for position, text in enumerate(texts):
            if not text.strip():
                results[position] = [0.0] * self._dimension
            else:
                pending.append((position, text[: self._max_input_chars]))

        for start in range(0, len(pending), self._batch_size):
            batch = pending[start : start + self._batch_size]
            try:
                raw = await bounded(
                    asyncio.to_thread(function, [text for _, text in batch]),
                    self._timeout,
                    "embedding",
                )
            except OperationTimeoutError:
                raise
            except Exception as e:
                self._logger.warning("embedding_batch_failed", model_version=self._model_version, error=str(e))
                raise EmbeddingUnavailableError(f"embedding model {self._model_version} failed: {e}") from e
            if len(raw) != len(batch):
                raise EmbeddingUnavailableError(f"model returned {len(raw)} vectors for {len(batch)} inputs")
            for (position, _), vector in zip(batch, raw):
                results[position] = self._to_vector(vector)

        self._logger.debug("texts_embedded", count=len(texts), model_version=self._model_version)
        return [vector for vector in results if vector is not None]

    def close(self) -> None:
        """Release the loaded model. A later call loads it again."""
        self._function = None

    def _load(self) -> tuple[EmbeddingFunction[Documents], list[float]]:
        function = self._model_loader()
        warmup = function([_WARMUP_TEXT])
        return function, np.asarray(warmup[0], dtype=np.float64).ravel().tolist()

    def _to_vector(self, raw: object) -> list[float]:
        array = np.asarray(raw, dtype=np.float64).ravel()
        if array.shape[0] != self._dimension:
            raise EmbeddingUnavailableError(
                f"model returned a {array.shape[0]}-dimensional vector, expected {self._dimension}"
            )
        if not np.all(np.isfinite(array)):
            raise EmbeddingUnavailableError("model returned non-finite vector components")
        if self._normalize:
            norm = float(np.linalg.norm(array))
            if norm > 0.0:
                array = array / norm
        return array.tolist()
