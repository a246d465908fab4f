"""Unit tests for the EmbeddingService."""

import asyncio
import time

import numpy as np
import pytest
from chromadb.api.types import Documents, EmbeddingFunction, Embeddings

from codeindex.errors import EmbeddingUnavailableError, ErrorKind, OperationTimeoutError
from codeindex.services.embeddings import EmbeddingService

DIM = 8


class RecordingEmbeddingFunction(EmbeddingFunction[Documents]):
    """Returns a constant vector per input and records every batch it sees."""

    def __init__(self, dim: int = DIM, delay: float = 0.0) -> None:
        self.dim = dim
        self.delay = delay
        self.batches: list[list[str]] = []

    def __call__(self, input: Documents) -> Embeddings:
        self.batches.append(list(input))
        if self.delay:
            time.sleep(self.delay)
        return [[float(len(doc) % 7) + 1.0] * self.dim for doc in input]


class FlakyLoader:
    """Loader that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, function: EmbeddingFunction[Documents] | None = None) -> None:
        self.failures = failures
        self.calls = 0
        self.function = function or RecordingEmbeddingFunction()

    def __call__(self) -> EmbeddingFunction[Documents]:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"model download failed ({self.calls})")
        return self.function


def _service(loader: FlakyLoader, **kwargs: object) -> EmbeddingService:
    options: dict[str, object] = {"dimension": DIM, "load_attempts": 3, "load_retry_delay": 0.0}
    options.update(kwargs)
    return EmbeddingService(model_loader=loader, **options)  # type: ignore[arg-type]


class TestEmbeddingServiceInitialization:
    """Tests for lazy, one-time model loading."""

    async def test_not_loaded_until_first_use(self) -> None:
        loader = FlakyLoader(failures=0)
        service = _service(loader)

        assert not service.is_loaded
        assert loader.calls == 0

        await service.embed("hello")

        assert service.is_loaded
        assert loader.calls == 1

    async def test_concurrent_callers_share_one_load(self) -> None:
        loader = FlakyLoader(failures=0)
        service = _service(loader)

        await asyncio.gather(*(service.embed(f"text {i}") for i in range(10)))

        assert loader.calls == 1

    async def test_retries_until_load_succeeds(self) -> None:
        loader = FlakyLoader(failures=2)
        service = _service(loader)

        await service.initialize()

        assert service.is_loaded
        assert loader.calls == 3

    async def test_raises_after_all_attempts_fail(self) -> None:
        loader = FlakyLoader(failures=10)
        service = _service(loader)

        with pytest.raises(EmbeddingUnavailableError) as exc_info:
            await service.initialize()

        assert exc_info.value.kind is ErrorKind.DEPENDENCY_FAILURE
        assert loader.calls == 3
        assert not service.is_loaded

    async def test_failed_load_is_not_memoised(self) -> None:
        loader = FlakyLoader(failures=3)
        service = _service(loader)

        with pytest.raises(EmbeddingUnavailableError):
            await service.initialize()
        await service.initialize()

        assert service.is_loaded
        assert loader.calls == 4

    async def test_dimension_mismatch_fails_without_retry(self) -> None:
        loader = FlakyLoader(failures=0, function=RecordingEmbeddingFunction(dim=DIM + 1))
        service = _service(loader)

        with pytest.raises(EmbeddingUnavailableError, match="dimensional"):
            await service.initialize()

        assert loader.calls == 1

    async def test_close_drops_model(self) -> None:
        loader = FlakyLoader(failures=0)
        service = _service(loader)
        await service.initialize()

        service.close()
        await service.initialize()

        assert loader.calls == 2


class TestEmbeddingServiceEmbedding:
    """Tests for embedding output."""

    async def test_vectors_have_fixed_dimension(self) -> None:
        service = _service(FlakyLoader(failures=0))

        vectors = await service.embed_many(["a", "bb", "ccc"])

        assert len(vectors) == 3
        assert all(len(vector) == DIM for vector in vectors)

    async def test_vectors_are_normalized(self) -> None:
        service = _service(FlakyLoader(failures=0))

        vector = await service.embed("hello world")

        assert np.linalg.norm(vector) == pytest.approx(1.0)

    async def test_normalization_can_be_disabled(self) -> None:
        service = _service(FlakyLoader(failures=0), normalize=False)

        vector = await service.embed("abc")

        assert vector == [4.0] * DIM

    async def test_blank_text_is_zero_vector_without_model_call(self) -> None:
        function = RecordingEmbeddingFunction()
        service = _service(FlakyLoader(failures=0, function=function))
        await service.initialize()
        batches_after_warmup = len(function.batches)

        vectors = await service.embed_many(["", "   \n\t"])

        assert vectors == [[0.0] * DIM, [0.0] * DIM]
        assert len(function.batches) == batches_after_warmup

    async def test_preserves_order_around_blank_text(self) -> None:
        service = _service(FlakyLoader(failures=0), normalize=False)

        vectors = await service.embed_many(["abc", " ", "abcdefgh"])

        assert vectors == [[4.0] * DIM, [0.0] * DIM, [2.0] * DIM]

    async def test_long_text_is_truncated(self) -> None:
        function = RecordingEmbeddingFunction()
        service = _service(FlakyLoader(failures=0, function=function), max_input_chars=10)

        await service.embed("x" * 50)

        assert function.batches[-1] == ["x" * 10]

    async def test_batches_inputs(self) -> None:
        function = RecordingEmbeddingFunction()
        service = _service(FlakyLoader(failures=0, function=function), batch_size=2)
        await service.initialize()
        function.batches.clear()

        await service.embed_many([f"text {i}" for i in range(5)])

        assert [len(batch) for batch in function.batches] == [2, 2, 1]

    async def test_empty_input_returns_empty_list(self) -> None:
        loader = FlakyLoader(failures=0)
        service = _service(loader)

        assert await service.embed_many([]) == []
        assert loader.calls == 0

    async def test_slow_model_call_times_out(self) -> None:
        function = RecordingEmbeddingFunction()
        service = _service(FlakyLoader(failures=0, function=function), timeout=0.05)
        await service.initialize()
        function.delay = 0.3

        with pytest.raises(OperationTimeoutError) as exc_info:
            await service.embed("slow")

        assert exc_info.value.kind is ErrorKind.TIMEOUT

    async def test_model_error_while_embedding_is_dependency_failure(self) -> None:
        class FailingEmbeddingFunction(RecordingEmbeddingFunction):
            def __call__(self, input: Documents) -> Embeddings:
                if any("POISON" in doc for doc in input):
                    raise RuntimeError("onnx inference failed")
                return super().__call__(input)

        service = _service(FlakyLoader(failures=0, function=FailingEmbeddingFunction()))

        with pytest.raises(EmbeddingUnavailableError, match="onnx inference failed") as exc_info:
            await service.embed_many(["fine", "POISON pill"])

        assert exc_info.value.kind is ErrorKind.DEPENDENCY_FAILURE
        assert await service.embed("still usable") is not None
