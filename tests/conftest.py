"""Shared fixtures: a deterministic embedding function and wired test indexes."""

import hashlib
import re
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from chromadb.api.types import Documents, EmbeddingFunction, Embeddings

from codeindex.config import IndexConfig
from codeindex.services.factory import CodeIndex, create_test_code_index

DIMENSION = 384
_TOKEN = re.compile(r"\w+")


class HashingEmbeddingFunction(EmbeddingFunction[Documents]):
    """Deterministic bag-of-words embedding for testing.

    Each token is hashed into one of ``dim`` buckets, so identical texts get
    identical vectors and texts sharing tokens point in similar directions.
    """

    def __init__(self, dim: int = DIMENSION) -> None:
        self.dim = dim
        self.calls = 0

    def __call__(self, input: Documents) -> Embeddings:
        self.calls += 1
        embeddings: Embeddings = []
        for doc in input:
            vector = [0.0] * self.dim
            for token in _TOKEN.findall(doc.lower()):
                digest = hashlib.sha256(token.encode()).digest()
                vector[int.from_bytes(digest[:4], "big") % self.dim] += 1.0
            embeddings.append(vector)
        return embeddings


@pytest.fixture
def embedding_function() -> HashingEmbeddingFunction:
    return HashingEmbeddingFunction()


@pytest.fixture
def test_config() -> IndexConfig:
    """In-memory SQLite is one shared connection, so ingestion uses one worker."""
    return IndexConfig(max_workers=1, load_retry_delay=0.0)


@pytest.fixture
async def code_index(
    embedding_function: HashingEmbeddingFunction,
    test_config: IndexConfig,
) -> AsyncIterator[CodeIndex]:
    async with create_test_code_index(model_loader=lambda: embedding_function, config=test_config) as index:
        yield index


@pytest.fixture
def sample_repo(tmp_path: Path) -> Path:
    """A small repository: a 5-line and a 150-line Python file plus a PNG."""
    root = tmp_path / "sample"
    (root / "src").mkdir(parents=True)
    (root / "src" / "small.py").write_text("".join(f"small_value_{i} = {i}\n" for i in range(5)))
    (root / "src" / "large.py").write_text("".join(f"large_value_{i} = {i}\n" for i in range(150)))
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR")
    return root
