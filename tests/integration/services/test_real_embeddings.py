"""Integration tests with ChromaDB's default embedding function.

These tests use the bundled all-MiniLM-L6-v2 ONNX model to verify real
embedding generation and similarity ranking. Marked as slow since they
load an ML model and perform real inference.
"""

from pathlib import Path

import pytest

from codeindex.config import IndexConfig
from codeindex.services.embeddings import default_model_loader
from codeindex.services.factory import create_test_code_index


@pytest.fixture
def topic_repo(tmp_path: Path) -> Path:
    root = tmp_path / "topics"
    root.mkdir()
    (root / "weather.md").write_text("The forecast calls for heavy rain and strong winds tomorrow.\n")
    (root / "cooking.md").write_text("Simmer the tomato sauce slowly and season with basil and garlic.\n")
    (root / "network.py").write_text(
        "def open_socket(host, port):\n    return socket.create_connection((host, port))\n"
    )
    return root


@pytest.mark.slow
class TestRealEmbeddings:
    """End-to-end ingestion and querying with the real model."""

    async def test_semantic_query_finds_related_file(self, topic_repo: Path) -> None:
        config = IndexConfig(max_workers=1)
        async with create_test_code_index(model_loader=default_model_loader, config=config) as code_index:
            result = await code_index.ingest(topic_repo)

            assert result.files_processed == 3
            assert code_index.embeddings.dimension == 384

            hits = await code_index.query("will it be stormy", "topics", 1)
            assert Path(hits[0].file_path).name == "weather.md"

            hits = await code_index.query("recipe for pasta sauce", "topics", 1)
            assert Path(hits[0].file_path).name == "cooking.md"

            assert (await code_index.check()).healthy
