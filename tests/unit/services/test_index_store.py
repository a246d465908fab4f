"""Unit tests for the IndexStore."""

import hashlib
from collections.abc import AsyncIterator
from uuid import uuid4

import pytest
from sqlalchemy import select

from codeindex.models.chunk import Chunk
from codeindex.models.embedding import Embedding
from codeindex.models.enums import FileType
from codeindex.models.file import SourceFile
from codeindex.models.tables import ChunkRecord
from codeindex.services.chunker import chunk_id_for
from codeindex.services.index_store import (
    IndexStore,
    create_async_engine_from_path,
    pack_vector,
    unpack_vector,
)

DIM = 4


@pytest.fixture
async def store() -> AsyncIterator[IndexStore]:
    index_store = IndexStore(engine=create_async_engine_from_path(":memory:"))
    await index_store.initialize_schema()
    yield index_store
    await index_store.close()


def _hash(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


def _make_file(repository_id: str, path: str = "/repo/app.py", file_type: FileType = FileType.CODE) -> SourceFile:
    return SourceFile(
        file_id=str(uuid4()),
        repository_id=repository_id,
        file_path=path,
        file_type=file_type,
        language="python" if file_type is FileType.CODE else None,
        size_bytes=10,
        modified_at=1,
        content_hash=_hash(path),
    )


def _make_chunks(file_id: str, texts: list[str]) -> list[Chunk]:
    return [
        Chunk(
            chunk_id=chunk_id_for(file_id, index),
            file_id=file_id,
            chunk_index=index,
            content=text,
            content_hash=_hash(text),
            char_start=0,
            char_end=len(text),
            line_start=index + 1,
            line_end=index + 1,
        )
        for index, text in enumerate(texts)
    ]


def _make_embeddings(chunks: list[Chunk], model_version: str = "test-model") -> list[Embedding]:
    return [
        Embedding(
            embedding_id=str(uuid4()),
            chunk_id=chunk.chunk_id,
            vector=[float(chunk.chunk_index + 1)] * DIM,
            dimension=DIM,
            model_version=model_version,
        )
        for chunk in chunks
    ]


class TestIndexStoreWrites:
    """Tests for atomic file replacement."""

    async def test_replace_file_persists_file_chunks_and_embeddings(self, store: IndexStore) -> None:
        repository_id = str(uuid4())
        source_file = _make_file(repository_id)
        chunks = _make_chunks(source_file.file_id, ["alpha\n", "beta\n"])

        await store.replace_file(source_file, chunks, _make_embeddings(chunks))

        assert await store.get_file(repository_id, source_file.file_path) == source_file
        assert await store.get_chunks(source_file.file_id) == chunks
        assert await store.count_chunks(repository_id) == 2
        assert await store.count_embeddings(repository_id) == 2

    async def test_replace_file_drops_previous_chunk_set(self, store: IndexStore) -> None:
        repository_id = str(uuid4())
        source_file = _make_file(repository_id)
        first = _make_chunks(source_file.file_id, ["a\n", "b\n", "c\n"])
        await store.replace_file(source_file, first, _make_embeddings(first))

        second = _make_chunks(source_file.file_id, ["only\n"])
        await store.replace_file(source_file, second, _make_embeddings(second))

        stored = await store.get_chunks(source_file.file_id)
        assert [c.content for c in stored] == ["only\n"]
        assert await store.count_embeddings(repository_id) == 1

    async def test_replace_file_supersedes_row_with_same_path(self, store: IndexStore) -> None:
        repository_id = str(uuid4())
        old = _make_file(repository_id)
        old_chunks = _make_chunks(old.file_id, ["old\n"])
        await store.replace_file(old, old_chunks, _make_embeddings(old_chunks))

        new = _make_file(repository_id)
        new_chunks = _make_chunks(new.file_id, ["new\n"])
        await store.replace_file(new, new_chunks, _make_embeddings(new_chunks))

        files = await store.list_files(repository_id)
        assert [f.file_id for f in files] == [new.file_id]
        assert await store.count_chunks(repository_id) == 1

    async def test_binary_file_with_chunks_is_rejected(self, store: IndexStore) -> None:
        source_file = _make_file(str(uuid4()), path="/repo/logo.png", file_type=FileType.BINARY)
        chunks = _make_chunks(source_file.file_id, ["nope\n"])

        with pytest.raises(ValueError, match="binary"):
            await store.replace_file(source_file, chunks, _make_embeddings(chunks))

    async def test_missing_embedding_is_rejected(self, store: IndexStore) -> None:
        source_file = _make_file(str(uuid4()))
        chunks = _make_chunks(source_file.file_id, ["a\n", "b\n"])

        with pytest.raises(ValueError, match="one embedding per chunk"):
            await store.replace_file(source_file, chunks, _make_embeddings(chunks)[:1])

        assert await store.get_file(source_file.repository_id, source_file.file_path) is None

    async def test_failed_transaction_leaves_nothing_behind(self, store: IndexStore) -> None:
        source_file = _make_file(str(uuid4()))
        chunks = _make_chunks(source_file.file_id, ["a\n"])

        with pytest.raises(RuntimeError):
            async with store.transaction() as session:
                session.add(store._file_to_record(source_file))
                session.add_all(store._chunk_to_record(c) for c in chunks)
                await session.flush()
                raise RuntimeError("crash mid-write")

        async with store.session() as session:
            rows = (await session.execute(select(ChunkRecord))).scalars().all()
        assert rows == []
        assert await store.get_file(source_file.repository_id, source_file.file_path) is None


class TestIndexStoreDeletes:
    """Tests for cascading deletes."""

    async def test_delete_file_cascades(self, store: IndexStore) -> None:
        repository_id = str(uuid4())
        source_file = _make_file(repository_id)
        chunks = _make_chunks(source_file.file_id, ["a\n", "b\n"])
        await store.replace_file(source_file, chunks, _make_embeddings(chunks))

        assert await store.delete_file(source_file.file_id)

        assert await store.list_files(repository_id) == []
        assert await store.count_chunks(repository_id) == 0
        assert await store.get_embedding(chunks[0].chunk_id, "test-model") is None

    async def test_delete_unknown_file_returns_false(self, store: IndexStore) -> None:
        assert not await store.delete_file(str(uuid4()))


class TestIndexStoreReads:
    """Tests for vector loading and model versions."""

    async def test_load_vectors_filters_by_model_version(self, store: IndexStore) -> None:
        repository_id = str(uuid4())
        source_file = _make_file(repository_id)
        chunks = _make_chunks(source_file.file_id, ["a\n", "b\n"])
        await store.replace_file(source_file, chunks, _make_embeddings(chunks))

        current = await store.load_vectors(repository_id, "test-model")
        other = await store.load_vectors(repository_id, "other-model")

        assert sorted(v.chunk_index for v in current) == [0, 1]
        assert other == []
        assert current[0].file_path == "/repo/app.py"
        assert current[0].vector.shape == (DIM,)

    async def test_get_embedding_round_trips_vector(self, store: IndexStore) -> None:
        source_file = _make_file(str(uuid4()))
        chunks = _make_chunks(source_file.file_id, ["a\n"])
        embeddings = _make_embeddings(chunks)
        await store.replace_file(source_file, chunks, embeddings)

        stored = await store.get_embedding(chunks[0].chunk_id, "test-model")

        assert stored is not None
        assert stored.vector == embeddings[0].vector
        assert stored.dimension == DIM


def test_pack_vector_uses_little_endian_float32() -> None:
    blob = pack_vector([1.0, -2.5])

    assert len(blob) == 8
    assert unpack_vector(blob).tolist() == [1.0, -2.5]
