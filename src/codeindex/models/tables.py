"""SQLModel table definitions for database persistence.

Table classes are kept separate from the frozen Pydantic domain models in
repository.py, file.py, chunk.py and embedding.py. Domain models carry the
validation rules; table models carry the schema and are mutable for ORM use.

Field names match the domain models so records convert via
``.model_dump()`` / ``.model_validate()``. Two fields need explicit
conversion: ``file_type`` is stored as its string value, repository
``metadata`` lives in the ``extra`` column, and the embedding ``vector`` is
stored as packed float32 bytes.

Foreign keys are declared for documentation and tooling. SQLite does not
enforce them unless ``PRAGMA foreign_keys`` is enabled, and it is not, so
cascades are performed explicitly by the services and dangling references
are detected by the health checker.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, LargeBinary, UniqueConstraint
from sqlmodel import Field, SQLModel


class RepositoryRecord(SQLModel, table=True):
    """SQLModel table for repository persistence."""

    __tablename__ = "repositories"

    repository_id: str = Field(primary_key=True)
    schema_version: str
    name: str = Field(index=True, unique=True)
    path: str = Field(index=True, unique=True)
    # "metadata" is reserved on declarative classes.
    extra: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime
    ingested_at: datetime | None = None


class FileRecord(SQLModel, table=True):
    """SQLModel table for indexed files."""

    __tablename__ = "files"
    __table_args__ = (UniqueConstraint("repository_id", "file_path", name="uq_files_repository_path"),)

    file_id: str = Field(primary_key=True)
    schema_version: str
    repository_id: str = Field(index=True, foreign_key="repositories.repository_id")
    file_path: str
    file_type: str
    language: str | None = None
    size_bytes: int
    modified_at: int
    content_hash: str


class ChunkRecord(SQLModel, table=True):
    """SQLModel table for file chunks."""

    __tablename__ = "chunks"
    __table_args__ = (UniqueConstraint("file_id", "chunk_index", name="uq_chunks_file_index"),)

    chunk_id: str = Field(primary_key=True)
    schema_version: str
    file_id: str = Field(index=True, foreign_key="files.file_id")
    chunk_index: int
    content: str
    content_hash: str
    char_start: int
    char_end: int
    line_start: int
    line_end: int


class EmbeddingRecord(SQLModel, table=True):
    """SQLModel table for chunk embeddings, one per chunk per model version."""

    __tablename__ = "embeddings"
    __table_args__ = (UniqueConstraint("chunk_id", "model_version", name="uq_embeddings_chunk_model"),)

    embedding_id: str = Field(primary_key=True)
    schema_version: str
    chunk_id: str = Field(index=True, foreign_key="chunks.chunk_id")
    vector: bytes = Field(sa_type=LargeBinary)
    dimension: int
    model_version: str = Field(index=True)
    created_at: datetime
