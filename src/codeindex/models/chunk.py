from typing import Any, ClassVar

from pydantic import Field, field_validator, model_validator

from codeindex.models.base import (
    RecordModel,
    ensure_sha256_hex,
    canonical_uuid,
)


class Chunk(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "chunk.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    chunk_id: str
    file_id: str
    chunk_index: int = Field(ge=0)
    content: str
    content_hash: str
    char_start: int = Field(ge=0)
    char_end: int = Field(ge=0)
    line_start: int = Field(ge=1)
    line_end: int = Field(ge=1)

    @field_validator("chunk_id", "file_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return canonical_uuid(value)

    @field_validator("content")
    @classmethod
    def _ensure_content(cls, value: str) -> str:
        # Whitespace-only chunks are legal inside a file that has other content.
        if not value:
            raise ValueError("content cannot be empty")
        return value

    @field_validator("content_hash", mode="before")
    @classmethod
    def _validate_hash(cls, value: Any) -> str:
        return ensure_sha256_hex(value)

    @model_validator(mode="after")
    def _validate_offsets(self) -> "Chunk":
        if self.char_end < self.char_start:
            raise ValueError("char_end must be greater than or equal to char_start")
        if self.line_end < self.line_start:
            raise ValueError("line_end must be greater than or equal to line_start")
        return self
