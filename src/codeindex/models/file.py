from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from codeindex.models.base import RecordModel, canonical_uuid, ensure_non_empty_text, ensure_sha256_hex
from codeindex.models.enums import FileType


class FileDescriptor(BaseModel):
    """A file discovered by the walker, classified but not yet read."""

    path: Path
    file_type: FileType
    language: str | None = None
    size_bytes: int = Field(ge=0)
    modified_at: int = Field(ge=0, description="st_mtime_ns of the file")

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_binary(self) -> bool:
        return self.file_type is FileType.BINARY


class SourceFile(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "source_file.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    file_id: str
    repository_id: str
    file_path: str
    file_type: FileType
    language: str | None = None
    size_bytes: int = Field(ge=0)
    modified_at: int = Field(ge=0)
    content_hash: str

    @field_validator("file_id", "repository_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return canonical_uuid(value)

    @field_validator("file_path")
    @classmethod
    def _ensure_path(cls, value: str) -> str:
        return ensure_non_empty_text(value, "file_path")

    @field_validator("content_hash", mode="before")
    @classmethod
    def _validate_hash(cls, value: Any) -> str:
        return ensure_sha256_hex(value)

    @model_validator(mode="after")
    def _validate_language(self) -> "SourceFile":
        if self.file_type is FileType.BINARY and self.language is not None:
            raise ValueError("binary files have no language")
        return self

    def matches_signature(self, descriptor: FileDescriptor) -> bool:
        """True when the on-disk file looks unchanged since it was indexed."""
        return self.size_bytes == descriptor.size_bytes and self.modified_at == descriptor.modified_at
