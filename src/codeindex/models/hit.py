from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from codeindex.models.base import canonical_uuid
from codeindex.models.enums import FileType


class QueryResult(BaseModel):
    """A chunk ranked by cosine similarity to a query."""

    chunk_id: str
    file_id: str
    repository_id: str
    file_path: str
    file_type: FileType
    language: str | None = None
    chunk_index: int = Field(ge=0)
    line_start: int = Field(ge=1)
    line_end: int = Field(ge=1)
    content: str
    score: float

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("chunk_id", "file_id", "repository_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return canonical_uuid(value)

    @model_validator(mode="after")
    def _validate_score(self) -> "QueryResult":
        # Allow float noise just outside the cosine range.
        if not (-1.0 - 1e-6 <= self.score <= 1.0 + 1e-6):
            raise ValueError("score must be between -1 and 1")
        return self

    @property
    def sort_key(self) -> tuple[float, int, str]:
        return (-self.score, self.chunk_index, self.file_path)


__all__ = ["QueryResult"]
