import math
from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field, field_validator, model_validator

from codeindex.models.base import (
    RecordModel,
    canonical_uuid,
    ensure_non_empty_text,
    ensure_utc,
    utcnow,
)


class Embedding(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "embedding.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    embedding_id: str
    chunk_id: str
    vector: list[float]
    dimension: int = Field(gt=0)
    model_version: str
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("embedding_id", "chunk_id", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> str:
        return canonical_uuid(value)

    @field_validator("model_version")
    @classmethod
    def _ensure_model_version(cls, value: str) -> str:
        return ensure_non_empty_text(value, "model_version")

    @field_validator("vector")
    @classmethod
    def _ensure_finite(cls, value: list[float]) -> list[float]:
        if any(not math.isfinite(component) for component in value):
            raise ValueError("vector components must be finite")
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _validate_created_at(cls, value: Any) -> datetime:
        return ensure_utc(value, "created_at")

    @model_validator(mode="after")
    def _validate_dimension(self) -> "Embedding":
        if len(self.vector) != self.dimension:
            raise ValueError(f"vector length {len(self.vector)} does not match dimension {self.dimension}")
        return self
