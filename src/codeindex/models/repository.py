from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field, ValidationInfo, field_validator

from codeindex.models.base import (
    RecordModel,
    canonical_uuid,
    ensure_json_metadata,
    ensure_non_empty_text,
    ensure_utc,
    utcnow,
)


class Repository(RecordModel):
    SCHEMA_VERSION: ClassVar[str] = "repository.v1"

    schema_version: str = Field(default=SCHEMA_VERSION)
    repository_id: str
    name: str
    path: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    ingested_at: datetime | None = None

    @field_validator("repository_id", mode="before")
    @classmethod
    def _normalize_repository_id(cls, value: Any) -> str:
        return canonical_uuid(value)

    @field_validator("name", "path")
    @classmethod
    def _ensure_non_empty(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "value")

    @field_validator("metadata", mode="before")
    @classmethod
    def _normalize_metadata(cls, value: Any) -> dict[str, Any]:
        return ensure_json_metadata(value)

    @field_validator("created_at", "ingested_at", mode="before")
    @classmethod
    def _validate_timestamps(cls, value: Any, info: ValidationInfo) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value, info.field_name or "timestamp")
