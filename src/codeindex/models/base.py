"""Shared base model and field validators for persisted index records.

Records are immutable and carry a ``schema_version`` so rows written by an
older layout are rejected instead of silently misread. Timestamps are
normalized to UTC because SQLite hands them back naive.
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, Mapping, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

T_Model = TypeVar("T_Model", bound="RecordModel")

SHA256_HEX_LENGTH = 64
_HEX_DIGITS = frozenset("0123456789abcdef")


class RecordModel(BaseModel):
    """Frozen record stamped with its class's SCHEMA_VERSION."""

    SCHEMA_VERSION: ClassVar[str]
    schema_version: str

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _stamp_schema_version(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "schema_version" not in data:
            return {**data, "schema_version": cls.SCHEMA_VERSION}
        return data

    @model_validator(mode="after")
    def _check_schema_version(self) -> "RecordModel":
        if self.schema_version != self.SCHEMA_VERSION:
            raise ValueError(
                f"{type(self).__name__} expects schema_version '{self.SCHEMA_VERSION}', got '{self.schema_version}'"
            )
        return self

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_record(cls: Type[T_Model], data: Mapping[str, Any] | BaseModel) -> T_Model:
        return cls.model_validate(data)


def canonical_uuid(value: Any) -> str:
    """Lower-case hyphenated form of a UUID given as UUID or string."""
    if isinstance(value, UUID):
        return str(value)
    if not isinstance(value, str):
        raise TypeError("identifier must be a UUID or string")
    return str(UUID(value.strip()))


def parse_uuid(value: str) -> str | None:
    """Canonical UUID string, or None if value is not a UUID."""
    try:
        return canonical_uuid(value)
    except (TypeError, ValueError):
        return None


def ensure_sha256_hex(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError("content hash must be a string")
    digest = value.strip().lower()
    if len(digest) != SHA256_HEX_LENGTH or not _HEX_DIGITS.issuperset(digest):
        raise ValueError("content hash must be a 64 character hex SHA-256 digest")
    return digest


def ensure_utc(value: Any, field_name: str) -> datetime:
    """Accept datetimes or ISO strings; naive values are taken to be UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise TypeError(f"{field_name} must be a datetime")
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_non_empty_text(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value


def ensure_json_metadata(value: Any) -> dict[str, Any]:
    """Metadata is stored as a JSON object, so keys must be strings."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError("metadata must be a mapping")
    if any(not isinstance(key, str) for key in value):
        raise TypeError("metadata keys must be strings")
    return dict(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
