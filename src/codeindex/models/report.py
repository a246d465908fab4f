"""Structured reports returned by the health checker and repository browser."""

from pydantic import BaseModel, ConfigDict, Field

from codeindex.errors import IntegrityViolationError


class HealthDetails(BaseModel):
    can_connect: bool = False
    can_query: bool = False
    repository_count: int = Field(default=0, ge=0)
    file_count: int = Field(default=0, ge=0)
    chunk_count: int = Field(default=0, ge=0)
    embedding_count: int = Field(default=0, ge=0)
    orphaned_files: int = Field(default=0, ge=0)
    orphaned_chunks: int = Field(default=0, ge=0)
    orphaned_embeddings: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def orphan_total(self) -> int:
        return self.orphaned_files + self.orphaned_chunks + self.orphaned_embeddings


class HealthReport(BaseModel):
    healthy: bool
    issues: list[str] = Field(default_factory=list)
    details: HealthDetails

    model_config = ConfigDict(frozen=True)

    def raise_for_issues(self) -> None:
        """Raise IntegrityViolationError if the check found any problem."""
        if not self.healthy:
            raise IntegrityViolationError(
                f"index failed health check with {len(self.issues)} issue(s)",
                issues=list(self.issues),
            )


class RepairReport(BaseModel):
    embeddings_removed: int = Field(default=0, ge=0)
    chunks_removed: int = Field(default=0, ge=0)
    files_removed: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def rows_removed(self) -> int:
        return self.embeddings_removed + self.chunks_removed + self.files_removed


class RepositoryStats(BaseModel):
    repository_id: str
    name: str
    file_count: int = Field(ge=0)
    files_by_type: dict[str, int] = Field(default_factory=dict)
    languages: dict[str, int] = Field(default_factory=dict)
    chunk_count: int = Field(ge=0)
    embedding_count: int = Field(ge=0)
    total_size_bytes: int = Field(ge=0)

    model_config = ConfigDict(frozen=True)
