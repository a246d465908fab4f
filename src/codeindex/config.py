"""Index configuration.

Defaults live on ``IndexConfig``. An optional JSON file (``codeindex.json``
in the index directory) overrides them; factory keyword arguments override
both at the call site.
"""

from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from codeindex.errors import InvalidParamsError

CONFIG_FILE_NAME = "codeindex.json"
DEFAULT_INDEX_DIR = Path.home() / ".codeindex"
DB_FILE_NAME = "index.db"


class IndexConfig(BaseModel):
    """Tunable settings for chunking, embedding and ingestion."""

    max_chunk_lines: int = Field(default=100, ge=1)
    chunk_overlap_lines: int = Field(default=10, ge=0)
    max_workers: int = Field(default=4, ge=1)
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_dimension: int = Field(default=384, ge=1)
    embedding_batch_size: int = Field(default=20, ge=1)
    max_input_chars: int = Field(default=8192, ge=1)
    normalize_embeddings: bool = True
    load_attempts: int = Field(default=3, ge=1)
    load_retry_delay: float = Field(default=1.0, ge=0.0)
    operation_timeout: float | None = Field(default=120.0, gt=0.0)
    exclude_patterns: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _validate_overlap(self) -> "IndexConfig":
        if self.chunk_overlap_lines >= self.max_chunk_lines:
            raise ValueError("chunk_overlap_lines must be less than max_chunk_lines")
        return self


def load_config(path: Path | None = None) -> IndexConfig:
    """Load configuration from a JSON file, falling back to defaults.

    Args:
        path: Config file to read. Missing files yield the defaults.

    Returns:
        Validated IndexConfig.

    Raises:
        InvalidParamsError: If the file exists but is not a valid config.
    """
    logger = structlog.get_logger(__name__)

    if path is None or not path.is_file():
        return IndexConfig()

    try:
        config = IndexConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise InvalidParamsError(f"{path}: invalid configuration: {e}") from e

    logger.debug("config_loaded", path=str(path))
    return config
