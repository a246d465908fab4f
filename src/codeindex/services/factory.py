"""Factory functions for creating and wiring the index services.

Provides a production factory that persists the index to a directory and a
test factory that uses an in-memory store for fast, isolated testing. Both
return a ``CodeIndex``, which owns every service, including the single
embedding model instance shared by ingestion and querying.
"""

from pathlib import Path
from types import TracebackType
from typing import Any

import structlog

from codeindex.config import CONFIG_FILE_NAME, DB_FILE_NAME, DEFAULT_INDEX_DIR, IndexConfig, load_config
from codeindex.models.enums import FileType
from codeindex.models.hit import QueryResult
from codeindex.models.report import HealthReport, RepairReport
from codeindex.models.repository import Repository
from codeindex.services.browse import RepositoryBrowser
from codeindex.services.chunker import Chunker
from codeindex.services.embeddings import EmbeddingService, ModelLoader
from codeindex.services.file_walker import FileWalker
from codeindex.services.health import HealthChecker
from codeindex.services.index import IngestionResult, IngestionService
from codeindex.services.index_store import IndexStore, create_async_engine_from_path
from codeindex.services.ingestion_log import IngestionListener
from codeindex.services.query import DEFAULT_LIMIT, QueryEngine
from codeindex.services.registry import RepositoryRegistry


class CodeIndex:
    """Owns the wired services of one index and their lifetimes.

    Use as an async context manager: entering creates the schema, leaving
    releases the model and disposes the database engine.
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        store: IndexStore,
        embeddings: EmbeddingService,
        ingestion: IngestionService,
        health: HealthChecker,
        query_engine: QueryEngine,
        browser: RepositoryBrowser,
    ) -> None:
        self.registry = registry
        self.store = store
        self.embeddings = embeddings
        self.ingestion = ingestion
        self.health = health
        self.query_engine = query_engine
        self.browser = browser

    async def __aenter__(self) -> "CodeIndex":
        await self.store.initialize_schema()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        self.embeddings.close()
        await self.store.close()

    async def resolve_repository(self, identifier: str) -> Repository | None:
        return await self.registry.resolve(identifier)

    async def ingest(
        self,
        path: str | Path,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        listener: IngestionListener | None = None,
        force: bool = False,
    ) -> IngestionResult:
        return await self.ingestion.ingest(path, name=name, metadata=metadata, listener=listener, force=force)

    async def query(
        self,
        text: str,
        repository: str,
        limit: int = DEFAULT_LIMIT,
        file_type: FileType | str | None = None,
    ) -> list[QueryResult]:
        return await self.query_engine.query(text, repository, limit, file_type=file_type)

    async def check(self) -> HealthReport:
        return await self.health.check()

    async def repair(self) -> RepairReport:
        return await self.health.repair()

    async def validate_repository(self, repository: str) -> list[str]:
        return await self.health.validate_repository(repository)


def create_code_index(
    index_dir: Path = DEFAULT_INDEX_DIR,
    config: IndexConfig | None = None,
    model_loader: ModelLoader | None = None,
) -> CodeIndex:
    """Create a CodeIndex persisted under ``index_dir``.

    Args:
        index_dir: Directory holding index.db and an optional codeindex.json.
        config: Settings. Defaults to codeindex.json in index_dir, if present.
        model_loader: Builds the embedding function. Defaults to ChromaDB's
            bundled all-MiniLM-L6-v2.

    Returns:
        CodeIndex ready to be entered with ``async with``.
    """
    index_dir = index_dir.expanduser()
    index_dir.mkdir(parents=True, exist_ok=True)
    effective_config = config or load_config(index_dir / CONFIG_FILE_NAME)

    return _wire(db_path=str(index_dir / DB_FILE_NAME), config=effective_config, model_loader=model_loader)


def create_test_code_index(
    model_loader: ModelLoader,
    config: IndexConfig | None = None,
    db_path: str = ":memory:",
) -> CodeIndex:
    """Create a CodeIndex for testing.

    Uses in-memory SQLite by default. An in-memory database is a single
    shared connection, so tests that exercise several workers should pass
    a file ``db_path``.

    Args:
        model_loader: Builds the embedding function, usually a fake.
        config: Settings. Defaults to IndexConfig() with one worker for
            in-memory databases.
        db_path: SQLite file path or ":memory:".
    """
    if config is None:
        config = IndexConfig(max_workers=1) if db_path == ":memory:" else IndexConfig()
    return _wire(db_path=db_path, config=config, model_loader=model_loader)


def _wire(db_path: str, config: IndexConfig, model_loader: ModelLoader | None) -> CodeIndex:
    logger = structlog.get_logger(__name__)
    logger.debug("code_index_wiring", db_path=db_path, max_workers=config.max_workers)

    engine = create_async_engine_from_path(db_path)
    store = IndexStore(engine=engine, logger=logger)
    registry = RepositoryRegistry(store=store, logger=logger)

    embeddings = EmbeddingService(
        model_loader=model_loader,
        model_version=config.embedding_model,
        dimension=config.embedding_dimension,
        batch_size=config.embedding_batch_size,
        max_input_chars=config.max_input_chars,
        normalize=config.normalize_embeddings,
        load_attempts=config.load_attempts,
        load_retry_delay=config.load_retry_delay,
        timeout=config.operation_timeout,
        logger=logger,
    )

    file_walker = FileWalker(exclude_patterns=config.exclude_patterns, logger=logger)

    chunker = Chunker(
        max_chunk_size=config.max_chunk_lines,
        overlap=config.chunk_overlap_lines,
        logger=logger,
    )

    ingestion = IngestionService(
        registry=registry,
        store=store,
        file_walker=file_walker,
        chunker=chunker,
        embeddings=embeddings,
        max_workers=config.max_workers,
        timeout=config.operation_timeout,
        logger=logger,
    )

    return CodeIndex(
        registry=registry,
        store=store,
        embeddings=embeddings,
        ingestion=ingestion,
        health=HealthChecker(
            store=store,
            registry=registry,
            embeddings=embeddings,
            timeout=config.operation_timeout,
            logger=logger,
        ),
        query_engine=QueryEngine(
            registry=registry,
            store=store,
            embeddings=embeddings,
            timeout=config.operation_timeout,
            logger=logger,
        ),
        browser=RepositoryBrowser(registry=registry, store=store, logger=logger),
    )


def parse_file_pattern(pattern: str) -> list[str]:
    """Parse brace-expansion patterns into individual glob patterns.

    Expands patterns like "*.{lock,min.js}" into ["*.lock", "*.min.js"].
    Patterns without braces are returned as single-element lists.
    """
    if "{" not in pattern or "}" not in pattern:
        return [pattern]

    brace_start = pattern.index("{")
    brace_end = pattern.index("}")

    prefix = pattern[:brace_start]
    suffix = pattern[brace_end + 1 :]
    alternatives = pattern[brace_start + 1 : brace_end].split(",")

    return [f"{prefix}{alt.strip()}{suffix}" for alt in alternatives]
