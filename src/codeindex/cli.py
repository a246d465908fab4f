"""Code indexing CLI.

Provides commands to index repositories into a local semantic index, query
it, inspect indexed repositories and check or repair index integrity.
"""

import asyncio
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, Optional, TypeVar

import structlog
import typer

from codeindex.config import CONFIG_FILE_NAME, DEFAULT_INDEX_DIR, load_config
from codeindex.errors import CodeIndexError
from codeindex.models.hit import QueryResult
from codeindex.models.report import HealthReport, RepairReport
from codeindex.models.repository import Repository
from codeindex.services.factory import create_code_index, parse_file_pattern
from codeindex.services.index import IngestionResult
from codeindex.services.ingestion_log import BufferedIngestionLog

T = TypeVar("T")

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=lambda name: structlog.PrintLogger(file=sys.stderr),
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="codeindex",
    help="""Index source repositories and search them by meaning.

Examples:

  # Index a repository
  uv run codeindex index ./my-project --name my-project

  # Search it
  uv run codeindex search "where are retries configured" --repo my-project

  # Check and repair the index
  uv run codeindex health
  uv run codeindex repair""",
    rich_markup_mode="markdown",
)

INDEX_DIR_OPTION = typer.Option(
    None,
    "--index-dir",
    "-i",
    envvar="CODEINDEX_DIR",
    help=f"Directory holding the index (default: {DEFAULT_INDEX_DIR})",
)


def _index_dir(index_dir: Optional[str]) -> Path:
    return Path(index_dir) if index_dir else DEFAULT_INDEX_DIR


def _run(operation: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(operation)
    except CodeIndexError as e:
        logger.error("command_failed", kind=e.kind.value, error=e.message)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


@app.command()
def index(
    path: str = typer.Argument(
        ...,
        help="Repository directory to index",
    ),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        "-n",
        help="Repository name (default: directory name)",
    ),
    exclude: Optional[str] = typer.Option(
        None,
        "--exclude",
        "-e",
        help='Patterns to exclude from indexing, e.g. "*.{lock,min.js}"',
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Re-index files even if they are unchanged",
    ),
    index_dir: Optional[str] = INDEX_DIR_OPTION,
) -> None:
    """Index a repository directory."""
    target_dir = Path(path)

    if not target_dir.is_dir():
        logger.error("directory_not_found", directory=str(target_dir))
        raise typer.Exit(1)

    async def run_ingestion() -> IngestionResult:
        directory = _index_dir(index_dir)
        config = load_config(directory / CONFIG_FILE_NAME)
        if exclude:
            patterns = [*config.exclude_patterns, *parse_file_pattern(exclude)]
            config = config.model_copy(update={"exclude_patterns": patterns})
        async with create_code_index(directory, config=config) as code_index:
            return await code_index.ingest(target_dir, name=name, listener=BufferedIngestionLog(), force=force)

    result = _run(run_ingestion())

    for error in result.errors:
        logger.warning("indexing_error", file_path=error.path, error=error.error)

    typer.echo(
        f"Indexed {result.files_processed} files ({result.chunks_created} chunks, "
        f"{result.files_skipped} skipped, {result.files_removed} removed)"
    )
    if result.errors:
        typer.echo(f"Encountered {len(result.errors)} errors")


@app.command()
def search(
    query: str = typer.Argument(
        ...,
        help="Search query",
    ),
    repo: str = typer.Option(
        ...,
        "--repo",
        "-r",
        help="Repository name, path or id",
    ),
    limit: int = typer.Option(
        5,
        "--limit",
        "-l",
        help="Maximum number of results to return",
    ),
    file_type: Optional[str] = typer.Option(
        None,
        "--type",
        "-t",
        help="Only search files of this type (code, text or binary)",
    ),
    index_dir: Optional[str] = INDEX_DIR_OPTION,
) -> None:
    """Search an indexed repository by meaning."""

    async def run_query() -> list[QueryResult]:
        async with create_code_index(_index_dir(index_dir)) as code_index:
            return await code_index.query(query, repo, limit, file_type=file_type)

    results = _run(run_query())

    if not results:
        typer.echo("No matches.")
        return

    for result in results:
        typer.echo(f"{result.score:.3f}  {result.file_path}:{result.line_start}-{result.line_end}")


@app.command()
def repos(index_dir: Optional[str] = INDEX_DIR_OPTION) -> None:
    """List indexed repositories."""

    async def run_list() -> list[Repository]:
        async with create_code_index(_index_dir(index_dir)) as code_index:
            return await code_index.registry.list()

    repositories = _run(run_list())

    if not repositories:
        typer.echo("No repositories indexed.")
        return

    for repository in repositories:
        ingested = repository.ingested_at.isoformat() if repository.ingested_at else "never"
        typer.echo(f"{repository.name}  {repository.path}  (ingested: {ingested})")


@app.command()
def remove(
    repo: str = typer.Argument(..., help="Repository name, path or id"),
    index_dir: Optional[str] = INDEX_DIR_OPTION,
) -> None:
    """Remove a repository and everything indexed for it."""

    async def run_remove() -> Repository:
        async with create_code_index(_index_dir(index_dir)) as code_index:
            repository = await code_index.registry.require(repo)
            await code_index.registry.delete(repository.repository_id)
            return repository

    repository = _run(run_remove())
    typer.echo(f"Removed {repository.name}")


@app.command()
def health(index_dir: Optional[str] = INDEX_DIR_OPTION) -> None:
    """Check index integrity."""

    async def run_check() -> HealthReport:
        async with create_code_index(_index_dir(index_dir)) as code_index:
            return await code_index.check()

    report = _run(run_check())
    details = report.details

    typer.echo(
        f"{details.repository_count} repositories, {details.file_count} files, "
        f"{details.chunk_count} chunks, {details.embedding_count} embeddings"
    )
    if report.healthy:
        typer.echo("Index is healthy.")
        return

    for issue in report.issues:
        typer.echo(f"- {issue}")
    raise typer.Exit(1)


@app.command()
def repair(index_dir: Optional[str] = INDEX_DIR_OPTION) -> None:
    """Remove orphaned files, chunks and embeddings."""

    async def run_repair() -> RepairReport:
        async with create_code_index(_index_dir(index_dir)) as code_index:
            return await code_index.repair()

    report = _run(run_repair())
    typer.echo(
        f"Removed {report.embeddings_removed} embeddings, {report.chunks_removed} chunks, "
        f"{report.files_removed} files"
    )


@app.command()
def validate(
    repo: str = typer.Argument(..., help="Repository name, path or id"),
    index_dir: Optional[str] = INDEX_DIR_OPTION,
) -> None:
    """Validate one repository's files, chunks and embeddings."""

    async def run_validate() -> list[str]:
        async with create_code_index(_index_dir(index_dir)) as code_index:
            return await code_index.validate_repository(repo)

    issues = _run(run_validate())

    if not issues:
        typer.echo(f"{repo} is valid.")
        return

    for issue in issues:
        typer.echo(f"- {issue}")
    raise typer.Exit(1)


@app.command()
def read(
    repo: str = typer.Argument(..., help="Repository name, path or id"),
    path: str = typer.Argument(..., help="File path relative to the repository root"),
    index_dir: Optional[str] = INDEX_DIR_OPTION,
) -> None:
    """Print a file as it was indexed."""

    async def run_read() -> str:
        async with create_code_index(_index_dir(index_dir)) as code_index:
            return await code_index.browser.read_file(repo, path)

    typer.echo(_run(run_read()), nl=False)


@app.command()
def tree(
    repo: str = typer.Argument(..., help="Repository name, path or id"),
    depth: Optional[int] = typer.Option(
        None,
        "--depth",
        "-d",
        help="Maximum depth to show",
    ),
    index_dir: Optional[str] = INDEX_DIR_OPTION,
) -> None:
    """Show the indexed file tree of a repository."""

    async def run_tree() -> list[str]:
        async with create_code_index(_index_dir(index_dir)) as code_index:
            file_tree = await code_index.browser.tree(repo)
            return file_tree.render(max_depth=depth)

    for line in _run(run_tree()):
        typer.echo(line)


@app.command()
def version() -> None:
    """Show version information."""
    from codeindex import __version__

    typer.echo(f"codeindex {__version__}")
