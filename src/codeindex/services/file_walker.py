"""File walker service for discovering and classifying repository files."""

import asyncio
import fnmatch
import os
from collections.abc import AsyncIterator
from pathlib import Path

import structlog

from codeindex.models.file import FileDescriptor
from codeindex.services.classifier import FileClassifier

DEFAULT_IGNORED_DIRECTORIES: frozenset[str] = frozenset({".git", ".hg", ".svn", ".codeindex"})


class FileWalker:
    """Walks a repository and yields classified file descriptors.

    Symlinks and metadata directories are never followed. Entries are
    visited in sorted order so two walks of an unchanged tree agree.
    Uses asyncio.to_thread to avoid blocking the event loop during I/O.
    """

    def __init__(
        self,
        classifier: FileClassifier | None = None,
        exclude_patterns: list[str] | None = None,
        ignored_directories: frozenset[str] = DEFAULT_IGNORED_DIRECTORIES,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._classifier = classifier or FileClassifier(logger=logger)
        self._exclude_patterns = exclude_patterns or []
        self._ignored_directories = ignored_directories
        self._logger = logger or structlog.get_logger(__name__)

    async def walk(self, directory: Path) -> AsyncIterator[FileDescriptor]:
        """Walk directory and yield a descriptor per regular file.

        Args:
            directory: Repository root.

        Yields:
            FileDescriptor for each file, lazily, one directory at a time.

        Raises:
            FileNotFoundError: If directory does not exist.
            NotADirectoryError: If path is not a directory.
        """
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")
        if not directory.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {directory}")

        self._logger.info(
            "directory_walk_started",
            directory=str(directory),
            exclude_patterns=self._exclude_patterns,
        )

        file_count = 0
        pending = [directory]
        while pending:
            current = pending.pop()
            files, subdirectories = await asyncio.to_thread(self._scan, current, directory)
            # Reverse so the stack pops subdirectories in sorted order.
            pending.extend(reversed(subdirectories))
            for file_path in files:
                try:
                    descriptor = await asyncio.to_thread(self._classifier.classify, file_path)
                except OSError as e:
                    self._logger.warning("file_classify_error", file_path=str(file_path), error=str(e))
                    continue
                file_count += 1
                yield descriptor

        self._logger.info(
            "directory_walk_completed",
            directory=str(directory),
            file_count=file_count,
        )

    def _scan(self, directory: Path, root: Path) -> tuple[list[Path], list[Path]]:
        """List one directory, returning (files, subdirectories) sorted by name."""
        files: list[Path] = []
        subdirectories: list[Path] = []
        try:
            entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except OSError as e:
            self._logger.warning("directory_scan_error", directory=str(directory), error=str(e))
            return files, subdirectories

        for entry in entries:
            if entry.is_symlink():
                continue
            path = Path(entry.path)
            if entry.is_dir(follow_symlinks=False):
                if entry.name not in self._ignored_directories and not self._is_excluded(path, root):
                    subdirectories.append(path)
            elif entry.is_file(follow_symlinks=False) and not self._is_excluded(path, root):
                files.append(path)
        return files, subdirectories

    def _is_excluded(self, path: Path, root: Path) -> bool:
        """Check if a path matches any exclude pattern."""
        if not self._exclude_patterns:
            return False

        relative_path = path.relative_to(root)
        for pattern in self._exclude_patterns:
            if relative_path.match(pattern) or fnmatch.fnmatch(relative_path.as_posix(), pattern):
                return True
        return False
