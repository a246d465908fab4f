"""File classification: code, text or binary, plus language detection."""

import os
from pathlib import Path

import structlog

from codeindex.models.enums import FileType
from codeindex.models.file import FileDescriptor

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".scala": "scala",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".m": "objective-c",
    ".sh": "shell",
    ".bash": "shell",
    ".zsh": "shell",
    ".sql": "sql",
    ".lua": "lua",
    ".r": "r",
    ".pl": "perl",
    ".ex": "elixir",
    ".exs": "elixir",
    ".erl": "erlang",
    ".hs": "haskell",
    ".clj": "clojure",
    ".dart": "dart",
    ".vue": "vue",
    ".svelte": "svelte",
}

BINARY_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff",
        ".pdf", ".zip", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".tar",
        ".exe", ".dll", ".so", ".dylib", ".o", ".a", ".class", ".jar", ".pyc",
        ".woff", ".woff2", ".ttf", ".otf", ".eot",
        ".mp3", ".mp4", ".wav", ".ogg", ".mov", ".avi", ".webm",
        ".sqlite", ".db", ".bin", ".dat",
    }
)

SNIFF_BYTES = 8192


class FileClassifier:
    """Classifies files by extension and content sniffing.

    Extensions on the deny list are binary without reading the file. Other
    files are binary if the first ``SNIFF_BYTES`` contain a NUL byte or do
    not decode as UTF-8. Files with a known language extension are code,
    everything else that is not binary is text.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def classify(self, path: Path) -> FileDescriptor:
        """Classify a single file. Performs blocking I/O."""
        stat = os.stat(path, follow_symlinks=False)
        extension = path.suffix.lower()

        if extension in BINARY_EXTENSIONS or self._looks_binary(path):
            file_type = FileType.BINARY
            language = None
        elif extension in LANGUAGE_BY_EXTENSION:
            file_type = FileType.CODE
            language = LANGUAGE_BY_EXTENSION[extension]
        else:
            file_type = FileType.TEXT
            language = None

        return FileDescriptor(
            path=path,
            file_type=file_type,
            language=language,
            size_bytes=stat.st_size,
            modified_at=stat.st_mtime_ns,
        )

    def _looks_binary(self, path: Path) -> bool:
        with path.open("rb") as handle:
            head = handle.read(SNIFF_BYTES)

        if b"\x00" in head:
            return True

        try:
            head.decode("utf-8")
        except UnicodeDecodeError as e:
            # A multi-byte character cut off at the sniff boundary is still text.
            if len(head) == SNIFF_BYTES and e.start >= len(head) - 3:
                return False
            return True
        return False
