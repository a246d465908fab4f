"""codeindex - Index source repositories for semantic retrieval."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("codeindex")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
