from codeindex.models.chunk import Chunk
from codeindex.models.embedding import Embedding
from codeindex.models.enums import FileStatus, FileType, IngestionEventType
from codeindex.models.file import FileDescriptor, SourceFile
from codeindex.models.hit import QueryResult
from codeindex.models.report import HealthDetails, HealthReport, RepairReport, RepositoryStats
from codeindex.models.repository import Repository

__all__ = [
    "Chunk",
    "Embedding",
    "FileDescriptor",
    "FileStatus",
    "FileType",
    "HealthDetails",
    "HealthReport",
    "IngestionEventType",
    "QueryResult",
    "RepairReport",
    "Repository",
    "RepositoryStats",
    "SourceFile",
]
