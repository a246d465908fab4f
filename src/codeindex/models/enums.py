from enum import StrEnum


class FileType(StrEnum):
    CODE = "code"
    TEXT = "text"
    BINARY = "binary"


class FileStatus(StrEnum):
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class IngestionEventType(StrEnum):
    SESSION_START = "session_start"
    START = "start"
    DONE = "done"
    SKIP = "skip"
    ERROR = "error"
    SESSION_END = "session_end"

