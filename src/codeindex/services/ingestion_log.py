"""Ingestion progress events and the listener interface that receives them.

The orchestrator only calls the listener at defined points; buffering and
formatting belong to the listener implementation.
"""

import time
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field

from codeindex.models.base import utcnow
from codeindex.models.enums import IngestionEventType
from codeindex.models.repository import Repository

if TYPE_CHECKING:
    from codeindex.services.index import IngestionResult


class IngestionEvent(BaseModel):
    event_type: IngestionEventType
    timestamp: datetime = Field(default_factory=utcnow)
    file_path: str | None = None
    chunk_count: int | None = None
    elapsed_seconds: float | None = None
    message: str | None = None

    model_config = ConfigDict(frozen=True)


class IngestionListener(Protocol):
    def on_session_start(self, repository: Repository, root: str) -> None: ...

    def on_file_start(self, file_path: str) -> None: ...

    def on_file_done(self, file_path: str, chunk_count: int, elapsed_seconds: float) -> None: ...

    def on_file_skip(self, file_path: str, reason: str) -> None: ...

    def on_file_error(self, file_path: str, error: str) -> None: ...

    def on_session_end(self, result: "IngestionResult") -> None: ...


class NullIngestionListener:
    """Listener that ignores every event."""

    def on_session_start(self, repository: Repository, root: str) -> None:
        pass

    def on_file_start(self, file_path: str) -> None:
        pass

    def on_file_done(self, file_path: str, chunk_count: int, elapsed_seconds: float) -> None:
        pass

    def on_file_skip(self, file_path: str, reason: str) -> None:
        pass

    def on_file_error(self, file_path: str, error: str) -> None:
        pass

    def on_session_end(self, result: "IngestionResult") -> None:
        pass


EventSink = Callable[[list[IngestionEvent]], None]


def structlog_sink(logger: structlog.stdlib.BoundLogger | None = None) -> EventSink:
    """Sink that writes each flushed event through structlog."""
    log = logger or structlog.get_logger("codeindex.ingestion")

    def write(events: list[IngestionEvent]) -> None:
        for event in events:
            log.info(
                f"ingestion_{event.event_type.value}",
                **event.model_dump(exclude={"event_type"}, exclude_none=True, mode="json"),
            )

    return write


class BufferedIngestionLog:
    """Buffers ingestion events and flushes them in batches.

    A flush happens when the buffer reaches ``max_buffer`` events, when more
    than ``flush_interval`` seconds passed since the last flush, at session
    end, or when ``flush()`` is called.
    """

    def __init__(
        self,
        sink: EventSink | None = None,
        max_buffer: int = 10,
        flush_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_buffer < 1:
            raise ValueError("max_buffer must be at least 1")
        self._sink = sink or structlog_sink()
        self._max_buffer = max_buffer
        self._flush_interval = flush_interval
        self._clock = clock
        self._buffer: list[IngestionEvent] = []
        self._last_flush = clock()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def on_session_start(self, repository: Repository, root: str) -> None:
        self._record(
            IngestionEvent(
                event_type=IngestionEventType.SESSION_START,
                message=f"repository={repository.name} root={root}",
            )
        )

    def on_file_start(self, file_path: str) -> None:
        self._record(IngestionEvent(event_type=IngestionEventType.START, file_path=file_path))

    def on_file_done(self, file_path: str, chunk_count: int, elapsed_seconds: float) -> None:
        self._record(
            IngestionEvent(
                event_type=IngestionEventType.DONE,
                file_path=file_path,
                chunk_count=chunk_count,
                elapsed_seconds=elapsed_seconds,
            )
        )

    def on_file_skip(self, file_path: str, reason: str) -> None:
        self._record(IngestionEvent(event_type=IngestionEventType.SKIP, file_path=file_path, message=reason))

    def on_file_error(self, file_path: str, error: str) -> None:
        self._record(IngestionEvent(event_type=IngestionEventType.ERROR, file_path=file_path, message=error))

    def on_session_end(self, result: "IngestionResult") -> None:
        self._buffer.append(
            IngestionEvent(
                event_type=IngestionEventType.SESSION_END,
                chunk_count=result.chunks_created,
                elapsed_seconds=result.duration_seconds,
                message=(
                    f"processed={result.files_processed} skipped={result.files_skipped} "
                    f"failed={result.files_failed} removed={result.files_removed}"
                ),
            )
        )
        self.flush()

    def flush(self) -> None:
        self._last_flush = self._clock()
        if not self._buffer:
            return
        events, self._buffer = self._buffer, []
        self._sink(events)

    def _record(self, event: IngestionEvent) -> None:
        self._buffer.append(event)
        if len(self._buffer) >= self._max_buffer or self._clock() - self._last_flush > self._flush_interval:
            self.flush()
