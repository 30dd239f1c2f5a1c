"""Diagnostic capture for sidecar stdout/stderr."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from threading import Lock
from typing import TextIO

__all__ = ["LogChunk", "LogStream"]


@dataclass(slots=True)
class LogChunk:
    """A single line of sidecar output (or a supervisor diagnostic)."""

    stream: str
    text: str
    timestamp: datetime


class LogStream:
    """Fan sidecar output out to listeners and, optionally, a log file.

    Text is treated as opaque: it is written and forwarded exactly as the
    child produced it. The file is opened on the first write after
    construction or ``release`` and appended to, so one stream can outlive
    several sidecar processes without holding the file open between them.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path is not None else None
        self._handle: TextIO | None = None
        self._listeners: list[Callable[[LogChunk], None]] = []
        self._lock = Lock()
        self._closed = False

    def __enter__(self) -> LogStream:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def file_open(self) -> bool:
        return self._handle is not None

    def release(self) -> None:
        """Close the log file; the next write reopens it in append mode."""

        with self._lock:
            self._close_handle()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._close_handle()
            self._listeners.clear()

    def write(self, text: str, stream: str = "stdout") -> LogChunk:
        chunk = LogChunk(stream=stream, text=text, timestamp=datetime.now(UTC))
        with self._lock:
            if self._closed:
                return chunk
            if self.path is not None:
                if self._handle is None:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    self._handle = self.path.open("a", encoding="utf-8")
                self._handle.write(text)
                self._handle.flush()
            listeners = list(self._listeners)
        for listener in listeners:
            listener(chunk)
        return chunk

    def add_listener(self, callback: Callable[[LogChunk], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def _remove() -> None:
            with self._lock:
                try:
                    self._listeners.remove(callback)
                except ValueError:  # pragma: no cover - already removed
                    pass

        return _remove

    def replay(self) -> Iterable[LogChunk]:
        """Yield historical log chunks from disk (nothing when no file is attached)."""

        if self.path is None or not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                yield LogChunk(stream="file", text=line, timestamp=datetime.now(UTC))

    def _close_handle(self) -> None:
        if self._handle is not None:
            self._handle.flush()
            self._handle.close()
            self._handle = None
