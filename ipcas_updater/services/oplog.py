"""
Operator-facing operation log.

Keeps the most recent lines of an operation as ``HH:MM:SS - message``
and tracks the latest status text and progress fraction.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Callable, Optional

from ipcas_updater.core.models import ProgressEvent, ProgressKind


DEFAULT_LOG_LIMIT = 100


class OperationLog:
    """
    Bounded log of progress events.

    Instances are callable, so they can be passed directly as a
    progress callback.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LOG_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
        on_line: Optional[Callable[[str], None]] = None
    ):
        self._lines: deque[str] = deque(maxlen=limit)
        self._clock = clock or datetime.now
        self._on_line = on_line
        self._lock = threading.Lock()
        self.status = ""
        self.fraction: Optional[float] = None
        self.eta_seconds: Optional[float] = None

    def __call__(self, event: ProgressEvent) -> None:
        self.handle(event)

    def handle(self, event: ProgressEvent) -> None:
        if event.kind == ProgressKind.LOG:
            self.add(event.message)
        elif event.kind == ProgressKind.STATUS:
            self.status = event.message
        elif event.kind == ProgressKind.PROGRESS:
            self.fraction = event.fraction
            self.eta_seconds = event.eta_seconds

    def add(self, message: str) -> str:
        line = f"{self._clock():%H:%M:%S} - {message}"
        with self._lock:
            self._lines.append(line)
        if self._on_line:
            self._on_line(line)
        return line

    @property
    def lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def text(self) -> str:
        return "\n".join(self.lines)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
        self.status = ""
        self.fraction = None
        self.eta_seconds = None
