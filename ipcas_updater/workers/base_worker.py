"""
Worker plumbing shared by every updater operation.

A worker wraps one engine call, runs it on a QThread and reports back
through Qt signals. Engines emit ProgressEvent objects; the worker
re-emits them raw and also as plain progress/status signals.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum, auto
from pathlib import Path
from typing import Any, Optional

from PyQt6.QtCore import QObject, QThread, pyqtSignal, pyqtSlot, QMutex, QMutexLocker

from ipcas_updater.core.errors import OperationCancelled
from ipcas_updater.core.models import CancellationToken, ProgressEvent, ProgressKind


# Resolution of the integer progress signal
PROGRESS_SCALE = 1000


class WorkerState(Enum):
    """Lifecycle of a worker."""
    PENDING = auto()
    RUNNING = auto()
    CANCELLING = auto()
    CANCELLED = auto()
    COMPLETED = auto()
    FAILED = auto()


class WorkerSignals(QObject):
    """Signals a worker emits from its own thread."""

    # (current, total, message), total is PROGRESS_SCALE
    progress = pyqtSignal(int, int, str)

    # Short status line
    status = pyqtSignal(str)

    # ProgressEvent as emitted by the engine
    event = pyqtSignal(object)

    started = pyqtSignal()

    # Engine result
    finished = pyqtSignal(object)

    # (exception type name, message)
    error = pyqtSignal(str, str)

    cancelled = pyqtSignal()

    # WorkerState
    state_changed = pyqtSignal(object)


class WorkerMeta(type(QObject), type(ABC)):
    pass


class BaseWorker(QObject, ABC, metaclass=WorkerMeta):
    """
    One operation to be run on a WorkerThread.

    Subclasses set `operation_name`, `exclusive` and `target_root` and
    implement `do_work`. Exceptions from `do_work` end up on the
    `error` signal; OperationCancelled ends up on `cancelled`.
    """

    # Name used in logs and busy errors
    operation_name = "operation"

    # Whether the worker needs its target tree to itself
    exclusive = False

    # Tree the worker operates on, if any
    target_root: Optional[Path] = None

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.signals = WorkerSignals()
        self._state = WorkerState.PENDING
        self._cancelled = False
        self._mutex = QMutex()
        self._result: Any = None
        self._error: Optional[tuple[str, str]] = None

    @property
    def state(self) -> WorkerState:
        with QMutexLocker(self._mutex):
            return self._state

    @state.setter
    def state(self, value: WorkerState) -> None:
        with QMutexLocker(self._mutex):
            self._state = value
        self.signals.state_changed.emit(value)

    @property
    def is_cancelled(self) -> bool:
        with QMutexLocker(self._mutex):
            return self._cancelled

    @property
    def is_done(self) -> bool:
        return self.state in (WorkerState.COMPLETED, WorkerState.FAILED, WorkerState.CANCELLED)

    @property
    def result(self) -> Any:
        """Engine result, set once the worker completed."""
        return self._result

    @property
    def error(self) -> Optional[tuple[str, str]]:
        """(type name, message), set once the worker failed."""
        return self._error

    def cancel(self) -> None:
        with QMutexLocker(self._mutex):
            self._cancelled = True
            if self._state == WorkerState.RUNNING:
                self._state = WorkerState.CANCELLING
        self.signals.state_changed.emit(WorkerState.CANCELLING)

    @pyqtSlot()
    def run(self) -> None:
        """Entry point on the worker thread. Override `do_work`, not this."""
        self.state = WorkerState.RUNNING
        self.signals.started.emit()

        try:
            result = self.do_work()
        except OperationCancelled:
            self.state = WorkerState.CANCELLED
            self.signals.cancelled.emit()
            return
        except Exception as e:
            logging.exception(f"{type(self).__name__} - {self.operation_name} failed")
            self._error = (type(e).__name__, str(e))
            self.state = WorkerState.FAILED
            self.signals.error.emit(type(e).__name__, str(e))
            return

        if self.is_cancelled:
            self.state = WorkerState.CANCELLED
            self.signals.cancelled.emit()
        else:
            self._result = result
            self.state = WorkerState.COMPLETED
            self.signals.finished.emit(result)

    @abstractmethod
    def do_work(self) -> Any:
        """
        Run the engine call.

        Returns:
            Whatever the engine returned; emitted on `finished`.
        """

    def report_progress(self, current: int, total: int, message: str = "") -> None:
        self.signals.progress.emit(current, total, message)

    def report_status(self, message: str) -> None:
        self.signals.status.emit(message)

    def report_event(self, event: ProgressEvent) -> None:
        """Forward an engine event and its plain-signal equivalent."""
        self.signals.event.emit(event)

        if event.kind == ProgressKind.PROGRESS and event.fraction is not None:
            self.report_progress(
                int(round(event.fraction * PROGRESS_SCALE)),
                PROGRESS_SCALE,
                event.message
            )
        elif event.kind == ProgressKind.STATUS:
            self.report_status(event.message)


class CancellableWorker(BaseWorker):
    """
    Worker whose engine polls a cancellation token.

    `cancel()` trips the token so the engine stops at the next file
    boundary.
    """

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.token = CancellationToken()

    def cancel(self) -> None:
        super().cancel()
        self.token.cancel()


class NonCancellableWorker(BaseWorker):
    """
    Worker that runs to completion once started.

    Cancellation requests are logged and otherwise ignored.
    """

    def cancel(self) -> None:
        logging.warning(
            f"{type(self).__name__} - Cancellation ignored, {self.operation_name} "
            f"runs to completion once started"
        )
        self.report_event(ProgressEvent.log(
            f"Stop requested; {self.operation_name} cannot be interrupted and will finish",
            logging.WARNING
        ))


class WorkerThread(QThread):
    """
    QThread owning a single worker.

    Usage:
        thread = WorkerThread(worker)
        thread.start()
        thread.wait()
    """

    def __init__(self, worker: BaseWorker, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.worker = worker
        self.worker.moveToThread(self)

        self.started.connect(self.worker.run)
        self.worker.signals.finished.connect(self.quit)
        self.worker.signals.error.connect(self.quit)
        self.worker.signals.cancelled.connect(self.quit)

    @property
    def result(self) -> Any:
        return self.worker.result

    @property
    def error(self) -> Optional[tuple[str, str]]:
        return self.worker.error
