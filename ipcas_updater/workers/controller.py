"""
Dispatch of workers with per-target busy tracking.

Update, backup and restore need their target tree to themselves.
Starting one while anything else runs against the same tree is
rejected, not queued. Checks may overlap with each other.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from PyQt6.QtCore import QObject, pyqtSignal, QMutex, QMutexLocker

from ipcas_updater.core.errors import OperationBusyError
from ipcas_updater.workers.base_worker import BaseWorker, WorkerThread


class OperationController(QObject):
    """
    Starts workers on their own threads and tracks what runs where.

    Usage:
        controller = OperationController()
        thread = controller.start(CheckWorker(source, target))
        thread.worker.signals.finished.connect(on_done)
    """

    # Signal when an operation is accepted
    operation_started = pyqtSignal(str, str)  # (operation, target_root)

    # Signal when an operation releases its target
    operation_ended = pyqtSignal(str, str)  # (operation, target_root)

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._mutex = QMutex()
        self._running: dict[str, list[BaseWorker]] = {}
        self._threads: list[WorkerThread] = []

    @staticmethod
    def _key(target_root: Optional[Path | str]) -> str:
        if target_root is None:
            return ""
        return os.path.normcase(os.path.abspath(str(target_root)))

    def _active(self, key: str) -> list[BaseWorker]:
        """Workers still running on key. Caller holds the mutex."""
        workers = [w for w in self._running.get(key, []) if not w.is_done]
        if workers:
            self._running[key] = workers
        else:
            self._running.pop(key, None)
        return workers

    def is_busy(self, target_root: Path | str) -> bool:
        """Whether an update, backup or restore is running on target_root."""
        with QMutexLocker(self._mutex):
            return any(w.exclusive for w in self._active(self._key(target_root)))

    def running_operations(self, target_root: Path | str) -> list[str]:
        with QMutexLocker(self._mutex):
            return [w.operation_name for w in self._active(self._key(target_root))]

    def acquire(self, worker: BaseWorker) -> None:
        """
        Register worker against its target tree.

        Raises:
            OperationBusyError: If the target is not available to worker
        """
        key = self._key(worker.target_root)

        with QMutexLocker(self._mutex):
            active = self._active(key)
            if worker.exclusive:
                blocking = active
            else:
                blocking = [w for w in active if w.exclusive]

            if blocking:
                running = blocking[0].operation_name
                logging.warning(
                    f"OperationController - Rejected {worker.operation_name}, "
                    f"{running} in progress for {worker.target_root}"
                )
                raise OperationBusyError(str(worker.target_root), running)

            self._running.setdefault(key, []).append(worker)

        worker.signals.finished.connect(lambda _result: self._release(worker))
        worker.signals.error.connect(lambda _type, _msg: self._release(worker))
        worker.signals.cancelled.connect(lambda: self._release(worker))

        self.operation_started.emit(worker.operation_name, str(worker.target_root))

    def start(self, worker: BaseWorker) -> WorkerThread:
        """
        Acquire the target and run worker on a new thread.

        Raises:
            OperationBusyError: If the target is not available to worker
        """
        self.acquire(worker)

        thread = WorkerThread(worker)
        thread.finished.connect(lambda: self._forget(thread))
        with QMutexLocker(self._mutex):
            self._threads.append(thread)

        logging.info(f"OperationController - Starting {worker.operation_name} on {worker.target_root}")
        thread.start()
        return thread

    def cancel_all(self) -> None:
        """Request cancellation of every running operation."""
        with QMutexLocker(self._mutex):
            workers = [w for key in list(self._running) for w in self._active(key)]
        for worker in workers:
            worker.cancel()

    def wait_all(self, timeout_ms: int = -1) -> bool:
        """
        Wait for every started thread to finish.

        Args:
            timeout_ms: Timeout per thread in milliseconds (-1 for infinite)

        Returns:
            True if all threads finished, False on timeout
        """
        with QMutexLocker(self._mutex):
            threads = list(self._threads)

        done = True
        for thread in threads:
            if timeout_ms < 0:
                done = thread.wait() and done
            else:
                done = thread.wait(timeout_ms) and done
        return done

    def _release(self, worker: BaseWorker) -> None:
        key = self._key(worker.target_root)
        with QMutexLocker(self._mutex):
            workers = self._running.get(key, [])
            if worker not in workers:
                return
            workers.remove(worker)
            if not workers:
                self._running.pop(key, None)

        self.operation_ended.emit(worker.operation_name, str(worker.target_root))

    def _forget(self, thread: WorkerThread) -> None:
        with QMutexLocker(self._mutex):
            if thread in self._threads:
                self._threads.remove(thread)
