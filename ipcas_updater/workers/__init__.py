"""
Background workers for non-blocking operations.

Provides QThread-based workers for:
- Update checks
- Update runs
- Backup creation and restore

All workers use Qt signals for thread-safe communication
with the caller's thread.
"""

from ipcas_updater.workers.base_worker import (
    BaseWorker,
    WorkerSignals,
    WorkerState,
    WorkerThread,
    CancellableWorker,
    NonCancellableWorker,
)
from ipcas_updater.workers.sync_worker import (
    CheckWorker,
    UpdateWorker,
)
from ipcas_updater.workers.backup_worker import (
    BackupWorker,
    RestoreWorker,
)
from ipcas_updater.workers.controller import (
    OperationController,
)

__all__ = [
    # Base
    'BaseWorker',
    'WorkerSignals',
    'WorkerState',
    'WorkerThread',
    'CancellableWorker',
    'NonCancellableWorker',
    # Update
    'CheckWorker',
    'UpdateWorker',
    # Backup
    'BackupWorker',
    'RestoreWorker',
    # Dispatch
    'OperationController',
]
