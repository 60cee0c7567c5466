"""
Workers for creating and restoring backups.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from PyQt6.QtCore import QObject

from ipcas_updater.workers.base_worker import NonCancellableWorker
from ipcas_updater.core.models import BackupArchive, BackupResult, OperationResult
from ipcas_updater.core.sync.archiver import BackupArchiver
from ipcas_updater.core.sync.restore import RestoreEngine


class BackupWorker(NonCancellableWorker):
    """Worker for snapshotting the target tree into a new archive."""

    operation_name = "backup"
    exclusive = True

    def __init__(
        self,
        archiver: BackupArchiver,
        target_root: str | Path,
        parent: Optional[QObject] = None
    ):
        super().__init__(parent=parent)
        self.archiver = archiver
        self.target_root = Path(target_root)

    def do_work(self) -> BackupResult:
        self.report_status(f"Backing up {self.target_root}...")
        return self.archiver.create_backup(self.target_root, self.report_event)


class RestoreWorker(NonCancellableWorker):
    """
    Worker for extracting a backup over the target tree.

    Runs to completion once started.
    """

    operation_name = "restore"
    exclusive = True

    def __init__(
        self,
        archive: BackupArchive | str | Path,
        target_root: str | Path,
        engine: Optional[RestoreEngine] = None,
        parent: Optional[QObject] = None
    ):
        super().__init__(parent=parent)
        self.archive = archive
        self.target_root = Path(target_root)
        self.engine = engine or RestoreEngine()

    def do_work(self) -> OperationResult:
        self.report_status(f"Restoring {self.target_root}...")
        return self.engine.restore(self.archive, self.target_root, self.report_event)
