"""
Workers for update checks and update runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from PyQt6.QtCore import QObject, pyqtSignal

from ipcas_updater.workers.base_worker import CancellableWorker, NonCancellableWorker
from ipcas_updater.core.models import (
    BackupDecision,
    ChangeEntry,
    DiffResult,
    OperationResult,
)
from ipcas_updater.core.sync.apply import ApplyEngine
from ipcas_updater.core.sync.differ import ContentDiffer, DiffOptions


class CheckWorker(CancellableWorker):
    """
    Worker for computing the change set between source and target.

    Cancelling stops the walk at the next file and discards the
    partial result.
    """

    operation_name = "check"

    def __init__(
        self,
        source_root: str | Path,
        target_root: str | Path,
        options: Optional[DiffOptions] = None,
        differ: Optional[ContentDiffer] = None,
        parent: Optional[QObject] = None
    ):
        super().__init__(parent=parent)
        self.source_root = Path(source_root)
        self.target_root = Path(target_root)
        self.differ = differ or ContentDiffer(options)

    def do_work(self) -> DiffResult:
        """Walk both trees and classify differences."""
        self.report_status(f"Checking {self.source_root}...")

        return self.differ.diff(
            self.source_root,
            self.target_root,
            token=self.token,
            progress_callback=self.report_event
        )


class UpdateWorker(NonCancellableWorker):
    """
    Worker for applying a change set.

    Once started it runs to completion; per-file failures are
    reported through `file_failed` and in the result.
    """

    operation_name = "update"
    exclusive = True

    # Emitted for each entry that could not be written
    file_failed = pyqtSignal(str, str)  # (relative_path, error)

    def __init__(
        self,
        changes: DiffResult | Sequence[ChangeEntry],
        source_root: str | Path,
        target_root: str | Path,
        backup_decision: BackupDecision = BackupDecision.WITHOUT_BACKUP,
        engine: Optional[ApplyEngine] = None,
        parent: Optional[QObject] = None
    ):
        super().__init__(parent=parent)
        if isinstance(changes, DiffResult):
            changes = changes.entries
        self.change_set = list(changes)
        self.source_root = Path(source_root)
        self.target_root = Path(target_root)
        self.backup_decision = backup_decision
        self.engine = engine or ApplyEngine()

    def do_work(self) -> OperationResult:
        """Back up if requested, then copy every entry."""
        self.report_status(f"Updating {len(self.change_set)} files...")

        result = self.engine.apply(
            self.change_set,
            self.source_root,
            self.target_root,
            backup_decision=self.backup_decision,
            progress_callback=self.report_event
        )

        for path, error in result.errors:
            self.file_failed.emit(path, error)

        return result
