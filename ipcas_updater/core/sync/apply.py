"""
Apply engine for update change sets.

Copies every changed file from the source tree into the target tree:
- Optional backup of the target tree first
- Dependent process stopped before and relaunched after
- Per-file failures logged and counted, never fatal to the batch
- Progress with estimated time remaining

The batch is not transactional. A crash mid-batch can leave the target
partially updated; the optional backup is the recovery path.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional, Sequence

from ipcas_updater.core.errors import ArchiveError
from ipcas_updater.core.models import (
    BackupDecision,
    BackupResult,
    ChangeEntry,
    OperationResult,
    ProgressCallback,
    ProgressEvent,
    ProgressKind,
)
from ipcas_updater.core.report import format_duration
from ipcas_updater.core.sync.archiver import BackupArchiver
from ipcas_updater.core.sync.process import (
    ProcessController,
    launch_best_effort,
    stop_best_effort,
)


class ApplyEngine:
    """
    Applies a change set produced by the content differ.

    Entries are written in the order given. The engine does not observe
    cancellation once it has started writing.
    """

    def __init__(
        self,
        process: Optional[ProcessController] = None,
        archiver: Optional[BackupArchiver] = None,
        buffer_size: int = 65536
    ):
        self.process = process
        self.archiver = archiver
        self.buffer_size = buffer_size

    def apply(
        self,
        change_set: Sequence[ChangeEntry],
        source_root: Path | str,
        target_root: Path | str,
        backup_decision: BackupDecision = BackupDecision.WITHOUT_BACKUP,
        progress_callback: Optional[ProgressCallback] = None
    ) -> OperationResult:
        """
        Copy every entry of the change set from source to target.

        Args:
            change_set: Ordered entries from ContentDiffer
            source_root: Tree to copy from
            target_root: Tree to overwrite
            backup_decision: Whether to snapshot target_root first
            progress_callback: Receives log, status and progress events

        Returns:
            OperationResult with success and failure counts
        """
        start_time = time.time()
        source_root = Path(source_root)
        target_root = Path(target_root)

        def emit(event: ProgressEvent) -> None:
            if progress_callback:
                progress_callback(event)

        result = OperationResult(operation="update", total=len(change_set))

        if not change_set:
            logging.info("ApplyEngine - Empty change set, nothing to apply")
            return result

        # 1. Backup
        if backup_decision == BackupDecision.WITH_BACKUP:
            result.backup = self._backup(target_root, emit)

        # 2. Stop the dependent process
        result.process_stopped = stop_best_effort(self.process, emit)

        # 3-4. Copy entries
        emit(ProgressEvent.progress(0.0, "Updating..."))
        copy_start = time.time()
        total = len(change_set)

        for i, entry in enumerate(change_set, start=1):
            source_file = entry.source_file(source_root)
            target_file = entry.target_file(target_root)

            try:
                self._copy_file(source_file, target_file)
                result.succeeded += 1
                emit(ProgressEvent.log(f"Updated: {entry.relative_path}"))
            except OSError as e:
                result.failed += 1
                result.errors.append((entry.relative_path, str(e)))
                logging.warning(f"ApplyEngine - Failed to update {entry.relative_path}: {e}")
                emit(ProgressEvent.log(f"Failed: {entry.relative_path} ({e})", logging.WARNING))

            fraction = i / total
            elapsed = time.time() - copy_start
            remaining = elapsed / fraction * (1 - fraction)
            emit(ProgressEvent.progress(fraction, entry.relative_path, eta_seconds=remaining))
            emit(ProgressEvent.status(
                f"Updating... {i}/{total} (~{format_duration(remaining)} remaining)"
            ))

        # 5. Relaunch
        result.process_relaunched = launch_best_effort(self.process, emit)

        result.duration = time.time() - start_time
        logging.info(
            f"ApplyEngine - Updated {result.succeeded}/{result.total} files "
            f"({result.failed} failed) in {result.duration:.2f}s"
        )
        emit(ProgressEvent.log(
            f"Finished updating {result.succeeded}/{result.total} files "
            f"in {format_duration(result.duration)}"
        ))
        return result

    def _backup(self, target_root: Path, emit) -> Optional[BackupResult]:
        """Run the archiver; a failure never aborts the update."""
        if self.archiver is None:
            logging.warning("ApplyEngine - Backup requested but no archiver configured")
            emit(ProgressEvent.log("Backup skipped: no backup directory configured", logging.WARNING))
            return None

        emit(ProgressEvent.status("Creating backup..."))

        def forward(event: ProgressEvent) -> None:
            # Keep the update's own progress fraction monotonic
            if event.kind != ProgressKind.PROGRESS:
                emit(event)

        try:
            return self.archiver.create_backup(target_root, forward)
        except (ArchiveError, OSError) as e:
            logging.error(f"ApplyEngine - Backup failed, continuing with update: {e}")
            emit(ProgressEvent.log(f"Backup failed: {e}", logging.ERROR))
            return None

    def _copy_file(self, source: Path, dest: Path) -> int:
        """
        Copy a file from source to destination, overwriting.

        Returns bytes copied.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)

        bytes_copied = 0

        with open(source, 'rb') as src:
            with open(dest, 'wb') as dst:
                while chunk := src.read(self.buffer_size):
                    dst.write(chunk)
                    bytes_copied += len(chunk)

        return bytes_copied
