"""
Restore engine for backup archives.

Extracts a backup archive over the target tree with the dependent
process stopped. Entries that cannot be extracted are logged and
skipped; the rest of the archive is still restored.
"""

from __future__ import annotations

import logging
import time
import zipfile
from pathlib import Path
from typing import Optional

from ipcas_updater.core.errors import ArchiveError
from ipcas_updater.core.models import (
    BackupArchive,
    OperationResult,
    ProgressCallback,
    ProgressEvent,
)
from ipcas_updater.core.report import format_duration
from ipcas_updater.core.sync.process import (
    ProcessController,
    launch_best_effort,
    stop_best_effort,
)


class RestoreEngine:
    """Writes every file of a backup archive back into the target tree."""

    def __init__(self, process: Optional[ProcessController] = None):
        self.process = process

    def restore(
        self,
        archive: BackupArchive | Path | str,
        target_root: Path | str,
        progress_callback: Optional[ProgressCallback] = None
    ) -> OperationResult:
        """
        Extract archive over target_root.

        Args:
            archive: Backup to restore (archive info or path)
            target_root: Tree to overwrite
            progress_callback: Receives log and progress events

        Returns:
            OperationResult with per-entry counts

        Raises:
            ArchiveError: If the archive cannot be opened
        """
        start_time = time.time()
        archive_path = archive.path if isinstance(archive, BackupArchive) else Path(archive)
        target_root = Path(target_root)

        def emit(event: ProgressEvent) -> None:
            if progress_callback:
                progress_callback(event)

        result = OperationResult(operation="restore")
        emit(ProgressEvent.log(f"Restoring from: {archive_path.name}"))

        result.process_stopped = stop_best_effort(self.process, emit)

        try:
            zf = zipfile.ZipFile(archive_path, 'r')
        except (OSError, zipfile.BadZipFile) as e:
            logging.error(f"RestoreEngine - Cannot open backup {archive_path}: {e}")
            emit(ProgressEvent.log(f"Cannot open backup: {e}", logging.ERROR))
            result.process_relaunched = launch_best_effort(self.process, emit)
            raise ArchiveError(f"Cannot open backup {archive_path.name}: {e}") from e

        try:
            with zf:
                members = [info for info in zf.infolist() if not info.is_dir()]
                result.total = len(members)
                emit(ProgressEvent.progress(0.0, "Restoring..."))

                for i, info in enumerate(members, start=1):
                    try:
                        self._extract(zf, info, target_root)
                        result.succeeded += 1
                        emit(ProgressEvent.log(f"Restored: {info.filename}"))
                    except Exception as e:
                        # Unsupported method, encrypted or truncated entries included
                        result.failed += 1
                        result.errors.append((info.filename, str(e) or type(e).__name__))
                        logging.warning(f"RestoreEngine - Failed to restore {info.filename}: {e!r}")
                        emit(ProgressEvent.log(f"Failed: {info.filename} ({e})", logging.WARNING))

                    emit(ProgressEvent.progress(i / result.total, info.filename))
        finally:
            result.process_relaunched = launch_best_effort(self.process, emit)

        result.duration = time.time() - start_time
        logging.info(
            f"RestoreEngine - Restored {result.succeeded}/{result.total} files "
            f"({result.failed} failed) from {archive_path.name} in {result.duration:.2f}s"
        )
        emit(ProgressEvent.log(
            f"Restore complete: {result.succeeded}/{result.total} files "
            f"in {format_duration(result.duration)}"
        ))
        return result

    def _extract(self, zf: zipfile.ZipFile, info: zipfile.ZipInfo, target_root: Path) -> None:
        dest = self._destination(info.filename, target_root)
        dest.parent.mkdir(parents=True, exist_ok=True)

        # A corrupt entry fails here, before the destination is truncated
        data = zf.read(info)
        with open(dest, 'wb') as f:
            f.write(data)

    @staticmethod
    def _destination(name: str, target_root: Path) -> Path:
        """Map an entry name into target_root, rejecting escapes and absolute names."""
        if name.startswith(("/", "\\")):
            raise ValueError(f"Unsafe entry name: {name}")
        parts = [part for part in name.replace('\\', '/').split('/') if part not in ('', '.')]
        if not parts or '..' in parts or ':' in parts[0]:
            raise ValueError(f"Unsafe entry name: {name}")
        return target_root.joinpath(*parts)
