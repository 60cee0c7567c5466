"""
Backup archiver for the target tree.

Snapshots the whole installation tree into a timestamp-named zip and
keeps only the newest few archives. The backup is best-effort: a file
that cannot be read is left out, logged and reported, and the rest of
the archive is still written.
"""

from __future__ import annotations

import logging
import os
import re
import time
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ipcas_updater.core.errors import ArchiveError
from ipcas_updater.core.models import (
    BackupArchive,
    BackupResult,
    ProgressCallback,
    ProgressEvent,
)


BACKUP_PREFIX = "BK_"
BACKUP_EXTENSION = ".zip"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
DEFAULT_MAX_BACKUPS = 3


class BackupArchiver:
    """
    Creates, lists and prunes backup archives in one directory.

    Archive names look like ``BK_20240131_093015.zip``. A second backup
    within the same second gets a two-digit suffix
    (``BK_20240131_093015_01.zip``), which still sorts after the first.
    """

    def __init__(
        self,
        backup_dir: Path | str,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        prefix: str = BACKUP_PREFIX,
        clock: Optional[Callable[[], datetime]] = None
    ):
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")

        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups
        self.prefix = prefix
        self._clock = clock or datetime.now
        self._pattern = re.compile(
            rf"^{re.escape(prefix)}(\d{{8}}_\d{{6}})(?:_(\d{{2}}))?{re.escape(BACKUP_EXTENSION)}$"
        )

    # -------------------------------------------------------------------------
    # Naming
    # -------------------------------------------------------------------------

    def archive_name(self, created: datetime, sequence: int = 0) -> str:
        stamp = created.strftime(TIMESTAMP_FORMAT)
        if sequence:
            return f"{self.prefix}{stamp}_{sequence:02d}{BACKUP_EXTENSION}"
        return f"{self.prefix}{stamp}{BACKUP_EXTENSION}"

    def parse(self, path: Path | str) -> Optional[BackupArchive]:
        """Return archive info if the file name follows the convention."""
        path = Path(path)
        match = self._pattern.match(path.name)
        if not match:
            return None

        try:
            created = datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
        except ValueError:
            return None

        return BackupArchive(
            path=path,
            name=path.name,
            created=created,
            sequence=int(match.group(2) or 0),
        )

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------

    def list_backups(self) -> list[BackupArchive]:
        """List archives, newest first."""
        archives = []

        try:
            entries = list(os.scandir(self.backup_dir))
        except FileNotFoundError:
            return []
        except OSError as e:
            logging.warning(f"BackupArchiver - Cannot list backup directory {self.backup_dir}: {e}")
            return []

        for entry in entries:
            if not entry.is_file():
                continue
            archive = self.parse(Path(entry.path))
            if archive is not None:
                archives.append(archive)

        archives.sort(key=lambda a: a.name, reverse=True)
        return archives

    def latest(self) -> Optional[BackupArchive]:
        backups = self.list_backups()
        return backups[0] if backups else None

    def find(self, name: str) -> Optional[BackupArchive]:
        for archive in self.list_backups():
            if archive.name == name:
                return archive
        return None

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_backup(
        self,
        target_root: Path | str,
        progress_callback: Optional[ProgressCallback] = None
    ) -> BackupResult:
        """
        Snapshot every file under target_root into a new archive.

        Args:
            target_root: Installation tree to back up
            progress_callback: Receives log and progress events

        Returns:
            BackupResult listing the files that could not be included

        Raises:
            ArchiveError: If the target tree does not exist or the archive
                file cannot be created
        """
        start_time = time.time()
        target_root = Path(target_root)

        def emit(event: ProgressEvent) -> None:
            if progress_callback:
                progress_callback(event)

        if not target_root.is_dir():
            logging.error(f"BackupArchiver - Nothing to back up, target not found: {target_root}")
            raise ArchiveError(f"Target directory not found: {target_root}")

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveError(f"Cannot create backup directory {self.backup_dir}: {e}") from e

        created = self._clock().replace(microsecond=0)
        path, sequence = self._next_path(created)
        archive = BackupArchive(path=path, name=path.name, created=created, sequence=sequence)

        emit(ProgressEvent.log(f"Creating backup: {archive.name}"))
        logging.info(f"BackupArchiver - Creating {path} from {target_root}")

        failed: list[tuple[str, str]] = []
        files = self._collect_files(target_root, failed)
        files_added = 0

        try:
            with zipfile.ZipFile(path, 'x', compression=zipfile.ZIP_DEFLATED) as zf:
                for i, (file_path, arcname) in enumerate(files, start=1):
                    try:
                        self._add_file(zf, file_path, arcname)
                        files_added += 1
                    except (OSError, ValueError) as e:
                        failed.append((arcname, str(e)))
                        logging.warning(f"BackupArchiver - Could not include {arcname}: {e}")
                        emit(ProgressEvent.log(f"Backup skipped {arcname}: {e}", logging.WARNING))

                    emit(ProgressEvent.progress(i / len(files), arcname))
        except (OSError, zipfile.BadZipFile) as e:
            logging.error(f"BackupArchiver - Failed to write archive {path}: {e}")
            self._discard(path)
            raise ArchiveError(f"Cannot write backup {path.name}: {e}") from e

        pruned = self.prune()
        for name in pruned:
            emit(ProgressEvent.log(f"Removed old backup: {name}"))

        result = BackupResult(
            archive=archive,
            files_added=files_added,
            failed=failed,
            pruned=pruned,
            duration=time.time() - start_time,
        )

        if failed:
            emit(ProgressEvent.log(
                f"Backup finished with {len(failed)} files missing: {archive.name}",
                logging.WARNING
            ))
        else:
            emit(ProgressEvent.log(f"Backup complete: {archive.name}"))

        return result

    def prune(self) -> list[str]:
        """Delete archives beyond the retention cap, oldest first."""
        backups = self.list_backups()
        removed = []

        for archive in reversed(backups[self.max_backups:]):
            try:
                archive.path.unlink()
                removed.append(archive.name)
                logging.info(f"BackupArchiver - Removed old backup {archive.name}")
            except OSError as e:
                logging.warning(f"BackupArchiver - Could not remove old backup {archive.name}: {e}")

        return removed

    def _next_path(self, created: datetime) -> tuple[Path, int]:
        for sequence in range(100):
            path = self.backup_dir / self.archive_name(created, sequence)
            if not path.exists():
                return path, sequence
        raise ArchiveError(f"Too many backups within one second: {created:%Y-%m-%d %H:%M:%S}")

    def _collect_files(
        self,
        target_root: Path,
        failed: list[tuple[str, str]]
    ) -> list[tuple[Path, str]]:
        """List (path, arcname) pairs, skipping the backup directory itself."""
        files = []
        backup_dir = self.backup_dir.resolve()

        def on_walk_error(error: OSError) -> None:
            name = error.filename or "unknown"
            failed.append((str(name), f"Access error: {error.strerror}"))
            logging.warning(f"BackupArchiver - Walk error at {name}: {error}")

        for dirpath, dirnames, filenames in os.walk(target_root, onerror=on_walk_error):
            current_path = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames
                if (current_path / d).resolve() != backup_dir
            )

            for filename in sorted(filenames):
                file_path = current_path / filename
                if not file_path.is_file():
                    continue
                arcname = file_path.relative_to(target_root).as_posix()
                files.append((file_path, arcname))

        return files

    def _add_file(self, zf: zipfile.ZipFile, file_path: Path, arcname: str) -> None:
        """Read the whole file first so a failed read leaves no entry behind."""
        info = zipfile.ZipInfo.from_file(file_path, arcname, strict_timestamps=False)
        info.compress_type = zipfile.ZIP_DEFLATED
        data = file_path.read_bytes()
        zf.writestr(info, data)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logging.warning(f"BackupArchiver - Could not remove partial archive {path}: {e}")
