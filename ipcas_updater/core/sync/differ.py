"""
Content differ for update checks.

Walks a source tree and decides, per file, whether the matching file
in the target tree is stale:
- Missing or unreadable target file
- Size mismatch (no hashing needed)
- Content mismatch (equal size, different digest)

Directories are never compared, only file leaves.
"""

from __future__ import annotations

import logging
import os
import stat
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ipcas_updater.core.errors import ConnectivityError, OperationCancelled
from ipcas_updater.core.models import (
    CancellationToken,
    ChangeEntry,
    ChangeReason,
    DiffResult,
    ProgressCallback,
    ProgressEvent,
)
from ipcas_updater.services.hashing import HashAlgorithm, HashingService


@dataclass
class DiffOptions:
    """Options for tree comparison."""
    hash_algorithm: HashAlgorithm = HashAlgorithm.MD5
    follow_symlinks: bool = False

    # Performance
    parallel_workers: int = 1  # >1 hashes equal-size files concurrently
    chunk_size: int = 65536


# (entry, (path, error)) for a single compared file
_Outcome = tuple[Optional[ChangeEntry], Optional[tuple[str, str]]]


class ContentDiffer:
    """
    Compares a source tree against a target tree.

    Entries are returned in depth-first discovery order with directory
    and file names sorted, so the order is deterministic for a given
    tree even when hashing runs in parallel.
    """

    def __init__(
        self,
        options: Optional[DiffOptions] = None,
        hasher: Optional[HashingService] = None
    ):
        self.options = options or DiffOptions()
        self.hasher = hasher or HashingService(
            default_algorithm=self.options.hash_algorithm,
            chunk_size=self.options.chunk_size,
        )

    def diff(
        self,
        source_root: Path | str,
        target_root: Path | str,
        token: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> DiffResult:
        """
        Compute the change set that would bring target up to date.

        Args:
            source_root: Tree to copy from (usually a network share)
            target_root: Local installation tree
            token: Polled at every file visit
            progress_callback: Receives status events per directory

        Returns:
            DiffResult with ordered change entries

        Raises:
            ConnectivityError: If the source root cannot be listed
            OperationCancelled: If the token was tripped; no partial
                result is returned
        """
        start_time = time.time()

        source_root = Path(source_root)
        target_root = Path(target_root)
        token = token or CancellationToken()

        self._check_source(source_root)

        if not target_root.is_dir():
            logging.warning(
                f"ContentDiffer - Target root not found, every file is missing: {target_root}"
            )

        slots: list[Union[_Outcome, Future]] = []
        errors: list[tuple[str, str]] = []
        files_scanned = 0

        def on_walk_error(error: OSError) -> None:
            rel_path = self._relative(error.filename, source_root)
            errors.append((rel_path, f"Access error: {error.strerror}"))
            logging.warning(f"ContentDiffer - Walk error at {rel_path}: {error}")

        executor: Optional[ThreadPoolExecutor] = None
        if self.options.parallel_workers > 1:
            executor = ThreadPoolExecutor(max_workers=self.options.parallel_workers)

        try:
            for dirpath, dirnames, filenames in os.walk(
                source_root,
                topdown=True,
                followlinks=self.options.follow_symlinks,
                onerror=on_walk_error
            ):
                token.raise_if_cancelled()

                # Sort for consistent ordering
                dirnames.sort()
                filenames.sort()

                current_path = Path(dirpath)
                rel_dir = current_path.relative_to(source_root)

                if progress_callback:
                    progress_callback(ProgressEvent.status(
                        f"Checking {rel_dir.as_posix() if rel_dir.parts else '.'}"
                    ))

                for filename in filenames:
                    token.raise_if_cancelled()

                    source_file = current_path / filename
                    rel_path = (rel_dir / filename).as_posix()

                    try:
                        source_stat = (
                            source_file.stat() if self.options.follow_symlinks
                            else source_file.lstat()
                        )
                    except OSError as e:
                        errors.append((rel_path, f"Read error: {e}"))
                        logging.warning(f"ContentDiffer - Cannot stat source file {rel_path}: {e}")
                        continue

                    if not stat.S_ISREG(source_stat.st_mode):
                        continue

                    files_scanned += 1
                    target_file = target_root / rel_dir / filename
                    size = source_stat.st_size

                    quick = self._quick_check(rel_path, target_file, size)
                    if quick is not None:
                        slots.append((quick, None))
                    elif executor is not None:
                        slots.append(executor.submit(
                            self._compare_content, rel_path, source_file, target_file, size, token
                        ))
                    else:
                        slots.append(self._compare_content(
                            rel_path, source_file, target_file, size, token
                        ))

            entries: list[ChangeEntry] = []
            for slot in slots:
                token.raise_if_cancelled()
                entry, error = slot.result() if isinstance(slot, Future) else slot
                if error is not None:
                    errors.append(error)
                    continue
                if entry is not None:
                    entries.append(entry)

            token.raise_if_cancelled()

        except OperationCancelled:
            logging.info("ContentDiffer - Check cancelled, discarding partial results")
            if executor is not None:
                executor.shutdown(wait=True, cancel_futures=True)
                executor = None
            raise
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        result = DiffResult(
            source_root=str(source_root),
            target_root=str(target_root),
            entries=entries,
            files_scanned=files_scanned,
            errors=errors,
            duration=time.time() - start_time,
        )

        logging.info(
            f"ContentDiffer - {len(entries)} of {files_scanned} files need updating "
            f"({len(errors)} errors, {result.duration:.2f}s)"
        )
        return result

    def _check_source(self, source_root: Path) -> None:
        """Fail fast if the source root cannot be listed."""
        try:
            if not source_root.is_dir():
                raise ConnectivityError(f"Source not reachable: {source_root}")
            with os.scandir(source_root):
                pass
        except OSError as e:
            logging.error(f"ContentDiffer - Cannot list source root {source_root}: {e}")
            raise ConnectivityError(f"Source not reachable: {source_root} ({e})") from e

    def _quick_check(
        self,
        rel_path: str,
        target_file: Path,
        source_size: int
    ) -> Optional[ChangeEntry]:
        """
        Decide without reading content.

        Returns None when sizes match and hashing is required.
        """
        try:
            target_stat = target_file.stat()
        except OSError:
            return ChangeEntry(rel_path, ChangeReason.MISSING, source_size)

        if not stat.S_ISREG(target_stat.st_mode):
            return ChangeEntry(rel_path, ChangeReason.MISSING, source_size)

        if target_stat.st_size != source_size:
            return ChangeEntry(rel_path, ChangeReason.SIZE_MISMATCH, source_size)

        return None

    def _compare_content(
        self,
        rel_path: str,
        source_file: Path,
        target_file: Path,
        size: int,
        token: CancellationToken
    ) -> _Outcome:
        """Hash both files and compare digests."""
        if token.is_cancelled:
            return None, None

        try:
            source_hash = self.hasher.hash_file(source_file, self.options.hash_algorithm, token)
        except OSError as e:
            logging.warning(f"ContentDiffer - Cannot read source file {rel_path}: {e}")
            return None, (rel_path, f"Read error: {e}")

        try:
            target_hash = self.hasher.hash_file(target_file, self.options.hash_algorithm, token)
        except OSError as e:
            logging.info(f"ContentDiffer - Target file unreadable, treating as missing {rel_path}: {e}")
            return ChangeEntry(rel_path, ChangeReason.MISSING, size), None

        if source_hash.matches(target_hash):
            return None, None

        return ChangeEntry(rel_path, ChangeReason.CONTENT_MISMATCH, size), None

    @staticmethod
    def _relative(filename: Optional[str], root: Path) -> str:
        if not filename:
            return "unknown"
        try:
            return Path(filename).relative_to(root).as_posix()
        except ValueError:
            return str(filename)
