"""
Core data models for the IPCAS2 updater.

This module defines the data structures shared by the sync engine,
the workers and the command line front end:
- Change detection models
- Backup archive models
- Progress event models
- Operation result models

All models are UI-agnostic and carry no references to Qt.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Optional

from ipcas_updater.core.errors import OperationCancelled


# =============================================================================
# Enumerations
# =============================================================================

class ChangeReason(Enum):
    """Why a file in the target tree needs replacing."""
    MISSING = auto()           # Absent (or unreadable) in the target
    SIZE_MISMATCH = auto()     # Sizes differ, content not hashed
    CONTENT_MISMATCH = auto()  # Same size, different digest


class BackupDecision(Enum):
    """Whether to snapshot the target tree before applying changes."""
    WITH_BACKUP = auto()
    WITHOUT_BACKUP = auto()


class ProgressKind(Enum):
    """Kind of progress event emitted by long-running operations."""
    LOG = auto()
    PROGRESS = auto()
    STATUS = auto()


# =============================================================================
# Change Detection Models
# =============================================================================

@dataclass(frozen=True)
class ChangeEntry:
    """A single file that must be copied from source to target."""
    relative_path: str   # Always uses '/' separators
    reason: ChangeReason
    source_size: int = 0

    def source_file(self, source_root: Path | str) -> Path:
        return Path(source_root).joinpath(*self.relative_path.split('/'))

    def target_file(self, target_root: Path | str) -> Path:
        return Path(target_root).joinpath(*self.relative_path.split('/'))


@dataclass
class DiffResult:
    """Result of comparing a source tree against a target tree."""
    source_root: str
    target_root: str
    entries: list[ChangeEntry] = field(default_factory=list)
    files_scanned: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)  # (path, error)
    duration: float = 0.0

    @property
    def is_up_to_date(self) -> bool:
        return not self.entries

    @property
    def total_bytes(self) -> int:
        return sum(entry.source_size for entry in self.entries)

    @property
    def relative_paths(self) -> list[str]:
        return [entry.relative_path for entry in self.entries]

    def count_by_reason(self) -> dict[ChangeReason, int]:
        counts = {reason: 0 for reason in ChangeReason}
        for entry in self.entries:
            counts[entry.reason] += 1
        return counts


# =============================================================================
# Backup Models
# =============================================================================

@dataclass(frozen=True)
class BackupArchive:
    """
    A timestamp-named zip snapshot of the target tree.

    The archive name sorts lexically in creation order, so sorting by
    name is the same as sorting chronologically.
    """
    path: Path
    name: str
    created: datetime
    sequence: int = 0  # Suffix used when two backups share a second

    @property
    def size(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError:
            return 0

    def __str__(self) -> str:
        return self.name


@dataclass
class BackupResult:
    """Result of creating a backup archive."""
    archive: BackupArchive
    files_added: int = 0
    failed: list[tuple[str, str]] = field(default_factory=list)  # (path, error)
    pruned: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def is_complete(self) -> bool:
        return not self.failed


# =============================================================================
# Progress Models
# =============================================================================

@dataclass(frozen=True)
class ProgressEvent:
    """
    Observational event emitted during a long operation.

    Events never influence engine state; the caller decides how to
    present them.
    """
    kind: ProgressKind
    message: str = ""
    fraction: Optional[float] = None
    eta_seconds: Optional[float] = None
    level: int = logging.INFO

    @classmethod
    def log(cls, message: str, level: int = logging.INFO) -> 'ProgressEvent':
        return cls(ProgressKind.LOG, message=message, level=level)

    @classmethod
    def progress(
        cls,
        fraction: float,
        message: str = "",
        eta_seconds: Optional[float] = None
    ) -> 'ProgressEvent':
        return cls(
            ProgressKind.PROGRESS,
            message=message,
            fraction=fraction,
            eta_seconds=eta_seconds,
        )

    @classmethod
    def status(cls, message: str) -> 'ProgressEvent':
        return cls(ProgressKind.STATUS, message=message)


ProgressCallback = Callable[[ProgressEvent], None]


# =============================================================================
# Operation Result Models
# =============================================================================

@dataclass
class OperationResult:
    """Result of an apply or restore operation."""
    operation: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)  # (path, error)
    duration: float = 0.0
    backup: Optional[BackupResult] = None
    process_stopped: bool = False
    process_relaunched: bool = False

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


# =============================================================================
# Cancellation
# =============================================================================

class CancellationToken:
    """
    One-shot, thread-safe stop signal.

    Long traversals poll the token at each file boundary.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")
