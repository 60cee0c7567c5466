"""
Exception types raised by the sync engine.

Only root-level failures are raised to the caller. Per-file errors are
collected into operation results instead.
"""

from __future__ import annotations


class UpdaterError(Exception):
    """Base class for updater errors."""
    pass


class ConnectivityError(UpdaterError):
    """The source root cannot be reached."""
    pass


class ArchiveError(UpdaterError):
    """A backup archive could not be created or opened."""
    pass


class ProcessControlError(UpdaterError):
    """The dependent process could not be stopped or launched."""
    pass


class OperationCancelled(UpdaterError):
    """A cancellable operation observed its stop signal."""
    pass


class OperationBusyError(UpdaterError):
    """Another operation is already running against the same target."""

    def __init__(self, target_root: str, running: str):
        super().__init__(f"{running} already in progress for {target_root}")
        self.target_root = target_root
        self.running = running
