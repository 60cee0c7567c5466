"""
Directory sync and backup engine.

Provides functionality for:
- Detecting stale files in an installation tree
- Applying change sets from a source tree
- Timestamped zip backups with retention
- Restoring a backup over the installation tree
"""

from ipcas_updater.core.sync.differ import (
    ContentDiffer,
    DiffOptions,
)
from ipcas_updater.core.sync.archiver import (
    BackupArchiver,
    DEFAULT_MAX_BACKUPS,
)
from ipcas_updater.core.sync.apply import ApplyEngine
from ipcas_updater.core.sync.restore import RestoreEngine
from ipcas_updater.core.sync.process import (
    ProcessController,
    DEFAULT_PROCESS_NAME,
)

__all__ = [
    # Differ
    'ContentDiffer',
    'DiffOptions',
    # Backup
    'BackupArchiver',
    'DEFAULT_MAX_BACKUPS',
    # Apply / restore
    'ApplyEngine',
    'RestoreEngine',
    # Process
    'ProcessController',
    'DEFAULT_PROCESS_NAME',
]
