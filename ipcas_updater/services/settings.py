"""
Application settings management.

Two stores live here:
- SourcePathStore: the update source path, a single plain-text value
- SettingsManager: the remaining tool settings as JSON
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Optional


DEFAULT_SOURCE_ROOT = r"\\10.32.128.12\IPCAS2\Bin"


def _default_install_dir() -> Path:
    if os.name == 'nt':
        return Path(r"C:\IPCAS2")
    return Path(os.path.expanduser('~/IPCAS2'))


def default_config_dir() -> Path:
    if os.name == 'nt':
        app_data = os.environ.get('APPDATA', os.path.expanduser('~'))
        return Path(app_data) / 'IPCASUpdater'
    config_home = os.environ.get('XDG_CONFIG_HOME',
                                 os.path.expanduser('~/.config'))
    return Path(config_home) / 'ipcas-updater'


def default_source_config_file() -> Path:
    """Well-known location of the persisted source path."""
    if os.name == 'nt':
        return _default_install_dir() / 'update_config.txt'
    return default_config_dir() / 'update_config.txt'


@dataclass
class UpdaterSettings:
    """Settings for the update engine and its front end."""
    target_root: str = str(_default_install_dir() / 'Bin')
    backup_dir: str = str(_default_install_dir() / 'Backup')
    source_config_file: str = str(default_source_config_file())
    process_name: str = "ipcas2.exe"
    max_backups: int = 3
    hash_algorithm: str = "md5"
    parallel_workers: int = 1
    log_limit: int = 100
    summary_limit: int = 10


class SourcePathStore:
    """
    Persisted update source path.

    Stored as plain text without escaping. A missing, empty or
    unreadable file falls back to the built-in default.
    """

    def __init__(
        self,
        path: Optional[Path | str] = None,
        default: str = DEFAULT_SOURCE_ROOT
    ):
        self.path = Path(path) if path else default_source_config_file()
        self.default = default

    def load(self) -> str:
        try:
            value = self.path.read_text(encoding='utf-8').strip()
        except FileNotFoundError:
            return self.default
        except (OSError, UnicodeDecodeError) as e:
            logging.warning(f"SourcePathStore - Could not read {self.path}: {e}")
            return self.default

        return value or self.default

    def save(self, source_root: str) -> bool:
        """Overwrite the stored value. Returns False on failure."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(source_root.strip(), encoding='utf-8')
        except OSError as e:
            logging.error(f"SourcePathStore - Could not save {self.path}: {e}")
            return False

        logging.info(f"SourcePathStore - Saved source path to {self.path}")
        return True


class SettingsManager:
    """Manager for loading/saving tool settings."""

    def __init__(self, settings_path: Optional[Path] = None):
        self.settings_path = settings_path or self._get_default_path()
        self._settings: Optional[UpdaterSettings] = None

    @staticmethod
    def _get_default_path() -> Path:
        """Get the default settings file path."""
        return default_config_dir() / 'settings.json'

    @property
    def settings(self) -> UpdaterSettings:
        """Get current settings, loading from disk if needed."""
        if self._settings is None:
            self._settings = self.load()
        return self._settings

    def load(self) -> UpdaterSettings:
        """Load settings from disk."""
        if not self.settings_path.exists():
            return UpdaterSettings()

        try:
            with open(self.settings_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"SettingsManager - Could not load {self.settings_path}: {e}")
            return UpdaterSettings()

        if not isinstance(data, dict):
            return UpdaterSettings()

        return self._from_dict(data)

    def save(self, settings: Optional[UpdaterSettings] = None) -> bool:
        """Save settings to disk."""
        settings = settings or self._settings
        if settings is None:
            return False

        try:
            self.settings_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.settings_path, 'w', encoding='utf-8') as f:
                json.dump(asdict(settings), f, indent=2)

            self._settings = settings
            return True

        except OSError as e:
            logging.error(f"SettingsManager - Could not save {self.settings_path}: {e}")
            return False

    def reset(self) -> UpdaterSettings:
        """Reset to default settings."""
        self._settings = UpdaterSettings()
        self.save()
        return self._settings

    def _from_dict(self, data: dict) -> UpdaterSettings:
        """Build settings, keeping defaults for missing or mistyped values."""
        defaults = UpdaterSettings()
        values: dict[str, Any] = {}

        for f in fields(UpdaterSettings):
            default = getattr(defaults, f.name)
            value = data.get(f.name, default)
            if isinstance(default, int) and (isinstance(value, bool) or not isinstance(value, int)):
                value = default
            elif isinstance(default, str) and not isinstance(value, str):
                value = default
            values[f.name] = value

        if values['max_backups'] < 1:
            values['max_backups'] = defaults.max_backups
        if values['parallel_workers'] < 1:
            values['parallel_workers'] = defaults.parallel_workers
        for name in ("log_limit", "summary_limit"):
            if values[name] < 0:
                values[name] = 0

        return UpdaterSettings(**values)
