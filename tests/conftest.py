"""Shared test fixtures for the updater."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from ipcas_updater.core.sync.process import ProcessController


def make_tree(root: Path, files: dict[str, bytes | str]) -> Path:
    """Create files under root from a {relative_path: content} mapping."""
    root.mkdir(parents=True, exist_ok=True)
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)
    return root


def read_tree(root: Path) -> dict[str, bytes]:
    """Map every file under root to its content, keyed by '/' path."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


class RecordingRunner:
    """Stands in for subprocess.run and records the commands it was given."""

    def __init__(self, returncode: int = 0, error: Exception | None = None):
        self.returncode = returncode
        self.error = error
        self.commands: list[list[str]] = []
        self.kwargs: list[dict] = []

    def __call__(self, command, **kwargs):
        self.commands.append(list(command))
        self.kwargs.append(kwargs)
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(command, self.returncode, b"", b"")


class RecordingSpawner:
    """Stands in for subprocess.Popen."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[list[str], dict]] = []

    def __call__(self, command, **kwargs):
        self.calls.append((list(command), kwargs))
        if self.error is not None:
            raise self.error
        return object()


@pytest.fixture(scope="session")
def qapp():
    """One QCoreApplication for every test that touches Qt objects."""
    from PyQt6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    return tmp_path / "source"


@pytest.fixture
def target_root(tmp_path: Path) -> Path:
    return tmp_path / "target"


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def spawner() -> RecordingSpawner:
    return RecordingSpawner()


@pytest.fixture
def process(target_root: Path, runner: RecordingRunner, spawner: RecordingSpawner) -> ProcessController:
    """Controller for ipcas2.exe in the target tree that never touches the OS."""
    return ProcessController.for_target(
        target_root,
        stop_grace=0,
        runner=runner,
        spawner=spawner,
        platform="win32",
    )
