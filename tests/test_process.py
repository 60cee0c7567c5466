"""Tests for stopping and launching the dependent process."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from conftest import RecordingRunner, RecordingSpawner
from ipcas_updater.core.errors import ProcessControlError
from ipcas_updater.core.sync.process import (
    ProcessController,
    launch_best_effort,
    stop_best_effort,
)


class TestCommands:
    """Tests for command construction."""

    def test_windows_commands(self, tmp_path: Path) -> None:
        process = ProcessController.for_target(tmp_path, platform="win32")

        assert process.stop_command() == ["taskkill", "/F", "/IM", "ipcas2.exe"]
        assert process.launch_command() == ["cmd", "/C", "start", "", str(tmp_path / "ipcas2.exe")]

    def test_posix_commands(self, tmp_path: Path) -> None:
        process = ProcessController.for_target(tmp_path, "ipcas2.exe", platform="linux")

        assert process.stop_command() == ["pkill", "-x", "ipcas2"]
        assert process.launch_command() == [str(tmp_path / "ipcas2.exe")]

    def test_launch_command_needs_executable(self) -> None:
        with pytest.raises(ProcessControlError):
            ProcessController(platform="win32").launch_command()


class TestStopAndLaunch:
    """Tests for running the commands."""

    def test_stop_reports_whether_a_process_ended(self) -> None:
        running = ProcessController(stop_grace=0, runner=RecordingRunner(0), platform="win32")
        absent = ProcessController(stop_grace=0, runner=RecordingRunner(128), platform="win32")

        assert running.stop() is True
        assert absent.stop() is False

    def test_stop_raises_when_command_cannot_run(self) -> None:
        process = ProcessController(
            stop_grace=0,
            runner=RecordingRunner(error=subprocess.SubprocessError("boom")),
        )

        with pytest.raises(ProcessControlError):
            process.stop()

    def test_stop_command_is_bounded_by_timeout(self) -> None:
        runner = RecordingRunner(0)
        process = ProcessController(stop_grace=0, stop_timeout=3.0, runner=runner, platform="win32")

        process.stop()

        assert runner.kwargs[0]["timeout"] == 3.0

    def test_hung_stop_command_raises(self) -> None:
        process = ProcessController(
            stop_grace=0,
            runner=RecordingRunner(error=subprocess.TimeoutExpired(["taskkill"], 10.0)),
            platform="win32",
        )

        with pytest.raises(ProcessControlError):
            process.stop()

    def test_launch_runs_from_executable_directory(self, tmp_path: Path) -> None:
        exe = tmp_path / "ipcas2.exe"
        exe.write_bytes(b"MZ")
        spawner = RecordingSpawner()
        process = ProcessController("ipcas2.exe", executable=exe, spawner=spawner, platform="win32")

        assert process.launch() is True
        assert spawner.calls[0][1]["cwd"] == str(tmp_path)

    def test_launch_without_executable_is_skipped(self, tmp_path: Path) -> None:
        spawner = RecordingSpawner()
        process = ProcessController.for_target(tmp_path, spawner=spawner)

        assert process.launch() is False
        assert spawner.calls == []

    def test_launch_failure_raises(self, tmp_path: Path) -> None:
        exe = tmp_path / "ipcas2.exe"
        exe.write_bytes(b"MZ")
        process = ProcessController(executable=exe, spawner=RecordingSpawner(error=OSError("denied")))

        with pytest.raises(ProcessControlError):
            process.launch()


class TestBestEffort:
    """Tests for the helpers used by the engines."""

    def test_none_process_is_ignored(self) -> None:
        events = []

        assert stop_best_effort(None, events.append) is False
        assert launch_best_effort(None, events.append) is False
        assert events == []

    def test_failures_become_log_events(self, tmp_path: Path) -> None:
        exe = tmp_path / "ipcas2.exe"
        exe.write_bytes(b"MZ")
        process = ProcessController(
            executable=exe,
            stop_grace=0,
            runner=RecordingRunner(error=OSError("no taskkill")),
            spawner=RecordingSpawner(error=OSError("denied")),
        )
        events = []

        assert stop_best_effort(process, events.append) is False
        assert launch_best_effort(process, events.append) is False
        assert [e.message.split(":")[0] for e in events] == [
            "Could not stop ipcas2.exe",
            "Could not start ipcas2.exe",
        ]
