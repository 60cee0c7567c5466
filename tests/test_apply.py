"""Tests for applying change sets."""

from __future__ import annotations

import zipfile
from datetime import datetime
from pathlib import Path

import pytest

from conftest import RecordingRunner, make_tree, read_tree
from ipcas_updater.core.models import BackupDecision, ChangeEntry, ChangeReason, ProgressKind
from ipcas_updater.core.sync.apply import ApplyEngine
from ipcas_updater.core.sync.archiver import BackupArchiver
from ipcas_updater.core.sync.differ import ContentDiffer
from ipcas_updater.core.sync.process import ProcessController


def _sync(source_root: Path, target_root: Path, engine: ApplyEngine, **kwargs):
    diff = ContentDiffer().diff(source_root, target_root)
    return diff, engine.apply(diff.entries, source_root, target_root, **kwargs)


# ---------------------------------------------------------------------------
# Copying
# ---------------------------------------------------------------------------


class TestApply:
    """Tests for copying change sets into the target tree."""

    def test_update_scenario(self, source_root: Path, target_root: Path) -> None:
        make_tree(source_root, {"a.txt": "1", "sub/b.txt": "22"})
        make_tree(target_root, {"a.txt": "1"})

        diff, result = _sync(source_root, target_root, ApplyEngine())

        assert [(e.relative_path, e.reason) for e in diff.entries] == [("sub/b.txt", ChangeReason.MISSING)]
        assert (result.total, result.succeeded, result.failed) == (1, 1, 0)
        assert read_tree(target_root) == {"a.txt": b"1", "sub/b.txt": b"22"}
        assert ContentDiffer().diff(source_root, target_root).entries == []

    def test_size_mismatch_is_replaced(self, source_root: Path, target_root: Path) -> None:
        make_tree(source_root, {"a.txt": "v1", "sub/b.txt": "x" * 5})
        make_tree(target_root, {"a.txt": "v1", "sub/b.txt": "x" * 4})

        diff, result = _sync(source_root, target_root, ApplyEngine())

        assert diff.relative_paths == ["sub/b.txt"]
        assert (result.total, result.succeeded, result.failed) == (1, 1, 0)
        assert (target_root / "sub" / "b.txt").read_text() == "xxxxx"

    def test_target_matches_source_afterwards(self, source_root: Path, target_root: Path) -> None:
        make_tree(source_root, {
            "ipcas2.exe": b"MZ\x90\x00",
            "cfg/app.ini": "mode=live",
            "lib/x/y/z.dll": "deep",
        })
        make_tree(target_root, {"cfg/app.ini": "mode=test", "local.txt": "mine"})

        _, result = _sync(source_root, target_root, ApplyEngine())

        assert result.success
        tree = read_tree(target_root)
        assert tree.pop("local.txt") == b"mine"
        assert tree == read_tree(source_root)

    def test_apply_is_idempotent(self, source_root: Path, target_root: Path) -> None:
        make_tree(source_root, {"a.txt": "new", "b/c.txt": "cc"})
        make_tree(target_root, {"a.txt": "old"})

        _sync(source_root, target_root, ApplyEngine())
        second = ContentDiffer().diff(source_root, target_root)

        assert second.is_up_to_date

    def test_empty_change_set_is_a_no_op(self, source_root: Path, target_root: Path, process, runner) -> None:
        events = []

        result = ApplyEngine(process=process).apply(
            [], source_root, target_root, progress_callback=events.append
        )

        assert (result.total, result.succeeded, result.failed) == (0, 0, 0)
        assert events == []
        assert runner.commands == []

    def test_per_file_failure_does_not_stop_batch(self, source_root: Path, target_root: Path) -> None:
        make_tree(source_root, {"a.txt": "a", "blocked.txt": "b", "c.txt": "c"})
        (target_root / "blocked.txt").mkdir(parents=True)
        entries = [
            ChangeEntry("a.txt", ChangeReason.MISSING, 1),
            ChangeEntry("blocked.txt", ChangeReason.MISSING, 1),
            ChangeEntry("c.txt", ChangeReason.MISSING, 1),
        ]

        result = ApplyEngine().apply(entries, source_root, target_root)

        assert (result.succeeded, result.failed) == (2, 1)
        assert [path for path, _ in result.errors] == ["blocked.txt"]
        assert (target_root / "c.txt").read_text() == "c"

    def test_source_vanished_is_counted_as_failure(self, source_root: Path, target_root: Path) -> None:
        source_root.mkdir()
        entries = [ChangeEntry("gone.dll", ChangeReason.MISSING, 10)]

        result = ApplyEngine().apply(entries, source_root, target_root)

        assert result.failed == 1
        assert not result.success


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class TestProgress:
    """Tests for progress, status and log events."""

    def test_fraction_is_monotonic_and_ends_at_one(self, source_root: Path, target_root: Path) -> None:
        make_tree(source_root, {f"f{i}.txt": str(i) for i in range(7)})
        events = []

        _sync(source_root, target_root, ApplyEngine(), progress_callback=events.append)

        fractions = [e.fraction for e in events if e.kind == ProgressKind.PROGRESS]
        assert fractions[0] == 0.0
        assert all(b > a for a, b in zip(fractions, fractions[1:]))
        assert fractions[-1] == pytest.approx(1.0)

    def test_status_reports_position_and_time_left(self, source_root: Path, target_root: Path) -> None:
        make_tree(source_root, {"a.txt": "a", "b.txt": "b"})
        events = []

        _sync(source_root, target_root, ApplyEngine(), progress_callback=events.append)

        statuses = [e.message for e in events if e.kind == ProgressKind.STATUS]
        assert statuses[0].startswith("Updating... 1/2 (~")
        assert statuses[-1].startswith("Updating... 2/2 (~")
        assert statuses[-1].endswith("remaining)")

    def test_backup_progress_does_not_rewind_update_progress(
        self, source_root: Path, target_root: Path, backup_dir: Path
    ) -> None:
        make_tree(target_root, {f"old{i}.txt": "o" for i in range(4)})
        make_tree(source_root, {"new.txt": "n"})
        engine = ApplyEngine(archiver=BackupArchiver(backup_dir))
        events = []

        _sync(
            source_root,
            target_root,
            engine,
            backup_decision=BackupDecision.WITH_BACKUP,
            progress_callback=events.append,
        )

        fractions = [e.fraction for e in events if e.kind == ProgressKind.PROGRESS]
        assert fractions == [0.0, 1.0]


# ---------------------------------------------------------------------------
# Backup and process control
# ---------------------------------------------------------------------------


class TestBackupAndProcess:
    """Tests for the steps around the copy loop."""

    def test_backup_taken_before_copy(self, source_root: Path, target_root: Path, backup_dir: Path) -> None:
        make_tree(source_root, {"a.txt": "new"})
        make_tree(target_root, {"a.txt": "old"})
        archiver = BackupArchiver(backup_dir, clock=lambda: datetime(2024, 5, 1, 8, 0, 0))

        _, result = _sync(
            source_root,
            target_root,
            ApplyEngine(archiver=archiver),
            backup_decision=BackupDecision.WITH_BACKUP,
        )

        assert result.backup is not None
        assert result.backup.archive.name == "BK_20240501_080000.zip"
        with zipfile.ZipFile(result.backup.archive.path) as zf:
            assert zf.read("a.txt") == b"old"
        assert (target_root / "a.txt").read_text() == "new"

    def test_without_backup_writes_no_archive(self, source_root: Path, target_root: Path, backup_dir: Path) -> None:
        make_tree(source_root, {"a.txt": "new"})

        _, result = _sync(
            source_root,
            target_root,
            ApplyEngine(archiver=BackupArchiver(backup_dir)),
            backup_decision=BackupDecision.WITHOUT_BACKUP,
        )

        assert result.backup is None
        assert not backup_dir.exists()

    def test_backup_failure_does_not_abort_update(self, source_root: Path, target_root: Path, tmp_path: Path) -> None:
        make_tree(source_root, {"a.txt": "new"})
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file where the backup directory should be")
        events = []

        _, result = _sync(
            source_root,
            target_root,
            ApplyEngine(archiver=BackupArchiver(blocker / "backups")),
            backup_decision=BackupDecision.WITH_BACKUP,
            progress_callback=events.append,
        )

        assert result.backup is None
        assert result.succeeded == 1
        assert any("Backup failed" in e.message for e in events if e.kind == ProgressKind.LOG)

    def test_process_stopped_and_relaunched(
        self, source_root: Path, target_root: Path, process, runner, spawner
    ) -> None:
        make_tree(source_root, {"ipcas2.exe": "new build"})
        make_tree(target_root, {"ipcas2.exe": "old build"})

        _, result = _sync(source_root, target_root, ApplyEngine(process=process))

        assert runner.commands == [["taskkill", "/F", "/IM", "ipcas2.exe"]]
        assert result.process_stopped
        assert result.process_relaunched
        command, kwargs = spawner.calls[0]
        assert command == ["cmd", "/C", "start", "", str(target_root / "ipcas2.exe")]
        assert kwargs["cwd"] == str(target_root)

    def test_launch_skipped_when_executable_absent(self, source_root: Path, target_root: Path, process, spawner) -> None:
        make_tree(source_root, {"readme.txt": "docs"})

        _, result = _sync(source_root, target_root, ApplyEngine(process=process))

        assert result.succeeded == 1
        assert not result.process_relaunched
        assert spawner.calls == []

    def test_stop_failure_is_not_fatal(self, source_root: Path, target_root: Path) -> None:
        make_tree(source_root, {"a.txt": "a"})
        process = ProcessController(
            stop_grace=0,
            runner=RecordingRunner(error=FileNotFoundError("taskkill")),
            platform="win32",
        )

        _, result = _sync(source_root, target_root, ApplyEngine(process=process))

        assert result.succeeded == 1
        assert not result.process_stopped
