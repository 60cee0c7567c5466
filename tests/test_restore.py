"""Tests for restoring backups."""

from __future__ import annotations

import struct
import zipfile
from datetime import datetime
from pathlib import Path

import pytest

from conftest import make_tree, read_tree
from ipcas_updater.core.errors import ArchiveError
from ipcas_updater.core.models import BackupDecision, ProgressKind
from ipcas_updater.core.sync.apply import ApplyEngine
from ipcas_updater.core.sync.archiver import BackupArchiver
from ipcas_updater.core.sync.differ import ContentDiffer
from ipcas_updater.core.sync.restore import RestoreEngine


def _set_central_method(archive: Path, name: str, method: int) -> None:
    """Rewrite the compression method of one entry in the central directory."""
    data = bytearray(archive.read_bytes())
    encoded = name.encode("utf-8")
    offset = data.find(b"PK\x01\x02")
    while offset != -1:
        if data[offset + 46:offset + 46 + len(encoded)] == encoded:
            struct.pack_into("<H", data, offset + 10, method)
            archive.write_bytes(bytes(data))
            return
        offset = data.find(b"PK\x01\x02", offset + 4)
    raise AssertionError(f"{name} not in central directory")


class TestRestore:
    """Tests for extracting archives over the target tree."""

    def test_round_trip(self, target_root: Path, backup_dir: Path) -> None:
        original = {
            "ipcas2.exe": b"MZ\x00\x01",
            "config.ini": "server=prod",
            "lib/core.dll": "core v1",
        }
        make_tree(target_root, original)
        backup = BackupArchiver(backup_dir).create_backup(target_root)

        (target_root / "config.ini").write_text("server=broken")
        (target_root / "lib" / "core.dll").unlink()

        result = RestoreEngine().restore(backup.archive, target_root)

        assert (result.total, result.succeeded, result.failed) == (3, 3, 0)
        assert read_tree(target_root) == read_tree(make_tree(target_root.parent / "expected", original))

    def test_restore_by_path_into_empty_target(self, target_root: Path, backup_dir: Path, tmp_path: Path) -> None:
        make_tree(target_root, {"a.txt": "a", "d/b.txt": "b"})
        backup = BackupArchiver(backup_dir).create_backup(target_root)
        fresh = tmp_path / "fresh"

        RestoreEngine().restore(str(backup.archive.path), fresh)

        assert read_tree(fresh) == {"a.txt": b"a", "d/b.txt": b"b"}

    def test_files_not_in_archive_are_left_alone(self, target_root: Path, backup_dir: Path) -> None:
        make_tree(target_root, {"a.txt": "a"})
        backup = BackupArchiver(backup_dir).create_backup(target_root)
        (target_root / "added-later.txt").write_text("new")

        RestoreEngine().restore(backup.archive, target_root)

        assert (target_root / "added-later.txt").read_text() == "new"

    def test_corrupt_archive_raises(self, target_root: Path, backup_dir: Path, process, runner, spawner) -> None:
        backup_dir.mkdir()
        bad = backup_dir / "BK_20240101_000000.zip"
        bad.write_bytes(b"this is not a zip file")
        make_tree(target_root, {"ipcas2.exe": "exe"})

        with pytest.raises(ArchiveError):
            RestoreEngine(process=process).restore(bad, target_root)

        # Process stopped for the restore is brought back
        assert runner.commands
        assert len(spawner.calls) == 1

    def test_unsafe_entry_is_skipped(self, target_root: Path, tmp_path: Path) -> None:
        archive = tmp_path / "BK_20240101_000000.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("good.txt", "fine")
            zf.writestr("../escape.txt", "outside")

        result = RestoreEngine().restore(archive, target_root)

        assert (result.succeeded, result.failed) == (1, 1)
        assert result.errors[0][0] == "../escape.txt"
        assert not (tmp_path / "escape.txt").exists()
        assert (target_root / "good.txt").read_text() == "fine"

    def test_progress_and_log(self, target_root: Path, backup_dir: Path) -> None:
        make_tree(target_root, {"a.txt": "a", "b.txt": "b"})
        archiver = BackupArchiver(backup_dir, clock=lambda: datetime(2024, 2, 2, 2, 2, 2))
        backup = archiver.create_backup(target_root)
        events = []

        RestoreEngine().restore(backup.archive, target_root, events.append)

        fractions = [e.fraction for e in events if e.kind == ProgressKind.PROGRESS]
        assert fractions == [0.0, 0.5, 1.0]
        logs = [e.message for e in events if e.kind == ProgressKind.LOG]
        assert logs[0] == "Restoring from: BK_20240202_020202.zip"
        assert "Restored: a.txt" in logs

    def test_round_trip_after_update(self, source_root: Path, target_root: Path, backup_dir: Path) -> None:
        make_tree(source_root, {"a.txt": "1", "sub/b.txt": "22", "lib/c.dll": "ccc"})
        make_tree(target_root, {"a.txt": "1", "lib/c.dll": "old"})
        diff = ContentDiffer().diff(source_root, target_root)
        ApplyEngine().apply(diff.entries, source_root, target_root, BackupDecision.WITHOUT_BACKUP)
        updated = read_tree(target_root)

        backup = BackupArchiver(backup_dir).create_backup(target_root)
        (target_root / "a.txt").write_text("mangled")
        (target_root / "sub" / "b.txt").unlink()
        (target_root / "lib" / "c.dll").write_bytes(b"")

        result = RestoreEngine().restore(backup.archive, target_root)

        assert result.success
        assert read_tree(target_root) == updated

    def test_unreadable_entry_does_not_stop_restore(self, target_root: Path, tmp_path: Path, process, runner, spawner) -> None:
        archive = tmp_path / "BK_20240101_000000.zip"
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_STORED) as zf:
            zf.writestr("a.txt", "first")
            zf.writestr("locked.txt", "unsupported")
            zf.writestr("b.txt", "last")
        _set_central_method(archive, "locked.txt", 99)
        make_tree(target_root, {"ipcas2.exe": "exe"})

        result = RestoreEngine(process=process).restore(archive, target_root)

        assert (result.total, result.succeeded, result.failed) == (3, 2, 1)
        assert result.errors[0][0] == "locked.txt"
        assert (target_root / "a.txt").read_text() == "first"
        assert (target_root / "b.txt").read_text() == "last"
        assert not (target_root / "locked.txt").exists()
        assert result.process_stopped
        assert result.process_relaunched
        assert len(spawner.calls) == 1

    def test_unexpected_entry_error_still_relaunches(self, target_root: Path, tmp_path: Path, process, spawner, monkeypatch) -> None:
        archive = tmp_path / "BK_20240101_000000.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("a.txt", "a")
            zf.writestr("b.txt", "b")
        make_tree(target_root, {"ipcas2.exe": "exe"})

        def encrypted(self, zf, info, target_root):
            raise RuntimeError(f"File {info.filename} is encrypted, password required for extraction")

        monkeypatch.setattr(RestoreEngine, "_extract", encrypted)

        result = RestoreEngine(process=process).restore(archive, target_root)

        assert (result.succeeded, result.failed) == (0, 2)
        assert len(spawner.calls) == 1

    @pytest.mark.parametrize("name", ["/abs.txt", "\\abs.txt", "C:/abs.txt"])
    def test_absolute_entry_is_rejected(self, target_root: Path, tmp_path: Path, name: str) -> None:
        archive = tmp_path / "BK_20240101_000000.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("good.txt", "fine")
            zf.writestr(name, "outside")

        result = RestoreEngine().restore(archive, target_root)

        assert (result.succeeded, result.failed) == (1, 1)
        assert not (target_root / "abs.txt").exists()
