"""
Human-readable summaries of check and update results.

Long file lists are cut after a limit and the remainder is given as a
count, so a large update does not flood the operator's log.
"""

from __future__ import annotations

from ipcas_updater.core.models import ChangeReason, DiffResult, OperationResult


DEFAULT_SUMMARY_LIMIT = 10

_REASON_LABELS = {
    ChangeReason.MISSING: "missing",
    ChangeReason.SIZE_MISMATCH: "size differs",
    ChangeReason.CONTENT_MISMATCH: "content differs",
}


def format_duration(seconds: float) -> str:
    """Format seconds as e.g. ``7s``, ``2m05s`` or ``1h02m03s``."""
    total = max(0, int(round(seconds)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def reason_label(reason: ChangeReason) -> str:
    return _REASON_LABELS[reason]


def summarize_changes(result: DiffResult, limit: int = DEFAULT_SUMMARY_LIMIT) -> list[str]:
    """Lines describing a check result."""
    if result.is_up_to_date:
        lines = ["Already up to date"]
    else:
        lines = [f"{len(result.entries)} files need updating:"]
        for entry in result.entries[:limit]:
            lines.append(f"  - {entry.relative_path} ({reason_label(entry.reason)})")
        if len(result.entries) > limit:
            lines.append(f"  ... and {len(result.entries) - limit} more files")

    if result.errors:
        lines.append(f"{len(result.errors)} files could not be checked:")
        lines.extend(_itemize(result.errors, limit, "errors"))

    return lines


def summarize_result(result: OperationResult, limit: int = DEFAULT_SUMMARY_LIMIT) -> list[str]:
    """Lines describing a finished update or restore."""
    lines = [
        f"{result.operation.capitalize()} finished: {result.succeeded} succeeded, "
        f"{result.failed} failed, {result.total} total in {format_duration(result.duration)}"
    ]

    if result.backup is not None:
        backup = result.backup
        lines.append(f"Backup: {backup.archive.name} ({backup.files_added} files)")
        if backup.failed:
            lines.append(f"{len(backup.failed)} files missing from backup:")
            lines.extend(_itemize(backup.failed, limit, "files"))

    if result.errors:
        lines.append("Failures:")
        lines.extend(_itemize(result.errors, limit, "errors"))

    return lines


def _itemize(items: list[tuple[str, str]], limit: int, noun: str) -> list[str]:
    lines = [f"  - {path}: {message}" for path, message in items[:limit]]
    if len(items) > limit:
        lines.append(f"  ... and {len(items) - limit} more {noun}")
    return lines
