"""
Command line front end for the IPCAS2 updater.

This module handles:
- Command line argument parsing
- Logging configuration
- Exception handling
- Running update, backup and restore operations on worker threads
- Interactive confirmation of the backup decision
"""

from __future__ import annotations

import argparse
import faulthandler
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, List

from PyQt6.QtCore import QCoreApplication, QTimer

from ipcas_updater.core.errors import OperationBusyError, UpdaterError
from ipcas_updater.core.models import BackupDecision, ProgressEvent
from ipcas_updater.core.report import format_duration, summarize_changes, summarize_result
from ipcas_updater.core.sync import (
    ApplyEngine,
    BackupArchiver,
    ContentDiffer,
    DiffOptions,
    ProcessController,
    RestoreEngine,
)
from ipcas_updater.services.hashing import HashAlgorithm
from ipcas_updater.services.oplog import OperationLog
from ipcas_updater.services.settings import (
    SettingsManager,
    SourcePathStore,
    UpdaterSettings,
    default_config_dir,
)
from ipcas_updater.workers import (
    BackupWorker,
    BaseWorker,
    CheckWorker,
    OperationController,
    RestoreWorker,
    UpdateWorker,
    WorkerState,
)


# =============================================================================
# Constants
# =============================================================================

APP_NAME = "IPCASUpdater"
APP_DISPLAY_NAME = "IPCAS2 Updater"
APP_VERSION = "1.0.0"
APP_ORGANIZATION = "IPCASUpdater"

# Paths
if getattr(sys, 'frozen', False):
    # Running as compiled executable
    LOGS_DIR = Path(sys.executable).parent / "logs"
else:
    # Installed package, keep logs next to the settings file
    LOGS_DIR = default_config_dir() / "logs"

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class CommandLineArgs:
    """Parsed command line arguments."""
    command: str = "check"
    source: Optional[str] = None
    target: Optional[str] = None
    backup_dir: Optional[str] = None
    config_file: Optional[str] = None
    settings_file: Optional[str] = None
    backup: Optional[bool] = None
    assume_yes: bool = False
    archive_name: Optional[str] = None
    latest: bool = False
    log_level: str = "WARNING"
    debug: bool = False


@dataclass
class UpdaterContext:
    """Everything a command needs, resolved from settings and arguments."""
    settings: UpdaterSettings
    source_store: SourcePathStore
    target_root: Path
    backup_dir: Path

    def archiver(self) -> BackupArchiver:
        return BackupArchiver(self.backup_dir, max_backups=self.settings.max_backups)

    def process(self) -> ProcessController:
        return ProcessController.for_target(self.target_root, self.settings.process_name)

    def diff_options(self) -> DiffOptions:
        return DiffOptions(
            hash_algorithm=HashAlgorithm.from_string(self.settings.hash_algorithm),
            parallel_workers=self.settings.parallel_workers,
        )


# =============================================================================
# Logging Setup
# =============================================================================

class LogFormatter(logging.Formatter):
    """Custom log formatter with colors for console."""

    COLORS = {
        logging.INFO: '\033[32m',      # Green
        logging.WARNING: '\033[33m',   # Yellow
        logging.ERROR: '\033[31m',     # Red
        logging.CRITICAL: '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelno, '')
            return f"{color}{formatted}{self.RESET}"

        return formatted


def setup_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure application logging.

    Diagnostics go to stderr so they do not interleave with the
    operation log printed on stdout.

    Args:
        level: Log level string
        log_file: Optional file path for logging

    Returns:
        Root logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(LogFormatter(use_colors=True))
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(
            log_file,
            encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(LogFormatter(use_colors=False))
        root_logger.addHandler(file_handler)

    return root_logger


# =============================================================================
# Exception Handling
# =============================================================================

class ExceptionHandler:
    """
    Global exception handler for unhandled exceptions.

    Logs the exception and stops the event loop if one is running.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def handle_exception(
        self,
        exc_type: type,
        exc_value: BaseException,
        exc_tb
    ) -> None:
        """Handle an unhandled exception."""
        # Don't handle keyboard interrupt
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return

        self.logger.critical(
            "Unhandled exception",
            exc_info=(exc_type, exc_value, exc_tb)
        )
        print(f"Unexpected error: {exc_type.__name__}: {exc_value}", file=sys.stderr)

        app = QCoreApplication.instance()
        if app is not None:
            app.exit(EXIT_FAILED)


# =============================================================================
# Command Line Parsing
# =============================================================================

def parse_arguments(args: Optional[List[str]] = None) -> CommandLineArgs:
    """
    Parse command line arguments.

    Args:
        args: Arguments to parse (defaults to sys.argv)

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog="ipcas-updater",
        description="Keep an IPCAS2 installation in sync with its update share",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s check                         List files that need updating
  %(prog)s update --backup               Back up, then update
  %(prog)s config --source \\\\server\\share\\Bin   Change the update source
  %(prog)s restore --latest              Roll back to the newest backup
        """
    )

    # Paths
    parser.add_argument(
        '--target',
        help='Installation directory to update'
    )
    parser.add_argument(
        '--backup-dir',
        help='Directory holding backup archives'
    )

    # Configuration
    parser.add_argument(
        '--config-file',
        help='File holding the update source path'
    )
    parser.add_argument(
        '--settings',
        help='Settings file path'
    )

    # Logging
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug mode'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default='WARNING',
        help='Log level'
    )

    # Version
    parser.add_argument(
        '--version',
        action='version',
        version=f'{APP_NAME} {APP_VERSION}'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    check = subparsers.add_parser('check', help='List files that differ from the source')
    check.add_argument('--source', help='Update source directory')

    update = subparsers.add_parser('update', help='Copy changed files from the source')
    update.add_argument('--source', help='Update source directory')
    backup_group = update.add_mutually_exclusive_group()
    backup_group.add_argument(
        '--backup',
        dest='backup',
        action='store_true',
        default=None,
        help='Back up the installation before updating'
    )
    backup_group.add_argument(
        '--no-backup',
        dest='backup',
        action='store_false',
        help='Update without a backup'
    )
    update.add_argument(
        '-y', '--yes',
        action='store_true',
        help='Do not prompt; back up unless --no-backup is given'
    )

    subparsers.add_parser('backup', help='Back up the installation now')
    subparsers.add_parser('list-backups', help='List backups, newest first')

    restore = subparsers.add_parser('restore', help='Restore the installation from a backup')
    restore_group = restore.add_mutually_exclusive_group()
    restore_group.add_argument('name', nargs='?', help='Backup file name')
    restore_group.add_argument(
        '--latest',
        action='store_true',
        help='Restore the newest backup (default)'
    )

    config = subparsers.add_parser('config', help='Show or change the update source')
    config.add_argument('--source', help='New update source directory')

    parsed = parser.parse_args(args)

    result = CommandLineArgs()
    result.command = parsed.command
    result.source = getattr(parsed, 'source', None)
    result.target = parsed.target
    result.backup_dir = parsed.backup_dir
    result.config_file = parsed.config_file
    result.settings_file = parsed.settings
    result.backup = getattr(parsed, 'backup', None)
    result.assume_yes = getattr(parsed, 'yes', False)
    result.archive_name = getattr(parsed, 'name', None)
    result.latest = getattr(parsed, 'latest', False)
    result.debug = parsed.debug

    # Log level
    if parsed.debug:
        result.log_level = 'DEBUG'
    else:
        result.log_level = parsed.log_level

    return result


def build_context(args: CommandLineArgs) -> UpdaterContext:
    """Resolve settings and apply command line overrides."""
    manager = SettingsManager(Path(args.settings_file) if args.settings_file else None)
    settings = manager.settings

    config_file = args.config_file or settings.source_config_file
    return UpdaterContext(
        settings=settings,
        source_store=SourcePathStore(config_file),
        target_root=Path(args.target or settings.target_root),
        backup_dir=Path(args.backup_dir or settings.backup_dir),
    )


# =============================================================================
# Running Workers
# =============================================================================

class ConsoleProgress:
    """Renders progress signals as a single updating line on a terminal."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.enabled = self.stream.isatty()
        self._visible = False

    def update(self, current: int, total: int, message: str) -> None:
        if not self.enabled or total <= 0:
            return
        percent = current * 100 / total
        self.stream.write(f"\r  {percent:5.1f}%  {message[:60]:<60}")
        self.stream.flush()
        self._visible = True

    def clear(self) -> None:
        if self._visible:
            self.stream.write("\r" + " " * 70 + "\r")
            self.stream.flush()
            self._visible = False


def print_line(line: str) -> None:
    print(line, flush=True)


def print_lines(lines: List[str]) -> None:
    for line in lines:
        print_line(line)


def setup_signal_handlers(controller: OperationController) -> QTimer:
    """Route Ctrl+C to the running operations."""

    def _signal_handler(signum, frame) -> None:
        logging.info(f"Received signal {signum}, cancelling...")
        print_line("Stop requested...")
        controller.cancel_all()

    signal.signal(signal.SIGINT, _signal_handler)
    if sys.platform != 'win32':
        signal.signal(signal.SIGTERM, _signal_handler)

    # Allow Python to process signals while Qt runs the loop
    timer = QTimer()
    timer.timeout.connect(lambda: None)
    timer.start(500)
    return timer


def run_worker(
    app: QCoreApplication,
    controller: OperationController,
    worker: BaseWorker,
    oplog: OperationLog
) -> BaseWorker:
    """
    Run worker on its own thread and block on the event loop until it ends.

    Raises:
        OperationBusyError: If the target is in use by another operation
    """
    progress = ConsoleProgress()

    def on_event(event: ProgressEvent) -> None:
        progress.clear()
        oplog.handle(event)

    worker.signals.event.connect(on_event)
    worker.signals.progress.connect(progress.update)
    worker.signals.finished.connect(lambda _result: app.quit())
    worker.signals.error.connect(lambda _type, _msg: app.quit())
    worker.signals.cancelled.connect(lambda: app.quit())

    # Also catches a worker that finished before the loop started
    watcher = QTimer()
    watcher.timeout.connect(lambda: worker.is_done and app.quit())

    thread = controller.start(worker)
    watcher.start(100)
    app.exec()
    watcher.stop()
    thread.wait()

    # Deliver events still queued from the worker thread
    app.processEvents()
    progress.clear()
    return worker


# =============================================================================
# Commands
# =============================================================================

def prompt_backup_decision(
    count: int,
    input_func: Callable[[str], str] = input
) -> Optional[BackupDecision]:
    """
    Ask whether to back up before updating.

    Returns:
        The decision, or None if the user cancelled
    """
    prompt = (
        f"{count} files will be updated.\n"
        "[B]ackup and update / [U]pdate only / [C]ancel: "
    )
    while True:
        try:
            answer = input_func(prompt).strip().lower()
        except EOFError:
            return None

        if answer in ('b', 'backup'):
            return BackupDecision.WITH_BACKUP
        if answer in ('u', 'update'):
            return BackupDecision.WITHOUT_BACKUP
        if answer in ('c', 'cancel', ''):
            return None


def resolve_backup_decision(
    args: CommandLineArgs,
    count: int,
    input_func: Callable[[str], str] = input
) -> Optional[BackupDecision]:
    if args.backup is True:
        return BackupDecision.WITH_BACKUP
    if args.backup is False:
        return BackupDecision.WITHOUT_BACKUP
    if args.assume_yes:
        return BackupDecision.WITH_BACKUP
    return prompt_backup_decision(count, input_func)


def _report_failure(worker: BaseWorker) -> int:
    if worker.state == WorkerState.CANCELLED:
        print_line(f"{worker.operation_name.capitalize()} cancelled.")
        return EXIT_FAILED

    _, message = worker.error or ("Error", "unknown failure")
    print(f"{worker.operation_name.capitalize()} failed: {message}", file=sys.stderr)
    return EXIT_FAILED


def _source_root(ctx: UpdaterContext, args: CommandLineArgs) -> str:
    """Current source path, persisted before every check or update."""
    source = args.source or ctx.source_store.load()
    ctx.source_store.save(source)
    return source


def _check(
    app: QCoreApplication,
    controller: OperationController,
    ctx: UpdaterContext,
    source: str,
    oplog: OperationLog
) -> CheckWorker:
    oplog.add(f"Checking for updates from: {source}")
    worker = CheckWorker(source, ctx.target_root, differ=ContentDiffer(ctx.diff_options()))
    return run_worker(app, controller, worker, oplog)


def cmd_check(app, controller, ctx: UpdaterContext, args: CommandLineArgs, oplog: OperationLog) -> int:
    source = _source_root(ctx, args)
    worker = _check(app, controller, ctx, source, oplog)
    if worker.state != WorkerState.COMPLETED:
        return _report_failure(worker)

    diff = worker.result
    print_lines(summarize_changes(diff, ctx.settings.summary_limit))
    print_line(f"Scanned {diff.files_scanned} files in {format_duration(diff.duration)}")
    return EXIT_PARTIAL if diff.errors else EXIT_OK


def cmd_update(app, controller, ctx: UpdaterContext, args: CommandLineArgs, oplog: OperationLog) -> int:
    source = _source_root(ctx, args)
    worker = _check(app, controller, ctx, source, oplog)
    if worker.state != WorkerState.COMPLETED:
        return _report_failure(worker)

    diff = worker.result
    print_lines(summarize_changes(diff, ctx.settings.summary_limit))
    if diff.is_up_to_date:
        return EXIT_PARTIAL if diff.errors else EXIT_OK

    decision = resolve_backup_decision(args, len(diff.entries))
    if decision is None:
        print_line("Update cancelled.")
        return EXIT_FAILED

    engine = ApplyEngine(process=ctx.process(), archiver=ctx.archiver())
    update = UpdateWorker(diff, source, ctx.target_root, decision, engine=engine)
    run_worker(app, controller, update, oplog)
    if update.state != WorkerState.COMPLETED:
        return _report_failure(update)

    result = update.result
    print_lines(summarize_result(result, ctx.settings.summary_limit))
    return EXIT_PARTIAL if result.has_errors or diff.errors else EXIT_OK


def cmd_backup(app, controller, ctx: UpdaterContext, args: CommandLineArgs, oplog: OperationLog) -> int:
    worker = BackupWorker(ctx.archiver(), ctx.target_root)
    run_worker(app, controller, worker, oplog)
    if worker.state != WorkerState.COMPLETED:
        return _report_failure(worker)

    backup = worker.result
    print_line(f"Backup created: {backup.archive.path} ({backup.files_added} files)")
    for name in backup.pruned:
        print_line(f"Removed old backup: {name}")
    if backup.failed:
        print_line(f"{len(backup.failed)} files could not be backed up:")
        for path, error in backup.failed[:ctx.settings.summary_limit]:
            print_line(f"  - {path}: {error}")
        return EXIT_PARTIAL
    return EXIT_OK


def cmd_list_backups(ctx: UpdaterContext, args: CommandLineArgs) -> int:
    backups = ctx.archiver().list_backups()
    if not backups:
        print_line(f"No backups in {ctx.backup_dir}")
        return EXIT_OK

    for archive in backups:
        size_mb = archive.size / (1024 * 1024)
        print_line(f"{archive.name}  {archive.created:%Y-%m-%d %H:%M:%S}  {size_mb:.1f} MB")
    return EXIT_OK


def cmd_restore(app, controller, ctx: UpdaterContext, args: CommandLineArgs, oplog: OperationLog) -> int:
    archiver = ctx.archiver()
    if args.archive_name:
        archive = archiver.find(args.archive_name)
    else:
        archive = archiver.latest()

    if archive is None:
        wanted = args.archive_name or "any backup"
        print(f"Backup not found: {wanted} in {ctx.backup_dir}", file=sys.stderr)
        return EXIT_FAILED

    worker = RestoreWorker(archive, ctx.target_root, engine=RestoreEngine(ctx.process()))
    run_worker(app, controller, worker, oplog)
    if worker.state != WorkerState.COMPLETED:
        return _report_failure(worker)

    result = worker.result
    print_lines(summarize_result(result, ctx.settings.summary_limit))
    return EXIT_PARTIAL if result.has_errors else EXIT_OK


def cmd_config(ctx: UpdaterContext, args: CommandLineArgs) -> int:
    if args.source:
        if not ctx.source_store.save(args.source):
            print(f"Could not save {ctx.source_store.path}", file=sys.stderr)
            return EXIT_FAILED
        print_line(f"Update source saved: {args.source.strip()}")
        return EXIT_OK

    print_line(f"Update source: {ctx.source_store.load()}")
    print_line(f"Source file:   {ctx.source_store.path}")
    print_line(f"Target:        {ctx.target_root}")
    print_line(f"Backups:       {ctx.backup_dir} (keep {ctx.settings.max_backups})")
    return EXIT_OK


WORKER_COMMANDS = {
    'check': cmd_check,
    'update': cmd_update,
    'backup': cmd_backup,
    'restore': cmd_restore,
}

LOCAL_COMMANDS = {
    'list-backups': cmd_list_backups,
    'config': cmd_config,
}


# =============================================================================
# Main Function
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Application main entry point.

    Returns:
        Exit code (0 for success, 1 on failure, 2 on per-file failures)
    """
    args = parse_arguments(argv)

    log_file = LOGS_DIR / f"{APP_NAME}_{datetime.now():%Y%m%d}.log" if args.debug else None
    logger = setup_logging(args.log_level, log_file)
    logger.info(f"Starting {APP_DISPLAY_NAME} v{APP_VERSION}")

    exception_handler = ExceptionHandler(logger)
    sys.excepthook = exception_handler.handle_exception

    try:
        ctx = build_context(args)

        if args.command in LOCAL_COMMANDS:
            return LOCAL_COMMANDS[args.command](ctx, args)

        app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
        app.setApplicationName(APP_NAME)
        app.setApplicationVersion(APP_VERSION)
        app.setOrganizationName(APP_ORGANIZATION)

        controller = OperationController()
        previous_handler = signal.getsignal(signal.SIGINT)
        timer = setup_signal_handlers(controller)
        oplog = OperationLog(limit=ctx.settings.log_limit, on_line=print_line)

        try:
            return WORKER_COMMANDS[args.command](app, controller, ctx, args, oplog)
        finally:
            timer.stop()
            signal.signal(signal.SIGINT, previous_handler)
            controller.wait_all()

    except OperationBusyError as e:
        print(str(e), file=sys.stderr)
        return EXIT_FAILED

    except UpdaterError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(str(e), file=sys.stderr)
        return EXIT_FAILED

    except KeyboardInterrupt:
        print_line("Interrupted.")
        return EXIT_FAILED


def run() -> None:
    """Console script entry point."""
    # Enable faulthandler for debugging crashes
    faulthandler.enable()

    sys.exit(main())


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == '__main__':
    run()
