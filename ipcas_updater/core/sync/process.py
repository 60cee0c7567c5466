"""
Control of the dependent IPCAS2 process.

Stopping and relaunching are delegated to the host OS. Both are
best-effort: a process that is not running cannot be stopped, and a
missing executable cannot be launched, and neither is an error for
the caller.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Optional

from ipcas_updater.core.errors import ProcessControlError
from ipcas_updater.core.models import ProgressEvent


DEFAULT_PROCESS_NAME = "ipcas2.exe"

# Seconds to wait for taskkill/pkill before giving up
DEFAULT_STOP_TIMEOUT = 10.0


class ProcessController:
    """
    Stops and launches the dependent application by name and path.

    Usage:
        process = ProcessController("ipcas2.exe", executable=r"C:\\IPCAS2\\Bin\\ipcas2.exe")
        process.stop()
        ...
        process.launch()
    """

    def __init__(
        self,
        process_name: str = DEFAULT_PROCESS_NAME,
        executable: Optional[Path | str] = None,
        stop_grace: float = 0.5,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        spawner: Callable[..., object] = subprocess.Popen,
        platform: Optional[str] = None
    ):
        self.process_name = process_name
        self.executable = Path(executable) if executable else None
        self.stop_grace = stop_grace
        self.stop_timeout = stop_timeout
        self._runner = runner
        self._spawner = spawner
        self._platform = platform or sys.platform

    @classmethod
    def for_target(
        cls,
        target_root: Path | str,
        process_name: str = DEFAULT_PROCESS_NAME,
        **kwargs
    ) -> 'ProcessController':
        """Controller whose executable lives directly in the target tree."""
        return cls(process_name, executable=Path(target_root) / process_name, **kwargs)

    @property
    def is_windows(self) -> bool:
        return self._platform == 'win32'

    def stop_command(self) -> list[str]:
        if self.is_windows:
            return ['taskkill', '/F', '/IM', self.process_name]
        return ['pkill', '-x', Path(self.process_name).stem]

    def launch_command(self) -> list[str]:
        if self.executable is None:
            raise ProcessControlError("No executable configured")
        if self.is_windows:
            return ['cmd', '/C', 'start', '', str(self.executable)]
        return [str(self.executable)]

    def stop(self) -> bool:
        """
        Request termination and wait briefly.

        Returns:
            True if the OS reported a process was terminated

        Raises:
            ProcessControlError: If the stop command could not be run
        """
        command = self.stop_command()
        try:
            completed = self._runner(
                command,
                capture_output=True,
                check=False,
                timeout=self.stop_timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ProcessControlError(f"Cannot run {command[0]}: {e}") from e

        stopped = completed.returncode == 0
        if stopped:
            logging.info(f"ProcessController - Stopped {self.process_name}")
        else:
            logging.debug(
                f"ProcessController - {self.process_name} not stopped "
                f"(exit code {completed.returncode}), probably not running"
            )

        if self.stop_grace > 0:
            time.sleep(self.stop_grace)

        return stopped

    def launch(self) -> bool:
        """
        Start the executable if it exists.

        Returns:
            False if the executable is absent

        Raises:
            ProcessControlError: If the process could not be spawned
        """
        if self.executable is None or not self.executable.is_file():
            logging.info(f"ProcessController - Executable not found, not launching: {self.executable}")
            return False

        command = self.launch_command()
        try:
            self._spawner(command, cwd=str(self.executable.parent))
        except (OSError, subprocess.SubprocessError) as e:
            raise ProcessControlError(f"Cannot launch {self.executable}: {e}") from e

        logging.info(f"ProcessController - Launched {self.executable}")
        return True


def stop_best_effort(
    process: Optional[ProcessController],
    emit: Callable[[ProgressEvent], None]
) -> bool:
    """Stop the process, logging instead of raising on failure."""
    if process is None:
        return False
    try:
        stopped = process.stop()
    except ProcessControlError as e:
        logging.warning(f"ProcessController - {e}")
        emit(ProgressEvent.log(f"Could not stop {process.process_name}: {e}", logging.WARNING))
        return False
    if stopped:
        emit(ProgressEvent.log(f"Stopped {process.process_name}"))
    return stopped


def launch_best_effort(
    process: Optional[ProcessController],
    emit: Callable[[ProgressEvent], None]
) -> bool:
    """Relaunch the process, logging instead of raising on failure."""
    if process is None:
        return False
    try:
        launched = process.launch()
    except ProcessControlError as e:
        logging.warning(f"ProcessController - {e}")
        emit(ProgressEvent.log(f"Could not start {process.process_name}: {e}", logging.WARNING))
        return False
    if launched:
        emit(ProgressEvent.log(f"Started {process.process_name}"))
    else:
        emit(ProgressEvent.log(f"{process.process_name} not found, not started"))
    return launched
