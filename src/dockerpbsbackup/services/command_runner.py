"""Subprocess execution service for docker-pbs-backup."""

import os
import subprocess
import threading
from typing import Callable, Dict, List, Optional

from dockerpbsbackup.constants import EXIT_COMMAND_NOT_FOUND, TERMINATE_GRACE_SECONDS
from dockerpbsbackup.errors import BackupError, RunCancelled


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(
        self,
        logger,
        default_timeout: Optional[float] = None,
        subprocess_module=subprocess,
        terminate_grace_seconds: float = TERMINATE_GRACE_SECONDS,
    ):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module
        self.terminate_grace_seconds = terminate_grace_seconds

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout

        try:
            result = self.subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
            )
        except FileNotFoundError as exc:
            raise BackupError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise BackupError(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc
        except OSError as exc:
            raise BackupError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"

        if check:
            raise BackupError(message)

        self.logger.warning(message)
        return result

    def stream(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> int:
        """Runs ``cmd`` and hands merged stdout/stderr to ``on_line`` as it arrives.

        Returns the exit code, or 127 when the binary is missing. If
        ``cancel_event`` fires the process is terminated (then killed) and
        ``RunCancelled`` is raised once its output is drained, unless the
        process had already exited cleanly.
        """
        emit = on_line or self.logger.info
        merged_env = os.environ.copy()
        if env:
            merged_env.update(env)

        try:
            process = self.subprocess.Popen(
                cmd,
                stdout=self.subprocess.PIPE,
                stderr=self.subprocess.STDOUT,
                text=True,
                bufsize=1,
                env=merged_env,
            )
        except FileNotFoundError:
            self.logger.error("Required command not found: %s", cmd[0])
            return EXIT_COMMAND_NOT_FOUND
        except OSError as exc:
            raise BackupError(f"Failed to start {cmd[0]}: {exc}") from exc

        watcher = None
        if cancel_event is not None:
            watcher = threading.Thread(
                target=self._terminate_on_cancel,
                args=(process, cancel_event),
                name="command-cancel-watcher",
                daemon=True,
            )
            watcher.start()

        try:
            if process.stdout is not None:
                for line in process.stdout:
                    cleaned = line.rstrip()
                    if cleaned:
                        emit(cleaned)
        finally:
            returncode = process.wait()
            if watcher is not None:
                watcher.join(timeout=self.terminate_grace_seconds + 1)

        if returncode != 0 and cancel_event is not None and cancel_event.is_set():
            raise RunCancelled(f"{cmd[0]} was terminated because the run was cancelled.")

        return returncode

    def _terminate_on_cancel(self, process, cancel_event: threading.Event):
        while process.poll() is None:
            if not cancel_event.wait(0.5):
                continue
            if process.poll() is not None:
                return

            self.logger.warning("Cancellation requested, terminating %s", process.args[0])
            process.terminate()
            try:
                process.wait(timeout=self.terminate_grace_seconds)
            except subprocess.TimeoutExpired:
                self.logger.warning("%s did not exit in time, killing it", process.args[0])
                process.kill()
            return
