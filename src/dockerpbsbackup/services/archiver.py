"""Hand-off of staged paths to proxmox-backup-client."""

import threading
from typing import Dict, List, Optional, Sequence

from dockerpbsbackup.constants import ARCHIVE_SUFFIX, FINGERPRINT_ENV, PASSWORD_FILE_ENV
from dockerpbsbackup.models import BackupSettings, BackupUnit


class ArchiverService:
    """Uploads all backup units of a run with a single client invocation."""

    def __init__(self, settings: BackupSettings, command_runner, logger):
        self.settings = settings
        self.command_runner = command_runner
        self.logger = logger

    def build_command(self, units: Sequence[BackupUnit]) -> List[str]:
        cmd = [self.settings.archiver_binary, "backup"]
        cmd.extend(unit.as_operand(ARCHIVE_SUFFIX) for unit in units)
        cmd.extend(["--repository", self.settings.repository, "--ns", self.settings.namespace])
        return cmd

    def build_env(self) -> Dict[str, str]:
        env = {PASSWORD_FILE_ENV: self.settings.password_file}
        if self.settings.fingerprint:
            env[FINGERPRINT_ENV] = self.settings.fingerprint
        return env

    def validate_environment(self):
        self.command_runner.run([self.settings.archiver_binary, "version"], capture_output=True)

    def upload(
        self,
        units: Sequence[BackupUnit],
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[int]:
        """Returns the client's exit code, or None when there was nothing to upload."""
        if not units:
            self.logger.info("No backup units collected, skipping upload.")
            return None

        cmd = self.build_command(units)
        env = self.build_env()
        self.logger.info(
            "Running %s with env %s",
            " ".join(cmd),
            ", ".join(f"{key}={value}" for key, value in env.items()),
        )

        exit_code = self.command_runner.stream(
            cmd,
            env=env,
            cancel_event=cancel_event,
            on_line=lambda line: self.logger.info("[%s] %s", self.settings.archiver_binary, line),
        )

        self.logger.info("%s exited with %s", self.settings.archiver_binary, exit_code)
        if exit_code != 0:
            self.logger.error("Upload of %s archive(s) failed with exit code %s", len(units), exit_code)
        return exit_code
