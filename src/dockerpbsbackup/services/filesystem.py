"""Filesystem helpers for docker-pbs-backup."""

import logging
import os
import shutil
import sys

from rich.console import Console


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def is_non_empty_dir(self, path: str) -> bool:
        if not os.path.isdir(path):
            return False
        with os.scandir(path) as entries:
            return any(True for _ in entries)

    def remove_file(self, path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            self.logger.warning("Could not remove %s: %s", path, exc)

    def cleanup_dir(self, path: str) -> bool:
        if not os.path.exists(path):
            return True

        try:
            shutil.rmtree(path)
            self.logger.debug("Removed directory: %s", path)
            return True
        except OSError as exc:
            message = f"Warning: Could not remove {path}: {exc}"
            self.console.print(f"[yellow]{message}[/yellow]")
            self.logger.warning(message)
            return False
