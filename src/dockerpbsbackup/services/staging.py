"""Run-scoped staging directory lifecycle."""

import os
import tempfile
import uuid
from pathlib import Path
from typing import Optional

from dockerpbsbackup.constants import STAGING_DIR_MODE, STAGING_PREFIX


class StagingArea:
    """Temporary directory collecting one run's dump files.

    The directory name is derived from a random token and only created on
    first use; ``cleanup`` removes it again if it was ever created.
    """

    def __init__(self, filesystem_service, logger, root: Optional[str] = None):
        self.filesystem_service = filesystem_service
        self.logger = logger
        self.root = root or tempfile.gettempdir()
        self.path = Path(self.root) / f"{STAGING_PREFIX}{uuid.uuid4().hex}"
        self.created = False

    def ensure(self) -> Path:
        if not self.created:
            os.makedirs(self.root, exist_ok=True)
            self.path.mkdir(mode=STAGING_DIR_MODE)
            self.filesystem_service.set_permissions(str(self.path), STAGING_DIR_MODE)
            self.created = True
            self.logger.debug("Created staging directory %s", self.path)
        return self.path

    def file_path(self, filename: str) -> Path:
        return self.ensure() / filename

    @property
    def has_content(self) -> bool:
        return self.created and self.filesystem_service.is_non_empty_dir(str(self.path))

    def cleanup(self) -> bool:
        if not self.created:
            return True
        removed = self.filesystem_service.cleanup_dir(str(self.path))
        if removed:
            self.created = False
        return removed
