"""
docker-pbs-backup - Scheduled Docker container backups to Proxmox Backup Server
"""

__version__ = "0.3.0"

from .core import BackupRunner
from .errors import BackupError

__all__ = ["BackupRunner", "BackupError"]
