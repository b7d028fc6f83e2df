"""Shared domain models for docker-pbs-backup."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .constants import (
    ARCHIVER_BINARY,
    DEFAULT_DATABASE_MARKERS,
    DEFAULT_DOCKER_TIMEOUT,
    DEFAULT_DUMP_ARCHIVE_NAME,
)


class BackupStrategy(Enum):
    DATABASE_DUMP = "database_dump"
    VOLUME_COPY = "volume_copy"
    SKIP = "skip"


class BackupKind(Enum):
    DUMP_DIRECTORY = "dump_directory"
    VOLUME = "volume"


@dataclass(frozen=True)
class ContainerDescriptor:
    """Running container metadata as listed by the runtime."""

    id: str
    image: str
    names: Tuple[str, ...] = ()
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def short_id(self) -> str:
        return self.id[:12]


@dataclass(frozen=True)
class BackupUnit:
    """One archive entry handed to the archival tool."""

    archive_name: str
    source_path: str
    kind: BackupKind
    container_id: str = ""

    def as_operand(self, suffix: str) -> str:
        return f"{self.archive_name}{suffix}:{self.source_path}"


@dataclass(frozen=True)
class ExecResult:
    stdout: str
    stderr: str
    exit_code: int


@dataclass(frozen=True)
class DumpResult:
    """Outcome of one in-container dump invocation."""

    command: Tuple[str, ...]
    stdout: str
    stderr: str
    exit_code: int
    source_path: str

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass
class RunOutcome:
    run_id: str
    error_count: int = 0
    upload_exit_code: Optional[int] = None
    units: List[BackupUnit] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return (
            not self.cancelled
            and self.error_count == 0
            and self.upload_exit_code in (0, None)
        )


@dataclass(frozen=True)
class BackupSettings:
    """Resolved configuration for a backup process."""

    repository: str
    namespace: str
    password_file: str
    host_mount_root: str
    schedule: Optional[str] = None
    ping_url: Optional[str] = None
    fingerprint: Optional[str] = None
    staging_root: Optional[str] = None
    dump_archive_name: str = DEFAULT_DUMP_ARCHIVE_NAME
    database_markers: Tuple[str, ...] = DEFAULT_DATABASE_MARKERS
    archiver_binary: str = ARCHIVER_BINARY
    docker_timeout: int = DEFAULT_DOCKER_TIMEOUT
