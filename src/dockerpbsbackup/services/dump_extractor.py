"""Logical database dumps taken inside running containers."""

import io
import shutil
import tarfile
import threading
from pathlib import Path
from typing import Iterable, Optional

from dockerpbsbackup.constants import (
    CONTAINER_DUMP_PATH,
    DEFAULT_POSTGRES_USER,
    DUMP_FILE_SUFFIX,
    LABEL_POSTGRES_USER,
    POSTGRES_USER_ENV,
)
from dockerpbsbackup.errors import BackupError, RunCancelled
from dockerpbsbackup.models import ContainerDescriptor, DumpResult


class _ChunkStream(io.RawIOBase):
    """File-like view over the chunk iterator returned by the runtime."""

    def __init__(self, chunks: Iterable[bytes], cancel_event: Optional[threading.Event] = None):
        self._chunks = iter(chunks)
        self._buffer = b""
        self._cancel_event = cancel_event

    def readable(self) -> bool:
        return True

    def readinto(self, target) -> int:
        while not self._buffer:
            if self._cancel_event is not None and self._cancel_event.is_set():
                raise RunCancelled("Cancelled while copying a dump out of its container.")
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0

        size = min(len(target), len(self._buffer))
        target[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size


class DatabaseDumpService:
    """Runs ``pg_dumpall`` in a container and stages the resulting file."""

    def __init__(self, runtime, logger, filesystem_service, dump_path: str = CONTAINER_DUMP_PATH):
        self.runtime = runtime
        self.logger = logger
        self.filesystem_service = filesystem_service
        self.dump_path = dump_path

    def resolve_user(self, container: ContainerDescriptor) -> str:
        labelled = (container.labels or {}).get(LABEL_POSTGRES_USER)
        if labelled:
            return labelled

        inspect = self.runtime.inspect_container(container.id)
        env = ((inspect or {}).get("Config") or {}).get("Env") or []
        for entry in env:
            key, sep, value = entry.partition("=")
            if sep and key == POSTGRES_USER_ENV and value:
                return value

        return DEFAULT_POSTGRES_USER

    def build_dump_command(self, user: str):
        return ("pg_dumpall", "--clean", "-U", user, "-f", self.dump_path)

    def dump_to_file(
        self,
        container: ContainerDescriptor,
        user: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> DumpResult:
        cmd = self.build_dump_command(user)
        self.logger.info("Dumping %s with command %s", container.short_id, " ".join(cmd))

        result = self.runtime.exec_in_container(container.id, cmd, cancel_event=cancel_event)
        return DumpResult(
            command=cmd,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            source_path=self.dump_path,
        )

    def backup(
        self,
        container: ContainerDescriptor,
        backup_name: str,
        staging,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        """Dumps one container into the staging area.

        Returns False on any per-container failure; the caller counts it.
        Cancellation is re-raised so the run can unwind.
        """
        self.logger.info(
            "Backing up database %s %s", container.short_id, ", ".join(container.names)
        )
        destination: Optional[Path] = None

        try:
            user = self.resolve_user(container)
            dump = self.dump_to_file(container, user, cancel_event=cancel_event)
            self.logger.info(
                "Dumped to %s inside %s with exit code %s",
                dump.source_path,
                container.short_id,
                dump.exit_code,
            )
            if dump.stdout.strip():
                self.logger.debug(dump.stdout.strip())

            if not dump.succeeded:
                self.logger.error(
                    "Failed to back up %s: `%s` exited with %s\nstdout: %s\nstderr: %s",
                    container.id,
                    " ".join(dump.command),
                    dump.exit_code,
                    dump.stdout.strip() or "<empty>",
                    dump.stderr.strip() or "<empty>",
                )
                return False

            if dump.stderr.strip():
                self.logger.warning("pg_dumpall stderr for %s: %s", container.short_id, dump.stderr.strip())

            self._raise_if_cancelled(cancel_event)
            chunks, stat = self.runtime.copy_from_container(container.id, dump.source_path)

            destination = staging.file_path(f"{backup_name}{DUMP_FILE_SUFFIX}")
            written = self._write_dump(chunks, destination, cancel_event)
            self.logger.info(
                "Added dump %s (%s bytes, reported size %s)",
                destination,
                written,
                stat.get("size", "unknown"),
            )
            return True

        except RunCancelled:
            if destination is not None:
                self.filesystem_service.remove_file(str(destination))
            raise
        except (BackupError, OSError, tarfile.TarError) as exc:
            if destination is not None:
                self.filesystem_service.remove_file(str(destination))
            self.logger.error("Failed to back up %s: %s", container.id, exc)
            return False

    def _write_dump(
        self,
        chunks: Iterable[bytes],
        destination: Path,
        cancel_event: Optional[threading.Event],
    ) -> int:
        """Unpacks the single file of the copy-out tar stream into ``destination``."""
        stream = io.BufferedReader(_ChunkStream(chunks, cancel_event))
        with tarfile.open(fileobj=stream, mode="r|") as archive:
            for member in archive:
                if not member.isfile():
                    continue
                source = archive.extractfile(member)
                if source is None:
                    continue
                with open(destination, "wb") as file_obj:
                    shutil.copyfileobj(source, file_obj)
                return member.size

        raise BackupError(f"Dump archive for {destination.name} did not contain a regular file.")

    @staticmethod
    def _raise_if_cancelled(cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("Run cancelled.")
