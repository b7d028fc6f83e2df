"""Docker runtime services for docker-pbs-backup."""

import threading
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import docker
import requests
from docker.errors import DockerException

from dockerpbsbackup.constants import DEFAULT_DOCKER_TIMEOUT
from dockerpbsbackup.errors import BackupError, ListingError, RunCancelled
from dockerpbsbackup.errors_catalog import actionable_error
from dockerpbsbackup.models import ContainerDescriptor, ExecResult

RUNTIME_ERRORS = (DockerException, requests.RequestException)


class DockerRuntimeService:
    """Lists, inspects, execs into and copies out of running containers."""

    def __init__(
        self,
        logger,
        api_client=None,
        timeout: int = DEFAULT_DOCKER_TIMEOUT,
        docker_module=docker,
        exec_api_client=None,
    ):
        self.logger = logger
        self.timeout = timeout
        self.docker = docker_module
        self._api = api_client
        self._exec_api = exec_api_client or api_client

    @property
    def api(self):
        if self._api is None:
            self._api = self._connect(self.timeout)
        return self._api

    @property
    def exec_api(self):
        """Client without a read timeout, used for exec output that can stay silent for hours."""
        if self._exec_api is None:
            self._exec_api = self._connect(None)
        return self._exec_api

    def _connect(self, timeout: Optional[int]):
        try:
            return self.docker.from_env(timeout=timeout).api
        except RUNTIME_ERRORS as exc:
            raise BackupError(actionable_error("docker_unavailable", error=str(exc))) from exc

    def list_containers(self) -> List[ContainerDescriptor]:
        try:
            raw_containers = self.api.containers()
        except (BackupError, *RUNTIME_ERRORS) as exc:
            raise ListingError(actionable_error("listing_failed", error=str(exc))) from exc

        containers = [self._to_descriptor(raw) for raw in raw_containers]
        self.logger.debug("Listed %s running container(s)", len(containers))
        return containers

    def inspect_container(self, container_id: str) -> Dict[str, Any]:
        try:
            return self.api.inspect_container(container_id)
        except RUNTIME_ERRORS as exc:
            raise BackupError(f"Failed to inspect container {container_id}: {exc}") from exc

    def exec_in_container(
        self,
        container_id: str,
        cmd: Sequence[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecResult:
        """Runs ``cmd`` and waits for it to exit.

        Output is streamed over a connection without a read timeout, so long
        silent commands such as ``pg_dumpall -f`` are waited for. When
        ``cancel_event`` fires the output stream is closed and ``RunCancelled``
        is raised.
        """
        cmd_str = " ".join(cmd)
        stdout_parts: List[bytes] = []
        stderr_parts: List[bytes] = []
        finished = threading.Event()
        watcher = None

        try:
            exec_id = self.exec_api.exec_create(container_id, list(cmd), stdout=True, stderr=True)["Id"]
            output = self.exec_api.exec_start(exec_id, stream=True, demux=True)

            if cancel_event is not None:
                watcher = threading.Thread(
                    target=self._close_on_cancel,
                    args=(output, cancel_event, finished),
                    name="exec-cancel-watcher",
                    daemon=True,
                )
                watcher.start()

            try:
                for stdout, stderr in output:
                    if stdout:
                        stdout_parts.append(stdout)
                    if stderr:
                        stderr_parts.append(stderr)
                    if cancel_event is not None and cancel_event.is_set():
                        break
            finally:
                finished.set()
                if watcher is not None:
                    watcher.join(timeout=1)

            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled(f"Cancelled while `{cmd_str}` was running in {container_id}.")

            details = self.exec_api.exec_inspect(exec_id)
        except (*RUNTIME_ERRORS, OSError) as exc:
            raise BackupError(f"Failed to exec `{cmd_str}` in container {container_id}: {exc}") from exc

        if details.get("Running"):
            raise BackupError(
                f"Output of `{cmd_str}` in container {container_id} ended while the command was still running."
            )

        exit_code = details.get("ExitCode")
        return ExecResult(
            stdout=self._decode(b"".join(stdout_parts)),
            stderr=self._decode(b"".join(stderr_parts)),
            exit_code=int(exit_code) if exit_code is not None else -1,
        )

    def _close_on_cancel(self, output, cancel_event: threading.Event, finished: threading.Event):
        while not finished.is_set():
            if not cancel_event.wait(0.5):
                continue
            if finished.is_set():
                return

            self.logger.warning("Cancellation requested, closing exec output stream")
            try:
                output.close()
            except (*RUNTIME_ERRORS, OSError) as exc:
                self.logger.debug("Closing exec output stream failed: %s", exc)
            return

    def copy_from_container(
        self, container_id: str, path: str
    ) -> Tuple[Iterator[bytes], Dict[str, Any]]:
        """Returns the tar stream for ``path`` and its stat metadata."""
        try:
            chunks, stat = self.api.get_archive(container_id, path)
        except RUNTIME_ERRORS as exc:
            raise BackupError(f"Failed to copy {path} out of container {container_id}: {exc}") from exc
        return self._guard_stream(container_id, path, chunks), stat or {}

    @staticmethod
    def _guard_stream(container_id: str, path: str, chunks) -> Iterator[bytes]:
        try:
            for chunk in chunks:
                yield chunk
        except RUNTIME_ERRORS as exc:
            raise BackupError(
                f"Stream of {path} from container {container_id} broke off: {exc}"
            ) from exc

    @staticmethod
    def _to_descriptor(raw: Dict[str, Any]) -> ContainerDescriptor:
        return ContainerDescriptor(
            id=raw.get("Id", ""),
            image=raw.get("Image") or "",
            names=tuple(raw.get("Names") or ()),
            labels=dict(raw.get("Labels") or {}),
        )

    @staticmethod
    def _decode(payload: Optional[bytes]) -> str:
        if not payload:
            return ""
        return payload.decode("utf-8", errors="replace")
