import io
import tarfile
import threading

import pytest

from dockerpbsbackup.errors import BackupError, RunCancelled
from dockerpbsbackup.models import ContainerDescriptor, ExecResult
from dockerpbsbackup.services.dump_extractor import DatabaseDumpService
from dockerpbsbackup.services.filesystem import FileSystemService
from dockerpbsbackup.services.staging import StagingArea


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def _tar_chunks(name: str, payload: bytes, chunk_size: int = 100):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        info = tarfile.TarInfo(name)
        info.size = len(payload)
        archive.addfile(info, io.BytesIO(payload))
    data = buffer.getvalue()
    return [data[i : i + chunk_size] for i in range(0, len(data), chunk_size)]


class FakeRuntime:
    def __init__(self, exec_result=None, env=None, payload=b"-- dump\n", copy_error=None):
        self.exec_result = exec_result or ExecResult(stdout="", stderr="", exit_code=0)
        self.env = env or []
        self.payload = payload
        self.copy_error = copy_error
        self.commands = []
        self.exec_cancel_events = []
        self.copied = []

    def inspect_container(self, _container_id):
        return {"Config": {"Env": self.env}}

    def exec_in_container(self, container_id, cmd, cancel_event=None):
        self.commands.append((container_id, tuple(cmd)))
        self.exec_cancel_events.append(cancel_event)
        return self.exec_result

    def copy_from_container(self, container_id, path):
        self.copied.append((container_id, path))
        if self.copy_error:
            raise self.copy_error
        return iter(_tar_chunks("postgres.dump", self.payload)), {"size": len(self.payload)}


def _container(labels=None):
    return ContainerDescriptor(id="db1234567890ff", image="postgres:16", names=("/db",), labels=labels or {})


def _service(runtime):
    filesystem = FileSystemService(logger=DummyLogger(), console=DummyConsole())
    return DatabaseDumpService(runtime=runtime, logger=DummyLogger(), filesystem_service=filesystem), filesystem


def _staging(tmp_path, filesystem):
    return StagingArea(filesystem_service=filesystem, logger=DummyLogger(), root=str(tmp_path))


def test_resolve_user_prefers_label_then_env_then_default():
    service, _ = _service(FakeRuntime(env=["PATH=/usr/bin", "POSTGRES_USER=immich"]))

    assert service.resolve_user(_container({"backup.postgres_user": "admin"})) == "admin"
    assert service.resolve_user(_container()) == "immich"

    service, _ = _service(FakeRuntime(env=["POSTGRES_USER_FILE=/run/secrets/user"]))
    assert service.resolve_user(_container()) == "postgres"


def test_successful_dump_is_staged_under_backup_name(tmp_path):
    runtime = FakeRuntime(env=["POSTGRES_USER=orders"], payload=b"CREATE TABLE orders();\n" * 50)
    service, filesystem = _service(runtime)
    staging = _staging(tmp_path, filesystem)

    assert service.backup(_container(), "orders-db", staging) is True

    staged = staging.path / "orders-db.dump"
    assert staged.read_bytes() == b"CREATE TABLE orders();\n" * 50
    assert runtime.commands == [
        (
            "db1234567890ff",
            ("pg_dumpall", "--clean", "-U", "orders", "-f", "/postgres.dump"),
        )
    ]
    assert runtime.copied == [("db1234567890ff", "/postgres.dump")]


def test_failed_dump_stages_nothing(tmp_path):
    runtime = FakeRuntime(exec_result=ExecResult(stdout="", stderr="role does not exist", exit_code=1))
    service, filesystem = _service(runtime)
    staging = _staging(tmp_path, filesystem)

    assert service.backup(_container(), "orders-db", staging) is False

    assert runtime.copied == []
    assert staging.created is False
    assert staging.has_content is False


def test_copy_failure_counts_as_failure_and_leaves_no_file(tmp_path):
    runtime = FakeRuntime(copy_error=BackupError("no such file"))
    service, filesystem = _service(runtime)
    staging = _staging(tmp_path, filesystem)

    assert service.backup(_container(), "orders-db", staging) is False
    assert staging.has_content is False


def test_cancellation_while_copying_propagates_and_removes_partial_file(tmp_path):
    runtime = FakeRuntime(payload=b"x" * 4096)
    service, filesystem = _service(runtime)
    staging = _staging(tmp_path, filesystem)
    cancel_event = threading.Event()

    original_copy = runtime.copy_from_container

    def cancelling_copy(container_id, path):
        chunks, stat = original_copy(container_id, path)
        cancel_event.set()
        return chunks, stat

    runtime.copy_from_container = cancelling_copy

    with pytest.raises(RunCancelled):
        service.backup(_container(), "orders-db", staging, cancel_event=cancel_event)

    assert not (staging.path / "orders-db.dump").exists()


def test_archive_without_regular_file_is_rejected(tmp_path):
    service, filesystem = _service(FakeRuntime())
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        info = tarfile.TarInfo("postgres.dump")
        info.type = tarfile.DIRTYPE
        archive.addfile(info)

    with pytest.raises(BackupError, match="did not contain a regular file"):
        service._write_dump([buffer.getvalue()], tmp_path / "x.dump", None)


def test_cancel_event_reaches_the_dump_exec(tmp_path):
    runtime = FakeRuntime()
    service, filesystem = _service(runtime)
    cancel_event = threading.Event()

    assert service.backup(_container(), "orders-db", _staging(tmp_path, filesystem), cancel_event=cancel_event)
    assert runtime.exec_cancel_events == [cancel_event]


def test_dump_exec_cancelled_propagates_and_stages_nothing(tmp_path):
    runtime = FakeRuntime()

    def cancelled_exec(container_id, cmd, cancel_event=None):
        raise RunCancelled("Cancelled while `pg_dumpall` was running")

    runtime.exec_in_container = cancelled_exec
    service, filesystem = _service(runtime)
    staging = _staging(tmp_path, filesystem)

    with pytest.raises(RunCancelled):
        service.backup(_container(), "orders-db", staging, cancel_event=threading.Event())

    assert staging.has_content is False
