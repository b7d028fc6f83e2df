import sys
import threading

import pytest

from dockerpbsbackup.errors import BackupError, RunCancelled
from dockerpbsbackup.services.command_runner import CommandRunner


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None


def test_command_runner_raises_with_stderr():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(BackupError, match="boom"):
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(1)"],
            check=True,
            capture_output=True,
        )


def test_command_runner_returns_when_check_disabled():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; sys.exit(1)"],
        check=False,
        capture_output=True,
    )

    assert result.returncode == 1


def test_command_runner_timeout_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(BackupError, match="timed out"):
        runner.run(
            [sys.executable, "-c", "import time; time.sleep(2)"],
            check=True,
            capture_output=True,
            timeout=0.1,
        )


def test_command_runner_reports_missing_binary():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(BackupError, match="Required command not found"):
        runner.run(["definitely-not-a-real-binary-xyz"], capture_output=True)


def test_stream_emits_merged_output_lines_and_exit_code():
    runner = CommandRunner(logger=DummyLogger())
    lines = []

    exit_code = runner.stream(
        [
            sys.executable,
            "-c",
            "import sys; print('one', flush=True); sys.stderr.write('two\\n'); sys.stderr.flush(); sys.exit(3)",
        ],
        on_line=lines.append,
    )

    assert exit_code == 3
    assert sorted(lines) == ["one", "two"]


def test_stream_passes_extra_environment():
    runner = CommandRunner(logger=DummyLogger())
    lines = []

    runner.stream(
        [sys.executable, "-c", "import os; print(os.environ['PBS_PASSWORD_FILE'])"],
        env={"PBS_PASSWORD_FILE": "/run/secrets/pbs"},
        on_line=lines.append,
    )

    assert lines == ["/run/secrets/pbs"]


def test_stream_returns_127_for_missing_binary():
    runner = CommandRunner(logger=DummyLogger())

    assert runner.stream(["definitely-not-a-real-binary-xyz"]) == 127


def test_stream_terminates_process_on_cancellation():
    runner = CommandRunner(logger=DummyLogger(), terminate_grace_seconds=2)
    cancel_event = threading.Event()
    timer = threading.Timer(0.3, cancel_event.set)
    timer.start()

    try:
        with pytest.raises(RunCancelled):
            runner.stream(
                [sys.executable, "-c", "import time; time.sleep(30)"],
                cancel_event=cancel_event,
            )
    finally:
        timer.cancel()
