import threading
from datetime import datetime

import pytest

from dockerpbsbackup.errors import ConfigurationError, ListingError
from dockerpbsbackup.models import RunOutcome
from dockerpbsbackup.scheduler import (
    OnceTrigger,
    RecurringTrigger,
    Scheduler,
    outcome_exit_code,
    resolve_trigger,
)


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None


def test_missing_schedule_means_run_once():
    assert resolve_trigger(None) == OnceTrigger()
    assert resolve_trigger("   ") == OnceTrigger()


def test_cron_schedule_is_recurring():
    trigger = resolve_trigger(" 0 3 * * * ")

    assert trigger == RecurringTrigger("0 3 * * *")
    assert trigger.next_run_after(datetime(2026, 1, 1, 12, 0)) == datetime(2026, 1, 2, 3, 0)


def test_invalid_schedule_is_rejected():
    with pytest.raises(ConfigurationError, match="Invalid cron schedule"):
        resolve_trigger("every night")


def test_outcome_exit_codes():
    assert outcome_exit_code(RunOutcome(run_id="a")) == 0
    assert outcome_exit_code(RunOutcome(run_id="a", upload_exit_code=0)) == 0
    assert outcome_exit_code(RunOutcome(run_id="a", error_count=1)) == 1
    assert outcome_exit_code(RunOutcome(run_id="a", upload_exit_code=2)) == 1
    assert outcome_exit_code(RunOutcome(run_id="a", cancelled=True)) == 130


def test_once_trigger_performs_a_single_run():
    runs = []

    def perform_run():
        runs.append(1)
        return RunOutcome(run_id="x", upload_exit_code=0)

    exit_code = Scheduler(OnceTrigger(), perform_run, DummyLogger(), threading.Event()).run()

    assert exit_code == 0
    assert runs == [1]


def test_once_trigger_listing_failure_exits_non_zero():
    def perform_run():
        raise ListingError("daemon down")

    assert Scheduler(OnceTrigger(), perform_run, DummyLogger(), threading.Event()).run() == 1


def test_recurring_trigger_runs_until_cancelled():
    cancel_event = threading.Event()
    runs = []

    def perform_run():
        runs.append(1)
        if len(runs) == 1:
            raise ListingError("transient")
        cancel_event.set()
        return RunOutcome(run_id="x")

    clock = iter([datetime(2026, 1, 1, 2, 59, 59, 999000), datetime(2026, 1, 2, 2, 59, 59, 999000)])
    scheduler = Scheduler(
        RecurringTrigger("0 3 * * *"),
        perform_run,
        DummyLogger(),
        cancel_event,
        clock=lambda: next(clock),
    )

    assert scheduler.run() == 0
    assert runs == [1, 1]


def test_recurring_trigger_stops_while_waiting():
    cancel_event = threading.Event()
    cancel_event.set()
    runs = []

    scheduler = Scheduler(RecurringTrigger("0 3 * * *"), lambda: runs.append(1), DummyLogger(), cancel_event)

    assert scheduler.run() == 0
    assert runs == []
