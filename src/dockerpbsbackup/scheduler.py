"""Run triggers: a single run at start-up or recurring cron runs."""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from croniter import croniter

from .constants import EXIT_CANCELLED
from .errors import BackupError, ConfigurationError
from .errors_catalog import actionable_error
from .models import RunOutcome


@dataclass(frozen=True)
class OnceTrigger:
    """Perform exactly one run when the process starts."""


@dataclass(frozen=True)
class RecurringTrigger:
    schedule: str

    def next_run_after(self, moment: datetime) -> datetime:
        return croniter(self.schedule, moment).get_next(datetime)


RunTrigger = Union[OnceTrigger, RecurringTrigger]


def resolve_trigger(schedule: Optional[str]) -> RunTrigger:
    if schedule is None or not schedule.strip():
        return OnceTrigger()

    expression = schedule.strip()
    if not croniter.is_valid(expression):
        raise ConfigurationError(actionable_error("invalid_schedule", schedule=expression))
    return RecurringTrigger(expression)


def outcome_exit_code(outcome: RunOutcome) -> int:
    if outcome.cancelled:
        return EXIT_CANCELLED
    return 0 if outcome.ok else 1


class Scheduler:
    """Drives ``perform_run`` according to a trigger until cancelled."""

    def __init__(
        self,
        trigger: RunTrigger,
        perform_run: Callable[[], RunOutcome],
        logger,
        cancel_event: threading.Event,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.trigger = trigger
        self.perform_run = perform_run
        self.logger = logger
        self.cancel_event = cancel_event
        self.clock = clock

    def run(self) -> int:
        if isinstance(self.trigger, OnceTrigger):
            self.logger.info("No schedule configured, running once.")
            try:
                return outcome_exit_code(self.perform_run())
            except BackupError as exc:
                self.logger.error(str(exc))
                return 1

        return self._run_recurring(self.trigger)

    def _run_recurring(self, trigger: RecurringTrigger) -> int:
        self.logger.info("Running backups with schedule: %s", trigger.schedule)

        while not self.cancel_event.is_set():
            now = self.clock()
            next_run = trigger.next_run_after(now)
            delay = max(0.0, (next_run - now).total_seconds())
            self.logger.info("Next backup run at %s", next_run.isoformat(timespec="seconds"))

            if self.cancel_event.wait(delay):
                break

            try:
                outcome = self.perform_run()
            except BackupError as exc:
                self.logger.error("Backup run aborted: %s", exc)
                continue

            if outcome.cancelled:
                break

        self.logger.info("Scheduler stopped.")
        return 0
