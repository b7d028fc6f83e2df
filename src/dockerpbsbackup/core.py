import logging
import threading
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from rich.console import Console

from .errors import BackupError, ListingError, RunCancelled
from .models import (
    BackupKind,
    BackupSettings,
    BackupStrategy,
    BackupUnit,
    ContainerDescriptor,
    RunOutcome,
)
from .services.archiver import ArchiverService
from .services.classifier import ContainerClassifier, build_marker_table
from .services.command_runner import CommandRunner
from .services.docker_runtime import DockerRuntimeService
from .services.dump_extractor import DatabaseDumpService
from .services.filesystem import FileSystemService
from .services.naming import make_unique_units, resolve_backup_names
from .services.notifier import HealthPingService
from .services.staging import StagingArea
from .services.volumes import VolumeMountResolver

console = Console()
logger = logging.getLogger("dockerpbsbackup")

BackupPlan = Dict[BackupStrategy, List[ContainerDescriptor]]


class BackupRunner:
    """Performs one backup run: list, classify, extract, upload, report."""

    def __init__(
        self,
        settings: BackupSettings,
        runtime=None,
        archiver=None,
        notifier=None,
        staging_factory: Optional[Callable[[], StagingArea]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self.current_phase: Optional[str] = None

        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.command_runner = CommandRunner(logger=logger)
        self.runtime = runtime or DockerRuntimeService(logger=logger, timeout=settings.docker_timeout)
        self.archiver = archiver or ArchiverService(
            settings=settings,
            command_runner=self.command_runner,
            logger=logger,
        )
        self.notifier = notifier or HealthPingService(ping_url=settings.ping_url, logger=logger)
        self.classifier = ContainerClassifier(build_marker_table(settings.database_markers))
        self.dump_service = DatabaseDumpService(
            runtime=self.runtime,
            logger=logger,
            filesystem_service=self.filesystem_service,
        )
        self.volume_resolver = VolumeMountResolver(
            runtime=self.runtime,
            logger=logger,
            host_mount_root=settings.host_mount_root,
        )
        self.staging_factory = staging_factory or self._default_staging

    def _default_staging(self) -> StagingArea:
        return StagingArea(
            filesystem_service=self.filesystem_service,
            logger=logger,
            root=self.settings.staging_root,
        )

    def preflight(self):
        """Fails fast when the archival client cannot be executed."""
        logger.info("Validating %s...", self.settings.archiver_binary)
        self.archiver.validate_environment()

    def _raise_if_cancelled(self):
        if self.cancel_event.is_set():
            raise RunCancelled("Run cancelled.")

    def _run_phase(self, name: str, callback, *args, **kwargs):
        self.current_phase = name
        self._raise_if_cancelled()
        started = time.monotonic()
        logger.debug("Phase %s started", name)

        result = callback(*args, **kwargs)

        logger.debug("Phase %s finished in %.1fs", name, time.monotonic() - started)
        self.current_phase = None
        return result

    def list_containers(self) -> List[ContainerDescriptor]:
        containers = self.runtime.list_containers()
        logger.info("Found %s running container(s)", len(containers))
        return containers

    def classify(self, containers: List[ContainerDescriptor]) -> Tuple[BackupPlan, Dict[str, str]]:
        plan: BackupPlan = {strategy: [] for strategy in BackupStrategy}
        for container in containers:
            strategy = self.classifier.classify(container)
            logger.debug("Container %s (%s) -> %s", container.short_id, container.image, strategy.value)
            plan[strategy].append(container)

        candidates = plan[BackupStrategy.DATABASE_DUMP] + plan[BackupStrategy.VOLUME_COPY]
        names = resolve_backup_names(candidates)

        logger.info(
            "Planned %s database dump(s), %s volume container(s), %s skipped",
            len(plan[BackupStrategy.DATABASE_DUMP]),
            len(plan[BackupStrategy.VOLUME_COPY]),
            len(plan[BackupStrategy.SKIP]),
        )
        return plan, names

    def extract(
        self,
        plan: BackupPlan,
        names: Dict[str, str],
        staging: StagingArea,
        outcome: RunOutcome,
    ) -> List[BackupUnit]:
        for container in plan[BackupStrategy.DATABASE_DUMP]:
            self._raise_if_cancelled()
            succeeded = self.dump_service.backup(
                container,
                names[container.id],
                staging,
                cancel_event=self.cancel_event,
            )
            if not succeeded:
                outcome.error_count += 1

        volume_units: List[BackupUnit] = []
        for container in plan[BackupStrategy.VOLUME_COPY]:
            self._raise_if_cancelled()
            try:
                volume_units.extend(self.volume_resolver.resolve(container, names[container.id]))
            except RunCancelled:
                raise
            except BackupError as exc:
                logger.error("Failed to resolve volumes of %s: %s", container.id, exc)
                outcome.error_count += 1

        return volume_units

    def collect_units(self, staging: StagingArea, volume_units: List[BackupUnit]) -> List[BackupUnit]:
        units: List[BackupUnit] = []
        if staging.has_content:
            units.append(
                BackupUnit(
                    archive_name=self.settings.dump_archive_name,
                    source_path=str(staging.path),
                    kind=BackupKind.DUMP_DIRECTORY,
                )
            )
        units.extend(volume_units)
        return make_unique_units(units)

    def upload(self, units: List[BackupUnit]) -> Optional[int]:
        logger.info("Uploading %s archive(s)", len(units))
        return self.archiver.upload(units, cancel_event=self.cancel_event)

    def report(self, outcome: RunOutcome):
        if outcome.cancelled:
            console.print(f"[bold yellow]Backup run {outcome.run_id} cancelled.[/bold yellow]")
        elif outcome.ok:
            console.print(f"[green]Backup run {outcome.run_id} completed.[/green]")
        else:
            console.print(f"[bold red]Backup run {outcome.run_id} finished with failures.[/bold red]")

        logger.info(
            "Run %s finished: %s error(s), upload exit code %s, %s archive(s)",
            outcome.run_id,
            outcome.error_count,
            "n/a" if outcome.upload_exit_code is None else outcome.upload_exit_code,
            len(outcome.units),
        )

        if outcome.cancelled:
            self.notifier.run_failed("Run cancelled.")
        else:
            self.notifier.run_finished(outcome.error_count, outcome.upload_exit_code)

    def cleanup(self, staging: StagingArea):
        if staging.created:
            logger.info("Removing staging directory %s", staging.path)
        staging.cleanup()

    def run(self) -> RunOutcome:
        outcome = RunOutcome(run_id=uuid.uuid4().hex[:10])
        staging = self.staging_factory()

        console.print(f"[blue]Starting backup run {outcome.run_id}...[/blue]")
        logger.info("Starting backup run %s", outcome.run_id)
        self.notifier.run_started()

        try:
            containers = self._run_phase("listing", self.list_containers)
            plan, names = self._run_phase("classifying", self.classify, containers)
            volume_units = self._run_phase("extracting", self.extract, plan, names, staging, outcome)
            outcome.units = self._run_phase("staged", self.collect_units, staging, volume_units)
            outcome.upload_exit_code = self._run_phase("uploading", self.upload, outcome.units)

        except ListingError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            self.notifier.run_failed(str(exc))
            raise
        except RunCancelled as exc:
            logger.warning("Backup run %s cancelled during %s: %s", outcome.run_id, self.current_phase, exc)
            outcome.cancelled = True
        except Exception:
            logger.exception("Unexpected error during %s", self.current_phase or "run")
            outcome.error_count += 1
        finally:
            self.cleanup(staging)

        self.report(outcome)
        return outcome
