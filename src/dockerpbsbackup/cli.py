import logging
import os
import signal
import threading

import click
from rich.logging import RichHandler

from .core import BackupRunner
from .errors import BackupError, ConfigurationError
from .scheduler import Scheduler, resolve_trigger
from .services.config_loader import ConfigLoader

DEFAULT_CONFIG_FILE = ".dockerpbsbackup.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


def _install_signal_handlers(cancel_event: threading.Event, logger):
    previous = {}

    def _handle(signum, _frame):
        logger.warning("Received %s, cancelling after the current operation...", signal.Signals(signum).name)
        cancel_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        previous[signum] = signal.signal(signum, _handle)
    return previous


def _restore_signal_handlers(previous):
    for signum, handler in previous.items():
        signal.signal(signum, handler)


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
)


@click.command()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--repository", envvar="PBS_BACKUP_REPOSITORY", help="Proxmox Backup Server repository.")
@click.option("--namespace", envvar="PBS_BACKUP_NAMESPACE", help="Namespace inside the repository.")
@click.option(
    "--password-file",
    envvar="PBS_BACKUP_PASSWORD_FILE",
    type=click.Path(),
    help="File holding the repository password, passed as PBS_PASSWORD_FILE.",
)
@click.option(
    "--host-mount-root",
    envvar="PBS_BACKUP_HOST_MOUNT_ROOT",
    help="Directory where the host filesystem is mounted inside this container, e.g. /mnt.",
)
@click.option(
    "--schedule",
    envvar="PBS_BACKUP_SCHEDULE",
    help="Cron expression for recurring runs. Without it a single run is performed.",
)
@click.option("--ping-url", envvar="PBS_BACKUP_PING_URL", help="Health ping URL notified on run state.")
@click.option("--fingerprint", envvar="PBS_BACKUP_FINGERPRINT", help="Backup server certificate fingerprint.")
@click.option(
    "--staging-root",
    envvar="PBS_BACKUP_STAGING_ROOT",
    type=click.Path(),
    help="Directory in which the per-run staging directory is created.",
)
@click.option("--once", is_flag=True, default=False, help="Ignore the schedule and run a single backup.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def main(
    config,
    repository,
    namespace,
    password_file,
    host_mount_root,
    schedule,
    ping_url,
    fingerprint,
    staging_root,
    once,
    verbose,
    log_file,
):
    """Back up running Docker containers to a Proxmox Backup Server."""
    logger = logging.getLogger("dockerpbsbackup")
    config_loader = ConfigLoader()

    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    values = dict(config_values)
    values.update(
        {
            "repository": _resolve_option(repository, config_values, "repository"),
            "namespace": _resolve_option(namespace, config_values, "namespace"),
            "password_file": _resolve_option(password_file, config_values, "password_file"),
            "host_mount_root": _resolve_option(host_mount_root, config_values, "host_mount_root"),
            "schedule": _resolve_option(schedule, config_values, "schedule"),
            "ping_url": _resolve_option(ping_url, config_values, "ping_url"),
            "fingerprint": _resolve_option(fingerprint, config_values, "fingerprint"),
            "staging_root": _resolve_option(staging_root, config_values, "staging_root"),
        }
    )
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        settings = config_loader.build_settings(values)
        trigger = resolve_trigger(None if once else settings.schedule)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    cancel_event = threading.Event()
    runner = BackupRunner(settings=settings, cancel_event=cancel_event)

    try:
        runner.preflight()
    except BackupError as exc:
        raise click.ClickException(str(exc)) from exc

    previous_handlers = _install_signal_handlers(cancel_event, logger)
    try:
        exit_code = Scheduler(trigger, runner.run, logger, cancel_event).run()
    finally:
        _restore_signal_handlers(previous_handlers)

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
