"""Configuration loading for docker-pbs-backup."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from dockerpbsbackup.constants import DEFAULT_DATABASE_MARKERS
from dockerpbsbackup.errors import ConfigurationError
from dockerpbsbackup.errors_catalog import actionable_error
from dockerpbsbackup.models import BackupSettings


class ConfigLoader:
    """Loads YAML configuration files and builds validated settings."""

    SUPPORTED_KEYS = {
        "repository",
        "namespace",
        "password_file",
        "host_mount_root",
        "schedule",
        "ping_url",
        "fingerprint",
        "staging_root",
        "dump_archive_name",
        "database_markers",
        "archiver_binary",
        "docker_timeout",
        "verbose",
        "log_file",
    }

    REQUIRED_SETTINGS = {
        "repository": ("repository", "PBS_BACKUP_REPOSITORY"),
        "namespace": ("namespace", "PBS_BACKUP_NAMESPACE"),
        "password_file": ("password-file", "PBS_BACKUP_PASSWORD_FILE"),
        "host_mount_root": ("host-mount-root", "PBS_BACKUP_HOST_MOUNT_ROOT"),
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigurationError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigurationError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def build_settings(self, values: Dict[str, Any]) -> BackupSettings:
        for key, (flag, envvar) in self.REQUIRED_SETTINGS.items():
            if not values.get(key):
                raise ConfigurationError(
                    actionable_error("missing_option", option=key, flag=flag, envvar=envvar)
                )

        password_file = str(values["password_file"])
        if not os.path.isfile(password_file):
            raise ConfigurationError(actionable_error("password_file_not_found", path=password_file))

        markers = values.get("database_markers") or DEFAULT_DATABASE_MARKERS
        if isinstance(markers, str):
            markers = markers.split(",")
        markers = tuple(str(marker).strip() for marker in markers if str(marker).strip())
        if not markers:
            raise ConfigurationError("`database_markers` must contain at least one marker.")

        optional = {
            key: values[key]
            for key in ("dump_archive_name", "archiver_binary")
            if values.get(key)
        }
        if values.get("docker_timeout") is not None:
            try:
                optional["docker_timeout"] = int(values["docker_timeout"])
            except (TypeError, ValueError) as exc:
                raise ConfigurationError("`docker_timeout` must be a number of seconds.") from exc

        return BackupSettings(
            repository=str(values["repository"]),
            namespace=str(values["namespace"]),
            password_file=password_file,
            host_mount_root=str(values["host_mount_root"]),
            schedule=values.get("schedule") or None,
            ping_url=values.get("ping_url") or None,
            fingerprint=values.get("fingerprint") or None,
            staging_root=values.get("staging_root") or None,
            database_markers=markers,
            **optional,
        )
