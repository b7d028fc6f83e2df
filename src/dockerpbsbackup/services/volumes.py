"""Volume mount resolution for filesystem-level backups."""

import posixpath
from typing import Any, Dict, List, Optional

from dockerpbsbackup.models import BackupKind, BackupUnit, ContainerDescriptor
from dockerpbsbackup.services.naming import sanitize_archive_name

LOCAL_DRIVER = "local"


class VolumeMountResolver:
    """Turns a container's named local volumes into backup units."""

    def __init__(self, runtime, logger, host_mount_root: str):
        self.runtime = runtime
        self.logger = logger
        self.host_mount_root = host_mount_root

    def resolve(self, container: ContainerDescriptor, backup_name: str) -> List[BackupUnit]:
        self.logger.info(
            "Backing up mounts of %s %s", container.short_id, ", ".join(container.names)
        )
        inspect = self.runtime.inspect_container(container.id) or {}
        host_mounts = (inspect.get("HostConfig") or {}).get("Mounts") or []
        live_mounts = inspect.get("Mounts") or []

        units: List[BackupUnit] = []
        for host_mount in host_mounts:
            if host_mount.get("Type") != "volume":
                continue

            volume_name = host_mount.get("Source") or ""
            if self.is_remote(host_mount):
                self.logger.debug("Skipping non-local volume %s of %s", volume_name, container.short_id)
                continue

            live_mount = self._find_live_mount(live_mounts, volume_name)
            if live_mount is None:
                self.logger.warning(
                    "Volume %s of %s is declared but not mounted, skipping",
                    volume_name,
                    container.short_id,
                )
                continue

            if (live_mount.get("Driver") or LOCAL_DRIVER) != LOCAL_DRIVER:
                self.logger.debug(
                    "Skipping volume %s of %s using driver %s",
                    volume_name,
                    container.short_id,
                    live_mount.get("Driver"),
                )
                continue

            source = live_mount.get("Source") or ""
            if not source:
                self.logger.warning(
                    "Volume %s of %s reports no host path, skipping",
                    volume_name,
                    container.short_id,
                )
                continue

            path = self.to_host_path(source)
            self.logger.info("Backing up volume %s", path)
            units.append(
                BackupUnit(
                    archive_name=sanitize_archive_name(
                        f"{backup_name}_{live_mount.get('Name') or volume_name}"
                    ),
                    source_path=path,
                    kind=BackupKind.VOLUME,
                    container_id=container.short_id,
                )
            )

        return units

    def to_host_path(self, source: str) -> str:
        return posixpath.join(self.host_mount_root, source.lstrip("/"))

    @staticmethod
    def is_remote(host_mount: Dict[str, Any]) -> bool:
        driver_config = (host_mount.get("VolumeOptions") or {}).get("DriverConfig") or {}
        driver_name = driver_config.get("Name")
        if driver_name and driver_name != LOCAL_DRIVER:
            return True
        return "type" in (driver_config.get("Options") or {})

    @staticmethod
    def _find_live_mount(live_mounts: List[Dict[str, Any]], volume_name: str) -> Optional[Dict[str, Any]]:
        for mount in live_mounts:
            if mount.get("Name") == volume_name:
                return mount
        return None
