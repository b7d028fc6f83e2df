"""Backup name resolution for containers."""

import re
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, List, Sequence, Set

from dockerpbsbackup.constants import LABEL_BACKUP_NAME, LABEL_SWARM_SERVICE_NAME
from dockerpbsbackup.models import BackupUnit, ContainerDescriptor

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_archive_name(name: str) -> str:
    """Strips slashes and replaces characters the archive format rejects."""
    cleaned = name.replace("/", "").strip()
    return _UNSAFE_CHARS.sub("-", cleaned)


def resolve_display_name(container: ContainerDescriptor) -> str:
    labels = container.labels or {}

    for label in (LABEL_BACKUP_NAME, LABEL_SWARM_SERVICE_NAME):
        candidate = sanitize_archive_name(labels.get(label) or "")
        if candidate:
            return candidate

    if container.names:
        candidate = sanitize_archive_name(container.names[0].lstrip("/"))
        if candidate:
            return candidate

    return sanitize_archive_name(container.id)


def resolve_backup_names(containers: Iterable[ContainerDescriptor]) -> Dict[str, str]:
    """Returns container id -> unique backup name for one run.

    Containers sharing a display name all get their short id appended, so
    the result does not depend on listing order.
    """
    resolved = {container.id: resolve_display_name(container) for container in containers}
    counts = Counter(resolved.values())

    unique: Dict[str, str] = {}
    for container_id, name in resolved.items():
        if counts[name] > 1:
            unique[container_id] = f"{name}-{sanitize_archive_name(container_id[:12])}"
        else:
            unique[container_id] = name
    return unique


def make_unique_units(units: Sequence[BackupUnit]) -> List[BackupUnit]:
    """Gives every unit of a run its own archive name.

    Volume archives are named ``<backup name>_<volume>``, which can clash with
    another container's volume or with the dump archive. Every clashing unit
    that belongs to a container gets that container's short id appended, and
    whatever still clashes gets a numeric suffix.
    """
    counts = Counter(unit.archive_name for unit in units)
    tagged = [
        replace(unit, archive_name=f"{unit.archive_name}-{sanitize_archive_name(unit.container_id)}")
        if counts[unit.archive_name] > 1 and unit.container_id
        else unit
        for unit in units
    ]

    taken: Set[str] = set()
    unique: List[BackupUnit] = []
    for unit in tagged:
        name = unit.archive_name
        suffix = 2
        while name in taken:
            name = f"{unit.archive_name}-{suffix}"
            suffix += 1
        taken.add(name)
        unique.append(unit if name == unit.archive_name else replace(unit, archive_name=name))
    return unique
