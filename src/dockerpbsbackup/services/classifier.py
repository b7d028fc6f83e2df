"""Backup strategy selection for running containers."""

from typing import Dict, Iterable, Mapping, Optional

from dockerpbsbackup.constants import DEFAULT_DATABASE_MARKERS, LABEL_EXCLUDE
from dockerpbsbackup.models import BackupStrategy, ContainerDescriptor

TRUTHY_LABEL_VALUES = {"1", "true", "yes", "on"}


def build_marker_table(
    database_markers: Iterable[str] = DEFAULT_DATABASE_MARKERS,
) -> Dict[str, BackupStrategy]:
    return {
        marker.strip(): BackupStrategy.DATABASE_DUMP
        for marker in database_markers
        if marker and marker.strip()
    }


class ContainerClassifier:
    """Maps a container to exactly one backup strategy.

    The image reference is matched by substring against a marker table;
    the first marker found decides. Anything unmatched is copied at the
    volume level, and the ``backup.exclude`` label opts a container out.
    """

    def __init__(self, marker_table: Optional[Mapping[str, BackupStrategy]] = None):
        self.marker_table = dict(marker_table) if marker_table is not None else build_marker_table()

    def classify(self, container: ContainerDescriptor) -> BackupStrategy:
        if self.is_excluded(container):
            return BackupStrategy.SKIP

        image = container.image or ""
        for marker, strategy in self.marker_table.items():
            if marker in image:
                return strategy

        return BackupStrategy.VOLUME_COPY

    @staticmethod
    def is_excluded(container: ContainerDescriptor) -> bool:
        value = (container.labels or {}).get(LABEL_EXCLUDE, "")
        return value.strip().lower() in TRUTHY_LABEL_VALUES
