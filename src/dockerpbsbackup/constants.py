"""Shared constants for docker-pbs-backup."""

LABEL_BACKUP_NAME = "backup.name"
LABEL_SWARM_SERVICE_NAME = "com.docker.swarm.service.name"
LABEL_POSTGRES_USER = "backup.postgres_user"
LABEL_EXCLUDE = "backup.exclude"

DEFAULT_DATABASE_MARKERS = ("postgres", "pgvecto-rs")
DEFAULT_POSTGRES_USER = "postgres"
POSTGRES_USER_ENV = "POSTGRES_USER"

CONTAINER_DUMP_PATH = "/postgres.dump"
DUMP_FILE_SUFFIX = ".dump"
DEFAULT_DUMP_ARCHIVE_NAME = "dockerProxmoxBackup"

ARCHIVER_BINARY = "proxmox-backup-client"
ARCHIVE_SUFFIX = ".pxar"
PASSWORD_FILE_ENV = "PBS_PASSWORD_FILE"
FINGERPRINT_ENV = "PBS_FINGERPRINT"

STAGING_PREFIX = "dockerpbsbackup-"
STAGING_DIR_MODE = 0o700

DEFAULT_DOCKER_TIMEOUT = 600
PING_TIMEOUT = 10
TERMINATE_GRACE_SECONDS = 10.0

EXIT_COMMAND_NOT_FOUND = 127
EXIT_CANCELLED = 130
