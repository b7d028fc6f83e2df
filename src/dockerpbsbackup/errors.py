"""Domain errors for docker-pbs-backup."""


class BackupError(RuntimeError):
    """Raised when a backup run cannot continue safely."""


class ConfigurationError(BackupError):
    """Raised when the configuration surface is incomplete or invalid."""


class ListingError(BackupError):
    """Raised when running containers cannot be enumerated at all."""


class RunCancelled(BackupError):
    """Raised at the next phase boundary once cancellation was requested."""
