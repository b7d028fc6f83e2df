"""Actionable error catalog for docker-pbs-backup."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "missing_option": {
        "what": "Missing required setting `{option}`.",
        "next": "Pass `--{flag}`, set `{envvar}` or add `{option}` to the config file.",
    },
    "password_file_not_found": {
        "what": "Password file not found: {path}",
        "next": "Mount the Proxmox Backup Server password file and point `--password-file` at it.",
    },
    "invalid_schedule": {
        "what": "Invalid cron schedule expression: {schedule}",
        "next": "Use a five-field cron expression such as `0 3 * * *`, or omit it to run once.",
    },
    "docker_unavailable": {
        "what": "Could not connect to the Docker daemon: {error}",
        "next": "Mount `/var/run/docker.sock` or set `DOCKER_HOST` for this process.",
    },
    "listing_failed": {
        "what": "Could not list running containers: {error}",
        "next": "Check that the Docker daemon is reachable and retry the run.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
