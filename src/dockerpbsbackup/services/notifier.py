"""Health ping notifications for backup runs."""

import socket
from typing import Dict, Optional

import requests

from dockerpbsbackup.constants import PING_TIMEOUT


class HealthPingService:
    """Reports run state to a Cronitor-style telemetry URL.

    Pings are best effort: a failing endpoint is logged and never affects
    the backup run.
    """

    STATE_RUN = "run"
    STATE_COMPLETE = "complete"
    STATE_FAIL = "fail"

    def __init__(self, ping_url: Optional[str], logger, requests_module=requests, hostname: Optional[str] = None):
        self.ping_url = ping_url
        self.logger = logger
        self.requests = requests_module
        self.hostname = hostname or socket.gethostname()

    @property
    def enabled(self) -> bool:
        return bool(self.ping_url)

    def run_started(self):
        self._ping(self.STATE_RUN)

    def run_finished(self, error_count: int, upload_exit_code: Optional[int]):
        state = self.STATE_COMPLETE if error_count == 0 and upload_exit_code in (0, None) else self.STATE_FAIL
        params = {"metric": f"error_count:{error_count}"}
        if upload_exit_code is not None:
            params["status_code"] = str(upload_exit_code)
        self._ping(state, params)

    def run_failed(self, message: Optional[str] = None):
        params = {"message": message[:1000]} if message else None
        self._ping(self.STATE_FAIL, params)

    def _ping(self, state: str, extra: Optional[Dict[str, str]] = None):
        if not self.enabled:
            return

        params = {"state": state, "host": self.hostname}
        if extra:
            params.update(extra)

        try:
            response = self.requests.get(self.ping_url, params=params, timeout=PING_TIMEOUT)
            response.raise_for_status()
            self.logger.debug("Sent %s ping", state)
        except self.requests.RequestException as exc:
            self.logger.warning("Could not send %s ping: %s", state, exc)
