"""Health reporting and periodic readiness checks."""

from __future__ import annotations

import threading
from enum import IntEnum
from typing import Any, Callable, Optional


class ServingStatus(IntEnum):
    """Serving states of the standard health-check protocol."""

    UNKNOWN = 0
    SERVING = 1
    NOT_SERVING = 2
    SERVICE_UNKNOWN = 3


class HealthService:
    """A health service that always reports it is serving."""

    def check(self, request: Any = None) -> ServingStatus:
        return ServingStatus.SERVING


class ReadinessChecker:
    """Runs a check function periodically and remembers its outcome.

    The check signals failure by raising. Once a check has passed, the
    checker stays ready; the latest error is still reported.
    """

    def __init__(self, check: Callable[[], Any], interval: float) -> None:
        self._check = check
        self.interval = interval
        self._lock = threading.Lock()
        self._ready = False
        self._error: Optional[BaseException] = None

    def _run_check(self) -> None:
        try:
            self._check()
        except Exception as exc:
            error: Optional[BaseException] = exc
        else:
            error = None
        with self._lock:
            if error is None:
                self._ready = True
            self._error = error

    def start(self, stop_event: threading.Event) -> None:
        """Check now, then every ``interval`` seconds until ``stop_event`` is set."""
        self._run_check()
        while not stop_event.wait(self.interval):
            self._run_check()

    def ready(self) -> tuple[bool, Optional[BaseException]]:
        """Return whether a check has ever passed, and the latest error."""
        with self._lock:
            return self._ready, self._error

    def need_leader_election(self) -> bool:
        return False