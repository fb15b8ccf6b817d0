"""Process-wide guard allowing at most one active deployment run."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from sitesync.core.exceptions import BusyError

logger = structlog.get_logger()


class DeploymentLock:
    """Non-blocking mutual exclusion for deployment runs.

    A run that cannot take the lock is rejected, never queued.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._holder: Optional[str] = None

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, run_id: str) -> Iterator[None]:
        """Hold the lock for ``run_id``; raises BusyError if already held."""
        if not self._lock.acquire(blocking=False):
            raise BusyError(f"deployment {self._holder} already in progress")
        self._holder = run_id
        logger.debug("Deployment lock acquired", run_id=run_id)
        try:
            yield
        finally:
            self._holder = None
            self._lock.release()
            logger.debug("Deployment lock released", run_id=run_id)


_process_lock = DeploymentLock()


def get_deployment_lock() -> DeploymentLock:
    return _process_lock
