"""Dispatcher contract between the trigger endpoint and deployment workers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from sitesync.trigger.models import DeploymentTrigger


class AckStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AckResult:
    status: AckStatus
    runId: str
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status is AckStatus.ACCEPTED

    @classmethod
    def accept(cls, run_id: str) -> "AckResult":
        return cls(AckStatus.ACCEPTED, run_id)

    @classmethod
    def reject(cls, run_id: str, reason: str) -> "AckResult":
        return cls(AckStatus.REJECTED, run_id, reason)


@dataclass(frozen=True)
class RetryPolicy:
    """How often a failed hand-off is retried. One attempt means no retry.

    Only the hand-off is retried; a deployment that fails inside the worker
    is never re-run automatically.
    """

    max_attempts: int = 1
    backoff_seconds: float = 0.3

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay(self, attempt: int) -> float:
        """Backoff to wait after failed ``attempt`` (1-based)."""
        return self.backoff_seconds * (2 ** (attempt - 1))


@runtime_checkable
class Dispatcher(Protocol):
    """Forwards a validated trigger to an independent execution context.

    ``dispatch`` returns as soon as the hand-off succeeded or definitively
    failed; it never waits for the deployment itself.
    """

    name: str

    def dispatch(self, trigger: DeploymentTrigger) -> AckResult:
        ...

    def shutdown(self, wait: bool = True) -> None:
        ...
