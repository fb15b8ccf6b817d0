"""Models for deployment runs."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field


class DeploymentState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    BUILDING = "building"
    PUBLISHING = "publishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS = {
    DeploymentState.IDLE: {DeploymentState.FETCHING},
    DeploymentState.FETCHING: {DeploymentState.BUILDING, DeploymentState.FAILED},
    DeploymentState.BUILDING: {DeploymentState.PUBLISHING, DeploymentState.FAILED},
    DeploymentState.PUBLISHING: {DeploymentState.SUCCEEDED, DeploymentState.FAILED},
    DeploymentState.SUCCEEDED: set(),
    DeploymentState.FAILED: set(),
}


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BUSY = "busy"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentRun(BaseModel):
    """One end-to-end execution of fetch, build and publish."""

    runId: str
    state: DeploymentState = DeploymentState.IDLE
    failedStage: Optional[DeploymentState] = None
    workspace: Optional[Path] = None
    snapshot_path: Optional[Path] = None
    artifact_path: Optional[Path] = None
    createdAt: datetime = Field(default_factory=_utcnow)
    updatedAt: datetime = Field(default_factory=_utcnow)
    details: Dict[str, str] = Field(default_factory=dict)

    def advance(self, state: DeploymentState, details: Optional[Dict[str, str]] = None) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"invalid transition {self.state.value} -> {state.value}")
        if state is DeploymentState.FAILED:
            self.failedStage = self.state
        self.state = state
        self.updatedAt = _utcnow()
        if details:
            self.details.update(details)


class RunOutcome(BaseModel):
    """Terminal result of a run as reported to operators."""

    runId: str
    status: RunStatus
    failedStage: Optional[DeploymentState] = None
    error: Optional[str] = None
    output: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED
