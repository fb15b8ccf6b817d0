"""Models for inbound deployment triggers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class DeploymentRequest:
    """A notification exactly as received. ``body`` is never re-serialized."""

    body: bytes
    event_type: str = "push"
    signature: Optional[str] = None
    override_key: Optional[str] = None

    @property
    def has_override(self) -> bool:
        return bool(self.override_key)


class AuthMethod(str, Enum):
    SIGNATURE = "signature"
    OVERRIDE = "override"


@dataclass(frozen=True)
class Authorized:
    method: AuthMethod


@dataclass(frozen=True)
class Unauthorized:
    reason: str


AuthResult = Union[Authorized, Unauthorized]


class RepositoryInfo(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    default_branch: str = Field(min_length=1)
    full_name: Optional[str] = None


class PushEvent(BaseModel):
    """The subset of a push notification used to decide on a deployment."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    ref: str = Field(min_length=1)
    repository: RepositoryInfo
    after: Optional[str] = None

    @property
    def default_branch_ref(self) -> str:
        return f"refs/heads/{self.repository.default_branch}"


@dataclass(frozen=True)
class UnknownEvent:
    event_type: str


Event = Union[PushEvent, UnknownEvent]


@dataclass(frozen=True)
class Proceed:
    event: Optional[PushEvent] = None


@dataclass(frozen=True)
class Ignore:
    reason: str


@dataclass(frozen=True)
class Malformed:
    reason: str


FilterResult = Union[Proceed, Ignore, Malformed]


def _new_run_id() -> str:
    return uuid.uuid4().hex[:12]


class DeploymentTrigger(BaseModel):
    """A validated request forwarded from the trigger to a worker."""

    model_config = ConfigDict(frozen=True)

    runId: str = Field(default_factory=_new_run_id)
    source: AuthMethod
    ref: Optional[str] = None
    commit: Optional[str] = None
    receivedAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
