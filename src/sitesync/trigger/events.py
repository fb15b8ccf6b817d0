"""Decide whether an authorized request should cause a deployment."""

from __future__ import annotations

import json
from typing import Optional

import structlog
from pydantic import ValidationError

from sitesync.core.exceptions import MalformedEventError
from sitesync.trigger.models import (
    AuthMethod,
    Authorized,
    DeploymentRequest,
    Event,
    FilterResult,
    Ignore,
    Malformed,
    Proceed,
    PushEvent,
    UnknownEvent,
)

logger = structlog.get_logger()


def parse_event(event_type: str, body: bytes) -> Event:
    """Parse a notification body into a closed set of event variants.

    Only push events are decoded; every other type is an UnknownEvent
    regardless of its payload. Raises MalformedEventError for push payloads
    that are not JSON objects or lack ``ref`` / ``repository.default_branch``.
    """
    if event_type != "push":
        return UnknownEvent(event_type=event_type)

    try:
        data = json.loads(body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedEventError(f"body is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("body is not a JSON object")

    try:
        return PushEvent.model_validate(data)
    except ValidationError as exc:
        missing = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise MalformedEventError(f"missing or invalid field(s): {', '.join(missing)}") from exc


class EventFilter:
    """Matches push events against the deployed repository and branch."""

    def __init__(self, repository: Optional[str] = None, branch: Optional[str] = None):
        self.repository = repository
        self.branch = branch

    def should_deploy(self, request: DeploymentRequest, auth: Authorized) -> FilterResult:
        if auth.method is AuthMethod.OVERRIDE:
            return Proceed()

        try:
            event = parse_event(request.event_type, request.body)
        except MalformedEventError as exc:
            logger.warning("Malformed push event", reason=str(exc))
            return Malformed(str(exc))

        if isinstance(event, UnknownEvent):
            return Ignore(f"not a push event: {event.event_type or '<none>'}")

        if (
            self.repository
            and event.repository.full_name
            and event.repository.full_name.lower() != self.repository.lower()
        ):
            return Ignore(f"not the deployed repository: {event.repository.full_name}")

        if event.ref != event.default_branch_ref:
            return Ignore(f"not {event.repository.default_branch} branch: {event.ref}")

        # The worker always deploys the configured branch.
        if self.branch and event.repository.default_branch != self.branch:
            return Ignore(f"default branch {event.repository.default_branch} is not the deployed branch {self.branch}")

        return Proceed(event)
