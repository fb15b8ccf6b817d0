"""Trigger side: authentication and event filtering of inbound notifications."""

from .auth import Authenticator
from .events import EventFilter, parse_event
from .models import (
    AuthMethod,
    Authorized,
    DeploymentRequest,
    DeploymentTrigger,
    Ignore,
    Malformed,
    Proceed,
    PushEvent,
    Unauthorized,
    UnknownEvent,
)

__all__ = [
    "Authenticator",
    "EventFilter",
    "parse_event",
    "AuthMethod",
    "Authorized",
    "Unauthorized",
    "DeploymentRequest",
    "DeploymentTrigger",
    "Proceed",
    "Ignore",
    "Malformed",
    "PushEvent",
    "UnknownEvent",
]
