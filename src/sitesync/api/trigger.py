"""Inbound trigger endpoint: authenticate, filter, hand off, acknowledge."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from pydantic import BaseModel

from sitesync.dispatch import Dispatcher
from sitesync.trigger import (
    Authenticator,
    DeploymentRequest,
    DeploymentTrigger,
    EventFilter,
    Ignore,
    Malformed,
    Unauthorized,
)


router = APIRouter()
logger = structlog.get_logger()

TRIGGER_REQUESTS = Counter(
    "sitesync_trigger_requests_total",
    "Trigger requests by result",
    ["result"],
)


class TriggerResponse(BaseModel):
    status: str
    reason: Optional[str] = None
    runId: Optional[str] = None


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


def get_event_filter(request: Request) -> EventFilter:
    return request.app.state.event_filter


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def _respond(status_code: int, result: str, reason: Optional[str] = None, run_id: Optional[str] = None) -> JSONResponse:
    TRIGGER_REQUESTS.labels(result=result).inc()
    body = TriggerResponse(status=result, reason=reason, runId=run_id)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@router.post("/sync", response_model=TriggerResponse, status_code=202)
async def sync_endpoint(
    req: Request,
    authenticator: Authenticator = Depends(get_authenticator),
    event_filter: EventFilter = Depends(get_event_filter),
    dispatcher: Dispatcher = Depends(get_dispatcher),
    signature_256: str | None = Header(default=None, alias="X-Hub-Signature-256"),
    signature_1: str | None = Header(default=None, alias="X-Hub-Signature"),
    override_key: str | None = Header(default=None, alias="X-Deploy-Key"),
    event_type: str | None = Header(default=None, alias="X-GitHub-Event"),
):
    # Raw bytes are authenticated before anything parses them.
    body = await req.body()
    request = DeploymentRequest(
        body=body,
        event_type=event_type if event_type is not None else "push",
        signature=signature_256 or signature_1,
        override_key=override_key,
    )

    auth = authenticator.authenticate(request)
    if isinstance(auth, Unauthorized):
        logger.warning("Request did not meet criteria", reason=auth.reason)
        return _respond(403, "rejected", auth.reason)

    decision = event_filter.should_deploy(request, auth)
    if isinstance(decision, Malformed):
        return _respond(400, "malformed", decision.reason)
    if isinstance(decision, Ignore):
        logger.info("Ignoring event", reason=decision.reason)
        return _respond(200, "ignored", decision.reason)

    event = decision.event
    trigger = DeploymentTrigger(
        source=auth.method,
        ref=event.ref if event else None,
        commit=event.after if event else None,
    )
    loop = asyncio.get_running_loop()
    ack = await loop.run_in_executor(None, dispatcher.dispatch, trigger)
    if not ack.accepted:
        logger.error("Failed to hand off deployment", run_id=ack.runId, reason=ack.reason)
        return _respond(503, "dispatch_failed", ack.reason, ack.runId)

    logger.info("Deployment accepted", run_id=ack.runId, source=auth.method.value, commit=trigger.commit)
    return _respond(202, "accepted", run_id=ack.runId)
