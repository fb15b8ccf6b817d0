"""Worker entrypoint for deployments handed off to a separate function."""

from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import clear_contextvars

from sitesync.core.config import Settings, load_settings
from sitesync.deploy.orchestrator import DeploymentOrchestrator
from sitesync.trigger.models import DeploymentTrigger
from sitesync.utils.logging import bind_run_context, setup_logging

logger = structlog.get_logger()

_orchestrator: Optional[DeploymentOrchestrator] = None


def _get_orchestrator(settings: Optional[Settings] = None) -> DeploymentOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        settings = settings or load_settings()
        setup_logging(settings.log_level, settings.log_format)
        _orchestrator = DeploymentOrchestrator.from_settings(settings)
    return _orchestrator


def run_trigger(trigger: DeploymentTrigger, orchestrator: DeploymentOrchestrator) -> Dict[str, Any]:
    logger.info("Worker received deployment", run_id=trigger.runId, source=trigger.source.value, ref=trigger.ref)
    outcome = orchestrator.run(trigger)
    return outcome.model_dump(mode="json")


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """AWS Lambda handler invoked asynchronously by LambdaDispatcher.

    The returned outcome is informational only; asynchronous callers never
    see it. A failed run is not raised, so Lambda does not retry it.
    """
    trigger = DeploymentTrigger.model_validate(event)
    # Warm containers reuse the process; drop context from the previous invocation.
    clear_contextvars()
    bind_run_context(trigger.runId, trigger.source.value)
    return run_trigger(trigger, _get_orchestrator())
