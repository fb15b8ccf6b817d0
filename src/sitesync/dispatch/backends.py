"""Dispatcher backends: in-process worker threads and asynchronous Lambda invocation."""

from __future__ import annotations

import threading
import time
from typing import Any, Optional, Set

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError
from structlog.contextvars import bound_contextvars

from sitesync.core.config import Settings
from sitesync.core.exceptions import ConfigurationError, DispatchError
from sitesync.deploy.orchestrator import DeploymentOrchestrator
from sitesync.dispatch.dispatcher import AckResult, Dispatcher, RetryPolicy
from sitesync.trigger.models import DeploymentTrigger

logger = structlog.get_logger()


class BackgroundDispatcher:
    """Runs each accepted trigger on its own worker thread in this process.

    Runs are not queued: every thread goes straight to the orchestrator,
    whose deployment lock turns overlapping runs into ``busy`` outcomes.
    """

    name = "background"

    def __init__(self, orchestrator: DeploymentOrchestrator):
        self.orchestrator = orchestrator
        self._threads: Set[threading.Thread] = set()
        self._guard = threading.Lock()
        self._closed = False

    def _work(self, trigger: DeploymentTrigger) -> None:
        try:
            with bound_contextvars(run_id=trigger.runId):
                self.orchestrator.run(trigger)
        except Exception:
            logger.exception("Worker thread crashed", run_id=trigger.runId)
        finally:
            with self._guard:
                self._threads.discard(threading.current_thread())

    def dispatch(self, trigger: DeploymentTrigger) -> AckResult:
        with self._guard:
            if self._closed:
                return AckResult.reject(trigger.runId, "dispatcher is shut down")
            thread = threading.Thread(
                target=self._work,
                args=(trigger,),
                name=f"sitesync-run-{trigger.runId}",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError as exc:
                logger.error("Failed to start worker thread", run_id=trigger.runId, error=str(exc))
                return AckResult.reject(trigger.runId, f"worker unavailable: {exc}")
            self._threads.add(thread)
        logger.info("Deployment dispatched", run_id=trigger.runId, backend=self.name)
        return AckResult.accept(trigger.runId)

    def shutdown(self, wait: bool = True) -> None:
        with self._guard:
            self._closed = True
            threads = list(self._threads)
        if wait:
            for thread in threads:
                thread.join()


class LambdaDispatcher:
    """Hands triggers to a separately deployed worker function.

    Uses an asynchronous ``Event`` invocation so Lambda acknowledges with
    202 once the payload is queued, long before the deployment finishes.

    The in-process deployment lock does not span execution environments, so
    the function must have a reserved concurrency of exactly one. Lambda
    then holds overlapping events in its queue and runs them one at a time.
    """

    name = "lambda"

    def __init__(
        self,
        function_name: str,
        *,
        region: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
        client: Any = None,
    ):
        self.function_name = function_name
        self.retry = retry or RetryPolicy()
        self._client = client or boto3.client("lambda", region_name=region)
        self._check_concurrency()

    def _check_concurrency(self) -> None:
        try:
            resp = self._client.get_function_concurrency(FunctionName=self.function_name)
        except (BotoCoreError, ClientError) as exc:
            raise ConfigurationError(
                f"cannot read reserved concurrency of {self.function_name}: {exc}", code="config"
            ) from exc
        reserved = resp.get("ReservedConcurrentExecutions")
        if reserved != 1:
            raise ConfigurationError(
                f"worker function {self.function_name} must have reserved concurrency 1, found {reserved}",
                code="config",
            )

    def dispatch(self, trigger: DeploymentTrigger) -> AckResult:
        payload = trigger.model_dump_json().encode("utf-8")
        reason = "not attempted"
        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                resp = self._client.invoke(
                    FunctionName=self.function_name,
                    InvocationType="Event",
                    Payload=payload,
                )
                status = resp.get("StatusCode")
                if status != 202:
                    raise DispatchError(f"worker invocation returned status {status}", code="bad_status")
                logger.info(
                    "Deployment dispatched",
                    run_id=trigger.runId,
                    backend=self.name,
                    function=self.function_name,
                    attempt=attempt,
                )
                return AckResult.accept(trigger.runId)
            except DispatchError as exc:
                reason = str(exc)
            except (BotoCoreError, ClientError) as exc:
                reason = f"worker invocation failed: {exc}"

            logger.warning("Dispatch attempt failed", run_id=trigger.runId, attempt=attempt, error=reason)
            if attempt < self.retry.max_attempts:
                time.sleep(self.retry.delay(attempt))

        return AckResult.reject(trigger.runId, reason)

    def shutdown(self, wait: bool = True) -> None:
        return None


def create_dispatcher(settings: Settings, orchestrator: Optional[DeploymentOrchestrator] = None) -> Dispatcher:
    """Build the dispatcher selected by ``DISPATCH_BACKEND``."""
    if settings.dispatch_backend == "lambda":
        return LambdaDispatcher(
            settings.worker_function_name,
            region=settings.aws_region,
            retry=RetryPolicy(settings.dispatch_max_attempts, settings.dispatch_backoff_seconds),
        )
    if orchestrator is None:
        orchestrator = DeploymentOrchestrator.from_settings(settings)
    return BackgroundDispatcher(orchestrator)
