"""Deployment orchestration: fetch, build and publish under the deployment lock."""

from __future__ import annotations

import shutil
import tempfile
import time
import uuid
from pathlib import Path
from typing import Callable, Optional, TypeVar

import structlog
from prometheus_client import Counter, Histogram
from structlog.contextvars import bound_contextvars

from sitesync.core.config import Settings
from sitesync.core.exceptions import BusyError, StageError
from sitesync.deploy.build import SiteBuilder
from sitesync.deploy.fetch import SourceFetcher, create_fetcher
from sitesync.deploy.lock import DeploymentLock, get_deployment_lock
from sitesync.deploy.models import DeploymentRun, DeploymentState, RunOutcome, RunStatus
from sitesync.deploy.publish import RsyncPublisher
from sitesync.trigger.models import DeploymentTrigger

logger = structlog.get_logger()

T = TypeVar("T")

DEPLOYMENT_RUNS = Counter(
    "sitesync_deployment_runs_total",
    "Deployment runs by terminal status",
    ["status", "stage"],
)

STAGE_DURATION = Histogram(
    "sitesync_deployment_stage_seconds",
    "Duration of deployment stages",
    ["stage"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200),
)


class DeploymentOrchestrator:
    """Runs Fetching -> Building -> Publishing, aborting on the first failure.

    Each run owns a fresh workspace directory that is removed before the
    deployment lock is released, whatever the outcome. A run arriving while
    another holds the lock ends immediately as ``busy``. There is no retry.
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        builder: SiteBuilder,
        publisher: RsyncPublisher,
        *,
        lock: Optional[DeploymentLock] = None,
        work_dir: Optional[str] = None,
    ):
        self.fetcher = fetcher
        self.builder = builder
        self.publisher = publisher
        self.lock = lock or get_deployment_lock()
        self.work_dir = work_dir

    @classmethod
    def from_settings(cls, settings: Settings, lock: Optional[DeploymentLock] = None) -> "DeploymentOrchestrator":
        return cls(
            create_fetcher(settings),
            SiteBuilder.from_settings(settings),
            RsyncPublisher.from_settings(settings),
            lock=lock,
            work_dir=settings.work_dir,
        )

    def run(self, trigger: Optional[DeploymentTrigger] = None) -> RunOutcome:
        run_id = trigger.runId if trigger else uuid.uuid4().hex[:12]
        context = {"run_id": run_id}
        if trigger:
            context["trigger"] = trigger.source.value
        with bound_contextvars(**context):
            started = time.monotonic()
            try:
                with self.lock.hold(run_id):
                    outcome = self._execute(DeploymentRun(runId=run_id), started)
            except BusyError as exc:
                logger.info("Deployment rejected, another run is in progress", holder=self.lock.holder)
                DEPLOYMENT_RUNS.labels(status=RunStatus.BUSY.value, stage="").inc()
                return RunOutcome(runId=run_id, status=RunStatus.BUSY, error=str(exc))

            DEPLOYMENT_RUNS.labels(
                status=outcome.status.value,
                stage=outcome.failedStage.value if outcome.failedStage else "",
            ).inc()
            return outcome

    def _transition(self, run: DeploymentRun, state: DeploymentState, **details: str) -> None:
        previous = run.state
        run.advance(state, details or None)
        logger.info("Deployment state changed", previous=previous.value, state=state.value)

    def _stage(self, run: DeploymentRun, fn: Callable[[Path], T], arg: Path) -> T:
        stage_started = time.monotonic()
        try:
            return fn(arg)
        finally:
            STAGE_DURATION.labels(stage=run.state.value).observe(time.monotonic() - stage_started)

    def _execute(self, run: DeploymentRun, started: float) -> RunOutcome:
        error: Optional[str] = None
        output: Optional[str] = None
        try:
            self._transition(run, DeploymentState.FETCHING)
            run.workspace = Path(tempfile.mkdtemp(prefix=f"sitesync-{run.runId}-", dir=self.work_dir))
            run.snapshot_path = self._stage(run, self.fetcher.fetch, run.workspace)

            self._transition(run, DeploymentState.BUILDING)
            run.artifact_path = self._stage(run, self.builder.build, run.snapshot_path)

            self._transition(run, DeploymentState.PUBLISHING)
            self._stage(run, self.publisher.publish, run.artifact_path)

            self._transition(run, DeploymentState.SUCCEEDED)
        except StageError as exc:
            error, output = str(exc), exc.output
            stage = run.state
            self._transition(run, DeploymentState.FAILED, error=error)
            logger.error("Deployment failed", stage=stage.value, error=error, output=output or None)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            stage = run.state
            self._transition(run, DeploymentState.FAILED, error=error)
            logger.exception("Deployment failed unexpectedly", stage=stage.value)
        finally:
            self._cleanup(run)

        duration = time.monotonic() - started
        if run.state is DeploymentState.SUCCEEDED:
            logger.info("Deployment succeeded", duration_seconds=round(duration, 2))
            return RunOutcome(runId=run.runId, status=RunStatus.SUCCEEDED, duration_seconds=duration)
        return RunOutcome(
            runId=run.runId,
            status=RunStatus.FAILED,
            failedStage=run.failedStage,
            error=error,
            output=output,
            duration_seconds=duration,
        )

    def _cleanup(self, run: DeploymentRun) -> None:
        if run.workspace is None:
            return
        try:
            shutil.rmtree(run.workspace)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Failed to remove run workspace", workspace=str(run.workspace))
        else:
            logger.debug("Run workspace removed", workspace=str(run.workspace))
