"""Deployment pipeline: fetch, build and publish under a process-wide lock."""

from .build import SiteBuilder
from .fetch import ArchiveFetcher, GitFetcher, create_fetcher, extract_archive
from .lock import DeploymentLock, get_deployment_lock
from .models import DeploymentRun, DeploymentState, RunOutcome, RunStatus
from .orchestrator import DeploymentOrchestrator
from .publish import RsyncPublisher

__all__ = [
    "ArchiveFetcher",
    "GitFetcher",
    "create_fetcher",
    "extract_archive",
    "SiteBuilder",
    "RsyncPublisher",
    "DeploymentLock",
    "get_deployment_lock",
    "DeploymentRun",
    "DeploymentState",
    "RunOutcome",
    "RunStatus",
    "DeploymentOrchestrator",
]
