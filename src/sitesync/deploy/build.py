"""Static site build stage."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import structlog

from sitesync.core.config import Settings
from sitesync.core.exceptions import BuildError, CommandError, CommandTimeoutError
from sitesync.utils.process import run_command

logger = structlog.get_logger()


class SiteBuilder:
    """Runs the site generator against a snapshot.

    An optional install command (site dependencies) runs first. The
    artifact is ``output_dir`` inside the snapshot.
    """

    def __init__(
        self,
        build_argv: List[str],
        *,
        install_argv: Optional[List[str]] = None,
        output_dir: str = "_site",
        build_timeout: float = 600.0,
        install_timeout: float = 900.0,
    ):
        if not build_argv:
            raise ValueError("build command is required")
        self.build_argv = list(build_argv)
        self.install_argv = list(install_argv) if install_argv else None
        self.output_dir = output_dir
        self.build_timeout = build_timeout
        self.install_timeout = install_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SiteBuilder":
        return cls(
            settings.build_argv,
            install_argv=settings.install_argv,
            output_dir=settings.build_output_dir,
            build_timeout=settings.build_timeout_seconds,
            install_timeout=settings.install_timeout_seconds,
        )

    def _run(self, step: str, argv: List[str], snapshot: Path, timeout: float) -> str:
        try:
            result = run_command(argv, cwd=snapshot, timeout=timeout)
        except CommandTimeoutError as exc:
            raise BuildError(f"{step} timed out after {timeout:g}s", output=exc.output, code="timeout") from exc
        except CommandError as exc:
            raise BuildError(f"{step} failed: {exc}", output=exc.output) from exc
        logger.info("Build step finished", step=step, duration_seconds=round(result.duration_seconds, 2))
        return result.output

    def build(self, snapshot: Path) -> Path:
        if self.install_argv:
            logger.info("Installing site dependencies")
            self._run("dependency install", self.install_argv, snapshot, self.install_timeout)

        logger.info("Building site")
        output = self._run("site build", self.build_argv, snapshot, self.build_timeout)

        artifact = snapshot / self.output_dir
        if not artifact.is_dir():
            raise BuildError(f"build produced no {self.output_dir}/ directory", output=output)
        return artifact
