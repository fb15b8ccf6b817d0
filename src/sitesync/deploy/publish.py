"""Mirror a built site onto the remote host."""

from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import List, Optional

import structlog

from sitesync.core.config import Settings
from sitesync.core.exceptions import CommandError, CommandTimeoutError, PublishError
from sitesync.utils.process import run_command

logger = structlog.get_logger()

# rsync reports ssh transport failures (unreachable host, rejected key) as 255.
SSH_FAILURE_EXIT = 255


def as_contents_path(path: Path) -> str:
    """Render ``path`` so rsync copies the directory's contents, not the directory."""
    return str(path).rstrip(os.sep) + os.sep


class RsyncPublisher:
    """Makes the remote target an exact mirror of the artifact directory.

    Files missing from the artifact are deleted remotely. Unchanged files
    are compared by checksum so they are left alone even though every run
    builds from a freshly extracted snapshot.
    """

    def __init__(
        self,
        target: str,
        ssh_key_path: str,
        *,
        known_hosts: Optional[str] = None,
        connect_timeout: int = 15,
        timeout: float = 600.0,
    ):
        self.target = target
        self.ssh_key_path = Path(ssh_key_path)
        self.known_hosts = known_hosts
        self.connect_timeout = connect_timeout
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "RsyncPublisher":
        return cls(
            settings.publish_target,
            settings.ssh_key_path,
            known_hosts=settings.ssh_known_hosts,
            connect_timeout=settings.ssh_connect_timeout_seconds,
            timeout=settings.publish_timeout_seconds,
        )

    def ssh_command(self) -> str:
        args = [
            "ssh",
            "-i", str(self.ssh_key_path),
            "-o", "BatchMode=yes",
            "-o", "IdentitiesOnly=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
        ]
        if self.known_hosts:
            args += ["-o", "StrictHostKeyChecking=yes", "-o", f"UserKnownHostsFile={self.known_hosts}"]
        else:
            args += ["-o", "StrictHostKeyChecking=accept-new"]
        return shlex.join(args)

    def command(self, artifact: Path) -> List[str]:
        return [
            "rsync",
            "-a",
            "--delete",
            "--checksum",
            "-e", self.ssh_command(),
            as_contents_path(artifact),
            self.target,
        ]

    def _check_credentials(self) -> None:
        if not self.ssh_key_path.is_file():
            raise PublishError(f"transport key {self.ssh_key_path} does not exist", code="credentials")
        if not os.access(self.ssh_key_path, os.R_OK):
            raise PublishError(f"transport key {self.ssh_key_path} is not readable", code="credentials")

    def publish(self, artifact: Path) -> None:
        if not artifact.is_dir():
            raise PublishError(f"artifact {artifact} is not a directory")
        self._check_credentials()

        logger.info("Synchronizing built site with remote server", target=self.target)
        try:
            result = run_command(self.command(artifact), timeout=self.timeout)
        except CommandTimeoutError as exc:
            raise PublishError(f"rsync timed out after {self.timeout:g}s", output=exc.output, code="timeout") from exc
        except CommandError as exc:
            if exc.returncode == SSH_FAILURE_EXIT:
                raise PublishError(
                    f"could not connect or authenticate to remote host: {exc}",
                    output=exc.output,
                    code="connection",
                ) from exc
            raise PublishError(f"rsync failed: {exc}", output=exc.output) from exc
        logger.info("Remote mirror updated", duration_seconds=round(result.duration_seconds, 2))
