"""Fetch a deployable snapshot of the source repository into a run workspace."""

from __future__ import annotations

import gzip
import os
import shutil
import tarfile
import time
import zipfile
import zlib
from pathlib import Path
from typing import Dict, Optional, Protocol, Type

import httpx
import structlog

from sitesync.core.config import Settings
from sitesync.core.exceptions import (
    ArchiveError,
    CommandError,
    CommandTimeoutError,
    FetchError,
    FetchIOError,
    FetchStatusError,
    FetchTransportError,
)
from sitesync.utils.process import run_command

logger = structlog.get_logger()


class SourceFetcher(Protocol):
    def fetch(self, workspace: Path) -> Path:
        """Place a snapshot inside ``workspace`` and return its root directory."""
        ...


def _member_target(base: Path, name: str) -> Path:
    member_path = Path(name)
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ArchiveError(f"archive contains unsafe path: {name}")
    target = (base / member_path).resolve()
    if target != base and base not in target.parents:
        raise ArchiveError(f"archive entry escapes destination: {name}")
    return target


def _safe_extract_zip(zf: zipfile.ZipFile, dest_dir: Path) -> None:
    base = dest_dir.resolve()
    for member in zf.infolist():
        target = _member_target(base, member.filename)
        if member.is_dir():
            target.mkdir(parents=True, exist_ok=True)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(member, "r") as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)


def _safe_extract_tar(tf: tarfile.TarFile, dest_dir: Path) -> None:
    base = dest_dir.resolve()
    for member in tf:
        target = _member_target(base, member.name)
        if member.isdir():
            target.mkdir(parents=True, exist_ok=True)
        elif member.isfile():
            target.parent.mkdir(parents=True, exist_ok=True)
            src = tf.extractfile(member)
            if src is None:
                raise ArchiveError(f"unreadable archive entry: {member.name}")
            with src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
            os.chmod(target, (member.mode & 0o755) | 0o600)
        else:
            # Links and special files are never materialized.
            logger.warning("Skipping non-regular archive entry", entry=member.name, type=member.type.decode())


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a .tar(.gz) or .zip archive and return its single top-level directory."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        if zipfile.is_zipfile(archive_path):
            with zipfile.ZipFile(archive_path, "r") as zf:
                _safe_extract_zip(zf, dest_dir)
        else:
            with tarfile.open(archive_path, "r:*") as tf:
                _safe_extract_tar(tf, dest_dir)
    except ArchiveError:
        raise
    except (tarfile.TarError, zipfile.BadZipFile, gzip.BadGzipFile, EOFError, zlib.error) as exc:
        raise ArchiveError(f"corrupt archive: {exc}") from exc
    except OSError as exc:
        raise FetchIOError(f"failed to extract archive: {exc}") from exc

    entries = list(dest_dir.iterdir())
    if len(entries) != 1 or not entries[0].is_dir():
        raise ArchiveError(
            f"unexpected archive structure: expected one top-level directory, found {len(entries)} entries"
        )
    return entries[0]


def download_to_path(
    url: str,
    dest_path: Path,
    *,
    headers: Optional[Dict[str, str]] = None,
    max_size_bytes: int = 200 * 1024 * 1024,
    total_timeout_sec: float = 120.0,
    max_retries: int = 3,
    backoff_base: float = 0.3,
    transport: Optional[httpx.BaseTransport] = None,
) -> int:
    """Stream ``url`` into ``dest_path`` and return the number of bytes written.

    Transport failures and 5xx answers are retried with bounded exponential
    backoff inside ``total_timeout_sec``; 4xx answers fail immediately.
    """
    start = time.monotonic()
    attempt = 0
    last_error: Optional[FetchError] = None

    while attempt < max_retries:
        remaining = total_timeout_sec - (time.monotonic() - start)
        if remaining <= 0:
            break
        attempt += 1
        try:
            logger.info("Downloading source archive", url=url, attempt=attempt)
            with httpx.Client(timeout=httpx.Timeout(remaining), transport=transport, headers=headers) as client:
                with client.stream("GET", url, follow_redirects=True) as resp:
                    resp.raise_for_status()
                    bytes_written = 0
                    with open(dest_path, "wb") as f:
                        for chunk in resp.iter_bytes():
                            if not chunk:
                                continue
                            bytes_written += len(chunk)
                            if bytes_written > max_size_bytes:
                                raise ArchiveError("source archive exceeds maximum allowed size")
                            f.write(chunk)
                            if time.monotonic() - start > total_timeout_sec:
                                raise FetchTransportError(f"download exceeded {total_timeout_sec:g}s")
            logger.info("Downloaded source archive", bytes=bytes_written)
            return bytes_written
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            last_error = FetchStatusError(f"GET {url} returned {status}", status_code=status)
            last_error.__cause__ = exc
            if status < 500:
                raise last_error
        except httpx.TransportError as exc:
            last_error = FetchTransportError(f"GET {url} failed: {exc}")
            last_error.__cause__ = exc
        except OSError as exc:
            raise FetchIOError(f"failed to write archive: {exc}") from exc

        remaining = total_timeout_sec - (time.monotonic() - start)
        logger.warning(
            "Fetch attempt failed",
            attempt=attempt,
            error=str(last_error),
            remaining_time_sec=max(0.0, remaining),
        )
        if attempt >= max_retries or remaining <= 0:
            break
        time.sleep(min(backoff_base * (2 ** (attempt - 1)), max(0.0, remaining)))

    if last_error is None:
        last_error = FetchTransportError(f"GET {url} not attempted within {total_timeout_sec:g}s")
    raise last_error


class ArchiveFetcher:
    """Downloads a point-in-time archive of the branch into a fresh directory."""

    archive_name = "source.archive"

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        max_size_bytes: int = 200 * 1024 * 1024,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.max_size_bytes = max_size_bytes
        self._transport = transport
        self._headers = {"Authorization": f"token {token}"} if token else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ArchiveFetcher":
        return cls(
            settings.archive_url,
            token=settings.github_token.get_secret_value() if settings.github_token else None,
            timeout=settings.fetch_timeout_seconds,
            max_attempts=settings.fetch_max_attempts,
            max_size_bytes=settings.max_archive_size_mb * 1024 * 1024,
        )

    def fetch(self, workspace: Path) -> Path:
        archive = workspace / self.archive_name
        try:
            download_to_path(
                self.url,
                archive,
                headers=self._headers,
                max_size_bytes=self.max_size_bytes,
                total_timeout_sec=self.timeout,
                max_retries=self.max_attempts,
                transport=self._transport,
            )
            snapshot = extract_archive(archive, workspace / "src")
        finally:
            archive.unlink(missing_ok=True)
        logger.info("Source snapshot extracted", snapshot=str(snapshot))
        return snapshot


class GitFetcher:
    """Updates a persistent clone in place and exports its tip into the workspace."""

    archive_name = "source.tar"

    def __init__(self, repo_path: str, branch: str, *, timeout: float = 120.0):
        self.repo_path = Path(repo_path)
        self.branch = branch
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitFetcher":
        return cls(settings.repo_path, settings.source_branch, timeout=settings.fetch_timeout_seconds)

    def _git(self, *args: str, error: Type[FetchError] = FetchTransportError) -> None:
        env = {"GIT_TERMINAL_PROMPT": "0"}
        try:
            run_command(["git", "-C", str(self.repo_path), *args], timeout=self.timeout, env=env)
        except CommandTimeoutError as exc:
            raise error(f"git {args[0]} timed out: {exc}", output=exc.output, code="timeout") from exc
        except CommandError as exc:
            raise error(f"git {args[0]}: {exc}", output=exc.output) from exc

    def fetch(self, workspace: Path) -> Path:
        if not (self.repo_path / ".git").exists():
            raise FetchIOError(f"{self.repo_path} is not a git clone")

        logger.info("Updating local repository", repo=str(self.repo_path))
        self._git("fetch", "origin", self.branch)
        logger.info("Resetting to latest branch tip", branch=self.branch)
        self._git("reset", "--hard", f"origin/{self.branch}")

        archive = workspace / self.archive_name
        try:
            self._git(
                "archive", "--format=tar", "--prefix=snapshot/", "-o", str(archive), "HEAD", error=FetchIOError
            )
            snapshot = extract_archive(archive, workspace / "src")
        finally:
            archive.unlink(missing_ok=True)
        logger.info("Source snapshot exported", snapshot=str(snapshot))
        return snapshot


def create_fetcher(settings: Settings) -> SourceFetcher:
    if settings.fetch_strategy == "git":
        return GitFetcher.from_settings(settings)
    return ArchiveFetcher.from_settings(settings)
