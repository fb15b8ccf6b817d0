"""Bounded execution of external commands."""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

import structlog

from sitesync.core.exceptions import CommandError, CommandTimeoutError

logger = structlog.get_logger()


@dataclass(frozen=True)
class CommandResult:
    argv: tuple
    returncode: int
    output: str
    duration_seconds: float


def _decode(data: Union[bytes, str, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def run_command(
    argv: Sequence[str],
    *,
    timeout: float,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
) -> CommandResult:
    """Run a command to completion with stdout and stderr combined.

    Raises CommandTimeoutError if the command outlives ``timeout`` (the child
    is killed) and CommandError on a non-zero exit. Both carry the captured
    output. Standard input is closed so a tool can never block on a prompt.
    """
    argv = [str(a) for a in argv]
    if not argv:
        raise ValueError("empty command")

    full_env = None
    if env:
        full_env = {**os.environ, **env}

    logger.debug("Running command", command=argv[0], cwd=str(cwd) if cwd else None, timeout=timeout)
    start = time.monotonic()
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            env=full_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        output = _decode(exc.output)
        raise CommandTimeoutError(
            f"{argv[0]} timed out after {timeout:g}s", output=output, timeout=timeout
        ) from exc
    except FileNotFoundError as exc:
        raise CommandError(f"{argv[0]}: command not found") from exc

    duration = time.monotonic() - start
    output = _decode(proc.stdout)
    if proc.returncode != 0:
        raise CommandError(
            f"{argv[0]} exited with status {proc.returncode}",
            output=output,
            returncode=proc.returncode,
        )
    return CommandResult(tuple(argv), proc.returncode, output, duration)
