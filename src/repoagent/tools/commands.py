"""Bounded shell command execution for tools and quality gates."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 120_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 300_000
OUTPUT_LIMIT = 8_000


class CommandTimeoutError(RuntimeError):
    """Raised when a command exceeds its wall-clock budget and was killed."""

    def __init__(self, command: str, timeout_ms: int) -> None:
        super().__init__(f"Command timed out after {timeout_ms}ms: {command}")
        self.command = command
        self.timeout_ms = timeout_ms


@dataclass(slots=True)
class CommandResult:
    """Exit code and truncated output of one shell command."""

    command: str
    cwd: Path
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> Dict[str, object]:
        return {"exitCode": self.exit_code, "stdout": self.stdout, "stderr": self.stderr}


def clamp_timeout(timeout_ms: int | None) -> int:
    if timeout_ms is None:
        return DEFAULT_TIMEOUT_MS
    return max(MIN_TIMEOUT_MS, min(MAX_TIMEOUT_MS, int(timeout_ms)))


def truncate_output(text: str | bytes | None, limit: int = OUTPUT_LIMIT) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[:limit]


def _merge_env(extra: Mapping[str, str] | None) -> Dict[str, str]:
    env: Dict[str, str] = os.environ.copy()
    if extra:
        env.update({str(key): str(value) for key, value in extra.items()})
    return env


def run_shell(
    command: str,
    cwd: Path,
    *,
    timeout_ms: int | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``command`` through the shell in ``cwd`` with a hard timeout.

    The child is killed when the timeout elapses and
    :class:`CommandTimeoutError` is raised.  A nonzero exit code is reported
    in the result, not raised.
    """
    budget = clamp_timeout(timeout_ms)
    LOGGER.info("Executing: %s (cwd=%s, timeout=%dms)", command, cwd, budget)
    try:
        process = subprocess.run(  # noqa: S602  # commands come from config or the session model
            command,
            cwd=cwd,
            shell=True,
            capture_output=True,
            text=True,
            check=False,
            timeout=budget / 1000,
            env=_merge_env(env),
        )
    except subprocess.TimeoutExpired as error:
        LOGGER.error("Command timed out after %dms: %s", budget, command)
        raise CommandTimeoutError(command, budget) from error

    return CommandResult(
        command=command,
        cwd=cwd,
        exit_code=process.returncode,
        stdout=truncate_output(process.stdout),
        stderr=truncate_output(process.stderr),
    )


__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "MAX_TIMEOUT_MS",
    "MIN_TIMEOUT_MS",
    "OUTPUT_LIMIT",
    "CommandResult",
    "CommandTimeoutError",
    "clamp_timeout",
    "run_shell",
    "truncate_output",
]
