"""Quality gate execution for configured project commands.

Gates run best-effort: every configured command executes even when an earlier
one fails, and the caller decides what a failure means.  The patch session
treats them as advisory; the ``gates`` CLI command exits nonzero on failure.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Mapping, Sequence

from .commands import CommandTimeoutError, run_shell

LOGGER = logging.getLogger(__name__)

GateStatus = Literal["passed", "failed", "skipped"]

GATE_ORDER: tuple[str, ...] = ("lint", "typecheck", "test", "build")
GATE_TIMEOUT_MS = 300_000


@dataclass(slots=True)
class GateResult:
    """Result produced by running one gate command."""

    name: str
    command: str
    status: GateStatus
    exit_code: int | None
    stdout: str
    stderr: str

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def short_message(self) -> str:
        if self.status == "passed":
            return f"{self.name}: passed"
        if self.status == "skipped":
            return f"{self.name}: skipped ({self.stderr.strip()})"
        fallback = self.stderr.strip() or self.stdout.strip()
        snippet = fallback.splitlines()[0] if fallback else f"exit code {self.exit_code}"
        return f"{self.name}: failed ({snippet})"


@dataclass(slots=True)
class GateReport:
    """Aggregated result of every gate that ran."""

    results: List[GateResult]

    @property
    def has_failures(self) -> bool:
        return any(result.failed for result in self.results)

    def format_summary(self) -> str:
        if not self.results:
            return "No quality gates configured."
        lines = ["Quality gates:"]
        lines.extend(f"- {result.short_message()}" for result in self.results)
        return "\n".join(lines)


def ordered_gates(commands: Mapping[str, str]) -> List[tuple[str, str]]:
    """Return ``(name, command)`` pairs: the standard gates first, then the rest."""
    ordered = [(name, commands[name]) for name in GATE_ORDER if name in commands]
    ordered.extend((name, command) for name, command in commands.items() if name not in GATE_ORDER)
    return ordered


def run_gate(name: str, command: str, cwd: Path, *, timeout_ms: int = GATE_TIMEOUT_MS) -> GateResult:
    """Run a single gate; blank commands and missing executables are skipped."""
    if not command.strip():
        return GateResult(name, command, "skipped", None, "", "No command configured")

    try:
        executable = shlex.split(command)[0]
    except ValueError:
        executable = command.split()[0]
    if "/" not in executable and "=" not in executable and shutil.which(executable) is None:
        return GateResult(name, command, "skipped", None, "", f"Executable not available: {executable}")

    try:
        result = run_shell(command, cwd, timeout_ms=timeout_ms)
    except CommandTimeoutError as error:
        return GateResult(name, command, "failed", None, "", str(error))

    status: GateStatus = "passed" if result.ok else "failed"
    if status == "failed":
        LOGGER.warning("Quality gate %s failed with exit code %s", name, result.exit_code)
    return GateResult(name, command, status, result.exit_code, result.stdout, result.stderr)


def run_gates(
    commands: Mapping[str, str],
    cwd: Path,
    *,
    only: Sequence[str] | None = None,
) -> GateReport:
    """Run every configured gate in order, continuing past failures."""
    selected = ordered_gates(commands)
    if only:
        wanted = set(only)
        selected = [(name, command) for name, command in selected if name in wanted]
    return GateReport(results=[run_gate(name, command, cwd) for name, command in selected])


__all__ = [
    "GATE_ORDER",
    "GateReport",
    "GateResult",
    "ordered_gates",
    "run_gate",
    "run_gates",
]
