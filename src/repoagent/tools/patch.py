"""Unified diff helpers with guard rails for model-generated patches.

A patch travels through three stages before it touches the working tree:

* :func:`extract_patch` strips prose and fences around the diff body.
* :func:`parse_patch` / :func:`validate_patch` classify every file change and
  check it against the live repository (and optionally the sandbox).
* :func:`apply_patch` hands the diff to ``git apply`` and reports structured
  diagnostics when it does not apply.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from .sandbox import PathError, SessionContext, resolve

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("repoagent.telemetry")

NULL_DEVICE = "/dev/null"

_FENCE_LINE = re.compile(r"^\s*```")
_HUNK_HEADER = re.compile(r"^@@ -(?P<old_start>\d+),(?P<old_count>\d+) \+(?P<new_start>\d+),(?P<new_count>\d+) @@")
_PATCH_FAILED_RE = re.compile(r"error: patch failed: (?P<path>.+?)(?::(?P<line>\d+))?$")
_PATCH_DOES_NOT_APPLY_RE = re.compile(r"error: (?P<path>.+?): patch does not apply")
_HUNK_FAILED_RE = re.compile(r"error: (?P<path>.+?): hunk #(?P<hunk>\d+) failed at (?P<line>-?\d+)")
_ALREADY_EXISTS_RE = re.compile(r"error: (?P<path>.+?): already exists in working directory")
_MISSING_RE = re.compile(r"error: (?P<path>.+?): No such file or directory")


@dataclass(slots=True, frozen=True)
class PatchViolation:
    """Single reason a patch cannot be applied as written."""

    message: str
    path: str | None = None

    def __str__(self) -> str:
        return self.message


class PatchValidationError(ValueError):
    """Raised with every violation found in a patch, never just the first."""

    def __init__(self, violations: Sequence[PatchViolation | str], message: str | None = None) -> None:
        self.violations: List[PatchViolation] = [
            item if isinstance(item, PatchViolation) else PatchViolation(str(item)) for item in violations
        ]
        summary = message or "Patch is not compatible with the current repository state"
        super().__init__(summary)

    def format_violations(self) -> str:
        return "\n".join(f"- {violation.message}" for violation in self.violations)


class PatchFormatError(PatchValidationError):
    """Structural defects: missing headers or malformed hunk headers."""

    def __init__(self, violations: Sequence[PatchViolation | str]) -> None:
        super().__init__(violations, "Patch is not a well-formed unified diff")


class ApplyError(RuntimeError):
    """Raised when ``git apply`` rejects a patch that passed validation."""

    def __init__(
        self,
        patch_text: str,
        diagnostics: str,
        *,
        failing_hunks: Tuple[Mapping[str, Any], ...] = (),
    ) -> None:
        super().__init__(f"Patch failed to apply: {diagnostics or 'unknown error'}")
        self.patch_text = patch_text
        self.diagnostics = diagnostics
        self.failing_hunks = failing_hunks


class ChangeKind(str, Enum):
    CREATE = "create"
    DELETE = "delete"
    MODIFY = "modify"
    RENAME = "rename"


@dataclass(slots=True, frozen=True)
class PatchChange:
    """One file-level change described by a ``---``/``+++`` header pair."""

    kind: ChangeKind
    old_path: str
    new_path: str

    def __post_init__(self) -> None:
        if self.kind is ChangeKind.CREATE:
            valid = not self.old_path and bool(self.new_path)
        elif self.kind is ChangeKind.DELETE:
            valid = bool(self.old_path) and not self.new_path
        elif self.kind is ChangeKind.RENAME:
            valid = bool(self.old_path) and bool(self.new_path) and self.old_path != self.new_path
        else:
            valid = bool(self.old_path) and self.old_path == self.new_path
        if not valid:
            raise ValueError(
                f"Inconsistent {self.kind.value} change: old={self.old_path!r} new={self.new_path!r}"
            )

    @property
    def paths(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(path for path in (self.old_path, self.new_path) if path))


@dataclass(slots=True)
class PatchResult:
    """Outcome of applying a patch to the repository."""

    command: Tuple[str, ...]
    paths: Tuple[str, ...]
    stdout: str
    stderr: str


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def _emit_patch_event(event: str, **fields: Any) -> None:
    """Log a structured telemetry event as one JSON line."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


def _parse_git_apply_failures(output: str) -> Tuple[Mapping[str, Any], ...]:
    """Parse ``git apply`` stderr for failing hunk metadata."""
    if not output:
        return ()
    entries: list[dict[str, Any]] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _HUNK_FAILED_RE.match(line)
        if match:
            entries.append(
                {
                    "path": match.group("path"),
                    "hunk": int(match.group("hunk")),
                    "line": int(match.group("line")),
                    "reason": "hunk_failed",
                }
            )
            continue
        match = _PATCH_FAILED_RE.match(line)
        if match:
            line_text = match.group("line")
            entries.append(
                {
                    "path": match.group("path"),
                    "line": int(line_text) if line_text is not None else None,
                    "reason": "patch_failed",
                }
            )
            continue
        match = _PATCH_DOES_NOT_APPLY_RE.match(line)
        if match:
            entries.append({"path": match.group("path"), "reason": "does_not_apply"})
            continue
        match = _ALREADY_EXISTS_RE.match(line)
        if match:
            entries.append({"path": match.group("path"), "reason": "already_exists"})
            continue
        match = _MISSING_RE.match(line)
        if match:
            entries.append({"path": match.group("path"), "reason": "missing"})
    return tuple(entries)


# ---------------------------------------------------------------- extraction
def _normalise_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def extract_patch(text: str) -> str:
    """Return the diff body of a model response.

    Fence lines are removed, line endings normalised, and everything before
    the first ``--- `` line is dropped.  The result always ends with a newline
    so ``git apply`` accepts the final hunk.
    """
    lines = [line for line in _normalise_line_endings(text).split("\n") if not _FENCE_LINE.match(line)]
    start = next((index for index, line in enumerate(lines) if line.startswith("--- ")), None)
    if start is None:
        raise PatchFormatError([PatchViolation("No unified diff found: missing '--- ' header")])
    if start:
        LOGGER.info("Removing %d lines of non-diff content", start)
    body = "\n".join(lines[start:]).rstrip("\n")
    return f"{body}\n"


# ------------------------------------------------------------------- parsing
def _normalise_diff_path(entry: str) -> str:
    """Translate a diff header operand into a repository-relative path."""
    tokens = entry.strip().split()
    if not tokens:
        return ""
    raw = tokens[0]
    if raw == NULL_DEVICE:
        return raw
    if raw.startswith("a/") or raw.startswith("b/"):
        raw = raw[2:]
    return raw


def _header_pairs(lines: Sequence[str]) -> List[int]:
    """Return indices of ``---`` lines immediately followed by ``+++``."""
    return [
        index
        for index in range(len(lines) - 1)
        if lines[index].startswith("--- ") and lines[index + 1].startswith("+++ ")
    ]


def _classify(old: str, new: str) -> PatchChange | None:
    if old == NULL_DEVICE and new and new != NULL_DEVICE:
        return PatchChange(ChangeKind.CREATE, "", new)
    if new == NULL_DEVICE and old and old != NULL_DEVICE:
        return PatchChange(ChangeKind.DELETE, old, "")
    if old and new and old != NULL_DEVICE and new != NULL_DEVICE:
        kind = ChangeKind.MODIFY if old == new else ChangeKind.RENAME
        return PatchChange(kind, old, new)
    return None


def parse_patch(text: str) -> List[PatchChange]:
    """Classify every file change in ``text``.

    All structural defects are collected and raised together as a
    :class:`PatchFormatError`.
    """
    lines = _normalise_line_endings(text).split("\n")
    defects: List[PatchViolation] = []
    changes: List[PatchChange] = []

    headers = _header_pairs(lines)
    if not headers:
        defects.append(PatchViolation("Patch is missing '--- ' / '+++ ' header pairs"))

    for index in headers:
        old = _normalise_diff_path(lines[index][4:])
        new = _normalise_diff_path(lines[index + 1][4:])
        change = _classify(old, new)
        if change is None:
            defects.append(PatchViolation(f"Invalid file header at line {index + 1}: {lines[index]!r}"))
            continue
        changes.append(change)

    for number, line in enumerate(lines, start=1):
        if line.startswith("@@") and not _HUNK_HEADER.match(line):
            defects.append(PatchViolation(f"Invalid hunk header at line {number}: {line!r}"))

    if defects:
        raise PatchFormatError(defects)
    return changes


def count_changed_lines(text: str) -> int:
    """Count added plus removed lines, ignoring file headers."""
    lines = _normalise_line_endings(text).split("\n")
    header_lines = set()
    for index in _header_pairs(lines):
        header_lines.update((index, index + 1))
    return sum(
        1
        for index, line in enumerate(lines)
        if index not in header_lines and line[:1] in {"+", "-"}
    )


# ---------------------------------------------------------------- validation
def _exists(repo_root: Path, relative: str) -> bool:
    return (repo_root / relative).exists()


def _sandbox_violations(changes: Iterable[PatchChange], context: SessionContext) -> List[PatchViolation]:
    violations: List[PatchViolation] = []
    for change in changes:
        for path in change.paths:
            try:
                resolve(path, context)
            except PathError as error:
                violations.append(PatchViolation(str(error), path=path))
    return violations


def validate_patch(
    patch: str,
    repo_root: Path | str,
    *,
    context: SessionContext | None = None,
    max_changed_lines: int | None = None,
) -> List[PatchViolation]:
    """Check ``patch`` against the live repository and return every violation.

    Structural defects raise :class:`PatchFormatError` instead, because no
    per-file checks are meaningful for a diff that cannot be parsed.
    """
    root = Path(repo_root)
    changes = parse_patch(patch)
    violations: List[PatchViolation] = []

    for change in changes:
        if change.kind is ChangeKind.CREATE:
            if _exists(root, change.new_path):
                violations.append(
                    PatchViolation(
                        f"File '{change.new_path}' already exists but the patch creates it as new",
                        path=change.new_path,
                    )
                )
            continue

        if not _exists(root, change.old_path):
            violations.append(
                PatchViolation(
                    f"File '{change.old_path}' does not exist but the patch modifies or deletes it",
                    path=change.old_path,
                )
            )
        if change.kind is ChangeKind.RENAME and _exists(root, change.new_path):
            violations.append(
                PatchViolation(
                    f"Rename target '{change.new_path}' already exists",
                    path=change.new_path,
                )
            )

    if context is not None:
        violations.extend(_sandbox_violations(changes, context))

    if max_changed_lines is not None:
        changed = count_changed_lines(patch)
        if changed > max_changed_lines:
            violations.append(
                PatchViolation(f"Patch changes {changed} lines, exceeding the limit of {max_changed_lines}")
            )
    return violations


def check_patch(
    patch: str,
    repo_root: Path | str,
    *,
    context: SessionContext | None = None,
    max_changed_lines: int | None = None,
) -> List[PatchChange]:
    """Validate ``patch`` and raise one aggregate error listing every violation."""
    violations = validate_patch(patch, repo_root, context=context, max_changed_lines=max_changed_lines)
    if violations:
        _emit_patch_event(
            "patch_validation_failed",
            stage="repository",
            violations=[violation.message for violation in violations],
        )
        raise PatchValidationError(violations)
    return parse_patch(patch)


# ------------------------------------------------------------------ applying
def apply_patch(patch_text: str, repo_root: Path | str) -> PatchResult:
    """Apply ``patch_text`` with ``git apply`` inside ``repo_root``.

    On failure ``git apply --check`` is run against the same file to collect
    diagnostics, which are logged as telemetry and carried by
    :class:`ApplyError` together with the original patch text.
    """
    root = Path(repo_root).resolve()
    touched = tuple(
        dict.fromkeys(path for change in parse_patch(patch_text) for path in change.paths)
    )
    command: Tuple[str, ...] = ("git", "apply")

    with tempfile.NamedTemporaryFile("w", encoding="utf-8", suffix=".patch", delete=False) as handle:
        handle.write(patch_text)
        handle.flush()
        temp_path = Path(handle.name)

    try:
        result = subprocess.run(
            [*command, str(temp_path)],
            cwd=root,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            dry_run = subprocess.run(
                ["git", "apply", "--check", "--verbose", str(temp_path)],
                cwd=root,
                capture_output=True,
                text=True,
                check=False,
            )
            diagnostics = "\n".join(
                part.strip()
                for part in (result.stderr, dry_run.stderr, dry_run.stdout)
                if part and part.strip()
            )
            failing_hunks = _parse_git_apply_failures(diagnostics)
            _emit_patch_event(
                "patch_apply_failed",
                returncode=result.returncode,
                check_returncode=dry_run.returncode,
                diagnostics=diagnostics,
                failing_hunks=failing_hunks,
                touched_paths=touched,
            )
            raise ApplyError(patch_text, diagnostics, failing_hunks=failing_hunks)

        _emit_patch_event("patch_apply_succeeded", touched_paths=touched)
        return PatchResult(command=command, paths=touched, stdout=result.stdout, stderr=result.stderr)
    finally:
        temp_path.unlink(missing_ok=True)


__all__ = [
    "ApplyError",
    "ChangeKind",
    "PatchChange",
    "PatchFormatError",
    "PatchResult",
    "PatchValidationError",
    "PatchViolation",
    "apply_patch",
    "check_patch",
    "count_changed_lines",
    "extract_patch",
    "parse_patch",
    "validate_patch",
]
