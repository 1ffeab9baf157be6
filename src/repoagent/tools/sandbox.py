"""Path resolution guard rails for model-driven filesystem access.

Every path a tool receives comes from untrusted model output.  The resolver
anchors it under the repository root and, for mutating operations, under one
of the configured allowlist prefixes.  Matching is segment-bounded, so the
prefix ``scripts`` admits ``scripts/x.py`` but not ``scripts-extra/x.py``.
"""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, AbstractSet, Iterable

if TYPE_CHECKING:
    from ..backlog import Task


class PathErrorKind(str, Enum):
    """Reasons a path can be rejected by the sandbox."""

    EMPTY = "empty"
    OUTSIDE_ROOT = "outside_root"
    NOT_ALLOWED = "not_allowed"
    INVALID = "invalid"


class PathError(ValueError):
    """Raised when a tool path is rejected by the sandbox; ``kind`` says why."""

    def __init__(self, kind: PathErrorKind, path: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.path = path


@dataclass(slots=True, frozen=True)
class SessionContext:
    """Explicit per-session state threaded through every tool call."""

    repository_root: Path
    allowed_paths: frozenset[str] = frozenset()
    current_task: "Task | None" = None

    @classmethod
    def create(
        cls,
        repository_root: Path | str,
        allowed_paths: Iterable[str] = (),
        current_task: "Task | None" = None,
    ) -> "SessionContext":
        """Build a context with an absolute root and normalized prefixes."""
        root = Path(os.path.abspath(repository_root))
        prefixes = frozenset(normalize_allowed_path(entry) for entry in allowed_paths)
        return cls(repository_root=root, allowed_paths=prefixes, current_task=current_task)

    def relative(self, path: Path) -> str:
        """Return ``path`` relative to the root in POSIX form (``.`` for the root)."""
        relative = Path(os.path.relpath(path, self.repository_root)).as_posix()
        return relative


def normalize_allowed_path(prefix: str) -> str:
    """Normalize an allowlist entry; ``""``, ``.`` and ``/`` mean the whole repository."""
    cleaned = prefix.replace("\\", "/").strip()
    if not cleaned:
        return ""
    normalized = posixpath.normpath(cleaned).lstrip("/")
    if normalized in {"", "."}:
        return ""
    return normalized.rstrip("/")


def is_path_allowed(relative_path: str, allowed: AbstractSet[str] | Iterable[str]) -> bool:
    """Return ``True`` when ``relative_path`` lies under one of ``allowed``."""
    prefixes = list(allowed)
    if not prefixes:
        return True
    target = normalize_allowed_path(relative_path)
    for base in prefixes:
        if base == "" or target == base or target.startswith(f"{base}/"):
            return True
    return False


def resolve(input_path: str, context: SessionContext, enforce_allowed: bool = True) -> Path:
    """Resolve ``input_path`` to an absolute path inside the sandbox.

    Raises :class:`PathError` with kind ``EMPTY`` for blank input,
    ``OUTSIDE_ROOT`` when the path (or its symlink target) leaves the
    repository root, ``NOT_ALLOWED`` when ``enforce_allowed`` is set and
    the path is not covered by the allowlist, and ``INVALID`` when the OS
    cannot represent or resolve the path at all.
    """
    if input_path is None or not str(input_path).strip():
        raise PathError(PathErrorKind.EMPTY, "", "Path cannot be empty")

    relative = str(input_path).strip().replace("\\", "/").lstrip("/")
    if "\x00" in relative:
        raise PathError(PathErrorKind.INVALID, str(input_path), "Path contains a NUL byte")
    root = context.repository_root
    candidate = Path(os.path.normpath(root / relative))

    try:
        real = candidate.resolve()
    except (OSError, RuntimeError, ValueError) as error:
        message = f"Cannot resolve path '{input_path}': {error}"
        raise PathError(PathErrorKind.INVALID, str(input_path), message) from error

    if not _within(candidate, root) or not _within(real, root.resolve()):
        raise PathError(
            PathErrorKind.OUTSIDE_ROOT,
            str(input_path),
            f"Access outside repository root is not allowed: '{input_path}'",
        )

    normalized = context.relative(candidate)
    if enforce_allowed and not is_path_allowed(normalized, context.allowed_paths):
        raise PathError(
            PathErrorKind.NOT_ALLOWED,
            normalized,
            f"Path '{normalized}' is not allowed by configuration",
        )
    return candidate


def _within(path: Path, root: Path) -> bool:
    return path == root or path.is_relative_to(root)


__all__ = [
    "PathError",
    "PathErrorKind",
    "SessionContext",
    "is_path_allowed",
    "normalize_allowed_path",
    "resolve",
]
