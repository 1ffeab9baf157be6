"""Tool integrations exposed to the agent runtime."""

from .commands import CommandResult, CommandTimeoutError, run_shell
from .dispatcher import ToolDispatcher, ToolExecutionError, ToolOutcome, ToolSpec
from .gates import GateReport, GateResult, run_gates
from .journal import JournalEntry, append_entry, read_entries
from .patch import (
    ApplyError,
    ChangeKind,
    PatchChange,
    PatchFormatError,
    PatchResult,
    PatchValidationError,
    PatchViolation,
    apply_patch,
    check_patch,
    extract_patch,
    parse_patch,
    validate_patch,
)
from .sandbox import PathError, PathErrorKind, SessionContext, resolve
from .vcs import GitError, GitRepository, GitStatus
from .workflow import CleanupReport, FinalizeResult, GitWorkflow, branch_name_for

__all__ = [
    "ApplyError",
    "ChangeKind",
    "CleanupReport",
    "CommandResult",
    "CommandTimeoutError",
    "FinalizeResult",
    "GateReport",
    "GateResult",
    "GitError",
    "GitRepository",
    "GitStatus",
    "GitWorkflow",
    "JournalEntry",
    "PatchChange",
    "PatchFormatError",
    "PatchResult",
    "PatchValidationError",
    "PatchViolation",
    "PathError",
    "PathErrorKind",
    "SessionContext",
    "ToolDispatcher",
    "ToolExecutionError",
    "ToolOutcome",
    "ToolSpec",
    "append_entry",
    "apply_patch",
    "branch_name_for",
    "check_patch",
    "extract_patch",
    "parse_patch",
    "read_entries",
    "resolve",
    "run_gates",
    "run_shell",
    "validate_patch",
]
