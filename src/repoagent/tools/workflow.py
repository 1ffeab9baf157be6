"""Branch lifecycle, finalize and cleanup for agent-owned branches."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from ..utils.slug import slugify
from .journal import DEFAULT_JOURNAL_FILE, JournalEntry, append_entry
from .vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

DEFAULT_BRANCH_PREFIX = "ai/"
BRANCH_SLUG_LENGTH = 64


def branch_name_for(description: str, prefix: str = DEFAULT_BRANCH_PREFIX) -> str:
    """Derive the agent branch name for a task description."""
    return f"{prefix}{slugify(description, fallback='task', max_length=BRANCH_SLUG_LENGTH)}"


@dataclass(slots=True)
class FinalizeResult:
    """Outcome of :meth:`GitWorkflow.finalize`."""

    committed: bool
    commit_hash: str | None = None
    journal_entry: JournalEntry | None = None
    pushed: bool = False
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"committed": self.committed}
        if self.commit_hash:
            payload["commitHash"] = self.commit_hash
        if self.pushed:
            payload["pushed"] = True
        if self.message:
            payload["message"] = self.message
        return payload


@dataclass(slots=True)
class CleanupReport:
    """Branches touched (or that would be touched) by :meth:`GitWorkflow.cleanup`."""

    dry_run: bool
    deleted: List[str] = field(default_factory=list)
    planned: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class GitWorkflow:
    """Coordinates agent branches, commits, the journal, and pushes."""

    def __init__(
        self,
        repo: GitRepository,
        *,
        branch_prefix: str = DEFAULT_BRANCH_PREFIX,
        journal_path: Path | str = DEFAULT_JOURNAL_FILE,
        remote: str = "origin",
    ) -> None:
        self.repo = repo
        self.branch_prefix = branch_prefix
        journal = Path(journal_path)
        self.journal_path = journal if journal.is_absolute() else repo.root / journal
        self.remote = remote

    def branch_name(self, description: str) -> str:
        return branch_name_for(description, self.branch_prefix)

    def ensure_branch(self, name: str) -> None:
        """Switch to ``name``, creating it when it does not exist yet."""
        if self.repo.current_branch() == name:
            LOGGER.info("Already on branch %s", name)
            return
        if self.repo.branch_exists(name):
            LOGGER.info("Branch %s exists, switching to it", name)
            self.repo.checkout(name)
        else:
            LOGGER.info("Creating new branch %s", name)
            self.repo.checkout(name, create=True)

    def finalize(self, commit_message: str, task_description: str, *, push: bool = False) -> FinalizeResult:
        """Commit all pending changes and append a journal entry.

        A clean working tree yields ``committed=False`` without touching git or
        the journal.  Push failures raise :class:`GitError`.
        """
        message = commit_message.strip()
        if not message:
            raise ValueError("commit_message is required")

        if not self.repo.status_short().strip():
            return FinalizeResult(committed=False, message="No changes to commit")

        sha = self.repo.commit_all(message)
        if sha is None:
            return FinalizeResult(committed=False, message="No changes to commit")

        short_hash = self.repo.short_head()
        entry = JournalEntry.now(task_description, short_hash)
        append_entry(self.journal_path, entry)
        self._commit_journal(short_hash)
        LOGGER.info("Committed %s for task '%s'", short_hash, task_description)

        pushed = False
        if push:
            branch = self.repo.current_branch()
            if branch is None:
                raise GitError("Cannot push from a detached HEAD")
            self.repo.push(self.remote, branch, set_upstream=True)
            pushed = True

        return FinalizeResult(
            committed=True,
            commit_hash=short_hash,
            journal_entry=entry,
            pushed=pushed,
        )

    def _commit_journal(self, short_hash: str) -> None:
        try:
            relative = self.journal_path.resolve().relative_to(self.repo.root)
        except ValueError:
            return
        self.repo.commit_paths(f"chore(journal): record {short_hash}", [relative.as_posix()])

    def cleanup(self, *, dry_run: bool = False) -> CleanupReport:
        """Force-delete agent branches other than the current one."""
        report = CleanupReport(dry_run=dry_run)
        current = self.repo.current_branch()
        for branch in self.repo.list_branches(f"{self.branch_prefix}*"):
            if branch == current:
                LOGGER.warning("Skipping current branch: %s", branch)
                report.skipped.append(branch)
                continue
            if dry_run:
                report.planned.append(branch)
                continue
            try:
                self.repo.delete_branch(branch, force=True)
            except GitError as error:
                LOGGER.error("Failed to delete %s: %s", branch, error)
                report.failed[branch] = str(error)
            else:
                report.deleted.append(branch)
        return report


__all__ = [
    "BRANCH_SLUG_LENGTH",
    "DEFAULT_BRANCH_PREFIX",
    "CleanupReport",
    "FinalizeResult",
    "GitWorkflow",
    "branch_name_for",
]
