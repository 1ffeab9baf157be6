"""Minimal git helpers.

The helpers below provide just enough structure to inspect the working tree,
manage agent branches, and record commits.  Every command runs with the
repository root as its working directory; nothing depends on the process cwd.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Set

import subprocess


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


@dataclass(slots=True)
class GitStatus:
    """Summary of the working tree used by the CLI and the orchestrator."""

    current_branch: str | None
    has_uncommitted_changes: bool
    has_untracked_files: bool

    @property
    def is_clean(self) -> bool:
        return not self.has_uncommitted_changes and not self.has_untracked_files


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = ["git", *args]
        try:
            process = subprocess.run(
                command,
                cwd=self.root,
                capture_output=True,
                text=False,
                check=False,
            )
        except OSError as error:
            raise GitError(f"Unable to execute git: {error}") from error
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
        if check and result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self._run_git(["branch", "--show-current"], check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        return branch or None

    def branch_exists(self, name: str) -> bool:
        """Return ``True`` when ``refs/heads/<name>`` exists."""

        result = self._run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{name}"], check=False)
        return result.returncode == 0

    def checkout(self, name: str, *, create: bool = False) -> None:
        """Switch to ``name``, creating it from ``HEAD`` when ``create`` is set."""

        args: List[str] = ["checkout"]
        if create:
            args.append("-b")
        args.append(name)
        self._run_git(args, check=True)

    def list_branches(self, pattern: str | None = None) -> List[str]:
        """Return local branch names, optionally filtered by a glob ``pattern``."""

        args: List[str] = ["branch", "--list", "--format=%(refname:short)"]
        if pattern:
            args.append(pattern)
        result = self._run_git(args, check=True)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def delete_branch(self, name: str, *, force: bool = False) -> None:
        """Delete the local branch ``name``."""

        if name == self.current_branch():
            raise GitError(f"Cannot delete current branch: {name}")
        self._run_git(["branch", "-D" if force else "-d", name], check=True)

    # ------------------------------------------------------------- repo status
    def _status_entries(self) -> List[tuple[str, Path]]:
        result = self._run_git(["status", "--porcelain"], check=True)
        entries: List[tuple[str, Path]] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            status_clean = status.strip() or status
            entries.append((status_clean, Path(raw_path.strip().strip('"'))))
        return entries

    def status_short(self) -> str:
        """Return ``git status --short`` output verbatim."""

        return self._run_git(["status", "--short"], check=True).stdout

    def status_summary(self) -> GitStatus:
        """Classify pending changes into tracked modifications and untracked files."""

        entries = self._status_entries()
        return GitStatus(
            current_branch=self.current_branch(),
            has_uncommitted_changes=any(status != "??" for status, _ in entries),
            has_untracked_files=any(status == "??" for status, _ in entries),
        )

    def working_tree_changes(self, *, include_untracked: bool = True) -> List[Path]:
        """Return the set of paths with pending modifications."""

        entries = self._status_entries()
        paths: Set[Path] = set()
        for status, path in entries:
            if status == "??" and not include_untracked:
                continue
            paths.add(path)
        return sorted(paths, key=lambda item: item.as_posix())

    def has_changes(self, *, include_untracked: bool = True) -> bool:
        """Return ``True`` when there are working tree changes."""

        return bool(self.working_tree_changes(include_untracked=include_untracked))

    def is_clean(self, *, include_untracked: bool = True) -> bool:
        """Return ``True`` when the working tree has no pending changes."""

        return not self.working_tree_changes(include_untracked=include_untracked)

    def tracked_files(self) -> List[str]:
        """Return tracked and untracked-but-not-ignored files, sorted."""

        result = self._run_git(["ls-files", "--cached", "--others", "--exclude-standard"], check=True)
        return sorted({line.strip() for line in result.stdout.splitlines() if line.strip()})

    # -------------------------------------------------------------- commits
    def short_head(self, length: int = 7) -> str:
        """Return the abbreviated ``HEAD`` commit hash."""

        result = self._run_git(["rev-parse", f"--short={length}", "HEAD"], check=True)
        return result.stdout.strip()

    def commit_all(self, message: str) -> str | None:
        """Add all changes to the index and create a commit.

        Returns the new commit SHA when a commit was created.  Returns ``None``
        when there were no changes to commit.
        """

        self._run_git(["add", "--all"], check=True)
        return self._commit(["commit", "-m", message])

    def commit_paths(self, message: str, paths: Sequence[str]) -> str | None:
        """Stage and commit only ``paths``; ``None`` when nothing was staged."""

        # Ignored paths make ``git add`` fail; they simply stay uncommitted.
        self._run_git(["add", "--", *paths], check=False)
        staged = self._run_git(["diff", "--cached", "--quiet", "--", *paths], check=False)
        if staged.returncode == 0:
            return None
        return self._commit(["commit", "-m", message, "--", *paths])

    def _commit(self, commit_args: List[str]) -> str | None:
        commit = self._run_git(commit_args, check=False)
        if commit.returncode != 0:
            output = commit.stderr.strip() or commit.stdout.strip() or ""
            if "nothing to commit" in output.lower():
                return None
            raise GitError(f"git commit failed: {output}")

        rev = self._run_git(["rev-parse", "HEAD"], check=True)
        return rev.stdout.strip()

    # -------------------------------------------------------------- remotes
    def push(self, remote: str, branch: str, *, set_upstream: bool = False) -> None:
        """Push ``branch`` to ``remote``, optionally recording it as upstream."""

        args: List[str] = ["push"]
        if set_upstream:
            args.append("-u")
        args.extend([remote, branch])
        self._run_git(args, check=True)


__all__ = ["GitError", "GitRepository", "GitStatus"]
