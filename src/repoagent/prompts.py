"""Prompt templates for the tool-calling and single-patch sessions."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Sequence

from .backlog import Priority, Task

PATCH_FORMAT_RULES = (
    "Return ONLY one unified diff that `git apply` accepts. No prose, no markdown fences.\n"
    "- Start directly with the '--- ' line of the first file.\n"
    "- Existing files: '--- a/path' and '+++ b/path'.\n"
    "- New files: '--- /dev/null' and '+++ b/path'.\n"
    "- Deleted files: '--- a/path' and '+++ /dev/null'.\n"
    "- Hunk headers must read '@@ -start,count +start,count @@' (new file: '@@ -0,0 +1,N @@').\n"
    "- Check the repository tree before treating a file as new."
)


def render_allowed_paths(allowed_paths: Iterable[str]) -> str:
    entries = ["/" if entry == "" else entry for entry in allowed_paths]
    return ", ".join(sorted(entries)) if entries else "(no restrictions)"


def render_command_list(commands: Mapping[str, str]) -> str:
    if not commands:
        return "(no commands specified)"
    return "\n".join(f"- {name}: {command}" for name, command in commands.items())


def render_system_prompt(repo_root: Path, allowed_paths: Iterable[str], tasks_file: str) -> str:
    """Role and ground rules for the tool-calling session."""
    return (
        f"You are an autonomous senior software engineer working on the repository at {repo_root.as_posix()}.\n"
        "You have direct access to the repository through the provided tools. Follow these rules:\n"
        "- Make deliberate, incremental changes and verify them with the project commands when appropriate.\n"
        f"- Only modify files that fall under the allowed paths: {render_allowed_paths(allowed_paths)}.\n"
        "- Read files before editing them to understand context.\n"
        f"- Update {tasks_file} to mark the task complete when you finish it.\n"
        "- When the task is complete and the repository is ready to commit, call the finalize_task tool "
        "exactly once with a high-quality commit message.\n"
        "- Prefer running the available project commands (lint, typecheck, test, build) before finalizing.\n"
        "- Do not assume state from previous runs; inspect the repository as needed.\n"
    )


def _describe_task(task: Task) -> str:
    priority = task.priority.value if task.priority is not Priority.NONE else "unspecified"
    tags = ", ".join(task.tags) or "none"
    return (
        f"{task.description}\n\n"
        f"Original task line: {task.raw_line or '(not available)'}\n"
        f"Priority: {priority}\n"
        f"Tags: {tags}"
    )


def render_task_prompt(task: Task, *, project_prompt: str, backlog_text: str, commands: Mapping[str, str]) -> str:
    """First user message of the tool-calling session."""
    return (
        f"Next task to implement:\n{_describe_task(task)}\n\n"
        f"Project prompt:\n{project_prompt}\n\n"
        f"Full task backlog:\n{backlog_text}\n\n"
        f"Available project commands:\n{render_command_list(commands)}\n"
    )


def render_patch_system_prompt(max_changed_lines: int) -> str:
    return (
        "You are an agent that proposes ONE unified diff completing the requested task.\n\n"
        f"{PATCH_FORMAT_RULES}\n"
        f"- Keep the patch at or below {max_changed_lines} changed lines."
    )


def render_patch_prompt(task: Task, *, project_prompt: str, backlog_text: str, tree: Sequence[str]) -> str:
    """User message asking for a single diff, with the current file tree."""
    listing = "\n".join(tree) if tree else "(empty repository)"
    return (
        f"Selected task:\n{_describe_task(task)}\n\n"
        f"Project prompt:\n{project_prompt}\n\n"
        f"Full task backlog:\n{backlog_text}\n\n"
        f"Repository tree (existing files):\n{listing}\n\n"
        "Respond with the diff only, starting with '--- '."
    )


def render_patch_feedback(violations: Sequence[str]) -> str:
    """Follow-up message listing every reason the previous diff was rejected."""
    body = "\n".join(f"- {item}" for item in violations)
    return (
        "The previous patch cannot be applied to the current repository state:\n"
        f"{body}\n\n"
        "Produce a corrected unified diff that addresses every issue above. Respond with the diff only."
    )


__all__ = [
    "PATCH_FORMAT_RULES",
    "render_allowed_paths",
    "render_command_list",
    "render_patch_feedback",
    "render_patch_prompt",
    "render_patch_system_prompt",
    "render_system_prompt",
    "render_task_prompt",
]
