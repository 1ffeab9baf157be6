"""Checklist-style task backlog parsing, selection and persistence.

The backlog is a Markdown document where each ``- [ ] text`` / ``- [x] text``
line is a task.  Every other line is kept verbatim so that saving the backlog
never reformats prose, headings or spacing the operator wrote by hand.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_TASKS_FILE = "ai/TASKS.md"

_TASK_LINE = re.compile(r"^(?P<indent>\s*)- \[(?P<mark>[ xX])\] (?P<body>.+)$")
_CHECKBOX = re.compile(r"^(\s*- \[)[ xX](\] )")
_PRIORITY_MARKER = re.compile(r"\[(!{1,3})\]")
_TAG = re.compile(r"#(\w+)")


class Priority(str, Enum):
    """Priority tiers encoded as ``[!]``, ``[!!]`` and ``[!!!]`` markers."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def marker(self) -> str:
        return _PRIORITY_MARKERS.get(self, "")

    @classmethod
    def from_marker(cls, bangs: str) -> "Priority":
        return {1: cls.LOW, 2: cls.MEDIUM, 3: cls.HIGH}.get(len(bangs), cls.NONE)

    @classmethod
    def coerce(cls, value: "Priority | str | None") -> "Priority":
        """Interpret CLI-friendly input such as ``"high"`` or ``None``."""
        if isinstance(value, Priority):
            return value
        if value is None or not str(value).strip():
            return cls.NONE
        try:
            return cls(str(value).strip().lower())
        except ValueError as error:
            valid = ", ".join(item.value for item in cls)
            raise ValueError(f"Unknown priority '{value}'. Expected one of: {valid}") from error


_PRIORITY_MARKERS = {
    Priority.LOW: "[!]",
    Priority.MEDIUM: "[!!]",
    Priority.HIGH: "[!!!]",
}

_SELECTION_ORDER = (Priority.HIGH, Priority.MEDIUM, Priority.LOW)


@dataclass(slots=True)
class Task:
    """Single backlog item.

    ``source_line_number`` (1-based) and ``raw_line`` are set only for tasks
    parsed from a persisted backlog.
    """

    id: str
    description: str
    completed: bool = False
    priority: Priority = Priority.NONE
    tags: tuple[str, ...] = ()
    source_line_number: Optional[int] = None
    raw_line: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.source_line_number is not None

    def render(self) -> str:
        """Return the checklist line for this task.

        Persisted tasks keep their original line; only the checkbox token is
        toggled when the completion state changed since parsing.
        """
        if self.raw_line is not None:
            if _line_completed(self.raw_line) == self.completed:
                return self.raw_line
            mark = "x" if self.completed else " "
            return _CHECKBOX.sub(lambda match: f"{match.group(1)}{mark}{match.group(2)}", self.raw_line, count=1)

        checkbox = "[x]" if self.completed else "[ ]"
        parts = [f"- {checkbox} {self.description}"]
        if self.priority.marker:
            parts.append(self.priority.marker)
        if self.tags:
            parts.append(" ".join(f"#{tag}" for tag in self.tags))
        return " ".join(parts)


@dataclass(slots=True)
class BacklogStats:
    """Completion counters for a backlog."""

    total: int
    completed: int
    pending: int

    @property
    def completion_rate(self) -> float:
        return (self.completed / self.total) * 100 if self.total else 0.0


@dataclass(slots=True)
class Backlog:
    """In-memory view of a checklist backlog file."""

    lines: List[str] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    path: Optional[Path] = None
    _next_id: int = 1

    # ---------------------------------------------------------------- loading
    @classmethod
    def parse(cls, text: str, *, path: Path | str | None = None) -> "Backlog":
        """Parse backlog ``text`` into tasks while retaining every line."""
        lines = text.split("\n")
        tasks: List[Task] = []
        for index, line in enumerate(lines):
            task = _parse_task_line(line, task_id=f"task-{len(tasks) + 1}", line_number=index + 1)
            if task is not None:
                tasks.append(task)
        return cls(
            lines=lines,
            tasks=tasks,
            path=Path(path) if path is not None else None,
            _next_id=len(tasks) + 1,
        )

    @classmethod
    def load(cls, path: Path | str) -> "Backlog":
        """Load the backlog at ``path``; a missing file yields an empty backlog."""
        backlog_path = Path(path)
        if not backlog_path.exists():
            LOGGER.warning("Tasks file not found: %s", backlog_path)
            return cls(lines=[], tasks=[], path=backlog_path)
        text = backlog_path.read_text(encoding="utf-8")
        return cls.parse(text, path=backlog_path)

    # -------------------------------------------------------------- selection
    def pending(self) -> List[Task]:
        return [task for task in self.tasks if not task.completed]

    def next_task(self) -> Optional[Task]:
        """Return the first incomplete task in file order."""
        return next((task for task in self.tasks if not task.completed), None)

    def tasks_by_priority(self, priority: Priority | str) -> List[Task]:
        wanted = Priority.coerce(priority)
        return [task for task in self.pending() if task.priority is wanted]

    def tasks_by_tag(self, tag: str) -> List[Task]:
        needle = tag.lstrip("#")
        return [task for task in self.pending() if needle in task.tags]

    def highest_priority_task(self) -> Optional[Task]:
        """Return the first high, then medium, then low task, else the next task."""
        for priority in _SELECTION_ORDER:
            candidates = self.tasks_by_priority(priority)
            if candidates:
                return candidates[0]
        return self.next_task()

    def get(self, task_id: str) -> Optional[Task]:
        return next((task for task in self.tasks if task.id == task_id), None)

    def find_by_description(self, text: str) -> Optional[Task]:
        """Return the first incomplete task whose description contains ``text``."""
        needle = text.strip().lower()
        if not needle:
            return None
        return next(
            (task for task in self.pending() if needle in task.description.lower()),
            None,
        )

    # --------------------------------------------------------------- mutation
    def mark_complete(self, task_id: str) -> bool:
        """Mark ``task_id`` complete; return ``False`` if unknown or already done."""
        task = self.get(task_id)
        if task is None or task.completed:
            return False
        task.completed = True
        return True

    def find_matching(self, task: Task) -> Optional[Task]:
        """Return the pending task in this backlog that corresponds to ``task``.

        Descriptions must match exactly.  When several do, the one still on
        ``task``'s original line wins, then the first in file order.
        """
        candidates = [item for item in self.pending() if item.description == task.description]
        for item in candidates:
            if task.source_line_number is not None and item.source_line_number == task.source_line_number:
                return item
        return candidates[0] if candidates else None

    def complete_by_description(self, text: str) -> Optional[Task]:
        task = self.find_by_description(text)
        if task is None:
            return None
        self.mark_complete(task.id)
        return task

    def add_task(
        self,
        description: str,
        priority: Priority | str | None = None,
        tags: Iterable[str] = (),
    ) -> Task:
        """Append a new, not-yet-persisted task to the backlog."""
        cleaned = description.strip()
        if not cleaned:
            raise ValueError("Task description cannot be empty")
        task = Task(
            id=self._allocate_id(),
            description=cleaned,
            priority=Priority.coerce(priority),
            tags=_unique(tag.lstrip("#") for tag in tags if tag.strip("# ")),
        )
        self.tasks.append(task)
        return task

    # ---------------------------------------------------------------- summary
    def stats(self) -> BacklogStats:
        total = len(self.tasks)
        completed = sum(1 for task in self.tasks if task.completed)
        return BacklogStats(total=total, completed=completed, pending=total - completed)

    def summary_lines(self) -> List[str]:
        """Human-readable summary grouped by priority tier."""
        stats = self.stats()
        output = [
            "Task Summary",
            "============",
            f"Total tasks: {stats.total}",
            f"Completed: {stats.completed}",
            f"Pending: {stats.pending}",
            f"Completion rate: {stats.completion_rate:.1f}%",
        ]
        if not stats.pending:
            return output

        output.append("")
        output.append("Pending Tasks:")
        for priority in (*_SELECTION_ORDER, Priority.NONE):
            group = self.tasks_by_priority(priority)
            if not group:
                continue
            label = "No Priority" if priority is Priority.NONE else f"{priority.value.title()} Priority"
            output.append(f"  {label}:")
            output.extend(f"    - {task.description}" for task in group)
        return output

    # ------------------------------------------------------------ persistence
    def render(self) -> str:
        """Serialize the backlog, touching only lines whose task changed."""
        lines = list(self.lines)
        for task in self.tasks:
            if task.source_line_number is None:
                continue
            index = task.source_line_number - 1
            if 0 <= index < len(lines):
                lines[index] = task.render()

        fresh = [task for task in self.tasks if task.source_line_number is None]
        if fresh:
            keep_newline = len(lines) > 1 and lines[-1] == ""
            while lines and not lines[-1].strip():
                lines.pop()
            if lines:
                lines.append("")
            lines.extend(task.render() for task in fresh)
            if keep_newline:
                lines.append("")
        return "\n".join(lines)

    def save(self, path: Path | str | None = None) -> Path:
        """Write the backlog to disk and adopt new tasks as persisted lines."""
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("No backlog path configured for save()")

        text = self.render()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")

        # Re-anchor every task on the lines just written so subsequent saves
        # neither duplicate new tasks nor re-toggle completed ones.
        self.lines = text.split("\n")
        for task in self.tasks:
            if task.source_line_number is None:
                continue
            task.raw_line = self.lines[task.source_line_number - 1]
        fresh = [task for task in self.tasks if task.source_line_number is None]
        last_line = len(self.lines) - (1 if self.lines and self.lines[-1] == "" else 0)
        first_fresh_line = last_line - len(fresh) + 1
        for offset, task in enumerate(fresh):
            task.source_line_number = first_fresh_line + offset
            task.raw_line = self.lines[task.source_line_number - 1]

        self.path = target
        return target

    def _allocate_id(self) -> str:
        existing = {task.id for task in self.tasks}
        while f"task-{self._next_id}" in existing:
            self._next_id += 1
        task_id = f"task-{self._next_id}"
        self._next_id += 1
        return task_id


def _parse_task_line(line: str, *, task_id: str, line_number: int) -> Optional[Task]:
    match = _TASK_LINE.match(line)
    if not match:
        return None

    description = match.group("body")
    priority = Priority.NONE
    priority_match = _PRIORITY_MARKER.search(description)
    if priority_match:
        priority = Priority.from_marker(priority_match.group(1))
        description = _PRIORITY_MARKER.sub("", description, count=1).strip()

    tags = _unique(_TAG.findall(description))
    if tags:
        description = _TAG.sub("", description).strip()

    return Task(
        id=task_id,
        description=description.strip(),
        completed=match.group("mark").lower() == "x",
        priority=priority,
        tags=tags,
        source_line_number=line_number,
        raw_line=line,
    )


def _line_completed(line: str) -> bool:
    match = _TASK_LINE.match(line)
    return bool(match and match.group("mark").lower() == "x")


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return tuple(seen)


def select_task(backlog: Backlog, strategy: str = "next") -> Optional[Task]:
    """Select the task a session should work on using ``strategy``."""
    if strategy == "priority":
        return backlog.highest_priority_task()
    if strategy == "next":
        return backlog.next_task()
    raise ValueError(f"Unknown task selection strategy: {strategy}")


__all__ = [
    "DEFAULT_TASKS_FILE",
    "Backlog",
    "BacklogStats",
    "Priority",
    "Task",
    "select_task",
]
