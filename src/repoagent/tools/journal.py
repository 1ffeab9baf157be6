"""Append-only audit journal of finalized tasks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List

DEFAULT_JOURNAL_FILE = "ai/JOURNAL.md"

_ENTRY_PATTERN = re.compile(
    r"^## (?P<timestamp>\S+)\nTask: (?P<task>.*)\nCommit: (?P<commit>\S+)$",
    re.MULTILINE,
)


@dataclass(slots=True, frozen=True)
class JournalEntry:
    """One finalized task and the commit that recorded it."""

    timestamp: str
    task_description: str
    commit_hash: str

    @classmethod
    def now(cls, task_description: str, commit_hash: str) -> "JournalEntry":
        stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return cls(timestamp=stamp, task_description=task_description, commit_hash=commit_hash)

    def render(self) -> str:
        # Each field must stay on one line for read_entries to find the record.
        task = " ".join(self.task_description.split())
        return f"\n## {self.timestamp}\nTask: {task}\nCommit: {self.commit_hash}\n"


def append_entry(path: Path, entry: JournalEntry) -> None:
    """Append ``entry`` to the journal at ``path``, creating it when missing."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(entry.render())


def read_entries(path: Path) -> List[JournalEntry]:
    """Return every entry recorded in the journal at ``path``."""
    if not path.exists():
        return []
    text = path.read_text(encoding="utf-8")
    return [
        JournalEntry(
            timestamp=match.group("timestamp"),
            task_description=match.group("task"),
            commit_hash=match.group("commit"),
        )
        for match in _ENTRY_PATTERN.finditer(text)
    ]


__all__ = ["DEFAULT_JOURNAL_FILE", "JournalEntry", "append_entry", "read_entries"]
