from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


TASKS_TEMPLATE = textwrap.dedent(
    """
    # Backlog

    Notes written by hand stay untouched.

    - [x] Bootstrap repository
    - [ ] Add greeting module [!!] #feature
    - [ ] Write docs [!] #docs
    """
).lstrip()


@dataclass(slots=True)
class SampleRepo:
    """Throwaway git repository with an ``ai/`` workspace."""

    root: Path

    def git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=self.root,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout

    def commit_all(self, message: str) -> None:
        self.git("add", "--all")
        self.git("commit", "-m", message)

    @property
    def tasks_path(self) -> Path:
        return self.root / "ai" / "TASKS.md"

    @property
    def journal_path(self) -> Path:
        return self.root / "ai" / "JOURNAL.md"


def init_repo(root: Path) -> SampleRepo:
    root.mkdir(parents=True, exist_ok=True)
    repo = SampleRepo(root=root)
    repo.git("init")
    repo.git("config", "user.email", "agent@example.com")
    repo.git("config", "user.name", "Repo Agent")
    repo.git("config", "commit.gpgsign", "false")
    repo.git("symbolic-ref", "HEAD", "refs/heads/main")
    return repo


@pytest.fixture()
def sample_repo(tmp_path: Path) -> SampleRepo:
    """Create a git repository with sources, a backlog and an agent config."""

    repo = init_repo(tmp_path / "sample-repo")
    (repo.root / "src").mkdir()
    (repo.root / "src" / "app.py").write_text("print('hello')\n", encoding="utf-8")
    (repo.root / "README.md").write_text("# Sample\n", encoding="utf-8")

    ai_dir = repo.root / "ai"
    ai_dir.mkdir()
    (ai_dir / "TASKS.md").write_text(TASKS_TEMPLATE, encoding="utf-8")
    (ai_dir / "PROMPT.md").write_text("Keep changes small.\n", encoding="utf-8")
    (ai_dir / "config.yaml").write_text(
        textwrap.dedent(
            """
            allowedPaths:
              - src
              - ai
            branchPrefix: ai/
            maxChangedLines: 300
            retry: 1
            maxIterations: 5
            commands:
              lint: "true"
            """
        ).lstrip(),
        encoding="utf-8",
    )
    repo.commit_all("Initial sample repo state")
    return repo
