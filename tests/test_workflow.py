from __future__ import annotations

from pathlib import Path

import pytest

from repoagent.tools.journal import JournalEntry, append_entry, read_entries
from repoagent.tools.vcs import GitError, GitRepository
from repoagent.tools.workflow import GitWorkflow, branch_name_for
from repoagent.utils.slug import slugify

from conftest import SampleRepo


def _workflow(sample_repo: SampleRepo) -> GitWorkflow:
    return GitWorkflow(GitRepository(sample_repo.root), branch_prefix="ai/")


def test_branch_name_is_prefixed_slug() -> None:
    assert branch_name_for("Add greeting module!", "ai/") == "ai/add-greeting-module"
    assert branch_name_for("***", "ai/") == "ai/task"
    long_name = branch_name_for("x" * 200, "ai/")
    assert long_name == "ai/" + "x" * 64


def test_slugify_collapses_runs_and_trims_hyphens() -> None:
    assert slugify("  Fix: the   Parser -- now  ") == "fix-the-parser-now"
    assert slugify("a" * 63 + " b", max_length=64) == "a" * 63


def test_ensure_branch_creates_then_reuses(sample_repo: SampleRepo) -> None:
    workflow = _workflow(sample_repo)

    workflow.ensure_branch("ai/first")
    assert workflow.repo.current_branch() == "ai/first"

    workflow.repo.checkout("main")
    workflow.ensure_branch("ai/first")
    assert workflow.repo.current_branch() == "ai/first"

    workflow.ensure_branch("ai/first")
    assert workflow.repo.current_branch() == "ai/first"


def test_finalize_twice_commits_once_and_journals_once(sample_repo: SampleRepo) -> None:
    workflow = _workflow(sample_repo)
    (sample_repo.root / "src" / "feature.py").write_text("VALUE = 1\n", encoding="utf-8")

    first = workflow.finalize("feat: add feature", "Add feature")
    second = workflow.finalize("feat: add feature", "Add feature")

    assert first.committed is True
    assert first.commit_hash and len(first.commit_hash) == 7
    assert second.committed is False
    assert second.to_dict() == {"committed": False, "message": "No changes to commit"}

    entries = read_entries(sample_repo.journal_path)
    assert [(entry.task_description, entry.commit_hash) for entry in entries] == [("Add feature", first.commit_hash)]
    assert workflow.repo.is_clean()
    log = sample_repo.git("log", "--format=%s")
    assert log.splitlines()[:2] == [f"chore(journal): record {first.commit_hash}", "feat: add feature"]


def test_finalize_on_clean_tree_touches_nothing(sample_repo: SampleRepo) -> None:
    workflow = _workflow(sample_repo)
    head_before = sample_repo.git("rev-parse", "HEAD")

    result = workflow.finalize("chore: nothing", "Nothing")

    assert result.committed is False
    assert sample_repo.git("rev-parse", "HEAD") == head_before
    assert not sample_repo.journal_path.exists()


def test_finalize_requires_message(sample_repo: SampleRepo) -> None:
    with pytest.raises(ValueError):
        _workflow(sample_repo).finalize("   ", "Task")


def test_finalize_push_failure_raises_git_error(sample_repo: SampleRepo) -> None:
    workflow = _workflow(sample_repo)
    (sample_repo.root / "src" / "feature.py").write_text("VALUE = 2\n", encoding="utf-8")

    with pytest.raises(GitError):
        workflow.finalize("feat: push me", "Push me", push=True)


def test_cleanup_dry_run_then_delete_skips_current_branch(sample_repo: SampleRepo) -> None:
    workflow = _workflow(sample_repo)
    sample_repo.git("branch", "ai/one")
    sample_repo.git("branch", "ai/two")
    sample_repo.git("branch", "feature/keep")
    workflow.repo.checkout("ai/two")

    preview = workflow.cleanup(dry_run=True)
    assert preview.planned == ["ai/one"]
    assert preview.skipped == ["ai/two"]
    assert preview.deleted == []
    assert workflow.repo.branch_exists("ai/one")

    report = workflow.cleanup()
    assert report.deleted == ["ai/one"]
    assert report.failed == {}
    assert not workflow.repo.branch_exists("ai/one")
    assert workflow.repo.branch_exists("ai/two")
    assert workflow.repo.branch_exists("feature/keep")


def test_journal_entries_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "ai" / "JOURNAL.md"
    entry = JournalEntry.now("Write docs", "abc1234")

    append_entry(path, entry)
    append_entry(path, JournalEntry("2024-01-01T00:00:00.000Z", "Second", "def5678"))

    text = path.read_text(encoding="utf-8")
    assert text.startswith(f"\n## {entry.timestamp}\nTask: Write docs\nCommit: abc1234\n")
    assert entry.timestamp.endswith("Z")
    assert [item.commit_hash for item in read_entries(path)] == ["abc1234", "def5678"]


def test_status_summary_reports_untracked_files(sample_repo: SampleRepo) -> None:
    repo = GitRepository(sample_repo.root)
    assert repo.status_summary().is_clean

    (sample_repo.root / "notes.txt").write_text("scratch\n", encoding="utf-8")
    summary = repo.status_summary()
    assert summary.current_branch == "main"
    assert summary.has_untracked_files is True
    assert summary.has_uncommitted_changes is False


def test_multiline_task_description_stays_one_journal_record(tmp_path: Path) -> None:
    path = tmp_path / "JOURNAL.md"

    append_entry(path, JournalEntry("2024-01-01T00:00:00.000Z", "Fix parser\n\nand   its tests", "abc1234"))
    append_entry(path, JournalEntry("2024-01-02T00:00:00.000Z", "Next", "def5678"))

    entries = read_entries(path)
    assert [(entry.task_description, entry.commit_hash) for entry in entries] == [
        ("Fix parser and its tests", "abc1234"),
        ("Next", "def5678"),
    ]
