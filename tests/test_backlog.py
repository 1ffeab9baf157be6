from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from repoagent.backlog import Backlog, Priority, select_task

SAMPLE = textwrap.dedent(
    """
    # Tasks

    Some prose the operator wrote.

    - [x] Done already
    - [ ] Ship feature [!!!] #urgent #release
      - [ ] Nested subtask #docs
    - [X] Upper-case completion
    * [ ] not a task (wrong bullet)
    """
).lstrip()


def test_round_trip_without_mutations_is_byte_identical() -> None:
    text = SAMPLE + "\n\ntrailing   spaces   \n"
    backlog = Backlog.parse(text)

    assert backlog.render() == text


def test_parses_priority_and_tags_out_of_description() -> None:
    backlog = Backlog.parse("- [ ] Ship feature [!!!] #urgent #release\n")

    task = backlog.tasks[0]
    assert task.description == "Ship feature"
    assert task.priority is Priority.HIGH
    assert set(task.tags) == {"urgent", "release"}
    assert task.source_line_number == 1
    assert task.raw_line == "- [ ] Ship feature [!!!] #urgent #release"


def test_parse_collects_only_checklist_lines() -> None:
    backlog = Backlog.parse(SAMPLE)

    assert [task.description for task in backlog.tasks] == [
        "Done already",
        "Ship feature",
        "Nested subtask",
        "Upper-case completion",
    ]
    assert [task.completed for task in backlog.tasks] == [True, False, False, True]
    assert len({task.id for task in backlog.tasks}) == len(backlog.tasks)


def test_highest_priority_prefers_medium_over_low_when_no_high() -> None:
    backlog = Backlog.parse(
        "- [ ] Low one [!]\n"
        "- [ ] Medium one [!!]\n"
        "- [x] Finished high [!!!]\n"
    )

    task = backlog.highest_priority_task()
    assert task is not None
    assert task.description == "Medium one"


def test_highest_priority_falls_back_to_next_task() -> None:
    backlog = Backlog.parse("- [x] Done\n- [ ] Plain task\n- [ ] Another\n")

    assert backlog.highest_priority_task().description == "Plain task"
    assert select_task(backlog, "priority").description == "Plain task"
    assert select_task(backlog, "next").description == "Plain task"


def test_select_task_rejects_unknown_strategy() -> None:
    with pytest.raises(ValueError):
        select_task(Backlog.parse(""), "random")


def test_mark_complete_rewrites_only_the_originating_line(tmp_path: Path) -> None:
    path = tmp_path / "TASKS.md"
    path.write_text(SAMPLE, encoding="utf-8")
    backlog = Backlog.load(path)

    target = backlog.find_by_description("ship")
    assert target is not None
    assert backlog.mark_complete(target.id) is True
    assert backlog.mark_complete(target.id) is False
    backlog.save()

    before = SAMPLE.split("\n")
    after = path.read_text(encoding="utf-8").split("\n")
    assert len(before) == len(after)
    changed = [index for index, (old, new) in enumerate(zip(before, after)) if old != new]
    assert changed == [target.source_line_number - 1]
    assert after[changed[0]] == "- [x] Ship feature [!!!] #urgent #release"


def test_complete_by_description_skips_completed_tasks() -> None:
    backlog = Backlog.parse("- [x] Write docs\n- [ ] Write docs for API\n")

    task = backlog.complete_by_description("WRITE DOCS")
    assert task is not None
    assert task.description == "Write docs for API"
    assert backlog.complete_by_description("write docs") is None


def test_added_tasks_append_after_blank_line_and_never_duplicate(tmp_path: Path) -> None:
    path = tmp_path / "TASKS.md"
    path.write_text("# Tasks\n- [ ] Existing", encoding="utf-8")
    backlog = Backlog.load(path)

    task = backlog.add_task("New work", priority="medium", tags=["api", "#api", "backend"])
    assert task.source_line_number is None
    backlog.save()
    backlog.save()

    assert path.read_text(encoding="utf-8") == "# Tasks\n- [ ] Existing\n\n- [ ] New work [!!] #api #backend"
    assert task.source_line_number == 4

    reloaded = Backlog.load(path)
    assert [item.description for item in reloaded.tasks] == ["Existing", "New work"]
    assert reloaded.tasks[1].priority is Priority.MEDIUM


def test_added_tasks_keep_single_separator_and_final_newline(tmp_path: Path) -> None:
    path = tmp_path / "TASKS.md"
    path.write_text("# Tasks\n- [ ] Existing\n", encoding="utf-8")
    backlog = Backlog.load(path)

    first = backlog.add_task("First addition")
    backlog.save()
    second = backlog.add_task("Second addition")
    backlog.save()

    assert path.read_text(encoding="utf-8") == (
        "# Tasks\n- [ ] Existing\n\n- [ ] First addition\n\n- [ ] Second addition\n"
    )
    assert first.source_line_number == 4
    assert second.source_line_number == 6

    backlog.mark_complete(second.id)
    backlog.save()
    assert path.read_text(encoding="utf-8").endswith("\n- [x] Second addition\n")


def test_find_matching_requires_exact_description() -> None:
    backlog = Backlog.parse("- [ ] Add tests for parser\n- [ ] Add tests [!!!]\n")
    selected = backlog.highest_priority_task()
    assert selected is not None

    reloaded = Backlog.parse(backlog.render())
    match = reloaded.find_matching(selected)

    assert match is not None
    assert match.source_line_number == 2
    assert reloaded.find_matching(reloaded.tasks[0]).description == "Add tests for parser"


def test_find_matching_prefers_original_line_among_duplicates() -> None:
    backlog = Backlog.parse("- [ ] Same\n- [ ] Same\n")

    assert backlog.find_matching(backlog.tasks[1]) is backlog.tasks[1]
    backlog.mark_complete(backlog.tasks[0].id)
    assert backlog.find_matching(backlog.tasks[0]) is backlog.tasks[1]


def test_completing_a_freshly_saved_task_toggles_its_line(tmp_path: Path) -> None:
    path = tmp_path / "TASKS.md"
    backlog = Backlog.load(path)
    task = backlog.add_task("Only task")
    backlog.save()

    backlog.mark_complete(task.id)
    backlog.save()

    assert path.read_text(encoding="utf-8") == "- [x] Only task"


def test_missing_file_loads_empty_backlog_with_warning(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("WARNING")
    backlog = Backlog.load(tmp_path / "missing.md")

    assert backlog.tasks == []
    assert backlog.next_task() is None
    assert "Tasks file not found" in caplog.text


def test_add_task_rejects_blank_description_and_unknown_priority() -> None:
    backlog = Backlog.parse("")
    with pytest.raises(ValueError):
        backlog.add_task("   ")
    with pytest.raises(ValueError):
        backlog.add_task("Valid", priority="urgent")


def test_stats_and_summary() -> None:
    backlog = Backlog.parse(SAMPLE)

    stats = backlog.stats()
    assert (stats.total, stats.completed, stats.pending) == (4, 2, 2)
    assert stats.completion_rate == pytest.approx(50.0)

    summary = backlog.summary_lines()
    assert "Pending: 2" in summary
    assert "  High Priority:" in summary
    assert "    - Ship feature" in summary
    assert [task.description for task in backlog.tasks_by_tag("docs")] == ["Nested subtask"]
