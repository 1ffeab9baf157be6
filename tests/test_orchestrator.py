from __future__ import annotations

import json
import textwrap
from typing import Any, Dict, List

import pytest

from repoagent.config import AgentConfig
from repoagent.models.llm_client import LLMClient
from repoagent.orchestrator import Orchestrator, SessionState
from repoagent.tools.patch import PatchValidationError
from repoagent.tools.vcs import GitRepository

from conftest import SampleRepo


class _ScriptedClient(LLMClient):
    """Replays canned chat completions and records every payload sent."""

    def __init__(self, responses: List[Dict[str, Any]]) -> None:
        super().__init__(model="scripted")
        self._responses = list(responses)
        self.payloads: List[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(json.loads(json.dumps(payload)))
        if not self._responses:
            raise AssertionError("Scripted client ran out of responses")
        message = self._responses.pop(0)
        finish = "tool_calls" if message.get("tool_calls") else "stop"
        return json.dumps({"choices": [{"message": {"role": "assistant", **message}, "finish_reason": finish}]})


def _tool_call(call_id: str, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": json.dumps(arguments)}}


def _config(**overrides: Any) -> AgentConfig:
    raw: Dict[str, Any] = {
        "allowedPaths": ["src", "ai"],
        "branchPrefix": "ai/",
        "maxChangedLines": 300,
        "retry": 1,
        "maxIterations": 5,
        "commands": {"lint": "true"},
    }
    raw.update(overrides)
    return AgentConfig.model_validate(raw)


def _orchestrator(sample_repo: SampleRepo, client: LLMClient, **overrides: Any) -> Orchestrator:
    return Orchestrator(client=client, config=_config(**overrides), repo=GitRepository(sample_repo.root))


def test_empty_backlog_ends_without_calling_the_model(sample_repo: SampleRepo) -> None:
    sample_repo.tasks_path.write_text("# Backlog\n\n- [x] Done already\n", encoding="utf-8")
    sample_repo.commit_all("Complete backlog")
    client = _ScriptedClient([])

    result = _orchestrator(sample_repo, client).run()

    assert result.state is SessionState.NO_TASK
    assert result.trace == [SessionState.SELECT_TASK, SessionState.NO_TASK]
    assert client.payloads == []
    assert GitRepository(sample_repo.root).current_branch() == "main"


def test_tool_session_writes_finalizes_and_stops(sample_repo: SampleRepo) -> None:
    client = _ScriptedClient(
        [
            {
                "content": None,
                "tool_calls": [
                    _tool_call("call_1", "write_file", {"path": "src/greet.py", "content": "print('hi')\n"}),
                    _tool_call("call_2", "write_file", {"path": "README.md", "content": "nope"}),
                ],
            },
            {"content": None, "tool_calls": [_tool_call("call_3", "finalize_task", {"commitMessage": "feat: greet"})]},
            {"content": "Greeting module added."},
        ]
    )

    result = _orchestrator(sample_repo, client).run()

    assert result.state is SessionState.FINALIZE
    assert result.branch == "ai/add-greeting-module"
    assert result.iterations == 3
    assert result.committed
    assert result.final_message == "Greeting module added."
    assert result.trace == [
        SessionState.SELECT_TASK,
        SessionState.HAS_TASK,
        SessionState.ENSURE_BRANCH,
        SessionState.CONVERSE,
        SessionState.TOOL_CALL_ROUND,
        SessionState.CONVERSE,
        SessionState.TOOL_CALL_ROUND,
        SessionState.CONVERSE,
        SessionState.FINALIZE,
    ]

    second_request = client.payloads[1]["messages"]
    tool_messages = [message for message in second_request if message["role"] == "tool"]
    assert [message["tool_call_id"] for message in tool_messages] == ["call_1", "call_2"]
    assert json.loads(tool_messages[1]["content"])["type"] == "PathError"
    assert client.payloads[0]["tool_choice"] == "auto"

    repo = GitRepository(sample_repo.root)
    assert repo.current_branch() == "ai/add-greeting-module"
    assert repo.is_clean()
    assert "feat: greet" in sample_repo.git("log", "--format=%s")
    assert (sample_repo.root / "README.md").read_text(encoding="utf-8") == "# Sample\n"


def test_iteration_budget_is_enforced(sample_repo: SampleRepo) -> None:
    looping = [
        {"content": None, "tool_calls": [_tool_call(f"call_{index}", "git_status", {})]} for index in range(3)
    ]
    client = _ScriptedClient(looping)

    result = _orchestrator(sample_repo, client, maxIterations=2).run()

    assert result.state is SessionState.BUDGET_EXHAUSTED
    assert result.iterations == 2
    assert len(client.payloads) == 2
    assert not result.committed


def test_cancellation_is_checked_between_rounds(sample_repo: SampleRepo) -> None:
    client = _ScriptedClient([{"content": None, "tool_calls": [_tool_call("call_1", "git_status", {})]}])
    calls = iter([False, True])

    result = _orchestrator(sample_repo, client).run(should_cancel=lambda: next(calls))

    assert result.state is SessionState.CANCELLED
    assert result.iterations == 1


def test_priority_selection_picks_highest_marker(sample_repo: SampleRepo) -> None:
    sample_repo.tasks_path.write_text(
        "- [ ] Low thing [!]\n- [ ] Urgent thing [!!!]\n", encoding="utf-8"
    )
    sample_repo.commit_all("Reprioritise")
    client = _ScriptedClient([{"content": "Nothing to do."}])

    result = _orchestrator(sample_repo, client, taskSelection="priority").run()

    assert result.task is not None
    assert result.task.description == "Urgent thing"
    assert result.branch == "ai/urgent-thing"


VALID_PATCH = textwrap.dedent(
    """
    --- a/src/app.py
    +++ b/src/app.py
    @@ -1,1 +1,2 @@
     print('hello')
    +print('greetings')
    """
).lstrip()

INVALID_PATCH = textwrap.dedent(
    """
    --- /dev/null
    +++ b/src/app.py
    @@ -0,0 +1,1 @@
    +print('duplicate')
    """
).lstrip()


def test_patch_session_regenerates_applies_and_commits(sample_repo: SampleRepo) -> None:
    client = _ScriptedClient(
        [
            {"content": f"```diff\n{INVALID_PATCH}```"},
            {"content": f"Fixed:\n```diff\n{VALID_PATCH}```"},
        ]
    )

    result = _orchestrator(sample_repo, client).run_patch_session()

    assert result.state is SessionState.FINALIZE
    assert result.patch_attempts == 2
    assert result.patch is not None and result.patch.paths == ("src/app.py",)
    assert result.gate_report is not None and not result.gate_report.has_failures
    assert result.committed

    feedback = client.payloads[1]["messages"][-1]
    assert feedback["role"] == "user"
    assert "src/app.py" in feedback["content"]
    assert "tools" not in client.payloads[0]

    assert (sample_repo.root / "src" / "app.py").read_text(encoding="utf-8") == "print('hello')\nprint('greetings')\n"
    assert "- [x] Add greeting module [!!] #feature" in sample_repo.tasks_path.read_text(encoding="utf-8")
    subjects = sample_repo.git("log", "--format=%s").splitlines()
    assert "feat: Add greeting module [ai]" in subjects
    assert GitRepository(sample_repo.root).is_clean()


def test_patch_session_completes_the_selected_task_not_a_similar_one(sample_repo: SampleRepo) -> None:
    sample_repo.tasks_path.write_text("- [ ] Add tests for parser\n- [ ] Add tests [!!!]\n", encoding="utf-8")
    sample_repo.commit_all("Overlapping tasks")
    client = _ScriptedClient([{"content": VALID_PATCH}])

    result = _orchestrator(sample_repo, client, taskSelection="priority").run_patch_session()

    assert result.task is not None and result.task.description == "Add tests"
    assert sample_repo.tasks_path.read_text(encoding="utf-8") == "- [ ] Add tests for parser\n- [x] Add tests [!!!]\n"


def test_patch_session_gives_up_after_retries(sample_repo: SampleRepo) -> None:
    client = _ScriptedClient([{"content": INVALID_PATCH}, {"content": "no diff here"}])

    with pytest.raises(PatchValidationError):
        _orchestrator(sample_repo, client).run_patch_session()

    assert len(client.payloads) == 2
    assert (sample_repo.root / "src" / "app.py").read_text(encoding="utf-8") == "print('hello')\n"
