"""Session state machine driving the model conversation for one task.

Two session shapes share the same task selection and branch handling:

* :meth:`Orchestrator.run` converses with a tool-calling model until it stops
  talking, calls ``finalize_task``, or the iteration budget runs out.
* :meth:`Orchestrator.run_patch_session` asks for a single unified diff,
  validates it (regenerating on violations), applies it, runs the quality
  gates and commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .backlog import Backlog, Task, select_task
from .config import AgentConfig
from .models.llm_client import ChatRequest, LLMClient
from .models.openai_chat import OpenAIChatClient
from .prompts import (
    render_patch_feedback,
    render_patch_prompt,
    render_patch_system_prompt,
    render_system_prompt,
    render_task_prompt,
)
from .tools.dispatcher import ToolDispatcher
from .tools.gates import GateReport, run_gates
from .tools.patch import (
    PatchResult,
    PatchValidationError,
    apply_patch,
    check_patch,
    extract_patch,
)
from .tools.sandbox import SessionContext
from .tools.vcs import GitRepository
from .tools.workflow import FinalizeResult, GitWorkflow

LOGGER = logging.getLogger(__name__)

STOP_REASONS = frozenset({"stop", "length"})

CancelCheck = Callable[[], bool]


class SessionState(str, Enum):
    """States of one orchestration session."""

    SELECT_TASK = "select_task"
    NO_TASK = "no_task"
    HAS_TASK = "has_task"
    ENSURE_BRANCH = "ensure_branch"
    CONVERSE = "converse"
    TOOL_CALL_ROUND = "tool_call_round"
    FINALIZE = "finalize"
    BUDGET_EXHAUSTED = "budget_exhausted"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {SessionState.NO_TASK, SessionState.FINALIZE, SessionState.BUDGET_EXHAUSTED, SessionState.CANCELLED}
)


@dataclass(slots=True)
class SessionResult:
    """Summary of a finished session."""

    state: SessionState
    task: Task | None = None
    branch: str | None = None
    iterations: int = 0
    trace: List[SessionState] = field(default_factory=list)
    final_message: str | None = None
    finalize: Dict[str, Any] | None = None
    patch: PatchResult | None = None
    patch_attempts: int = 0
    gate_report: GateReport | None = None

    @property
    def committed(self) -> bool:
        return bool(self.finalize and self.finalize.get("committed"))


class Orchestrator:
    """Coordinates the backlog, the model client, the tools and git."""

    def __init__(self, *, client: LLMClient, config: AgentConfig, repo: GitRepository) -> None:
        self.client = client
        self.config = config
        self.repo = repo
        self.workflow = GitWorkflow(
            repo,
            branch_prefix=config.branch_prefix,
            journal_path=config.journal_file,
            remote=config.remote,
        )

    @classmethod
    def from_config(cls, config: AgentConfig, repo: GitRepository) -> "Orchestrator":
        """Build an orchestrator talking to the configured Chat Completions endpoint."""
        options: Dict[str, Any] = {"model": config.model, "base_url": config.api_base_url}
        if config.request_timeout is not None:
            options["timeout"] = config.request_timeout
        return cls(client=OpenAIChatClient(**options), config=config, repo=repo)

    # ------------------------------------------------------------ paths
    @property
    def tasks_path(self) -> Path:
        return self.repo.root / self.config.tasks_file

    def _read_optional(self, relative: str) -> str:
        path = self.repo.root / relative
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    # ------------------------------------------------------------ shared steps
    def _enter(self, result: SessionResult, state: SessionState) -> None:
        LOGGER.debug("Session state -> %s", state.value)
        result.trace.append(state)
        result.state = state

    def _begin(self) -> SessionResult:
        result = SessionResult(state=SessionState.SELECT_TASK, trace=[SessionState.SELECT_TASK])
        backlog = Backlog.load(self.tasks_path)
        task = select_task(backlog, self.config.task_selection)
        if task is None:
            LOGGER.info("No pending tasks in %s", self.tasks_path)
            self._enter(result, SessionState.NO_TASK)
            return result

        result.task = task
        self._enter(result, SessionState.HAS_TASK)
        LOGGER.info("Selected task: %s", task.description)

        self._enter(result, SessionState.ENSURE_BRANCH)
        branch = self.workflow.branch_name(task.description)
        self.workflow.ensure_branch(branch)
        result.branch = branch
        return result

    def _context(self, task: Task) -> SessionContext:
        return SessionContext.create(self.repo.root, self.config.allowed_paths, task)

    def _warn_if_dirty(self, task: Task) -> None:
        if self.repo.has_changes():
            LOGGER.warning("Working tree has uncommitted changes after the session for task '%s'", task.description)

    # ------------------------------------------------------------ tool session
    def run(self, should_cancel: Optional[CancelCheck] = None) -> SessionResult:
        """Run one tool-calling session for the selected task.

        Budget exhaustion and cancellation end the session without raising;
        :class:`GitError` and model client errors propagate.
        """
        result = self._begin()
        if result.task is None:
            return result
        task = result.task

        dispatcher = ToolDispatcher(self._context(task), workflow=self.workflow)
        tools = dispatcher.tool_schemas()
        messages: List[Dict[str, Any]] = [
            {
                "role": "system",
                "content": render_system_prompt(self.repo.root, self.config.allowed_paths, self.config.tasks_file),
            },
            {
                "role": "user",
                "content": render_task_prompt(
                    task,
                    project_prompt=self._read_optional(self.config.prompt_file),
                    backlog_text=self._read_optional(self.config.tasks_file),
                    commands=self.config.commands,
                ),
            },
        ]

        while not result.state.terminal:
            if should_cancel is not None and should_cancel():
                LOGGER.info("Session cancelled after %d iteration(s)", result.iterations)
                self._enter(result, SessionState.CANCELLED)
                break
            if result.iterations >= self.config.max_iterations:
                LOGGER.warning("Reached max iterations (%d) without completion", self.config.max_iterations)
                self._enter(result, SessionState.BUDGET_EXHAUSTED)
                break

            result.iterations += 1
            self._enter(result, SessionState.CONVERSE)
            response = self.client.complete(ChatRequest(messages=messages, tools=tools, model=self.config.model))
            messages.append(response.assistant_message())

            if response.has_tool_calls:
                self._enter(result, SessionState.TOOL_CALL_ROUND)
                for call in response.tool_calls:
                    LOGGER.info("Tool call %s", call.name)
                    outcome = dispatcher.dispatch(call.name, call.arguments)
                    if call.name == "finalize_task" and outcome.ok:
                        result.finalize = outcome.result
                    messages.append({"role": "tool", "tool_call_id": call.id, "content": outcome.to_json()})
                continue

            if response.finish_reason in STOP_REASONS:
                result.final_message = response.content
                LOGGER.info("Model finished (%s): %s", response.finish_reason, (response.content or "").strip())
                self._enter(result, SessionState.FINALIZE)

        self._warn_if_dirty(task)
        return result

    # ----------------------------------------------------------- patch session
    def run_patch_session(self, should_cancel: Optional[CancelCheck] = None) -> SessionResult:
        """Ask for one diff, validate/regenerate, apply, gate and commit.

        Raises :class:`PatchValidationError` when every attempt was rejected
        and :class:`ApplyError` when ``git apply`` refuses a validated diff.
        """
        result = self._begin()
        if result.task is None:
            return result
        task = result.task
        context = self._context(task)

        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": render_patch_system_prompt(self.config.max_changed_lines)},
            {
                "role": "user",
                "content": render_patch_prompt(
                    task,
                    project_prompt=self._read_optional(self.config.prompt_file),
                    backlog_text=self._read_optional(self.config.tasks_file),
                    tree=self.repo.tracked_files(),
                ),
            },
        ]

        patch_text: str | None = None
        last_error: PatchValidationError | None = None
        for attempt in range(1, self.config.retry + 2):
            if should_cancel is not None and should_cancel():
                self._enter(result, SessionState.CANCELLED)
                return result
            result.iterations = result.patch_attempts = attempt
            self._enter(result, SessionState.CONVERSE)
            response = self.client.complete(ChatRequest(messages=messages, model=self.config.model))
            messages.append(response.assistant_message())
            try:
                candidate = extract_patch(response.content or "")
                check_patch(
                    candidate,
                    self.repo.root,
                    context=context,
                    max_changed_lines=self.config.max_changed_lines,
                )
            except PatchValidationError as error:
                last_error = error
                LOGGER.warning("Patch attempt %d rejected:\n%s", attempt, error.format_violations())
                messages.append(
                    {"role": "user", "content": render_patch_feedback([item.message for item in error.violations])}
                )
                continue
            patch_text = candidate
            break

        if patch_text is None:
            assert last_error is not None
            raise last_error

        result.patch = apply_patch(patch_text, self.repo.root)
        LOGGER.info("Applied patch touching %d path(s)", len(result.patch.paths))

        result.gate_report = run_gates(self.config.commands, self.repo.root)
        LOGGER.info("%s", result.gate_report.format_summary())

        self._mark_task_complete(task)
        self._enter(result, SessionState.FINALIZE)
        finalized: FinalizeResult = self.workflow.finalize(
            self.config.format_commit_message(task.description),
            task.description,
        )
        result.finalize = finalized.to_dict()
        self._warn_if_dirty(task)
        return result

    def _mark_task_complete(self, task: Task) -> None:
        """Reload the backlog (the patch may have edited it) and check the task off."""
        backlog = Backlog.load(self.tasks_path)
        match = backlog.find_matching(task)
        if match is None:
            LOGGER.info("Task '%s' already complete or no longer present", task.description)
            return
        backlog.mark_complete(match.id)
        backlog.save()


__all__ = ["Orchestrator", "SessionResult", "SessionState"]
