"""CLI commands for the backlog, configuration, agent sessions and branches."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer

from .backlog import DEFAULT_TASKS_FILE, Backlog, Priority, select_task
from .config import DEFAULT_CONFIG_PATH, AgentConfig, ConfigError, load_agent_config, validate_config_file
from .models import LLMClientError
from .orchestrator import Orchestrator, SessionResult
from .tools.gates import run_gates
from .tools.journal import DEFAULT_JOURNAL_FILE, read_entries
from .tools.patch import ApplyError, PatchValidationError
from .tools.vcs import GitError, GitRepository
from .tools.workflow import DEFAULT_BRANCH_PREFIX, GitWorkflow

APP_HELP = "Autonomous repository agent: backlog, sessions and branch hygiene."

app = typer.Typer(help=APP_HELP)


@dataclass(slots=True)
class CliState:
    """Options shared by every command."""

    repo_root: Path


def _state(ctx: typer.Context) -> CliState:
    if isinstance(ctx.obj, CliState):
        return ctx.obj
    return CliState(repo_root=Path.cwd())


@app.callback()
def main(
    ctx: typer.Context,
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Repository root to operate on."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CliState(repo_root=repo.resolve())


def _config_path(state: CliState, config: str) -> Path:
    path = Path(config)
    return path if path.is_absolute() else state.repo_root / path


def _load_config(state: CliState, config: str) -> AgentConfig:
    try:
        return load_agent_config(_config_path(state, config), base_dir=state.repo_root)
    except ConfigError as error:
        typer.echo("Config validation failed:")
        for item in error.errors:
            typer.echo(f"  - {item}")
        raise typer.Exit(code=1) from error


def _open_repo(state: CliState) -> GitRepository:
    try:
        return GitRepository(state.repo_root)
    except GitError as error:
        typer.echo(f"Git error: {error}")
        raise typer.Exit(code=1) from error


def _load_backlog(state: CliState, tasks: str) -> Backlog:
    return Backlog.load(state.repo_root / tasks)


_CONFIG_OPTION_HELP = "Path to the agent configuration file (YAML or JSON)."
_TASKS_OPTION_HELP = "Path to the task backlog, relative to the repository root."


# ------------------------------------------------------------------ backlog
@app.command("next")
def next_task(
    ctx: typer.Context,
    tasks: str = typer.Option(DEFAULT_TASKS_FILE, "--tasks", "-t", help=_TASKS_OPTION_HELP),
    by_priority: bool = typer.Option(False, "--priority", help="Pick the highest-priority task instead of the first."),
) -> None:
    """Show the task the next session would work on."""
    backlog = _load_backlog(_state(ctx), tasks)
    task = select_task(backlog, "priority" if by_priority else "next")
    if task is None:
        typer.echo("No pending tasks.")
        return
    typer.echo(f"Next task: {task.description}")
    if task.priority is not Priority.NONE:
        typer.echo(f"Priority: {task.priority.value}")
    if task.tags:
        typer.echo(f"Tags: {', '.join(task.tags)}")


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    tasks: str = typer.Option(DEFAULT_TASKS_FILE, "--tasks", "-t", help=_TASKS_OPTION_HELP),
) -> None:
    """Print a completion summary grouped by priority."""
    backlog = _load_backlog(_state(ctx), tasks)
    for line in backlog.summary_lines():
        typer.echo(line)


@app.command()
def complete(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Part of the description of the task to complete."),
    tasks: str = typer.Option(DEFAULT_TASKS_FILE, "--tasks", "-t", help=_TASKS_OPTION_HELP),
) -> None:
    """Mark the first incomplete task matching TEXT as done."""
    backlog = _load_backlog(_state(ctx), tasks)
    task = backlog.complete_by_description(text)
    if task is None:
        typer.echo(f"No incomplete task matches: {text}")
        raise typer.Exit(code=1)
    backlog.save()
    typer.echo(f"Marked task complete: {task.description}")


@app.command()
def add(
    ctx: typer.Context,
    description: str = typer.Argument(..., help="Task description."),
    priority: Optional[str] = typer.Option(None, "--priority", "-p", help="low, medium or high."),
    tag: List[str] = typer.Option(None, "--tag", help="Tag to attach (repeatable)."),
    tasks: str = typer.Option(DEFAULT_TASKS_FILE, "--tasks", "-t", help=_TASKS_OPTION_HELP),
) -> None:
    """Append a new task to the backlog."""
    backlog = _load_backlog(_state(ctx), tasks)
    try:
        task = backlog.add_task(description, priority=priority, tags=tag or ())
    except ValueError as error:
        raise typer.BadParameter(str(error)) from error
    backlog.save()
    typer.echo(f"Added task: {task.render()}")


# ------------------------------------------------------------------- config
@app.command()
def validate(
    ctx: typer.Context,
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help=_CONFIG_OPTION_HELP),
) -> None:
    """Validate the agent configuration and list every issue."""
    state = _state(ctx)
    path = _config_path(state, config)
    typer.echo(f"Validating config: {path}")
    result = validate_config_file(path, base_dir=state.repo_root)
    typer.echo("Configuration is valid" if result.is_valid else "Configuration is invalid")
    if result.errors:
        typer.echo("Errors:")
        for item in result.errors:
            typer.echo(f"  - {item}")
    if result.warnings:
        typer.echo("Warnings:")
        for item in result.warnings:
            typer.echo(f"  - {item}")
    if not result.is_valid:
        raise typer.Exit(code=1)


# ----------------------------------------------------------------- sessions
def _report_session(result: SessionResult) -> None:
    if result.task is None:
        typer.echo("No pending tasks.")
        return
    typer.echo(f"Task: {result.task.description}")
    typer.echo(f"Branch: {result.branch}")
    typer.echo(f"Outcome: {result.state.value} after {result.iterations} iteration(s)")
    if result.gate_report is not None:
        typer.echo(result.gate_report.format_summary())
    if result.finalize:
        if result.committed:
            typer.echo(f"Committed: {result.finalize.get('commitHash')}")
        else:
            typer.echo(result.finalize.get("message", "Nothing committed"))
    if result.final_message:
        typer.echo(result.final_message.strip())


@app.command()
def run(
    ctx: typer.Context,
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help=_CONFIG_OPTION_HELP),
) -> None:
    """Work on the next task through a tool-calling model session."""
    state = _state(ctx)
    agent_config = _load_config(state, config)
    repo = _open_repo(state)
    try:
        orchestrator = Orchestrator.from_config(agent_config, repo)
        result = orchestrator.run()
    except ValueError as error:
        typer.echo(f"Error: {error}")
        raise typer.Exit(code=1) from error
    except LLMClientError as error:
        typer.echo(f"Model request failed: {error}")
        raise typer.Exit(code=1) from error
    except GitError as error:
        typer.echo(f"Git error: {error}")
        raise typer.Exit(code=1) from error
    _report_session(result)


@app.command()
def patch(
    ctx: typer.Context,
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help=_CONFIG_OPTION_HELP),
) -> None:
    """Work on the next task by requesting, validating and applying one diff."""
    state = _state(ctx)
    agent_config = _load_config(state, config)
    repo = _open_repo(state)
    try:
        orchestrator = Orchestrator.from_config(agent_config, repo)
        result = orchestrator.run_patch_session()
    except PatchValidationError as error:
        typer.echo(f"{error}:")
        typer.echo(error.format_violations())
        raise typer.Exit(code=1) from error
    except ApplyError as error:
        typer.echo(str(error))
        for hunk in error.failing_hunks:
            typer.echo(f"  - {hunk.get('path')}: {hunk.get('reason')}")
        raise typer.Exit(code=1) from error
    except ValueError as error:
        typer.echo(f"Error: {error}")
        raise typer.Exit(code=1) from error
    except LLMClientError as error:
        typer.echo(f"Model request failed: {error}")
        raise typer.Exit(code=1) from error
    except GitError as error:
        typer.echo(f"Git error: {error}")
        raise typer.Exit(code=1) from error
    _report_session(result)


@app.command()
def gates(
    ctx: typer.Context,
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help=_CONFIG_OPTION_HELP),
    only: List[str] = typer.Option(None, "--only", help="Run only the named gate (repeatable)."),
) -> None:
    """Run the configured quality commands; exit nonzero when any fails."""
    state = _state(ctx)
    agent_config = _load_config(state, config)
    report = run_gates(agent_config.commands, state.repo_root, only=only or None)
    typer.echo(report.format_summary())
    if report.has_failures:
        raise typer.Exit(code=1)


# ------------------------------------------------------------------ git/journal
@app.command()
def cleanup(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="List the branches that would be deleted."),
    prefix: str = typer.Option(DEFAULT_BRANCH_PREFIX, "--prefix", help="Branch prefix owned by the agent."),
) -> None:
    """Delete agent branches other than the current one."""
    workflow = GitWorkflow(_open_repo(_state(ctx)), branch_prefix=prefix)
    try:
        report = workflow.cleanup(dry_run=dry_run)
    except GitError as error:
        typer.echo(f"Git error: {error}")
        raise typer.Exit(code=1) from error

    if not (report.deleted or report.planned or report.skipped or report.failed):
        typer.echo(f"No branches matching {prefix}* found.")
        return
    for branch in report.planned:
        typer.echo(f"Would delete: {branch}")
    for branch in report.deleted:
        typer.echo(f"Deleted: {branch}")
    for branch in report.skipped:
        typer.echo(f"Skipped current branch: {branch}")
    for branch, reason in report.failed.items():
        typer.echo(f"Failed to delete {branch}: {reason}")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show the current branch and whether the working tree is clean."""
    repo = _open_repo(_state(ctx))
    try:
        summary = repo.status_summary()
    except GitError as error:
        typer.echo(f"Git error: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Current branch: {summary.current_branch or '(detached)'}")
    typer.echo(f"Uncommitted changes: {'yes' if summary.has_uncommitted_changes else 'no'}")
    typer.echo(f"Untracked files: {'yes' if summary.has_untracked_files else 'no'}")
    typer.echo(f"Clean: {'yes' if summary.is_clean else 'no'}")


@app.command()
def journal(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", help="Number of most recent entries to show."),
    path: str = typer.Option(DEFAULT_JOURNAL_FILE, "--journal", help="Journal file relative to the repository root."),
) -> None:
    """Show the most recent journal entries."""
    entries = read_entries(_state(ctx).repo_root / path)
    if not entries:
        typer.echo("Journal is empty.")
        return
    for entry in entries[-limit:] if limit > 0 else entries:
        typer.echo(f"{entry.timestamp}  {entry.commit_hash}  {entry.task_description}")


if __name__ == "__main__":
    app()
