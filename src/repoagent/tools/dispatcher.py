"""Registry of model-callable tools and the dispatcher that runs them.

Each tool is a :class:`ToolSpec` pairing a pydantic argument model with a
handler.  The same argument models produce the JSON schemas advertised to the
model service, so the contract the model sees and the validation applied to
its calls cannot drift apart.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .commands import DEFAULT_TIMEOUT_MS, CommandTimeoutError, clamp_timeout, run_shell
from .patch import PatchValidationError
from .sandbox import PathError, SessionContext, resolve
from .workflow import GitWorkflow

LOGGER = logging.getLogger(__name__)

MIN_LIST_DEPTH = 1
MAX_LIST_DEPTH = 5


class ToolExecutionError(RuntimeError):
    """Raised by a tool handler when a single call cannot be completed."""


# ------------------------------------------------------------ argument models
class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ListDirectoryArgs(ToolArgs):
    path: str = Field(".", description="Directory relative to the repository root.")
    recursive: bool = Field(False, description="List subdirectories recursively.")
    depth: int = Field(2, description="Maximum recursion depth when recursive is true.")


class ReadFileArgs(ToolArgs):
    path: str = Field(..., description="File path relative to the repository root.")
    encoding: str = Field("utf-8", description="File encoding (default utf-8).")


class WriteFileArgs(ToolArgs):
    path: str = Field(..., description="File path relative to the repository root.")
    content: str = Field(..., description="Full file content to write.")


class AppendFileArgs(ToolArgs):
    path: str = Field(..., description="File path relative to the repository root.")
    content: str = Field(..., description="Content appended to the end of the file.")


class DeletePathArgs(ToolArgs):
    path: str = Field(..., description="File or directory relative to the repository root.")


class RunCommandArgs(ToolArgs):
    command: str = Field(..., description="Shell command to execute.")
    cwd: str | None = Field(None, description="Working directory relative to the repository root.")
    timeout_ms: int = Field(
        DEFAULT_TIMEOUT_MS,
        alias="timeoutMs",
        description="Timeout in milliseconds (1000-300000, default 120000).",
    )


class GitStatusArgs(ToolArgs):
    pass


class FinalizeTaskArgs(ToolArgs):
    commit_message: str = Field(..., alias="commitMessage", description="Commit message for the task.")
    push: bool = Field(False, description="Push the branch to the configured remote after committing.")


ToolHandler = Callable[[Any], Any]


@dataclass(slots=True)
class ToolSpec:
    """Metadata describing one callable tool."""

    name: str
    description: str
    args_model: type[ToolArgs]
    handler: ToolHandler

    def schema(self) -> Dict[str, Any]:
        parameters = self.args_model.model_json_schema(by_alias=True)
        parameters.pop("title", None)
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass(slots=True)
class ToolOutcome:
    """Result of one tool call: a payload or a serialized error."""

    tool: str
    result: Any = None
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, tool: str, error: BaseException) -> "ToolOutcome":
        return cls(tool=tool, error=str(error), error_type=type(error).__name__)

    def to_payload(self) -> Any:
        if self.error is not None:
            return {"error": self.error, "type": self.error_type}
        return self.result

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False, default=str)


# Failures that end only the current call; anything else (GitError included)
# propagates to the orchestrator.
_CALL_ERRORS = (PathError, ToolExecutionError, ValidationError, OSError, PatchValidationError)


class ToolDispatcher:
    """Dispatch table mapping tool names to validated handlers."""

    def __init__(self, context: SessionContext, *, workflow: GitWorkflow | None = None) -> None:
        self.context = context
        self.workflow = workflow
        self._registry: Dict[str, ToolSpec] = {
            spec.name: spec
            for spec in (
                ToolSpec(
                    "list_directory",
                    "List files and directories under a path inside the repository.",
                    ListDirectoryArgs,
                    self._list_directory,
                ),
                ToolSpec(
                    "read_file",
                    "Read a file from the repository.",
                    ReadFileArgs,
                    self._read_file,
                ),
                ToolSpec(
                    "write_file",
                    "Create or overwrite a file inside an allowed path.",
                    WriteFileArgs,
                    self._write_file,
                ),
                ToolSpec(
                    "append_file",
                    "Append content to a file inside an allowed path, creating it when missing.",
                    AppendFileArgs,
                    self._append_file,
                ),
                ToolSpec(
                    "delete_path",
                    "Delete a file or directory inside an allowed path.",
                    DeletePathArgs,
                    self._delete_path,
                ),
                ToolSpec(
                    "run_command",
                    "Run a shell command inside the repository with a timeout.",
                    RunCommandArgs,
                    self._run_command,
                ),
                ToolSpec(
                    "git_status",
                    "Show the short git status of the working tree.",
                    GitStatusArgs,
                    self._git_status,
                ),
                ToolSpec(
                    "finalize_task",
                    "Commit all changes for the current task and record it in the journal. Call exactly once.",
                    FinalizeTaskArgs,
                    self._finalize_task,
                ),
            )
        }

    # ---------------------------------------------------------------- registry
    def tool_schemas(self) -> List[Dict[str, Any]]:
        """Return the tool definitions sent with every model request."""
        return [spec.schema() for spec in self._registry.values()]

    def dispatch(self, name: str, arguments: str | Mapping[str, Any] | None) -> ToolOutcome:
        """Validate ``arguments`` and run tool ``name``.

        Per-call failures become error outcomes; :class:`GitError` and other
        unexpected exceptions propagate.
        """
        spec = self._registry.get(name)
        if spec is None:
            valid = ", ".join(sorted(self._registry))
            LOGGER.warning("Model requested unknown tool %s", name)
            return ToolOutcome.failure(name, ToolExecutionError(f"Unknown tool '{name}'. Expected one of: {valid}"))

        try:
            payload = self._decode_arguments(arguments)
            args = spec.args_model.model_validate(payload)
            result = spec.handler(args)
        except _CALL_ERRORS as error:
            LOGGER.warning("Tool %s failed: %s", name, error)
            return ToolOutcome.failure(name, error)
        return ToolOutcome(tool=name, result=result)

    @staticmethod
    def _decode_arguments(arguments: str | Mapping[str, Any] | None) -> Mapping[str, Any]:
        if arguments is None:
            return {}
        if isinstance(arguments, Mapping):
            return arguments
        if not arguments.strip():
            return {}
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError as error:
            raise ToolExecutionError(f"Tool arguments are not valid JSON: {error}") from error
        if not isinstance(decoded, dict):
            raise ToolExecutionError("Tool arguments must be a JSON object")
        return decoded

    # ---------------------------------------------------------------- handlers
    def _list_directory(self, args: ListDirectoryArgs) -> Dict[str, Any]:
        target = resolve(args.path, self.context, enforce_allowed=False)
        if not target.is_dir():
            raise ToolExecutionError(f"Not a directory: {args.path}")
        depth_limit = max(MIN_LIST_DEPTH, min(args.depth, MAX_LIST_DEPTH))

        def walk(directory: Path, depth: int) -> List[Dict[str, Any]]:
            entries: List[Dict[str, Any]] = []
            for entry in sorted(directory.iterdir(), key=lambda item: item.name):
                if entry.name == ".git":
                    continue
                # Symlinks are listed but never followed.
                if entry.is_symlink():
                    kind, is_dir = "symlink", False
                else:
                    is_dir = entry.is_dir()
                    kind = "directory" if is_dir else "file"
                item: Dict[str, Any] = {
                    "name": entry.name,
                    "path": self.context.relative(entry),
                    "type": kind,
                }
                if is_dir and args.recursive and depth < depth_limit:
                    item["children"] = walk(entry, depth + 1)
                entries.append(item)
            return entries

        return {"path": self.context.relative(target), "entries": walk(target, 1)}

    def _read_file(self, args: ReadFileArgs) -> Dict[str, Any]:
        target = resolve(args.path, self.context, enforce_allowed=False)
        try:
            content = target.read_text(encoding=args.encoding)
        except (UnicodeDecodeError, LookupError) as error:
            raise ToolExecutionError(f"Unable to read {args.path} as {args.encoding}: {error}") from error
        return {"path": self.context.relative(target), "encoding": args.encoding, "content": content}

    @staticmethod
    def _encode_content(content: str) -> bytes:
        try:
            return content.encode("utf-8")
        except UnicodeEncodeError as error:
            raise ToolExecutionError(f"Content is not valid UTF-8 text: {error.reason}") from error

    def _write_file(self, args: WriteFileArgs) -> Dict[str, Any]:
        target = resolve(args.path, self.context)
        data = self._encode_content(args.content)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return {"path": self.context.relative(target), "bytesWritten": len(data)}

    def _append_file(self, args: AppendFileArgs) -> Dict[str, Any]:
        target = resolve(args.path, self.context)
        data = self._encode_content(args.content)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("ab") as handle:
            handle.write(data)
        return {"path": self.context.relative(target), "bytesAppended": len(data)}

    def _delete_path(self, args: DeletePathArgs) -> Dict[str, Any]:
        target = resolve(args.path, self.context)
        relative = self.context.relative(target)
        if target == self.context.repository_root:
            raise ToolExecutionError("Refusing to delete the repository root")
        if not target.exists() and not target.is_symlink():
            return {"path": relative, "removed": False}
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()
        return {"path": relative, "removed": True}

    def _run_command(self, args: RunCommandArgs) -> Dict[str, Any]:
        cwd = self.context.repository_root
        if args.cwd:
            cwd = resolve(args.cwd, self.context, enforce_allowed=False)
        try:
            result = run_shell(args.command, cwd, timeout_ms=clamp_timeout(args.timeout_ms))
        except CommandTimeoutError as error:
            raise ToolExecutionError(str(error)) from error
        return result.to_dict()

    def _git_status(self, args: GitStatusArgs) -> Dict[str, Any]:
        workflow = self._require_workflow()
        return {"status": workflow.repo.status_short()}

    def _finalize_task(self, args: FinalizeTaskArgs) -> Dict[str, Any]:
        workflow = self._require_workflow()
        message = args.commit_message.strip()
        if not message:
            raise ToolExecutionError("commitMessage is required")
        task = self.context.current_task
        description = task.description if task is not None else message
        return workflow.finalize(message, description, push=args.push).to_dict()

    def _require_workflow(self) -> GitWorkflow:
        if self.workflow is None:
            raise ToolExecutionError("Version control is not available in this session")
        return self.workflow


__all__ = [
    "ToolDispatcher",
    "ToolExecutionError",
    "ToolOutcome",
    "ToolSpec",
]
