"""Agent configuration: validation with errors/warnings and typed loading.

The configuration document lives at ``ai/config.yaml`` by default.  JSON is
accepted as well since every JSON document is valid YAML.  Validation collects
every problem instead of stopping at the first one, so an operator fixing a
config sees the complete list in one pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .backlog import DEFAULT_TASKS_FILE
from .tools.journal import DEFAULT_JOURNAL_FILE
from .tools.workflow import DEFAULT_BRANCH_PREFIX

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "ai/config.yaml"
DEFAULT_PROMPT_FILE = "ai/PROMPT.md"
DEFAULT_COMMIT_FORMAT = "feat: {description} [ai]"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_MAX_ITERATIONS = 40

REQUIRED_FIELDS: Tuple[str, ...] = ("allowedPaths", "branchPrefix", "maxChangedLines", "commands", "retry")
RECOMMENDED_COMMANDS: Tuple[str, ...] = ("lint", "typecheck", "test", "build")
TASK_SELECTION_STRATEGIES: Tuple[str, ...] = ("next", "priority")
STRING_FIELDS: Tuple[str, ...] = ("tasksFile", "promptFile", "journalFile", "remote", "apiBaseUrl")

MAX_CHANGED_LINES_WARNING = 1000
RETRY_WARNING = 5
MAX_ITERATIONS_WARNING = 200


class ConfigError(ValueError):
    """Raised when a configuration document fails validation."""

    def __init__(self, errors: List[str], *, path: Path | None = None) -> None:
        self.errors = list(errors)
        self.path = path
        location = f" ({path})" if path is not None else ""
        super().__init__(f"Invalid configuration{location}: " + "; ".join(self.errors))


@dataclass(slots=True)
class ValidationResult:
    """Errors block a run; warnings are advisory."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class AgentConfig(BaseModel):
    """Typed view of a validated configuration document."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    allowed_paths: Tuple[str, ...] = Field(default=(), alias="allowedPaths")
    branch_prefix: str = Field(default=DEFAULT_BRANCH_PREFIX, alias="branchPrefix")
    commands: Dict[str, str] = Field(default_factory=dict)
    model: str = DEFAULT_MODEL
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, alias="maxIterations", gt=0)
    retry: int = Field(default=0, ge=0)
    max_changed_lines: int = Field(default=300, alias="maxChangedLines", gt=0)
    commit_format: str = Field(default=DEFAULT_COMMIT_FORMAT, alias="commitFormat")
    tasks_file: str = Field(default=DEFAULT_TASKS_FILE, alias="tasksFile")
    journal_file: str = Field(default=DEFAULT_JOURNAL_FILE, alias="journalFile")
    prompt_file: str = Field(default=DEFAULT_PROMPT_FILE, alias="promptFile")
    task_selection: Literal["next", "priority"] = Field(default="next", alias="taskSelection")
    remote: str = "origin"
    api_base_url: Optional[str] = Field(default=None, alias="apiBaseUrl")
    request_timeout: Optional[float] = Field(default=None, alias="requestTimeout", gt=0)

    def format_commit_message(self, description: str) -> str:
        return self.commit_format.replace("{description}", description).replace("{task}", description)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(raw: Any, *, base_dir: Path | str | None = None) -> ValidationResult:
    """Validate a parsed configuration document and collect every issue.

    ``base_dir`` anchors ``tasksFile``/``promptFile`` existence checks; they
    are skipped when it is ``None``.
    """
    result = ValidationResult()
    errors, warnings = result.errors, result.warnings

    if not isinstance(raw, Mapping):
        errors.append("Configuration must be a mapping at the top level")
        return result

    for name in REQUIRED_FIELDS:
        if name not in raw:
            errors.append(f"Missing required field: {name}")

    if "allowedPaths" in raw:
        allowed = raw["allowedPaths"]
        if not isinstance(allowed, list):
            errors.append("allowedPaths must be a list")
        else:
            for entry in allowed:
                if not isinstance(entry, str):
                    errors.append(f"Invalid allowedPath: {entry!r} (must be a string)")

    if "branchPrefix" in raw:
        prefix = raw["branchPrefix"]
        if not isinstance(prefix, str):
            errors.append("branchPrefix must be a string")
        elif not prefix:
            warnings.append("branchPrefix is empty")

    if "maxChangedLines" in raw:
        limit = raw["maxChangedLines"]
        if not _is_int(limit):
            errors.append("maxChangedLines must be an integer")
        elif limit <= 0:
            errors.append("maxChangedLines must be positive")
        elif limit > MAX_CHANGED_LINES_WARNING:
            warnings.append(f"maxChangedLines is very high (>{MAX_CHANGED_LINES_WARNING}), consider reducing")

    if "retry" in raw:
        retry = raw["retry"]
        if not _is_int(retry):
            errors.append("retry must be an integer")
        elif retry < 0:
            errors.append("retry must be non-negative")
        elif retry > RETRY_WARNING:
            warnings.append(f"retry count is high (>{RETRY_WARNING}), this might slow down the process")

    if "commands" in raw:
        commands = raw["commands"]
        if not isinstance(commands, Mapping):
            errors.append("commands must be a mapping")
        else:
            for name in RECOMMENDED_COMMANDS:
                if name not in commands:
                    warnings.append(f"Missing recommended command: {name}")
            for name, value in commands.items():
                if not isinstance(value, str):
                    errors.append(f"Command {name} must be a string")
                elif not value.strip():
                    warnings.append(f"Command {name} is empty")

    if "maxIterations" in raw:
        iterations = raw["maxIterations"]
        if not _is_int(iterations) or iterations <= 0:
            errors.append("maxIterations must be a positive integer")
        elif iterations > MAX_ITERATIONS_WARNING:
            warnings.append(f"maxIterations is very high (>{MAX_ITERATIONS_WARNING})")

    if "model" in raw:
        model = raw["model"]
        if not isinstance(model, str) or not model.strip():
            errors.append("model must be a non-empty string")

    if "taskSelection" in raw and raw["taskSelection"] not in TASK_SELECTION_STRATEGIES:
        valid = ", ".join(TASK_SELECTION_STRATEGIES)
        errors.append(f"taskSelection must be one of: {valid}")

    if "requestTimeout" in raw:
        timeout = raw["requestTimeout"]
        if not _is_number(timeout) or timeout <= 0:
            errors.append("requestTimeout must be a positive number")

    if "commitFormat" in raw and not isinstance(raw["commitFormat"], str):
        warnings.append("commitFormat should be a string")

    for key in STRING_FIELDS:
        if key not in raw or (key == "apiBaseUrl" and raw[key] is None):
            continue
        if not isinstance(raw[key], str):
            errors.append(f"{key} must be a string")

    if base_dir is not None:
        root = Path(base_dir)
        for key in ("tasksFile", "promptFile"):
            value = raw.get(key)
            if isinstance(value, str) and not (root / value).exists():
                errors.append(f"{key} not found: {value}")

    return result


def read_config_document(path: Path) -> Any:
    """Parse the YAML/JSON document at ``path``."""
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


def validate_config_file(path: Path | str, *, base_dir: Path | str | None = None) -> ValidationResult:
    """Validate the configuration file at ``path``.

    Relative ``tasksFile``/``promptFile`` entries resolve against ``base_dir``,
    defaulting to the repository that contains the ``ai/`` directory.
    """
    config_path = Path(path)
    if not config_path.exists():
        return ValidationResult(errors=[f"Config file not found: {config_path}"])
    try:
        raw = read_config_document(config_path)
    except yaml.YAMLError as error:
        return ValidationResult(errors=[f"Invalid YAML/JSON in config file: {error}"])
    root = Path(base_dir) if base_dir is not None else _default_base_dir(config_path)
    return validate_config(raw, base_dir=root)


def load_agent_config(path: Path | str, *, base_dir: Path | str | None = None) -> AgentConfig:
    """Validate and load the configuration at ``path``.

    Raises :class:`ConfigError` carrying every error when invalid; warnings
    are logged and otherwise ignored.
    """
    config_path = Path(path)
    result = validate_config_file(config_path, base_dir=base_dir)
    if not result.is_valid:
        raise ConfigError(result.errors, path=config_path)
    for warning in result.warnings:
        LOGGER.warning("Config warning: %s", warning)

    raw = dict(read_config_document(config_path))
    if not isinstance(raw.get("commitFormat", DEFAULT_COMMIT_FORMAT), str):
        raw.pop("commitFormat")
    try:
        return AgentConfig.model_validate(raw)
    except ValidationError as error:
        raise ConfigError(_format_validation_errors(error), path=config_path) from error


def _format_validation_errors(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "config"
        messages.append(f"{location}: {item.get('msg', 'invalid value')}")
    return messages


def _default_base_dir(config_path: Path) -> Path:
    parent = config_path.resolve().parent
    if parent.name == "ai":
        return parent.parent
    return parent


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "AgentConfig",
    "ConfigError",
    "ValidationResult",
    "load_agent_config",
    "validate_config",
    "validate_config_file",
]
