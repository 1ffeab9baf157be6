"""Typed client base class for tool-calling chat models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
    "ToolCall",
]


class LLMClientError(RuntimeError):
    """Base error raised for model client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model service returns a payload we cannot interpret."""


@dataclass(slots=True)
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    arguments: str = "{}"

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(slots=True)
class ChatRequest:
    """Conversation snapshot sent to the model service."""

    messages: List[Dict[str, Any]]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    model: Optional[str] = None
    temperature: float = 0.0

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready Chat Completions payload."""
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "messages": list(self.messages),
            "temperature": self.temperature,
        }
        if self.tools:
            payload["tools"] = list(self.tools)
            payload["tool_choice"] = "auto"
        return payload


@dataclass(slots=True)
class ChatResponse:
    """First choice of a chat completion: tool calls or text."""

    content: Optional[str]
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def assistant_message(self) -> Dict[str, Any]:
        """Return the assistant turn to append to the conversation history."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_message() for call in self.tool_calls]
        return message


class _FunctionModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    arguments: str = "{}"


class _ToolCallModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    function: _FunctionModel


class _MessageModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: Optional[str] = None
    tool_calls: Optional[List[_ToolCallModel]] = None


class _ChoiceModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: _MessageModel
    finish_reason: Optional[str] = None


class _CompletionModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    choices: List[_ChoiceModel]


class LLMClient:
    """Sends one request at a time and validates the response shape.

    Requests are never retried here; a transport failure surfaces to the
    caller, which aborts the current task run.
    """

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def complete(self, request: ChatRequest) -> ChatResponse:
        """Invoke the model and return its first choice."""
        payload = request.to_payload(self._model)
        raw = self._raw_invoke(payload)
        return self._parse_response(raw)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def _parse_response(raw_response: str) -> ChatResponse:
        text = raw_response.strip() if raw_response else ""
        if not text:
            raise LLMResponseFormatError("Model returned an empty response.")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as error:
            raise LLMResponseFormatError(f"Model returned invalid JSON: {text[:200]}") from error

        try:
            completion = _CompletionModel.model_validate(data)
        except ValidationError as error:
            raise LLMResponseFormatError(f"Unexpected chat completion shape: {error}") from error
        if not completion.choices:
            raise LLMResponseFormatError("Chat completion contained no choices.")

        choice = completion.choices[0]
        calls = [
            ToolCall(id=item.id, name=item.function.name, arguments=item.function.arguments or "{}")
            for item in choice.message.tool_calls or []
        ]
        return ChatResponse(
            content=choice.message.content,
            tool_calls=calls,
            finish_reason=choice.finish_reason,
        )
