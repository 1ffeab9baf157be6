from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from repoagent.models import (
    ChatRequest,
    LLMResponseFormatError,
    LLMTransportError,
    OpenAIChatClient,
)


def _completion(message: Dict[str, Any], finish_reason: str = "stop") -> str:
    return json.dumps({"id": "chatcmpl-1", "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}]})


def test_payload_and_tool_call_parsing() -> None:
    captured: List[Dict[str, Any]] = []

    def transport(payload: Dict[str, Any]) -> str:
        captured.append(payload)
        return _completion(
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "read_file", "arguments": '{"path": "README.md"}'},
                    }
                ],
            },
            finish_reason="tool_calls",
        )

    client = OpenAIChatClient(model="gpt-test", transport=transport)
    tools = [{"type": "function", "function": {"name": "read_file", "parameters": {"type": "object"}}}]

    response = client.complete(ChatRequest(messages=[{"role": "user", "content": "hi"}], tools=tools))

    assert captured[0]["model"] == "gpt-test"
    assert captured[0]["tool_choice"] == "auto"
    assert captured[0]["temperature"] == 0.0
    assert response.has_tool_calls
    assert response.tool_calls[0].name == "read_file"
    assert json.loads(response.tool_calls[0].arguments) == {"path": "README.md"}
    assert response.assistant_message()["tool_calls"][0]["id"] == "call_1"


def test_text_response_without_tools() -> None:
    captured: List[Dict[str, Any]] = []

    def transport(payload: Dict[str, Any]) -> str:
        captured.append(payload)
        return _completion({"role": "assistant", "content": "All done."})

    client = OpenAIChatClient(transport=transport)
    response = client.complete(ChatRequest(messages=[], model="override"))

    assert "tools" not in captured[0]
    assert "tool_choice" not in captured[0]
    assert captured[0]["model"] == "override"
    assert response.content == "All done."
    assert response.finish_reason == "stop"
    assert not response.has_tool_calls


@pytest.mark.parametrize("raw", ["", "not json", json.dumps({"choices": []}), json.dumps({"unexpected": True})])
def test_malformed_responses_raise_format_error(raw: str) -> None:
    client = OpenAIChatClient(transport=lambda payload: raw)

    with pytest.raises(LLMResponseFormatError):
        client.complete(ChatRequest(messages=[]))


def test_transport_failure_is_wrapped() -> None:
    def transport(payload: Dict[str, Any]) -> str:
        raise ConnectionError("connection reset")

    client = OpenAIChatClient(transport=transport)

    with pytest.raises(LLMTransportError, match="connection reset"):
        client.complete(ChatRequest(messages=[]))


def test_api_key_required_for_http_transport(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("REPOAGENT_API_KEY", raising=False)

    with pytest.raises(ValueError):
        OpenAIChatClient()

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert OpenAIChatClient().model == "gpt-4o"


def test_timeout_override_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REPOAGENT_TIMEOUT", "12.5")
    assert OpenAIChatClient(transport=lambda payload: "").timeout == 12.5

    monkeypatch.setenv("REPOAGENT_TIMEOUT", "soon")
    assert OpenAIChatClient(transport=lambda payload: "", timeout=30).timeout == 30
