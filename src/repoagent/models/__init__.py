"""Convenience exports for repo-agent model client implementations."""

from .llm_client import (
    ChatRequest,
    ChatResponse,
    LLMClient,
    LLMClientError,
    LLMResponseFormatError,
    LLMTransportError,
    ToolCall,
)
from .openai_chat import OpenAIChatClient

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
    "OpenAIChatClient",
    "ToolCall",
]
