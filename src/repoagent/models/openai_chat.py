"""Production client for the OpenAI Chat Completions API with tool calling."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMTransportError

__all__ = ["DEFAULT_BASE_URL", "DEFAULT_MODEL", "OpenAIChatClient"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o"

Transport = Callable[[Dict[str, Any]], str]


class OpenAIChatClient(LLMClient):
    """Thin adapter around the Chat Completions endpoint."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
    ) -> None:
        super().__init__(model=model)
        self._api_key = api_key or os.getenv("REPOAGENT_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url or DEFAULT_BASE_URL
        timeout_override = os.getenv("REPOAGENT_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
            except ValueError:
                LOGGER.warning("Ignoring invalid REPOAGENT_TIMEOUT=%r", timeout_override)
            else:
                if parsed > 0:
                    timeout = parsed
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport (set OPENAI_API_KEY).")

    @property
    def timeout(self) -> float:
        return self._timeout

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request over the configured transport."""
        try:
            return self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport posting JSON with bearer authentication."""
        LOGGER.debug("Chat request: %d messages, %d tools", len(payload.get("messages", [])), len(payload.get("tools", [])))
        request = urllib.request.Request(
            self._base_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Chat completion timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach chat endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")
