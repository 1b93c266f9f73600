"""Reasoning backend protocol and shared types."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import aiohttp

logger = logging.getLogger(__name__)

Message = dict[str, str]


class EngineError(Exception):
    """A reasoning backend could not produce a usable reply."""


@dataclass
class ToolCall:
    """A structured function call requested by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass
class EngineResponse:
    """Response from a reasoning backend: free text, tool calls, or both."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str | None = None
    metadata: dict = field(default_factory=dict)


@runtime_checkable
class ReasoningBackend(Protocol):
    """Protocol that all reasoning backends must implement."""

    @property
    def name(self) -> str: ...

    async def chat(
        self,
        messages: list[Message],
        *,
        tools: list[dict] | None = None,
    ) -> EngineResponse:
        """Send the conversation and return the reply. Raises EngineError."""
        ...

    async def health_check(self) -> bool:
        """Check if the backend is reachable. Returns True if healthy."""
        ...

    async def close(self) -> None: ...


def parse_tool_calls(message: dict[str, Any]) -> list[ToolCall]:
    """Extract tool calls from an OpenAI-style assistant message.

    Handles both `tool_calls` and the older single `function_call` field.
    """
    raw_calls = list(message.get("tool_calls") or [])
    if message.get("function_call"):
        raw_calls.append({"function": message["function_call"]})

    calls: list[ToolCall] = []
    for raw in raw_calls:
        function = raw.get("function") or {}
        name = function.get("name")
        if not name:
            continue
        arguments = function.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except ValueError as e:
                raise EngineError(f"Invalid arguments for tool {name}: {e}") from e
        if not isinstance(arguments, dict):
            raise EngineError(f"Arguments for tool {name} must be an object")
        calls.append(ToolCall(name=name, arguments=arguments, id=raw.get("id")))
    return calls


async def post_json(
    session: aiohttp.ClientSession,
    url: str,
    body: dict[str, Any],
    *,
    headers: dict[str, str],
    timeout: float,
) -> dict[str, Any]:
    """POST a JSON body and return the decoded JSON object, or raise EngineError."""
    try:
        async with session.post(
            url,
            json=body,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            text = await resp.text()
            if resp.status >= 400:
                raise EngineError(f"HTTP {resp.status} from {url}: {text[:200]}")
    except asyncio.TimeoutError as e:
        raise EngineError(f"Timeout after {timeout}s calling {url}") from e
    except aiohttp.ClientError as e:
        raise EngineError(f"Request to {url} failed: {e}") from e

    try:
        data = json.loads(text)
    except ValueError as e:
        raise EngineError(f"Invalid JSON from {url}") from e
    if not isinstance(data, dict):
        raise EngineError(f"Unexpected response shape from {url}")
    return data
