"""Anthropic Messages API engine with tool use."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from mnemo.engines.base import EngineError, EngineResponse, Message, ToolCall

logger = logging.getLogger(__name__)


def to_anthropic_tools(tools: list[dict]) -> list[dict]:
    """Convert OpenAI-style function tools to Anthropic `input_schema` tools."""
    converted = []
    for tool in tools:
        function = tool.get("function", tool)
        converted.append(
            {
                "name": function["name"],
                "description": function.get("description", ""),
                "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
            }
        )
    return converted


def split_messages(messages: list[Message]) -> tuple[str | None, list[dict]]:
    """Pull system prompts out and merge consecutive same-role turns.

    The Messages API takes the system prompt separately and expects the
    conversation to alternate between user and assistant.
    """
    system_parts: list[str] = []
    merged: list[dict] = []
    for message in messages:
        role, content = message["role"], message["content"]
        if role == "system":
            system_parts.append(content)
            continue
        if merged and merged[-1]["role"] == role:
            merged[-1]["content"] += f"\n\n{content}"
        else:
            merged.append({"role": role, "content": content})

    if merged and merged[0]["role"] != "user":
        merged.insert(0, {"role": "user", "content": "(conversation resumed)"})
    return ("\n\n".join(system_parts) or None), merged


@dataclass
class AnthropicAPIEngine:
    """Direct Anthropic API via the `anthropic` SDK."""

    api_key: str | None = None
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 500
    temperature: float = 0.3
    timeout: int = 30

    def __post_init__(self) -> None:
        try:
            import anthropic

            self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout)
        except ImportError:
            raise ImportError(
                "anthropic package required. Install with: pip install 'mnemo[anthropic]'"
            )

    @property
    def name(self) -> str:
        return "anthropic"

    async def chat(
        self,
        messages: list[Message],
        *,
        tools: list[dict] | None = None,
    ) -> EngineResponse:
        system_prompt, conversation = split_messages(messages)
        kwargs: dict = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": conversation,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if tools:
            kwargs["tools"] = to_anthropic_tools(tools)

        try:
            response = await asyncio.to_thread(self._client.messages.create, **kwargs)
        except Exception as e:
            logger.error("Anthropic API error: %s", e)
            raise EngineError(f"Anthropic API error: {e}") from e

        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content or []:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(name=block.name, arguments=dict(block.input), id=block.id))

        usage = {}
        if response.usage:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }

        return EngineResponse(
            text="\n".join(texts),
            tool_calls=tool_calls,
            model=response.model,
            metadata={"usage": usage, "stop_reason": response.stop_reason},
        )

    async def health_check(self) -> bool:
        try:
            response = await asyncio.to_thread(
                self._client.messages.create,
                model=self.model,
                max_tokens=10,
                messages=[{"role": "user", "content": "ping"}],
            )
            return bool(response.content)
        except Exception:
            return False

    async def close(self) -> None:
        pass
