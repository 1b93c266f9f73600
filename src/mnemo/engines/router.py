"""Vendor-agnostic AI router engine.

The router speaks an OpenAI-like dialect at POST {base}/api/v1/ai-chat and
hides which provider actually answers. Replies may put the text under
`response` or `message.content`, and tool calls under `tool_calls` or
`message.tool_calls`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import aiohttp

from mnemo.engines.base import EngineResponse, Message, parse_tool_calls, post_json

logger = logging.getLogger(__name__)


@dataclass
class AIRouterEngine:
    base_url: str
    api_key: str | None = None
    use_case: str = "memory_assistant"
    temperature: float = 0.3
    max_tokens: int = 500
    timeout: int = 30
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "router"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def chat(
        self,
        messages: list[Message],
        *,
        tools: list[dict] | None = None,
    ) -> EngineResponse:
        headers = {"Content-Type": "application/json", "X-Use-Case": self.use_case}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        body: dict = {
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"

        data = await post_json(
            self._get_session(),
            f"{self.base_url}/api/v1/ai-chat",
            body,
            headers=headers,
            timeout=self.timeout,
        )

        message = data.get("message") or {}
        text = data.get("response") or message.get("content") or ""
        tool_calls = parse_tool_calls(
            {"tool_calls": message.get("tool_calls") or data.get("tool_calls") or []}
        )
        return EngineResponse(
            text=text,
            tool_calls=tool_calls,
            model=data.get("model"),
            metadata={
                "usage": data.get("usage") or {},
                "done_reason": data.get("done_reason", "stop"),
            },
        )

    async def health_check(self) -> bool:
        try:
            session = self._get_session()
            async with session.get(
                f"{self.base_url}/health", timeout=aiohttp.ClientTimeout(total=5)
            ) as resp:
                return resp.status < 400
        except Exception:
            return False

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
