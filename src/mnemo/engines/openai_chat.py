"""OpenAI-compatible chat completions engine with tool calling."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import aiohttp

from mnemo.config import DEFAULT_OPENAI_BASE_URL
from mnemo.engines.base import EngineError, EngineResponse, Message, parse_tool_calls, post_json

logger = logging.getLogger(__name__)


@dataclass
class OpenAIChatEngine:
    """Direct provider: POST {base_url}/chat/completions."""

    api_key: str
    model: str = "gpt-4o-mini"
    base_url: str = DEFAULT_OPENAI_BASE_URL
    temperature: float = 0.3
    max_tokens: int = 500
    timeout: int = 30
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return "openai"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def chat(
        self,
        messages: list[Message],
        *,
        tools: list[dict] | None = None,
    ) -> EngineResponse:
        body: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"

        data = await post_json(
            self._get_session(),
            f"{self.base_url.rstrip('/')}/chat/completions",
            body,
            headers=self._headers,
            timeout=self.timeout,
        )

        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise EngineError("Malformed chat completion: no message") from e

        return EngineResponse(
            text=message.get("content") or "",
            tool_calls=parse_tool_calls(message),
            model=data.get("model"),
            metadata={"usage": data.get("usage") or {}},
        )

    async def health_check(self) -> bool:
        try:
            session = self._get_session()
            async with session.get(
                f"{self.base_url.rstrip('/')}/models",
                headers=self._headers,
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                return resp.status < 400
        except Exception:
            return False

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
