"""Tests for reasoning backends (HTTP engines against the fake server, SDK mocked)."""

import pytest
from unittest.mock import MagicMock

from mnemo.config import EngineConfig
from mnemo.engines import build_backends
from mnemo.engines.anthropic_api import AnthropicAPIEngine, split_messages, to_anthropic_tools
from mnemo.engines.base import EngineError, ReasoningBackend, parse_tool_calls
from mnemo.engines.openai_chat import OpenAIChatEngine
from mnemo.engines.router import AIRouterEngine
from mnemo.orchestrator.tools import TOOLS

MESSAGES = [
    {"role": "system", "content": "You are helpful."},
    {"role": "user", "content": "remember that I like tea"},
]


class TestParseToolCalls:
    def test_tool_calls(self):
        calls = parse_tool_calls(
            {
                "tool_calls": [
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "search_memories", "arguments": '{"query": "tea"}'},
                    }
                ]
            }
        )
        assert len(calls) == 1
        assert calls[0].name == "search_memories"
        assert calls[0].arguments == {"query": "tea"}
        assert calls[0].id == "call_1"

    def test_legacy_function_call(self):
        calls = parse_tool_calls({"function_call": {"name": "list_memories", "arguments": ""}})
        assert calls[0].name == "list_memories"
        assert calls[0].arguments == {}

    def test_invalid_arguments(self):
        with pytest.raises(EngineError):
            parse_tool_calls({"tool_calls": [{"function": {"name": "x", "arguments": "{nope"}}]})

    def test_no_calls(self):
        assert parse_tool_calls({"content": "hello"}) == []


class TestOpenAIChatEngine:
    @pytest.mark.asyncio
    async def test_tool_call_response(self, memory_api):
        memory_api.add(
            "POST",
            "/v1/chat/completions",
            body={
                "model": "gpt-4o-mini",
                "choices": [
                    {
                        "message": {
                            "role": "assistant",
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {
                                        "name": "create_memory",
                                        "arguments": '{"title": "Tea", "content": "I like tea"}',
                                    },
                                }
                            ],
                        }
                    }
                ],
            },
        )
        engine = OpenAIChatEngine(api_key="sk-test", base_url=f"{memory_api.url}v1")
        try:
            response = await engine.chat(MESSAGES, tools=TOOLS)
        finally:
            await engine.close()

        assert response.text == ""
        assert response.tool_calls[0].name == "create_memory"
        assert response.tool_calls[0].arguments["content"] == "I like tea"
        assert response.model == "gpt-4o-mini"

        request = memory_api.requests[0]
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.json["tool_choice"] == "auto"
        assert request.json["messages"] == MESSAGES
        assert len(request.json["tools"]) == len(TOOLS)

    @pytest.mark.asyncio
    async def test_http_error_raises(self, memory_api):
        memory_api.add("POST", "/v1/chat/completions", 401, {"error": {"message": "bad key"}})
        engine = OpenAIChatEngine(api_key="sk-test", base_url=f"{memory_api.url}v1")
        try:
            with pytest.raises(EngineError, match="401"):
                await engine.chat(MESSAGES)
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_malformed_response_raises(self, memory_api):
        memory_api.add("POST", "/v1/chat/completions", body={"choices": []})
        engine = OpenAIChatEngine(api_key="sk-test", base_url=f"{memory_api.url}v1")
        try:
            with pytest.raises(EngineError):
                await engine.chat(MESSAGES)
        finally:
            await engine.close()

    def test_satisfies_protocol(self):
        assert isinstance(OpenAIChatEngine(api_key="x"), ReasoningBackend)


class TestAIRouterEngine:
    @pytest.mark.asyncio
    async def test_text_response(self, memory_api):
        memory_api.add("POST", "/api/v1/ai-chat", body={"response": "Hello there", "done": True})
        engine = AIRouterEngine(base_url=memory_api.url, api_key="router-key")
        try:
            response = await engine.chat(MESSAGES, tools=TOOLS)
        finally:
            await engine.close()

        assert response.text == "Hello there"
        assert response.tool_calls == []
        request = memory_api.requests[0]
        assert request.headers["Authorization"] == "Bearer router-key"
        assert request.headers["X-Use-Case"] == "memory_assistant"

    @pytest.mark.asyncio
    async def test_tool_calls_under_message(self, memory_api):
        memory_api.add(
            "POST",
            "/api/v1/ai-chat",
            body={
                "message": {
                    "content": "",
                    "tool_calls": [
                        {"function": {"name": "get_memory", "arguments": '{"id": "mem_1"}'}}
                    ],
                }
            },
        )
        engine = AIRouterEngine(base_url=memory_api.url)
        try:
            response = await engine.chat(MESSAGES)
        finally:
            await engine.close()
        assert response.tool_calls[0].arguments == {"id": "mem_1"}

    @pytest.mark.asyncio
    async def test_server_error_raises(self, memory_api):
        memory_api.add("POST", "/api/v1/ai-chat", 502, "bad gateway")
        engine = AIRouterEngine(base_url=memory_api.url)
        try:
            with pytest.raises(EngineError):
                await engine.chat(MESSAGES)
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_health_check(self, memory_api):
        engine = AIRouterEngine(base_url=memory_api.url)
        try:
            assert await engine.health_check() is True
        finally:
            await engine.close()
        assert memory_api.requests[0].path == "/health"


class TestAnthropicAPIEngine:
    @pytest.fixture
    def engine(self) -> AnthropicAPIEngine:
        engine = AnthropicAPIEngine(api_key="test")
        engine._client = MagicMock()
        return engine

    def test_name(self, engine: AnthropicAPIEngine):
        assert engine.name == "anthropic"

    @pytest.mark.asyncio
    async def test_tool_use(self, engine: AnthropicAPIEngine):
        text_block = MagicMock(type="text", text="Saving that.")
        tool_block = MagicMock(type="tool_use", id="tu_1", input={"content": "I like tea"})
        tool_block.name = "create_memory"
        engine._client.messages.create.return_value = MagicMock(
            content=[text_block, tool_block],
            model="claude-sonnet-4-5-20250929",
            usage=MagicMock(input_tokens=10, output_tokens=5),
            stop_reason="tool_use",
        )

        response = await engine.chat(MESSAGES, tools=TOOLS)

        assert response.text == "Saving that."
        assert response.tool_calls[0].name == "create_memory"
        assert response.tool_calls[0].arguments == {"content": "I like tea"}
        kwargs = engine._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "You are helpful."
        assert kwargs["messages"] == [{"role": "user", "content": "remember that I like tea"}]
        assert kwargs["tools"][0]["input_schema"]["required"] == ["content"]

    @pytest.mark.asyncio
    async def test_api_error_raises(self, engine: AnthropicAPIEngine):
        engine._client.messages.create.side_effect = RuntimeError("overloaded")
        with pytest.raises(EngineError, match="overloaded"):
            await engine.chat(MESSAGES)

    def test_split_messages_merges_roles(self):
        system, messages = split_messages(
            [
                {"role": "system", "content": "a"},
                {"role": "system", "content": "b"},
                {"role": "assistant", "content": "hi"},
                {"role": "user", "content": "x"},
                {"role": "user", "content": "y"},
            ]
        )
        assert system == "a\n\nb"
        assert messages[0]["role"] == "user"
        assert messages[1] == {"role": "assistant", "content": "hi"}
        assert messages[2] == {"role": "user", "content": "x\n\ny"}

    def test_tool_conversion(self):
        converted = to_anthropic_tools(TOOLS)
        assert [t["name"] for t in converted] == [t["function"]["name"] for t in TOOLS]
        assert all("input_schema" in t for t in converted)


class TestBuildBackends:
    def test_no_keys_means_rules_only(self):
        assert build_backends(EngineConfig(api_key=None)) == []

    def test_router_first_then_provider(self):
        backends = build_backends(
            EngineConfig(api_key="sk", router_url="https://router.example.com")
        )
        assert [b.name for b in backends] == ["router", "openai"]

    def test_none_engine_keeps_router(self):
        backends = build_backends(
            EngineConfig(name="none", api_key="sk", router_url="https://router.example.com")
        )
        assert [b.name for b in backends] == ["router"]

    def test_anthropic(self):
        backends = build_backends(EngineConfig(name="anthropic", api_key="ak"))
        assert [b.name for b in backends] == ["anthropic"]
