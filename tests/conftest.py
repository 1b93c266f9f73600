"""Shared fixtures: an in-process fake of the memory service."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from mnemo.client import MemoryClient
from mnemo.config import ApiConfig, RetryConfig


@dataclass
class Reply:
    status: int = 200
    body: Any = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    delay: float = 0.0


@dataclass
class Recorded:
    method: str
    path: str
    headers: dict[str, str]
    query: dict[str, str]
    json: Any


class FakeMemoryApi:
    """Records every request and answers from scripted replies.

    Replies queued for a route are consumed in order; the last one sticks.
    Unscripted routes answer 200 with an empty JSON object.
    """

    def __init__(self) -> None:
        self.url = ""
        self.requests: list[Recorded] = []
        self._routes: dict[tuple[str, str], list[Reply]] = {}

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        delay: float = 0.0,
    ) -> None:
        reply = Reply(status, {} if body is None else body, headers or {}, delay)
        self._routes.setdefault((method.upper(), path), []).append(reply)

    def calls(self, method: str, path: str) -> list[Recorded]:
        return [r for r in self.requests if r.method == method.upper() and r.path == path]

    async def handle(self, request: web.Request) -> web.StreamResponse:
        raw = await request.text()
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            payload = raw
        self.requests.append(
            Recorded(
                method=request.method,
                path=request.path,
                headers=dict(request.headers),
                query=dict(request.query),
                json=payload,
            )
        )

        queue = self._routes.get((request.method, request.path))
        if not queue:
            reply = Reply()
        elif len(queue) > 1:
            reply = queue.pop(0)
        else:
            reply = queue[0]

        if reply.delay:
            await asyncio.sleep(reply.delay)
        if isinstance(reply.body, str):
            return web.Response(status=reply.status, text=reply.body, headers=reply.headers)
        return web.json_response(reply.body, status=reply.status, headers=reply.headers)


@pytest_asyncio.fixture
async def memory_api():
    api = FakeMemoryApi()
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", api.handle)
    server = TestServer(app)
    await server.start_server()
    api.url = str(server.make_url("/"))
    yield api
    await server.close()


@pytest.fixture
def api_config(memory_api: FakeMemoryApi) -> ApiConfig:
    return ApiConfig(
        url=memory_api.url,
        api_key="test-key",
        timeout=2.0,
        retry=RetryConfig(max_retries=3, retry_delay=10),
    )


@pytest_asyncio.fixture
async def client(api_config: ApiConfig):
    async with MemoryClient(api_config) as c:
        yield c


@pytest.fixture
def no_sleep():
    """Retry sleeps become instant; the mock counts them."""
    with patch("mnemo.retry.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


def memory(memory_id: str = "mem_1", **overrides: Any) -> dict[str, Any]:
    data = {
        "id": memory_id,
        "title": "Dark mode",
        "content": "I prefer dark mode",
        "memory_type": "context",
        "status": "active",
        "tags": [],
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-01T00:00:00Z",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_memory():
    return memory
