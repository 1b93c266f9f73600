"""Tests for the memory client request pipeline (against a fake API server)."""

import asyncio

import pytest

from mnemo.client import ApiResponse, MemoryClient, ResponseMeta, normalize_base_url
from mnemo.config import ApiConfig, RetryConfig
from mnemo.errors import ErrorCode, NotFoundError, create_error_response


class TestNormalizeBaseUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "https://api.example.com",
            "https://api.example.com/",
            "https://api.example.com/api",
            "https://api.example.com/api/",
            "https://api.example.com/api/v1",
            "https://api.example.com/api/v1/",
            "https://api.example.com/api/v1/api/v1",
        ],
    )
    def test_prefix_never_compounds(self, url):
        assert normalize_base_url(url) == "https://api.example.com"


class TestEnvelope:
    def test_exactly_one_of_data_or_error(self):
        with pytest.raises(ValueError):
            ApiResponse()
        with pytest.raises(ValueError):
            ApiResponse(data={}, error=create_error_response("x"))

    def test_unwrap(self):
        assert ApiResponse(data={"id": 1}).unwrap() == {"id": 1}
        failed = ApiResponse(error=create_error_response("gone", ErrorCode.NOT_FOUND, 404))
        assert not failed.ok
        with pytest.raises(NotFoundError):
            failed.unwrap()


class TestHeaders:
    @pytest.mark.asyncio
    async def test_api_key_and_scope(self, client, memory_api):
        await client.health_check()
        request = memory_api.requests[0]
        assert request.path == "/api/v1/health"
        assert request.headers["X-API-Key"] == "test-key"
        assert "Authorization" not in request.headers
        assert request.headers["X-Project-Scope"] == "lanonasis-maas"
        assert request.headers["User-Agent"].startswith("mnemo/")
        assert request.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_bearer_wins_over_api_key(self, memory_api):
        config = ApiConfig(url=memory_api.url, auth_token="tok", api_key="key", organization_id="org-1")
        async with MemoryClient(config) as client:
            await client.health_check()
        headers = memory_api.requests[0].headers
        assert headers["Authorization"] == "Bearer tok"
        assert "X-API-Key" not in headers
        assert headers["X-Organization-ID"] == "org-1"

    @pytest.mark.asyncio
    async def test_auth_mutators_are_exclusive(self, client, memory_api):
        client.set_auth_token("tok")
        await client.health_check()
        assert memory_api.requests[-1].headers["Authorization"] == "Bearer tok"
        assert "X-API-Key" not in memory_api.requests[-1].headers

        client.set_api_key("key2")
        await client.health_check()
        assert memory_api.requests[-1].headers["X-API-Key"] == "key2"
        assert "Authorization" not in memory_api.requests[-1].headers

        client.clear_auth()
        assert not client.has_auth
        await client.health_check()
        assert "X-API-Key" not in memory_api.requests[-1].headers

    @pytest.mark.asyncio
    async def test_per_call_headers_merge(self, client, memory_api):
        await client.request("/health", headers={"X-Trace": "abc"})
        assert memory_api.requests[0].headers["X-Trace"] == "abc"


class TestRequest:
    @pytest.mark.asyncio
    async def test_success_envelope(self, client, memory_api, make_memory):
        memory_api.add("GET", "/api/v1/memories/mem_1", body=make_memory(), headers={"X-Request-ID": "req-1"})
        response = await client.get_memory("mem_1")
        assert response.ok
        assert response.error is None
        assert response.data["id"] == "mem_1"
        assert response.meta.retries == 0
        assert response.meta.request_id == "req-1"
        assert response.meta.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_text_body(self, client, memory_api):
        memory_api.add("GET", "/api/v1/health", body="ok")
        response = await client.health_check()
        assert response.data == "ok"

    @pytest.mark.asyncio
    async def test_json_null_body(self, client, memory_api):
        memory_api.add(
            "DELETE",
            "/api/v1/memories/mem_1",
            200,
            "null",
            headers={"Content-Type": "application/json"},
        )
        response = await client.delete_memory("mem_1")
        assert response.ok
        assert response.data == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "case", ["json", "empty", "null", "no_content", "text_404", "timeout", "network"]
    )
    async def test_envelope_has_exactly_one_of_data_or_error(self, memory_api, no_sleep, case):
        replies = {
            "json": (200, {"status": "ok"}, {}),
            "empty": (200, "", {}),
            "null": (200, "null", {"Content-Type": "application/json"}),
            "no_content": (204, "", {}),
            "text_404": (404, "not here", {}),
        }
        url, timeout = memory_api.url, 2.0
        if case in replies:
            status, body, headers = replies[case]
            memory_api.add("GET", "/api/v1/health", status, body, headers=headers)
        elif case == "timeout":
            memory_api.add("GET", "/api/v1/health", body={}, delay=0.5)
            timeout = 0.05
        else:
            url = "http://127.0.0.1:1"

        config = ApiConfig(url=url, timeout=timeout, retry=RetryConfig(max_retries=1, retry_delay=10))
        async with MemoryClient(config) as client:
            response = await client.request("/health")

        assert (response.data is None) != (response.error is None)
        assert response.meta is not None

    @pytest.mark.asyncio
    async def test_retry_once_after_429(self, client, memory_api, no_sleep):
        memory_api.add("GET", "/api/v1/memories/stats", 429, {"error": "slow down"})
        memory_api.add("GET", "/api/v1/memories/stats", 200, {"total_memories": 3})
        response = await client.get_memory_stats()
        assert response.data == {"total_memories": 3}
        assert response.meta.retries == 1
        assert no_sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client, memory_api, no_sleep):
        memory_api.add("GET", "/api/v1/memories/stats", 503, {"error": "down"})
        response = await client.get_memory_stats()
        assert response.error.code == ErrorCode.SERVER_ERROR
        assert response.error.message == "down"
        assert response.meta.retries == 3
        assert no_sleep.await_count == 3
        assert len(memory_api.requests) == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, code",
        [
            (400, ErrorCode.VALIDATION_ERROR),
            (401, ErrorCode.AUTH_ERROR),
            (403, ErrorCode.FORBIDDEN),
            (404, ErrorCode.NOT_FOUND),
            (409, ErrorCode.CONFLICT),
        ],
    )
    async def test_non_retryable(self, client, memory_api, no_sleep, status, code):
        memory_api.add("GET", "/api/v1/memories/mem_1", status, {"error": "nope"})
        response = await client.get_memory("mem_1")
        assert response.data is None
        assert response.error.code == code
        assert response.error.status_code == status
        assert no_sleep.await_count == 0
        assert len(memory_api.requests) == 1

    @pytest.mark.asyncio
    async def test_timeout(self, memory_api, no_sleep):
        memory_api.add("GET", "/api/v1/health", body={}, delay=0.5)
        config = ApiConfig(url=memory_api.url, timeout=0.05, retry=RetryConfig(max_retries=1))
        async with MemoryClient(config) as client:
            response = await client.health_check()
        assert response.error.code == ErrorCode.TIMEOUT_ERROR
        assert response.error.status_code == 408
        assert response.meta.retries == 1

    @pytest.mark.asyncio
    async def test_network_error(self, no_sleep):
        config = ApiConfig(url="http://127.0.0.1:1", timeout=2.0, retry=RetryConfig(max_retries=2))
        async with MemoryClient(config) as client:
            response = await client.health_check()
        assert response.error.code == ErrorCode.NETWORK_ERROR
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_hooks_are_best_effort(self, api_config, memory_api):
        seen = []

        def on_request(endpoint):
            seen.append(("request", endpoint))
            raise RuntimeError("hook failure")

        def on_response(endpoint, duration):
            seen.append(("response", endpoint))
            raise RuntimeError("hook failure")

        async with MemoryClient(api_config, on_request=on_request, on_response=on_response) as client:
            response = await client.health_check()

        assert response.ok
        assert seen == [("request", "/health"), ("response", "/health")]

    @pytest.mark.asyncio
    async def test_on_error_hook(self, api_config, memory_api):
        errors = []
        memory_api.add("GET", "/api/v1/memories/x", 404, {"error": "missing"})
        async with MemoryClient(api_config, on_error=errors.append) as client:
            await client.get_memory("x")
        assert [e.code for e in errors] == [ErrorCode.NOT_FOUND]


class TestMemoryOperations:
    @pytest.mark.asyncio
    async def test_create_validates_before_network(self, client, memory_api):
        response = await client.create_memory({"title": "", "content": "C"})
        assert response.error.code == ErrorCode.VALIDATION_ERROR
        assert memory_api.requests == []

    @pytest.mark.asyncio
    async def test_create_sends_defaults_and_tenancy(self, memory_api, make_memory):
        memory_api.add("POST", "/api/v1/memories", 201, make_memory("mem_9"))
        config = ApiConfig(url=memory_api.url, api_key="k", user_id="user-7")
        async with MemoryClient(config) as client:
            response = await client.create_memory({"title": "T", "content": "C"})
        assert response.data["id"] == "mem_9"
        body = memory_api.requests[0].json
        assert body == {
            "title": "T",
            "content": "C",
            "memory_type": "context",
            "tags": [],
            "organization_id": "user-7",
        }

    @pytest.mark.asyncio
    async def test_search_adds_organization(self, memory_api):
        config = ApiConfig(url=memory_api.url, organization_id="org-1")
        async with MemoryClient(config) as client:
            await client.search_memories({"query": "x"})
        assert memory_api.requests[0].json["organization_id"] == "org-1"

    @pytest.mark.asyncio
    async def test_update_sends_only_changes(self, client, memory_api):
        await client.update_memory("mem_1", {"title": "New"})
        request = memory_api.requests[0]
        assert request.method == "PUT"
        assert request.path == "/api/v1/memories/mem_1"
        assert request.json == {"title": "New"}

    @pytest.mark.asyncio
    async def test_create_with_preprocessing(self, client, memory_api, make_memory):
        memory_api.add("POST", "/api/v1/memories", 201, make_memory("mem_9"))
        response = await client.create_memory_with_preprocessing(
            {"title": "T", "content": "C"},
            {"chunking": {"strategy": "paragraph", "maxChunkSize": 1000}, "extractMetadata": True},
        )
        assert response.ok
        assert memory_api.requests[0].json["preprocessing"] == {
            "chunking": {"strategy": "paragraph", "maxChunkSize": 1000},
            "extractMetadata": True,
        }

    @pytest.mark.asyncio
    async def test_create_with_default_preprocessing(self, client, memory_api):
        await client.create_memory_with_preprocessing({"title": "T", "content": "C"})
        preprocessing = memory_api.requests[0].json["preprocessing"]
        assert preprocessing["chunking"]["strategy"] == "semantic"
        assert preprocessing["extractMetadata"] is True

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_chunking_strategy(self, client, memory_api):
        response = await client.create_memory(
            {"title": "T", "content": "C", "preprocessing": {"chunking": {"strategy": "words"}}}
        )
        assert response.error.code == ErrorCode.VALIDATION_ERROR
        assert memory_api.requests == []

    @pytest.mark.asyncio
    async def test_update_with_preprocessing_sends_flags(self, client, memory_api):
        await client.update_memory_with_preprocessing("mem_1", {"content": "New body"})
        assert memory_api.requests[0].json == {
            "content": "New body",
            "rechunk": True,
            "regenerate_embedding": True,
        }

    @pytest.mark.asyncio
    async def test_update_without_changes(self, client, memory_api):
        response = await client.update_memory("mem_1", {})
        assert response.error.code == ErrorCode.VALIDATION_ERROR
        assert memory_api.requests == []

    @pytest.mark.asyncio
    async def test_search(self, client, memory_api):
        memory_api.add("POST", "/api/v1/memories/search", body={"results": [], "total_results": 0})
        response = await client.search_memories({"query": "dark mode", "limit": 5})
        assert response.data["total_results"] == 0
        body = memory_api.requests[0].json
        assert body["query"] == "dark mode"
        assert body["limit"] == 5
        assert body["threshold"] == 0.7
        assert body["status"] == "active"

    @pytest.mark.asyncio
    async def test_search_rejects_bad_limit(self, client, memory_api):
        response = await client.search_memories({"query": "x", "limit": 101})
        assert response.error.code == ErrorCode.VALIDATION_ERROR
        assert memory_api.requests == []

    @pytest.mark.asyncio
    async def test_list_query_params(self, client, memory_api):
        await client.list_memories(limit=5, memory_type="project", tags=["a", "b"])
        request = memory_api.requests[0]
        assert request.path == "/api/v1/memory/list"
        assert request.query == {"limit": "5", "memory_type": "project", "tags": "a,b"}

    @pytest.mark.asyncio
    async def test_delete(self, client, memory_api):
        response = await client.delete_memory("mem_1")
        assert response.ok
        assert memory_api.requests[0].method == "DELETE"
        assert memory_api.requests[0].path == "/api/v1/memories/mem_1"

    @pytest.mark.asyncio
    async def test_bulk_delete_isolates_failures(self, client, memory_api, no_sleep):
        memory_api.add("DELETE", "/api/v1/memories/mem_2", 404, {"error": "missing"})
        response = await client.bulk_delete_memories(["mem_1", "mem_2", "mem_3", "mem_1"])
        assert response.data == {"deleted_count": 2, "failed_ids": ["mem_2"]}
        assert len(memory_api.calls("DELETE", "/api/v1/memories/mem_1")) == 1
        assert len(memory_api.calls("DELETE", "/api/v1/memories/mem_3")) == 1

    @pytest.mark.asyncio
    async def test_bulk_delete_requires_ids(self, client):
        response = await client.bulk_delete_memories([])
        assert response.error.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_bulk_delete_runs_concurrently(self, client, memory_api):
        for i in range(5):
            memory_api.add("DELETE", f"/api/v1/memories/m{i}", body={}, delay=0.2)
        loop = asyncio.get_running_loop()
        start = loop.time()
        response = await client.bulk_delete_memories([f"m{i}" for i in range(5)])
        assert response.data["deleted_count"] == 5
        assert loop.time() - start < 0.9


class TestTopicsAndAnalytics:
    @pytest.mark.asyncio
    async def test_create_topic_validates_color(self, client, memory_api):
        response = await client.create_topic({"name": "T", "color": "red"})
        assert response.error.code == ErrorCode.VALIDATION_ERROR
        await client.create_topic({"name": "T", "color": "#ff5733"})
        assert memory_api.requests[0].json["color"] == "#ff5733"

    @pytest.mark.asyncio
    async def test_topic_hierarchy_flag(self, client, memory_api):
        await client.get_topics(include_hierarchy=True)
        assert memory_api.requests[0].query == {"include_hierarchy": "true"}

    @pytest.mark.asyncio
    async def test_topic_with_memories(self, client, memory_api):
        await client.get_topic_with_memories("t1", limit=5)
        assert memory_api.requests[0].path == "/api/v1/topics/t1/memories"
        assert memory_api.requests[0].query == {"limit": "5"}

    @pytest.mark.asyncio
    async def test_update_and_delete_topic(self, client, memory_api):
        await client.update_topic("t1", {"description": "d"})
        await client.delete_topic("t1")
        assert memory_api.requests[0].json == {"description": "d"}
        assert memory_api.requests[1].method == "DELETE"

    @pytest.mark.asyncio
    async def test_search_analytics(self, client, memory_api):
        await client.get_search_analytics({"from": "2026-01-01", "to": "2026-02-01"})
        request = memory_api.requests[0]
        assert request.path == "/api/v1/analytics/search"
        assert request.query == {"from": "2026-01-01", "to": "2026-02-01", "group_by": "day"}

    @pytest.mark.asyncio
    async def test_access_patterns_and_extended_stats(self, client, memory_api):
        await client.get_access_patterns(from_="2026-01-01")
        await client.get_extended_stats()
        assert memory_api.requests[0].query == {"from": "2026-01-01"}
        assert memory_api.requests[1].path == "/api/v1/analytics/stats"

    @pytest.mark.asyncio
    async def test_enhanced_search(self, client, memory_api):
        await client.enhanced_search({"query": "x"})
        request = memory_api.requests[0]
        assert request.path == "/api/v1/memory/search"
        assert request.json["search_mode"] == "hybrid"


class TestConfigAccess:
    def test_get_config_hides_credentials(self, api_config):
        client = MemoryClient(api_config)
        config = client.get_config()
        assert "api_key" not in config
        assert config["max_retries"] == 3

    def test_update_config(self, api_config):
        client = MemoryClient(api_config)
        client.update_config(timeout=5.0, organization_id="org-3")
        assert client.config.timeout == 5.0
        assert client.headers["X-Organization-ID"] == "org-3"

    def test_meta_defaults(self):
        assert ResponseMeta(duration_ms=1).retries == 0
