"""Memory service client and its request pipeline.

Every public coroutine returns an ApiResponse envelope holding either
`data` or `error`, never both. Nothing raises across this boundary except
cancellation of the calling task.

Pipeline per call:
1. Validate the payload (mutations only); no network on failure
2. Add tenancy context to outbound bodies
3. Send with a timeout; on retryable failures back off and try again
4. Normalize non-2xx responses and exceptions into ApiErrorResponse
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any, Generic, Iterable, TypeVar
from urllib.parse import quote

import aiohttp

from mnemo import retry
from mnemo.config import ApiConfig
from mnemo.errors import (
    ApiErrorResponse,
    ErrorCode,
    MemoryClientError,
    create_error_from_response,
    create_error_response,
)
from mnemo.models import (
    AnalyticsDateRange,
    CreateMemoryRequest,
    CreateTopicRequest,
    EnhancedSearchRequest,
    PreprocessingOptions,
    SearchMemoryRequest,
    UpdateMemoryRequest,
    UpdateTopicRequest,
)
from mnemo.validation import safe_parse

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLIENT_NAME = "mnemo"
VERSION = "0.1.0"

RequestHook = Callable[[str], None]
ResponseHook = Callable[[str, int], None]
ErrorHook = Callable[[ApiErrorResponse], None]

_API_PREFIX = re.compile(r"(/api(/v1)?)+$")


@dataclass
class ResponseMeta:
    duration_ms: int
    retries: int = 0
    request_id: str | None = None


@dataclass
class ApiResponse(Generic[T]):
    """Envelope returned by every client operation."""

    data: T | None = None
    error: ApiErrorResponse | None = None
    meta: ResponseMeta | None = None

    def __post_init__(self) -> None:
        if (self.data is None) == (self.error is None):
            raise ValueError("ApiResponse requires exactly one of data or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return data, or raise the MemoryClientError matching the error code."""
        if self.error is not None:
            raise MemoryClientError.from_response(self.error)
        return self.data


def normalize_base_url(url: str) -> str:
    """Strip trailing /api and /api/v1 segments so the prefix is added once."""
    return _API_PREFIX.sub("", url.strip().rstrip("/")).rstrip("/")


def _parse_body(text: str, content_type: str) -> Any:
    """Decoded body. An empty body or a JSON null reads as `{}`."""
    if not text:
        return {}
    if "application/json" in content_type:
        try:
            data = json.loads(text)
        except ValueError:
            return text
        return {} if data is None else data
    return text


def _query_params(options: dict[str, Any]) -> dict[str, str]:
    params: dict[str, str] = {}
    for key, value in options.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            params[key] = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = str(value)
    return params


def _path_id(value: str) -> str:
    return quote(str(value), safe="")


class MemoryClient:
    """Async client for the memory service REST API."""

    def __init__(
        self,
        config: ApiConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        headers: dict[str, str] | None = None,
        on_request: RequestHook | None = None,
        on_response: ResponseHook | None = None,
        on_error: ErrorHook | None = None,
    ) -> None:
        self.config = config
        self.on_request = on_request
        self.on_response = on_response
        self.on_error = on_error
        self._session = session
        self._owns_session = session is None

        self._headers: dict[str, str] = {
            "Content-Type": "application/json",
            "User-Agent": f"{CLIENT_NAME}/{VERSION}",
            "X-Project-Scope": config.project_scope,
            **(headers or {}),
        }
        if config.auth_token:
            self._headers["Authorization"] = f"Bearer {config.auth_token}"
        elif config.api_key:
            self._headers["X-API-Key"] = config.api_key
        if config.organization_id:
            self._headers["X-Organization-ID"] = config.organization_id

    # ── Session lifecycle ────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> MemoryClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Core request loop ────────────────────────────────────

    @property
    def base_url(self) -> str:
        return normalize_base_url(self.config.url)

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def _call_hook(self, hook: Callable[..., Any] | None, *args: Any) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as e:
            logger.warning("%s hook error: %s", getattr(hook, "__name__", "client"), e)

    def _with_tenancy(self, body: dict[str, Any]) -> dict[str, Any]:
        if body.get("organization_id"):
            return body
        tenant = self.config.organization_id or self.config.user_id
        if tenant:
            return {**body, "organization_id": tenant}
        return body

    async def _send(
        self,
        method: str,
        url: str,
        body: Any,
        params: dict[str, str] | None,
        headers: dict[str, str] | None,
    ) -> tuple[int, str | None, Any, str | None]:
        session = self._get_session()
        async with session.request(
            method,
            url,
            json=body,
            params=params,
            headers={**self._headers, **(headers or {})},
        ) as resp:
            text = await resp.text()
            payload = _parse_body(text, resp.headers.get("Content-Type", ""))
            return resp.status, resp.reason, payload, resp.headers.get("X-Request-ID")

    async def request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> ApiResponse[Any]:
        """Send one logical request, retrying transient failures."""
        start = time.monotonic()
        policy = self.config.retry
        url = f"{self.base_url}/api/v1{endpoint}"
        query = _query_params(params) if params else None

        self._call_hook(self.on_request, endpoint)

        attempt = 0
        while True:
            status: int | None = None
            request_id: str | None = None
            retryable = False
            try:
                status, reason, payload, request_id = await asyncio.wait_for(
                    self._send(method, url, json, query, headers),
                    timeout=self.config.timeout,
                )
            except asyncio.TimeoutError:
                error = create_error_response("Request timeout", ErrorCode.TIMEOUT_ERROR, 408)
                retryable = True
            except (aiohttp.ClientError, OSError) as e:
                error = create_error_response(str(e) or "Network error", ErrorCode.NETWORK_ERROR)
                retryable = retry.is_retryable(None)
            except Exception as e:
                logger.error("Unexpected error calling %s %s: %s", method, endpoint, e)
                error = create_error_response(f"Request failed: {e}", ErrorCode.API_ERROR)
            else:
                if 200 <= status < 300:
                    duration = int((time.monotonic() - start) * 1000)
                    self._call_hook(self.on_response, endpoint, duration)
                    # A success envelope always carries data
                    return ApiResponse(
                        data={} if payload is None else payload,
                        meta=ResponseMeta(duration, attempt, request_id),
                    )
                error = create_error_from_response(status, reason, payload, request_id)
                retryable = retry.is_retryable(status)

            if retryable and attempt < policy.max_retries:
                delay = retry.calculate_retry_delay(
                    attempt, policy.retry_delay, policy.backoff, policy.max_delay
                )
                logger.warning(
                    "%s %s failed (%s), retry %d/%d in %dms",
                    method,
                    endpoint,
                    error.code.value,
                    attempt + 1,
                    policy.max_retries,
                    delay,
                )
                await retry.sleep(delay)
                attempt += 1
                continue

            self._call_hook(self.on_error, error)
            duration = int((time.monotonic() - start) * 1000)
            return ApiResponse(error=error, meta=ResponseMeta(duration, attempt, request_id))

    # ── Memory operations ────────────────────────────────────

    async def health_check(self) -> ApiResponse[dict]:
        return await self.request("/health")

    async def create_memory(self, memory: dict[str, Any] | CreateMemoryRequest) -> ApiResponse[dict]:
        parsed = safe_parse(CreateMemoryRequest, memory)
        if not parsed.success:
            return ApiResponse(error=parsed.error)
        return await self.request(
            "/memories", method="POST", json=self._with_tenancy(parsed.payload())
        )

    async def get_memory(self, memory_id: str) -> ApiResponse[dict]:
        return await self.request(f"/memories/{_path_id(memory_id)}")

    async def update_memory(
        self, memory_id: str, updates: dict[str, Any] | UpdateMemoryRequest
    ) -> ApiResponse[dict]:
        parsed = safe_parse(UpdateMemoryRequest, updates)
        if not parsed.success:
            return ApiResponse(error=parsed.error)
        body = parsed.payload(partial=True)
        if not body:
            return ApiResponse(
                error=create_error_response(
                    "Validation failed",
                    ErrorCode.VALIDATION_ERROR,
                    400,
                    [{"field": "", "message": "At least one field must be updated"}],
                )
            )
        return await self.request(
            f"/memories/{_path_id(memory_id)}", method="PUT", json=self._with_tenancy(body)
        )

    async def create_memory_with_preprocessing(
        self,
        memory: dict[str, Any],
        preprocessing: dict[str, Any] | PreprocessingOptions | None = None,
    ) -> ApiResponse[dict]:
        """Create a memory with chunking and metadata extraction on the server."""
        if preprocessing is None:
            preprocessing = {"chunking": {"strategy": "semantic"}, "extractMetadata": True}
        return await self.create_memory({**memory, "preprocessing": preprocessing})

    async def update_memory_with_preprocessing(
        self,
        memory_id: str,
        updates: dict[str, Any],
        *,
        rechunk: bool = True,
        regenerate_embedding: bool = True,
    ) -> ApiResponse[dict]:
        """Update a memory and ask the server to rechunk and re-embed it."""
        return await self.update_memory(
            memory_id,
            {**updates, "rechunk": rechunk, "regenerate_embedding": regenerate_embedding},
        )

    async def delete_memory(self, memory_id: str) -> ApiResponse[dict]:
        return await self.request(f"/memories/{_path_id(memory_id)}", method="DELETE")

    async def list_memories(
        self,
        *,
        page: int | None = None,
        limit: int | None = None,
        memory_type: str | None = None,
        topic_id: str | None = None,
        project_ref: str | None = None,
        status: str | None = None,
        tags: Iterable[str] | None = None,
        sort: str | None = None,
        order: str | None = None,
    ) -> ApiResponse[dict]:
        params = {
            "page": page,
            "limit": limit,
            "memory_type": memory_type,
            "topic_id": topic_id,
            "project_ref": project_ref,
            "status": status,
            "tags": list(tags) if tags is not None else None,
            "sort": sort,
            "order": order,
        }
        # /memories GET is blocked by the CDN layer; the list route lives here
        return await self.request("/memory/list", params=params)

    async def search_memories(
        self, search: dict[str, Any] | SearchMemoryRequest
    ) -> ApiResponse[dict]:
        parsed = safe_parse(SearchMemoryRequest, search)
        if not parsed.success:
            return ApiResponse(error=parsed.error)
        return await self.request(
            "/memories/search", method="POST", json=self._with_tenancy(parsed.payload())
        )

    async def enhanced_search(
        self, search: dict[str, Any] | EnhancedSearchRequest
    ) -> ApiResponse[dict]:
        """Hybrid (vector + text) search with optional chunk matches."""
        parsed = safe_parse(EnhancedSearchRequest, search)
        if not parsed.success:
            return ApiResponse(error=parsed.error)
        return await self.request(
            "/memory/search", method="POST", json=self._with_tenancy(parsed.payload())
        )

    async def bulk_delete_memories(self, memory_ids: Iterable[str]) -> ApiResponse[dict]:
        """Delete many memories concurrently.

        Each id is its own request; one failure never cancels the others.
        The result counts what succeeded and lists the ids that did not.
        """
        ids = list(dict.fromkeys(str(i) for i in memory_ids if i))
        if not ids:
            return ApiResponse(
                error=create_error_response(
                    "Validation failed",
                    ErrorCode.VALIDATION_ERROR,
                    400,
                    [{"field": "memory_ids", "message": "At least one id is required"}],
                )
            )

        start = time.monotonic()
        results = await asyncio.gather(
            *(self.delete_memory(memory_id) for memory_id in ids), return_exceptions=True
        )

        failed: list[str] = []
        retries = 0
        for memory_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.error("Bulk delete of %s raised: %s", memory_id, result)
                failed.append(memory_id)
                continue
            if result.meta:
                retries += result.meta.retries
            if result.error is not None:
                failed.append(memory_id)

        duration = int((time.monotonic() - start) * 1000)
        return ApiResponse(
            data={"deleted_count": len(ids) - len(failed), "failed_ids": failed},
            meta=ResponseMeta(duration, retries),
        )

    # ── Topic operations ─────────────────────────────────────

    async def create_topic(self, topic: dict[str, Any] | CreateTopicRequest) -> ApiResponse[dict]:
        parsed = safe_parse(CreateTopicRequest, topic)
        if not parsed.success:
            return ApiResponse(error=parsed.error)
        return await self.request(
            "/topics", method="POST", json=self._with_tenancy(parsed.payload())
        )

    async def get_topics(self, *, include_hierarchy: bool = False) -> ApiResponse[list]:
        params = {"include_hierarchy": True} if include_hierarchy else None
        return await self.request("/topics", params=params)

    async def get_topic(self, topic_id: str) -> ApiResponse[dict]:
        return await self.request(f"/topics/{_path_id(topic_id)}")

    async def get_topic_with_memories(
        self, topic_id: str, *, limit: int | None = None, offset: int | None = None
    ) -> ApiResponse[dict]:
        return await self.request(
            f"/topics/{_path_id(topic_id)}/memories",
            params={"limit": limit, "offset": offset},
        )

    async def update_topic(
        self, topic_id: str, updates: dict[str, Any] | UpdateTopicRequest
    ) -> ApiResponse[dict]:
        parsed = safe_parse(UpdateTopicRequest, updates)
        if not parsed.success:
            return ApiResponse(error=parsed.error)
        return await self.request(
            f"/topics/{_path_id(topic_id)}",
            method="PUT",
            json=self._with_tenancy(parsed.payload(partial=True)),
        )

    async def delete_topic(self, topic_id: str) -> ApiResponse[dict]:
        return await self.request(f"/topics/{_path_id(topic_id)}", method="DELETE")

    # ── Stats & analytics ────────────────────────────────────

    async def get_memory_stats(self) -> ApiResponse[dict]:
        return await self.request("/memories/stats")

    async def get_search_analytics(
        self, options: dict[str, Any] | AnalyticsDateRange | None = None
    ) -> ApiResponse[dict]:
        parsed = safe_parse(AnalyticsDateRange, options or {})
        if not parsed.success:
            return ApiResponse(error=parsed.error)
        return await self.request("/analytics/search", params=parsed.payload())

    async def get_access_patterns(
        self, *, from_: str | None = None, to: str | None = None
    ) -> ApiResponse[dict]:
        return await self.request("/analytics/access", params={"from": from_, "to": to})

    async def get_extended_stats(self) -> ApiResponse[dict]:
        return await self.request("/analytics/stats")

    # ── Auth & config ────────────────────────────────────────

    def set_auth_token(self, token: str) -> None:
        self._headers["Authorization"] = f"Bearer {token}"
        self._headers.pop("X-API-Key", None)
        self.config = replace(self.config, auth_token=token, api_key=None)

    def set_api_key(self, api_key: str) -> None:
        self._headers["X-API-Key"] = api_key
        self._headers.pop("Authorization", None)
        self.config = replace(self.config, api_key=api_key, auth_token=None)

    def clear_auth(self) -> None:
        self._headers.pop("Authorization", None)
        self._headers.pop("X-API-Key", None)
        self.config = replace(self.config, auth_token=None, api_key=None)

    @property
    def has_auth(self) -> bool:
        return "Authorization" in self._headers or "X-API-Key" in self._headers

    def update_config(self, **changes: Any) -> None:
        """Replace config fields. Use the auth mutators for credentials."""
        headers = changes.pop("headers", None)
        self.config = replace(self.config, **changes)
        if headers:
            self._headers.update(headers)
        if "organization_id" in changes:
            if self.config.organization_id:
                self._headers["X-Organization-ID"] = self.config.organization_id
            else:
                self._headers.pop("X-Organization-ID", None)

    def get_config(self) -> dict[str, Any]:
        """Current settings with credentials left out."""
        return {
            "url": self.config.url,
            "organization_id": self.config.organization_id,
            "user_id": self.config.user_id,
            "project_scope": self.config.project_scope,
            "timeout": self.config.timeout,
            "max_retries": self.config.retry.max_retries,
            "retry_delay": self.config.retry.retry_delay,
            "backoff": self.config.retry.backoff,
        }
