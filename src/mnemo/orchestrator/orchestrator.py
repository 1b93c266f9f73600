"""Natural-language orchestrator.

One turn runs:
1. Context fetch: a low-threshold search over stored memories (best effort)
2. Intent resolution: reasoning backends in order, then the rule fallback
3. Missing-parameter check, shared by both resolvers
4. Action execution through the memory client
5. Rendering: the primary answer, then related context as a separate block

`process` never raises except for cancellation; any failure becomes the
turn's answer.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import pydantic

from mnemo.client import ApiResponse, MemoryClient
from mnemo.engines.base import EngineResponse, ReasoningBackend
from mnemo.errors import ApiErrorResponse
from mnemo.models import MemoryEntry
from mnemo.orchestrator.actions import (
    Action,
    CreateAction,
    DeleteAction,
    GetAction,
    ListAction,
    OptimizePromptAction,
    Resolution,
    SearchAction,
    UpdateAction,
    action_from_tool_call,
    assert_never,
    clarification,
    missing_params,
)
from mnemo.orchestrator.history import ConversationHistory
from mnemo.orchestrator.render import (
    describe_error,
    format_list,
    format_memory,
    format_optimized,
    format_primary,
    to_entries,
)
from mnemo.orchestrator.rules import default_reply, resolve_via_rules
from mnemo.orchestrator.tools import OPTIMIZE_PROMPT, SYSTEM_PROMPT, TOOLS

logger = logging.getLogger(__name__)

CONTEXT_TIMEOUT = 5.0
CONTEXT_THRESHOLD = 0.3
CONTEXT_LIMIT = 3
TITLE_LENGTH = 50


@dataclass
class TurnResult:
    """Outcome of one turn. `answer` is primary; `related` is supporting context."""

    answer: str
    action: Action | None = None
    envelope: ApiResponse | None = None
    related: list[MemoryEntry] = field(default_factory=list)
    error: ApiErrorResponse | None = None
    data: Any = None


def derive_title(content: str) -> str:
    lines = content.strip().splitlines()
    first = lines[0].strip() if lines else ""
    return first[:TITLE_LENGTH].strip() or "Untitled"


def parse_optimized(text: str) -> dict[str, Any]:
    """Read the optimizer's JSON reply, tolerating code fences and prose."""
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        try:
            data = json.loads(text[start : end + 1])
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("optimized_prompt"):
            improvements = data.get("improvements") or []
            return {
                "optimized_prompt": str(data["optimized_prompt"]),
                "improvements": [str(i) for i in improvements] if isinstance(improvements, list) else [],
                "explanation": str(data.get("explanation") or ""),
            }
    return {"optimized_prompt": text.strip(), "improvements": [], "explanation": ""}


class Orchestrator:
    """Turns utterances into memory operations and user-facing answers."""

    def __init__(
        self,
        client: MemoryClient,
        backends: Sequence[ReasoningBackend] = (),
        *,
        max_history: int = 50,
        context_search: bool = True,
        context_timeout: float = CONTEXT_TIMEOUT,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self.client = client
        self.backends = list(backends)
        self.history = ConversationHistory(system_prompt, max_history)
        self.context_search = context_search
        self.context_timeout = context_timeout

    def reset(self) -> None:
        self.history.reset()

    async def close(self) -> None:
        for backend in self.backends:
            try:
                await backend.close()
            except Exception as e:
                logger.warning("Error closing backend %s: %s", backend.name, e)

    # ── Turn ─────────────────────────────────────────────────

    async def process(self, text: str) -> TurnResult:
        text = text.strip()
        if not text:
            return TurnResult(answer="")

        context = await self.fetch_context(text)
        self.history.add_user(text)

        try:
            resolution = await self.resolve(text, context)
        except Exception as e:
            logger.exception("Intent resolution failed: %s", e)
            resolution = resolve_via_rules(text)

        action = resolution.action
        if action is None:
            result = TurnResult(answer=resolution.reply, related=context)
        elif missing := missing_params(action):
            result = TurnResult(answer=clarification(action, missing), action=action)
        else:
            try:
                result = await self.execute(action)
            except Exception as e:
                logger.exception("Action %s failed", action.type)
                result = TurnResult(
                    answer=(
                        f"Something went wrong while running {action.type} ({e}). "
                        "I'm still here: try rephrasing or use a direct command."
                    ),
                    action=action,
                )
            result.answer = "\n\n".join(part for part in (resolution.reply, result.answer) if part)

        self.history.add_assistant(result.answer)
        return result

    async def fetch_context(self, text: str) -> list[MemoryEntry]:
        """Memories related to the utterance. Never raises, never blocks for long."""
        if not (self.context_search and self.backends):
            return []
        try:
            envelope = await asyncio.wait_for(
                self.client.search_memories(
                    {"query": text[:1000], "limit": CONTEXT_LIMIT, "threshold": CONTEXT_THRESHOLD}
                ),
                timeout=self.context_timeout,
            )
        except Exception as e:
            logger.debug("Context fetch skipped: %r", e)
            return []
        if envelope.error is not None:
            logger.debug("Context fetch failed: %s", envelope.error.message)
            return []
        return to_entries(envelope.data)

    # ── Intent resolution ────────────────────────────────────

    async def resolve(self, text: str, context: list[MemoryEntry] | None = None) -> Resolution:
        if self.backends:
            resolution = await self.resolve_via_backend(context or [])
            if resolution is not None:
                return resolution
            logger.info("No backend produced a reply, using rule fallback")
        return resolve_via_rules(text)

    async def resolve_via_backend(self, context: list[MemoryEntry]) -> Resolution | None:
        """Ask each backend in turn. None when every backend failed or said nothing."""
        messages = self._backend_messages(context)
        for backend in self.backends:
            try:
                response = await backend.chat(messages, tools=TOOLS)
            except Exception as e:
                logger.warning("Backend %s failed, trying next: %s", backend.name, e)
                continue
            resolution = self._to_resolution(response, backend.name)
            if resolution is not None:
                return resolution
            logger.warning("Backend %s returned an empty reply", backend.name)
        return None

    def _backend_messages(self, context: list[MemoryEntry]) -> list[dict[str, str]]:
        messages = self.history.messages()
        if context:
            lines = "\n".join(f"- {m.title}: {m.content[:300]}" for m in context)
            messages.insert(
                1, {"role": "system", "content": f"Relevant stored memories:\n{lines}"}
            )
        return messages

    @staticmethod
    def _to_resolution(response: EngineResponse, source: str) -> Resolution | None:
        text = response.text.strip()
        for call in response.tool_calls:
            action = action_from_tool_call(call)
            if action is not None:
                return Resolution(reply=text or default_reply(action), action=action, source=source)
        if text:
            return Resolution(reply=text, source=source)
        return None

    # ── Action execution ─────────────────────────────────────

    async def execute(self, action: Action) -> TurnResult:
        match action:
            case CreateAction():
                return await self._create(action)
            case UpdateAction():
                return await self._update(action)
            case SearchAction():
                return await self._search(action)
            case ListAction():
                return await self._list(action)
            case GetAction():
                return await self._get(action)
            case DeleteAction():
                return await self._delete(action)
            case OptimizePromptAction():
                return await self._optimize(action)
            case _:
                assert_never(action)

    @staticmethod
    def _failed(action: Action, envelope: ApiResponse) -> TurnResult:
        return TurnResult(
            answer=describe_error(envelope.error),
            action=action,
            envelope=envelope,
            error=envelope.error,
        )

    async def _create(self, action: CreateAction) -> TurnResult:
        payload: dict[str, Any] = {
            "title": action.title or derive_title(action.content),
            "content": action.content,
            "memory_type": action.memory_type or "context",
        }
        if action.tags:
            payload["tags"] = action.tags
        envelope = await self.client.create_memory(payload)
        if envelope.error:
            return self._failed(action, envelope)
        memory_id = envelope.data.get("id") if isinstance(envelope.data, dict) else None
        return TurnResult(
            answer=f"✓ Memory created: {memory_id or payload['title']}",
            action=action,
            envelope=envelope,
            data=envelope.data,
        )

    async def _update(self, action: UpdateAction) -> TurnResult:
        envelope = await self.client.update_memory(action.id, action.changes)
        if envelope.error:
            return self._failed(action, envelope)
        return TurnResult(
            answer=f"✓ Memory updated: {action.id}",
            action=action,
            envelope=envelope,
            data=envelope.data,
        )

    async def _search(self, action: SearchAction) -> TurnResult:
        search: dict[str, Any] = {"query": action.query, "limit": action.limit or 10}
        if action.memory_type:
            search["memory_types"] = [action.memory_type]
        envelope = await self.client.search_memories(search)
        if envelope.error:
            return self._failed(action, envelope)

        entries = to_entries(envelope.data)
        if not entries:
            return TurnResult(answer="No results found", action=action, envelope=envelope, data=[])
        return TurnResult(
            answer=format_primary(entries[0]),
            action=action,
            envelope=envelope,
            related=entries[1:],
            data=entries,
        )

    async def _list(self, action: ListAction) -> TurnResult:
        envelope = await self.client.list_memories(
            limit=action.limit or 10, memory_type=action.memory_type
        )
        if envelope.error:
            return self._failed(action, envelope)
        entries = to_entries(envelope.data)
        return TurnResult(answer=format_list(entries), action=action, envelope=envelope, data=entries)

    async def _get(self, action: GetAction) -> TurnResult:
        envelope = await self.client.get_memory(action.id)
        if envelope.error:
            return self._failed(action, envelope)
        try:
            entry = MemoryEntry.model_validate(envelope.data)
        except pydantic.ValidationError:
            return TurnResult(
                answer=f"Memory {action.id}: {envelope.data}", action=action, envelope=envelope
            )
        return TurnResult(answer=format_memory(entry), action=action, envelope=envelope, data=entry)

    async def _delete(self, action: DeleteAction) -> TurnResult:
        envelope = await self.client.delete_memory(action.id)
        if envelope.error:
            return self._failed(action, envelope)
        return TurnResult(answer=f"✓ Memory deleted: {action.id}", action=action, envelope=envelope)

    async def _optimize(self, action: OptimizePromptAction) -> TurnResult:
        if not self.backends:
            return TurnResult(
                answer=(
                    "Prompt refinement needs a reasoning backend. "
                    "Set OPENAI_API_KEY or AI_ROUTER_URL and try again."
                ),
                action=action,
            )

        request = action.prompt if not action.context else f"{action.prompt}\n\nContext: {action.context}"
        messages = [
            {"role": "system", "content": OPTIMIZE_PROMPT},
            {"role": "user", "content": request},
        ]
        for backend in self.backends:
            try:
                response = await backend.chat(messages)
            except Exception as e:
                logger.warning("Backend %s failed to optimize prompt: %s", backend.name, e)
                continue
            if response.text.strip():
                result = parse_optimized(response.text)
                return TurnResult(answer=format_optimized(result), action=action, data=result)

        return TurnResult(
            answer="I couldn't refine the prompt right now. Try again in a moment.",
            action=action,
        )
