"""Resolved actions: one dataclass per kind of memory operation.

`Action` is a closed union. Code that dispatches over it matches on the
class and ends with `assert_never` so a new kind cannot be silently
ignored.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, NoReturn, Optional, Union

from mnemo.engines.base import ToolCall

logger = logging.getLogger(__name__)


@dataclass
class _BaseAction:
    type: ClassVar[str]

    @property
    def params(self) -> dict[str, Any]:
        """Fields that were actually supplied."""
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass
class CreateAction(_BaseAction):
    type: ClassVar[str] = "create"

    content: Optional[str] = None
    title: Optional[str] = None
    memory_type: Optional[str] = "context"
    tags: Optional[list[str]] = None


@dataclass
class UpdateAction(_BaseAction):
    type: ClassVar[str] = "update"

    id: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    memory_type: Optional[str] = None
    status: Optional[str] = None
    tags: Optional[list[str]] = None

    @property
    def changes(self) -> dict[str, Any]:
        return {k: v for k, v in self.params.items() if k != "id"}


@dataclass
class SearchAction(_BaseAction):
    type: ClassVar[str] = "search"

    query: Optional[str] = None
    limit: Optional[int] = 10
    memory_type: Optional[str] = None


@dataclass
class ListAction(_BaseAction):
    type: ClassVar[str] = "list"

    limit: Optional[int] = 10
    memory_type: Optional[str] = None


@dataclass
class GetAction(_BaseAction):
    type: ClassVar[str] = "get"

    id: Optional[str] = None


@dataclass
class DeleteAction(_BaseAction):
    type: ClassVar[str] = "delete"

    id: Optional[str] = None


@dataclass
class OptimizePromptAction(_BaseAction):
    type: ClassVar[str] = "optimize_prompt"

    prompt: Optional[str] = None
    context: Optional[str] = None


Action = Union[
    CreateAction,
    UpdateAction,
    SearchAction,
    ListAction,
    GetAction,
    DeleteAction,
    OptimizePromptAction,
]


@dataclass
class Resolution:
    """What a resolver decided: a reply, optionally with an action to run."""

    reply: str
    action: Optional[Action] = None
    source: str = "rules"


def assert_never(value: NoReturn) -> NoReturn:
    raise AssertionError(f"Unhandled action: {value!r}")


# ── Tool call mapping ────────────────────────────────────────

TOOL_ACTIONS: dict[str, type] = {
    "create_memory": CreateAction,
    "update_memory": UpdateAction,
    "search_memories": SearchAction,
    "list_memories": ListAction,
    "get_memory": GetAction,
    "delete_memory": DeleteAction,
    "optimize_prompt": OptimizePromptAction,
}

_INT_FIELDS = {"limit"}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _INT_FIELDS:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    if name == "tags":
        if isinstance(value, str):
            return [t.strip() for t in value.split(",") if t.strip()]
        return [str(t) for t in value] if isinstance(value, (list, tuple)) else None
    if isinstance(value, str):
        return value.strip() or None
    return value


def action_from_tool_call(call: ToolCall) -> Action | None:
    """Build an action from a model's tool call. Unknown tools give None."""
    cls = TOOL_ACTIONS.get(call.name)
    if cls is None:
        logger.warning("Ignoring unknown tool call: %s", call.name)
        return None

    allowed = {f.name for f in dataclasses.fields(cls)}
    arguments = dict(call.arguments)
    if "memory_id" in arguments and "id" in allowed:
        arguments.setdefault("id", arguments.pop("memory_id"))

    kwargs = {k: _coerce(k, v) for k, v in arguments.items() if k in allowed}
    # Defaults apply to omitted fields; an explicit null from the model should too.
    kwargs = {k: v for k, v in kwargs.items() if v is not None}
    return cls(**kwargs)


# ── Missing-parameter contract ───────────────────────────────


def missing_params(action: Action) -> list[str]:
    """Required parameters the action still lacks.

    Applied to every action whichever resolver produced it.
    """
    match action:
        case CreateAction():
            return [] if action.content else ["content"]
        case UpdateAction():
            missing = [] if action.id else ["id"]
            if not action.changes:
                missing.append("changes")
            return missing
        case SearchAction():
            return [] if action.query else ["query"]
        case ListAction():
            return []
        case GetAction() | DeleteAction():
            return [] if action.id else ["id"]
        case OptimizePromptAction():
            return [] if action.prompt else ["prompt"]
        case _:
            assert_never(action)


def clarification(action: Action, missing: list[str]) -> str:
    """The question to ask when `missing_params` is not empty."""
    if "id" in missing:
        verb = {"update": "update", "get": "show", "delete": "delete"}.get(action.type, action.type)
        return (
            f"To {verb} a memory, please provide the memory ID. "
            "You can find it by listing your memories first."
        )
    if "changes" in missing:
        return (
            "What should I change? For example: "
            '"update <id> to <new content>" or use "update <id> --title=...".'
        )
    if "content" in missing:
        return 'What should I remember? For example: "remember that I prefer dark mode".'
    if "query" in missing:
        return 'What should I search for? For example: "what do I know about TypeScript?"'
    if "prompt" in missing:
        return 'Which prompt should I refine? For example: "refine this prompt: ..."'
    return f"I need more details to {action.type}: missing {', '.join(missing)}."
