"""System prompts and the tool schema offered to reasoning backends."""

from __future__ import annotations

from mnemo.models import MEMORY_STATUSES, MEMORY_TYPES

SYSTEM_PROMPT = """\
You are an assistant for a personal memory service. You help users manage \
their memories through natural language.

You can:
- Create memories when users want to save information
- Update a memory when users refer to one by ID and want it changed
- Search memories when users want to find information
- List memories when users want to see what is stored
- Get or delete a specific memory by ID
- Refine a prompt the user wants improved

Call a tool whenever the user asks for one of these operations. Never \
invent memory IDs: if an operation needs an ID the user did not give, ask \
for it. Otherwise answer briefly and helpfully, using any stored context \
you are given."""

OPTIMIZE_PROMPT = """\
You improve prompts written for language models. Reply with a JSON object \
only, with the keys "optimized_prompt" (string), "improvements" (list of \
short strings) and "explanation" (one sentence)."""


def _function(name: str, description: str, properties: dict, required: list[str] | None = None) -> dict:
    parameters: dict = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = required
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


_ID = {"type": "string", "description": "Memory ID"}
_TYPE = {"type": "string", "enum": list(MEMORY_TYPES), "description": "Type of memory"}
_TAGS = {"type": "array", "items": {"type": "string"}, "description": "Tags for categorization"}
_LIMIT = {"type": "integer", "description": "Maximum number of results", "minimum": 1, "maximum": 100}

TOOLS: list[dict] = [
    _function(
        "create_memory",
        "Create a new memory entry",
        {
            "title": {"type": "string", "description": "Short title of the memory"},
            "content": {"type": "string", "description": "Content to remember"},
            "memory_type": _TYPE,
            "tags": _TAGS,
        },
        ["content"],
    ),
    _function(
        "update_memory",
        "Update fields of an existing memory by ID",
        {
            "id": _ID,
            "title": {"type": "string"},
            "content": {"type": "string"},
            "memory_type": _TYPE,
            "status": {"type": "string", "enum": list(MEMORY_STATUSES)},
            "tags": _TAGS,
        },
        ["id"],
    ),
    _function(
        "search_memories",
        "Search memories using semantic search",
        {
            "query": {"type": "string", "description": "Search query"},
            "limit": _LIMIT,
            "memory_type": _TYPE,
        },
        ["query"],
    ),
    _function("list_memories", "List recent memories", {"limit": _LIMIT, "memory_type": _TYPE}),
    _function("get_memory", "Get a specific memory by ID", {"id": _ID}, ["id"]),
    _function("delete_memory", "Delete a memory by ID", {"id": _ID}, ["id"]),
    _function(
        "optimize_prompt",
        "Refine a prompt the user wants improved",
        {
            "prompt": {"type": "string", "description": "The prompt to refine"},
            "context": {"type": "string", "description": "What the prompt is for"},
        },
        ["prompt"],
    ),
]
