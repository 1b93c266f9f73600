"""Command registry and the direct (non-natural-language) memory commands."""

from __future__ import annotations

import logging
import shlex
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import pydantic

from mnemo.client import ApiResponse, MemoryClient
from mnemo.models import MEMORY_STATUSES, MEMORY_TYPES, MemoryEntry
from mnemo.orchestrator.render import (
    describe_error,
    extract_items,
    format_list,
    format_memory,
    format_primary,
    format_related,
    to_entries,
)

logger = logging.getLogger(__name__)

Handler = Callable[[list[str]], Awaitable[None]]


@dataclass
class Command:
    name: str
    handler: Handler
    help: str = ""
    aliases: tuple[str, ...] = ()


@dataclass
class CommandRegistry:
    """Name and alias lookup for REPL commands."""

    _commands: dict[str, Command] = field(default_factory=dict)
    _aliases: dict[str, str] = field(default_factory=dict)

    def register(
        self,
        name: str,
        handler: Handler,
        *,
        help: str = "",
        aliases: tuple[str, ...] = (),
    ) -> None:
        self._commands[name] = Command(name, handler, help, aliases)
        for alias in aliases:
            self._aliases[alias] = name

    def resolve(self, word: str) -> Command | None:
        word = word.lower()
        return self._commands.get(self._aliases.get(word, word))

    def __contains__(self, word: str) -> bool:
        return self.resolve(word) is not None

    @property
    def commands(self) -> list[Command]:
        return list(self._commands.values())

    async def execute(self, word: str, args: list[str]) -> bool:
        """Run a command. Returns False when the word is not a command."""
        command = self.resolve(word)
        if command is None:
            return False
        await command.handler(args)
        return True


def split_line(line: str) -> list[str]:
    """Shell-style split; unbalanced quotes fall back to whitespace split."""
    try:
        return shlex.split(line)
    except ValueError:
        return line.split()


def parse_flags(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Separate `--name=value` flags from positional arguments."""
    positional: list[str] = []
    flags: dict[str, str] = {}
    for arg in args:
        if arg.startswith("--") and "=" in arg:
            name, value = arg[2:].split("=", 1)
            flags[name.lower()] = value.strip()
        else:
            positional.append(arg)
    return positional, flags


def parse_tags(value: str) -> list[str]:
    return [t.strip() for t in value.split(",") if t.strip()]


class MemoryCommands:
    """Direct memory operations: create, update, search, list, get, delete, topics, stats."""

    def __init__(self, client: MemoryClient) -> None:
        self.client = client
        self.last_result: Any = None

    def register(self, registry: CommandRegistry) -> None:
        registry.register("create", self.create, help="create <title> <content> [--type=] [--tags=a,b]")
        registry.register(
            "update",
            self.update,
            help="update <id> [content] [--title=] [--content=] [--type=] [--status=] [--tags=]",
            aliases=("edit",),
        )
        registry.register("search", self.search, help="search <query> [--limit=] [--type=]")
        registry.register("list", self.list_memories, help="list [limit] [--type=] [--status=] [--tags=]", aliases=("ls",))
        registry.register("get", self.get, help="get <id>")
        registry.register("delete", self.delete, help="delete <id> [<id> ...]", aliases=("del", "rm"))
        registry.register("topics", self.topics, help="topics [topic_id]")
        registry.register("stats", self.stats, help="stats")

    def _report_error(self, envelope: ApiResponse) -> bool:
        if envelope.error is None:
            return False
        print(f"Error: {describe_error(envelope.error)}")
        return True

    @staticmethod
    def _memory_type(flags: dict[str, str], default: str | None) -> str | None:
        candidate = flags.get("type")
        if candidate is None:
            return default
        if candidate in MEMORY_TYPES:
            return candidate
        print(
            f'Warning: Invalid memory type "{candidate}". '
            f"Valid types: {', '.join(MEMORY_TYPES)}"
        )
        return default

    # ── Memory operations ────────────────────────────────────

    async def create(self, args: list[str]) -> None:
        positional, flags = parse_flags(args)
        if len(positional) < 2:
            print("Usage: create <title> <content> [--type=<type>] [--tags=tag1,tag2]")
            return

        title, content = positional[0].strip(), " ".join(positional[1:]).strip()
        if not title or not content:
            print("Error: Title and content cannot be empty")
            return

        payload: dict[str, Any] = {
            "title": title,
            "content": content,
            "memory_type": self._memory_type(flags, "context"),
        }
        if "tags" in flags:
            payload["tags"] = parse_tags(flags["tags"])

        envelope = await self.client.create_memory(payload)
        if self._report_error(envelope):
            return
        memory_id = envelope.data.get("id") if isinstance(envelope.data, dict) else None
        print(f"✓ Memory created: {memory_id or title}")
        self.last_result = envelope.data

    async def update(self, args: list[str]) -> None:
        positional, flags = parse_flags(args)
        if not positional:
            print("Usage: update <id> [--title=...] [--content=...] [--type=<type>] [--status=<status>] [--tags=tag1,tag2]")
            return

        memory_id, rest = positional[0], positional[1:]
        updates: dict[str, Any] = {}
        if "title" in flags:
            updates["title"] = flags["title"]
        if "content" in flags:
            updates["content"] = flags["content"]
        elif rest:
            updates["content"] = " ".join(rest)
        memory_type = self._memory_type(flags, None)
        if memory_type:
            updates["memory_type"] = memory_type
        if "status" in flags:
            if flags["status"] in MEMORY_STATUSES:
                updates["status"] = flags["status"]
            else:
                print(
                    f'Warning: Invalid status "{flags["status"]}". '
                    f"Valid statuses: {', '.join(MEMORY_STATUSES)}"
                )
        if "tags" in flags:
            updates["tags"] = parse_tags(flags["tags"])

        if not updates:
            print("Nothing to update. Provide new content or at least one --field=value flag.")
            return

        envelope = await self.client.update_memory(memory_id, updates)
        if self._report_error(envelope):
            return
        print(f"✓ Memory updated: {memory_id}")
        self.last_result = envelope.data

    async def search(self, args: list[str]) -> None:
        positional, flags = parse_flags(args)
        query = " ".join(positional).strip()
        if not query:
            print("Usage: search <query> [--limit=<n>] [--type=<type>]")
            return

        request: dict[str, Any] = {"query": query, "limit": flags.get("limit", 10)}
        memory_type = self._memory_type(flags, None)
        if memory_type:
            request["memory_types"] = [memory_type]

        envelope = await self.client.search_memories(request)
        if self._report_error(envelope):
            return
        entries = to_entries(envelope.data)
        if not entries:
            print("No results found")
            return
        print(f"Found {len(entries)} result(s):\n")
        print(format_primary(entries[0]))
        if len(entries) > 1:
            print()
            print(format_related(entries[1:]))
        self.last_result = entries

    async def list_memories(self, args: list[str]) -> None:
        positional, flags = parse_flags(args)
        limit = 10
        if positional:
            try:
                limit = int(positional[0])
            except ValueError:
                print("Usage: list [limit] [--type=<type>] [--status=<status>] [--tags=tag1,tag2]")
                return

        envelope = await self.client.list_memories(
            limit=limit,
            memory_type=self._memory_type(flags, None),
            status=flags.get("status"),
            tags=parse_tags(flags["tags"]) if "tags" in flags else None,
        )
        if self._report_error(envelope):
            return
        entries = to_entries(envelope.data)
        print(format_list(entries))
        self.last_result = entries

    async def get(self, args: list[str]) -> None:
        if not args:
            print("Usage: get <id>")
            return
        envelope = await self.client.get_memory(args[0])
        if self._report_error(envelope):
            return
        try:
            entry = MemoryEntry.model_validate(envelope.data)
        except pydantic.ValidationError:
            print(envelope.data)
            return
        print(format_memory(entry))
        self.last_result = entry

    async def delete(self, args: list[str]) -> None:
        ids = [a for a in args if not a.startswith("--")]
        if not ids:
            print("Usage: delete <id> [<id> ...]")
            return

        if len(ids) == 1:
            envelope = await self.client.delete_memory(ids[0])
            if self._report_error(envelope):
                return
            print(f"✓ Memory deleted: {ids[0]}")
            return

        envelope = await self.client.bulk_delete_memories(ids)
        if self._report_error(envelope):
            return
        failed = envelope.data["failed_ids"]
        print(f"✓ Deleted {envelope.data['deleted_count']} of {len(ids)} memories")
        if failed:
            print(f"Failed: {', '.join(failed)}")
        self.last_result = envelope.data

    # ── Topics & stats ───────────────────────────────────────

    async def topics(self, args: list[str]) -> None:
        if args:
            envelope = await self.client.get_topic_with_memories(args[0])
            if self._report_error(envelope):
                return
            data = envelope.data if isinstance(envelope.data, dict) else {}
            topic = data.get("topic") or data
            print(f"Topic: {topic.get('name', args[0])}")
            print(format_list(to_entries(data.get("memories") or [])))
            self.last_result = data
            return

        envelope = await self.client.get_topics(include_hierarchy=True)
        if self._report_error(envelope):
            return
        topics = extract_items(envelope.data)
        if not topics:
            print("No topics found")
            return
        for topic in topics:
            _print_topic(topic, depth=0)
        self.last_result = topics

    async def stats(self, args: list[str]) -> None:
        envelope = await self.client.get_memory_stats()
        if self._report_error(envelope):
            return
        data = envelope.data if isinstance(envelope.data, dict) else {}
        print(f"Total memories: {data.get('total_memories', 0)}")
        for key in ("memories_by_type", "memories_by_status"):
            breakdown = data.get(key) or {}
            if breakdown:
                label = key.replace("memories_by_", "By ")
                print(f"{label}: " + ", ".join(f"{k}={v}" for k, v in breakdown.items()))
        if data.get("total_size_bytes") is not None:
            print(f"Total size: {data['total_size_bytes']} bytes")
        self.last_result = data


def _print_topic(topic: dict, depth: int) -> None:
    print(f"{'  ' * depth}- {topic.get('name', '?')} ({topic.get('id', '')})")
    for child in topic.get("children") or []:
        if isinstance(child, dict):
            _print_topic(child, depth + 1)
