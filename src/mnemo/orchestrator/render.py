"""User-facing text for results and errors."""

from __future__ import annotations

import logging
from typing import Any

import pydantic

from mnemo.errors import ApiErrorResponse, ErrorCode
from mnemo.models import MemoryEntry

logger = logging.getLogger(__name__)

RULE = "━" * 50


def describe_error(error: ApiErrorResponse) -> str:
    """Short message saying what failed and, where known, what to do next."""
    message = error.message
    match error.code:
        case ErrorCode.AUTH_ERROR:
            return (
                f"Authentication failed ({message}). Re-authenticate: set MEMORY_API_KEY "
                "or MEMORY_AUTH_TOKEN and try again."
            )
        case ErrorCode.FORBIDDEN:
            return f"You don't have permission to do that ({message})."
        case ErrorCode.VALIDATION_ERROR:
            fields = [
                f"{d.get('field') or 'input'}: {d.get('message')}"
                for d in (error.details or [])
                if isinstance(d, dict)
            ]
            suffix = f" ({'; '.join(fields)})" if fields else ""
            return f"Invalid input{suffix}. Check the values and try again."
        case ErrorCode.NOT_FOUND:
            return (
                f"Not found ({message}). The memory may have been deleted; "
                'run "list" to see what exists.'
            )
        case ErrorCode.CONFLICT:
            return f"Conflict ({message}). Refresh the memory and try again."
        case ErrorCode.RATE_LIMIT_ERROR:
            return "The memory service is rate limiting requests. Wait a moment and try again."
        case ErrorCode.TIMEOUT_ERROR:
            return "The memory service did not respond in time. Check your connection and try again."
        case ErrorCode.NETWORK_ERROR:
            return (
                f"Could not reach the memory service ({message}). "
                "Check MEMORY_API_URL and your network."
            )
        case ErrorCode.SERVER_ERROR:
            return f"The memory service had an internal error ({message}). Try again later."
        case _:
            return f"Request failed: {message}"


def extract_items(data: Any) -> list[dict]:
    """Pull the list of records out of a list/search response body."""
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        for key in ("results", "data", "memories", "topics"):
            value = data.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return []


def to_entries(data: Any) -> list[MemoryEntry]:
    entries = []
    for item in extract_items(data):
        try:
            entries.append(MemoryEntry.model_validate(item))
        except pydantic.ValidationError:
            logger.debug("Skipping malformed memory record: %r", item)
    return entries


def _clip(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "..."


def format_relevance(entry: MemoryEntry) -> str | None:
    score = entry.score
    if score is None:
        return None
    return f"Relevance: {score * 100:.1f}%"


def format_primary(entry: MemoryEntry) -> str:
    lines = [
        f"{RULE[:3]} Primary Result {RULE[:3]}",
        f"Title: {entry.title}",
        f"Content: {_clip(entry.content, 200)}",
    ]
    relevance = format_relevance(entry)
    if relevance:
        lines.append(relevance)
    return "\n".join(lines)


def format_related(entries: list[MemoryEntry], heading: str = "Related Context") -> str:
    """The secondary block, kept apart from the primary answer."""
    if not entries:
        return ""
    lines = [f"{heading}:"]
    for i, entry in enumerate(entries, 1):
        lines.append(f"[{i}] {entry.title}")
        lines.append(f"    {_clip(entry.content, 120)}")
        relevance = format_relevance(entry)
        if relevance:
            lines.append(f"    {relevance}")
    return "\n".join(lines)


def format_list(entries: list[MemoryEntry]) -> str:
    if not entries:
        return "No memories found"
    lines = [f"Showing {len(entries)} memories:"]
    for i, entry in enumerate(entries, 1):
        lines.append(f"[{i}] {entry.title}")
        lines.append(f"    ID: {entry.id} | Type: {entry.memory_type}")
        lines.append(f"    {_clip(entry.content, 80)}")
    return "\n".join(lines)


def format_memory(entry: MemoryEntry) -> str:
    lines = [
        f"{RULE[:3]} {entry.title} {RULE[:3]}",
        f"ID: {entry.id}",
        f"Type: {entry.memory_type} | Status: {entry.status}",
    ]
    if entry.tags:
        lines.append(f"Tags: {', '.join(entry.tags)}")
    if entry.updated_at or entry.created_at:
        lines.append(f"Updated: {entry.updated_at or entry.created_at}")
    lines.append("")
    lines.append(entry.content)
    return "\n".join(lines)


def format_optimized(result: dict[str, Any]) -> str:
    lines = [f"{RULE[:3]} Optimized Prompt {RULE[:3]}", "", str(result.get("optimized_prompt", ""))]
    improvements = result.get("improvements") or []
    if improvements:
        lines.append("")
        lines.append("Key Improvements:")
        lines.extend(f"  {i}. {item}" for i, item in enumerate(improvements, 1))
    if result.get("explanation"):
        lines.append("")
        lines.append(str(result["explanation"]))
    lines.append("")
    lines.append('Use "create" to save the optimized prompt.')
    return "\n".join(lines)
