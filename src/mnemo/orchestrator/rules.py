"""Deterministic intent resolution used when no reasoning backend answers.

`resolve_via_rules` is a pure function of the input text. Rules are tried
in order and the first match wins; rules keyed on an explicit memory ID
run before the generic keyword rules so "delete mem_42" is never read as
a search or a list.
"""

from __future__ import annotations

import re

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
)

ID_PATTERN = re.compile(
    r"\b(?:[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
    r"|mem_[A-Za-z0-9]+)\b"
)

_GREETING = re.compile(
    r"^\s*(hi|hello|hey|hiya|howdy|yo|good (morning|afternoon|evening))(\s+there)?[\s!.,]*$",
    re.I,
)
_UPDATE = re.compile(r"\b(update|edit|change|modify)\b", re.I)
_DELETE = re.compile(r"\b(delete|remove|forget)\b", re.I)
_OPTIMIZE = re.compile(
    r"\b(optimi[sz]e|refine|improve|rewrite)\b(\s+(this|my|the|a))?\s+prompt\b[\s:,-]*(?P<prompt>.*)$",
    re.I | re.S,
)
_CREATE = re.compile(r"\b(remember|save|store|note down)\b", re.I)
_CREATE_PREFIX = re.compile(
    r"^\s*(please\s+)?(remember|save|store|note down)(\s+that)?[\s:,-]*", re.I
)
_SEARCH = re.compile(r"\b(search|find|look up|recall)\b|what do i know about", re.I)
_SEARCH_PREFIX = re.compile(
    r"^\s*(please\s+)?(search(\s+(my memories\s+)?for)?|find|look up|recall|what do i know about)\s+",
    re.I,
)
_LIST = re.compile(r"\b(list|show|recent)\b|my memories", re.I)
_HELP = re.compile(r"^\s*(help|\?|what can you do\??|how does this work\??)\s*$", re.I)
_UPDATE_VALUE = re.compile(r"^\s*(to say|to|with|content)?\s*[:=-]?\s*", re.I)

GREETING_REPLY = (
    "Hello! I can save and find your memories for you. "
    'Try "remember that ..." or "what do I know about ...".'
)

_CAPABILITIES = """\
- Save information: "remember that ..."
- Find information: "search for ..." or "what do I know about ..."
- List memories: "show my memories"
- Refine a prompt: "refine this prompt: ..."
- Get help: "help" or "?"

You can also use direct commands like: create, search, list, get, delete"""

HELP_REPLY = "Here is what I can do:\n" + _CAPABILITIES
UNKNOWN_REPLY = "I'm not sure how to help with that. I can help you:\n" + _CAPABILITIES

_ACTION_REPLIES = {
    "create": "I'll save that for you.",
    "update": "Updating that memory...",
    "search": "Searching your memories...",
    "list": "Here are your recent memories:",
    "get": "Retrieving that memory...",
    "delete": "Deleting that memory...",
    "optimize_prompt": "Let me refine that prompt.",
}


def default_reply(action: Action) -> str:
    return _ACTION_REPLIES.get(action.type, "Working on it...")


def _resolved(action: Action) -> Resolution:
    return Resolution(reply=default_reply(action), action=action)


def _strip_prefix(pattern: re.Pattern[str], text: str) -> str:
    return pattern.sub("", text, count=1).strip()


def _by_id(text: str, memory_id: str, id_end: int) -> Resolution:
    if _UPDATE.search(text):
        value = _UPDATE_VALUE.sub("", text[id_end:], count=1).strip()
        return _resolved(UpdateAction(id=memory_id, content=value or None))
    if _DELETE.search(text):
        return _resolved(DeleteAction(id=memory_id))
    return _resolved(GetAction(id=memory_id))


def resolve_via_rules(text: str) -> Resolution:
    """Map an utterance to an action, a clarification, or a help reply."""
    text = text.strip()

    if _GREETING.match(text):
        return Resolution(reply=GREETING_REPLY)

    id_match = ID_PATTERN.search(text)
    if id_match:
        return _by_id(text, id_match.group(0), id_match.end())

    optimize = _OPTIMIZE.search(text)
    if optimize:
        prompt = optimize.group("prompt").strip()
        return _resolved(OptimizePromptAction(prompt=prompt or None))

    if _CREATE.search(text):
        content = _strip_prefix(_CREATE_PREFIX, text)
        return _resolved(CreateAction(content=content or None, memory_type="context"))

    # Update and delete both need an ID; ask for it rather than guessing.
    if _UPDATE.search(text):
        return _resolved(UpdateAction())
    if _DELETE.search(text):
        return _resolved(DeleteAction())

    if _SEARCH.search(text):
        query = _strip_prefix(_SEARCH_PREFIX, text).rstrip("?").strip()
        return _resolved(SearchAction(query=query or None, limit=10))

    if _LIST.search(text):
        return _resolved(ListAction(limit=10))

    if _HELP.match(text):
        return Resolution(reply=HELP_REPLY)

    return Resolution(reply=UNKNOWN_REPLY)
