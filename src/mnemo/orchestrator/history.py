"""Bounded conversation history with a pinned system prompt."""

from __future__ import annotations

from collections import deque
from typing import Literal

from mnemo.engines.base import Message

Role = Literal["user", "assistant"]


class ConversationHistory:
    """System prompt plus the most recent `max_turns` user/assistant messages.

    The system prompt is stored apart from the turns, so `messages()[0]` is
    always the system prompt and eviction can never drop it.
    """

    def __init__(self, system_prompt: str, max_turns: int = 50) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self._system: Message = {"role": "system", "content": system_prompt}
        self._turns: deque[Message] = deque(maxlen=max_turns)

    @property
    def system_prompt(self) -> str:
        return self._system["content"]

    @property
    def max_turns(self) -> int:
        return self._turns.maxlen or 0

    def append(self, role: Role, content: str) -> None:
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported role: {role}")
        self._turns.append({"role": role, "content": content})

    def add_user(self, content: str) -> None:
        self.append("user", content)

    def add_assistant(self, content: str) -> None:
        self.append("assistant", content)

    def messages(self) -> list[Message]:
        return [dict(self._system), *(dict(m) for m in self._turns)]

    def reset(self) -> None:
        """Drop every turn, keeping only the system prompt."""
        self._turns.clear()

    def __len__(self) -> int:
        return 1 + len(self._turns)
