from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Union

from ..objects import Message, User
from ..prompts.dialogue import (
    build_history_prompt,
    format_assistant_line,
    format_tool_line,
    format_user_line,
    unnamed_user_label,
)
from .aliases import AliasesMapping


HISTORY_CAPACITY = 20
HISTORY_WINDOW_SECONDS = 1300.0
BUFF_TURNS = 3


@dataclass(frozen=True, slots=True)
class ChannelID:
    private: bool
    channel_id: int

    @classmethod
    def from_message(cls, message: Message) -> "ChannelID | None":
        if message.private:
            return cls(True, message.sender.user_id)
        if message.group is None:
            return None
        return cls(False, message.group.group_id)


@dataclass(slots=True)
class UserEntry:
    user: User
    content: str
    timestamp: float


@dataclass(slots=True)
class AssistantEntry:
    content: str
    timestamp: float


@dataclass(slots=True)
class ToolEntry:
    name: str
    content: str
    timestamp: float


ChatMsg = Union[UserEntry, AssistantEntry, ToolEntry]


def render_entry(entry: ChatMsg) -> str:
    if isinstance(entry, UserEntry):
        name = entry.user.display_name() or unnamed_user_label()
        return format_user_line(entry.user.user_id, name, entry.content)
    if isinstance(entry, AssistantEntry):
        return format_assistant_line(entry.content)
    return format_tool_line(entry.name, entry.content)


class ChannelHistory:
    """Bounded per-channel transcript plus the post-reply continuation buff."""

    def __init__(
        self,
        capacity: int = HISTORY_CAPACITY,
        window_seconds: float = HISTORY_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: Deque[ChatMsg] = deque(maxlen=capacity)
        self.conversation_buff = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[ChatMsg]:
        return list(self._entries)

    def insert(self, message: Message, self_id: int | None) -> ChatMsg:
        now = self._clock()
        content = message.simplified_plain()
        if self_id is not None and message.sender.user_id == self_id:
            entry: ChatMsg = AssistantEntry(content, now)
        else:
            entry = UserEntry(message.sender, content, now)
            if self.conversation_buff > 0:
                self.conversation_buff -= 1
        self._entries.append(entry)
        return entry

    def add_assistant(self, content: str) -> None:
        self._entries.append(AssistantEntry(content, self._clock()))

    def add_tool(self, name: str, content: str) -> None:
        self._entries.append(ToolEntry(name, content, self._clock()))

    def mark_replied(self) -> None:
        self.conversation_buff = BUFF_TURNS

    def is_buffing(self) -> bool:
        return self.conversation_buff > 0

    def visible_entries(self) -> List[ChatMsg]:
        cutoff = self._clock() - self.window_seconds
        return [entry for entry in self._entries if entry.timestamp >= cutoff]

    def render_prompt(self, aliases: AliasesMapping) -> str:
        """Windowed history, then the newest entry restated as the one to answer, then known aliases."""
        latest = self._entries[-1] if self._entries else None
        visible = [entry for entry in self.visible_entries() if entry is not latest]

        user_ids: list[int] = []
        for entry in [*visible, latest]:
            if isinstance(entry, UserEntry) and entry.user.user_id not in user_ids:
                user_ids.append(entry.user.user_id)

        return build_history_prompt(
            [render_entry(entry) for entry in visible],
            render_entry(latest) if latest is not None else None,
            aliases.table_for(user_ids),
        )
