from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import ScopeError

if TYPE_CHECKING:
    from ..objects import Message


GROUP = "group"
USER = "user"
GLOBAL = "global"


@dataclass(frozen=True, slots=True)
class Scope:
    """Partition key shared by memory rows and in-memory per-conversation state."""

    kind: str
    target_id: int | None = None

    def __post_init__(self) -> None:
        if self.kind == GLOBAL:
            if self.target_id is not None:
                raise ValueError("global scope takes no id")
            return
        if self.kind not in {GROUP, USER}:
            raise ValueError(f"unknown scope kind: {self.kind!r}")
        if self.target_id is None or self.target_id < 0:
            raise ValueError(f"{self.kind} scope requires a non-negative id")

    @classmethod
    def group(cls, group_id: int) -> "Scope":
        return cls(GROUP, int(group_id))

    @classmethod
    def user(cls, user_id: int) -> "Scope":
        return cls(USER, int(user_id))

    @classmethod
    def global_scope(cls) -> "Scope":
        return cls(GLOBAL)

    @property
    def is_global(self) -> bool:
        return self.kind == GLOBAL

    def serialize(self) -> str:
        if self.kind == GLOBAL:
            return GLOBAL
        return f"{self.kind}:{self.target_id}"

    def __str__(self) -> str:
        return self.serialize()

    @classmethod
    def parse(cls, value: str) -> "Scope":
        """Inverse of serialize(); anything unrecognised falls back to the global scope."""
        text = (value or "").strip()
        for kind in (GROUP, USER):
            prefix = f"{kind}:"
            if text.startswith(prefix):
                raw_id = text[len(prefix):]
                if raw_id.isascii() and raw_id.isdigit():
                    return cls(kind, int(raw_id))
                return cls.global_scope()
        return cls.global_scope()

    @classmethod
    def from_message(cls, message: "Message") -> "Scope":
        if message.private:
            return cls.user(message.sender.user_id)
        if message.group is not None:
            return cls.group(message.group.group_id)
        return cls.global_scope()

    def require_addressable(self) -> "Scope":
        if self.is_global:
            raise ScopeError("global scope cannot be addressed by a message")
        return self
