from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Union


class Permission(enum.IntEnum):
    NORMAL = 0
    GROUP_ADMIN = 1
    GROUP_OWNER = 2
    ADMIN = 3


@dataclass(slots=True)
class User:
    user_id: int
    nickname: str | None = None
    # Group-specific display name; empty for private chats.
    card: str | None = None
    role: Permission = Permission.NORMAL

    def display_name(self) -> str | None:
        for candidate in (self.card, self.nickname):
            if candidate and candidate.strip():
                return candidate.strip()
        return None


@dataclass(slots=True)
class Group:
    group_id: int
    group_name: str | None = None


@dataclass(frozen=True, slots=True)
class TextSegment:
    text: str


@dataclass(frozen=True, slots=True)
class FaceSegment:
    face_id: int


@dataclass(frozen=True, slots=True)
class ImageSegment:
    url: str
    summary: str | None = None
    file: str | None = None
    file_size: int | None = None


@dataclass(frozen=True, slots=True)
class MentionSegment:
    user_id: int


Segment = Union[TextSegment, FaceSegment, ImageSegment, MentionSegment]


@dataclass(slots=True)
class Message:
    message_id: int
    private: bool
    sender: User
    raw: str
    segments: List[Segment] = field(default_factory=list)
    group: Group | None = None

    def mentions(self, user_id: int) -> bool:
        return any(isinstance(seg, MentionSegment) and seg.user_id == user_id for seg in self.segments)

    def command_parts(self) -> list[str]:
        return self.raw.split(" ")

    def on_command(self, name: str) -> bool:
        parts = self.command_parts()
        return bool(parts) and parts[0] == name

    def args(self) -> list[str]:
        return self.command_parts()[1:]

    def joint_args(self) -> str:
        return " ".join(self.args())

    def simplified_plain(self) -> str:
        """Flatten structured content into a single line readable by the model."""
        if not self.segments:
            return self.raw.strip()
        parts: list[str] = []
        for seg in self.segments:
            if isinstance(seg, TextSegment):
                parts.append(seg.text)
            elif isinstance(seg, MentionSegment):
                parts.append(f"@<{seg.user_id}>")
            elif isinstance(seg, ImageSegment):
                parts.append(f"Image<{seg.summary or ''} {seg.file or ''}>")
            # Faces carry no text worth keeping.
        return " ".join(part for part in parts if part).strip()
