from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rustaris_bot.errors import PosterError, ToolError  # noqa: E402
from rustaris_bot.memory.scope import Scope  # noqa: E402
from rustaris_bot.objects import Group, Message, TextSegment, User  # noqa: E402
from rustaris_bot.services.llm_client import ToolCall  # noqa: E402
from rustaris_bot.tools import NeteaseMusicTool, ToolRegistry  # noqa: E402
from rustaris_bot.tools.base import ToolContext  # noqa: E402
from rustaris_bot.tools.music_tool import sanitize_filename  # noqa: E402


class _FakePoster:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[Scope, str]] = []
        self.uploads: list[tuple[Scope, str, str]] = []

    async def send_text(self, scope: Scope, text: str) -> int:
        self.sent.append((scope, text))
        return len(self.sent)

    async def upload_file(self, scope: Scope, url: str, filename: str) -> str:
        if self.fail:
            raise PosterError("upload_group_file failed: no permission")
        self.uploads.append((scope, url, filename))
        return "file-1"


def _tool(poster: _FakePoster) -> tuple[NeteaseMusicTool, list[tuple[str, Dict[str, Any]]]]:
    tool = NeteaseMusicTool(poster, "http://music.local:8099/")  # type: ignore[arg-type]
    calls: list[tuple[str, Dict[str, Any]]] = []

    async def fake_post(path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        calls.append((path, payload))
        if path == "info":
            return {"name": "Blue/Moon?", "album": {"cover_url": "http://img.local/cover.jpg"}}
        return {"url": "http://cdn.local/1.flac", "encoding": "flac"}

    tool._post = fake_post  # type: ignore[method-assign]
    return tool, calls


def _context(private: bool = False) -> ToolContext:
    message = Message(
        message_id=1,
        private=private,
        sender=User(user_id=1001, nickname="alice"),
        raw="play 186016",
        segments=[TextSegment("play 186016")],
        group=None if private else Group(group_id=300),
    )
    return ToolContext.for_message(message)


def test_song_is_uploaded_as_a_file_into_the_group() -> None:
    poster = _FakePoster()
    tool, calls = _tool(poster)

    result = asyncio.run(tool.call({"id": "186016", "quality": "lossless"}, _context()))

    assert result == "Sent BlueMoon.flac."
    assert calls == [("info", {"id": 186016}), ("audio", {"id": 186016, "quality": "lossless"})]
    assert poster.uploads == [(Scope.group(300), "http://cdn.local/1.flac", "BlueMoon.flac")]
    assert poster.sent == []


def test_link_mode_sends_text_to_the_private_chat() -> None:
    poster = _FakePoster()
    tool, _ = _tool(poster)

    result = asyncio.run(tool.call({"id": "186016", "as_file": False}, _context(private=True)))

    assert result == "Sent BlueMoon.flac."
    assert poster.sent == [(Scope.user(1001), "Song: BlueMoon.flac\nurl: http://cdn.local/1.flac")]
    assert poster.uploads == []


def test_cover_only_skips_the_audio_lookup() -> None:
    poster = _FakePoster()
    tool, calls = _tool(poster)

    result = asyncio.run(tool.call({"id": "186016", "send_cover": True}, _context()))

    assert result == "Sent BlueMoon."
    assert [path for path, _ in calls] == ["info"]
    assert poster.sent == [(Scope.group(300), "[CQ:image,file=http://img.local/cover.jpg]")]


def test_upload_failure_is_reported_to_the_model() -> None:
    tool, _ = _tool(_FakePoster(fail=True))

    result = asyncio.run(tool.call({"id": "186016"}, _context()))

    assert result.startswith("Failed to send BlueMoon.flac:")
    assert "no permission" in result


def test_bad_arguments_and_missing_message_are_rejected() -> None:
    tool, calls = _tool(_FakePoster())

    with pytest.raises(ToolError):
        asyncio.run(tool.call({"id": "abc"}, _context()))
    with pytest.raises(ToolError):
        asyncio.run(tool.call({"id": "1", "quality": "ultra"}, _context()))
    with pytest.raises(ToolError):
        asyncio.run(tool.call({"id": "1"}, ToolContext(scope=Scope.group(300))))
    assert calls == []


def test_registry_turns_service_errors_into_tool_messages() -> None:
    tool = NeteaseMusicTool(_FakePoster(), "http://music.local")  # type: ignore[arg-type]

    async def failing_post(path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        raise ToolError("music service error 502: bad gateway")

    tool._post = failing_post  # type: ignore[method-assign]
    registry = ToolRegistry([tool])

    result = asyncio.run(registry.execute(ToolCall("c1", "netease_music", '{"id": "5"}'), _context()))

    assert result == {
        "role": "tool",
        "tool_call_id": "c1",
        "content": "Tool 'netease_music' failed: music service error 502: bad gateway",
    }


def test_sanitize_filename_strips_path_and_reserved_characters() -> None:
    assert sanitize_filename('a/b\\c:d*e?f"g<h>i|j') == "abcdefghij"
    assert sanitize_filename("  ... ") == "song"
