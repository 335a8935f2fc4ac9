from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rustaris_bot.app import Runtime, configure_logging  # noqa: E402
from rustaris_bot.config import Settings  # noqa: E402
from rustaris_bot.memory import SqliteMemoryStore  # noqa: E402
from rustaris_bot.memory.scope import Scope  # noqa: E402
from rustaris_bot.objects import Group, Message, TextSegment, User  # noqa: E402


class _FakePoster:
    def __init__(self) -> None:
        self.sent: list[tuple[Scope, str]] = []

    async def send_text(self, scope: Scope, text: str) -> int:
        self.sent.append((scope, text))
        return 1

    async def upload_file(self, scope: Scope, url: str, filename: str) -> str:
        return ""


def _settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Settings:
    monkeypatch.setenv("LLM_API_KEY", "sk-test")
    monkeypatch.setenv("MEMORY_BACKEND", "sqlite")
    monkeypatch.setenv("MEMORY_SQLITE_PATH", str(tmp_path / "memory.db"))
    monkeypatch.setenv("ALIASES_PATH", str(tmp_path / "aliases.json"))
    monkeypatch.setenv("HEART_BEAT_SECONDS", "0.01")
    monkeypatch.delenv("RUSTARIS_DEV", raising=False)
    monkeypatch.delenv("DEV", raising=False)
    monkeypatch.delenv("MUSIC_API_URL", raising=False)
    settings = Settings.from_env()
    settings.validate()
    return settings


def _message(message_id: int, text: str) -> Message:
    return Message(
        message_id=message_id,
        private=False,
        sender=User(user_id=1001, nickname="alice"),
        raw=text,
        segments=[TextSegment(text)],
        group=Group(group_id=300),
    )


def test_runtime_wires_sqlite_backend_and_dialogue_tools(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    runtime = Runtime(_settings(monkeypatch, tmp_path))

    assert isinstance(runtime.memory, SqliteMemoryStore)
    assert runtime.thinker.loop.registry.names == ["search_memory", "save_memory", "add_alias"]
    assert runtime.dozer.registry.names == ["add_memory", "update_memory", "delete_memory"]
    assert runtime.dozer.threshold == 50
    assert (tmp_path / "aliases.json").exists()
    assert runtime.music is None


def test_runtime_registers_music_tool_when_service_configured(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    settings = _settings(monkeypatch, tmp_path)
    settings.music_api_url = "http://music.local:8099/"

    runtime = Runtime(settings)

    assert runtime.thinker.loop.registry.names[-1] == "netease_music"
    assert runtime.music is not None
    assert runtime.music.api_root == "http://music.local:8099"
    assert runtime.music.poster is runtime.poster


def test_ingest_routes_commands_and_forwards_chat(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    runtime = Runtime(_settings(monkeypatch, tmp_path))
    poster = _FakePoster()
    runtime.commands.poster = poster  # type: ignore[assignment]

    async def scenario() -> None:
        runtime.listener.events.put_nowait(_message(1, "#echo hello"))
        runtime.listener.events.put_nowait(_message(2, "just chatting"))
        worker = asyncio.create_task(runtime._ingest())
        for _ in range(200):
            if runtime.thinker.inbox.qsize() == 1 and poster.sent:
                break
            await asyncio.sleep(0.01)
        runtime.request_stop()
        await asyncio.wait_for(worker, timeout=2)

    asyncio.run(scenario())

    assert poster.sent == [(Scope.group(300), "hello")]
    assert runtime.thinker.inbox.get_nowait().message_id == 2


def test_configure_logging_quiets_transport_loggers() -> None:
    configure_logging("debug")

    assert logging.getLogger("aiohttp.access").level == logging.WARNING
    assert logging.getLogger("asyncpg").level == logging.WARNING
