from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rustaris_bot.adapters import NapCatListener, NapCatPoster, SelfIdentity, parse_post  # noqa: E402
from rustaris_bot.adapters.napcat import HeartbeatEvent, LifecycleEvent  # noqa: E402
from rustaris_bot.errors import PosterError, ScopeError  # noqa: E402
from rustaris_bot.memory.scope import Scope  # noqa: E402
from rustaris_bot.objects import ImageSegment, MentionSegment, Message, Permission, TextSegment  # noqa: E402


BOT_ID = 10000


def _group_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "post_type": "message",
        "message_type": "group",
        "self_id": BOT_ID,
        "message_id": 555,
        "group_id": 300,
        "group_name": "tea club",
        "raw_message": "[CQ:at,qq=10000] hello",
        "message_format": "array",
        "sender": {"user_id": 1001, "nickname": "alice", "card": "Ali", "role": "admin"},
        "message": [
            {"type": "at", "data": {"qq": "10000"}},
            {"type": "text", "data": {"text": " hello"}},
            {"type": "image", "data": {"url": "http://img/1.png", "summary": "[pic]", "file": "1.png"}},
            {"type": "face", "data": {"id": "14"}},
            {"type": "record", "data": {"file": "voice.amr"}},
        ],
    }
    payload.update(overrides)
    return payload


def test_parse_group_message_segments_and_role() -> None:
    message = parse_post(_group_payload(), BOT_ID)

    assert isinstance(message, Message)
    assert not message.private
    assert message.group is not None and message.group.group_id == 300
    assert message.sender.role == Permission.GROUP_ADMIN
    assert message.sender.display_name() == "Ali"
    assert message.mentions(BOT_ID)
    assert isinstance(message.segments[1], TextSegment)
    assert isinstance(message.segments[2], ImageSegment)
    assert len(message.segments) == 4
    assert message.simplified_plain() == "@<10000>  hello Image<[pic] 1.png>"


def test_at_all_is_treated_as_mentioning_the_bot() -> None:
    payload = _group_payload(message=[{"type": "at", "data": {"qq": "all"}}])

    message = parse_post(payload, BOT_ID)

    assert isinstance(message, Message)
    assert message.segments == [MentionSegment(BOT_ID)]


def test_configured_admins_override_platform_role() -> None:
    message = parse_post(_group_payload(), BOT_ID, admin_ids={1001})

    assert isinstance(message, Message)
    assert message.sender.role == Permission.ADMIN


def test_parse_private_message() -> None:
    payload = {
        "post_type": "message",
        "message_type": "private",
        "message_id": 9,
        "raw_message": "hi",
        "sender": {"user_id": 42, "nickname": "bob"},
        "message": [{"type": "text", "data": {"text": "hi"}}],
    }

    message = parse_post(payload, BOT_ID)

    assert isinstance(message, Message)
    assert message.private
    assert message.group is None
    assert Scope.from_message(message) == Scope.user(42)


def test_parse_meta_events() -> None:
    heartbeat = parse_post({"post_type": "meta_event", "meta_event_type": "heartbeat", "status": {"online": True}}, None)
    lifecycle = parse_post({"post_type": "meta_event", "meta_event_type": "lifecycle", "self_id": BOT_ID}, None)

    assert heartbeat == HeartbeatEvent(online=True, good=False)
    assert lifecycle == LifecycleEvent(self_id=BOT_ID)
    assert parse_post({"post_type": "notice"}, None) is None


def test_listener_queues_messages_and_learns_identity() -> None:
    identity = SelfIdentity()
    listener = NapCatListener("ws://localhost", "token", identity)

    listener.handle_payload(json.dumps({"post_type": "meta_event", "meta_event_type": "lifecycle", "self_id": BOT_ID}))
    post = listener.handle_payload(json.dumps(_group_payload()))
    malformed = listener.handle_payload('{"post_type": "message", "message_type": "group"}')
    garbage = listener.handle_payload("not json")

    assert identity.user_id == BOT_ID
    assert isinstance(post, Message)
    assert malformed is None
    assert garbage is None
    assert listener.events.qsize() == 1


def test_listener_drops_oldest_when_queue_is_full() -> None:
    listener = NapCatListener("ws://localhost", "", SelfIdentity(BOT_ID), queue_size=2)

    for message_id in (1, 2, 3):
        listener.handle_payload(json.dumps(_group_payload(message_id=message_id)))

    assert [listener.events.get_nowait().message_id for _ in range(2)] == [2, 3]


def test_poster_resolves_each_call_with_its_own_response() -> None:
    poster = NapCatPoster("http://localhost:5500/v1/", "token", timeout_seconds=5)
    posted: list[tuple[str, Dict[str, Any]]] = []

    async def fake_post(action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        posted.append((action, params))
        return {"status": "ok", "retcode": 0, "data": {"message_id": 700 + len(posted)}}

    poster._post = fake_post  # type: ignore[method-assign]

    async def scenario() -> tuple[int, int]:
        stop = asyncio.Event()
        worker = asyncio.create_task(poster.run(stop, poll_interval=0.01))
        first, second = await asyncio.gather(
            poster.send_text(Scope.group(300), "hello group"),
            poster.send_text(Scope.user(42), "hello user"),
        )
        stop.set()
        await worker
        return first, second

    first, second = asyncio.run(scenario())

    assert posted == [
        ("send_group_msg", {"group_id": 300, "message": "hello group"}),
        ("send_private_msg", {"user_id": 42, "message": "hello user"}),
    ]
    assert (first, second) == (701, 702)


def test_poster_failures_surface_as_poster_error() -> None:
    poster = NapCatPoster("http://localhost:5500/v1", "", timeout_seconds=5)

    async def fake_post(action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        raise PosterError(f"{action} failed: group muted")

    poster._post = fake_post  # type: ignore[method-assign]

    async def scenario() -> None:
        stop = asyncio.Event()
        worker = asyncio.create_task(poster.run(stop, poll_interval=0.01))
        try:
            with pytest.raises(PosterError, match="group muted"):
                await poster.send_text(Scope.group(300), "hello")
        finally:
            stop.set()
            await worker

    asyncio.run(scenario())


def test_poster_upload_uses_scope_specific_action() -> None:
    poster = NapCatPoster("http://localhost:5500/v1", "")
    posted: list[str] = []

    async def fake_post(action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        posted.append(action)
        return {"status": "ok", "data": {"file_id": "f-1"}}

    poster._post = fake_post  # type: ignore[method-assign]

    async def scenario() -> str:
        stop = asyncio.Event()
        worker = asyncio.create_task(poster.run(stop, poll_interval=0.01))
        file_id = await poster.upload_file(Scope.user(42), "http://files/a.txt", "a.txt")
        stop.set()
        await worker
        return file_id

    assert asyncio.run(scenario()) == "f-1"
    assert posted == ["upload_private_file"]


def test_poster_rejects_global_scope() -> None:
    poster = NapCatPoster("http://localhost:5500/v1", "")

    with pytest.raises(ScopeError):
        asyncio.run(poster.send_text(Scope.global_scope(), "hello"))
