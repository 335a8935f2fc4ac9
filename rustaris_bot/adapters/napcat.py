from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Collection, Dict, List, Union

import aiohttp

from ..common import as_int, truncate
from ..errors import PosterError
from ..memory.scope import GROUP, Scope
from ..objects import (
    FaceSegment,
    Group,
    ImageSegment,
    MentionSegment,
    Message,
    Permission,
    Segment,
    TextSegment,
    User,
)
from .base import SelfIdentity


logger = logging.getLogger("rustaris_bot")

_ROLE_MAP = {
    "owner": Permission.GROUP_OWNER,
    "admin": Permission.GROUP_ADMIN,
}


@dataclass(slots=True)
class HeartbeatEvent:
    online: bool
    good: bool


@dataclass(slots=True)
class LifecycleEvent:
    self_id: int


Post = Union[Message, HeartbeatEvent, LifecycleEvent]


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _parse_segment(item: Dict[str, Any], self_id: int | None) -> Segment | None:
    kind = item.get("type")
    data = item.get("data") or {}
    if kind == "text":
        return TextSegment(str(data.get("text", "")))
    if kind == "face":
        return FaceSegment(as_int(data.get("id")))
    if kind == "image":
        url = _optional_str(data.get("url"))
        if url is None:
            return None
        size = data.get("file_size")
        return ImageSegment(
            url=url,
            summary=_optional_str(data.get("summary")),
            file=_optional_str(data.get("file")),
            file_size=as_int(size) if size is not None else None,
        )
    if kind == "at":
        qq = str(data.get("qq", "")).strip()
        # "@all" also reaches the bot.
        if qq == "all":
            return MentionSegment(self_id) if self_id is not None else None
        if not qq.isdigit():
            raise ValueError(f"invalid mention target: {qq!r}")
        return MentionSegment(int(qq))
    return None


def _parse_message(payload: Dict[str, Any], self_id: int | None, admin_ids: Collection[int]) -> Message:
    message_type = payload.get("message_type")
    group: Group | None = None
    if message_type == "group":
        group = Group(group_id=int(payload["group_id"]), group_name=_optional_str(payload.get("group_name")))

    raw_sender = payload["sender"]
    user_id = int(raw_sender["user_id"])
    role = _ROLE_MAP.get(str(raw_sender.get("role") or ""), Permission.NORMAL)
    if user_id in admin_ids:
        role = Permission.ADMIN
    sender = User(
        user_id=user_id,
        nickname=_optional_str(raw_sender.get("nickname")),
        card=_optional_str(raw_sender.get("card")),
        role=role,
    )

    segments: List[Segment] = []
    if payload.get("message_format", "array") == "array" and isinstance(payload.get("message"), list):
        for item in payload["message"]:
            if not isinstance(item, dict):
                continue
            segment = _parse_segment(item, self_id)
            if segment is not None:
                segments.append(segment)

    return Message(
        message_id=int(payload["message_id"]),
        private=message_type == "private",
        sender=sender,
        raw=str(payload.get("raw_message", "")),
        segments=segments,
        group=group,
    )


def parse_post(payload: Dict[str, Any], self_id: int | None, admin_ids: Collection[int] = ()) -> Post | None:
    """Map one OneBot 11 post to a runtime event; unknown post types give None."""
    post_type = payload.get("post_type")
    if post_type == "meta_event":
        meta_type = payload.get("meta_event_type")
        if meta_type == "heartbeat":
            status = payload.get("status") or {}
            return HeartbeatEvent(online=bool(status.get("online")), good=bool(status.get("good")))
        if meta_type == "lifecycle":
            return LifecycleEvent(self_id=int(payload["self_id"]))
        return None
    if post_type == "message":
        return _parse_message(payload, self_id, admin_ids)
    return None


def _auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


class NapCatListener:
    """Reads OneBot events from the NapCat websocket and queues chat messages."""

    def __init__(
        self,
        ws_url: str,
        token: str,
        identity: SelfIdentity,
        *,
        admin_ids: Collection[int] = (),
        reconnect_delay: float = 3.0,
        queue_size: int = 1024,
    ) -> None:
        self.ws_url = ws_url
        self.token = token
        self.identity = identity
        self.admin_ids = frozenset(admin_ids)
        self.reconnect_delay = reconnect_delay
        self.events: asyncio.Queue[Message] = asyncio.Queue(maxsize=queue_size)

    def handle_payload(self, text: str) -> Post | None:
        try:
            payload = json.loads(text)
            if not isinstance(payload, dict):
                return None
            post = parse_post(payload, self.identity.user_id, self.admin_ids)
        except (ValueError, KeyError, TypeError) as exc:
            logger.info("Skipping malformed post: %s (%s)", exc, truncate(text, 200))
            return None

        if isinstance(post, LifecycleEvent):
            self.identity.assign(post.self_id)
        elif isinstance(post, HeartbeatEvent):
            if not post.online:
                logger.info("[heartbeat] Bot is not online.")
            if not post.good:
                logger.info("[heartbeat] Bot is not good.")
        elif isinstance(post, Message):
            if self.identity.user_id is None and "self_id" in payload:
                self.identity.assign(int(payload["self_id"]))
            if self.events.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    self.events.get_nowait()
                logger.warning("Inbound queue full, dropped oldest event")
            self.events.put_nowait(post)
        return post

    async def run(self, stop: asyncio.Event) -> None:
        async with aiohttp.ClientSession() as session:
            while not stop.is_set():
                try:
                    await self._connect(session, stop)
                except asyncio.CancelledError:
                    raise
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                    logger.info("WebSocket connection failed: %s", exc)
                if stop.is_set():
                    break
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop.wait(), timeout=self.reconnect_delay)
                if not stop.is_set():
                    logger.info("Trying to reconnect...")
        logger.debug("Listener exited.")

    async def _connect(self, session: aiohttp.ClientSession, stop: asyncio.Event) -> None:
        async with session.ws_connect(self.ws_url, headers=_auth_headers(self.token), heartbeat=30.0) as ws:
            logger.info("WebSocket connected: %s", self.ws_url)

            async def _close_on_stop() -> None:
                await stop.wait()
                await ws.close()

            watcher = asyncio.create_task(_close_on_stop(), name="napcat-ws-stop")
            try:
                async for frame in ws:
                    if frame.type == aiohttp.WSMsgType.TEXT:
                        self.handle_payload(frame.data)
                    elif frame.type == aiohttp.WSMsgType.ERROR:
                        raise ws.exception() or aiohttp.ClientError("websocket error")
                logger.info("WebSocket closed: %s", ws.close_code)
            finally:
                watcher.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await watcher


@dataclass(slots=True)
class _PendingAction:
    action: str
    params: Dict[str, Any]
    future: asyncio.Future


class NapCatPoster:
    """Outbound OneBot actions over HTTP.

    Callers enqueue an action and await a future that the worker resolves exactly once,
    with the response data or a PosterError.
    """

    def __init__(self, http_url: str, token: str, *, timeout_seconds: int = 30, queue_size: int = 256) -> None:
        self.http_url = http_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._queue: asyncio.Queue[_PendingAction] = asyncio.Queue(maxsize=queue_size)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def call(self, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        try:
            self._queue.put_nowait(_PendingAction(action, params, future))
        except asyncio.QueueFull as exc:
            raise PosterError(f"{action} rejected: outbound queue is full") from exc
        try:
            return await asyncio.wait_for(future, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise PosterError(f"{action} timed out") from exc

    async def _post(self, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = f"{self.http_url}/{action}"
        async with self._session.post(url, json=params, headers=_auth_headers(self.token)) as response:
            text = await response.text()
        logger.debug("[napcat] %s -> %s", action, truncate(text, 300))
        if response.status != 200:
            raise PosterError(f"{action} failed with HTTP {response.status}: {truncate(text, 200)}")
        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PosterError(f"{action} returned invalid JSON") from exc
        if not isinstance(body, dict) or body.get("status") != "ok":
            detail = (body.get("wording") or body.get("message") or body.get("retcode")) if isinstance(body, dict) else body
            raise PosterError(f"{action} failed: {detail}")
        return body

    async def _handle(self, pending: _PendingAction) -> None:
        try:
            body = await self._post(pending.action, pending.params)
        except asyncio.CancelledError:
            if not pending.future.done():
                pending.future.cancel()
            raise
        except PosterError as exc:
            if not pending.future.done():
                pending.future.set_exception(exc)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            if not pending.future.done():
                pending.future.set_exception(PosterError(f"{pending.action} unreachable: {exc}"))
        else:
            if not pending.future.done():
                pending.future.set_result(body)

    async def run(self, stop: asyncio.Event, poll_interval: float = 0.1) -> None:
        await self.start()
        try:
            while not stop.is_set():
                try:
                    pending = await asyncio.wait_for(self._queue.get(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    continue
                try:
                    await self._handle(pending)
                finally:
                    self._queue.task_done()
        finally:
            while not self._queue.empty():
                pending = self._queue.get_nowait()
                if not pending.future.done():
                    pending.future.set_exception(PosterError("poster stopped"))
                self._queue.task_done()
            await self.close()
            logger.debug("Poster exited.")

    async def send_text(self, scope: Scope, text: str) -> int:
        target = scope.require_addressable()
        if target.kind == GROUP:
            body = await self.call("send_group_msg", {"group_id": target.target_id, "message": text})
        else:
            body = await self.call("send_private_msg", {"user_id": target.target_id, "message": text})
        data = body.get("data") or {}
        return as_int(data.get("message_id"))

    async def upload_file(self, scope: Scope, url: str, filename: str) -> str:
        target = scope.require_addressable()
        if target.kind == GROUP:
            params = {"group_id": target.target_id, "file": url, "name": filename}
            body = await self.call("upload_group_file", params)
        else:
            params = {"user_id": target.target_id, "file": url, "name": filename}
            body = await self.call("upload_private_file", params)
        data = body.get("data") or {}
        return str(data.get("file_id") or "")
