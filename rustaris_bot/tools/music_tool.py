from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict

import aiohttp

from ..adapters.base import Poster
from ..errors import PosterError, ToolError
from ..memory.scope import Scope
from .base import Tool, ToolContext, require_str


logger = logging.getLogger("rustaris_bot")

QUALITIES = ("standard", "exhigh", "lossless")

_UNSAFE_FILENAME_CHARS = re.compile(r'[\x00-\x1f\x7f/\\:*?"<>|]')


def sanitize_filename(name: str, fallback: str = "song") -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", name).strip().rstrip(". ")
    return cleaned[:200] or fallback


def _optional_bool(args: Dict[str, Any], key: str, default: bool) -> bool:
    value = args.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ToolError(f"argument '{key}' must be a boolean")


class NeteaseMusicTool(Tool):
    """Resolves a NetEase Cloud Music song through a lookup service and sends it into the chat."""

    name = "netease_music"
    description = (
        "Look up a NetEase Cloud Music song by id and send it to the current chat, "
        "as a file, as a link, or only its album cover."
    )

    def __init__(self, poster: Poster, api_root: str, *, timeout_seconds: int = 10) -> None:
        self.poster = poster
        self.api_root = api_root.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "id": {
                    "type": "string",
                    "description": "Song id, given by the user or found after `?id=` in a share link; digits only.",
                },
                "quality": {
                    "type": "string",
                    "enum": list(QUALITIES),
                    "default": "standard",
                    "description": "Audio quality: standard, exhigh (high) or lossless.",
                },
                "send_cover": {
                    "type": "boolean",
                    "default": False,
                    "description": (
                        "Send only the album cover. When the user wants both the song and the cover, "
                        "call this tool twice with send_cover true and false."
                    ),
                },
                "as_file": {
                    "type": "boolean",
                    "default": True,
                    "description": "Send the song as a file. Set to false when the user asks for the raw link.",
                },
            },
            "required": ["id"],
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = f"{self.api_root}/{path}"
        try:
            async with self._session.post(url, json=payload) as response:
                text = await response.text()
                if response.status != 200:
                    raise ToolError(f"music service error {response.status}: {text[:200]}")
                data = json.loads(text)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
            raise ToolError(f"music service request failed: {exc}") from exc
        if not isinstance(data, dict):
            raise ToolError("music service returned a non-object response")
        return data

    @staticmethod
    def _field(data: Dict[str, Any], key: str) -> str:
        value = data.get(key)
        if not isinstance(value, str) or not value:
            raise ToolError(f"music service response is missing '{key}'")
        return value

    async def call(self, args: Dict[str, Any], context: ToolContext) -> str:
        song_id = require_str(args, "id")
        if not song_id.isdigit():
            raise ToolError("argument 'id' must contain digits only")
        quality = args.get("quality") or "standard"
        if quality not in QUALITIES:
            raise ToolError(f"argument 'quality' must be one of {', '.join(QUALITIES)}")
        send_cover = _optional_bool(args, "send_cover", False)
        as_file = _optional_bool(args, "as_file", True)
        scope = Scope.from_message(context.require_message())

        info = await self._post("info", {"id": int(song_id)})
        name = sanitize_filename(self._field(info, "name"))

        if send_cover:
            album = info.get("album")
            cover_url = self._field(album if isinstance(album, dict) else {}, "cover_url")
            return await self._deliver(name, self.poster.send_text(scope, f"[CQ:image,file={cover_url}]"))

        audio = await self._post("audio", {"id": int(song_id), "quality": quality})
        url = self._field(audio, "url")
        file_name = f"{name}.{self._field(audio, 'encoding')}"
        logger.info("[music] id=%s scope=%s file=%s as_file=%s", song_id, scope, file_name, as_file)

        if as_file:
            return await self._deliver(file_name, self.poster.upload_file(scope, url, file_name))
        return await self._deliver(file_name, self.poster.send_text(scope, f"Song: {file_name}\nurl: {url}"))

    @staticmethod
    async def _deliver(label: str, send: Any) -> str:
        try:
            await send
        except PosterError as exc:
            logger.warning("[music] sending %s failed: %s", label, exc)
            return f"Failed to send {label}: {exc}"
        return f"Sent {label}."
