from __future__ import annotations

import logging
from typing import Protocol

from ..memory.scope import Scope


logger = logging.getLogger("rustaris_bot")


class SelfIdentity:
    """The bot account's own user id, learned from the platform after connecting."""

    def __init__(self, user_id: int | None = None) -> None:
        self._user_id = user_id

    @property
    def user_id(self) -> int | None:
        return self._user_id

    def assign(self, user_id: int) -> None:
        if self._user_id != user_id:
            logger.info("Bot connected as %s", user_id)
        self._user_id = int(user_id)


class Poster(Protocol):
    async def send_text(self, scope: Scope, text: str) -> int:
        """Send plain text and return the platform message id; raises PosterError."""
        ...

    async def upload_file(self, scope: Scope, url: str, filename: str) -> str:
        ...
