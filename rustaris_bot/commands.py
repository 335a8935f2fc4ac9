from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict

from .adapters.base import Poster
from .errors import AgentError
from .memory.scope import Scope
from .objects import Message


logger = logging.getLogger("rustaris_bot")

CommandHandler = Callable[[Message], Awaitable[None]]


class CommandRouter:
    """Prefix commands answered directly, without the agent."""

    def __init__(self, poster: Poster, prefix: str = "#") -> None:
        self.poster = poster
        self.prefix = prefix
        self._handlers: Dict[str, CommandHandler] = {}
        self.register("echo", self._echo)

    def register(self, name: str, handler: CommandHandler) -> None:
        self._handlers[f"{self.prefix}{name}"] = handler

    async def dispatch(self, message: Message) -> bool:
        """Run the matching command; False means the message is not a command."""
        parts = message.command_parts()
        handler = self._handlers.get(parts[0]) if parts else None
        if handler is None:
            return False
        try:
            await handler(message)
        except AgentError as exc:
            logger.warning("[cmd] %s failed: %s", parts[0], exc)
        return True

    async def _echo(self, message: Message) -> None:
        text = message.joint_args()
        if text.strip():
            await self.poster.send_text(Scope.from_message(message), text)
