from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from typing import Callable, DefaultDict, Dict, Iterable, Tuple

from ..adapters.base import Poster, SelfIdentity
from ..common import truncate
from ..errors import AgentError
from ..memory.dozer import DozeReport, Dozer
from ..objects import Message
from ..tools.base import ToolContext
from .aliases import AliasesMapping
from .engagement import DEFAULT_SCORE_TABLE, ENGAGE_THRESHOLD, carry_over_for, engagement_score
from .history import ChannelHistory, ChannelID
from .loop import ToolLoop


logger = logging.getLogger("rustaris_bot")


class Thinker:
    """Per-channel dialogue driver: history, engagement gate, tool loop and reply dispatch."""

    def __init__(
        self,
        *,
        loop: ToolLoop,
        poster: Poster,
        dozer: Dozer,
        aliases: AliasesMapping,
        identity: SelfIdentity,
        system_prompt: str,
        score_table: Iterable[Tuple[str, int]] = DEFAULT_SCORE_TABLE,
        history_factory: Callable[[], ChannelHistory] = ChannelHistory,
        queue_size: int = 256,
    ) -> None:
        self.loop = loop
        self.poster = poster
        self.dozer = dozer
        self.aliases = aliases
        self.identity = identity
        self.system_prompt = system_prompt
        self.score_table = tuple(score_table)
        self.history_factory = history_factory
        self.channels: Dict[ChannelID, ChannelHistory] = {}
        self.channel_locks: DefaultDict[ChannelID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.inbox: asyncio.Queue[Message] = asyncio.Queue(maxsize=queue_size)

    def history(self, channel: ChannelID) -> ChannelHistory:
        existing = self.channels.get(channel)
        if existing is None:
            existing = self.history_factory()
            self.channels[channel] = existing
        return existing

    def submit(self, message: Message) -> None:
        if self.inbox.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                dropped = self.inbox.get_nowait()
                self.inbox.task_done()
                logger.warning("Thinker queue full, dropping message id=%s", dropped.message_id)
        self.inbox.put_nowait(message)

    async def resolve(self, message: Message) -> str | None:
        """Handle one inbound message; returns the reply text when one was delivered."""
        await self.dozer.temp(message)

        channel = ChannelID.from_message(message)
        if channel is None:
            logger.debug("Skipping message without channel id=%s", message.message_id)
            return None

        self_id = self.identity.user_id
        async with self.channel_locks[channel]:
            history = self.history(channel)
            history.insert(message, self_id)
            if self_id is not None and message.sender.user_id == self_id:
                return None

            score = engagement_score(message, carry_over_for(history.is_buffing()), self_id, self.score_table)
            if score < ENGAGE_THRESHOLD:
                return None

            context = ToolContext.for_message(message)
            logger.info(
                "[engage] scope=%s user=%s score=%s buff=%s",
                context.scope,
                message.sender.user_id,
                score,
                history.conversation_buff,
            )
            messages = [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": history.render_prompt(self.aliases)},
            ]
            outcome = await self.loop.run(messages, context, on_tool_result=history.add_tool)
            if not outcome.reply:
                logger.info("[engage] no reply scope=%s rounds=%s", context.scope, outcome.rounds)
                return None

            try:
                message_id = await self.poster.send_text(context.scope, outcome.reply)
            except AgentError as exc:
                logger.warning("[msg.out] send failed scope=%s error=%s", context.scope, exc)
                return None

            history.add_assistant(outcome.reply)
            history.mark_replied()
            logger.info(
                "[msg.out] scope=%s id=%s rounds=%s text=%s",
                context.scope,
                message_id,
                outcome.rounds,
                truncate(outcome.reply, 120),
            )
            return outcome.reply

    async def doze(self, *, force: bool = False) -> DozeReport:
        return await self.dozer.flush(force=force)

    async def run(self, stop: asyncio.Event, poll_interval: float = 0.5) -> None:
        while not stop.is_set():
            try:
                message = await asyncio.wait_for(self.inbox.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue
            try:
                await self.resolve(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Error resolving message id=%s: %s", message.message_id, exc)
            finally:
                self.inbox.task_done()
        self.aliases.save()
        logger.debug("Thinker loop exited.")
