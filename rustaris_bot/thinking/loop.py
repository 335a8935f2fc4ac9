from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Protocol

from ..config import DEFAULT_FALLBACK_REPLY
from ..services.llm_client import Completion
from ..tools.base import ToolContext, ToolRegistry


logger = logging.getLogger("rustaris_bot")

DEFAULT_MAX_ROUNDS = 8


class _CompletionBackend(Protocol):
    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]] | None = None,
    ) -> Completion:
        ...


@dataclass(slots=True)
class LoopOutcome:
    reply: str | None
    rounds: int
    exhausted: bool
    transcript: List[Dict[str, Any]] = field(default_factory=list)


class ToolLoop:
    """Request/execute cycle against the LLM until it answers without tool calls.

    Every batch of tool calls is one round. Once `max_rounds` rounds have run, the
    next response that still asks for tools ends the loop with `fallback_reply`.
    """

    def __init__(
        self,
        llm: _CompletionBackend,
        registry: ToolRegistry,
        *,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        fallback_reply: str = DEFAULT_FALLBACK_REPLY,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        self.llm = llm
        self.registry = registry
        self.max_rounds = max_rounds
        self.fallback_reply = fallback_reply

    async def run(
        self,
        messages: List[Dict[str, Any]],
        context: ToolContext,
        on_tool_result: Callable[[str, str], None] | None = None,
    ) -> LoopOutcome:
        transcript = list(messages)
        tools = self.registry.schemas() or None
        rounds = 0

        while True:
            completion = await self.llm.complete(transcript, tools)
            if not completion.tool_calls:
                reply = completion.content.strip()
                return LoopOutcome(reply or None, rounds, False, transcript)

            if rounds >= self.max_rounds:
                logger.warning(
                    "[loop] giving up after %s tool rounds scope=%s pending_calls=%s",
                    rounds,
                    context.scope,
                    ",".join(call.name for call in completion.tool_calls),
                )
                return LoopOutcome(self.fallback_reply.strip() or None, rounds, True, transcript)

            transcript.append(completion.assistant_message())
            for call in completion.tool_calls:
                result = await self.registry.execute(call, context)
                transcript.append(result)
                if on_tool_result is not None:
                    on_tool_result(call.name, str(result["content"]))
            rounds += 1
