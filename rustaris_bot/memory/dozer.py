from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Tuple

from ..adapters.base import SelfIdentity
from ..objects import Message
from ..prompts.memory import (
    build_reconciliation_system_prompt,
    build_reconciliation_user_prompt,
    format_memory_line,
)
from ..services.llm_client import Completion
from ..thinking.aliases import AliasesMapping
from ..tools.base import ToolContext, ToolRegistry
from ..tools.memory_tools import AddMemoryTool, DeleteMemoryTool, UpdateMemoryTool
from .extractor import FactExtractor
from .models import MemoryBackend
from .scope import Scope


logger = logging.getLogger("rustaris_bot")

DEV_THRESHOLD = 1
PROD_THRESHOLD = 50


class _LLMBackend(Protocol):
    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        ...

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]] | None = None,
    ) -> Completion:
        ...


@dataclass(slots=True)
class DozeReport:
    scopes: int = 0
    facts: int = 0
    applied: int = 0
    failed: int = 0
    errors: int = 0


class Dozer:
    """Batches raw messages per scope and consolidates full batches into long-term memory."""

    def __init__(
        self,
        memory: MemoryBackend,
        llm: _LLMBackend,
        aliases: AliasesMapping,
        identity: SelfIdentity,
        *,
        threshold: int = PROD_THRESHOLD,
        extractor: FactExtractor | None = None,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.memory = memory
        self.llm = llm
        self.aliases = aliases
        self.identity = identity
        self.threshold = threshold
        self.extractor = extractor or FactExtractor(llm)
        self.registry = ToolRegistry(
            [AddMemoryTool(memory), UpdateMemoryTool(memory), DeleteMemoryTool(memory)]
        )
        self._pending: Dict[Scope, List[Message]] = {}
        self._lock = asyncio.Lock()

    async def temp(self, message: Message) -> None:
        scope = Scope.from_message(message)
        async with self._lock:
            self._pending.setdefault(scope, []).append(message)

    def pending(self, scope: Scope) -> List[Message]:
        return list(self._pending.get(scope, ()))

    def pending_counts(self) -> Dict[Scope, int]:
        return {scope: len(batch) for scope, batch in self._pending.items()}

    async def _drain(self, threshold: int) -> List[Tuple[Scope, List[Message]]]:
        ready: List[Tuple[Scope, List[Message]]] = []
        async with self._lock:
            for scope in list(self._pending):
                if len(self._pending[scope]) >= threshold:
                    ready.append((scope, self._pending.pop(scope)))
        return ready

    async def flush(self, *, force: bool = False) -> DozeReport:
        """Consolidate every scope whose batch reached the threshold (any non-empty batch with force)."""
        report = DozeReport()
        ready = await self._drain(1 if force else self.threshold)
        for scope, batch in ready:
            try:
                await self._consolidate(scope, batch, report)
            except asyncio.CancelledError:
                raise
            except Exception:
                report.errors += 1
                logger.exception("[dozer] consolidation failed scope=%s dropped=%s", scope, len(batch))
        if ready:
            self.aliases.save()
            logger.info(
                "[dozer] flushed scopes=%s facts=%s applied=%s failed=%s errors=%s",
                report.scopes,
                report.facts,
                report.applied,
                report.failed,
                report.errors,
            )
        return report

    async def _consolidate(self, scope: Scope, batch: List[Message], report: DozeReport) -> None:
        user_ids = [message.sender.user_id for message in batch]
        facts = await self.extractor.extract(batch, self.identity.user_id, self.aliases.table_for(user_ids))
        report.scopes += 1
        report.facts += len(facts)
        logger.info("[dozer] scope=%s messages=%s facts=%s", scope, len(batch), len(facts))
        for fact in facts:
            try:
                await self._reconcile(scope, fact, report)
            except asyncio.CancelledError:
                raise
            except Exception:
                report.errors += 1
                logger.exception("[dozer] reconcile failed scope=%s fact=%r", scope, fact)

    async def _reconcile(self, scope: Scope, fact: str, report: DozeReport) -> None:
        prior = await self.memory.similar(scope, fact)
        memory_lines = [format_memory_line(item.id, item.confidence, item.content) for item in prior]
        completion = await self.llm.complete(
            [
                {"role": "system", "content": build_reconciliation_system_prompt()},
                {"role": "user", "content": build_reconciliation_user_prompt(memory_lines, fact)},
            ],
            self.registry.schemas(),
        )
        context = ToolContext(scope=scope)
        for call in completion.tool_calls:
            try:
                result = await self.registry.run(call, context)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                report.failed += 1
                logger.warning("[dozer] tool failed scope=%s name=%s error=%s", scope, call.name, exc)
                continue
            report.applied += 1
            logger.info("[dozer] scope=%s %s -> %s", scope, call.name, result)
