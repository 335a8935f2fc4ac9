from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Protocol, Sequence

from ..common import collapse_spaces
from ..objects import Message
from ..prompts.memory import NO_MEMORY_SENTINEL, build_extraction_system_prompt, build_extraction_user_prompt


logger = logging.getLogger("rustaris_bot")

# Leftover characters allowed next to the sentinel before the reply counts as real output.
_SENTINEL_SLACK = 12


class _ChatBackend(Protocol):
    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        ...


def _strip_json_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json|jsonl)?", "", cleaned, flags=re.IGNORECASE).strip()
        cleaned = re.sub(r"```$", "", cleaned).strip()
    return cleaned


def is_sentinel_response(text: str, sentinel: str = NO_MEMORY_SENTINEL) -> bool:
    if sentinel not in text:
        return False
    remainder = re.sub(r"[\s\W_]+", "", _strip_json_fences(text).replace(sentinel, ""))
    return len(remainder) < _SENTINEL_SLACK


def parse_extraction(text: str, sentinel: str = NO_MEMORY_SENTINEL) -> List[str]:
    """Facts from a line-per-object reply; unparseable lines and objects without `info` are skipped.

    The sentinel only means "nothing to remember" when no fact line parsed alongside it.
    """
    if not text.strip():
        return []
    facts: List[str] = []
    seen: set[str] = set()
    for raw_line in _strip_json_fences(text).splitlines():
        line = raw_line.strip().rstrip(",")
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(payload, dict):
            continue
        info = payload.get("info")
        if not isinstance(info, str):
            continue
        fact = collapse_spaces(info)
        key = fact.casefold()
        if not fact or key in seen:
            continue
        seen.add(key)
        facts.append(fact)
    if not facts and is_sentinel_response(text, sentinel):
        logger.debug("Extraction reply is the no-memory sentinel")
    return facts


def render_batch(messages: Sequence[Message], self_id: int | None) -> List[str]:
    lines: List[str] = []
    for message in messages:
        if self_id is not None and message.sender.user_id == self_id:
            continue
        text = collapse_spaces(message.simplified_plain())
        if text:
            lines.append(f"(user_id:{message.sender.user_id}): {text}")
    return lines


class FactExtractor:
    """First consolidation step: turns a chat batch into candidate fact sentences."""

    def __init__(self, llm: _ChatBackend, *, temperature: float = 0.2, max_facts: int = 20) -> None:
        self.llm = llm
        self.temperature = temperature
        self.max_facts = max_facts

    async def extract(
        self,
        messages: Sequence[Message],
        self_id: int | None,
        alias_table: Mapping[int, Sequence[str]],
    ) -> List[str]:
        lines = render_batch(messages, self_id)
        if not lines:
            return []
        raw = await self.llm.chat(
            [
                {"role": "system", "content": build_extraction_system_prompt()},
                {"role": "user", "content": build_extraction_user_prompt(lines, alias_table)},
            ],
            temperature=self.temperature,
        )
        facts = parse_extraction(raw)
        if len(facts) > self.max_facts:
            logger.warning("[dozer] extractor returned %s facts, keeping first %s", len(facts), self.max_facts)
            facts = facts[: self.max_facts]
        return facts
