from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .json_loader import load_prompt_json

NO_MEMORY_SENTINEL = "NO_MEMORY"

_DEFAULTS: dict[str, Any] = {
    "extraction_system_prompt": (
        "You maintain the long-term memory of a group chat bot. "
        "Read the chat log and extract facts worth remembering: identities, lasting preferences, "
        "relationships, settings, plans and other information likely to matter later. "
        "Output one JSON object per line, each exactly {{\"info\": \"<fact sentence>\"}}. "
        "Write every fact in the third person and refer to people by numeric user id, "
        "for example \"user 1001 works in Shanghai\". "
        "Never output the same fact twice and never output anything except these lines. "
        "Ignore small talk, jokes and temporary context. "
        "If nothing is worth keeping, output only {sentinel}."
    ),
    "extraction_user_prompt_template": (
        "Known aliases (user id: aliases):\n{alias_lines}\n\n"
        "Chat log (oldest first):\n{chat_lines}"
    ),
    "reconciliation_system_prompt": (
        "You reconcile a newly extracted fact with the existing long-term memories of one conversation. "
        "Each existing memory has an id, a confidence between 0 and 1, and content. Apply these rules:\n"
        "- The new fact contradicts a memory: call update_memory on it with the corrected content "
        "and a lowered confidence.\n"
        "- The new fact confirms a memory: call update_memory on it, merging any new detail, "
        "with a raised confidence.\n"
        "- Two existing memories say the same thing: call delete_memory on the less informative one.\n"
        "- No existing memory is related: call add_memory with the new fact.\n"
        "Keep contents as short third-person sentences using numeric user ids. "
        "Only act through tool calls."
    ),
    "reconciliation_user_prompt_template": (
        "Existing memories (most relevant first):\n{memory_lines}\n\nNew fact:\n{fact}"
    ),
    "no_memories_line": "(none)",
    "no_aliases_line": "(none)",
    "memory_line_template": "[id:{id}|confidence:{confidence:.2f}] {content}",
}


def _cfg() -> dict[str, Any]:
    return load_prompt_json("memory.json", _DEFAULTS)


def _text(key: str) -> str:
    return str(_cfg().get(key, _DEFAULTS[key]))


def build_extraction_system_prompt() -> str:
    return _text("extraction_system_prompt").format(sentinel=NO_MEMORY_SENTINEL)


def build_extraction_user_prompt(chat_lines: Iterable[str], alias_table: Mapping[int, Sequence[str]]) -> str:
    alias_lines = [f"{user_id}: {', '.join(aliases)}" for user_id, aliases in alias_table.items()]
    return _text("extraction_user_prompt_template").format(
        alias_lines="\n".join(alias_lines) or _text("no_aliases_line"),
        chat_lines="\n".join(chat_lines),
    )


def format_memory_line(memory_id: int, confidence: float, content: str) -> str:
    return _text("memory_line_template").format(id=memory_id, confidence=confidence, content=content)


def build_reconciliation_system_prompt() -> str:
    return _text("reconciliation_system_prompt")


def build_reconciliation_user_prompt(memory_lines: Iterable[str], fact: str) -> str:
    rendered = "\n".join(memory_lines)
    return _text("reconciliation_user_prompt_template").format(
        memory_lines=rendered or _text("no_memories_line"),
        fact=fact,
    )
