from __future__ import annotations

from typing import Iterable, Mapping, Tuple

from ..config import DEFAULT_BOT_NAMES
from ..objects import Message


ENGAGE_THRESHOLD = 50
BUFF_CARRY_OVER = 30
MENTION_SCORE = 100
NAME_SCORE = 40
SOLICITATION_SCORE = 20
EXCLAMATION_SCORE = 10

SOLICITATION_TRIGGERS = ("帮", "?", "？", "呢", "嘛", "吗")
EXCLAMATION_TRIGGERS = ("!", "！")


def build_score_table(names: Iterable[str] = DEFAULT_BOT_NAMES) -> Tuple[Tuple[str, int], ...]:
    """Trigger substrings with their weights; names are matched case-insensitively."""
    table: dict[str, int] = {}
    for name in names:
        key = name.strip().casefold()
        if key:
            table[key] = NAME_SCORE
    for trigger in SOLICITATION_TRIGGERS:
        table.setdefault(trigger, SOLICITATION_SCORE)
    for trigger in EXCLAMATION_TRIGGERS:
        table.setdefault(trigger, EXCLAMATION_SCORE)
    return tuple(table.items())


DEFAULT_SCORE_TABLE = build_score_table()


def engagement_score(
    message: Message,
    carry_over: int,
    self_id: int | None,
    table: Iterable[Tuple[str, int]] | Mapping[str, int] = DEFAULT_SCORE_TABLE,
) -> int:
    score = int(carry_over)
    if self_id is not None and message.mentions(self_id):
        score += MENTION_SCORE
    text = message.raw.casefold()
    entries = table.items() if isinstance(table, Mapping) else table
    # Each trigger counts once, however often it occurs.
    for trigger, weight in entries:
        if trigger in text:
            score += weight
    return score


def should_engage(
    message: Message,
    carry_over: int,
    self_id: int | None,
    table: Iterable[Tuple[str, int]] | Mapping[str, int] = DEFAULT_SCORE_TABLE,
) -> bool:
    return engagement_score(message, carry_over, self_id, table) >= ENGAGE_THRESHOLD


def carry_over_for(buffing: bool) -> int:
    return BUFF_CARRY_OVER if buffing else 0
