from __future__ import annotations

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rustaris_bot.objects import Group, MentionSegment, Message, TextSegment, User  # noqa: E402
from rustaris_bot.thinking.engagement import (  # noqa: E402
    BUFF_CARRY_OVER,
    build_score_table,
    carry_over_for,
    engagement_score,
    should_engage,
)


BOT_ID = 10000


def _group_message(raw: str, mention: int | None = None) -> Message:
    segments = [TextSegment(raw)]
    if mention is not None:
        segments.insert(0, MentionSegment(mention))
    return Message(
        message_id=1,
        private=False,
        sender=User(user_id=2001, nickname="tester"),
        raw=raw,
        segments=segments,
        group=Group(group_id=300),
    )


def test_mention_with_question_mark_scores_120() -> None:
    message = _group_message("what time is it?", mention=BOT_ID)

    assert engagement_score(message, 0, BOT_ID) == 120
    assert should_engage(message, 0, BOT_ID)


def test_plain_chatter_scores_zero_and_does_not_engage() -> None:
    message = _group_message("good morning everyone")

    assert engagement_score(message, 0, BOT_ID) == 0
    assert not should_engage(message, 0, BOT_ID)


def test_bot_name_is_case_insensitive() -> None:
    message = _group_message("RUSTARIS are you there?")

    # "rustaris" and "rusta" are both substrings, plus "?".
    assert engagement_score(message, 0, BOT_ID) == 40 + 40 + 20
    assert should_engage(message, 0, BOT_ID)


def test_each_trigger_counts_once() -> None:
    message = _group_message("!!!!!!")

    assert engagement_score(message, 0, BOT_ID) == 10


def test_carry_over_lifts_a_question_over_the_threshold() -> None:
    message = _group_message("what about tomorrow?")

    assert not should_engage(message, carry_over_for(False), BOT_ID)
    assert carry_over_for(True) == BUFF_CARRY_OVER
    assert should_engage(message, carry_over_for(True), BOT_ID)


def test_mention_of_someone_else_does_not_count() -> None:
    message = _group_message("hello", mention=4242)

    assert engagement_score(message, 0, BOT_ID) == 0


def test_custom_names_replace_default_name_triggers() -> None:
    table = build_score_table(("Nova",))
    message = _group_message("nova, hi")

    assert engagement_score(message, 0, BOT_ID, table) == 40
    assert engagement_score(_group_message("rustaris hi"), 0, BOT_ID, table) == 0
