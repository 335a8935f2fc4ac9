from __future__ import annotations

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rustaris_bot.objects import Group, Message, TextSegment, User  # noqa: E402
from rustaris_bot.thinking.aliases import AliasesMapping  # noqa: E402
from rustaris_bot.thinking.history import (  # noqa: E402
    BUFF_TURNS,
    AssistantEntry,
    ChannelHistory,
    ChannelID,
    UserEntry,
)


BOT_ID = 10000


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _message(message_id: int, text: str, user_id: int = 2001, nickname: str | None = "alice") -> Message:
    return Message(
        message_id=message_id,
        private=False,
        sender=User(user_id=user_id, nickname=nickname),
        raw=text,
        segments=[TextSegment(text)],
        group=Group(group_id=300),
    )


def test_channel_id_from_message() -> None:
    private = Message(message_id=1, private=True, sender=User(user_id=5), raw="x")
    orphan = Message(message_id=2, private=False, sender=User(user_id=5), raw="x")

    assert ChannelID.from_message(_message(1, "x")) == ChannelID(False, 300)
    assert ChannelID.from_message(private) == ChannelID(True, 5)
    assert ChannelID.from_message(orphan) is None


def test_capacity_evicts_oldest_entries() -> None:
    history = ChannelHistory(capacity=20)
    for index in range(25):
        history.insert(_message(index, f"line {index}"), BOT_ID)

    assert len(history) == 20
    first = history.entries[0]
    assert isinstance(first, UserEntry)
    assert first.content == "line 5"


def test_own_messages_are_recorded_as_assistant_entries() -> None:
    history = ChannelHistory()
    entry = history.insert(_message(1, "echoed", user_id=BOT_ID), BOT_ID)

    assert isinstance(entry, AssistantEntry)


def test_buff_set_on_reply_and_decays_with_user_turns() -> None:
    history = ChannelHistory()
    history.mark_replied()
    assert history.conversation_buff == BUFF_TURNS
    assert history.is_buffing()

    for index in range(BUFF_TURNS):
        history.insert(_message(index, "more"), BOT_ID)

    assert history.conversation_buff == 0
    assert not history.is_buffing()
    history.insert(_message(99, "more"), BOT_ID)
    assert history.conversation_buff == 0


def test_window_hides_old_entries_from_prompt() -> None:
    clock = _Clock()
    history = ChannelHistory(window_seconds=1300.0, clock=clock)
    history.insert(_message(1, "ancient remark"), BOT_ID)
    clock.now += 1301.0
    history.insert(_message(2, "fresh remark"), BOT_ID)
    history.insert(_message(3, "latest question?"), BOT_ID)

    prompt = history.render_prompt(AliasesMapping(Path("unused.json")))

    assert "ancient remark" not in prompt
    assert "fresh remark" in prompt


def test_render_prompt_restates_latest_and_lists_aliases(tmp_path: Path) -> None:
    aliases = AliasesMapping(tmp_path / "aliases.json")
    aliases.add(2001, "Ali")
    history = ChannelHistory()
    history.insert(_message(1, "hello there"), BOT_ID)
    history.add_tool("search_memory", "No related memories.")
    history.add_assistant("hi")
    history.insert(_message(2, "who am I?", nickname=None), BOT_ID)

    prompt = history.render_prompt(aliases)

    assert prompt.count("who am I?") == 1
    assert prompt.index("hello there") < prompt.index("[Tool:search_memory]") < prompt.index("[BOT] hi")
    assert prompt.index("[BOT] hi") < prompt.index("[user_id:2001|nickname:unnamed user] who am I?")
    assert "2001: Ali" in prompt
