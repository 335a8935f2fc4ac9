from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rustaris_bot.thinking.aliases import AliasesMapping  # noqa: E402


def test_load_creates_empty_file_when_missing(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "aliases.json"

    mapping = AliasesMapping.load(path)

    assert len(mapping) == 0
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_add_save_and_reload_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "aliases.json"
    mapping = AliasesMapping.load(path)

    assert mapping.add(1001, "老王")
    assert mapping.add(1001, "wang")
    assert not mapping.add(1001, "wang")
    assert mapping.dirty
    mapping.save()
    assert not mapping.dirty

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw == {"1001": ["wang", "老王"]}
    assert "老王" in path.read_text(encoding="utf-8")

    reloaded = AliasesMapping.load(path)
    assert reloaded.aliases_for(1001) == ["wang", "老王"]


def test_load_tolerates_string_values_and_bad_ids(tmp_path: Path) -> None:
    path = tmp_path / "aliases.json"
    path.write_text(json.dumps({"7": "neo", "oops": ["x"], "8": []}), encoding="utf-8")

    mapping = AliasesMapping.load(path)

    assert mapping.aliases_for(7) == ["neo"]
    assert mapping.aliases_for(8) == []
    assert len(mapping) == 1


def test_table_for_only_includes_users_with_aliases(tmp_path: Path) -> None:
    mapping = AliasesMapping(tmp_path / "aliases.json")
    mapping.add(1, "one")

    assert mapping.table_for([1, 2, 1]) == {1: ["one"]}


def test_empty_alias_is_rejected(tmp_path: Path) -> None:
    mapping = AliasesMapping(tmp_path / "aliases.json")

    with pytest.raises(ValueError):
        mapping.add(1, "   ")
