from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Set

from ..common import read_text_with_fallback


logger = logging.getLogger("rustaris_bot")


class AliasesMapping:
    """user_id -> alias set, persisted as one JSON object rewritten wholesale on save()."""

    def __init__(self, path: Path, inner: Dict[int, Set[str]] | None = None) -> None:
        self.path = Path(path)
        self._inner: Dict[int, Set[str]] = inner if inner is not None else {}
        self._dirty = False

    @classmethod
    def load(cls, path: Path) -> "AliasesMapping":
        path = Path(path)
        if not path.exists():
            mapping = cls(path)
            mapping._dirty = True
            mapping.save()
            logger.info("Created empty aliases map at %s", path)
            return mapping

        payload = json.loads(read_text_with_fallback(path) or "{}")
        if not isinstance(payload, dict):
            raise ValueError(f"aliases map root must be an object: {path}")
        inner: Dict[int, Set[str]] = {}
        for raw_id, raw_aliases in payload.items():
            try:
                user_id = int(raw_id)
            except ValueError:
                logger.warning("Skipping alias entry with non-numeric user id: %r", raw_id)
                continue
            if isinstance(raw_aliases, str):
                raw_aliases = [raw_aliases]
            if not isinstance(raw_aliases, list):
                continue
            aliases = {str(alias).strip() for alias in raw_aliases if str(alias).strip()}
            if aliases:
                inner[user_id] = aliases
        return cls(path, inner)

    def add(self, user_id: int, alias: str) -> bool:
        cleaned = alias.strip()
        if not cleaned:
            raise ValueError("alias cannot be empty")
        aliases = self._inner.setdefault(int(user_id), set())
        if cleaned in aliases:
            return False
        aliases.add(cleaned)
        self._dirty = True
        return True

    def aliases_for(self, user_id: int) -> List[str]:
        return sorted(self._inner.get(int(user_id), ()))

    def table_for(self, user_ids: Iterable[int]) -> Dict[int, List[str]]:
        table: Dict[int, List[str]] = {}
        for user_id in user_ids:
            aliases = self.aliases_for(user_id)
            if aliases and user_id not in table:
                table[user_id] = aliases
        return table

    def __len__(self) -> int:
        return len(self._inner)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def save(self, *, force: bool = False) -> None:
        if not self._dirty and not force:
            return
        payload = {str(user_id): sorted(aliases) for user_id, aliases in sorted(self._inner.items())}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
        self._dirty = False
