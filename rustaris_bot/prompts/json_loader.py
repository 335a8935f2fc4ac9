from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

from ..common import read_text_with_fallback

logger = logging.getLogger("rustaris_bot.prompts")

# filename -> (mtime_ns of the override file, merged prompt table)
_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def _data_dir() -> Path:
    return Path(__file__).with_name("data")


def _deep_merge(base: Any, override: Any) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        merged = copy.deepcopy(base)
        for key, value in override.items():
            merged[key] = _deep_merge(merged[key], value) if key in merged else copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def _remember(cache_key: str, mtime_ns: int | None, table: dict[str, Any]) -> dict[str, Any]:
    _CACHE[cache_key] = (mtime_ns, copy.deepcopy(table))
    return table


def load_prompt_json(filename: str, defaults: dict[str, Any]) -> dict[str, Any]:
    """Prompt table for `filename`: defaults overlaid with prompts/data/<filename> when present."""
    path = _data_dir() / filename
    cache_key = str(path.resolve())

    mtime_ns: int | None = None
    if path.exists():
        try:
            mtime_ns = path.stat().st_mtime_ns
        except OSError:
            mtime_ns = None

    cached = _CACHE.get(cache_key)
    if cached is not None and cached[0] == mtime_ns:
        return copy.deepcopy(cached[1])

    if not path.exists():
        return _remember(cache_key, mtime_ns, copy.deepcopy(defaults))

    try:
        payload = json.loads(read_text_with_fallback(path))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Failed to parse prompt JSON %s (%s). Using defaults.", path, exc)
        return _remember(cache_key, mtime_ns, copy.deepcopy(defaults))

    if not isinstance(payload, dict):
        logger.warning("Prompt JSON root must be an object: %s (using defaults)", path)
        return _remember(cache_key, mtime_ns, copy.deepcopy(defaults))

    return _remember(cache_key, mtime_ns, _deep_merge(defaults, payload))
