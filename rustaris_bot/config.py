from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Set, Tuple

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_id_set(name: str, aliases: tuple[str, ...] = ()) -> Set[int]:
    raw = (_env_lookup(name, aliases) or "").strip()
    if not raw:
        return set()
    result: Set[int] = set()
    for chunk in raw.split(","):
        value = chunk.strip()
        if not value:
            continue
        try:
            result.add(int(value))
        except ValueError:
            continue
    return result


def _env_list(name: str, default: Tuple[str, ...], aliases: tuple[str, ...] = ()) -> Tuple[str, ...]:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    items = tuple(chunk.strip() for chunk in raw.split(",") if chunk.strip())
    return items or default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


DEFAULT_BOT_NAMES = ("rustaris", "rusta", "拉斯塔")
DEFAULT_FALLBACK_REPLY = "……刚才想得太久了，换个说法再问我一次吧。"


@dataclass(slots=True)
class Settings:
    dev_mode: bool
    log_level: str
    heart_beat_seconds: float

    napcat_ws_url: str
    napcat_http_url: str
    napcat_token: str
    napcat_request_timeout_seconds: int

    llm_api_key: str
    llm_base_url: str
    llm_model: str
    llm_timeout_seconds: int
    llm_temperature: float
    llm_max_output_tokens: int

    embedding_base_url: str
    embedding_model: str
    embedding_api_key: str
    embedding_dimensions: int
    embedding_timeout_seconds: int

    memory_backend: str
    database_url: str
    memory_sqlite_path: Path
    memory_ts_config: str
    memory_reset_on_start: bool

    dozer_threshold: int
    dozer_interval_seconds: float

    aliases_path: Path
    bot_names: Tuple[str, ...]
    preferred_response_language: str
    max_tool_rounds: int
    fallback_reply: str
    command_prefix: str
    admin_user_ids: Set[int]

    music_api_url: str
    music_timeout_seconds: int

    @classmethod
    def from_env(cls) -> "Settings":
        dev_mode = _env_bool("RUSTARIS_DEV", False, aliases=("DEV",))
        return cls(
            dev_mode=dev_mode,
            log_level=_env_str("LOG_LEVEL", "DEBUG" if dev_mode else "INFO").upper(),
            heart_beat_seconds=_env_float("HEART_BEAT_SECONDS", 0.5),
            napcat_ws_url=_env_str("NAPCAT_WS_URL", "ws://127.0.0.1:5500"),
            napcat_http_url=_env_str("NAPCAT_HTTP_URL", "http://127.0.0.1:5500/v1"),
            napcat_token=_env_str("NAPCAT_TOKEN", "", aliases=("LOGIN_TOKEN",)),
            napcat_request_timeout_seconds=_env_int("NAPCAT_REQUEST_TIMEOUT_SECONDS", 30),
            llm_api_key=_env_str("LLM_API_KEY", "", aliases=("API_KEY", "DEEPSEEK_API_KEY")),
            llm_base_url=_env_str("LLM_BASE_URL", "https://api.deepseek.com"),
            llm_model=_env_str("LLM_MODEL", "deepseek-chat"),
            llm_timeout_seconds=_env_int("LLM_TIMEOUT_SECONDS", 60),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.7),
            llm_max_output_tokens=_env_int("LLM_MAX_OUTPUT_TOKENS", 1024),
            embedding_base_url=_env_str("EMBEDDING_BASE_URL", "http://127.0.0.1:11434/v1"),
            embedding_model=_env_str("EMBEDDING_MODEL", "bge-m3"),
            embedding_api_key=_env_str("EMBEDDING_API_KEY", ""),
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", 1024),
            embedding_timeout_seconds=_env_int("EMBEDDING_TIMEOUT_SECONDS", 30),
            memory_backend=_env_str("MEMORY_BACKEND", "postgres").lower(),
            database_url=_env_str("DATABASE_URL", "", aliases=("MEMORY_POSTGRES_DSN",)),
            memory_sqlite_path=Path(_env_str("MEMORY_SQLITE_PATH", "data/memory.db")),
            memory_ts_config=_env_str("MEMORY_TS_CONFIG", "simple").lower(),
            memory_reset_on_start=_env_bool("MEMORY_RESET_ON_START", dev_mode),
            dozer_threshold=_env_int("DOZER_THRESHOLD", 1 if dev_mode else 50),
            dozer_interval_seconds=_env_float("DOZER_INTERVAL_SECONDS", 60.0),
            aliases_path=Path(_env_str("ALIASES_PATH", "aliases_map.json")),
            bot_names=_env_list("BOT_NAMES", DEFAULT_BOT_NAMES),
            preferred_response_language=_env_str("PREFERRED_RESPONSE_LANGUAGE", "Chinese"),
            max_tool_rounds=_env_int("MAX_TOOL_ROUNDS", 8),
            fallback_reply=_env_str("FALLBACK_REPLY", DEFAULT_FALLBACK_REPLY),
            command_prefix=_env_str("COMMAND_PREFIX", "#"),
            admin_user_ids=_env_id_set("ADMIN_USER_IDS"),
            music_api_url=_env_str("MUSIC_API_URL", ""),
            music_timeout_seconds=_env_int("MUSIC_TIMEOUT_SECONDS", 10),
        )

    def validate(self) -> None:
        if not self.llm_api_key:
            raise ValueError("LLM_API_KEY is required")
        if self.memory_backend not in {"postgres", "sqlite"}:
            raise ValueError("MEMORY_BACKEND must be 'sqlite' or 'postgres'")
        if self.memory_backend == "postgres" and not self.database_url:
            raise ValueError("DATABASE_URL is required when MEMORY_BACKEND=postgres")
        if self.heart_beat_seconds <= 0:
            raise ValueError("HEART_BEAT_SECONDS must be > 0")
        if self.embedding_dimensions < 1:
            raise ValueError("EMBEDDING_DIMENSIONS must be >= 1")
        if self.dozer_threshold < 1:
            raise ValueError("DOZER_THRESHOLD must be >= 1")
        if self.dozer_interval_seconds <= 0:
            raise ValueError("DOZER_INTERVAL_SECONDS must be > 0")
        if self.max_tool_rounds < 1:
            raise ValueError("MAX_TOOL_ROUNDS must be >= 1")
        if self.llm_timeout_seconds < 1:
            raise ValueError("LLM_TIMEOUT_SECONDS must be >= 1")
        if not self.bot_names:
            raise ValueError("BOT_NAMES must list at least one name")
        if not self.command_prefix:
            raise ValueError("COMMAND_PREFIX cannot be empty")
        if self.music_timeout_seconds < 1:
            raise ValueError("MUSIC_TIMEOUT_SECONDS must be >= 1")
