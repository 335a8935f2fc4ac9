from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, List

import aiosqlite

from ..errors import EmbeddingError, MemoryNotFoundError
from .models import Embedder, Memory
from .ranking import (
    DEFAULT_CONFIDENCE,
    DEFAULT_POLICY,
    RankingPolicy,
    cosine_distance,
    lexical_rank,
    rank,
    validate_confidence,
)
from .scope import Scope


logger = logging.getLogger("rustaris_bot")


def _sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("MEMORY_SQLITE_BUSY_TIMEOUT_MS", "5000").strip()
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(0, min(timeout, 60000))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value))


def _row_to_memory(row: Any) -> Memory:
    created_at = _parse_ts(row["created_at"]) or datetime.now(timezone.utc)
    return Memory(
        id=int(row["id"]),
        scope=Scope.parse(str(row["scope"])),
        content=str(row["content"]),
        confidence=float(row["confidence"]),
        created_at=created_at,
        updated_at=_parse_ts(row["updated_at"]),
        last_accessed=_parse_ts(row["last_accessed"]),
    )


class SqliteMemoryStore:
    """Single-file memory store; ranking runs in Python with the same gate and weights as Postgres."""

    SCHEMA_VERSION = 1
    backend_name = "sqlite"

    def __init__(
        self,
        db_path: Path,
        embedder: Embedder,
        *,
        dimensions: int = 1024,
        reset_on_start: bool = False,
        policy: RankingPolicy = DEFAULT_POLICY,
    ) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.embedder = embedder
        self.dimensions = int(dimensions)
        self.reset_on_start = reset_on_start
        self.policy = policy

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            timeout_ms = _sqlite_busy_timeout_ms()
            if timeout_ms > 0:
                await db.execute(f"PRAGMA busy_timeout={timeout_ms}")
            yield db

    async def close(self) -> None:
        return None

    async def ping(self) -> None:
        async with self._connect() as db:
            await db.execute("SELECT 1")

    async def init(self) -> None:
        async with self._connect() as db:
            # The pragma returns a row; an unread cursor keeps the table locked for DROP below.
            async with db.execute("PRAGMA journal_mode=WAL") as cursor:
                await cursor.fetchone()
            if self.reset_on_start:
                logger.warning("Dropping memories table (reset on start enabled)")
                await db.execute("DROP TABLE IF EXISTS memories")
                await db.execute("PRAGMA user_version = 0")
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = int(row[0]) if row else 0
            if version > self.SCHEMA_VERSION:
                raise RuntimeError(
                    "SQLite schema version mismatch detected (database is newer than this bot build). "
                    f"Found user_version={version}, supported={self.SCHEMA_VERSION}."
                )
            await db.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS memories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    scope TEXT NOT NULL,
                    content TEXT NOT NULL,
                    embedding TEXT NOT NULL,
                    confidence REAL NOT NULL DEFAULT {DEFAULT_CONFIDENCE},
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    last_accessed TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_memories_scope ON memories(scope);
                """
            )
            if version != self.SCHEMA_VERSION:
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()
        logger.info("Memory schema ready (backend=sqlite path=%s)", self.db_path)

    async def _embed(self, text: str) -> List[float]:
        vector = [float(value) for value in await self.embedder.embed(text)]
        if len(vector) != self.dimensions:
            raise EmbeddingError(f"embedding has {len(vector)} dimensions, expected {self.dimensions}")
        return vector

    async def create(self, scope: Scope, content: str, confidence: float = DEFAULT_CONFIDENCE) -> Memory:
        text = content.strip()
        if not text:
            raise ValueError("memory content cannot be empty")
        confidence = validate_confidence(confidence)
        embedding = await self._embed(text)
        now = _now()
        async with self._connect() as db:
            cursor = await db.execute(
                """
                INSERT INTO memories (scope, content, embedding, confidence, created_at, updated_at, last_accessed)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (scope.serialize(), text, json.dumps(embedding), confidence, now, now, now),
            )
            memory_id = int(cursor.lastrowid or 0)
            await db.commit()
            async with db.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)) as cur:
                row = await cur.fetchone()
        return _row_to_memory(row)

    async def merge(
        self,
        memory_id: int,
        content: str,
        confidence: float,
        *,
        scope: Scope | None = None,
    ) -> Memory:
        text = content.strip()
        if not text:
            raise ValueError("memory content cannot be empty")
        confidence = validate_confidence(confidence)
        embedding = await self._embed(text)
        now = _now()
        async with self._connect() as db:
            cursor = await db.execute(
                """
                UPDATE memories
                SET content = ?, embedding = ?, confidence = ?, updated_at = ?, last_accessed = ?
                WHERE id = ?
                  AND (? IS NULL OR scope = ?)
                """,
                (
                    text,
                    json.dumps(embedding),
                    confidence,
                    now,
                    now,
                    int(memory_id),
                    scope.serialize() if scope is not None else None,
                    scope.serialize() if scope is not None else None,
                ),
            )
            if cursor.rowcount == 0:
                raise MemoryNotFoundError(memory_id)
            await db.commit()
            async with db.execute("SELECT * FROM memories WHERE id = ?", (int(memory_id),)) as cur:
                row = await cur.fetchone()
        return _row_to_memory(row)

    async def delete(self, memory_id: int, *, scope: Scope | None = None) -> None:
        serialized = scope.serialize() if scope is not None else None
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM memories WHERE id = ? AND (? IS NULL OR scope = ?)",
                (int(memory_id), serialized, serialized),
            )
            if cursor.rowcount == 0:
                raise MemoryNotFoundError(memory_id)
            await db.commit()

    async def get(self, memory_id: int) -> Memory | None:
        async with self._connect() as db:
            async with db.execute("SELECT * FROM memories WHERE id = ?", (int(memory_id),)) as cursor:
                row = await cursor.fetchone()
        return _row_to_memory(row) if row is not None else None

    async def count(self, scope: Scope) -> int:
        async with self._connect() as db:
            async with db.execute("SELECT COUNT(*) FROM memories WHERE scope = ?", (scope.serialize(),)) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def similar(self, scope: Scope, query: str) -> List[Memory]:
        query_vector = await self._embed(query)
        async with self._connect() as db:
            async with db.execute(
                "SELECT * FROM memories WHERE scope = ? ORDER BY id DESC",
                (scope.serialize(),),
            ) as cursor:
                rows = await cursor.fetchall()

            candidates = []
            for row in rows:
                distance = cosine_distance(json.loads(row["embedding"]), query_vector)
                candidates.append((row, distance, lexical_rank(str(row["content"]), query)))
            selected = rank(candidates, self.policy)

            if selected:
                ids = [int(row["id"]) for row in selected]
                placeholders = ",".join("?" for _ in ids)
                await db.execute(
                    f"UPDATE memories SET last_accessed = ? WHERE id IN ({placeholders})",
                    (_now(), *ids),
                )
                await db.commit()
        return [_row_to_memory(row) for row in selected]
