from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, List, Sequence

import asyncpg

from ..errors import EmbeddingError, MemoryNotFoundError
from .models import Embedder, Memory
from .ranking import DEFAULT_CONFIDENCE, DEFAULT_POLICY, RankingPolicy, validate_confidence
from .scope import Scope


logger = logging.getLogger("rustaris_bot")

_TS_CONFIG_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

_MEMORY_COLUMNS = "id, scope, content, confidence, created_at, updated_at, last_accessed"


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(value)) for value in vector) + "]"


def _row_to_memory(row: Any) -> Memory:
    return Memory(
        id=int(row["id"]),
        scope=Scope.parse(str(row["scope"])),
        content=str(row["content"]),
        confidence=float(row["confidence"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_accessed=row["last_accessed"],
    )


class PostgresMemoryStore:
    """Long-term fact store on Postgres with pgvector embeddings and full-text ranking."""

    SCHEMA_VERSION = 1
    backend_name = "postgres"

    def __init__(
        self,
        dsn: str,
        embedder: Embedder,
        *,
        dimensions: int = 1024,
        ts_config: str = "simple",
        reset_on_start: bool = False,
        policy: RankingPolicy = DEFAULT_POLICY,
    ) -> None:
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError("DATABASE_URL cannot be empty")
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        if not _TS_CONFIG_RE.match(ts_config):
            raise ValueError(f"invalid text search config: {ts_config!r}")
        self.embedder = embedder
        self.dimensions = int(dimensions)
        self.ts_config = ts_config
        self.reset_on_start = reset_on_start
        self.policy = policy
        self._pool: asyncpg.Pool | None = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=5,
                command_timeout=30.0,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        self._initialized = False

    async def ping(self) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute("SELECT 1")

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
                    if self.reset_on_start:
                        logger.warning("Dropping memories table (reset on start enabled)")
                        await conn.execute("DROP TABLE IF EXISTS memories CASCADE")
                        await conn.execute("DROP TABLE IF EXISTS memory_meta")
                    version = await self._get_schema_version(conn)
                    if version > self.SCHEMA_VERSION:
                        raise RuntimeError(
                            f"Postgres memory schema version {version} is newer than supported {self.SCHEMA_VERSION}. "
                            "Upgrade the bot before starting."
                        )
                    await self._create_schema(conn)
                    if version != self.SCHEMA_VERSION:
                        await self._set_schema_version(conn, self.SCHEMA_VERSION)
            self._initialized = True
            logger.info("Memory schema ready (backend=postgres dim=%s ts_config=%s)", self.dimensions, self.ts_config)

    async def _get_schema_version(self, conn: asyncpg.Connection) -> int:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS memory_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        raw = await conn.fetchval("SELECT value FROM memory_meta WHERE key = 'schema_version'")
        try:
            return int(raw or 0)
        except ValueError:
            return 0

    async def _set_schema_version(self, conn: asyncpg.Connection, version: int) -> None:
        await conn.execute(
            """
            INSERT INTO memory_meta (key, value)
            VALUES ('schema_version', $1)
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
            """,
            str(version),
        )

    async def _create_schema(self, conn: asyncpg.Connection) -> None:
        # Dimension and text search config are validated in __init__; DDL cannot take bind parameters.
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS memories (
                id BIGSERIAL PRIMARY KEY,
                scope TEXT NOT NULL,
                content TEXT NOT NULL,
                embedding vector({self.dimensions}) NOT NULL,
                tsv tsvector GENERATED ALWAYS AS (to_tsvector('{self.ts_config}', content)) STORED,
                confidence DOUBLE PRECISION NOT NULL DEFAULT {DEFAULT_CONFIDENCE},
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                last_accessed TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CHECK (confidence >= 0 AND confidence <= 1)
            );

            CREATE INDEX IF NOT EXISTS idx_memories_scope ON memories(scope);

            CREATE INDEX IF NOT EXISTS idx_memories_embedding
            ON memories USING hnsw (embedding vector_cosine_ops);

            CREATE INDEX IF NOT EXISTS idx_memories_tsv ON memories USING GIN (tsv);
            """
        )

    async def _embed(self, text: str) -> str:
        vector = await self.embedder.embed(text)
        if len(vector) != self.dimensions:
            raise EmbeddingError(f"embedding has {len(vector)} dimensions, expected {self.dimensions}")
        return _vector_literal(vector)

    async def create(self, scope: Scope, content: str, confidence: float = DEFAULT_CONFIDENCE) -> Memory:
        text = content.strip()
        if not text:
            raise ValueError("memory content cannot be empty")
        confidence = validate_confidence(confidence)
        embedding = await self._embed(text)
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO memories (scope, content, embedding, confidence)
                VALUES ($1, $2, $3::vector, $4)
                RETURNING {_MEMORY_COLUMNS}
                """,
                scope.serialize(),
                text,
                embedding,
                confidence,
            )
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
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE memories
                SET content = $2,
                    embedding = $3::vector,
                    confidence = $4,
                    updated_at = NOW(),
                    last_accessed = NOW()
                WHERE id = $1
                  AND ($5::text IS NULL OR scope = $5::text)
                RETURNING {_MEMORY_COLUMNS}
                """,
                int(memory_id),
                text,
                embedding,
                confidence,
                scope.serialize() if scope is not None else None,
            )
        if row is None:
            raise MemoryNotFoundError(memory_id)
        return _row_to_memory(row)

    async def delete(self, memory_id: int, *, scope: Scope | None = None) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            deleted = await conn.fetchval(
                """
                DELETE FROM memories
                WHERE id = $1
                  AND ($2::text IS NULL OR scope = $2::text)
                RETURNING id
                """,
                int(memory_id),
                scope.serialize() if scope is not None else None,
            )
        if deleted is None:
            raise MemoryNotFoundError(memory_id)

    async def get(self, memory_id: int) -> Memory | None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE id = $1",
                int(memory_id),
            )
        return _row_to_memory(row) if row is not None else None

    async def count(self, scope: Scope) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval("SELECT COUNT(*) FROM memories WHERE scope = $1", scope.serialize())
        return int(value or 0)

    async def similar(self, scope: Scope, query: str) -> List[Memory]:
        embedding = await self._embed(query)
        policy = self.policy
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_MEMORY_COLUMNS}, distance, lexical
                FROM (
                    SELECT m.id, m.scope, m.content, m.confidence,
                           m.created_at, m.updated_at, m.last_accessed,
                           (m.embedding <=> $2::vector) AS distance,
                           ts_rank(m.tsv, plainto_tsquery($3::regconfig, $4)) AS lexical
                    FROM memories AS m
                    WHERE m.scope = $1
                ) AS ranked
                WHERE ranked.distance < $5 OR ranked.lexical > 0
                ORDER BY ($6 * (1 - ranked.distance) + $7 * ranked.lexical) DESC, ranked.id DESC
                LIMIT $8
                """,
                scope.serialize(),
                embedding,
                self.ts_config,
                query,
                policy.distance_cutoff,
                policy.semantic_weight,
                policy.lexical_weight,
                policy.limit,
            )
            if rows:
                await conn.execute(
                    "UPDATE memories SET last_accessed = NOW() WHERE id = ANY($1::bigint[])",
                    [int(row["id"]) for row in rows],
                )
        return [_row_to_memory(row) for row in rows]
