from __future__ import annotations

from typing import TYPE_CHECKING

from .models import Embedder, MemoryBackend
from .postgres_store import PostgresMemoryStore
from .sqlite_store import SqliteMemoryStore

if TYPE_CHECKING:
    from ..config import Settings


def build_memory_store(settings: "Settings", embedder: Embedder) -> MemoryBackend:
    backend = settings.memory_backend
    if backend == "sqlite":
        return SqliteMemoryStore(
            settings.memory_sqlite_path,
            embedder,
            dimensions=settings.embedding_dimensions,
            reset_on_start=settings.memory_reset_on_start,
        )
    if backend == "postgres":
        if not settings.database_url:
            raise ValueError("DATABASE_URL is required when MEMORY_BACKEND=postgres")
        return PostgresMemoryStore(
            settings.database_url,
            embedder,
            dimensions=settings.embedding_dimensions,
            ts_config=settings.memory_ts_config,
            reset_on_start=settings.memory_reset_on_start,
        )
    raise ValueError("MEMORY_BACKEND must be 'sqlite' or 'postgres'")
