
from .factory import build_memory_store
from .models import Memory
from .postgres_store import PostgresMemoryStore
from .ranking import DEFAULT_CONFIDENCE, RankingPolicy
from .scope import Scope
from .sqlite_store import SqliteMemoryStore

__all__ = [
    "DEFAULT_CONFIDENCE",
    "Memory",
    "PostgresMemoryStore",
    "RankingPolicy",
    "Scope",
    "SqliteMemoryStore",
    "build_memory_store",
]
