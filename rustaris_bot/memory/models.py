from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Protocol

from .scope import Scope


@dataclass(slots=True)
class Memory:
    id: int
    scope: Scope
    content: str
    confidence: float
    created_at: datetime
    updated_at: datetime | None = None
    last_accessed: datetime | None = None


class Embedder(Protocol):
    dimensions: int

    async def embed(self, text: str) -> List[float]:
        ...


class MemoryBackend(Protocol):
    backend_name: str

    async def init(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def create(self, scope: Scope, content: str, confidence: float = ...) -> Memory:
        ...

    async def merge(self, memory_id: int, content: str, confidence: float, *, scope: Scope | None = None) -> Memory:
        ...

    async def delete(self, memory_id: int, *, scope: Scope | None = None) -> None:
        ...

    async def get(self, memory_id: int) -> Memory | None:
        ...

    async def similar(self, scope: Scope, query: str) -> List[Memory]:
        ...
