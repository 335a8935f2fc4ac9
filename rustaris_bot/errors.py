from __future__ import annotations


class AgentError(Exception):
    """Base class for errors raised by the agent runtime."""


class ScopeError(AgentError, ValueError):
    pass


class ToolError(AgentError):
    pass


class MemoryNotFoundError(AgentError, LookupError):
    def __init__(self, memory_id: int) -> None:
        super().__init__(f"memory {memory_id} not found")
        self.memory_id = memory_id


class PosterError(AgentError):
    pass


class EmbeddingError(AgentError):
    pass
