
from .embedding_client import EmbeddingClient
from .llm_client import ChatCompletionClient, Completion, ToolCall

__all__ = ["ChatCompletionClient", "Completion", "EmbeddingClient", "ToolCall"]
