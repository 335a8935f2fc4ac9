from __future__ import annotations

from typing import Any, Dict

from ..memory.models import MemoryBackend
from ..memory.ranking import DEFAULT_CONFIDENCE
from ..prompts.memory import format_memory_line
from .base import Tool, ToolContext, optional_float, require_float, require_int, require_str


class _MemoryTool(Tool):
    def __init__(self, memory: MemoryBackend) -> None:
        self.memory = memory


class SearchMemoryTool(_MemoryTool):
    name = "search_memory"
    description = "Search long-term memories of the current conversation. Use user ids when looking up people."

    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to look for, in natural language or keywords."},
            },
            "required": ["query"],
        }

    async def call(self, args: Dict[str, Any], context: ToolContext) -> str:
        query = require_str(args, "query")
        memories = await self.memory.similar(context.scope, query)
        if not memories:
            return "No related memories."
        return "\n".join(format_memory_line(item.id, item.confidence, item.content) for item in memories)


class SaveMemoryTool(_MemoryTool):
    name = "save_memory"
    description = "Store a durable fact about the conversation or its users as a new long-term memory."

    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "content": {
                    "type": "string",
                    "description": "The fact as a short third-person sentence using numeric user ids.",
                },
            },
            "required": ["content"],
        }

    async def call(self, args: Dict[str, Any], context: ToolContext) -> str:
        memory = await self.memory.create(context.scope, require_str(args, "content"))
        return f"Saved memory {memory.id}."


class AddMemoryTool(_MemoryTool):
    name = "add_memory"
    description = "Add a new memory when no existing memory covers the fact."

    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "The fact to remember."},
                "confidence": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 1,
                    "description": f"Confidence in the fact, defaults to {DEFAULT_CONFIDENCE}.",
                },
            },
            "required": ["content"],
        }

    async def call(self, args: Dict[str, Any], context: ToolContext) -> str:
        content = require_str(args, "content")
        confidence = optional_float(args, "confidence", DEFAULT_CONFIDENCE)
        memory = await self.memory.create(context.scope, content, confidence)
        return f"Added memory {memory.id} with confidence {memory.confidence:.2f}."


class UpdateMemoryTool(_MemoryTool):
    name = "update_memory"
    description = "Overwrite an existing memory's content and confidence, to correct or reinforce it."

    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "id": {"type": "integer", "description": "Id of the memory to update."},
                "content": {"type": "string", "description": "The full new content."},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1, "description": "The new confidence."},
            },
            "required": ["id", "content", "confidence"],
        }

    async def call(self, args: Dict[str, Any], context: ToolContext) -> str:
        memory_id = require_int(args, "id")
        content = require_str(args, "content")
        confidence = require_float(args, "confidence")
        memory = await self.memory.merge(memory_id, content, confidence, scope=context.scope)
        return f"Updated memory {memory.id}, confidence now {memory.confidence:.2f}."


class DeleteMemoryTool(_MemoryTool):
    name = "delete_memory"
    description = "Delete a memory that is redundant or wrong."

    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "id": {"type": "integer", "description": "Id of the memory to delete."},
            },
            "required": ["id"],
        }

    async def call(self, args: Dict[str, Any], context: ToolContext) -> str:
        memory_id = require_int(args, "id")
        await self.memory.delete(memory_id, scope=context.scope)
        return f"Deleted memory {memory_id}."
