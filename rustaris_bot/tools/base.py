from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from ..errors import AgentError, ToolError
from ..memory.scope import Scope
from ..objects import Message
from ..services.llm_client import ToolCall


logger = logging.getLogger("rustaris_bot")


@dataclass(slots=True)
class ToolContext:
    scope: Scope
    message: Message | None = None

    @classmethod
    def for_message(cls, message: Message) -> "ToolContext":
        return cls(scope=Scope.from_message(message), message=message)

    def require_message(self) -> Message:
        if self.message is None:
            raise ToolError("this tool needs a chat message to act on")
        return self.message


class Tool(ABC):
    name: str = ""
    description: str = ""

    @abstractmethod
    def parameters(self) -> Dict[str, Any]:
        """JSON schema of the arguments object."""

    @abstractmethod
    async def call(self, args: Dict[str, Any], context: ToolContext) -> str:
        ...

    def schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters(),
            },
        }


def require_str(args: Dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolError(f"argument '{key}' must be a non-empty string")
    return value.strip()


def require_int(args: Dict[str, Any], key: str) -> int:
    value = args.get(key)
    if isinstance(value, bool):
        raise ToolError(f"argument '{key}' must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ToolError(f"argument '{key}' must be an integer")


def require_float(args: Dict[str, Any], key: str) -> float:
    if args.get(key) is None:
        raise ToolError(f"argument '{key}' is required")
    return optional_float(args, key, 0.0)


def optional_float(args: Dict[str, Any], key: str, default: float) -> float:
    value = args.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ToolError(f"argument '{key}' must be a number")
    try:
        return float(value)
    except ValueError as exc:
        raise ToolError(f"argument '{key}' must be a number") from exc


class ToolRegistry:
    """Name-keyed tool set; every failure comes back as a tool-role message instead of an exception."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("tool name cannot be empty")
        if tool.name in self._tools:
            raise ValueError(f"tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def schemas(self) -> List[Dict[str, Any]]:
        return [tool.schema() for tool in self._tools.values()]

    @staticmethod
    def _parse_arguments(raw: str) -> Dict[str, Any]:
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ToolError(f"arguments are not valid JSON: {exc.msg}") from exc
        if not isinstance(parsed, dict):
            raise ToolError("arguments must be a JSON object")
        return parsed

    async def run(self, call: ToolCall, context: ToolContext) -> str:
        """Execute one call and return its result text; raises on any failure."""
        tool = self.get(call.name)
        if tool is None:
            raise ToolError(f"tool not found: {call.name}")
        args = self._parse_arguments(call.arguments)
        logger.debug("[tool] call name=%s scope=%s args=%s", call.name, context.scope, args)
        return await tool.call(args, context)

    async def execute(self, call: ToolCall, context: ToolContext) -> Dict[str, Any]:
        try:
            content = await self.run(call, context)
            ok = True
        except (AgentError, ValueError, LookupError) as exc:
            content = f"Tool '{call.name}' failed: {exc}"
            ok = False
        except Exception as exc:
            logger.exception("[tool] unexpected failure name=%s", call.name)
            content = f"Tool '{call.name}' failed: {exc}"
            ok = False
        logger.info("[tool] name=%s scope=%s ok=%s", call.name, context.scope, ok)
        return {"role": "tool", "tool_call_id": call.id, "content": content}
