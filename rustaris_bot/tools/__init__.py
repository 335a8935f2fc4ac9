
from .alias_tool import AddAliasTool
from .base import Tool, ToolContext, ToolRegistry
from .memory_tools import AddMemoryTool, DeleteMemoryTool, SaveMemoryTool, SearchMemoryTool, UpdateMemoryTool
from .music_tool import NeteaseMusicTool

__all__ = [
    "AddAliasTool",
    "AddMemoryTool",
    "DeleteMemoryTool",
    "NeteaseMusicTool",
    "SaveMemoryTool",
    "SearchMemoryTool",
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "UpdateMemoryTool",
]
