from __future__ import annotations

from typing import Any, Dict

from ..thinking.aliases import AliasesMapping
from .base import Tool, ToolContext, require_int, require_str


class AddAliasTool(Tool):
    name = "add_alias"
    description = "Remember another name a user goes by, so later mentions of it can be matched to their user id."

    def __init__(self, aliases: AliasesMapping) -> None:
        self.aliases = aliases

    def parameters(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "user_id": {"type": "integer", "description": "Numeric id of the user."},
                "alias": {"type": "string", "description": "The name or nickname to associate with the user."},
            },
            "required": ["user_id", "alias"],
        }

    async def call(self, args: Dict[str, Any], context: ToolContext) -> str:
        user_id = require_int(args, "user_id")
        alias = require_str(args, "alias")
        if not self.aliases.add(user_id, alias):
            return f"User {user_id} already has alias '{alias}'."
        return f"Alias '{alias}' added for user {user_id}."
