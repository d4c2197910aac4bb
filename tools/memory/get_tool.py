"""memory_get — the current user's recent messages, optionally keyword-filtered."""

from __future__ import annotations

from typing import Any

from tools.base import (
    BaseTool,
    InvocationContext,
    PermissionLevel,
    ToolResult,
    clamp,
    text_arg,
)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
_MAX_TEXT = 500


class MemoryGetTool(BaseTool):
    def __init__(self) -> None:
        self._memory: Any = None

    @property
    def name(self) -> str:
        return "memory_get"

    @property
    def description(self) -> str:
        return (
            "Retrieve recent conversation history for the current user. Use after "
            "memory_search to get full context, or to review what was discussed recently."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "number",
                    "description": f"Number of recent messages (1-{MAX_LIMIT}). Default: {DEFAULT_LIMIT}.",
                },
                "query": {
                    "type": "string",
                    "description": "Optional: only messages containing this keyword.",
                },
            },
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    @property
    def parallel_safe(self) -> bool:
        return True

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        user_id = context.caller_id
        if not user_id:
            return ToolResult.fail("missing_context", "userId is required for memory_get")
        if self._memory is None:
            return ToolResult.fail("not_available", "Memory store not initialized")

        limit = clamp(params.get("limit"), 1, MAX_LIMIT, DEFAULT_LIMIT)
        query = text_arg(params, "query").lower()

        try:
            rows = await self._memory.recent(user_id, limit, keyword=query)
        except Exception as e:
            return ToolResult.fail("load_failed", str(e), userId=user_id)

        if not rows:
            message = (
                f'No messages found containing "{query}".'
                if query
                else "No conversation history found."
            )
            return ToolResult.ok(userId=user_id, messages=[], message=message)

        messages = []
        for i, row in enumerate(rows, 1):
            content = row["content"]
            if len(content) > _MAX_TEXT:
                content = content[:_MAX_TEXT] + "..."
            messages.append(
                {"index": i, "role": row["role"], "content": content, "timestamp": row["timestamp"]}
            )
        data: dict[str, Any] = {"userId": user_id, "messageCount": len(messages), "limit": limit}
        if query:
            data["filter"] = query
        return ToolResult.ok(**data, messages=messages)
