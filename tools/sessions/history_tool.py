"""sessions_history — recent messages of one user, oldest first."""

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

_CONTENT_PREVIEW = 500


class SessionsHistoryTool(BaseTool):
    def __init__(self) -> None:
        self._sessions: Any = None

    @property
    def name(self) -> str:
        return "sessions_history"

    @property
    def description(self) -> str:
        return (
            "View chat history of a user session. Shows recent messages with "
            "timestamps. Use when the user asks to see their chat history, previous "
            "conversations, or what they said earlier."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "userId": {
                    "type": "string",
                    "description": "User ID to view history for. Defaults to current user.",
                },
                "limit": {
                    "type": "number",
                    "description": "Number of messages to return (default 20, max 50).",
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
        if not self._sessions:
            return ToolResult.fail("not_available", "Session store not initialized")

        target = text_arg(params, "userId") or context.caller_id
        if not target:
            return ToolResult.fail("no_user", "No userId specified.")
        limit = clamp(params.get("limit"), 1, 50, 20)

        try:
            rows = await self._sessions.history(target, limit)
        except Exception as e:
            return ToolResult.fail("query_failed", str(e))

        messages = []
        for row in rows:
            content = row["content"]
            if len(content) > _CONTENT_PREVIEW:
                content = content[:_CONTENT_PREVIEW] + "..."
            messages.append(
                {"role": row["role"], "content": content, "timestamp": row["timestamp"]}
            )
        return ToolResult.ok(userId=target, messageCount=len(messages), messages=messages)
