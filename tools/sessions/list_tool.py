"""sessions_list — every user with history, most recently active first."""

from __future__ import annotations

from typing import Any

from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult, clamp


class SessionsListTool(BaseTool):
    def __init__(self) -> None:
        self._sessions: Any = None

    @property
    def name(self) -> str:
        return "sessions_list"

    @property
    def description(self) -> str:
        return (
            "List all user sessions with message counts and last active time. "
            "Use when the user asks how many people use the bot, who has chatted, "
            "or wants to see all sessions."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "number",
                    "description": "Maximum number of sessions to return (default 10, max 50).",
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

        limit = clamp(params.get("limit"), 1, 50, 10)
        try:
            sessions = await self._sessions.list_sessions(limit)
        except Exception as e:
            return ToolResult.fail("query_failed", str(e))

        return ToolResult.ok(
            totalSessions=len(sessions),
            sessions=[s.to_dict() for s in sessions],
        )
