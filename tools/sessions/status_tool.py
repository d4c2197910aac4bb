"""session_status — uptime, active provider and history totals."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Any

from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult

logger = logging.getLogger(__name__)


def format_uptime(seconds: float) -> str:
    """Render elapsed seconds as ``2d 3h 4m`` / ``3h 4m`` / ``4m``."""
    s = int(seconds)
    days, rem = divmod(s, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class SessionStatusTool(BaseTool):
    """Report system status and the caller's own session stats."""

    def __init__(self) -> None:
        self._agent: Any = None
        self._sessions: Any = None

    @property
    def name(self) -> str:
        return "session_status"

    @property
    def description(self) -> str:
        return (
            "Show current system status: uptime, AI provider, message totals and "
            "the current user's session info. Use when the user asks about system "
            "status, bot info, or their session."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    @property
    def parallel_safe(self) -> bool:
        return True

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        if not self._agent or not self._sessions:
            return ToolResult.fail("not_available", "Session store not initialized")

        started_at = self._agent.started_at
        llm = self._agent.config.llm
        provider = llm.active_provider() or "none"
        model = llm.providers[provider].model if provider in llm.providers else "none"

        total_users = total_messages = 0
        current_user = None
        try:
            total_users, total_messages = await self._sessions.totals()
            if context.caller_id:
                count, last_active = await self._sessions.user_stats(context.caller_id)
                current_user = {
                    "userId": context.caller_id,
                    "messageCount": count,
                    "lastActive": last_active,
                }
        except Exception as e:
            logger.error("[session_status] DB error: %s", e)

        return ToolResult.ok(
            uptime=format_uptime(time.time() - started_at),
            startedAt=datetime.fromtimestamp(started_at, UTC).isoformat(),
            aiProvider=provider,
            aiModel=model,
            totalUsers=total_users,
            totalMessages=total_messages,
            currentUser=current_user,
        )
