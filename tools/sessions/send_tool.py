"""sessions_send — owner-only push into another user's conversation."""

from __future__ import annotations

import logging
from typing import Any

from channels.base import NotifierError
from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult, text_arg

logger = logging.getLogger(__name__)


class SessionsSendTool(BaseTool):
    """Relay a message to another user and record it in their history."""

    def __init__(self) -> None:
        self._sessions: Any = None
        self._config: Any = None

    @property
    def name(self) -> str:
        return "sessions_send"

    @property
    def description(self) -> str:
        return (
            "Send a message to another user's session via push message. Owner-only. "
            "Use to relay information between users or send an announcement to one "
            "user. The message appears as a regular message from the bot."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "targetUserId": {
                    "type": "string",
                    "description": "The target user's ID (required).",
                },
                "message": {
                    "type": "string",
                    "description": "Text message to send (required).",
                },
                "asBot": {
                    "type": "boolean",
                    "description": "If true, prefix the message with the bot name. Default: false.",
                },
            },
            "required": ["targetUserId", "message"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.OWNER

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        target = text_arg(params, "targetUserId")
        message = text_arg(params, "message")
        if not target:
            return ToolResult.fail("missing_target", "targetUserId is required.")
        if not message:
            return ToolResult.fail("missing_message", "message is required.")
        if context.notifier is None:
            return ToolResult.fail("not_available", "No notification channel configured")

        bot_name = self._config.agent.name if self._config is not None else "MyClaw"
        text = f"🤖 {bot_name}: {message}" if params.get("asBot") is True else message

        try:
            await context.notifier.push_text(target, text)
        except NotifierError as e:
            return ToolResult.fail("send_failed", str(e))

        if self._sessions is not None:
            try:
                await self._sessions.save_message(target, "assistant", text)
            except Exception as e:
                logger.warning("[sessions_send] Could not record history for %s: %s", target, e)

        logger.info(f'[sessions_send] {context.caller_id} -> {target}: "{message[:60]}"')
        return ToolResult.ok(
            action="sessions_send",
            **{"from": context.caller_id or "system"},
            to=target,
            messageLength=len(text),
        )
