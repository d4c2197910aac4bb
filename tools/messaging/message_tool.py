"""message — push text/images, reply images, profiles, multicast and broadcast."""

from __future__ import annotations

import logging
from typing import Any

from channels.base import NotifierError
from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult, text_arg

logger = logging.getLogger(__name__)

_ACTIONS = ("push", "push_image", "send_image", "get_profile", "broadcast", "multicast")
MULTICAST_BATCH = 500


class MessageTool(BaseTool):
    """Outbound messaging through the configured notification channel."""

    def __init__(self) -> None:
        self._sessions: Any = None

    @property
    def name(self) -> str:
        return "message"

    @property
    def description(self) -> str:
        return (
            "Send messages, images, or get a user profile. Actions: "
            '"push" to send a text push message to a user, '
            '"push_image" to push an image directly to a user, '
            '"send_image" to include an image in the current reply (preferred for normal replies), '
            '"get_profile" to get user info (name, picture, status), '
            '"broadcast" to send a text to ALL users who have chatted with the bot, '
            '"multicast" to send a text to several specific users at once. '
            "The imageUrl MUST be a direct image URL (https://...jpg/png or CDN URL), "
            "not a web page. Use web_fetch with extractMode='images' to find one."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": list(_ACTIONS),
                    "description": "Action to perform.",
                },
                "userId": {
                    "type": "string",
                    "description": "Target user ID. Defaults to the current user.",
                },
                "message": {
                    "type": "string",
                    "description": "Text message (push, broadcast, multicast).",
                },
                "imageUrl": {
                    "type": "string",
                    "description": "Direct HTTPS image URL (send_image, push_image).",
                },
                "previewUrl": {
                    "type": "string",
                    "description": "Preview image URL (optional, defaults to imageUrl).",
                },
                "userIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "User IDs for multicast (max 500).",
                },
            },
            "required": ["action"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        action = text_arg(params, "action")
        notifier = context.notifier
        if notifier is None:
            return ToolResult.fail("no_client", "Messaging client not available.")

        target = text_arg(params, "userId") or context.caller_id
        if not target:
            return ToolResult.fail("no_user", "No userId specified.")

        try:
            if action == "push":
                message = text_arg(params, "message")
                if not message:
                    return ToolResult.fail("missing_message", "Message text is required for push.")
                await notifier.push_text(target, message)
                logger.info(f'[message] Pushed text to {target}: "{message[:50]}"')
                return ToolResult.ok(action="push", to=target)

            if action in ("push_image", "send_image"):
                image_url = text_arg(params, "imageUrl")
                if not image_url:
                    return ToolResult.fail(
                        "missing_image_url", f"imageUrl is required for {action}."
                    )
                if action == "send_image":
                    logger.info(f"[message] Image ready for reply: {image_url[:80]}")
                    return ToolResult.ok(action="send_image", imageUrl=image_url)
                preview = text_arg(params, "previewUrl") or image_url
                await notifier.push_image(target, image_url, preview)
                logger.info(f"[message] Pushed image to {target}: {image_url[:80]}")
                return ToolResult.ok(action="push_image", to=target, imageUrl=image_url)

            if action == "get_profile":
                profile = await notifier.get_profile(target)
                return ToolResult.ok(
                    action="get_profile",
                    displayName=profile.display_name,
                    pictureUrl=profile.picture_url,
                    statusMessage=profile.status_message,
                    userId=target,
                )

            if action == "broadcast":
                return await self._broadcast(params, context)

            if action == "multicast":
                return await self._multicast(params, context)
        except NotifierError as e:
            logger.error(f"[message] Error ({action}): {e}")
            return ToolResult.fail("action_failed", str(e), action=action)

        return ToolResult.fail(
            "unknown_action",
            f'Unknown action "{action}". Available: {", ".join(_ACTIONS)}.',
        )

    async def _broadcast(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        message = text_arg(params, "message")
        if not message:
            return ToolResult.fail("missing_message", "Message text is required for broadcast.")
        if self._sessions is None:
            return ToolResult.fail("not_available", "Session store not initialized")

        user_ids = [u for u in await self._sessions.all_user_ids() if u]
        if not user_ids:
            return ToolResult.fail("no_users", "No users found to broadcast to.")

        sent = failed = 0
        for i in range(0, len(user_ids), MULTICAST_BATCH):
            batch = user_ids[i : i + MULTICAST_BATCH]
            try:
                await context.notifier.multicast(batch, message)
                sent += len(batch)
            except NotifierError as e:
                logger.error("[message] Broadcast batch failed: %s", e)
                failed += len(batch)

        logger.info(f"[message] Broadcast to {sent}/{len(user_ids)} users")
        return ToolResult.ok(
            action="broadcast", totalUsers=len(user_ids), sent=sent, failed=failed
        )

    async def _multicast(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        message = text_arg(params, "message")
        if not message:
            return ToolResult.fail("missing_message", "Message text is required for multicast.")

        raw_ids = params.get("userIds")
        user_ids = (
            [u.strip() for u in raw_ids if isinstance(u, str) and u.strip()]
            if isinstance(raw_ids, list)
            else []
        )
        if not user_ids:
            return ToolResult.fail("missing_user_ids", "userIds array is required for multicast.")
        if len(user_ids) > MULTICAST_BATCH:
            return ToolResult.fail("too_many_users", "Maximum 500 users per multicast.")

        try:
            await context.notifier.multicast(user_ids, message)
        except NotifierError as e:
            return ToolResult.fail("multicast_failed", str(e))
        logger.info(f"[message] Multicast to {len(user_ids)} users")
        return ToolResult.ok(action="multicast", userCount=len(user_ids))
