"""sessions_spawn — start a background AI task that reports back when done."""

from __future__ import annotations

import logging
from typing import Any

from core.background import TaskCapacityError
from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult, text_arg

logger = logging.getLogger(__name__)


class SessionsSpawnTool(BaseTool):
    """Spawn a detached single-shot model call for the caller."""

    def __init__(self) -> None:
        self._tasks: Any = None
        self._config: Any = None

    @property
    def name(self) -> str:
        return "sessions_spawn"

    @property
    def description(self) -> str:
        return (
            "Spawn a background AI task that runs independently from the current "
            "conversation. The result is sent back to the user automatically when "
            "complete. Use for long-running work such as summarizing a long article, "
            "researching a topic or translating large text, while keeping the "
            "conversation responsive."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "task": {
                    "type": "string",
                    "description": "The task to execute (be specific and detailed).",
                },
                "label": {
                    "type": "string",
                    "description": "Short label for the task. Default: auto-generated.",
                },
                "model": {
                    "type": "string",
                    "description": "Model override. Default: the active provider's model.",
                },
                "timeoutSeconds": {
                    "type": "number",
                    "description": "Execution timeout in seconds (default 120, max 600).",
                },
            },
            "required": ["task"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        if not self._tasks:
            return ToolResult.fail("not_available", "Background tasks not initialized")

        task = text_arg(params, "task")
        if not task:
            return ToolResult.fail("missing_task", "task is required.")
        if not context.caller_id:
            return ToolResult.fail("no_user", "No userId available.")

        timeout = params.get("timeoutSeconds")
        try:
            spawned = await self._tasks.spawn(
                task,
                context.caller_id,
                label=text_arg(params, "label") or None,
                model=text_arg(params, "model") or None,
                timeout_seconds=timeout if isinstance(timeout, (int, float)) else None,
            )
        except TaskCapacityError as e:
            return ToolResult.fail("limit_exceeded", str(e))

        provider = ""
        default_model = ""
        if self._config is not None:
            llm = self._config.llm
            provider = llm.active_provider()
            if provider in llm.providers:
                default_model = llm.providers[provider].model

        logger.info(
            f"[spawn] Started task {spawned.id} \"{spawned.label}\" for {context.caller_id}"
        )
        return ToolResult.ok(
            status="accepted",
            taskId=spawned.id,
            label=spawned.label,
            model=spawned.model or default_model,
            provider=provider or "none",
            timeoutSeconds=spawned.timeout_seconds,
            message="Task started in background. Result will be sent to you automatically when complete.",
        )
