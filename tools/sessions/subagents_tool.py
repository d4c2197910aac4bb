"""subagents — list, kill, steer and inspect spawned background tasks."""

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

_ACTIONS = ("list", "kill", "steer", "status")
_STEER_MAX_CHARS = 4000


def _preview(text: str | None, limit: int) -> str | None:
    if text is None:
        return None
    return text[:limit] + "..." if len(text) > limit else text


def format_task(task: Any, is_running: bool) -> dict[str, Any]:
    return {
        "id": task.id,
        "label": task.label,
        "status": str(task.status),
        "model": task.model,
        "runtimeSeconds": task.runtime_seconds(),
        "task": _preview(task.task, 200),
        "result": _preview(task.result, 300),
        "createdAt": task.created_at,
        "completedAt": task.completed_at,
        "isRunning": is_running,
    }


class SubagentsTool(BaseTool):
    """Manage the caller's background tasks."""

    def __init__(self) -> None:
        self._tasks: Any = None

    @property
    def name(self) -> str:
        return "subagents"

    @property
    def description(self) -> str:
        return (
            "Manage background AI tasks spawned by sessions_spawn. Actions: "
            '"list" to show active and recent tasks, '
            '"kill" to cancel a running task (target: task ID or "all"), '
            '"steer" to restart a running task with new instructions, '
            '"status" to view details of a specific task.'
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": list(_ACTIONS),
                    "description": "Action to perform. Default: list.",
                },
                "target": {
                    "type": "string",
                    "description": 'Task ID for kill/steer/status, or "all" to kill all running tasks.',
                },
                "message": {
                    "type": "string",
                    "description": "New instructions for steer (max 4000 chars).",
                },
                "recentMinutes": {
                    "type": "number",
                    "description": "Time window for recent tasks in minutes (default 30, max 1440).",
                },
            },
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        if not self._tasks:
            return ToolResult.fail("not_available", "Background tasks not initialized")

        action = text_arg(params, "action") or "list"
        try:
            if action == "list":
                return await self._list(params, context)
            if action == "kill":
                return await self._kill(params, context)
            if action == "steer":
                return await self._steer(params)
            if action == "status":
                return await self._status(params)
        except Exception as e:
            return ToolResult.fail("action_failed", str(e), action=action)

        return ToolResult.fail(
            "unknown_action",
            f'Unknown action "{action}". Available: {", ".join(_ACTIONS)}.',
        )

    async def _list(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        recent_minutes = clamp(params.get("recentMinutes"), 1, 1440, 30)
        active, recent = await self._tasks.list_tasks(
            owner_id=context.caller_id or None, recent_minutes=recent_minutes
        )
        return ToolResult.ok(
            active=[format_task(t, self._tasks.is_running(t.id)) for t in active],
            recent=[format_task(t, False) for t in recent],
            activeCount=len(active),
            recentCount=len(recent),
            recentMinutes=recent_minutes,
        )

    async def _kill(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        target = text_arg(params, "target")
        if not target:
            return ToolResult.fail("missing_target", 'Provide target: task ID or "all".')

        if target in ("all", "*"):
            killed = await self._tasks.cancel_all(context.caller_id or "all")
            return ToolResult.ok(
                action="kill",
                target="all",
                killedCount=len(killed),
                killedLabels=[t.label for t in killed],
            )

        task = await self._tasks.query(target)
        owned = task is not None and (not context.caller_id or task.user_id == context.caller_id)
        if not owned or not await self._tasks.cancel(target):
            return ToolResult.fail(
                "not_found",
                f'Task "{target}" not found or not running. Use "list" to see tasks.',
            )
        return ToolResult.ok(action="kill", killedTask={"id": target, "label": task.label})

    async def _steer(self, params: dict[str, Any]) -> ToolResult:
        target = text_arg(params, "target")
        message = text_arg(params, "message")[:_STEER_MAX_CHARS]
        if not target:
            return ToolResult.fail("missing_target", "Provide target: task ID.")
        if not message:
            return ToolResult.fail(
                "missing_message", "Provide message: new instructions for the task."
            )

        new_task = await self._tasks.steer(target, message)
        if new_task is None:
            return ToolResult.fail(
                "not_found",
                f'Task "{target}" not found or not running. Use "list" to see tasks.',
            )
        return ToolResult.ok(
            action="steer",
            oldTaskId=target,
            newTaskId=new_task.id,
            message="Task interrupted and restarted with new instructions.",
        )

    async def _status(self, params: dict[str, Any]) -> ToolResult:
        target = text_arg(params, "target")
        if not target:
            return ToolResult.fail("missing_target", "Provide target: task ID.")

        task = await self._tasks.query(target)
        if task is None:
            return ToolResult.fail("not_found", f'Task "{target}" not found.')
        if self._tasks.is_running(target):
            return ToolResult.ok(found=True, **format_task(task, True))
        return ToolResult.ok(found=True, **format_task(task, False), fullResult=task.result)
