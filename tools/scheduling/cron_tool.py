"""cron — manage recurring and one-time reminder jobs."""

from __future__ import annotations

import logging
from typing import Any

from core.scheduler import ScheduleError
from tools.base import (
    BaseTool,
    InvocationContext,
    PermissionLevel,
    ToolResult,
    clamp,
    text_arg,
)

logger = logging.getLogger(__name__)

_ACTIONS = ("status", "list", "add", "update", "remove", "run", "runs", "wake")


class CronTool(BaseTool):
    """Front-end for ScheduledJobManager."""

    def __init__(self) -> None:
        self._jobs: Any = None

    @property
    def name(self) -> str:
        return "cron"

    @property
    def description(self) -> str:
        return (
            "Manage scheduled jobs that send a message to the user at set times. Actions: "
            '"status" for scheduler health, "list" to show all jobs, '
            '"add" to create a job (name, schedule, message), '
            '"update" to change a job (jobId plus fields), "remove" to delete a job, '
            '"run" to fire a job now, "runs" to view execution history, '
            '"wake" to re-enable a disabled job. '
            'schedule is a 5-field cron expression ("0 8 * * *" = daily 8am, '
            '"*/30 * * * *" = every 30 minutes) or an ISO datetime for a one-time '
            'reminder ("2026-03-01T09:00").'
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
                "jobId": {
                    "type": "string",
                    "description": "Job ID (update, remove, run, wake; optional filter for runs).",
                },
                "name": {"type": "string", "description": "Job name (add, update)."},
                "schedule": {
                    "type": "string",
                    "description": "Cron expression or ISO datetime (add, update).",
                },
                "message": {
                    "type": "string",
                    "description": "Message to send when the job fires (add, update).",
                },
                "timezone": {
                    "type": "string",
                    "description": "IANA timezone (default Asia/Bangkok).",
                },
                "enabled": {"type": "boolean", "description": "Enable/disable (update)."},
                "deleteAfterRun": {
                    "type": "boolean",
                    "description": "Delete the job after it fires once.",
                },
                "limit": {
                    "type": "number",
                    "description": "Max runs to return (runs, default 20, max 100).",
                },
            },
            "required": ["action"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        if not self._jobs:
            return ToolResult.fail("not_available", "Scheduler not initialized")

        action = text_arg(params, "action")
        handler = getattr(self, f"_{action}", None) if action in _ACTIONS else None
        if handler is None:
            return ToolResult.fail(
                "unknown_action",
                f'Unknown action "{action}". Available: {", ".join(_ACTIONS)}.',
            )
        try:
            return await handler(params, context)
        except ScheduleError as e:
            return ToolResult.fail(e.kind, e.message)
        except Exception as e:
            logger.error(f"[cron] Error ({action}): {e}")
            return ToolResult.fail("action_failed", str(e), action=action)

    async def _status(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        return ToolResult.ok(**await self._jobs.status())

    async def _list(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        jobs = await self._jobs.list_jobs()
        return ToolResult.ok(
            totalJobs=len(jobs),
            activeJobs=sum(1 for j in jobs if j.enabled),
            jobs=[j.to_dict(self._jobs.is_scheduled(j.id)) for j in jobs],
        )

    async def _add(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        name = text_arg(params, "name")
        schedule = text_arg(params, "schedule")
        message = text_arg(params, "message")
        if not name:
            return ToolResult.fail("missing_name", "name is required.")
        if not schedule:
            return ToolResult.fail("missing_schedule", "schedule is required.")
        if not message:
            return ToolResult.fail("missing_message", "message is required.")
        if not context.caller_id:
            return ToolResult.fail("no_user", "No userId available.")

        job, scheduled = await self._jobs.add(
            name,
            schedule,
            message,
            context.caller_id,
            timezone=text_arg(params, "timezone") or None,
            delete_after_run=params.get("deleteAfterRun") is True,
        )
        return ToolResult.ok(action="add", job=job.to_dict(scheduled), scheduled=scheduled)

    async def _update(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        job_id = text_arg(params, "jobId")
        if not job_id:
            return ToolResult.fail("missing_job_id", "jobId is required.")

        enabled = params.get("enabled")
        delete_after_run = params.get("deleteAfterRun")
        job = await self._jobs.update(
            job_id,
            name=text_arg(params, "name") or None,
            schedule=text_arg(params, "schedule") or None,
            message=text_arg(params, "message") or None,
            timezone=text_arg(params, "timezone") or None,
            enabled=enabled if isinstance(enabled, bool) else None,
            delete_after_run=delete_after_run if isinstance(delete_after_run, bool) else None,
        )
        return ToolResult.ok(action="update", job=job.to_dict(self._jobs.is_scheduled(job.id)))

    async def _remove(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        job_id = text_arg(params, "jobId")
        if not job_id:
            return ToolResult.fail("missing_job_id", "jobId is required.")
        job = await self._jobs.remove(job_id)
        if job is None:
            return ToolResult.fail("not_found", f'Job "{job_id}" not found.')
        return ToolResult.ok(action="remove", removedJob={"id": job_id, "name": job.name})

    async def _run(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        job_id = text_arg(params, "jobId")
        if not job_id:
            return ToolResult.fail("missing_job_id", "jobId is required.")
        outcome = await self._jobs.run(job_id)
        if outcome is None:
            return ToolResult.fail("not_found", f'Job "{job_id}" not found.')

        job, fired = outcome
        summary = {"id": job.id, "name": job.name, "message": job.message}
        if not fired.success:
            return ToolResult.fail("run_failed", fired.error or "Job failed", job=summary)
        return ToolResult.ok(action="run", job=summary)

    async def _runs(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        job_id = text_arg(params, "jobId")
        limit = clamp(params.get("limit"), 1, 100, 20)
        runs = await self._jobs.list_runs(job_id or None, limit)
        return ToolResult.ok(
            action="runs",
            jobId=job_id or None,
            count=len(runs),
            runs=[r.to_dict() for r in runs],
        )

    async def _wake(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        job_id = text_arg(params, "jobId")
        if not job_id:
            return ToolResult.fail("missing_job_id", "jobId is required.")
        woke = await self._jobs.wake(job_id)
        if woke is None:
            return ToolResult.fail("not_found", f'Job "{job_id}" not found.')

        data: dict[str, Any] = {
            "action": "wake",
            "job": woke.job.to_dict(woke.scheduled),
            "scheduled": woke.scheduled,
        }
        if woke.already_enabled:
            data["message"] = "Job was already enabled."
        return ToolResult.ok(**data)
