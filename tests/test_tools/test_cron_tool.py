"""cron tool tests against a real ScheduledJobManager on a temp database."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest

from core.database import Database
from core.scheduler import ScheduledJobManager
from tools.base import InvocationContext
from tools.scheduling.cron_tool import CronTool


@pytest.fixture
async def cron(db: Database, notifier: Any) -> AsyncIterator[CronTool]:
    tool = CronTool()
    tool._jobs = ScheduledJobManager(db, notifier, default_timezone="Asia/Bangkok")
    yield tool
    await tool._jobs.stop()


async def _add(cron: CronTool, context: InvocationContext, **extra: Any) -> dict[str, Any]:
    params = {"action": "add", "name": "Water", "schedule": "0 * * * *", "message": "Drink"}
    params.update(extra)
    result = await cron.execute(params, context)
    assert result.success, result.message
    return result.data["job"]


class TestCronTool:
    @pytest.mark.asyncio
    async def test_not_available_without_manager(self, context: InvocationContext) -> None:
        result = await CronTool().execute({"action": "list"}, context)
        assert result.error == "not_available"

    @pytest.mark.asyncio
    async def test_unknown_action(self, cron: CronTool, context: InvocationContext) -> None:
        result = await cron.execute({"action": "explode"}, context)
        assert result.error == "unknown_action"
        assert "status, list, add" in result.message

    @pytest.mark.asyncio
    async def test_add_targets_caller(self, cron: CronTool, context: InvocationContext) -> None:
        job = await _add(cron, context)
        assert job["scheduleType"] == "cron"
        assert job["isScheduled"] is True
        assert job["timezone"] == "Asia/Bangkok"

        stored = await cron._jobs.get_job(job["id"])
        assert stored.target_user_id == "U1"

    @pytest.mark.asyncio
    async def test_add_validation(self, cron: CronTool, context: InvocationContext) -> None:
        missing_name = await cron.execute({"action": "add", "schedule": "0 8 * * *"}, context)
        assert missing_name.error == "missing_name"
        missing_schedule = await cron.execute({"action": "add", "name": "x"}, context)
        assert missing_schedule.error == "missing_schedule"
        missing_message = await cron.execute(
            {"action": "add", "name": "x", "schedule": "0 8 * * *"}, context
        )
        assert missing_message.error == "missing_message"

    @pytest.mark.asyncio
    async def test_add_bad_schedule_reports_kind(
        self, cron: CronTool, context: InvocationContext
    ) -> None:
        result = await cron.execute(
            {"action": "add", "name": "x", "schedule": "whenever", "message": "m"}, context
        )
        assert result.error == "invalid_schedule"
        past = await cron.execute(
            {"action": "add", "name": "x", "schedule": "2020-01-01T09:00", "message": "m"},
            context,
        )
        assert past.error == "past_date"

    @pytest.mark.asyncio
    async def test_add_requires_caller(self, cron: CronTool) -> None:
        result = await cron.execute(
            {"action": "add", "name": "x", "schedule": "0 8 * * *", "message": "m"},
            InvocationContext(caller_id=""),
        )
        assert result.error == "no_user"

    @pytest.mark.asyncio
    async def test_list_and_status(self, cron: CronTool, context: InvocationContext) -> None:
        await _add(cron, context)
        await _add(cron, context, name="Stretch")

        listed = await cron.execute({"action": "list"}, context)
        assert listed.data["totalJobs"] == 2
        assert listed.data["activeJobs"] == 2
        assert {j["name"] for j in listed.data["jobs"]} == {"Water", "Stretch"}

        status = await cron.execute({"action": "status"}, context)
        assert status.success
        assert status.data["scheduledInMemory"] == 2

    @pytest.mark.asyncio
    async def test_update(self, cron: CronTool, context: InvocationContext) -> None:
        job = await _add(cron, context)
        result = await cron.execute(
            {"action": "update", "jobId": job["id"], "enabled": False, "message": "Tea"},
            context,
        )
        assert result.success
        assert result.data["job"]["enabled"] is False
        assert result.data["job"]["message"] == "Tea"
        assert result.data["job"]["isScheduled"] is False

    @pytest.mark.asyncio
    async def test_update_errors(self, cron: CronTool, context: InvocationContext) -> None:
        assert (await cron.execute({"action": "update"}, context)).error == "missing_job_id"
        job = await _add(cron, context)
        no_changes = await cron.execute({"action": "update", "jobId": job["id"]}, context)
        assert no_changes.error == "no_changes"
        unknown = await cron.execute({"action": "update", "jobId": "nope", "name": "x"}, context)
        assert unknown.error == "not_found"

    @pytest.mark.asyncio
    async def test_remove(self, cron: CronTool, context: InvocationContext) -> None:
        job = await _add(cron, context)
        result = await cron.execute({"action": "remove", "jobId": job["id"]}, context)
        assert result.data["removedJob"] == {"id": job["id"], "name": "Water"}
        again = await cron.execute({"action": "remove", "jobId": job["id"]}, context)
        assert again.error == "not_found"

    @pytest.mark.asyncio
    async def test_run_and_runs(
        self, cron: CronTool, context: InvocationContext, notifier: Any
    ) -> None:
        job = await _add(cron, context)
        result = await cron.execute({"action": "run", "jobId": job["id"]}, context)
        assert result.success
        assert result.data["job"]["message"] == "Drink"
        assert notifier.texts == [("U1", "⏰ Drink")]

        runs = await cron.execute({"action": "runs", "jobId": job["id"]}, context)
        assert runs.data["count"] == 1
        assert runs.data["runs"][0]["status"] == "success"

    @pytest.mark.asyncio
    async def test_run_failure(
        self, db: Database, failing_notifier: Any, context: InvocationContext
    ) -> None:
        tool = CronTool()
        tool._jobs = ScheduledJobManager(db, failing_notifier)
        job = await _add(tool, context)
        result = await tool.execute({"action": "run", "jobId": job["id"]}, context)
        assert result.error == "run_failed"
        assert result.message == "push failed"
        assert result.data["job"]["id"] == job["id"]
        await tool._jobs.stop()

    @pytest.mark.asyncio
    async def test_run_unknown(self, cron: CronTool, context: InvocationContext) -> None:
        result = await cron.execute({"action": "run", "jobId": "ghost"}, context)
        assert result.error == "not_found"

    @pytest.mark.asyncio
    async def test_wake(self, cron: CronTool, context: InvocationContext) -> None:
        job = await _add(cron, context)
        await cron.execute({"action": "update", "jobId": job["id"], "enabled": False}, context)

        woke = await cron.execute({"action": "wake", "jobId": job["id"]}, context)
        assert woke.data["scheduled"] is True
        assert "message" not in woke.data

        again = await cron.execute({"action": "wake", "jobId": job["id"]}, context)
        assert again.data["message"] == "Job was already enabled."
