"""Scheduled jobs: recurring and one-shot reminders on APScheduler.

Jobs are persisted to SQLite and re-armed on startup. When a job fires it
pushes ``⏰ <message>`` to its owner, appends a ``cron_runs`` row and
updates its summary fields. A one-shot job (ISO datetime schedule) is
disabled after a successful firing, or deleted when ``delete_after_run``
is set. A failed one-shot delivery is retried a few times, then the job is
disabled.

``_active_jobs`` maps job id to APScheduler job id and holds exactly the
jobs that have a live firing handle. Re-arming always removes the old
handle first, so there is never more than one per job. Every enabled job
has a handle; jobs that cannot be armed at startup are disabled.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from channels.base import Notifier, NotifierError
from core.database import Database

logger = logging.getLogger(__name__)

_ONE_SHOT_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
ONE_SHOT_RETRY_SECONDS = 60
ONE_SHOT_MAX_ATTEMPTS = 3

# crontab numbering: 0 and 7 are Sunday
_CRON_DAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


class ScheduleKind(StrEnum):
    CRON = "cron"  # recurring
    ONCE = "once"  # one-shot


class ScheduleError(ValueError):
    """Rejected scheduling input. ``kind`` is the structured error code."""

    def __init__(self, kind: str, message: str) -> None:
        self.kind = kind
        self.message = message
        super().__init__(message)


@dataclass
class ScheduledJob:
    id: str
    name: str
    schedule: str
    schedule_type: ScheduleKind
    message: str
    target_user_id: str
    timezone: str
    enabled: bool = True
    delete_after_run: bool = False
    run_count: int = 0
    last_run_at: str | None = None
    last_status: str | None = None
    last_error: str | None = None
    created_at: str = ""

    def to_dict(self, is_scheduled: bool) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "schedule": self.schedule,
            "scheduleType": str(self.schedule_type),
            "message": self.message,
            "timezone": self.timezone,
            "enabled": self.enabled,
            "deleteAfterRun": self.delete_after_run,
            "runCount": self.run_count,
            "lastRunAt": self.last_run_at,
            "lastStatus": self.last_status,
            "lastError": self.last_error,
            "createdAt": self.created_at,
            "isScheduled": is_scheduled,
        }


@dataclass
class JobRun:
    """Append-only audit record of one firing."""

    id: int
    job_id: str
    job_name: str
    status: str
    error: str | None
    started_at: str
    completed_at: str | None

    def to_dict(self) -> dict[str, Any]:
        duration_ms = None
        if self.completed_at and self.started_at:
            delta = datetime.fromisoformat(self.completed_at) - datetime.fromisoformat(
                self.started_at
            )
            duration_ms = int(delta.total_seconds() * 1000)
        return {
            "runId": self.id,
            "jobId": self.job_id,
            "jobName": self.job_name,
            "status": self.status,
            "error": self.error,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": duration_ms,
        }


@dataclass
class FireResult:
    success: bool
    error: str | None = None


@dataclass
class WakeResult:
    job: ScheduledJob
    scheduled: bool
    already_enabled: bool


# --- Schedule parsing ---


def _zone(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleError("invalid_timezone", f"Unknown timezone: {timezone}") from e


def parse_run_at(schedule: str, zone: ZoneInfo) -> datetime:
    """Parse a one-shot ISO datetime; naive values are taken in ``zone``."""
    try:
        run_at = datetime.fromisoformat(schedule)
    except ValueError as e:
        raise ScheduleError("invalid_date", f"Invalid datetime: {schedule}") from e
    if run_at.tzinfo is None:
        run_at = run_at.replace(tzinfo=zone)
    return run_at


def _cron_day(token: str) -> int:
    if token.isdigit():
        value = int(token)
        if value > 7:
            raise ValueError(f"day of week out of range: {token}")
        return value
    name = token.lower()[:3]
    if name not in _CRON_DAYS:
        raise ValueError(f"unknown day of week: {token}")
    return _CRON_DAYS.index(name)


def _convert_day_of_week(field: str) -> str:
    """Rewrite a crontab day-of-week field to weekday names.

    APScheduler counts Monday as 0 while crontab counts Sunday as 0, so
    numeric fields are expanded to explicit names.
    """
    if field == "*" or not any(ch.isdigit() for ch in field):
        return field
    days: list[str] = []
    for part in field.split(","):
        span, _, step = part.partition("/")
        stride = int(step) if step else 1
        if stride < 1:
            raise ValueError(f"invalid step: {part}")
        if span == "*":
            start, end = 0, 6
        elif "-" in span:
            first, last = span.split("-", 1)
            start, end = _cron_day(first), _cron_day(last)
        else:
            start = _cron_day(span)
            end = 6 if step else start
        if start > end:
            raise ValueError(f"invalid range: {part}")
        days.extend(_CRON_DAYS[d] for d in range(start, end + 1, stride))
    return ",".join(dict.fromkeys(days))


def crontab_trigger(expression: str, zone: ZoneInfo) -> CronTrigger:
    """Build a CronTrigger from a 5-field crontab expression."""
    fields = expression.split()
    if len(fields) == 5:
        fields[4] = _convert_day_of_week(fields[4])
    return CronTrigger.from_crontab(" ".join(fields), timezone=zone)


def classify_schedule(
    schedule: str, timezone: str, now: datetime | None = None
) -> tuple[ScheduleKind, datetime | None]:
    """Validate a schedule expression and decide recurring vs one-shot.

    Raises:
        ScheduleError: invalid_timezone, invalid_date, past_date or
            invalid_schedule.
    """
    zone = _zone(timezone)
    if _ONE_SHOT_RE.match(schedule):
        run_at = parse_run_at(schedule, zone)
        if run_at <= (now or datetime.now(UTC)):
            raise ScheduleError("past_date", "Cannot schedule in the past.")
        return ScheduleKind.ONCE, run_at
    try:
        crontab_trigger(schedule, zone)
    except ValueError as e:
        raise ScheduleError(
            "invalid_schedule",
            f'Invalid cron expression: "{schedule}". '
            'Examples: "0 8 * * *" (daily 8am), "*/30 * * * *" (every 30min).',
        ) from e
    return ScheduleKind.CRON, None


class ScheduledJobManager:
    """Owns scheduled jobs, their firing handles and their run log."""

    def __init__(
        self,
        db: Database,
        notifier: Notifier | None = None,
        default_timezone: str = "Asia/Bangkok",
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._db = db
        self._notifier = notifier
        self._default_timezone = default_timezone
        self._scheduler = scheduler or AsyncIOScheduler()
        self._active_jobs: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._one_shot_attempts: dict[str, int] = {}
        self._started_at = time.monotonic()

    @property
    def notifier(self) -> Notifier | None:
        return self._notifier

    @notifier.setter
    def notifier(self, value: Notifier | None) -> None:
        self._notifier = value

    @property
    def default_timezone(self) -> str:
        return self._default_timezone

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Re-arm every enabled job and start the scheduler."""
        rows = await self._db.execute("SELECT * FROM cron_jobs WHERE enabled = 1")
        armed = 0
        for row in rows:
            job = self._row_to_job(row)
            if self._arm(job):
                armed += 1
            else:
                await self._disable(job.id, "Not rescheduled on startup")
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"Scheduler started: {armed}/{len(rows)} enabled job(s) armed")

    async def stop(self) -> None:
        """Gracefully stop the scheduler."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._active_jobs.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_scheduled(self, job_id: str) -> bool:
        return job_id in self._active_jobs

    @property
    def handle_count(self) -> int:
        return len(self._active_jobs)

    async def get_job(self, job_id: str) -> ScheduledJob | None:
        rows = await self._db.execute("SELECT * FROM cron_jobs WHERE id = ?", (job_id,))
        return self._row_to_job(rows[0]) if rows else None

    async def list_jobs(self) -> list[ScheduledJob]:
        """All jobs, enabled first, newest first."""
        rows = await self._db.execute(
            "SELECT * FROM cron_jobs ORDER BY enabled DESC, created_at DESC"
        )
        return [self._row_to_job(r) for r in rows]

    async def list_runs(self, job_id: str | None = None, limit: int = 20) -> list[JobRun]:
        """Run log, newest first, optionally for one job. ``limit`` is clamped to 1-100."""
        limit = max(1, min(100, limit))
        if job_id:
            rows = await self._db.execute(
                "SELECT * FROM cron_runs WHERE job_id = ? ORDER BY started_at DESC, id DESC LIMIT ?",
                (job_id, limit),
            )
        else:
            rows = await self._db.execute(
                "SELECT * FROM cron_runs ORDER BY started_at DESC, id DESC LIMIT ?",
                (limit,),
            )
        return [
            JobRun(
                id=r["id"],
                job_id=r["job_id"],
                job_name=r["job_name"],
                status=r["status"],
                error=r["error"],
                started_at=r["started_at"],
                completed_at=r["completed_at"],
            )
            for r in rows
        ]

    async def status(self) -> dict[str, Any]:
        rows = await self._db.execute(
            """SELECT COUNT(*) AS total,
                      SUM(CASE WHEN enabled = 1 THEN 1 ELSE 0 END) AS active,
                      SUM(CASE WHEN last_status = 'error' THEN 1 ELSE 0 END) AS errored
               FROM cron_jobs"""
        )
        row = rows[0]
        return {
            "schedulerUptime": round(time.monotonic() - self._started_at),
            "totalJobs": row["total"] or 0,
            "activeJobs": row["active"] or 0,
            "scheduledInMemory": len(self._active_jobs),
            "erroredJobs": row["errored"] or 0,
            "timezone": self._default_timezone,
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(
        self,
        name: str,
        schedule: str,
        message: str,
        owner_id: str,
        timezone: str | None = None,
        delete_after_run: bool = False,
    ) -> tuple[ScheduledJob, bool]:
        """Validate, persist and arm a job. Returns (job, scheduled).

        Raises:
            ScheduleError: the schedule or timezone was rejected.
        """
        timezone = timezone or self._default_timezone
        kind, _ = classify_schedule(schedule, timezone)

        job = ScheduledJob(
            id=str(uuid.uuid4())[:8],
            name=name,
            schedule=schedule,
            schedule_type=kind,
            message=message,
            target_user_id=owner_id,
            timezone=timezone,
            delete_after_run=delete_after_run,
            created_at=datetime.now(UTC).isoformat(),
        )
        await self._db.execute_insert(
            """INSERT INTO cron_jobs
               (id, name, schedule, schedule_type, message, target_user_id, timezone,
                enabled, delete_after_run, run_count, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, 0, ?)""",
            (
                job.id,
                job.name,
                job.schedule,
                job.schedule_type,
                job.message,
                job.target_user_id,
                job.timezone,
                int(job.delete_after_run),
                job.created_at,
            ),
        )
        scheduled = self._arm(job)
        logger.info(f'[cron] Added job "{name}" ({job.id}): {schedule}')
        return job, scheduled

    async def update(
        self,
        job_id: str,
        *,
        name: str | None = None,
        schedule: str | None = None,
        message: str | None = None,
        timezone: str | None = None,
        enabled: bool | None = None,
        delete_after_run: bool | None = None,
    ) -> ScheduledJob:
        """Apply a partial update and re-arm.

        Raises:
            ScheduleError: not_found, no_changes, or a validation kind.
        """
        async with self._lock(job_id):
            existing = await self.get_job(job_id)
            if existing is None:
                raise ScheduleError("not_found", f'Job "{job_id}" not found.')

            updates: list[str] = []
            values: list[Any] = []
            if name:
                updates.append("name = ?")
                values.append(name)
            if message:
                updates.append("message = ?")
                values.append(message)
            if timezone:
                _zone(timezone)
                updates.append("timezone = ?")
                values.append(timezone)
            if enabled is not None:
                updates.append("enabled = ?")
                values.append(int(enabled))
            if delete_after_run is not None:
                updates.append("delete_after_run = ?")
                values.append(int(delete_after_run))
            if schedule:
                kind, _ = classify_schedule(schedule, timezone or existing.timezone)
                updates.extend(["schedule = ?", "schedule_type = ?"])
                values.extend([schedule, kind])

            if not updates:
                raise ScheduleError(
                    "no_changes",
                    "No fields to update. Provide name, schedule, message, timezone, "
                    "enabled, or deleteAfterRun.",
                )

            values.append(job_id)
            await self._db.execute_update(
                f"UPDATE cron_jobs SET {', '.join(updates)} WHERE id = ?", values
            )
            updated = await self.get_job(job_id)
            assert updated is not None
            self._arm(updated)
        logger.info(f'[cron] Updated job "{updated.name}" ({job_id})')
        return updated

    async def remove(self, job_id: str) -> ScheduledJob | None:
        """Disarm and delete a job. Returns the removed job, or None."""
        async with self._lock(job_id):
            job = await self.get_job(job_id)
            if job is None:
                return None
            self._disarm(job_id)
            await self._db.execute_update("DELETE FROM cron_jobs WHERE id = ?", (job_id,))
        self._locks.pop(job_id, None)
        self._one_shot_attempts.pop(job_id, None)
        logger.info(f'[cron] Removed job "{job.name}" ({job_id})')
        return job

    async def wake(self, job_id: str) -> WakeResult | None:
        """Re-enable a job and re-arm it. Already-enabled jobs are only re-armed."""
        async with self._lock(job_id):
            job = await self.get_job(job_id)
            if job is None:
                return None
            already_enabled = job.enabled
            if not already_enabled:
                await self._db.execute_update(
                    "UPDATE cron_jobs SET enabled = 1, last_error = NULL WHERE id = ?",
                    (job_id,),
                )
                job.enabled = True
                job.last_error = None
            scheduled = self._arm(job)
        if not already_enabled:
            logger.info(f'[cron] Woke job "{job.name}" ({job_id})')
        return WakeResult(job=job, scheduled=scheduled, already_enabled=already_enabled)

    async def run(self, job_id: str) -> tuple[ScheduledJob, FireResult] | None:
        """Fire a job now, regardless of its schedule or enabled flag."""
        job = await self.get_job(job_id)
        if job is None:
            return None
        result = await self._fire(job_id)
        return job, result or FireResult(False, "Job disappeared before it could run")

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def _fire_scheduled(self, job_id: str) -> FireResult | None:
        """APScheduler entry point for recurring jobs."""
        job = await self.get_job(job_id)
        if job is None or not job.enabled:
            return None
        return await self._fire(job_id)

    async def _fire_scheduled_once(self, job_id: str) -> None:
        """APScheduler entry point for one-shot jobs.

        The date trigger is spent on every firing. A failed delivery is
        re-armed ``ONE_SHOT_RETRY_SECONDS`` later, up to
        ``ONE_SHOT_MAX_ATTEMPTS`` attempts, after which the job is disabled.
        """
        self._active_jobs.pop(job_id, None)
        result = await self._fire_scheduled(job_id)
        if result is None or result.success:
            self._one_shot_attempts.pop(job_id, None)
            return

        attempts = self._one_shot_attempts.get(job_id, 0) + 1
        if attempts < ONE_SHOT_MAX_ATTEMPTS:
            self._one_shot_attempts[job_id] = attempts
            retry_at = datetime.now(UTC) + timedelta(seconds=ONE_SHOT_RETRY_SECONDS)
            self._add_handle(job_id, DateTrigger(run_date=retry_at), self._fire_scheduled_once)
            logger.warning(
                f"[cron] One-time job {job_id} failed (attempt {attempts}/"
                f"{ONE_SHOT_MAX_ATTEMPTS}), retrying in {ONE_SHOT_RETRY_SECONDS}s"
            )
            return

        self._one_shot_attempts.pop(job_id, None)
        await self._disable(job_id)
        logger.error(f"[cron] One-time job {job_id} failed {attempts} times, disabled")

    async def _disable(self, job_id: str, reason: str | None = None) -> None:
        """Persist enabled = 0 for a job that has lost its handle."""
        self._disarm(job_id)
        await self._db.execute_update(
            "UPDATE cron_jobs SET enabled = 0, last_error = COALESCE(?, last_error) WHERE id = ?",
            (reason, job_id),
        )

    async def _fire(self, job_id: str) -> FireResult | None:
        async with self._lock(job_id):
            job = await self.get_job(job_id)
            if job is None:
                return None
            logger.info(f'[cron] Executing job "{job.name}" -> {job.target_user_id}')
            started_at = datetime.now(UTC).isoformat()
            try:
                if self._notifier is None:
                    raise NotifierError("No notification channel configured")
                await self._notifier.push_text(job.target_user_id, f"⏰ {job.message}")
            except Exception as e:
                error = (str(e) or type(e).__name__)[:500]
                completed_at = datetime.now(UTC).isoformat()
                logger.error(f'[cron] Job "{job.name}" failed: {error}')
                await self._db.execute_update(
                    """UPDATE cron_jobs SET last_run_at = ?, last_status = 'error',
                       last_error = ?, run_count = run_count + 1 WHERE id = ?""",
                    (completed_at, error, job.id),
                )
                await self._record_run(job, "error", error, started_at, completed_at)
                return FireResult(success=False, error=error)

            completed_at = datetime.now(UTC).isoformat()
            await self._db.execute_update(
                """UPDATE cron_jobs SET last_run_at = ?, last_status = 'success',
                   last_error = NULL, run_count = run_count + 1 WHERE id = ?""",
                (completed_at, job.id),
            )
            await self._record_run(job, "success", None, started_at, completed_at)

            if job.schedule_type == ScheduleKind.ONCE or job.delete_after_run:
                if job.delete_after_run:
                    await self._db.execute_update("DELETE FROM cron_jobs WHERE id = ?", (job.id,))
                    logger.info(f'[cron] Job "{job.name}" deleted after run')
                else:
                    await self._db.execute_update(
                        "UPDATE cron_jobs SET enabled = 0 WHERE id = ?", (job.id,)
                    )
                    logger.info(f'[cron] One-time job "{job.name}" completed and disabled')
                self._disarm(job.id)
            return FireResult(success=True)

    async def _record_run(
        self,
        job: ScheduledJob,
        status: str,
        error: str | None,
        started_at: str,
        completed_at: str,
    ) -> None:
        await self._db.execute_insert(
            """INSERT INTO cron_runs (job_id, job_name, status, error, started_at, completed_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (job.id, job.name, status, error, started_at, completed_at),
        )

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def _lock(self, job_id: str) -> asyncio.Lock:
        return self._locks.setdefault(job_id, asyncio.Lock())

    def _disarm(self, job_id: str) -> None:
        aps_id = self._active_jobs.pop(job_id, None)
        if aps_id:
            try:
                self._scheduler.remove_job(aps_id)
            except JobLookupError:
                pass  # already fired or removed

    def _arm(self, job: ScheduledJob) -> bool:
        """(Re)create the firing handle for a job. Returns whether one is live."""
        self._disarm(job.id)
        if not job.enabled:
            return False

        try:
            zone = _zone(job.timezone)
            if job.schedule_type == ScheduleKind.ONCE:
                run_at = parse_run_at(job.schedule, zone)
                if run_at <= datetime.now(UTC):
                    logger.info(f'[cron] One-time job "{job.name}" is in the past, skipping')
                    return False
                trigger: CronTrigger | DateTrigger = DateTrigger(run_date=run_at)
                func = self._fire_scheduled_once
            else:
                trigger = crontab_trigger(job.schedule, zone)
                func = self._fire_scheduled
        except ValueError as e:
            logger.error(f'[cron] Cannot schedule "{job.name}" ({job.id}): {e}')
            return False

        self._add_handle(job.id, trigger, func)
        return True

    def _add_handle(self, job_id: str, trigger: CronTrigger | DateTrigger, func: Any) -> None:
        aps_id = f"cron_{job_id}"
        self._scheduler.add_job(
            func,
            trigger=trigger,
            args=[job_id],
            id=aps_id,
            replace_existing=True,
        )
        self._active_jobs[job_id] = aps_id

    @staticmethod
    def _row_to_job(row: Any) -> ScheduledJob:
        return ScheduledJob(
            id=row["id"],
            name=row["name"],
            schedule=row["schedule"],
            schedule_type=ScheduleKind(row["schedule_type"]),
            message=row["message"],
            target_user_id=row["target_user_id"],
            timezone=row["timezone"],
            enabled=bool(row["enabled"]),
            delete_after_run=bool(row["delete_after_run"]),
            run_count=row["run_count"] or 0,
            last_run_at=row["last_run_at"],
            last_status=row["last_status"],
            last_error=row["last_error"],
            created_at=row["created_at"],
        )
