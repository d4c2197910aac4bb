"""Background tasks: detached single-shot model calls with a lifecycle.

A task is spawned by a tool, runs one LLM call with no tool access, and
pushes its result to the owner when done. Tasks can be cancelled, steered
(cancelled and relaunched with amended instructions) and inspected.

The in-memory ``_running`` map holds exactly the tasks whose row is
``running``. Whoever pops an id from that map owns the transition out of
``running`` and is the only writer of the terminal row: the task body on
success, failure or timeout; ``cancel``/``steer`` otherwise. Handles are
never resumed across restarts; ``start()`` closes out orphaned rows.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from channels.base import Notifier
from core.config import TasksConfig
from core.database import Database
from core.router import LLMRouter

logger = logging.getLogger(__name__)

TASK_SYSTEM_PROMPT = (
    "You are a helpful assistant. Complete the given task thoroughly and return the result."
)


class TaskStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskCapacityError(Exception):
    """Owner already has the maximum number of running tasks."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"Maximum {limit} concurrent tasks per user. "
            "Use subagents tool to manage existing tasks."
        )


@dataclass
class BackgroundTask:
    """One spawned unit of background work."""

    id: str
    label: str
    task: str
    user_id: str
    status: TaskStatus = TaskStatus.RUNNING
    result: str | None = None
    model: str | None = None
    timeout_seconds: int = 120
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None

    def runtime_seconds(self, now: datetime | None = None) -> int:
        """Elapsed time while running, or total time once finished."""
        start = datetime.fromisoformat(self.created_at)
        if self.completed_at:
            end = datetime.fromisoformat(self.completed_at)
        elif self.status == TaskStatus.RUNNING:
            end = now or datetime.now(UTC)
        else:
            return 0
        return max(0, round((end - start).total_seconds()))


@dataclass
class _RunningEntry:
    task: BackgroundTask
    handle: asyncio.Task[None] | None = None


class BackgroundTaskManager:
    """Owns running background tasks and their persisted rows."""

    def __init__(
        self,
        db: Database,
        router: LLMRouter,
        config: TasksConfig | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._db = db
        self._router = router
        self._config = config or TasksConfig()
        self._notifier = notifier
        self._running: dict[str, _RunningEntry] = {}

    @property
    def notifier(self) -> Notifier | None:
        return self._notifier

    @notifier.setter
    def notifier(self, value: Notifier | None) -> None:
        self._notifier = value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Close out rows left ``running`` by a previous process."""
        count = await self._db.execute_update(
            "UPDATE background_tasks SET status = ?, result = ?, completed_at = ? "
            "WHERE status = ?",
            (
                TaskStatus.CANCELLED,
                "Interrupted by restart",
                datetime.now(UTC).isoformat(),
                TaskStatus.RUNNING,
            ),
        )
        if count:
            logger.info("Marked %d orphaned background task(s) as cancelled", count)
        return count

    async def shutdown(self) -> None:
        """Cancel every live task and wait for the handles to unwind."""
        entries = list(self._running.values())
        for entry in entries:
            await self.cancel(entry.task.id, reason="Interrupted by shutdown")
        handles = [e.handle for e in entries if e.handle is not None]
        if handles:
            await asyncio.gather(*handles, return_exceptions=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def running_count(self, owner_id: str) -> int:
        return sum(1 for e in self._running.values() if e.task.user_id == owner_id)

    def running_tasks(self, owner_id: str | None = None) -> list[BackgroundTask]:
        return [
            e.task
            for e in self._running.values()
            if owner_id is None or e.task.user_id == owner_id
        ]

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    async def query(self, task_id: str) -> BackgroundTask | None:
        """Look in memory first, then in the database."""
        entry = self._running.get(task_id)
        if entry is not None:
            return entry.task
        rows = await self._db.execute("SELECT * FROM background_tasks WHERE id = ?", (task_id,))
        return self._row_to_task(rows[0]) if rows else None

    async def list_tasks(
        self,
        owner_id: str | None = None,
        recent_minutes: int = 30,
        limit: int = 50,
    ) -> tuple[list[BackgroundTask], list[BackgroundTask]]:
        """(active, recent): running rows, and rows finished within the window."""
        if owner_id:
            rows = await self._db.execute(
                "SELECT * FROM background_tasks WHERE user_id = ? "
                "ORDER BY created_at DESC LIMIT ?",
                (owner_id, limit),
            )
        else:
            rows = await self._db.execute(
                "SELECT * FROM background_tasks ORDER BY created_at DESC LIMIT ?",
                (limit,),
            )
        tasks = [self._row_to_task(r) for r in rows]
        cutoff = datetime.now(UTC) - timedelta(minutes=recent_minutes)

        active = [t for t in tasks if t.status == TaskStatus.RUNNING]
        recent = [
            t
            for t in tasks
            if t.status != TaskStatus.RUNNING
            and t.completed_at
            and datetime.fromisoformat(t.completed_at) >= cutoff
        ]
        return active, recent

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def spawn(
        self,
        instructions: str,
        owner_id: str,
        label: str | None = None,
        model: str | None = None,
        timeout_seconds: int | float | None = None,
    ) -> BackgroundTask:
        """Persist a running row and launch the task body. Returns immediately.

        Raises:
            TaskCapacityError: owner already has the maximum running tasks.
        """
        limit = self._config.max_running_per_owner
        if self.running_count(owner_id) >= limit:
            raise TaskCapacityError(limit)

        if not label:
            label = instructions[:50] + ("..." if len(instructions) > 50 else "")
        return await self._launch(
            instructions, owner_id, label, model, self._clamp_timeout(timeout_seconds)
        )

    async def cancel(self, task_id: str, reason: str | None = None) -> bool:
        """Abort a running task. Returns False when it is not running."""
        entry = self._running.pop(task_id, None)
        if entry is None:
            return False
        if entry.handle is not None:
            entry.handle.cancel()
        entry.task.status = TaskStatus.CANCELLED
        entry.task.completed_at = datetime.now(UTC).isoformat()
        if reason is not None:
            entry.task.result = reason
        await self._db.execute_update(
            "UPDATE background_tasks SET status = ?, result = COALESCE(?, result), "
            "completed_at = ? WHERE id = ?",
            (TaskStatus.CANCELLED, reason, entry.task.completed_at, task_id),
        )
        logger.info("[bg] Task %s cancelled", task_id)
        return True

    async def cancel_all(self, owner_id: str = "all") -> list[BackgroundTask]:
        """Cancel every running task of an owner, or of everyone with "all"."""
        scope = None if owner_id in ("all", "*") else owner_id
        cancelled: list[BackgroundTask] = []
        for task in self.running_tasks(scope):
            if await self.cancel(task.id):
                cancelled.append(task)
        return cancelled

    async def steer(self, task_id: str, new_instructions: str) -> BackgroundTask | None:
        """Cancel a running task and relaunch it with amended instructions.

        The relaunch keeps owner, model and timeout. Returns None when the
        task is not running.
        """
        entry = self._running.get(task_id)
        if entry is None:
            return None
        original = entry.task
        if not await self.cancel(task_id, reason="Steered to new task"):
            return None

        combined = (
            f"Original task: {original.task}\n\n"
            f"--- UPDATED INSTRUCTIONS ---\n{new_instructions}"
        )
        new_task = await self._launch(
            combined,
            original.user_id,
            f"[steered] {original.label}",
            original.model,
            original.timeout_seconds,
        )
        logger.info("[bg] Steered task %s -> %s", task_id, new_task.id)
        return new_task

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _clamp_timeout(self, value: int | float | None) -> int:
        cfg = self._config
        if value is None or isinstance(value, bool):
            return cfg.default_timeout_seconds
        return int(max(cfg.min_timeout_seconds, min(cfg.max_timeout_seconds, value)))

    async def _launch(
        self,
        instructions: str,
        owner_id: str,
        label: str,
        model: str | None,
        timeout_seconds: int,
    ) -> BackgroundTask:
        task = BackgroundTask(
            id=str(uuid.uuid4())[:8],
            label=label,
            task=instructions,
            user_id=owner_id,
            model=model,
            timeout_seconds=timeout_seconds,
        )
        # Reserve the slot before awaiting so concurrent spawns see it
        entry = _RunningEntry(task=task)
        self._running[task.id] = entry
        try:
            await self._db.execute_insert(
                """INSERT INTO background_tasks
                   (id, label, task, status, result, model, user_id,
                    timeout_seconds, created_at, completed_at)
                   VALUES (?, ?, ?, ?, NULL, ?, ?, ?, ?, NULL)""",
                (
                    task.id,
                    task.label,
                    task.task,
                    TaskStatus.RUNNING,
                    task.model,
                    task.user_id,
                    task.timeout_seconds,
                    task.created_at,
                ),
            )
        except Exception:
            self._running.pop(task.id, None)
            raise

        if self._running.get(task.id) is entry:
            entry.handle = asyncio.create_task(self._run(task), name=f"bgtask-{task.id}")
        else:
            # Cancelled while the insert was in flight; re-apply the terminal state
            await self._db.execute_update(
                "UPDATE background_tasks SET status = ?, result = ?, completed_at = ? "
                "WHERE id = ?",
                (task.status, task.result, task.completed_at, task.id),
            )
            return task
        logger.info(
            '[bg] Started task %s "%s" for %s (model: %s, timeout %ss)',
            task.id,
            task.label,
            owner_id,
            model or "default",
            timeout_seconds,
        )
        return task

    async def _execute(self, task: BackgroundTask) -> str:
        response = await self._router.complete(
            [
                {"role": "system", "content": TASK_SYSTEM_PROMPT},
                {"role": "user", "content": task.task},
            ],
            model_override=task.model,
        )
        return response.content or "(no response)"

    async def _run(self, task: BackgroundTask) -> None:
        """Task body. Never raises except for its own cancellation."""
        try:
            result = await asyncio.wait_for(self._execute(task), timeout=task.timeout_seconds)
        except TimeoutError:
            if self._running.pop(task.id, None) is None:
                return
            message = f"Timed out after {task.timeout_seconds}s"
            await self._finish(task, TaskStatus.CANCELLED, message)
            logger.warning("[bg] Task %s timed out", task.id)
            await self._notify(task.user_id, f"⏱ Task timed out: {task.label} ({message})")
            return
        except asyncio.CancelledError:
            # cancel()/steer()/shutdown() already owns the row
            raise
        except Exception as e:
            if self._running.pop(task.id, None) is None:
                return
            error = str(e) or type(e).__name__
            await self._finish(task, TaskStatus.FAILED, f"Error: {error[:5000]}")
            logger.error("[bg] Task %s failed: %s", task.id, error)
            await self._notify(task.user_id, f"❌ Task failed: {error[:200]}")
            return

        if self._running.pop(task.id, None) is None:
            return
        await self._finish(task, TaskStatus.COMPLETED, result[: self._config.result_max_chars])
        logger.info("[bg] Task %s completed (%d chars)", task.id, len(result))

        limit = self._config.notify_max_chars
        short = result if len(result) <= limit else result[:limit] + "..."
        await self._notify(task.user_id, f"✅ Task finished!\n\n{short}")

    async def _finish(self, task: BackgroundTask, status: TaskStatus, result: str) -> None:
        task.status = status
        task.result = result
        task.completed_at = datetime.now(UTC).isoformat()
        try:
            await self._db.execute_update(
                "UPDATE background_tasks SET status = ?, result = ?, completed_at = ? "
                "WHERE id = ?",
                (status, result, task.completed_at, task.id),
            )
        except Exception as e:
            logger.error("[bg] Failed to persist task %s outcome: %s", task.id, e)

    async def _notify(self, user_id: str, text: str) -> None:
        if self._notifier is None:
            logger.debug("[bg] No notifier; dropping message for %s", user_id)
            return
        try:
            await self._notifier.push_text(user_id, text)
        except Exception as e:
            logger.warning("[bg] Failed to push result to %s: %s", user_id, e)

    @staticmethod
    def _row_to_task(row: Any) -> BackgroundTask:
        return BackgroundTask(
            id=row["id"],
            label=row["label"],
            task=row["task"],
            user_id=row["user_id"],
            status=TaskStatus(row["status"]),
            result=row["result"],
            model=row["model"],
            timeout_seconds=row["timeout_seconds"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )
