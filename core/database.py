"""SQLite database manager.

Provides async-wrapped access to SQLite for chat history, background
tasks and scheduled jobs. Uses asyncio.to_thread() around stdlib
sqlite3 calls.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Schema DDL
_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_messages_session
        ON messages(session_id, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS background_tasks (
        id TEXT PRIMARY KEY,
        label TEXT NOT NULL,
        task TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'running',
        result TEXT,
        model TEXT,
        user_id TEXT NOT NULL,
        timeout_seconds INTEGER NOT NULL DEFAULT 120,
        created_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cron_jobs (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        schedule TEXT NOT NULL,
        schedule_type TEXT NOT NULL DEFAULT 'cron',
        message TEXT NOT NULL,
        target_user_id TEXT NOT NULL,
        timezone TEXT NOT NULL DEFAULT 'Asia/Bangkok',
        enabled INTEGER NOT NULL DEFAULT 1,
        delete_after_run INTEGER NOT NULL DEFAULT 0,
        run_count INTEGER NOT NULL DEFAULT 0,
        last_run_at TEXT,
        last_status TEXT,
        last_error TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cron_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id TEXT NOT NULL,
        job_name TEXT NOT NULL,
        status TEXT NOT NULL,
        error TEXT,
        started_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_cron_runs_job
        ON cron_runs(job_id, started_at)
    """,
]


class Database:
    """Async wrapper around a single SQLite connection."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Create the database file and tables."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self._init_sync)

    def _init_sync(self) -> None:
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        for ddl in _SCHEMA:
            self._conn.execute(ddl)
        self._conn.commit()
        logger.debug("Database ready at %s", self._db_path)

    async def execute(
        self, sql: str, params: tuple[Any, ...] | list[Any] = ()
    ) -> list[sqlite3.Row]:
        """Execute a query and return all rows."""

        def _exec() -> list[sqlite3.Row]:
            assert self._conn is not None
            cursor = self._conn.execute(sql, params)
            return cursor.fetchall()

        return await asyncio.to_thread(_exec)

    async def execute_insert(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> int:
        """Execute a write statement, commit, and return the last row id."""

        def _exec() -> int:
            assert self._conn is not None
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor.lastrowid or 0

        return await asyncio.to_thread(_exec)

    async def execute_update(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> int:
        """Execute an UPDATE/DELETE, commit, and return the affected row count."""

        def _exec() -> int:
            assert self._conn is not None
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor.rowcount

        return await asyncio.to_thread(_exec)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:

            def _close() -> None:
                assert self._conn is not None
                self._conn.close()

            await asyncio.to_thread(_close)
            self._conn = None
