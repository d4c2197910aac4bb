"""Per-user conversation history, persisted to SQLite.

Each LINE user id is a session. Messages are append-only rows; the agent
reads back the newest ``max_history`` entries before each exchange.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from core.database import Database

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    """Aggregate view of one user's history."""

    user_id: str
    message_count: int
    user_messages: int
    assistant_messages: int
    first_active: str
    last_active: str
    last_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "messageCount": self.message_count,
            "userMessages": self.user_messages,
            "assistantMessages": self.assistant_messages,
            "lastActive": self.last_active,
            "firstActive": self.first_active,
            "lastMessage": self.last_message,
        }


class SessionStore:
    """Chat history persistence."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def save_message(self, user_id: str, role: str, content: str) -> None:
        """Append one history entry."""
        await self._db.execute_insert(
            "INSERT INTO messages (session_id, role, content, created_at) VALUES (?, ?, ?, ?)",
            (user_id, role, content, datetime.now(UTC).isoformat()),
        )

    async def load_history(self, user_id: str, limit: int = 20) -> list[dict[str, str]]:
        """Newest ``limit`` entries in chronological order, as role/content dicts."""
        rows = await self._db.execute(
            "SELECT role, content FROM messages WHERE session_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        return [{"role": r["role"], "content": r["content"]} for r in reversed(rows)]

    async def history(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Like load_history, with timestamps."""
        rows = await self._db.execute(
            "SELECT role, content, created_at FROM messages WHERE session_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        return [
            {"role": r["role"], "content": r["content"], "timestamp": r["created_at"]}
            for r in reversed(rows)
        ]

    async def list_sessions(self, limit: int = 10) -> list[SessionSummary]:
        """Users with history, most recently active first."""
        rows = await self._db.execute(
            """
            SELECT
                session_id,
                COUNT(*) AS message_count,
                SUM(CASE WHEN role = 'user' THEN 1 ELSE 0 END) AS user_messages,
                SUM(CASE WHEN role = 'assistant' THEN 1 ELSE 0 END) AS assistant_messages,
                MAX(created_at) AS last_active,
                MIN(created_at) AS first_active,
                (SELECT content FROM messages m2 WHERE m2.session_id = messages.session_id
                 ORDER BY m2.id DESC LIMIT 1) AS last_message
            FROM messages
            GROUP BY session_id
            ORDER BY last_active DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [
            SessionSummary(
                user_id=r["session_id"],
                message_count=r["message_count"],
                user_messages=r["user_messages"] or 0,
                assistant_messages=r["assistant_messages"] or 0,
                first_active=r["first_active"],
                last_active=r["last_active"],
                last_message=r["last_message"][:100] if r["last_message"] else None,
            )
            for r in rows
        ]

    async def all_user_ids(self) -> list[str]:
        """Every user that has ever chatted."""
        rows = await self._db.execute("SELECT DISTINCT session_id FROM messages")
        return [r["session_id"] for r in rows]

    async def totals(self) -> tuple[int, int]:
        """(distinct users, total messages)."""
        rows = await self._db.execute(
            "SELECT COUNT(DISTINCT session_id) AS users, COUNT(*) AS msgs FROM messages"
        )
        return rows[0]["users"], rows[0]["msgs"]

    async def user_stats(self, user_id: str) -> tuple[int, str | None]:
        """(message count, last active ISO timestamp) for one user."""
        rows = await self._db.execute(
            "SELECT COUNT(*) AS cnt, MAX(created_at) AS last_active "
            "FROM messages WHERE session_id = ?",
            (user_id,),
        )
        return rows[0]["cnt"], rows[0]["last_active"]
