"""Keyword recall over stored conversation history.

MemoryStore searches one user's persisted messages for the words of a
query and ranks hits by how many query words they contain, newest first
on ties. The agent injects the best hits into the system prompt before
each exchange, and the memory_search / memory_get tools expose the same
store to the model.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from core.database import Database

DEFAULT_MAX_RESULTS = 6
DEFAULT_MIN_SCORE = 0.2
MAX_QUERY_WORDS = 8
SCAN_LIMIT = 200

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def query_words(query: str) -> list[str]:
    """Distinct lowercase words of a query, at most ``MAX_QUERY_WORDS``."""
    words = [w for w in _WORD_RE.findall(query.lower()) if len(w) > 1]
    return list(dict.fromkeys(words))[:MAX_QUERY_WORDS]


@dataclass
class MemoryHit:
    """One recalled message with its relevance score (0-1)."""

    message_id: int
    role: str
    content: str
    created_at: str
    score: float

    def to_dict(self, max_chars: int = 700) -> dict[str, Any]:
        text = self.content
        if len(text) > max_chars:
            text = text[:max_chars] + "..."
        return {
            "score": round(self.score, 3),
            "who": self.role,
            "text": text,
            "date": self.created_at,
        }


class MemoryStore:
    """Per-user keyword search over the ``messages`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def search(
        self,
        user_id: str,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_score: float = DEFAULT_MIN_SCORE,
        skip_recent: int = 0,
    ) -> list[MemoryHit]:
        """Rank the user's messages against ``query``.

        Args:
            skip_recent: Ignore the newest N messages, which the caller
                already has in its history window.
        """
        words = query_words(query)
        if not words:
            return []

        conditions = " OR ".join("LOWER(content) LIKE ?" for _ in words)
        params: list[Any] = [user_id, *(f"%{w}%" for w in words)]
        sql = f"SELECT id, role, content, created_at FROM messages WHERE session_id = ? AND ({conditions})"
        if skip_recent > 0:
            sql += (
                " AND id NOT IN (SELECT id FROM messages WHERE session_id = ? "
                "ORDER BY id DESC LIMIT ?)"
            )
            params.extend([user_id, skip_recent])
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(SCAN_LIMIT)
        rows = await self._db.execute(sql, tuple(params))

        phrase = " ".join(words)
        hits: list[MemoryHit] = []
        for row in rows:
            content = row["content"] or ""
            lowered = content.lower()
            matched = sum(1 for w in words if w in lowered)
            score = matched / len(words)
            if len(words) > 1 and phrase in lowered:
                score = min(1.0, score + 0.1)
            if score >= min_score:
                hits.append(
                    MemoryHit(
                        message_id=row["id"],
                        role=row["role"],
                        content=content,
                        created_at=row["created_at"],
                        score=score,
                    )
                )
        hits.sort(key=lambda h: (h.score, h.message_id), reverse=True)
        return hits[:max_results]

    async def recent(
        self, user_id: str, limit: int = 20, keyword: str = ""
    ) -> list[dict[str, Any]]:
        """Newest ``limit`` messages in chronological order, optionally
        only those containing ``keyword``."""
        if keyword:
            rows = await self._db.execute(
                "SELECT role, content, created_at FROM messages "
                "WHERE session_id = ? AND LOWER(content) LIKE ? ORDER BY id DESC LIMIT ?",
                (user_id, f"%{keyword.lower()}%", limit),
            )
        else:
            rows = await self._db.execute(
                "SELECT role, content, created_at FROM messages "
                "WHERE session_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            )
        return [
            {"role": r["role"], "content": r["content"], "timestamp": r["created_at"]}
            for r in reversed(rows)
        ]


def format_memory_context(hits: list[MemoryHit], max_chars: int = 2000) -> str:
    """Render recalled messages as a system-prompt section ('' when empty)."""
    if not hits:
        return ""
    lines = ["## Relevant Memory", "Earlier messages from this user that may be relevant:"]
    used = 0
    for hit in hits:
        text = hit.content.replace("\n", " ")
        if len(text) > 300:
            text = text[:300] + "..."
        if used + len(text) > max_chars:
            break
        lines.append(f"- [{hit.created_at[:10]} {hit.role}] {text}")
        used += len(text)
    if len(lines) == 2:
        return ""
    return "\n".join(lines)
