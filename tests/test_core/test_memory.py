"""MemoryStore keyword recall and prompt formatting."""

from __future__ import annotations

import pytest

from core.database import Database
from core.memory import MemoryHit, MemoryStore, format_memory_context, query_words
from core.session import SessionStore


async def _seed(db: Database) -> None:
    store = SessionStore(db)
    await store.save_message("U1", "user", "My cat Mochi likes tuna")
    await store.save_message("U1", "assistant", "Noted, Mochi likes tuna.")
    await store.save_message("U1", "user", "The dentist appointment is on Friday")
    await store.save_message("U1", "user", "What should I cook tonight?")
    await store.save_message("U2", "user", "My cat is called Mochi too")


class TestQueryWords:
    def test_lowercases_and_dedupes(self) -> None:
        assert query_words("Cat cat MOCHI a") == ["cat", "mochi"]

    def test_caps_word_count(self) -> None:
        assert len(query_words(" ".join(f"w{i}" for i in range(20)))) == 8


class TestMemorySearch:
    @pytest.mark.asyncio
    async def test_ranks_by_matched_words(self, db: Database) -> None:
        await _seed(db)
        hits = await MemoryStore(db).search("U1", "mochi tuna")

        assert [h.content for h in hits][:2] == [
            "Noted, Mochi likes tuna.",
            "My cat Mochi likes tuna",
        ]
        assert all(h.score == 1.0 for h in hits[:2])

    @pytest.mark.asyncio
    async def test_scoped_to_user(self, db: Database) -> None:
        await _seed(db)
        hits = await MemoryStore(db).search("U2", "mochi")
        assert [h.content for h in hits] == ["My cat is called Mochi too"]

    @pytest.mark.asyncio
    async def test_min_score_filters_partial_matches(self, db: Database) -> None:
        await _seed(db)
        hits = await MemoryStore(db).search("U1", "dentist tuna mochi friday", min_score=0.6)
        assert hits == []

    @pytest.mark.asyncio
    async def test_skip_recent_excludes_history_window(self, db: Database) -> None:
        await _seed(db)
        memory = MemoryStore(db)

        assert await memory.search("U1", "dentist", skip_recent=2) == []
        hits = await memory.search("U1", "tuna", skip_recent=2)
        assert len(hits) == 2

    @pytest.mark.asyncio
    async def test_empty_query(self, db: Database) -> None:
        await _seed(db)
        assert await MemoryStore(db).search("U1", "  ?! ") == []

    @pytest.mark.asyncio
    async def test_max_results(self, db: Database) -> None:
        await _seed(db)
        assert len(await MemoryStore(db).search("U1", "mochi", max_results=1)) == 1


class TestMemoryRecent:
    @pytest.mark.asyncio
    async def test_chronological_with_limit(self, db: Database) -> None:
        await _seed(db)
        rows = await MemoryStore(db).recent("U1", limit=2)
        assert [r["content"] for r in rows] == [
            "The dentist appointment is on Friday",
            "What should I cook tonight?",
        ]

    @pytest.mark.asyncio
    async def test_keyword_filter(self, db: Database) -> None:
        await _seed(db)
        rows = await MemoryStore(db).recent("U1", keyword="TUNA")
        assert len(rows) == 2
        assert {r["role"] for r in rows} == {"user", "assistant"}


class TestFormatMemoryContext:
    def test_empty(self) -> None:
        assert format_memory_context([]) == ""

    def test_renders_section(self) -> None:
        hit = MemoryHit(1, "user", "line one\nline two", "2026-10-01 10:00:00", 1.0)
        text = format_memory_context([hit])
        assert text.startswith("## Relevant Memory")
        assert "- [2026-10-01 user] line one line two" in text

    def test_respects_char_budget(self) -> None:
        hits = [MemoryHit(i, "user", "x" * 250, "2026-10-01", 1.0) for i in range(5)]
        text = format_memory_context(hits, max_chars=600)
        assert text.count("- [") == 2

    def test_hit_to_dict_truncates(self) -> None:
        hit = MemoryHit(1, "assistant", "y" * 800, "2026-10-01", 0.5)
        data = hit.to_dict()
        assert data["who"] == "assistant"
        assert data["text"].endswith("...")
        assert len(data["text"]) == 703
