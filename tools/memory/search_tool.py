"""memory_search — keyword recall over the current user's past messages."""

from __future__ import annotations

import logging
from typing import Any

from core.memory import DEFAULT_MAX_RESULTS, DEFAULT_MIN_SCORE
from tools.base import (
    BaseTool,
    InvocationContext,
    PermissionLevel,
    ToolResult,
    clamp,
    text_arg,
)

logger = logging.getLogger(__name__)

MAX_RESULTS = 20


class MemorySearchTool(BaseTool):
    def __init__(self) -> None:
        self._memory: Any = None

    @property
    def name(self) -> str:
        return "memory_search"

    @property
    def description(self) -> str:
        return (
            "Recall step: search past conversations with this user before answering "
            "questions about prior discussions, decisions, dates, people, preferences "
            "or todos. Returns matching message snippets ranked by relevance."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to look for in memory."},
                "maxResults": {
                    "type": "number",
                    "description": f"Maximum results (1-{MAX_RESULTS}). Default: {DEFAULT_MAX_RESULTS}.",
                },
                "minScore": {
                    "type": "number",
                    "description": "Minimum relevance score (0-1). Default: 0.2.",
                },
            },
            "required": ["query"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    @property
    def parallel_safe(self) -> bool:
        return True

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        query = text_arg(params, "query")
        if not query:
            return ToolResult.fail("missing_query", "query is required")
        if not context.caller_id:
            return ToolResult.fail("missing_context", "userId is required for memory search")
        if self._memory is None:
            return ToolResult.fail("not_available", "Memory store not initialized")

        max_results = clamp(params.get("maxResults"), 1, MAX_RESULTS, DEFAULT_MAX_RESULTS)
        raw_score = params.get("minScore")
        min_score = DEFAULT_MIN_SCORE
        if isinstance(raw_score, (int, float)) and not isinstance(raw_score, bool):
            min_score = max(0.0, min(1.0, float(raw_score)))

        try:
            hits = await self._memory.search(
                context.caller_id, query, max_results=max_results, min_score=min_score
            )
        except Exception as e:
            logger.error("[memory_search] %s", e)
            return ToolResult.fail("search_failed", str(e), query=query)

        if not hits:
            return ToolResult.ok(query=query, results=[], message="No relevant memories found.")
        results = [{"index": i, **hit.to_dict()} for i, hit in enumerate(hits, 1)]
        return ToolResult.ok(
            query=query, resultCount=len(results), searchMode="keyword", results=results
        )
