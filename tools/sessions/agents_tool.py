"""agents_list — configured AI providers and what this agent can do."""

from __future__ import annotations

from typing import Any

from core.config import PROVIDER_ORDER
from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult
from tools.web.search_tool import resolve_search_key, resolve_search_provider


class AgentsListTool(BaseTool):
    """List providers with active / available / not_configured status."""

    def __init__(self) -> None:
        self._config: Any = None
        self._catalog: Any = None

    @property
    def name(self) -> str:
        return "agents_list"

    @property
    def description(self) -> str:
        return (
            "List available AI providers and their configuration. Shows which "
            "provider is active, models configured, and available tools. Use when "
            "the user asks about AI capabilities, which model is being used, or "
            "what tools are available."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    @property
    def parallel_safe(self) -> bool:
        return True

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        if not self._config:
            return ToolResult.fail("not_available", "Configuration not loaded")

        llm = self._config.llm
        active = llm.active_provider() or "none"
        enabled = set(llm.enabled_providers())

        providers = []
        for name in PROVIDER_ORDER:
            cfg = llm.providers.get(name)
            if name not in enabled:
                status = "not_configured"
            elif name == active:
                status = "active"
            else:
                status = "available"
            providers.append(
                {"name": name, "status": status, "model": cfg.model if cfg else "(not set)"}
            )

        tools = self._catalog.names() if self._catalog is not None else []
        gemini_ready = "gemini" in enabled
        search = resolve_search_provider(self._config)
        if not resolve_search_key(self._config, search):
            search = "none"
        return ToolResult.ok(
            activeProvider=active,
            fallbackProvider=llm.fallback_provider() or None,
            providers=providers,
            searchProvider=search,
            tts={"available": gemini_ready, "model": self._config.tts.model},
            tools=tools,
            toolCount=len(tools),
        )
