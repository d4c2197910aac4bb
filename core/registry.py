"""Tool catalog: the fixed set of tools the model may call.

Tools are registered once at startup, in a stable order, and the catalog
is frozen before the first exchange. Lookups and listings never mutate.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from tools.base import BaseTool


class DuplicateToolError(ValueError):
    """A tool name was registered twice."""


class ToolCatalog:
    """Central, read-only-after-startup registry of tools."""

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._frozen = False

    def register(self, tool: BaseTool) -> None:
        """Register a tool instance. Names must be unique."""
        if self._frozen:
            raise RuntimeError(f"Tool catalog is frozen; cannot register '{tool.name}'")
        if tool.name in self._tools:
            raise DuplicateToolError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def freeze(self) -> None:
        """Forbid further registration."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> BaseTool | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[BaseTool]:
        return iter(list(self._tools.values()))

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        """Provider-neutral declarations, in registration order."""
        return [tool.to_spec() for tool in self._tools.values()]


def build_builtin_catalog() -> ToolCatalog:
    """Instantiate and register all built-in tools, then freeze."""
    from tools.memory.get_tool import MemoryGetTool
    from tools.memory.search_tool import MemorySearchTool
    from tools.messaging.canvas_tool import CanvasTool
    from tools.messaging.message_tool import MessageTool
    from tools.messaging.tts_tool import TTSTool
    from tools.scheduling.cron_tool import CronTool
    from tools.sessions.agents_tool import AgentsListTool
    from tools.sessions.history_tool import SessionsHistoryTool
    from tools.sessions.list_tool import SessionsListTool
    from tools.sessions.send_tool import SessionsSendTool
    from tools.sessions.spawn_tool import SessionsSpawnTool
    from tools.sessions.status_tool import SessionStatusTool
    from tools.sessions.subagents_tool import SubagentsTool
    from tools.system.datetime_tool import DateTimeTool
    from tools.system.gateway_tool import GatewayTool
    from tools.web.fetch_tool import WebFetchTool
    from tools.web.search_tool import WebSearchTool

    catalog = ToolCatalog()

    # Utility tools
    catalog.register(DateTimeTool())
    catalog.register(WebSearchTool())
    catalog.register(WebFetchTool())
    catalog.register(MemorySearchTool())
    catalog.register(MemoryGetTool())
    catalog.register(TTSTool())
    catalog.register(MessageTool())
    catalog.register(CanvasTool())

    # Session tools
    catalog.register(SessionStatusTool())
    catalog.register(SessionsListTool())
    catalog.register(SessionsHistoryTool())
    catalog.register(AgentsListTool())

    # Background work
    catalog.register(CronTool())
    catalog.register(SessionsSpawnTool())
    catalog.register(SubagentsTool())

    # Owner-only
    catalog.register(SessionsSendTool())
    catalog.register(GatewayTool())

    catalog.freeze()
    return catalog
