"""Tool invocation: dispatch one named call and contain its failures.

The invoker always resolves to a JSON string. Unknown tools, malformed
arguments, owner-only refusals and handler exceptions all come back as
``{"error": kind, "message": ...}`` payloads so the agent loop can treat
every tool call the same way.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from core.registry import ToolCatalog
from tools.base import InvocationContext, PermissionLevel, ToolResult

logger = logging.getLogger(__name__)


def _error(kind: str, message: str) -> str:
    return ToolResult.fail(kind, message).to_json()


class ToolInvoker:
    """Executes tool calls against a catalog."""

    def __init__(
        self,
        catalog: ToolCatalog,
        is_owner: Callable[[str], bool] | None = None,
    ) -> None:
        self._catalog = catalog
        self._is_owner = is_owner or (lambda _user_id: True)

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any] | str | None,
        context: InvocationContext,
    ) -> str:
        """Execute one tool call. Never raises for tool-level failures."""
        tool = self._catalog.get(name)
        if tool is None:
            logger.warning("Unknown tool requested: %s", name)
            return _error("tool_not_found", f'Tool "{name}" not found')

        if isinstance(arguments, str):
            try:
                params = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as e:
                return _error("invalid_arguments", f"Invalid tool arguments: {e}")
        else:
            params = arguments or {}
        if not isinstance(params, dict):
            return _error("invalid_arguments", "Tool arguments must be a JSON object")

        errors = tool.validate_input(params)
        if errors:
            return _error("invalid_arguments", "; ".join(errors))

        if tool.permission_level == PermissionLevel.OWNER and not self._is_owner(
            context.caller_id
        ):
            logger.info("Tool '%s' refused for non-owner %s", name, context.caller_id)
            return _error("forbidden", f"{name} is restricted to the bot owner.")

        logger.info("[tool] %s(%s)", name, json.dumps(params, ensure_ascii=False)[:200])
        try:
            result = await tool.execute(params, context)
        except Exception as e:
            logger.error("Tool '%s' raised: %s", name, e, exc_info=True)
            return _error("tool_failed", f"Error executing {name}: {e}")

        return result.to_json()
