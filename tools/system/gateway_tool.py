"""gateway — owner-only system management: status, config and logs."""

from __future__ import annotations

import logging
import platform
import time
from typing import Any

from core.log_setup import log_buffer
from tools.base import (
    BaseTool,
    InvocationContext,
    PermissionLevel,
    ToolResult,
    clamp,
    text_arg,
)
from tools.sessions.status_tool import format_uptime

logger = logging.getLogger(__name__)

_ACTIONS = ("status", "config.get", "logs")
_LOG_LEVELS = ("all", "debug", "info", "warning", "error")
_MASK = "***set***"


class GatewayTool(BaseTool):
    """Inspect the running agent. Restricted to configured owners."""

    def __init__(self) -> None:
        self._agent: Any = None
        self._config: Any = None

    @property
    def name(self) -> str:
        return "gateway"

    @property
    def description(self) -> str:
        return (
            "System management tool. Owner-only. Actions: "
            '"status" to show system health (uptime, provider, stats), '
            '"config.get" to view runtime configuration (secrets masked), '
            '"logs" to view recent system logs. '
            "Use when asked about system status, configuration, or admin operations."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": list(_ACTIONS),
                    "description": "Action to perform.",
                },
                "lines": {
                    "type": "number",
                    "description": "Number of log lines to return (default 50, max 500).",
                },
                "level": {
                    "type": "string",
                    "enum": list(_LOG_LEVELS),
                    "description": 'Filter logs by level (default "all").',
                },
            },
            "required": ["action"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.OWNER

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        action = text_arg(params, "action")
        try:
            if action == "status":
                return await self._status()
            if action == "config.get":
                return self._config_get()
            if action == "logs":
                return self._logs(params)
        except Exception as e:
            return ToolResult.fail("action_failed", str(e), action=action)
        return ToolResult.fail(
            "unknown_action",
            f'Unknown action "{action}". Available: {", ".join(_ACTIONS)}.',
        )

    async def _status(self) -> ToolResult:
        if not self._agent:
            return ToolResult.fail("not_available", "Agent not initialized")

        uptime = time.time() - self._agent.started_at
        db_stats: dict[str, int] = {}
        try:
            users, messages = await self._agent.sessions.totals()
            jobs = await self._agent.db.execute("SELECT COUNT(*) AS cnt FROM cron_jobs")
            db_stats = {
                "sessions": users,
                "messages": messages,
                "cronJobs": jobs[0]["cnt"],
                "backgroundTasks": len(self._agent.tasks.running_tasks()),
            }
        except Exception as e:
            logger.warning("[gateway] DB stats unavailable: %s", e)

        llm = self._agent.config.llm
        provider = llm.active_provider() or "none"
        return ToolResult.ok(
            uptime={"seconds": round(uptime), "human": format_uptime(uptime)},
            python=platform.python_version(),
            platform=platform.system().lower(),
            provider=provider,
            model=llm.providers[provider].model if provider in llm.providers else None,
            db=db_stats,
            logBufferSize=len(log_buffer),
        )

    def _config_get(self) -> ToolResult:
        cfg = self._config
        if cfg is None:
            return ToolResult.fail("not_available", "Configuration not loaded")

        providers: dict[str, dict[str, Any]] = {}
        for name, p in cfg.llm.providers.items():
            providers[name] = {
                "enabled": p.enabled,
                "model": p.model,
                "baseUrl": p.base_url,
                "apiKey": _MASK if p.api_key else None,
            }

        config = {
            "agent": {
                "name": cfg.agent.name,
                "maxHistory": cfg.agent.max_history,
                "maxTurns": cfg.agent.max_turns,
                "ownerUserIds": cfg.agent.owner_user_ids,
            },
            "llm": {
                "primary": cfg.llm.active_provider() or None,
                "fallback": cfg.llm.fallback_provider() or None,
                "providers": providers,
            },
            "line": {
                "channelAccessToken": _MASK if cfg.line.channel_access_token else None,
                "publicBaseUrl": cfg.line.public_base_url,
            },
            "database": {"dbPath": cfg.database.db_path},
            "tasks": {
                "maxRunningPerOwner": cfg.tasks.max_running_per_owner,
                "defaultTimeoutSeconds": cfg.tasks.default_timeout_seconds,
            },
            "scheduler": {
                "enabled": cfg.scheduler.enabled,
                "defaultTimezone": cfg.scheduler.default_timezone,
            },
            "web": {
                "searchProvider": cfg.web.search_provider or None,
                "braveApiKey": _MASK if cfg.web.brave_api_key else None,
                "perplexityApiKey": _MASK if cfg.web.perplexity_api_key else None,
                "xaiApiKey": _MASK if cfg.web.xai_api_key else None,
            },
            "tts": {"model": cfg.tts.model, "voice": cfg.tts.voice},
        }
        return ToolResult.ok(config=config)

    def _logs(self, params: dict[str, Any]) -> ToolResult:
        lines = clamp(params.get("lines"), 1, 500, 50)
        level = text_arg(params, "level") or "all"
        if level not in _LOG_LEVELS:
            level = "all"
        entries = log_buffer.tail(lines, level)
        return ToolResult.ok(
            logs=[{"ts": e.ts, "level": e.level, "msg": e.message} for e in entries],
            count=len(entries),
            totalBuffered=len(log_buffer),
            level=level,
        )
