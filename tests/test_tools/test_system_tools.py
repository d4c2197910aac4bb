"""datetime and gateway tool tests."""

from __future__ import annotations

import json
import logging

import pytest

from core.agent import Agent
from core.config import Config
from core.executor import ToolInvoker
from core.log_setup import log_buffer
from tools.base import InvocationContext
from tools.system.datetime_tool import DateTimeTool
from tools.system.gateway_tool import GatewayTool


class TestDateTimeTool:
    @pytest.mark.asyncio
    async def test_default_timezone(self, context: InvocationContext) -> None:
        result = await DateTimeTool().execute({}, context)
        assert result.data["timezone"] == "Asia/Bangkok"
        assert result.data["datetime"].endswith("+07:00")
        assert len(result.data["date"]) == 10
        assert isinstance(result.data["unixTimestamp"], int)

    @pytest.mark.asyncio
    async def test_explicit_timezone(self, context: InvocationContext) -> None:
        result = await DateTimeTool().execute({"timezone": "UTC"}, context)
        assert result.data["datetime"].endswith("+00:00")
        assert result.data["dayOfWeek"] in (
            "Monday",
            "Tuesday",
            "Wednesday",
            "Thursday",
            "Friday",
            "Saturday",
            "Sunday",
        )

    @pytest.mark.asyncio
    async def test_unknown_timezone(self, context: InvocationContext) -> None:
        result = await DateTimeTool().execute({"timezone": "Mars/Olympus"}, context)
        assert result.error == "invalid_timezone"


class TestGatewayTool:
    @pytest.mark.asyncio
    async def test_owner_only(self, test_config: Config) -> None:
        test_config.agent.owner_user_ids = ["OWNER"]
        agent = Agent(test_config)
        await agent.initialize()
        try:
            invoker = ToolInvoker(agent.catalog, test_config.is_owner)
            denied = json.loads(
                await invoker.execute(
                    "gateway", {"action": "status"}, InvocationContext(caller_id="U1")
                )
            )
            assert denied["error"] == "forbidden"

            allowed = json.loads(
                await invoker.execute(
                    "gateway", {"action": "status"}, InvocationContext(caller_id="OWNER")
                )
            )
            assert allowed["success"] is True
            assert allowed["provider"] == "gemini"
            assert allowed["model"] == "gemini-test"
            assert allowed["db"]["cronJobs"] == 0
        finally:
            await agent.shutdown()

    @pytest.mark.asyncio
    async def test_config_get_masks_secrets(
        self, agent: Agent, context: InvocationContext
    ) -> None:
        agent.config.web.brave_api_key = "brave-secret"
        result = await agent.catalog.get("gateway").execute({"action": "config.get"}, context)

        config = result.data["config"]
        assert config["llm"]["providers"]["gemini"]["apiKey"] == "***set***"
        assert config["web"]["braveApiKey"] == "***set***"
        assert config["line"]["channelAccessToken"] is None
        assert config["agent"]["name"] == "TestClaw"
        assert "test-gemini-key" not in json.dumps(result.to_dict())
        assert "brave-secret" not in json.dumps(result.to_dict())

    @pytest.mark.asyncio
    async def test_logs_filtered_by_level(self, context: InvocationContext) -> None:
        record = logging.LogRecord(
            "test", logging.ERROR, __file__, 1, "gateway log marker", None, None
        )
        log_buffer.emit(record)

        result = await GatewayTool().execute(
            {"action": "logs", "level": "error", "lines": 500}, context
        )
        assert result.data["level"] == "error"
        assert all(entry["level"] == "error" for entry in result.data["logs"])
        assert result.data["logs"][-1]["msg"] == "gateway log marker"

    @pytest.mark.asyncio
    async def test_invalid_level_means_all(self, context: InvocationContext) -> None:
        result = await GatewayTool().execute({"action": "logs", "level": "loud"}, context)
        assert result.data["level"] == "all"

    @pytest.mark.asyncio
    async def test_status_without_agent(self, context: InvocationContext) -> None:
        result = await GatewayTool().execute({"action": "status"}, context)
        assert result.error == "not_available"

    @pytest.mark.asyncio
    async def test_unknown_action(self, context: InvocationContext) -> None:
        result = await GatewayTool().execute({"action": "restart"}, context)
        assert result.error == "unknown_action"
