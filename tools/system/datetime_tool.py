"""datetime — current date and time in a timezone."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult, text_arg

DEFAULT_TIMEZONE = "Asia/Bangkok"


class DateTimeTool(BaseTool):
    @property
    def name(self) -> str:
        return "datetime"

    @property
    def description(self) -> str:
        return (
            "Get the current date and time. Use whenever the answer depends on "
            "today's date, the current time, or the day of the week."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "timezone": {
                    "type": "string",
                    "description": "IANA timezone name (default Asia/Bangkok).",
                },
            },
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    @property
    def parallel_safe(self) -> bool:
        return True

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        tz_name = text_arg(params, "timezone") or DEFAULT_TIMEZONE
        try:
            zone = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            return ToolResult.fail("invalid_timezone", f'Unknown timezone "{tz_name}".')

        now = datetime.now(zone)
        return ToolResult.ok(
            datetime=now.isoformat(timespec="seconds"),
            date=now.strftime("%Y-%m-%d"),
            time=now.strftime("%H:%M:%S"),
            dayOfWeek=now.strftime("%A"),
            timezone=tz_name,
            unixTimestamp=int(now.timestamp()),
        )
