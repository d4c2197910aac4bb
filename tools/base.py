"""Tool base class and interface definition.

Every tool in MyClaw inherits from BaseTool and implements the required
interface. Tools receive the arguments chosen by the model plus the
InvocationContext of the user turn that triggered them, and always report
back through a ToolResult.
"""

from __future__ import annotations

import abc
import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from channels.base import Notifier


class PermissionLevel(StrEnum):
    SAFE = "safe"
    OWNER = "owner"


@dataclass
class InvocationContext:
    """Per-turn context shared by every tool call of one exchange."""

    caller_id: str
    notifier: Notifier | None = None


@dataclass
class ToolResult:
    """Standardized result from tool execution."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    message: str = ""

    @classmethod
    def ok(cls, **data: Any) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, message: str, **data: Any) -> ToolResult:
        return cls(success=False, data=data, error=error, message=message)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            result: dict[str, Any] = {"success": True}
            result.update(self.data)
            return result
        result = {"error": self.error or "error", "message": self.message}
        result.update(self.data)
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


class BaseTool(abc.ABC):
    """Abstract base class for all MyClaw tools."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Unique snake_case identifier."""
        ...

    @property
    @abc.abstractmethod
    def description(self) -> str:
        """Natural language description for LLM tool selection."""
        ...

    @property
    @abc.abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema for input parameters."""
        ...

    @property
    def permission_level(self) -> PermissionLevel:
        """Permission tier for this tool."""
        return PermissionLevel.SAFE

    @property
    def parallel_safe(self) -> bool:
        """Whether calls may run concurrently with other parallel-safe calls."""
        return False

    @abc.abstractmethod
    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        """Execute the tool with validated parameters."""
        ...

    def validate_input(self, params: dict[str, Any]) -> list[str]:
        """Validate input against schema. Returns list of errors (empty = valid)."""
        errors: list[str] = []
        schema = self.input_schema
        required = schema.get("required", [])
        properties = schema.get("properties", {})

        for req_field in required:
            if req_field not in params:
                errors.append(f"Missing required field: {req_field}")

        for param_name, value in params.items():
            if param_name in properties and value is not None:
                expected_type = properties[param_name].get("type")
                if expected_type and not _check_type(value, expected_type):
                    errors.append(
                        f"Field '{param_name}' expected type '{expected_type}', "
                        f"got '{type(value).__name__}'"
                    )

        return errors

    def to_spec(self) -> dict[str, Any]:
        """Provider-neutral declaration: name, description, parameter schema."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_schema,
        }


def _check_type(value: Any, expected: str) -> bool:
    """Check if a value matches the expected JSON Schema type."""
    type_map: dict[str, type | tuple[type, ...]] = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }
    expected_types = type_map.get(expected)
    if expected_types is None:
        return True
    if expected in ("integer", "number") and isinstance(value, bool):
        return False
    return isinstance(value, expected_types)


def clamp(value: Any, low: int, high: int, default: int) -> int:
    """Clamp a numeric argument into [low, high], or return default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(max(low, min(high, value)))


def text_arg(params: dict[str, Any], key: str) -> str:
    """Return a stripped string argument, or '' when absent or not a string."""
    value = params.get(key)
    return value.strip() if isinstance(value, str) else ""
