"""Provider adapter interface.

Each LLM backend speaks its own function-calling dialect. An adapter turns
the uniform tool catalog into that dialect, sends one model turn, lifts the
reply back into uniform ToolCall records, and appends model turns and tool
results to the provider-native conversation it owns.

The agent loop only ever talks to this interface; it never branches on
which backend is active.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Container
from dataclasses import dataclass, field
from typing import Any

import httpx

from core.config import ProviderConfig

logger = logging.getLogger(__name__)

NO_RESPONSE = "(no response)"

_JSON_DECODER = json.JSONDecoder()


class ProviderError(RuntimeError):
    """Transport-level failure talking to an LLM backend."""

    def __init__(self, provider: str, status: int | None, body: str) -> None:
        self.provider = provider
        self.status = status
        self.body = body
        label = f"{status} " if status is not None else ""
        super().__init__(f"{provider} API error: {label}{body[:500]}")


@dataclass
class MediaData:
    """Binary media attached to an inbound user turn."""

    mime_type: str
    data: bytes

    @property
    def kind(self) -> str:
        """Image / Video / Audio / Media, from the MIME prefix."""
        for prefix, label in (("image/", "Image"), ("video/", "Video"), ("audio/", "Audio")):
            if self.mime_type.startswith(prefix):
                return label
        return "Media"

    @property
    def is_audio_or_video(self) -> bool:
        return self.mime_type.startswith(("audio/", "video/"))


@dataclass
class ToolCall:
    """One uniform tool call request lifted from a model turn."""

    name: str
    arguments: dict[str, Any] | str
    call_id: str = ""


@dataclass
class ToolOutcome:
    """A tool call paired with the string its invocation returned."""

    call: ToolCall
    result: str


@dataclass
class ModelTurn:
    """Result of one send_turn.

    Exactly one of ``calls`` (non-empty) or ``text`` is meaningful: when
    calls are present the loop executes them, otherwise ``text`` is final.
    ``commentary`` is any prose the model wrote alongside its calls.
    """

    raw: Any
    calls: list[ToolCall] = field(default_factory=list)
    text: str | None = None
    commentary: str = ""

    @property
    def wants_tools(self) -> bool:
        return bool(self.calls)


@dataclass
class Conversation:
    """Provider-native conversation state for one exchange. Append-only."""

    system_prompt: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    has_media: bool = False
    media_type: str = ""


def parse_embedded_call(text: str, known_tools: Container[str]) -> ToolCall | None:
    """Best-effort recovery of a tool call written into free text.

    Only accepted when the JSON arguments parse and the name is a
    registered tool.
    """
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = _JSON_DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict) and isinstance(obj.get("name"), str) and "arguments" in obj:
            name, args = obj["name"], obj["arguments"]
            if isinstance(args, dict) and name in known_tools:
                return ToolCall(
                    name=name, arguments=args, call_id=f"fallback-{int(time.time() * 1000)}"
                )
            return None
        start = text.find("{", start + 1)
    return None


class ProviderAdapter(ABC):
    """Translation layer between the agent loop and one LLM backend."""

    name: str = "base"
    # Only backends observed to leak calls into text opt in
    parses_embedded_calls: bool = False

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client = client

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def label(self) -> str:
        return f"{self.name} ({self.model})"

    @abstractmethod
    def encode_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert catalog declarations (name/description/parameters) to native form."""
        ...

    @abstractmethod
    def start_conversation(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        message: str,
        media: MediaData | None = None,
    ) -> Conversation:
        """Build the initial native conversation from history and the new message."""
        ...

    @abstractmethod
    async def send_turn(
        self, conversation: Conversation, tools: list[dict[str, Any]]
    ) -> ModelTurn:
        """Request the next model turn. Raises ProviderError on transport failure."""
        ...

    @abstractmethod
    def append_model_turn(self, conversation: Conversation, turn: ModelTurn) -> None:
        """Append the raw model turn to the conversation."""
        ...

    @abstractmethod
    def append_tool_results(
        self, conversation: Conversation, outcomes: list[ToolOutcome]
    ) -> None:
        """Append tool results, in call order, to the conversation."""
        ...

    def try_parse_embedded_call(
        self, text: str, known_tools: Container[str]
    ) -> ToolCall | None:
        """Secondary path for backends that write tool calls as plain text."""
        if not self.parses_embedded_calls:
            return None
        call = parse_embedded_call(text, known_tools)
        if call:
            logger.info("[%s] text-fallback tool call: %s", self.name, call.name)
        return call

    async def _post_json(
        self, url: str, headers: dict[str, str], payload: dict[str, Any]
    ) -> dict[str, Any]:
        """POST a JSON body and return the decoded response, or raise ProviderError."""
        headers = {"Content-Type": "application/json", **headers}
        try:
            if self._client is not None:
                response = await self._client.post(url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                    response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, None, f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            logger.error("%s API error %s: %s", self.name, response.status_code, response.text[:300])
            raise ProviderError(self.name, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(self.name, response.status_code, "Invalid JSON response") from e
        return data if isinstance(data, dict) else {}


def trim_history(history: list[dict[str, str]], max_entries: int) -> list[dict[str, str]]:
    """Keep the newest entries, leaving room for the incoming user message."""
    keep = max(max_entries - 1, 0)
    return history[-keep:] if keep else []
