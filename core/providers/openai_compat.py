"""OpenAI-compatible chat completions adapter (Ollama).

Text only. Tool calls come back in ``message.tool_calls`` with JSON-string
arguments; results go back as ``role: tool`` messages keyed by
``tool_call_id``. Some local models write the call into ``content``
instead, so this adapter opts into embedded-call parsing.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from core.providers.base import (
    NO_RESPONSE,
    Conversation,
    MediaData,
    ModelTurn,
    ProviderAdapter,
    ToolCall,
    ToolOutcome,
)

logger = logging.getLogger(__name__)


class OpenAICompatAdapter(ProviderAdapter):
    name = "ollama"
    parses_embedded_calls = True

    def encode_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t["description"],
                    "parameters": t["parameters"],
                },
            }
            for t in tools
        ]

    def start_conversation(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        message: str,
        media: MediaData | None = None,
    ) -> Conversation:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": e["role"], "content": e["content"]} for e in history)
        messages.append({"role": "user", "content": message})
        return Conversation(
            system_prompt=system_prompt,
            messages=messages,
            has_media=media is not None,
            media_type=media.mime_type if media else "",
        )

    async def send_turn(
        self, conversation: Conversation, tools: list[dict[str, Any]]
    ) -> ModelTurn:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": conversation.messages,
            "max_tokens": self._config.max_tokens,
            "stream": False,
        }
        if tools:
            body["tools"] = tools

        headers: dict[str, str] = {}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"

        url = f"{self._config.base_url.rstrip('/')}/v1/chat/completions"
        data = await self._post_json(url, headers, body)

        choices = data.get("choices") or []
        if not choices:
            logger.warning("Ollama returned no choices: %s", json.dumps(data)[:500])
            return ModelTurn(raw=None, text=NO_RESPONSE)

        choice = choices[0]
        message = choice.get("message") or {}
        raw_calls = message.get("tool_calls") or []
        logger.debug(
            "[ollama] finish=%s content=%s tool_calls=%d",
            choice.get("finish_reason"),
            (message.get("content") or "")[:100],
            len(raw_calls),
        )

        calls: list[ToolCall] = []
        for tc in raw_calls:
            function = tc.get("function") or {}
            arguments = function.get("arguments") or {}
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments) if arguments.strip() else {}
                except json.JSONDecodeError:
                    logger.warning("Unparseable tool arguments for %s", function.get("name"))
            calls.append(
                ToolCall(
                    name=function.get("name", ""),
                    arguments=arguments,
                    call_id=tc.get("id", ""),
                )
            )

        if calls:
            return ModelTurn(raw=message, calls=calls, commentary=message.get("content") or "")
        return ModelTurn(raw=message, text=message.get("content") or NO_RESPONSE)

    def append_model_turn(self, conversation: Conversation, turn: ModelTurn) -> None:
        if turn.raw:
            conversation.messages.append(turn.raw)

    def append_tool_results(
        self, conversation: Conversation, outcomes: list[ToolOutcome]
    ) -> None:
        for outcome in outcomes:
            conversation.messages.append(
                {
                    "role": "tool",
                    "content": outcome.result,
                    "tool_call_id": outcome.call.call_id,
                }
            )
