"""Anthropic Messages API adapter.

The reply is a list of content blocks; ``stop_reason == "tool_use"`` marks
a turn whose ``tool_use`` blocks must be answered with ``tool_result``
blocks in the next user message. Images are sent as base64 blocks.
"""

from __future__ import annotations

import base64
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

ANTHROPIC_VERSION = "2023-06-01"
_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}


class AnthropicAdapter(ProviderAdapter):
    name = "anthropic"

    def encode_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "name": t["name"],
                "description": t["description"],
                "input_schema": t["parameters"],
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
        messages: list[dict[str, Any]] = [
            {"role": e["role"], "content": e["content"]} for e in history
        ]
        if media and media.mime_type in _IMAGE_TYPES:
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": media.mime_type,
                                "data": base64.b64encode(media.data).decode("ascii"),
                            },
                        },
                        {"type": "text", "text": message},
                    ],
                }
            )
        else:
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
            "max_tokens": self._config.max_tokens,
            "system": conversation.system_prompt,
            "messages": conversation.messages,
        }
        if tools:
            body["tools"] = tools

        headers = {
            "x-api-key": self._config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        url = f"{self._config.base_url.rstrip('/')}/v1/messages"
        data = await self._post_json(url, headers, body)

        blocks = data.get("content") or []
        if not blocks:
            return ModelTurn(raw=None, text=NO_RESPONSE)

        text = "\n".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        if data.get("stop_reason") == "tool_use":
            calls = [
                ToolCall(
                    name=block.get("name", ""),
                    arguments=block.get("input") or {},
                    call_id=block.get("id", ""),
                )
                for block in blocks
                if block.get("type") == "tool_use"
            ]
            if calls:
                return ModelTurn(raw=blocks, calls=calls, commentary=text)

        return ModelTurn(raw=blocks, text=text or NO_RESPONSE)

    def append_model_turn(self, conversation: Conversation, turn: ModelTurn) -> None:
        if turn.raw:
            conversation.messages.append({"role": "assistant", "content": turn.raw})

    def append_tool_results(
        self, conversation: Conversation, outcomes: list[ToolOutcome]
    ) -> None:
        conversation.messages.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": outcome.call.call_id,
                        "content": outcome.result,
                    }
                    for outcome in outcomes
                ],
            }
        )
