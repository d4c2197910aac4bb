"""Google Gemini adapter (generateContent REST API).

Roles are ``user`` / ``model``; tool calls arrive as ``functionCall`` parts
and results go back as ``functionResponse`` parts inside a user-role
content. Image, video and audio are sent inline. Tools are withheld on
audio/video turns, where Gemini handles multimodal plus tools poorly.
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

_INLINE_PREFIXES = ("image/", "video/", "audio/")


class GeminiAdapter(ProviderAdapter):
    name = "gemini"

    def encode_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not tools:
            return []
        return [
            {
                "functionDeclarations": [
                    {
                        "name": t["name"],
                        "description": t["description"],
                        "parameters": t["parameters"],
                    }
                    for t in tools
                ]
            }
        ]

    def start_conversation(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        message: str,
        media: MediaData | None = None,
    ) -> Conversation:
        contents: list[dict[str, Any]] = [
            {
                "role": "model" if entry["role"] == "assistant" else "user",
                "parts": [{"text": entry["content"]}],
            }
            for entry in history
        ]

        parts: list[dict[str, Any]] = [{"text": message}]
        if media and media.mime_type.startswith(_INLINE_PREFIXES):
            parts.append(
                {
                    "inlineData": {
                        "mimeType": media.mime_type,
                        "data": base64.b64encode(media.data).decode("ascii"),
                    }
                }
            )
        contents.append({"role": "user", "parts": parts})

        return Conversation(
            system_prompt=system_prompt,
            messages=contents,
            has_media=media is not None,
            media_type=media.mime_type if media else "",
        )

    async def send_turn(
        self, conversation: Conversation, tools: list[dict[str, Any]]
    ) -> ModelTurn:
        body: dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": conversation.system_prompt}]},
            "contents": conversation.messages,
            "generationConfig": {"maxOutputTokens": self._config.max_tokens},
        }
        heavy_media = conversation.media_type.startswith(("audio/", "video/"))
        if tools and not heavy_media:
            body["tools"] = tools

        url = f"{self._config.base_url}/models/{self.model}:generateContent"
        data = await self._post_json(url, {"x-goog-api-key": self._config.api_key}, body)

        candidates = data.get("candidates") or []
        if not candidates:
            logger.warning("Gemini returned no candidates")
            return ModelTurn(raw=None, text=NO_RESPONSE)

        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []

        calls = [
            ToolCall(
                name=part["functionCall"].get("name", ""),
                arguments=part["functionCall"].get("args") or {},
            )
            for part in parts
            if isinstance(part.get("functionCall"), dict)
        ]
        text = "\n".join(part["text"] for part in parts if part.get("text"))
        if calls:
            return ModelTurn(raw=parts, calls=calls, commentary=text)
        return ModelTurn(raw=parts, text=text or NO_RESPONSE)

    def append_model_turn(self, conversation: Conversation, turn: ModelTurn) -> None:
        if turn.raw:
            conversation.messages.append({"role": "model", "parts": turn.raw})

    def append_tool_results(
        self, conversation: Conversation, outcomes: list[ToolOutcome]
    ) -> None:
        conversation.messages.append(
            {
                "role": "user",
                "parts": [
                    {
                        "functionResponse": {
                            "name": outcome.call.name,
                            "response": {"result": outcome.result},
                        }
                    }
                    for outcome in outcomes
                ],
            }
        )
