"""Provider adapter tests against mocked HTTP transports."""

from __future__ import annotations

import base64
import json
from typing import Any

import httpx
import pytest

from core.config import ProviderConfig
from core.providers.anthropic import AnthropicAdapter
from core.providers.base import (
    MediaData,
    ProviderError,
    ToolCall,
    ToolOutcome,
    parse_embedded_call,
    trim_history,
)
from core.providers.gemini import GeminiAdapter
from core.providers.openai_compat import OpenAICompatAdapter

_TOOLS = [
    {
        "name": "datetime",
        "description": "Current time.",
        "parameters": {"type": "object", "properties": {"timezone": {"type": "string"}}},
    }
]


def _client(handler: Any, seen: list[httpx.Request]) -> httpx.AsyncClient:
    def _wrapped(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(_wrapped))


def _provider(name: str) -> ProviderConfig:
    base_urls = {
        "gemini": "https://gemini.test/v1beta",
        "ollama": "http://ollama.test",
        "anthropic": "https://anthropic.test",
    }
    return ProviderConfig(
        api_key="key-123", enabled=True, base_url=base_urls[name], model=f"{name}-model"
    )


class TestGeminiAdapter:
    def test_encode_tools(self) -> None:
        adapter = GeminiAdapter(_provider("gemini"))
        encoded = adapter.encode_tools(_TOOLS)
        assert encoded[0]["functionDeclarations"][0]["name"] == "datetime"
        assert adapter.encode_tools([]) == []

    def test_history_roles_and_inline_media(self) -> None:
        adapter = GeminiAdapter(_provider("gemini"))
        media = MediaData(mime_type="image/png", data=b"\x89PNG")
        conv = adapter.start_conversation(
            "sys",
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
            "what is this?",
            media,
        )
        assert [m["role"] for m in conv.messages] == ["user", "model", "user"]
        last_parts = conv.messages[-1]["parts"]
        assert last_parts[0] == {"text": "what is this?"}
        assert last_parts[1]["inlineData"]["data"] == base64.b64encode(b"\x89PNG").decode()
        assert conv.has_media

    @pytest.mark.asyncio
    async def test_function_call_turn(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {
                                "parts": [
                                    {"text": "Checking the time."},
                                    {"functionCall": {"name": "datetime", "args": {"timezone": "UTC"}}},
                                ]
                            }
                        }
                    ]
                },
            )

        adapter = GeminiAdapter(_provider("gemini"), _client(handler, seen))
        conv = adapter.start_conversation("sys", [], "time?")
        turn = await adapter.send_turn(conv, adapter.encode_tools(_TOOLS))

        assert turn.wants_tools
        assert turn.calls[0].name == "datetime"
        assert turn.calls[0].arguments == {"timezone": "UTC"}
        assert turn.commentary == "Checking the time."

        request = seen[0]
        assert request.url.path == "/v1beta/models/gemini-model:generateContent"
        assert request.headers["x-goog-api-key"] == "key-123"
        body = json.loads(request.content)
        assert body["systemInstruction"]["parts"][0]["text"] == "sys"
        assert "tools" in body

    @pytest.mark.asyncio
    async def test_tools_withheld_for_audio(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"candidates": [{"content": {"parts": [{"text": "A song."}]}}]}
            )

        adapter = GeminiAdapter(_provider("gemini"), _client(handler, seen))
        media = MediaData(mime_type="audio/m4a", data=b"abc")
        conv = adapter.start_conversation("sys", [], "listen", media)
        turn = await adapter.send_turn(conv, adapter.encode_tools(_TOOLS))

        assert turn.text == "A song."
        assert "tools" not in json.loads(seen[0].content)

    @pytest.mark.asyncio
    async def test_no_candidates_gives_placeholder(self) -> None:
        adapter = GeminiAdapter(
            _provider("gemini"), _client(lambda r: httpx.Response(200, json={}), [])
        )
        turn = await adapter.send_turn(adapter.start_conversation("s", [], "x"), [])
        assert turn.text == "(no response)"
        assert not turn.wants_tools

    @pytest.mark.asyncio
    async def test_http_error_raises_provider_error(self) -> None:
        adapter = GeminiAdapter(
            _provider("gemini"),
            _client(lambda r: httpx.Response(429, text="RESOURCE_EXHAUSTED"), []),
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.send_turn(adapter.start_conversation("s", [], "x"), [])
        assert exc_info.value.status == 429
        assert "RESOURCE_EXHAUSTED" in str(exc_info.value)

    def test_tool_results_as_function_responses(self) -> None:
        adapter = GeminiAdapter(_provider("gemini"))
        conv = adapter.start_conversation("s", [], "x")
        outcomes = [
            ToolOutcome(ToolCall("a", {}), '{"success": true}'),
            ToolOutcome(ToolCall("b", {}), '{"error": "x", "message": "y"}'),
        ]
        adapter.append_tool_results(conv, outcomes)
        parts = conv.messages[-1]["parts"]
        assert conv.messages[-1]["role"] == "user"
        assert [p["functionResponse"]["name"] for p in parts] == ["a", "b"]
        assert parts[0]["functionResponse"]["response"] == {"result": '{"success": true}'}


class TestOpenAICompatAdapter:
    @pytest.mark.asyncio
    async def test_tool_calls_with_string_arguments(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "choices": [
                        {
                            "finish_reason": "tool_calls",
                            "message": {
                                "role": "assistant",
                                "content": "",
                                "tool_calls": [
                                    {
                                        "id": "call_1",
                                        "function": {
                                            "name": "datetime",
                                            "arguments": '{"timezone": "Asia/Tokyo"}',
                                        },
                                    }
                                ],
                            },
                        }
                    ]
                },
            )

        adapter = OpenAICompatAdapter(_provider("ollama"), _client(handler, seen))
        conv = adapter.start_conversation("sys", [{"role": "user", "content": "a"}], "time?")
        assert conv.messages[0] == {"role": "system", "content": "sys"}

        turn = await adapter.send_turn(conv, adapter.encode_tools(_TOOLS))
        assert turn.calls[0].arguments == {"timezone": "Asia/Tokyo"}
        assert turn.calls[0].call_id == "call_1"
        assert seen[0].url.path == "/v1/chat/completions"
        assert json.loads(seen[0].content)["tools"][0]["function"]["name"] == "datetime"

        adapter.append_model_turn(conv, turn)
        adapter.append_tool_results(conv, [ToolOutcome(turn.calls[0], "{}")])
        assert conv.messages[-1] == {"role": "tool", "content": "{}", "tool_call_id": "call_1"}

    def test_embedded_call_parsing_is_opt_in(self) -> None:
        text = 'Sure: {"name": "datetime", "arguments": {"timezone": "UTC"}}'
        ollama = OpenAICompatAdapter(_provider("ollama"))
        gemini = GeminiAdapter(_provider("gemini"))

        call = ollama.try_parse_embedded_call(text, {"datetime"})
        assert call is not None
        assert call.name == "datetime"
        assert call.arguments == {"timezone": "UTC"}
        assert gemini.try_parse_embedded_call(text, {"datetime"}) is None

    def test_embedded_call_requires_known_tool(self) -> None:
        text = '{"name": "rm_rf", "arguments": {}}'
        assert parse_embedded_call(text, {"datetime"}) is None
        assert parse_embedded_call("no json here", {"datetime"}) is None

    def test_embedded_call_with_nested_arguments(self) -> None:
        text = (
            "I will schedule it. "
            '{"name": "cron", "arguments": {"action": "add", '
            '"job": {"schedule": {"kind": "every", "everyMs": 60000}, "message": "hi {there}"}}}'
            " Done."
        )
        call = parse_embedded_call(text, {"cron"})
        assert call is not None
        assert call.name == "cron"
        assert call.arguments == {
            "action": "add",
            "job": {"schedule": {"kind": "every", "everyMs": 60000}, "message": "hi {there}"},
        }

    def test_embedded_call_skips_unrelated_json(self) -> None:
        text = 'Config is {"a": 1}, so: {"name": "datetime", "arguments": {}}'
        call = parse_embedded_call(text, {"datetime"})
        assert call is not None
        assert call.arguments == {}
        assert parse_embedded_call('{"name": "datetime", "arguments": {broken', {"datetime"}) is None


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_tool_use_turn(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "stop_reason": "tool_use",
                    "content": [
                        {"type": "text", "text": "Let me check."},
                        {"type": "tool_use", "id": "tu_1", "name": "datetime", "input": {}},
                    ],
                },
            )

        adapter = AnthropicAdapter(_provider("anthropic"), _client(handler, seen))
        conv = adapter.start_conversation("sys", [], "time?")
        turn = await adapter.send_turn(conv, adapter.encode_tools(_TOOLS))

        assert turn.calls[0].call_id == "tu_1"
        assert turn.commentary == "Let me check."
        assert seen[0].headers["x-api-key"] == "key-123"
        assert seen[0].headers["anthropic-version"] == "2023-06-01"
        body = json.loads(seen[0].content)
        assert body["system"] == "sys"
        assert body["tools"][0]["input_schema"]["type"] == "object"

        adapter.append_model_turn(conv, turn)
        adapter.append_tool_results(conv, [ToolOutcome(turn.calls[0], '{"success": true}')])
        result_block = conv.messages[-1]["content"][0]
        assert result_block["type"] == "tool_result"
        assert result_block["tool_use_id"] == "tu_1"

    def test_image_sent_as_base64_block(self) -> None:
        adapter = AnthropicAdapter(_provider("anthropic"))
        media = MediaData(mime_type="image/jpeg", data=b"jpg")
        conv = adapter.start_conversation("sys", [], "describe", media)
        blocks = conv.messages[-1]["content"]
        assert blocks[0]["source"]["media_type"] == "image/jpeg"
        assert blocks[1] == {"type": "text", "text": "describe"}

    def test_unsupported_media_falls_back_to_text(self) -> None:
        adapter = AnthropicAdapter(_provider("anthropic"))
        media = MediaData(mime_type="video/mp4", data=b"vid")
        conv = adapter.start_conversation("sys", [], "watch", media)
        assert conv.messages[-1] == {"role": "user", "content": "watch"}


class TestTrimHistory:
    def test_leaves_room_for_new_message(self) -> None:
        history = [{"role": "user", "content": str(i)} for i in range(30)]
        trimmed = trim_history(history, 20)
        assert len(trimmed) == 19
        assert trimmed[-1]["content"] == "29"

    def test_zero_budget(self) -> None:
        assert trim_history([{"role": "user", "content": "x"}], 1) == []
