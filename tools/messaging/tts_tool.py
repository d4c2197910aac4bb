"""tts — Gemini text-to-speech, saved as WAV and served from the audio dir.

The result carries ``audioUrl`` and ``duration`` (ms); the agent loop picks
these up and hands them to the messaging layer as a voice attachment.
"""

from __future__ import annotations

import base64
import io
import logging
import re
import secrets
import time
import wave
from typing import Any

import httpx

from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult, text_arg

logger = logging.getLogger(__name__)

GEMINI_VOICES = ("Aoede", "Charon", "Fenrir", "Kore", "Puck")
_DEFAULT_SAMPLE_RATE = 24000


def parse_sample_rate(mime_type: str) -> int:
    """``audio/L16;rate=24000`` -> 24000."""
    match = re.search(r"rate=(\d+)", mime_type)
    return int(match.group(1)) if match else _DEFAULT_SAMPLE_RATE


def pcm_to_wav(pcm: bytes, sample_rate: int, channels: int = 1, sample_width: int = 2) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buf.getvalue()


def wav_duration_ms(data: bytes) -> int:
    with wave.open(io.BytesIO(data), "rb") as wav:
        rate = wav.getframerate()
        if not rate:
            return 0
        return int(wav.getnframes() * 1000 / rate + 0.999)


class TTSTool(BaseTool):
    """Convert text to a voice message."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._config: Any = None
        self._client = client

    @property
    def name(self) -> str:
        return "tts"

    @property
    def description(self) -> str:
        return (
            "Convert text to speech audio using Gemini. The audio is sent as a "
            "voice message to the user. Use when the user asks to read text aloud, "
            "create audio, or wants voice output. Available voices: "
            f"{', '.join(GEMINI_VOICES)} (default Kore)."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "Text to convert to speech."},
                "voice": {
                    "type": "string",
                    "description": f"Voice name. Available: {', '.join(GEMINI_VOICES)}.",
                },
            },
            "required": ["text"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        if self._config is None:
            return ToolResult.fail("not_available", "Configuration not loaded")
        cfg = self._config

        text = text_arg(params, "text")
        if not text:
            return ToolResult.fail("missing_text", "Text is required.")
        if len(text) > cfg.tts.max_text_length:
            return ToolResult.fail(
                "text_too_long",
                f"Text must be under {cfg.tts.max_text_length} characters (got {len(text)}).",
            )

        base_url = cfg.line.public_base_url
        if not base_url:
            return ToolResult.fail(
                "missing_config", "BASE_URL is required for TTS (to serve audio files)."
            )
        gemini = cfg.llm.providers.get("gemini")
        if gemini is None or not gemini.api_key:
            return ToolResult.fail("missing_api_key", "GEMINI_API_KEY is required for TTS.")

        voice = text_arg(params, "voice") or cfg.tts.voice
        start = time.monotonic()
        logger.info(f'[tts] Generating audio: "{text[:50]}" (voice: {voice}, model: {cfg.tts.model})')
        try:
            audio = await self._synthesize(gemini.base_url, gemini.api_key, text, voice)
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            logger.error("[tts] Error: %s", e)
            return ToolResult.fail("tts_failed", str(e))

        audio_dir = cfg.resolve_path(cfg.tts.audio_dir)
        audio_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{secrets.token_hex(8)}.wav"
        (audio_dir / filename).write_bytes(audio)

        duration = wav_duration_ms(audio)
        took = int((time.monotonic() - start) * 1000)
        logger.info(f"[tts] Done: {filename} ({len(audio) / 1024:.1f}KB, {duration}ms, took {took}ms)")
        return ToolResult.ok(
            audioUrl=f"{base_url.rstrip('/')}/audio/{filename}",
            duration=duration,
            voice=voice,
            sizeKB=round(len(audio) / 1024, 1),
            tookMs=took,
        )

    async def _synthesize(self, base_url: str, api_key: str, text: str, voice: str) -> bytes:
        url = f"{base_url}/models/{self._config.tts.model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}},
                },
            },
        }
        headers = {"x-goog-api-key": api_key}
        if self._client is not None:
            resp = await self._client.post(url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=60.0) as client:
                resp = await client.post(url, json=body, headers=headers)

        if resp.status_code != 200:
            raise RuntimeError(f"Gemini TTS error ({resp.status_code}): {resp.text[:500]}")

        data = resp.json()
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        inline = next((p["inlineData"] for p in parts if p.get("inlineData")), None)
        if not inline:
            raise RuntimeError("No audio data in Gemini response")

        raw = base64.b64decode(inline.get("data", ""))
        if raw[:4] == b"RIFF":
            return raw
        sample_rate = parse_sample_rate(inline.get("mimeType", ""))
        logger.debug("[tts] Raw PCM detected, adding WAV header (%dHz)", sample_rate)
        return pcm_to_wav(raw, sample_rate)
