"""LINE Messaging API push client.

Implements the Notifier interface with plain httpx calls against the
LINE bot API. Only outbound operations live here: push, multicast and
profile lookup. Text is flattened from markdown and split into at most
five bubbles per push.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from channels.base import Notifier, NotifierError, UserProfile
from channels.line_fmt import split_reply, strip_markdown
from core.config import LineConfig

logger = logging.getLogger(__name__)

_MULTICAST_LIMIT = 500


class LineClient(Notifier):
    """Push messages to LINE users."""

    name = "line"

    def __init__(
        self,
        config: LineConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.channel_access_token:
            raise ValueError("LINE channel access token not configured")
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.channel_access_token}",
        }

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        url = f"{self._config.api_base}{path}"
        try:
            response = await self._client.post(url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise NotifierError(f"LINE request failed: {e}") from e
        if response.status_code != 200:
            raise NotifierError(
                f"LINE API error {response.status_code}: {response.text[:300]}"
            )

    @staticmethod
    def _text_messages(text: str) -> list[dict[str, Any]]:
        return [{"type": "text", "text": chunk} for chunk in split_reply(strip_markdown(text))]

    async def push_text(self, to: str, text: str) -> None:
        await self._post("/message/push", {"to": to, "messages": self._text_messages(text)})
        logger.info("Pushed text to %s (%d chars)", to, len(text))

    async def push_image(self, to: str, image_url: str, preview_url: str = "") -> None:
        message = {
            "type": "image",
            "originalContentUrl": image_url,
            "previewImageUrl": preview_url or image_url,
        }
        await self._post("/message/push", {"to": to, "messages": [message]})
        logger.info("Pushed image to %s", to)

    async def push_flex(self, to: str, alt_text: str, contents: dict[str, Any]) -> None:
        message = {"type": "flex", "altText": alt_text[:400], "contents": contents}
        await self._post("/message/push", {"to": to, "messages": [message]})
        logger.info("Pushed flex message to %s", to)

    async def multicast(self, to: list[str], text: str) -> None:
        messages = self._text_messages(text)
        for start in range(0, len(to), _MULTICAST_LIMIT):
            batch = to[start : start + _MULTICAST_LIMIT]
            await self._post("/message/multicast", {"to": batch, "messages": messages})
        logger.info("Multicast text to %d user(s)", len(to))

    async def get_profile(self, user_id: str) -> UserProfile:
        url = f"{self._config.api_base}/profile/{user_id}"
        try:
            response = await self._client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise NotifierError(f"LINE request failed: {e}") from e
        if response.status_code != 200:
            raise NotifierError(
                f"LINE API error {response.status_code}: {response.text[:300]}"
            )
        data = response.json()
        return UserProfile(
            user_id=user_id,
            display_name=data.get("displayName", ""),
            picture_url=data.get("pictureUrl"),
            status_message=data.get("statusMessage"),
        )

    async def close(self) -> None:
        await self._client.aclose()
