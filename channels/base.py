"""Outbound notification channel interface.

Background tasks, scheduled jobs and a few tools push messages to users
outside of the live reply. Every channel (LINE, console) implements this
interface; failures raise NotifierError and callers decide whether they
are fatal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class NotifierError(RuntimeError):
    """A push could not be delivered."""


@dataclass
class UserProfile:
    user_id: str
    display_name: str
    picture_url: str | None = None
    status_message: str | None = None


class Notifier(ABC):
    """Capability to deliver a message to a named recipient."""

    name: str = "base"

    @abstractmethod
    async def push_text(self, to: str, text: str) -> None:
        """Send a text message to one user."""
        ...

    @abstractmethod
    async def push_image(self, to: str, image_url: str, preview_url: str = "") -> None:
        """Send an image (by URL) to one user."""
        ...

    async def push_flex(self, to: str, alt_text: str, contents: dict[str, Any]) -> None:
        """Send a rich card (a LINE Flex container). Default: the alt text only."""
        await self.push_text(to, alt_text)

    async def multicast(self, to: list[str], text: str) -> None:
        """Send the same text to several users. Default: one push each."""
        for user_id in to:
            await self.push_text(user_id, text)

    async def get_profile(self, user_id: str) -> UserProfile:
        """Look up a user's display profile."""
        return UserProfile(user_id=user_id, display_name=user_id)

    async def close(self) -> None:
        """Release network resources."""
