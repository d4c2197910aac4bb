"""Shared test fixtures for MyClaw tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from channels.base import Notifier, NotifierError, UserProfile
from core.agent import Agent
from core.config import (
    AgentConfig,
    Config,
    DatabaseConfig,
    LineConfig,
    LLMConfig,
    ProviderConfig,
    SchedulerConfig,
    TTSConfig,
)
from core.database import Database
from tools.base import InvocationContext


class FakeNotifier(Notifier):
    """Records every push instead of sending it."""

    name = "fake"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.texts: list[tuple[str, str]] = []
        self.images: list[tuple[str, str, str]] = []
        self.multicasts: list[tuple[list[str], str]] = []
        self.flexes: list[tuple[str, str, dict[str, Any]]] = []

    async def push_text(self, to: str, text: str) -> None:
        if self.fail:
            raise NotifierError("push failed")
        self.texts.append((to, text))

    async def push_image(self, to: str, image_url: str, preview_url: str = "") -> None:
        if self.fail:
            raise NotifierError("push failed")
        self.images.append((to, image_url, preview_url))

    async def push_flex(self, to: str, alt_text: str, contents: dict[str, Any]) -> None:
        if self.fail:
            raise NotifierError("push failed")
        self.flexes.append((to, alt_text, contents))

    async def multicast(self, to: list[str], text: str) -> None:
        if self.fail:
            raise NotifierError("multicast failed")
        self.multicasts.append((list(to), text))

    async def get_profile(self, user_id: str) -> UserProfile:
        return UserProfile(
            user_id=user_id,
            display_name=f"User {user_id}",
            picture_url="https://example.com/p.png",
            status_message="hi",
        )


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Minimal config for testing."""
    return Config(
        agent=AgentConfig(name="TestClaw", max_history=20, max_turns=10),
        llm=LLMConfig(
            providers={
                "gemini": ProviderConfig(
                    api_key="test-gemini-key",
                    enabled=True,
                    base_url="https://gemini.test/v1beta",
                    model="gemini-test",
                ),
            },
            provider_priority=["gemini", "ollama", "anthropic"],
        ),
        line=LineConfig(public_base_url="https://bot.example.com"),
        database=DatabaseConfig(db_path=str(tmp_path / "test.db")),
        scheduler=SchedulerConfig(enabled=False),
        tts=TTSConfig(audio_dir=str(tmp_path / "audio")),
        project_root=tmp_path,
    )


@pytest.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    db = Database(tmp_path / "test.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def failing_notifier() -> FakeNotifier:
    return FakeNotifier(fail=True)


@pytest.fixture
def context(notifier: FakeNotifier) -> InvocationContext:
    return InvocationContext(caller_id="U1", notifier=notifier)


@pytest.fixture
async def agent(test_config: Config, notifier: FakeNotifier) -> AsyncIterator[Agent]:
    """Initialized agent with the built-in catalog and a recording notifier."""
    agent = Agent(test_config, notifier=notifier)
    await agent.initialize()
    yield agent
    await agent.shutdown()
