"""Main agent class and loop.

One exchange runs the tool-calling cycle against a single provider adapter:
1. ASK: send the conversation plus tool declarations to the model
2. EXECUTE: run every requested tool call through the ToolInvoker
3. APPEND: feed the results back in the order they were requested
4. Repeat until the model answers in text or the turn budget runs out

The Agent wraps the loop with history, provider selection, cross-provider
fallback and the background/scheduled subsystems the tools depend on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field

import httpx

from channels.base import Notifier
from core.background import BackgroundTaskManager
from core.config import Config, ProviderConfig
from core.database import Database
from core.executor import ToolInvoker
from core.memory import MemoryStore, format_memory_context
from core.providers.anthropic import AnthropicAdapter
from core.providers.base import (
    NO_RESPONSE,
    Conversation,
    MediaData,
    ProviderAdapter,
    ToolCall,
    ToolOutcome,
    trim_history,
)
from core.providers.gemini import GeminiAdapter
from core.providers.openai_compat import OpenAICompatAdapter
from core.registry import ToolCatalog, build_builtin_catalog
from core.router import LLMRouter
from core.scheduler import ScheduledJobManager
from core.session import SessionStore
from tools.base import InvocationContext

logger = logging.getLogger(__name__)

NO_PROVIDER_TEXT = (
    "No AI provider configured. Set GEMINI_API_KEY, OLLAMA_MODEL or ANTHROPIC_API_KEY."
)

# Tools that read state only and are safe to execute concurrently via asyncio.gather().
_PARALLEL_SAFE_TOOLS = frozenset(
    {
        "datetime",
        "web_search",
        "web_fetch",
        "session_status",
        "sessions_list",
        "sessions_history",
        "agents_list",
    }
)

_ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "gemini": GeminiAdapter,
    "ollama": OpenAICompatAdapter,
    "anthropic": AnthropicAdapter,
}


def create_adapter(
    name: str, config: ProviderConfig, client: httpx.AsyncClient | None = None
) -> ProviderAdapter:
    """Instantiate the adapter for a configured provider name."""
    adapter_cls = _ADAPTERS.get(name)
    if adapter_cls is None:
        raise ValueError(f"Unknown provider: {name}")
    return adapter_cls(config, client)


def _group_tool_calls(calls: list[ToolCall], catalog: ToolCatalog) -> list[list[ToolCall]]:
    """Group tool calls into parallelizable batches.

    Consecutive parallel-safe tools form one group.
    Any other tool gets its own single-item group (sequential barrier).
    """
    groups: list[list[ToolCall]] = []
    current_safe: list[ToolCall] = []

    for call in calls:
        tool = catalog.get(call.name)
        if call.name in _PARALLEL_SAFE_TOOLS or (tool is not None and tool.parallel_safe):
            current_safe.append(call)
        else:
            if current_safe:
                groups.append(current_safe)
                current_safe = []
            groups.append([call])

    if current_safe:
        groups.append(current_safe)
    return groups


def describe_error(exc: BaseException) -> str:
    """Turn a provider failure into a short apology the user can act on."""
    message = str(exc)
    status = getattr(exc, "status", None)

    if "credit balance is too low" in message or "insufficient_quota" in message:
        return "Sorry, the AI account is out of credit. Please top up and try again."
    if "RESOURCE_EXHAUSTED" in message or "quota" in message:
        return "Sorry, the AI quota is used up. Please wait a moment or switch provider."
    if "authentication" in message or "invalid_api_key" in message or status == 401:
        return "Sorry, the AI API key is invalid. Please check the configuration."
    if "rate_limit" in message or status == 429:
        return "Sorry, messages are arriving too fast. Please wait a moment and try again."
    if "overloaded" in message or status == 529:
        return "Sorry, the AI service is overloaded right now. Please try again shortly."
    if isinstance(status, int) and status >= 500:
        return "Sorry, the AI service had an internal error. Please try again later."
    return "Sorry, something went wrong while generating a reply."


@dataclass
class LoopResult:
    """Outcome of one AgentLoop exchange."""

    text: str
    turns: int
    tool_calls_made: list[str] = field(default_factory=list)
    audio_url: str | None = None
    audio_duration: float | None = None
    image_url: str | None = None
    budget_exhausted: bool = False


@dataclass
class ChatResult:
    """Final reply handed to the messaging layer."""

    text: str
    audio_url: str | None = None
    audio_duration: float | None = None
    image_url: str | None = None
    turns: int = 0
    tool_calls_made: list[str] = field(default_factory=list)
    provider: str = ""


class AgentLoop:
    """Drives one exchange against one provider adapter.

    A fresh loop is created per exchange. ``tool_results_appended`` records
    whether the conversation has advanced past the first tool call, which
    decides whether the exchange may still be retried on another provider.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        invoker: ToolInvoker,
        max_turns: int = 10,
    ) -> None:
        self._adapter = adapter
        self._invoker = invoker
        self._max_turns = max_turns
        self.tool_results_appended = False

    @property
    def adapter(self) -> ProviderAdapter:
        return self._adapter

    async def run(self, conversation: Conversation, context: InvocationContext) -> LoopResult:
        """Run until final text or the turn budget is spent.

        ProviderError from send_turn propagates; everything tool-side is
        already contained by the invoker.
        """
        catalog = self._invoker.catalog
        declarations = self._adapter.encode_tools(catalog.list_tools())
        result = LoopResult(text=NO_RESPONSE, turns=0)
        partial_text = ""

        for turn_number in range(1, self._max_turns + 1):
            result.turns = turn_number
            turn = await self._adapter.send_turn(conversation, declarations)

            calls = list(turn.calls)
            if not calls and turn.text:
                embedded = self._adapter.try_parse_embedded_call(turn.text, catalog)
                if embedded is not None:
                    calls = [embedded]

            self._adapter.append_model_turn(conversation, turn)

            if not calls:
                result.text = turn.text or NO_RESPONSE
                return result

            if turn.commentary:
                partial_text = turn.commentary

            outcomes = await self._execute_calls(calls, context, result)
            self._adapter.append_tool_results(conversation, outcomes)
            self.tool_results_appended = True

        logger.warning(
            "[%s] Turn budget of %d exhausted; returning partial text",
            self._adapter.name,
            self._max_turns,
        )
        result.text = partial_text or NO_RESPONSE
        result.budget_exhausted = True
        return result

    async def _execute_calls(
        self,
        calls: list[ToolCall],
        context: InvocationContext,
        result: LoopResult,
    ) -> list[ToolOutcome]:
        """Execute calls (parallel where safe) and return outcomes in request order."""
        outcomes: list[ToolOutcome] = []
        for group in _group_tool_calls(calls, self._invoker.catalog):
            result.tool_calls_made.extend(call.name for call in group)
            if len(group) > 1:
                texts = await asyncio.gather(
                    *(self._invoker.execute(c.name, c.arguments, context) for c in group)
                )
            else:
                texts = [await self._invoker.execute(group[0].name, group[0].arguments, context)]

            for call, text in zip(group, texts, strict=True):
                self._capture_media(text, result)
                outcomes.append(ToolOutcome(call=call, result=text))
        return outcomes

    @staticmethod
    def _capture_media(text: str, result: LoopResult) -> None:
        """Surface generated audio/image references to the messaging layer."""
        try:
            payload = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            return
        if not isinstance(payload, dict) or not payload.get("success"):
            return
        if payload.get("audioUrl"):
            result.audio_url = payload["audioUrl"]
            result.audio_duration = payload.get("duration") or 0
            logger.info("Audio detected from tool result: %s", result.audio_url)
        if payload.get("imageUrl"):
            result.image_url = payload["imageUrl"]
            logger.info("Image detected from tool result: %s", result.image_url)


class Agent:
    """The MyClaw agent: history, providers, tools and background work."""

    def __init__(
        self,
        config: Config,
        notifier: Notifier | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._db = Database(config.resolve_path(config.database.db_path))
        self._router = LLMRouter(config)
        self._sessions = SessionStore(self._db)
        self._memory = MemoryStore(self._db)
        self._tasks = BackgroundTaskManager(self._db, self._router, config.tasks, notifier)
        self._jobs = ScheduledJobManager(
            self._db, notifier, default_timezone=config.scheduler.default_timezone
        )
        self._notifier = notifier
        self._http_client = http_client
        self._catalog: ToolCatalog | None = None
        self._invoker: ToolInvoker | None = None
        self._adapters: dict[str, ProviderAdapter] = {}
        self._started_at = time.time()
        self._initialized = False

    # ------------------------------------------------------------------
    # Accessors used by tools and the CLI
    # ------------------------------------------------------------------

    @property
    def config(self) -> Config:
        return self._config

    @property
    def db(self) -> Database:
        return self._db

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def memory(self) -> MemoryStore:
        return self._memory

    @property
    def tasks(self) -> BackgroundTaskManager:
        return self._tasks

    @property
    def jobs(self) -> ScheduledJobManager:
        return self._jobs

    @property
    def catalog(self) -> ToolCatalog:
        assert self._catalog is not None, "Agent not initialized"
        return self._catalog

    @property
    def notifier(self) -> Notifier | None:
        return self._notifier

    @property
    def started_at(self) -> float:
        return self._started_at

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, catalog: ToolCatalog | None = None) -> None:
        """One-time setup: database, notifier, tool catalog, managers."""
        await self._db.initialize()

        if self._notifier is None:
            self._notifier = self._default_notifier()
        self._tasks.notifier = self._notifier
        self._jobs.notifier = self._notifier

        self._catalog = catalog or build_builtin_catalog()
        self._invoker = ToolInvoker(self._catalog, self._config.is_owner)
        self._inject_tool_deps()

        for name in self._config.llm.enabled_providers():
            provider_cfg = self._config.llm.providers[name]
            try:
                self._adapters[name] = create_adapter(name, provider_cfg, self._http_client)
            except ValueError as e:
                logger.warning("Skipping provider %s: %s", name, e)

        await self._tasks.start()
        if self._config.scheduler.enabled:
            await self._jobs.start()

        active = self._config.llm.active_provider() or "none"
        logger.info(f"Agent ready: {len(self._catalog)} tools, provider={active}")
        self._initialized = True

    def _default_notifier(self) -> Notifier:
        if self._config.line.channel_access_token:
            from channels.line import LineClient

            return LineClient(self._config.line)
        from channels.console import ConsoleNotifier

        return ConsoleNotifier()

    def _inject_tool_deps(self) -> None:
        """Hand each tool the collaborators it needs."""
        assert self._catalog is not None
        for tool in self._catalog:
            if hasattr(tool, "_agent"):
                tool._agent = self
            if hasattr(tool, "_config"):
                tool._config = self._config
            if hasattr(tool, "_sessions"):
                tool._sessions = self._sessions
            if hasattr(tool, "_memory"):
                tool._memory = self._memory
            if hasattr(tool, "_tasks"):
                tool._tasks = self._tasks
            if hasattr(tool, "_jobs"):
                tool._jobs = self._jobs
            if hasattr(tool, "_catalog"):
                tool._catalog = self._catalog

    async def shutdown(self) -> None:
        """Clean up all subsystems gracefully."""
        try:
            await self._jobs.stop()
        except Exception as e:
            logger.debug("Scheduler shutdown error: %s", e)
        try:
            await self._tasks.shutdown()
        except Exception as e:
            logger.debug("Background task shutdown error: %s", e)
        if self._notifier is not None:
            try:
                await self._notifier.close()
            except Exception as e:
                logger.debug("Notifier close error: %s", e)
        try:
            await self._db.close()
        except Exception as e:
            logger.debug("DB close error: %s", e)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(
        self, user_id: str, message: str, media: MediaData | None = None
    ) -> ChatResult:
        """Answer one inbound message. Never raises for provider failures."""
        assert self._invoker is not None, "Agent not initialized"

        primary = self._config.llm.active_provider()
        if not primary or primary not in self._adapters:
            return ChatResult(text=NO_PROVIDER_TEXT)

        max_history = self._config.agent.max_history
        history = trim_history(
            await self._sessions.load_history(user_id, max_history), max_history
        )
        system_prompt = self._config.agent.system_prompt
        memory_context = await self._recall(user_id, message, max_history)
        if memory_context:
            system_prompt = f"{system_prompt}\n\n{memory_context}"

        # With media the user entry is stored after the reply, enriched with it
        if media is None:
            await self._sessions.save_message(user_id, "user", message)

        context = InvocationContext(caller_id=user_id, notifier=self._notifier)
        provider = primary
        logger.info(f"[chat] {user_id} via {self._adapters[primary].label}")

        loop = AgentLoop(self._adapters[primary], self._invoker, self._config.agent.max_turns)
        try:
            result = await self._run_exchange(
                loop, system_prompt, history, message, media, context
            )
        except Exception as e:
            fallback = self._config.llm.fallback_provider()
            can_fall_back = (
                fallback in self._adapters
                and media is None
                and not loop.tool_results_appended
            )
            if not can_fall_back:
                logger.error(f"[chat] {primary} failed: {e}")
                return ChatResult(text=describe_error(e), provider=primary)

            logger.warning(f"[chat] {primary} failed ({str(e)[:80]}), falling back to {fallback}")
            provider = fallback
            loop = AgentLoop(self._adapters[fallback], self._invoker, self._config.agent.max_turns)
            try:
                result = await self._run_exchange(
                    loop, system_prompt, history, message, None, context
                )
            except Exception as e2:
                logger.error(f"[chat] Fallback {fallback} failed: {e2}")
                return ChatResult(text=describe_error(e2), provider=fallback)

        reply = result.text
        if media is not None:
            if media.is_audio_or_video:
                desc = reply.replace("\n", " ")
            else:
                desc = reply[:200].replace("\n", " ")
            await self._sessions.save_message(user_id, "user", f"[{media.kind}: {desc}]")
        await self._sessions.save_message(user_id, "assistant", reply)

        return ChatResult(
            text=reply,
            audio_url=result.audio_url,
            audio_duration=result.audio_duration,
            image_url=result.image_url,
            turns=result.turns,
            tool_calls_made=result.tool_calls_made,
            provider=provider,
        )

    async def _recall(self, user_id: str, message: str, max_history: int) -> str:
        """Memory section for the system prompt, or '' when nothing matches."""
        if not self._config.agent.memory_recall:
            return ""
        try:
            hits = await self._memory.search(
                user_id,
                message,
                max_results=self._config.agent.memory_max_results,
                skip_recent=max_history,
            )
        except Exception as e:
            logger.error("[memory] Search failed: %s", e)
            return ""
        if hits:
            logger.info("[memory] Found %d relevant memories", len(hits))
        return format_memory_context(hits)

    async def _run_exchange(
        self,
        loop: AgentLoop,
        system_prompt: str,
        history: list[dict[str, str]],
        message: str,
        media: MediaData | None,
        context: InvocationContext,
    ) -> LoopResult:
        adapter = loop.adapter
        conversation = adapter.start_conversation(system_prompt, history, message, media)
        return await loop.run(conversation, context)


__all__ = [
    "Agent",
    "AgentLoop",
    "ChatResult",
    "LoopResult",
    "create_adapter",
    "describe_error",
]
