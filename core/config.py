"""Configuration system for MyClaw.

Loads config.yaml into typed dataclasses. Environment variables override
provider keys and a few deployment settings, matching the variables the bot
has always been deployed with (GEMINI_API_KEY, OLLAMA_MODEL, ...).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SYSTEM_PROMPT = (
    "You are MyClaw, a helpful AI assistant on LINE.\n"
    "IMPORTANT: Always reply in the SAME language the user writes in. "
    "Never switch to another language.\n"
    "Reply concisely. You have access to tools - use them when needed.\n"
    "You can receive and understand images, audio messages, videos, stickers, "
    "locations, and files that users send."
)

PROVIDER_ORDER = ("gemini", "ollama", "anthropic")

_DEFAULT_MODELS = {
    "gemini": "gemini-2.0-flash",
    "ollama": "glm-4.7-flash",
    "anthropic": "claude-sonnet-4-20250514",
}

_DEFAULT_BASE_URLS = {
    "gemini": "https://generativelanguage.googleapis.com/v1beta",
    "ollama": "http://localhost:11434",
    "anthropic": "https://api.anthropic.com",
}


@dataclass
class AgentConfig:
    """Conversation behaviour."""

    name: str = "MyClaw"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_history: int = 20
    max_turns: int = 10
    owner_user_ids: list[str] = field(default_factory=list)
    memory_recall: bool = True
    memory_max_results: int = 3


@dataclass
class ProviderConfig:
    """Configuration for a single LLM backend."""

    api_key: str = ""
    enabled: bool = False
    base_url: str = ""
    model: str = ""
    max_tokens: int = 8192
    timeout_seconds: float = 120.0


@dataclass
class LLMConfig:
    """All LLM-related configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    provider_priority: list[str] = field(default_factory=lambda: list(PROVIDER_ORDER))
    primary: str = ""
    fallback: str = ""

    def enabled_providers(self) -> list[str]:
        """Enabled provider names in priority order."""
        return [
            name
            for name in self.provider_priority
            if name in self.providers and self.providers[name].enabled
        ]

    def active_provider(self) -> str:
        """Provider used for chat and background tasks ('' when none)."""
        enabled = self.enabled_providers()
        if self.primary and self.primary in enabled:
            return self.primary
        return enabled[0] if enabled else ""

    def fallback_provider(self) -> str:
        """Secondary provider for whole-exchange retries ('' when none).

        Without an explicit fallback this is the next enabled provider after
        the active one in priority order, wrapping around to the start.
        """
        active = self.active_provider()
        enabled = self.enabled_providers()
        if self.fallback:
            return self.fallback if self.fallback in enabled and self.fallback != active else ""
        if len(enabled) < 2:
            return ""
        return enabled[(enabled.index(active) + 1) % len(enabled)]


@dataclass
class LineConfig:
    """LINE Messaging API (outbound push only)."""

    channel_access_token: str = ""
    api_base: str = "https://api.line.me/v2/bot"
    public_base_url: str = ""


@dataclass
class DatabaseConfig:
    """SQLite location."""

    db_path: str = "data/myclaw.db"


@dataclass
class TasksConfig:
    """Background task limits."""

    max_running_per_owner: int = 5
    default_timeout_seconds: int = 120
    min_timeout_seconds: int = 10
    max_timeout_seconds: int = 600
    result_max_chars: int = 10000
    notify_max_chars: int = 1500


@dataclass
class SchedulerConfig:
    """Scheduled job configuration."""

    enabled: bool = True
    default_timezone: str = "Asia/Bangkok"


@dataclass
class WebConfig:
    """Web search/fetch tools."""

    search_provider: str = ""
    brave_api_key: str = ""
    perplexity_api_key: str = ""
    perplexity_base_url: str = ""
    perplexity_model: str = "perplexity/sonar-pro"
    xai_api_key: str = ""
    grok_model: str = "grok-4-1-fast"
    fetch_max_chars: int = 50000
    timeout_seconds: float = 30.0
    cache_ttl_minutes: int = 15


@dataclass
class TTSConfig:
    """Gemini text-to-speech."""

    model: str = "gemini-2.5-flash-preview-tts"
    voice: str = "Kore"
    audio_dir: str = "data/audio"
    max_text_length: int = 5000


@dataclass
class Config:
    """Top-level MyClaw configuration."""

    agent: AgentConfig = field(default_factory=AgentConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    line: LineConfig = field(default_factory=LineConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    tasks: TasksConfig = field(default_factory=TasksConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    web: WebConfig = field(default_factory=WebConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)
    project_root: Path = field(default_factory=Path.cwd)

    def resolve_path(self, value: str) -> Path:
        """Resolve a config path relative to the project root."""
        path = Path(value)
        if not path.is_absolute():
            path = self.project_root / path
        return path

    def is_owner(self, user_id: str) -> bool:
        """Owner allowlist check. An empty allowlist admits everyone."""
        if not self.agent.owner_user_ids:
            return True
        if not user_id:
            return False
        return user_id in self.agent.owner_user_ids


def _parse_provider(name: str, data: dict[str, Any]) -> ProviderConfig:
    """Parse a provider config section, filling per-provider defaults."""
    return ProviderConfig(
        api_key=data.get("api_key", "") or "",
        enabled=data.get("enabled", bool(data.get("api_key"))),
        base_url=data.get("base_url", "") or _DEFAULT_BASE_URLS.get(name, ""),
        model=data.get("model", "") or _DEFAULT_MODELS.get(name, ""),
        max_tokens=data.get("max_tokens", 8192 if name == "gemini" else 1024),
        timeout_seconds=data.get("timeout_seconds", 120.0),
    )


def _ensure_provider(config: Config, name: str) -> ProviderConfig:
    if name not in config.llm.providers:
        config.llm.providers[name] = _parse_provider(name, {})
    return config.llm.providers[name]


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides for keys and deployment settings."""
    env_key = os.environ.get("GEMINI_API_KEY", "").strip()
    if env_key:
        gemini = _ensure_provider(config, "gemini")
        gemini.api_key = env_key
        gemini.enabled = True
    env_model = os.environ.get("GEMINI_MODEL", "").strip()
    if env_model:
        _ensure_provider(config, "gemini").model = env_model

    env_model = os.environ.get("OLLAMA_MODEL", "").strip()
    if env_model:
        ollama = _ensure_provider(config, "ollama")
        ollama.model = env_model
        ollama.enabled = True
    env_url = os.environ.get("OLLAMA_BASE_URL", "").strip()
    if env_url:
        _ensure_provider(config, "ollama").base_url = env_url

    env_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
    if env_key:
        anthropic = _ensure_provider(config, "anthropic")
        anthropic.api_key = env_key
        anthropic.enabled = True

    token = os.environ.get("LINE_CHANNEL_ACCESS_TOKEN", "").strip()
    if token:
        config.line.channel_access_token = token
    base_url = os.environ.get("BASE_URL", "").strip()
    if base_url:
        config.line.public_base_url = base_url

    owners = os.environ.get("OWNER_USER_ID", "").strip()
    if owners:
        config.agent.owner_user_ids = [o.strip() for o in owners.split(",") if o.strip()]

    brave = os.environ.get("BRAVE_API_KEY", "").strip()
    if brave:
        config.web.brave_api_key = brave
    provider = os.environ.get("WEB_SEARCH_PROVIDER", "").strip().lower()
    if provider:
        config.web.search_provider = provider
    perplexity = (
        os.environ.get("PERPLEXITY_API_KEY", "").strip()
        or os.environ.get("OPENROUTER_API_KEY", "").strip()
    )
    if perplexity:
        config.web.perplexity_api_key = perplexity
    env_model = os.environ.get("PERPLEXITY_MODEL", "").strip()
    if env_model:
        config.web.perplexity_model = env_model
    xai = os.environ.get("XAI_API_KEY", "").strip()
    if xai:
        config.web.xai_api_key = xai
    env_model = os.environ.get("GROK_MODEL", "").strip()
    if env_model:
        config.web.grok_model = env_model

    data_dir = os.environ.get("DATA_DIR", "").strip()
    if data_dir:
        config.database.db_path = str(Path(data_dir) / "myclaw.db")
        config.tts.audio_dir = str(Path(data_dir) / "audio")


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from YAML file plus environment overrides.

    Args:
        config_path: Path to config.yaml. If None, checks MYCLAW_CONFIG
                     env var, then falls back to ./config.yaml.

    Returns:
        Populated Config dataclass.
    """
    if config_path is None:
        env_path = os.environ.get("MYCLAW_CONFIG")
        config_path = Path(env_path) if env_path else Path.cwd() / "config.yaml"
    else:
        config_path = Path(config_path)

    raw: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    agent_raw = raw.get("agent", {}) or {}
    agent = AgentConfig(
        name=agent_raw.get("name", "MyClaw"),
        system_prompt=agent_raw.get("system_prompt", DEFAULT_SYSTEM_PROMPT),
        max_history=agent_raw.get("max_history", 20),
        max_turns=agent_raw.get("max_turns", 10),
        owner_user_ids=[str(u) for u in agent_raw.get("owner_user_ids", []) or []],
        memory_recall=agent_raw.get("memory_recall", True),
        memory_max_results=agent_raw.get("memory_max_results", 3),
    )

    llm_raw = raw.get("llm", {}) or {}
    providers: dict[str, ProviderConfig] = {}
    for name, pdata in (llm_raw.get("providers", {}) or {}).items():
        providers[name] = _parse_provider(name, pdata or {})
    llm = LLMConfig(
        providers=providers,
        provider_priority=llm_raw.get("provider_priority", list(PROVIDER_ORDER)),
        primary=llm_raw.get("primary", ""),
        fallback=llm_raw.get("fallback", ""),
    )

    line_raw = raw.get("line", {}) or {}
    line = LineConfig(
        channel_access_token=line_raw.get("channel_access_token", ""),
        api_base=line_raw.get("api_base", "https://api.line.me/v2/bot"),
        public_base_url=line_raw.get("public_base_url", ""),
    )

    db_raw = raw.get("database", {}) or {}
    database = DatabaseConfig(db_path=db_raw.get("db_path", "data/myclaw.db"))

    tasks_raw = raw.get("tasks", {}) or {}
    tasks = TasksConfig(
        max_running_per_owner=tasks_raw.get("max_running_per_owner", 5),
        default_timeout_seconds=tasks_raw.get("default_timeout_seconds", 120),
        min_timeout_seconds=tasks_raw.get("min_timeout_seconds", 10),
        max_timeout_seconds=tasks_raw.get("max_timeout_seconds", 600),
        result_max_chars=tasks_raw.get("result_max_chars", 10000),
        notify_max_chars=tasks_raw.get("notify_max_chars", 1500),
    )

    sched_raw = raw.get("scheduler", {}) or {}
    scheduler = SchedulerConfig(
        enabled=sched_raw.get("enabled", True),
        default_timezone=sched_raw.get("default_timezone", "Asia/Bangkok"),
    )

    web_raw = raw.get("web", {}) or {}
    web = WebConfig(
        search_provider=(web_raw.get("search_provider", "") or "").strip().lower(),
        brave_api_key=web_raw.get("brave_api_key", ""),
        perplexity_api_key=web_raw.get("perplexity_api_key", ""),
        perplexity_base_url=web_raw.get("perplexity_base_url", ""),
        perplexity_model=web_raw.get("perplexity_model", "perplexity/sonar-pro"),
        xai_api_key=web_raw.get("xai_api_key", ""),
        grok_model=web_raw.get("grok_model", "grok-4-1-fast"),
        fetch_max_chars=web_raw.get("fetch_max_chars", 50000),
        timeout_seconds=web_raw.get("timeout_seconds", 30.0),
        cache_ttl_minutes=web_raw.get("cache_ttl_minutes", 15),
    )

    tts_raw = raw.get("tts", {}) or {}
    tts = TTSConfig(
        model=tts_raw.get("model", "gemini-2.5-flash-preview-tts"),
        voice=tts_raw.get("voice", "Kore"),
        audio_dir=tts_raw.get("audio_dir", "data/audio"),
        max_text_length=tts_raw.get("max_text_length", 5000),
    )

    config = Config(
        agent=agent,
        llm=llm,
        line=line,
        database=database,
        tasks=tasks,
        scheduler=scheduler,
        web=web,
        tts=tts,
        project_root=config_path.parent,
    )
    _apply_env_overrides(config)
    return config
