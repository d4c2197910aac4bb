"""LLM Router: single-shot completions for background work.

Background tasks make one model call with no tools, so they do not need
the provider adapters. This router maps the configured provider to a
litellm model string and retries transient failures.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import litellm

from core.config import Config

logger = logging.getLogger(__name__)

# Suppress litellm's verbose logging
litellm.suppress_debug_info = True

_LITELLM_PREFIX = {
    "gemini": "gemini/",
    "ollama": "ollama/",
    "anthropic": "anthropic/",
}


@dataclass
class LLMResponse:
    """Standardized response from a single-shot completion."""

    content: str | None
    model_used: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMRouter:
    """Routes single-shot LLM calls to the active provider via litellm."""

    MAX_RETRIES = 2
    RETRY_DELAYS = [2, 5]  # seconds between retries

    def __init__(self, config: Config) -> None:
        self._config = config

    def _select_provider_and_model(
        self, provider: str | None, model_override: str | None
    ) -> tuple[str, str]:
        """Pick the provider and model; an override model keeps the provider."""
        name = provider or self._config.llm.active_provider()
        if not name:
            raise RuntimeError("No LLM provider configured")
        provider_cfg = self._config.llm.providers.get(name)
        if provider_cfg is None:
            raise RuntimeError(f"Provider '{name}' is not configured")
        return name, model_override or provider_cfg.model

    def _litellm_kwargs(self, provider: str, model: str) -> dict[str, Any]:
        provider_cfg = self._config.llm.providers[provider]
        prefix = _LITELLM_PREFIX.get(provider, "")
        kwargs: dict[str, Any] = {
            "model": model if model.startswith(prefix) else f"{prefix}{model}",
            "timeout": provider_cfg.timeout_seconds,
        }
        if provider_cfg.api_key:
            kwargs["api_key"] = provider_cfg.api_key
        if provider == "ollama" and provider_cfg.base_url:
            kwargs["api_base"] = provider_cfg.base_url
        return kwargs

    async def complete(
        self,
        messages: list[dict[str, Any]],
        provider: str | None = None,
        model_override: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Run one completion. Raises after MAX_RETRIES failed attempts.

        CancelledError is never retried so that a cancelled background task
        stops its in-flight call promptly.
        """
        provider, model = self._select_provider_and_model(provider, model_override)
        kwargs = self._litellm_kwargs(provider, model)
        kwargs["messages"] = messages
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        logger.info(f"Routing single-shot call to {provider}/{model}")
        for attempt in range(self.MAX_RETRIES):
            try:
                response = await litellm.acompletion(**kwargs)
                break
            except Exception as e:
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.RETRY_DELAYS[min(attempt, len(self.RETRY_DELAYS) - 1)]
                    logger.warning(
                        f"{provider}/{model} attempt {attempt + 1}/{self.MAX_RETRIES} "
                        f"failed: {e}. Retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"{provider}/{model} failed after {self.MAX_RETRIES} attempts: {e}"
                    )
                    raise

        message = response.choices[0].message
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=message.content,
            model_used=model,
            provider=provider,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )
