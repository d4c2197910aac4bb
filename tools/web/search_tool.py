"""web_search — Gemini grounding, Brave, Perplexity or xAI Grok.

The provider is ``web.search_provider`` when set, otherwise the first one with
a configured key (Brave, Perplexity, Grok, then Gemini).
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any
from urllib.parse import urlparse

import httpx

from tools.base import (
    BaseTool,
    InvocationContext,
    PermissionLevel,
    ToolResult,
    clamp,
    text_arg,
)
from tools.web.shared import WebCache, wrap_web_content

logger = logging.getLogger(__name__)

SEARCH_PROVIDERS = ("gemini", "brave", "perplexity", "grok")

BRAVE_SEARCH_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_SEARCH_MODEL = "gemini-2.0-flash"
DEFAULT_PERPLEXITY_BASE_URL = "https://openrouter.ai/api/v1"
PERPLEXITY_DIRECT_BASE_URL = "https://api.perplexity.ai"
XAI_API_ENDPOINT = "https://api.x.ai/v1/responses"
GROUNDING_REDIRECT_MARKER = "vertexaisearch.cloud.google.com/grounding-api-redirect"
DEFAULT_COUNT = 5
MAX_COUNT = 10

_FRESHNESS_SHORTCUTS = frozenset({"pd", "pw", "pm", "py"})
_FRESHNESS_RANGE = re.compile(r"^(\d{4}-\d{2}-\d{2})to(\d{4}-\d{2}-\d{2})$")
_PERPLEXITY_RECENCY = {"pd": "day", "pw": "week", "pm": "month", "py": "year"}
_GEMINI_INSTRUCTION = (
    "Always include relevant source URLs in your response. When the user asks "
    "for links, provide the actual URLs from search results."
)
_DESCRIPTIONS = {
    "gemini": (
        "Search the web using Google Search (via Gemini). Returns AI-synthesized "
        "answers grounded in real-time web results with citations."
    ),
    "brave": (
        "Search the web using Brave Search. Returns titles, URLs and snippets. "
        "Use for current events, facts you are unsure about, or when the user "
        "asks you to look something up."
    ),
    "perplexity": (
        "Search the web using Perplexity Sonar. Returns AI-synthesized answers "
        "with citations from real-time web search."
    ),
    "grok": (
        "Search the web using xAI Grok. Returns AI-synthesized answers with "
        "citations from real-time web search."
    ),
}


class SearchAPIError(RuntimeError):
    """A search backend answered with a non-200 status or unusable body."""


def normalize_freshness(value: str) -> str | None:
    """Accept pd/pw/pm/py or ``YYYY-MM-DDtoYYYY-MM-DD`` with start <= end."""
    value = value.strip()
    if value.lower() in _FRESHNESS_SHORTCUTS:
        return value.lower()
    match = _FRESHNESS_RANGE.match(value)
    if not match or match.group(1) > match.group(2):
        return None
    return value


def _gemini_key(config: Any) -> str:
    provider = config.llm.providers.get("gemini")
    return provider.api_key.strip() if provider is not None else ""


def resolve_search_provider(config: Any) -> str:
    """Pick the search backend: explicit setting first, then by available key."""
    web = config.web
    if web.search_provider in SEARCH_PROVIDERS:
        return web.search_provider
    if web.brave_api_key.strip():
        return "brave"
    if web.perplexity_api_key.strip():
        return "perplexity"
    if web.xai_api_key.strip():
        return "grok"
    return "gemini"


def resolve_search_key(config: Any, provider: str) -> str:
    web = config.web
    if provider == "gemini":
        return _gemini_key(config)
    if provider == "brave":
        return web.brave_api_key.strip()
    if provider == "perplexity":
        return web.perplexity_api_key.strip()
    if provider == "grok":
        return web.xai_api_key.strip()
    return ""


def extract_grok_content(data: dict[str, Any]) -> tuple[str | None, list[str]]:
    """Text and url_citation annotations from an xAI Responses payload."""

    def _urls(annotations: list[dict[str, Any]] | None) -> list[str]:
        urls = [
            a["url"]
            for a in annotations or []
            if a.get("type") == "url_citation" and isinstance(a.get("url"), str)
        ]
        return list(dict.fromkeys(urls))

    for output in data.get("output") or []:
        if output.get("type") == "message":
            for block in output.get("content") or []:
                if block.get("type") == "output_text" and block.get("text"):
                    return block["text"], _urls(block.get("annotations"))
        if output.get("type") == "output_text" and output.get("text"):
            return output["text"], _urls(output.get("annotations"))
    text = data.get("output_text")
    return (text if isinstance(text, str) else None), []


class WebSearchTool(BaseTool):
    """Search the web through whichever provider has credentials."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._config: Any = None
        self._client = client
        self._cache = WebCache()

    @property
    def name(self) -> str:
        return "web_search"

    @property
    def description(self) -> str:
        if self._config is None:
            return _DESCRIPTIONS["brave"]
        provider = resolve_search_provider(self._config)
        if not resolve_search_key(self._config, provider):
            return (
                "Web search is not available: no API key configured. Set GEMINI_API_KEY, "
                "BRAVE_API_KEY, PERPLEXITY_API_KEY, or XAI_API_KEY."
            )
        return _DESCRIPTIONS[provider]

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query string."},
                "count": {
                    "type": "number",
                    "description": "Number of results to return (1-10, default 5).",
                },
                "country": {
                    "type": "string",
                    "description": "2-letter country code for region-specific results (e.g. 'TH', 'US').",
                },
                "search_lang": {
                    "type": "string",
                    "description": "ISO language code for results (e.g. 'th', 'en').",
                },
                "freshness": {
                    "type": "string",
                    "description": "Filter by time: pd (day), pw (week), pm (month), py (year), or YYYY-MM-DDtoYYYY-MM-DD.",
                },
            },
            "required": ["query"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    @property
    def parallel_safe(self) -> bool:
        return True

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        if self._config is None:
            return ToolResult.fail("missing_api_key", "web_search is not configured.")
        provider = resolve_search_provider(self._config)
        api_key = resolve_search_key(self._config, provider)
        if not api_key:
            return ToolResult.fail(
                "missing_api_key",
                "web_search needs an API key. Set GEMINI_API_KEY, BRAVE_API_KEY, "
                "PERPLEXITY_API_KEY, or XAI_API_KEY.",
            )

        query = text_arg(params, "query")
        if not query:
            return ToolResult.fail("missing_query", "query is required")
        count = clamp(params.get("count"), 1, MAX_COUNT, DEFAULT_COUNT)

        freshness = None
        raw_freshness = text_arg(params, "freshness")
        if raw_freshness:
            if provider not in ("brave", "perplexity"):
                return ToolResult.fail(
                    "unsupported_freshness",
                    "freshness is only supported by Brave and Perplexity providers.",
                )
            freshness = normalize_freshness(raw_freshness)
            if freshness is None:
                return ToolResult.fail(
                    "invalid_freshness",
                    "freshness must be one of pd, pw, pm, py, or a range like YYYY-MM-DDtoYYYY-MM-DD.",
                )

        self._cache.ttl_seconds = self._config.web.cache_ttl_minutes * 60
        cache_key = WebCache.key(provider, query, count, freshness or "default")
        cached = self._cache.get(cache_key)
        if cached is not None:
            return ToolResult.ok(**cached, cached=True)

        start = time.monotonic()
        try:
            if self._client is not None:
                payload = await self._run(self._client, provider, api_key, query, count, freshness, params)
            else:
                timeout = self._config.web.timeout_seconds
                async with httpx.AsyncClient(timeout=timeout) as client:
                    payload = await self._run(client, provider, api_key, query, count, freshness, params)
        except (httpx.HTTPError, SearchAPIError) as e:
            logger.warning("[web_search] %s request failed: %s", provider, e)
            return ToolResult.fail("search_failed", str(e) or type(e).__name__, provider=provider)

        payload = {"query": query, "provider": provider, **payload}
        payload["tookMs"] = int((time.monotonic() - start) * 1000)
        self._cache.put(cache_key, payload)
        return ToolResult.ok(**payload)

    async def _run(
        self,
        client: httpx.AsyncClient,
        provider: str,
        api_key: str,
        query: str,
        count: int,
        freshness: str | None,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        if provider == "brave":
            query_params = {"q": query, "count": str(count)}
            for key in ("country", "search_lang"):
                value = text_arg(params, key)
                if value:
                    query_params[key] = value
            if freshness:
                query_params["freshness"] = freshness
            return await self._brave(client, api_key, query_params)
        if provider == "perplexity":
            return await self._perplexity(client, api_key, query, freshness)
        if provider == "grok":
            return await self._grok(client, api_key, query)
        return await self._gemini(client, api_key, query)

    @staticmethod
    def _json(resp: httpx.Response, label: str) -> dict[str, Any]:
        if resp.status_code != 200:
            raise SearchAPIError(f"{label} API error ({resp.status_code}): {resp.text[:500]}")
        try:
            return resp.json()
        except ValueError as e:
            raise SearchAPIError(f"{label} returned invalid JSON") from e

    async def _brave(
        self, client: httpx.AsyncClient, api_key: str, query_params: dict[str, str]
    ) -> dict[str, Any]:
        resp = await client.get(
            BRAVE_SEARCH_ENDPOINT,
            params=query_params,
            headers={"Accept": "application/json", "X-Subscription-Token": api_key},
            timeout=self._config.web.timeout_seconds,
        )
        data = self._json(resp, "Brave Search")
        results = []
        for entry in (data.get("web") or {}).get("results") or []:
            url = entry.get("url") or ""
            title = entry.get("title") or ""
            description = entry.get("description") or ""
            results.append(
                {
                    "title": wrap_web_content(title, "web_search"),
                    "url": url,
                    "description": wrap_web_content(description, "web_search"),
                    "published": entry.get("age"),
                    "siteName": urlparse(url).hostname if url else None,
                }
            )
        return {"count": len(results), "results": results}

    async def _gemini(self, client: httpx.AsyncClient, api_key: str, query: str) -> dict[str, Any]:
        provider = self._config.llm.providers.get("gemini")
        base_url = (provider.base_url if provider is not None else "") or GEMINI_BASE_URL
        model = (provider.model if provider is not None else "") or DEFAULT_GEMINI_SEARCH_MODEL
        body = {
            "contents": [{"parts": [{"text": query}]}],
            "tools": [{"google_search": {}}],
            "systemInstruction": {"parts": [{"text": _GEMINI_INSTRUCTION}]},
        }
        resp = await client.post(
            f"{base_url.rstrip('/')}/models/{model}:generateContent",
            json=body,
            headers={"x-goog-api-key": api_key},
            timeout=self._config.web.timeout_seconds,
        )
        data = self._json(resp, "Gemini Search")

        candidate = (data.get("candidates") or [{}])[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        content = "\n".join(p["text"] for p in parts if p.get("text")) or "No response"

        chunks = (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []
        webs = [c.get("web") or {} for c in chunks]
        resolved = [await self._resolve_grounding_uri(client, w["uri"]) for w in webs if w.get("uri")]
        citations = list(dict.fromkeys(resolved))
        if citations:
            lines = []
            for i, uri in enumerate(citations):
                title = webs[i].get("title", "") if i < len(webs) else ""
                lines.append(f"[{i + 1}] {title}: {uri}" if title else f"[{i + 1}] {uri}")
            content += "\n\nSources:\n" + "\n".join(lines)

        return {
            "model": model,
            "content": wrap_web_content(content, "web_search"),
            "citations": citations,
        }

    async def _resolve_grounding_uri(self, client: httpx.AsyncClient, uri: str) -> str:
        """Grounding chunks link through a Google redirect; read its Location."""
        if GROUNDING_REDIRECT_MARKER not in uri:
            return uri
        try:
            resp = await client.head(uri, follow_redirects=False, timeout=self._config.web.timeout_seconds)
        except httpx.HTTPError as e:
            logger.debug("[web_search] Redirect resolve failed for %s: %s", uri, e)
            return uri
        return resp.headers.get("location") or uri

    async def _perplexity(
        self, client: httpx.AsyncClient, api_key: str, query: str, freshness: str | None
    ) -> dict[str, Any]:
        web = self._config.web
        base_url = web.perplexity_base_url or (
            PERPLEXITY_DIRECT_BASE_URL if api_key.startswith("pplx-") else DEFAULT_PERPLEXITY_BASE_URL
        )
        base_url = base_url.rstrip("/")
        model = web.perplexity_model
        if urlparse(base_url).hostname == "api.perplexity.ai":
            model = model.removeprefix("perplexity/")
        body: dict[str, Any] = {"model": model, "messages": [{"role": "user", "content": query}]}
        recency = _PERPLEXITY_RECENCY.get(freshness or "")
        if recency:
            body["search_recency_filter"] = recency
        resp = await client.post(
            f"{base_url}/chat/completions",
            json=body,
            headers={
                "Authorization": f"Bearer {api_key}",
                "HTTP-Referer": "https://myclaw.app",
                "X-Title": "MyClaw Web Search",
            },
            timeout=web.timeout_seconds,
        )
        data = self._json(resp, "Perplexity")
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or "No response"
        return {
            "model": model,
            "content": wrap_web_content(content, "web_search"),
            "citations": data.get("citations") or [],
        }

    async def _grok(self, client: httpx.AsyncClient, api_key: str, query: str) -> dict[str, Any]:
        model = self._config.web.grok_model
        resp = await client.post(
            XAI_API_ENDPOINT,
            json={
                "model": model,
                "input": [{"role": "user", "content": query}],
                "tools": [{"type": "web_search"}],
            },
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=self._config.web.timeout_seconds,
        )
        data = self._json(resp, "xAI")
        text, annotated = extract_grok_content(data)
        return {
            "model": model,
            "content": wrap_web_content(text or "No response", "web_search"),
            "citations": data.get("citations") or annotated,
        }
