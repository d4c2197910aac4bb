"""web_fetch — fetch a URL and extract readable content or image URLs."""

from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime
from typing import Any

import httpx

from tools.base import (
    BaseTool,
    InvocationContext,
    PermissionLevel,
    ToolResult,
    clamp,
    text_arg,
)
from tools.web.extract import (
    extract_image_urls,
    html_to_markdown,
    html_to_text,
    markdown_to_text,
)
from tools.web.shared import BlockedURLError, WebCache, is_private_url, wrap_web_content

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 50000
MIN_MAX_CHARS = 100
MAX_REDIRECTS = 3
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_7_2) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)
_MODES = ("markdown", "text", "images")
_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})


class WebFetchTool(BaseTool):
    """Lightweight page access without a browser."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._config: Any = None
        self._client = client
        self._cache = WebCache()

    @property
    def name(self) -> str:
        return "web_fetch"

    @property
    def description(self) -> str:
        return (
            "Fetch and extract content from a URL. Modes: 'markdown' (default) "
            "extracts readable text, 'text' strips formatting, 'images' extracts "
            "image URLs from the page (use this to find direct image URLs for "
            "sending). Use for lightweight page access without browser automation."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "HTTP or HTTPS URL to fetch."},
                "extractMode": {
                    "type": "string",
                    "enum": list(_MODES),
                    "description": 'Extraction mode: "markdown", "text" or "images". Default: "markdown".',
                },
                "maxChars": {
                    "type": "number",
                    "description": "Maximum characters to return. Default: 50000.",
                },
            },
            "required": ["url"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    @property
    def parallel_safe(self) -> bool:
        return True

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        url = text_arg(params, "url")
        if not url:
            return ToolResult.fail("missing_url", "url is required")
        if not url.startswith(("http://", "https://")):
            return ToolResult.fail("invalid_url", "Only http and https URLs are supported.", url=url)

        mode = text_arg(params, "extractMode")
        if mode not in _MODES:
            mode = "markdown"
        limit = DEFAULT_MAX_CHARS
        if self._config is not None:
            limit = self._config.web.fetch_max_chars
            self._cache.ttl_seconds = self._config.web.cache_ttl_minutes * 60
        max_chars = clamp(params.get("maxChars"), MIN_MAX_CHARS, limit, limit)

        cache_key = WebCache.key("fetch", url, mode, max_chars)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return ToolResult.ok(**cached, cached=True)

        start = time.monotonic()
        try:
            resp, final_url = await self._get(url)
        except BlockedURLError as e:
            logger.warning("[web_fetch] Refused private address %s", e.url)
            return ToolResult.fail("ssrf_blocked", str(e), url=url)
        except httpx.HTTPError as e:
            logger.warning("[web_fetch] %s failed: %s", url, e)
            return ToolResult.fail("fetch_failed", str(e) or type(e).__name__, url=url)

        if resp.status_code >= 400:
            return ToolResult.fail(
                "fetch_failed",
                f"Web fetch failed ({resp.status_code}): {resp.text[:500]}",
                url=url,
            )

        raw_type = resp.headers.get("content-type", "application/octet-stream")
        content_type = raw_type.split(";")[0].strip().lower()
        body = resp.text

        if mode == "images":
            if content_type != "text/html":
                return ToolResult.fail(
                    "not_html",
                    f"Cannot extract images from {content_type}. Only HTML pages are supported.",
                    url=url,
                    finalUrl=final_url,
                )
            images = extract_image_urls(body, final_url)
            payload: dict[str, Any] = {
                "url": url,
                "finalUrl": final_url,
                "extractMode": "images",
                "imageCount": len(images),
                "images": images,
                "tookMs": int((time.monotonic() - start) * 1000),
            }
            self._cache.put(cache_key, payload)
            return ToolResult.ok(**payload)

        title = None
        extractor = "raw"
        text = body
        if content_type == "text/markdown":
            extractor = "markdown"
            if mode == "text":
                text = markdown_to_text(body)
        elif content_type == "text/html":
            extractor = "html"
            text, title = html_to_text(body) if mode == "text" else html_to_markdown(body)
        elif content_type == "application/json":
            try:
                text = json.dumps(json.loads(body), indent=2, ensure_ascii=False)
                extractor = "json"
            except ValueError:
                pass

        truncated = len(text) > max_chars
        text = wrap_web_content(text[:max_chars], "web_fetch")
        payload = {
            "url": url,
            "finalUrl": final_url,
            "status": resp.status_code,
            "contentType": content_type,
            "title": wrap_web_content(title, "web_fetch") if title else None,
            "extractMode": mode,
            "extractor": extractor,
            "truncated": truncated,
            "length": len(text),
            "fetchedAt": datetime.now(UTC).isoformat(),
            "tookMs": int((time.monotonic() - start) * 1000),
            "text": text,
        }
        self._cache.put(cache_key, payload)
        return ToolResult.ok(**payload)

    async def _get(self, url: str) -> tuple[httpx.Response, str]:
        """GET with redirects followed by hand so every hop passes the address check."""
        timeout = self._config.web.timeout_seconds if self._config is not None else 30.0
        headers = {"User-Agent": USER_AGENT, "Accept": "text/markdown, text/html;q=0.9, */*;q=0.1"}
        if self._client is not None:
            return await self._follow(self._client, url, headers, timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await self._follow(client, url, headers, timeout)

    async def _follow(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        timeout: float,
    ) -> tuple[httpx.Response, str]:
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            if is_private_url(current):
                raise BlockedURLError(current)
            resp = await client.get(
                current, headers=headers, follow_redirects=False, timeout=timeout
            )
            location = resp.headers.get("location")
            if resp.status_code not in _REDIRECT_CODES or not location:
                return resp, current
            current = str(resp.url.join(location))
            logger.debug("[web_fetch] Redirect -> %s", current)
        raise httpx.TooManyRedirects(
            f"Too many redirects (max {MAX_REDIRECTS})", request=resp.request
        )
