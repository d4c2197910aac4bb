"""HTML to readable text / markdown, and image URL extraction."""

from __future__ import annotations

import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, Tag

_DROP_TAGS = ("script", "style", "noscript", "template", "svg")
_BLOCK_TAGS = frozenset(
    {"p", "div", "section", "article", "header", "footer", "table", "tr", "ul", "ol", "br", "hr"}
)
_SKIP_IMAGE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"1x1", r"pixel", r"spacer", r"blank", r"tracking",
        r"\.gif$", r"\.svg$", r"^data:image",
        r"logo", r"icon", r"favicon", r"badge", r"avatar",
        r"ad[_-]?banner", r"advertisement",
    )
]


def normalize_whitespace(text: str) -> str:
    text = text.replace("\r", "")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def _soup(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()
    return soup


def _title(soup: BeautifulSoup) -> str | None:
    if soup.title and soup.title.string:
        return normalize_whitespace(soup.title.string)
    return None


def _render(node: Tag, parts: list[str]) -> None:
    for child in node.children:
        if isinstance(child, NavigableString):
            parts.append(str(child))
            continue
        if not isinstance(child, Tag):
            continue

        name = child.name or ""
        label = normalize_whitespace(child.get_text(" "))
        if name == "a" and child.get("href"):
            parts.append(f"[{label}]({child['href']})" if label else str(child["href"]))
        elif len(name) == 2 and name[0] == "h" and name[1] in "123456":
            parts.append(f"\n{'#' * int(name[1])} {label}\n")
        elif name == "li":
            if label:
                parts.append(f"\n- {label}")
        elif name == "img" and child.get("src"):
            parts.append(f"![{child.get('alt', '').strip()}]({child['src']})")
        else:
            _render(child, parts)
            if name in _BLOCK_TAGS:
                parts.append("\n")


def html_to_markdown(html: str) -> tuple[str, str | None]:
    """Return (markdown-ish text, page title)."""
    soup = _soup(html)
    title = _title(soup)
    if soup.title:
        soup.title.decompose()
    parts: list[str] = []
    _render(soup.body or soup, parts)
    return normalize_whitespace("".join(parts)), title


def html_to_text(html: str) -> tuple[str, str | None]:
    """Return (plain text, page title)."""
    soup = _soup(html)
    title = _title(soup)
    if soup.title:
        soup.title.decompose()
    body = soup.body or soup
    return normalize_whitespace(body.get_text("\n")), title


def markdown_to_text(markdown: str) -> str:
    text = re.sub(r"!\[[^\]]*]\([^)]+\)", "", markdown)
    text = re.sub(r"\[([^\]]+)]\([^)]+\)", r"\1", text)
    text = re.sub(r"```[^\n]*\n?", "", text)
    text = re.sub(r"`([^`]+)`", r"\1", text)
    text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^\s*[-*+]\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^\s*\d+\.\s+", "", text, flags=re.MULTILINE)
    return normalize_whitespace(text)


def _small_dimension(value: str | None) -> bool:
    if not value:
        return False
    match = re.match(r"\d+", str(value))
    return bool(match) and int(match.group(0)) < 50


def extract_image_urls(html: str, base_url: str, max_images: int = 20) -> list[str]:
    """Absolute http(s) image URLs, skipping icons, pixels and tiny images."""
    soup = BeautifulSoup(html, "html.parser")
    seen: set[str] = set()
    results: list[str] = []
    for img in soup.find_all("img", src=True):
        if len(results) >= max_images:
            break
        url = urljoin(base_url, img["src"].strip())
        if not url.startswith(("http://", "https://")):
            continue
        if _small_dimension(img.get("width")) or _small_dimension(img.get("height")):
            continue
        if any(p.search(url) for p in _SKIP_IMAGE_PATTERNS):
            continue
        if url in seen:
            continue
        seen.add(url)
        results.append(url)
    return results
