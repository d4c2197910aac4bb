"""LINE message formatting utilities.

LINE renders plain text only, so agent markdown is flattened before
sending, and long replies are split at natural boundaries to fit the
per-message size limit.
"""

from __future__ import annotations

import re

MAX_MESSAGE_CHARS = 5000
MAX_MESSAGES = 5


def strip_markdown(text: str) -> str:
    """Flatten markdown into plain text that reads well in LINE."""
    text = re.sub(r"```\w*\n?([\s\S]*?)```", lambda m: m.group(1).strip(), text)
    text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^>\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^[-*_]{3,}\s*$", "", text, flags=re.MULTILINE)
    text = re.sub(r"\*{3}([^*]+?)\*{3}", r"\1", text)
    text = re.sub(r"\*{2}([\s\S]+?)\*{2}", r"\1", text)
    # *italic* but not "* " bullets at line start
    text = re.sub(r"(?<![*\w])\*([^*\s][^*\n]*?[^*\s]|[^*\s])\*(?![*\w])", r"\1", text)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"`([^`]+)`", r"\1", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def split_reply(
    text: str, max_chars: int = MAX_MESSAGE_CHARS, max_messages: int = MAX_MESSAGES
) -> list[str]:
    """Split a long reply into at most ``max_messages`` chunks.

    Preferred cut points, in order: before a heading, at a blank line,
    at a newline. A cut is only accepted past 30% of the window so chunks
    don't degenerate; otherwise the window is cut hard.
    """
    if len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    remaining = text
    floor = max_chars * 0.3

    while remaining and len(chunks) < max_messages:
        if len(remaining) <= max_chars:
            chunks.append(remaining)
            break

        window = remaining[:max_chars]
        cut_at = -1

        headings = [m.start() for m in re.finditer(r"\n(?=\*\*|#{1,3} )", window)]
        if headings:
            cut_at = headings[-1]
        if cut_at < floor:
            blank = window.rfind("\n\n")
            if blank > floor:
                cut_at = blank
        if cut_at < floor:
            newline = window.rfind("\n")
            if newline > floor:
                cut_at = newline
        if cut_at < floor:
            cut_at = max_chars

        chunks.append(remaining[:cut_at].rstrip())
        remaining = remaining[cut_at:].lstrip()

    return chunks
