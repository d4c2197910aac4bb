"""Console notifier — prints pushes to the terminal.

Used when no LINE token is configured, so background task results and
reminders still surface during a local ``myclaw chat`` session.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.json import JSON
from rich.panel import Panel

from channels.base import Notifier


class ConsoleNotifier(Notifier):
    """Render pushed messages as rich panels."""

    name = "console"

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    async def push_text(self, to: str, text: str) -> None:
        self._console.print(
            Panel(text, title=f"[dim]push → {to}[/dim]", border_style="bright_yellow")
        )

    async def push_image(self, to: str, image_url: str, preview_url: str = "") -> None:
        self._console.print(
            Panel(image_url, title=f"[dim]image → {to}[/dim]", border_style="bright_yellow")
        )

    async def push_flex(self, to: str, alt_text: str, contents: dict[str, Any]) -> None:
        self._console.print(
            Panel(
                JSON.from_data(contents),
                title=f"[dim]card → {to}: {alt_text}[/dim]",
                border_style="bright_yellow",
            )
        )
