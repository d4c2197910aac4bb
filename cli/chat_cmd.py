"""myclaw chat — Interactive conversation with the agent.

REPL loop over ``Agent.chat`` for a local user id. Replies render as
markdown panels; generated audio and images are shown as links under
the reply, and pushes from background work appear as their own panels.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import time
from pathlib import Path

import click
from rich.console import Console, Group
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.status import Status
from rich.table import Table
from rich.text import Text

from channels.console import ConsoleNotifier
from core.agent import Agent, ChatResult
from core.config import Config, load_config
from core.log_setup import setup_logging
from core.providers.base import MediaData

console = Console()
logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────
# Palette
# ──────────────────────────────────────────────────────────────────
_C_PRIMARY = "bright_cyan"
_C_ACCENT = "bright_magenta"
_C_SUCCESS = "bright_green"
_C_WARN = "bright_yellow"
_C_DIM = "dim"
_C_USER = "bold bright_blue"
_C_BORDER = "bright_cyan"

_LOGO_SMALL = f"[{_C_PRIMARY}]◆[/] [{_C_ACCENT}]MyClaw[/]"


def _build_welcome_panel(cfg: Config, agent: Agent, user_id: str) -> Panel:
    """System info panel shown at startup."""
    info = Table.grid(padding=(0, 2))
    info.add_column(style=_C_DIM, justify="right", min_width=12)
    info.add_column()

    active = cfg.llm.active_provider()
    fallback = cfg.llm.fallback_provider()
    prov_parts = []
    for name in cfg.llm.enabled_providers():
        marker = _C_SUCCESS if name == active else _C_DIM
        prov_parts.append(f"[{marker}]●[/] {name}")
    if not prov_parts:
        prov_parts = ["[red]● none[/]"]

    info.add_row("Providers", "  ".join(prov_parts))
    if fallback:
        info.add_row("Fallback", fallback)
    info.add_row("Tools", f"[bold]{len(agent.catalog)}[/] registered")
    info.add_row("Channel", agent.notifier.name if agent.notifier else "none")
    info.add_row("User", user_id)

    commands = Text()
    commands.append("\n")
    commands.append("  /attach <file> [text]", style="bold")
    commands.append(" send media  ", style=_C_DIM)
    commands.append("  exit", style="bold")
    commands.append(" quit", style=_C_DIM)

    return Panel(
        Group(info, commands),
        title=f"[bold {_C_PRIMARY}]{cfg.agent.name}[/]",
        subtitle=f"[{_C_DIM}]v0.1.0[/]",
        border_style=_C_BORDER,
        padding=(1, 2),
    )


def _load_media(argument: str) -> tuple[MediaData, str]:
    """Parse ``/attach <file> [text]`` into media plus the accompanying text."""
    path_text, _, message = argument.partition(" ")
    path = Path(path_text).expanduser()
    mime_type, _ = mimetypes.guess_type(path.name)
    if not mime_type:
        raise ValueError(f"Cannot tell the media type of {path.name}")
    return MediaData(mime_type=mime_type, data=path.read_bytes()), message.strip()


def _render_reply(result: ChatResult, elapsed: float) -> None:
    console.print()
    console.print(
        Panel(
            Markdown(result.text),
            title=_LOGO_SMALL,
            border_style=_C_BORDER,
            padding=(1, 2),
        )
    )
    if result.audio_url:
        seconds = (result.audio_duration or 0) / 1000
        console.print(f"  [{_C_ACCENT}]♪ audio[/] {result.audio_url} [{_C_DIM}]({seconds:.1f}s)[/]")
    if result.image_url:
        console.print(f"  [{_C_ACCENT}]▣ image[/] {result.image_url}")

    footer = Text()
    footer.append("  ╰─ ", style=_C_DIM)
    footer.append(result.provider or "none", style=_C_PRIMARY)
    footer.append(f"  {result.turns} turn(s)", style=_C_DIM)
    if result.tool_calls_made:
        tools = list(dict.fromkeys(result.tool_calls_made))
        footer.append("  ", style=_C_DIM)
        footer.append(" → ".join(tools[:6]), style=_C_PRIMARY)
        if len(tools) > 6:
            footer.append(f" +{len(tools) - 6}", style=_C_DIM)
    footer.append(f"  {elapsed:.1f}s", style=_C_DIM)
    console.print(footer)
    console.print()


# ──────────────────────────────────────────────────────────────────
# Main entry
# ──────────────────────────────────────────────────────────────────


@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=None,
    help="Path to config.yaml",
)
@click.option("--user", "user_id", default="local", help="User id to chat as")
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging")
def chat_cmd(config_path: str | None, user_id: str, debug: bool) -> None:
    """Start an interactive chat session with MyClaw."""
    setup_logging(debug=debug)
    try:
        asyncio.run(_chat_loop(config_path, user_id))
    except KeyboardInterrupt:
        console.print(f"\n  [{_C_DIM}]Goodbye.[/]")


async def _chat_loop(config_path: str | None, user_id: str) -> None:
    """Main chat REPL."""
    cfg = load_config(config_path)
    notifier = None if cfg.line.channel_access_token else ConsoleNotifier(console)
    agent = Agent(cfg, notifier=notifier)

    spinner = Status(f"  [{_C_DIM}]Starting...[/]", console=console, spinner="dots")
    spinner.start()
    try:
        await agent.initialize()
    except Exception as e:
        spinner.stop()
        console.print(f"  [bold red]Initialization failed:[/bold red] {e}")
        await agent.shutdown()
        return
    spinner.stop()

    console.print(_build_welcome_panel(cfg, agent, user_id))
    console.print()

    loop = asyncio.get_running_loop()
    try:
        while True:
            try:
                user_input = await loop.run_in_executor(
                    None, lambda: Prompt.ask(f"  [{_C_USER}]❯[/]")
                )
            except (EOFError, KeyboardInterrupt):
                break

            stripped = user_input.strip()
            if stripped.lower() in ("exit", "quit", "q"):
                break
            if not stripped:
                continue

            media = None
            message = stripped
            if stripped.startswith("/attach "):
                try:
                    media, message = _load_media(stripped[len("/attach ") :].strip())
                except (OSError, ValueError) as e:
                    console.print(f"  [{_C_WARN}]{e}[/]")
                    continue

            status = Status(f"  [{_C_DIM}]Thinking...[/]", console=console, spinner="dots")
            status.start()
            start = time.time()
            try:
                result = await agent.chat(user_id, message, media)
            except Exception as e:
                console.print(f"\n  [bold red]Error:[/bold red] {e}")
                logger.exception("Chat failed")
                continue
            finally:
                status.stop()

            _render_reply(result, time.time() - start)
    finally:
        await agent.shutdown()
        console.print(f"  [{_C_DIM}]Session closed.[/]")
