"""CLI command for inspecting background tasks."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from core.config import load_config
from core.database import Database

console = Console()

_STATUS_STYLE = {
    "running": "bright_cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
}


@click.command("tasks")
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.option("--limit", default=20, show_default=True, help="Rows to list")
@click.argument("action", default="list")
@click.argument("task_id", required=False)
def tasks_cmd(config_path: str | None, limit: int, action: str, task_id: str | None) -> None:
    """Inspect background tasks.

    Actions: list, show <id>
    """
    asyncio.run(_tasks_action(config_path, action, task_id, limit))


async def _tasks_action(
    config_path: str | None, action: str, task_id: str | None, limit: int
) -> None:
    config = load_config(config_path)
    db = Database(config.resolve_path(config.database.db_path))
    await db.initialize()
    try:
        if action == "list":
            await _list(db, limit)
        elif action == "show" and task_id:
            await _show(db, task_id)
        else:
            console.print("[red]Usage: myclaw tasks [list|show <id>][/red]")
    finally:
        await db.close()


async def _list(db: Database, limit: int) -> None:
    rows = await db.execute(
        "SELECT * FROM background_tasks ORDER BY created_at DESC LIMIT ?", (limit,)
    )
    if not rows:
        console.print("[dim]No background tasks.[/dim]")
        return

    table = Table(title="Background Tasks")
    table.add_column("ID", style="cyan")
    table.add_column("Label", style="green")
    table.add_column("Status", style="bold")
    table.add_column("Owner")
    table.add_column("Created")
    table.add_column("Completed")

    for row in rows:
        style = _STATUS_STYLE.get(row["status"], "white")
        table.add_row(
            row["id"],
            row["label"],
            f"[{style}]{row['status']}[/{style}]",
            row["user_id"],
            row["created_at"],
            row["completed_at"] or "-",
        )
    console.print(table)


async def _show(db: Database, task_id: str) -> None:
    rows = await db.execute("SELECT * FROM background_tasks WHERE id = ?", (task_id,))
    if not rows:
        console.print(f"[red]Task {task_id} not found.[/red]")
        return

    row = rows[0]
    style = _STATUS_STYLE.get(row["status"], "white")
    info = Table.grid(padding=(0, 2))
    info.add_column(style="dim", justify="right")
    info.add_column()
    info.add_row("Status", f"[{style}]{row['status']}[/{style}]")
    info.add_row("Owner", row["user_id"])
    info.add_row("Model", row["model"] or "default")
    info.add_row("Timeout", f"{row['timeout_seconds']}s")
    info.add_row("Created", row["created_at"])
    info.add_row("Completed", row["completed_at"] or "-")
    info.add_row("Task", row["task"])
    console.print(Panel(info, title=f"[bold]{row['label']}[/bold] ({row['id']})"))
    if row["result"]:
        console.print(Panel(row["result"], title="Result", border_style=style))
