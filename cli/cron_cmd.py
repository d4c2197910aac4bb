"""CLI command for inspecting scheduled jobs.

Works straight against the database; a running agent re-arms enabled
jobs on its next start.
"""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from core.config import load_config
from core.database import Database

console = Console()


@click.command("cron")
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.argument("action", default="list")
@click.argument("job_id", required=False)
def cron_cmd(config_path: str | None, action: str, job_id: str | None) -> None:
    """Manage scheduled jobs.

    Actions: list, history [id], enable <id>, disable <id>, delete <id>
    """
    asyncio.run(_cron_action(config_path, action, job_id))


async def _cron_action(config_path: str | None, action: str, job_id: str | None) -> None:
    config = load_config(config_path)
    db = Database(config.resolve_path(config.database.db_path))
    await db.initialize()
    try:
        await _dispatch(db, action, job_id)
    finally:
        await db.close()


async def _dispatch(db: Database, action: str, job_id: str | None) -> None:
    if action == "list":
        rows = await db.execute(
            "SELECT * FROM cron_jobs ORDER BY enabled DESC, created_at DESC"
        )
        if not rows:
            console.print("[dim]No scheduled jobs.[/dim]")
            return

        table = Table(title="Scheduled Jobs")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Schedule", style="yellow")
        table.add_column("Target")
        table.add_column("Enabled", style="bold")
        table.add_column("Runs", justify="right")
        table.add_column("Last Status")
        table.add_column("Last Run")

        for row in rows:
            schedule = row["schedule"]
            if row["schedule_type"] == "once":
                schedule = f"once @ {schedule}"
            table.add_row(
                row["id"],
                row["name"],
                f"{schedule} ({row['timezone']})",
                row["target_user_id"],
                "Yes" if row["enabled"] else "No",
                str(row["run_count"]),
                row["last_status"] or "never",
                row["last_run_at"] or "never",
            )
        console.print(table)

    elif action == "history":
        if job_id:
            rows = await db.execute(
                """SELECT * FROM cron_runs WHERE job_id = ?
                   ORDER BY started_at DESC, id DESC LIMIT 20""",
                (job_id,),
            )
        else:
            rows = await db.execute(
                "SELECT * FROM cron_runs ORDER BY started_at DESC, id DESC LIMIT 20"
            )
        if not rows:
            console.print("[dim]No run history.[/dim]")
            return

        table = Table(title=f"Run History — {job_id}" if job_id else "Run History")
        table.add_column("Started", style="cyan")
        table.add_column("Job", style="green")
        table.add_column("Status", style="bold")
        table.add_column("Error")

        for row in rows:
            table.add_row(
                row["started_at"],
                row["job_name"],
                row["status"],
                (row["error"] or "")[:60],
            )
        console.print(table)

    elif action in ("enable", "disable", "delete") and job_id:
        if action == "delete":
            await db.execute_update("DELETE FROM cron_runs WHERE job_id = ?", (job_id,))
            changed = await db.execute_update("DELETE FROM cron_jobs WHERE id = ?", (job_id,))
        else:
            changed = await db.execute_update(
                "UPDATE cron_jobs SET enabled = ? WHERE id = ?",
                (1 if action == "enable" else 0, job_id),
            )
        if not changed:
            console.print(f"[red]Job {job_id} not found.[/red]")
        elif action == "enable":
            console.print(f"[green]Job {job_id} enabled.[/green]")
        elif action == "disable":
            console.print(f"[yellow]Job {job_id} disabled.[/yellow]")
        else:
            console.print(f"[red]Job {job_id} deleted.[/red]")
    else:
        console.print(
            "[red]Usage: myclaw cron [list|history [id]|enable <id>|disable <id>|delete <id>][/red]"
        )
