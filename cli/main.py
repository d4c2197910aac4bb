"""CLI entry point for MyClaw.

Registered as `myclaw` console script in pyproject.toml.
"""

from __future__ import annotations

import click

from cli.chat_cmd import chat_cmd
from cli.cron_cmd import cron_cmd
from cli.tasks_cmd import tasks_cmd


@click.group()
@click.version_option(version="0.1.0", prog_name="MyClaw")
def cli() -> None:
    """MyClaw — a tool-calling chat agent for LINE."""


cli.add_command(chat_cmd, "chat")
cli.add_command(cron_cmd, "cron")
cli.add_command(tasks_cmd, "tasks")


if __name__ == "__main__":
    cli()
