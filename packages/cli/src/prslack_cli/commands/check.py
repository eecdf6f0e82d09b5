"""check command — probe the configured Slack channel."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

console = Console()


@click.command("check")
@click.pass_context
def check_cmd(ctx):
    """Verify SLACK_TOKEN can see SLACK_CHANNEL."""
    slack = ctx.obj.get("slack")
    channel = ctx.obj["config"].get("slack_channel")
    if slack is None:
        raise click.UsageError("SLACK_TOKEN and SLACK_CHANNEL must both be set.")

    if asyncio.run(slack.validate_channel(channel)):
        console.print(f"[green]✓ Slack channel {channel} is reachable.[/green]")
        return
    console.print(f"[red]✗ Slack channel {channel} could not be validated. See the log above.[/red]")
    ctx.exit(1)
