"""sync command — reconcile one pull request without waiting for a webhook."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

from prslack_core.errors import AggregationError
from prslack_core.sync import SyncAction

console = Console()

_ACTION_STYLE = {
    SyncAction.CREATED: "green",
    SyncAction.RECOVERED: "green",
    SyncAction.UPDATED: "green",
    SyncAction.SKIPPED: "dim",
    SyncAction.FAILED: "red",
}


def _split_repo(repo: str) -> tuple[str, str]:
    owner, sep, name = repo.partition("/")
    if not sep or not owner or not name or "/" in name:
        raise click.BadParameter("expected owner/name", param_hint="--repo")
    return owner, name


@click.command("sync")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option(
    "--event",
    default=None,
    help="Event name to attribute the sync to, e.g. issue_comment.created.",
)
@click.option("--force", is_flag=True, help="Update both Slack messages even if nothing changed.")
@click.pass_context
def sync_cmd(ctx, repo: str, pr_number: int, event: str | None, force: bool):
    """Create, recover or update the Slack summary for one pull request."""
    owner, name = _split_repo(repo)
    dispatcher = ctx.obj["dispatcher"]
    if dispatcher.engine is None:
        raise click.UsageError("SLACK_TOKEN and SLACK_CHANNEL must both be set to sync.")

    async def _run():
        state = await dispatcher.source.fetch(owner, name, pr_number)
        return await dispatcher.engine.reconcile(state, event, force=force)

    try:
        result = asyncio.run(_run())
    except AggregationError as e:
        raise click.ClickException(str(e))

    style = _ACTION_STYLE.get(result.action, "yellow")
    console.print(f"[{style}]{result.key}: {result.action.value}[/{style}]")
    if not result.ok:
        console.print(f"[red]{result.error.code}: {result.error}[/red]")
        ctx.exit(1)
