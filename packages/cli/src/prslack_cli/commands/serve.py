"""serve command — run the webhook receiver."""

from __future__ import annotations

import click
import uvicorn
from rich.console import Console

from prslack_cli.webhook import create_app

console = Console()


@click.command("serve")
@click.option("--host", default=None, help="Interface to bind. Overrides config file.")
@click.option("--port", type=int, default=None, help="Port to listen on. Overrides config file.")
@click.pass_context
def serve_cmd(ctx, host: str | None, port: int | None):
    """Receive GitHub webhooks and keep one Slack summary per pull request.

    Point the repository (or organization) webhook at http://<host>:<port>/webhook
    with content type application/json.

    \b
    Environment variables:
      SLACK_TOKEN             Slack bot token (chat:write, channels:history)
      SLACK_CHANNEL           Channel ID summaries are posted to
      GITHUB_TOKEN            GitHub token used to read PR state (or use gh CLI)
      GITHUB_WEBHOOK_SECRET   Shared secret for X-Hub-Signature-256 checks
    """
    config = ctx.obj["config"]
    dispatcher = ctx.obj["dispatcher"]
    host = host or config["host"]
    port = port or config["port"]

    app = create_app(
        dispatcher,
        secret=config.get("webhook_secret"),
        slack=ctx.obj.get("slack"),
        channel=config.get("slack_channel"),
    )
    console.print(f"Listening for GitHub webhooks on [bold]http://{host}:{port}/webhook[/bold]")
    # Logging is already configured by the CLI group; keep uvicorn from replacing it.
    uvicorn.run(app, host=host, port=port, log_config=None)
