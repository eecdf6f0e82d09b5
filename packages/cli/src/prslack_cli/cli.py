"""CLI entry point for prslack.

Commands:
  serve  — run the GitHub webhook receiver that keeps Slack in sync
  sync   — reconcile a single pull request once and exit
  check  — verify the Slack channel is reachable with the configured token
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prslack_cli.commands.check import check_cmd
from prslack_cli.commands.serve import serve_cmd
from prslack_cli.commands.sync import sync_cmd

console = Console()
logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _build_components(config: dict):
    """Wire the GitHub source, Slack client, stores, engine and dispatcher from config.

    Returns ``(dispatcher, slack)``. Without a Slack token or channel the
    dispatcher has no engine and ``slack`` is None: events are accepted and
    ignored so the server can still start.

    This factory lives in cli.py so neither prslack_core nor prslack_store
    know about the config format.
    """
    from prslack_core.dispatch import EventDispatcher
    from prslack_core.gh.pull_request import GitHubStateSource
    from prslack_core.keywords import KeywordMirror
    from prslack_core.slack.client import SlackClient
    from prslack_core.sync import SyncEngine
    from prslack_core.user_mapping import load_user_mapping
    from prslack_store.memory import MemoryStore

    source = GitHubStateSource(token=config.get("github_token"))

    token = config.get("slack_token")
    channel = config.get("slack_channel")
    if not token or not channel:
        logger.warning("Slack disabled: missing SLACK_TOKEN or SLACK_CHANNEL")
        return EventDispatcher(None, source), None

    slack = SlackClient(token, find_cache_size=config["find_cache_size"])
    engine = SyncEngine(
        slack,
        MemoryStore(max_entries=config["storage_max_entries"]),
        channel,
        load_user_mapping(config["user_mapping"]),
        debounce_seconds=config["debounce_seconds"],
        history_max_scanned=config["history_max_scanned"],
        include_threads=config["include_threads"],
    )
    # Comment replies get their own store so they never evict PR records.
    mirror = KeywordMirror(engine, config["comment_keywords"], MemoryStore(max_entries=config["storage_max_entries"]))
    return EventDispatcher(engine, source, mirror), slack


@click.group()
@click.version_option(
    version=importlib.metadata.version("prslack"),
    prog_name="prslack",
)
@click.option(
    "--config",
    "config_path",
    default=".prslack.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRSLACK_CONFIG",
)
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    envvar="LOG_LEVEL",
    help="Logging verbosity.",
)
@click.pass_context
def main(ctx: click.Context, config_path: str, log_level: str):
    """Mirror GitHub pull request status into Slack."""
    from prslack_core.config import load_config
    from prslack_cli.auth import resolve_github_token

    _configure_logging(log_level)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    dispatcher, slack = _build_components(config)
    ctx.obj["config"] = config
    ctx.obj["dispatcher"] = dispatcher
    ctx.obj["slack"] = slack


main.add_command(serve_cmd)
main.add_command(sync_cmd)
main.add_command(check_cmd)
