"""GitHub credentials for prslack.

The webhook server usually runs with GITHUB_TOKEN set by its deployment.
`prslack sync` on a laptop can reuse a GitHub CLI session instead, either
through GH_TOKEN or the token `gh auth login` stored.

The Slack bot token has no fallback: it only ever comes from SLACK_TOKEN.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
GH_CLI_TIMEOUT = 5


def _gh_cli_token() -> str | None:
    try:
        result = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=GH_CLI_TIMEOUT)
    except FileNotFoundError:
        return None
    except subprocess.TimeoutExpired:
        logger.debug("`gh auth token` timed out after %ds", GH_CLI_TIMEOUT)
        return None

    if result.returncode != 0:
        logger.debug("`gh auth token` failed: %s", result.stderr.strip())
        return None
    return result.stdout.strip() or None


def resolve_github_token() -> str | None:
    """Return the first GitHub token found, or None to use anonymous access."""
    for name in TOKEN_ENV_VARS:
        token = os.environ.get(name)
        if token:
            logger.debug("Using GitHub token from %s", name)
            return token

    token = _gh_cli_token()
    if token:
        logger.debug("Using GitHub token from the gh CLI session")
    return token
