"""GitHub login → Slack handle mapping loaded from a YAML file."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MAPPING_PATH = "config/github-to-slack.yml"


def load_user_mapping(path: str = DEFAULT_MAPPING_PATH) -> dict[str, str]:
    """Read ``github-login: slack-handle`` pairs.

    A missing or unreadable file yields an empty mapping so every login falls
    back to itself.
    """
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with open(p) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load user mapping from %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.error("User mapping %s must be a mapping, got %s", path, type(data).__name__)
        return {}
    return {str(k): str(v).lstrip("@") for k, v in data.items() if v}


def map_user(user_map: dict[str, str], login: str) -> str:
    handle = user_map.get(login)
    return f"@{handle}" if handle else f"@{login}"
