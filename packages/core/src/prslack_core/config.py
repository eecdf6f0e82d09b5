import os
import re
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "slack_channel": None,
    "comment_keywords": [],  # case-insensitive substrings; matching comments are mirrored to the thread
    "debounce_seconds": 0.0,  # 0 = reconcile every event immediately
    "storage_max_entries": 500,
    "find_cache_size": 100,  # LRU size for PR key -> summary ts lookups (0 disables)
    "history_max_scanned": 400,
    "include_threads": False,
    "user_mapping": "config/github-to-slack.yml",
    "host": "0.0.0.0",
    "port": 3000,
}

_TRUE_VALUES = {"1", "true", "yes", "y"}


def parse_keywords(raw) -> list[str]:
    """Accept a list or a comma/newline separated string; drop blanks."""
    if not raw:
        return []
    if isinstance(raw, str):
        raw = re.split(r"[,\n]", raw)
    return [str(k).strip() for k in raw if str(k).strip()]


def _int_env(name: str) -> Optional[int]:
    val = os.environ.get(name)
    if not val:
        return None
    try:
        return int(val)
    except ValueError:
        return None


def load_config(config_path: str = ".prslack.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prslack.yml in the current directory
      3. Environment variables (SLACK_CHANNEL, SLACK_COMMENT_KEYWORDS, DEBOUNCE_MS, ...)
      4. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "comment_keywords": list(DEFAULT_CONFIG["comment_keywords"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if os.environ.get("SLACK_CHANNEL"):
        config["slack_channel"] = os.environ["SLACK_CHANNEL"]
    if os.environ.get("SLACK_COMMENT_KEYWORDS"):
        config["comment_keywords"] = os.environ["SLACK_COMMENT_KEYWORDS"]
    debounce_ms = _int_env("DEBOUNCE_MS")
    if debounce_ms is not None:
        config["debounce_seconds"] = max(0, debounce_ms) / 1000
    max_entries = _int_env("STORAGE_MAX_ENTRIES")
    if max_entries is not None:
        config["storage_max_entries"] = max_entries
    if os.environ.get("SLACK_INCLUDE_THREADS"):
        config["include_threads"] = os.environ["SLACK_INCLUDE_THREADS"].lower() in _TRUE_VALUES

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["comment_keywords"] = parse_keywords(config.get("comment_keywords"))
    config["debounce_seconds"] = max(0.0, float(config.get("debounce_seconds") or 0))

    # Resolve credentials from environment variables
    config["slack_token"] = os.environ.get("SLACK_TOKEN")
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["webhook_secret"] = os.environ.get("GITHUB_WEBHOOK_SECRET")

    return config
