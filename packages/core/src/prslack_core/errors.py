"""Error taxonomy for sync cycles.

Every failure that can abort a cycle is one of these types; the ``code`` class
attribute is what gets logged. An anchor search that finds nothing is not an
error: it returns None.
"""

from __future__ import annotations


class SyncError(Exception):
    code = "internal"


class TransportError(SyncError):
    """A Slack call failed (after rate-limit retries, where applicable)."""

    code = "slack_api"

    def __init__(self, message: str, method: str | None = None, slack_error: str | None = None):
        super().__init__(message)
        self.method = method
        self.slack_error = slack_error


class AggregationError(SyncError):
    """Pull request state could not be loaded from GitHub."""

    code = "github_api"


class InternalError(SyncError):
    code = "internal"
