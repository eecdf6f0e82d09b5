"""Correlation data models.

Decoupled from prslack_core so the store layer has no knowledge of Slack,
GitHub or message formatting.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CorrelationRecord:
    """The summary message and its checks reply for one pull request.

    ``detail_ts`` is always a threaded reply under ``summary_ts``. The last
    rendered bodies are kept so identical re-renders can be skipped.
    """

    channel: str
    summary_ts: str
    detail_ts: str
    last_summary: str | None = None
    last_detail: str | None = None


@dataclass
class KeywordCommentRecord:
    """A mirrored PR comment posted as a reply in the summary's thread."""

    channel: str
    parent_ts: str
    reply_ts: str
    last_body: str | None = None
