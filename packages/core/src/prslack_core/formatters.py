"""Slack mrkdwn bodies for the summary, checks and keyword comment messages.

Every builder is a pure function of its inputs: the sync engine compares the
rendered text with what it last sent to skip redundant updates, so the same
state must always produce byte-identical output.
"""

from __future__ import annotations

from prslack_core.models import APPROVED, CHANGES_REQUESTED, FAILURE, SUCCESS, PullRequestState
from prslack_core.user_mapping import map_user

# The summary links to the PR with this query parameter appended. History
# recovery searches for "<pr url>?frombot=prslack", so the format must never change.
TRACKING_PARAM = "frombot=prslack"
# Hidden marker written by releases before the tracking parameter existed.
LEGACY_MARKER_PREFIX = "prslack:"

NO_CHECKS_TEXT = "No checks reported."
DETAIL_HEADER = "Checks breakdown"
# The checks reply inside the summary thread always starts with one of these.
DETAIL_FRAGMENTS = (NO_CHECKS_TEXT, DETAIL_HEADER)

KEYWORD_BODY_LIMIT = 400

_REVIEWER_EMOJI = {APPROVED: "✅", CHANGES_REQUESTED: "❌"}
_CHECK_EMOJI = {SUCCESS: "✅", FAILURE: "❌"}


def summary_anchor(state: PullRequestState) -> str:
    return f"{state.url}?{TRACKING_PARAM}"


def recovery_anchors(state: PullRequestState) -> tuple[str, ...]:
    """All substrings that identify this PR's summary in channel history, newest format first."""
    return (summary_anchor(state), f"{LEGACY_MARKER_PREFIX}{state.key}")


def _lifecycle_prefix(state: PullRequestState) -> str:
    if state.merged:
        return "Merged ✅ | "
    if state.closed:
        return "Closed ❌ | "
    if state.draft:
        return "Draft 📝 | "
    return ""


def _status_line(state: PullRequestState) -> str:
    total = len(state.checks)
    passed = sum(1 for c in state.checks if c.status == SUCCESS)
    if total == 0:
        emoji = "🤷"
    elif passed == total:
        emoji = "✅"
    elif any(c.status == FAILURE for c in state.checks):
        emoji = "❌"
    else:
        emoji = "🟡"
    return f"{emoji} Status: {passed}/{total} checks passed"


def build_summary_message(state: PullRequestState, user_map: dict[str, str]) -> str:
    repo_link = f"<https://github.com/{state.full_name}|{state.full_name}>"
    pr_link = f"<{summary_anchor(state)}|#{state.number}>"
    header = f"{_lifecycle_prefix(state)}{repo_link} - *{state.title}* ({pr_link})"

    if state.reviewers:
        reviewers = ", ".join(
            f"{map_user(user_map, r.login)} {_REVIEWER_EMOJI.get(r.status, '🟡')}" for r in state.reviewers
        )
    else:
        reviewers = "(none)"
    people = f"Author: {map_user(user_map, state.author)} | Reviewers: {reviewers}"

    return f"{header}\n{people}\n{_status_line(state)}"


def build_detail_message(state: PullRequestState) -> str:
    if not state.checks:
        return NO_CHECKS_TEXT
    total = len(state.checks)
    passed = sum(1 for c in state.checks if c.status == SUCCESS)
    failed = sum(1 for c in state.checks if c.status == FAILURE)
    pending = total - passed - failed
    lines = [f"{DETAIL_HEADER} (passed/failed/pending): {passed}/{failed}/{pending}"]
    lines.extend(f"{_CHECK_EMOJI.get(c.status, '🕒')} {c.name}" for c in state.checks)
    return "\n".join(lines)


def build_keyword_comment_message(author: str, body: str, url: str | None = None) -> str:
    """Reply mirrored into the summary thread for a keyword-matching comment.

    The comment URL doubles as the recovery fragment for the reply, so it is
    always included when known.
    """
    if len(body) > KEYWORD_BODY_LIMIT:
        body = body[: KEYWORD_BODY_LIMIT - 3] + "…"
    link = f" - {url}" if url else ""
    return f"Comment by {author}{link}\n{body}"


def comment_fragment(url: str) -> str | None:
    """Return the ``#issuecomment-…`` / ``#discussion_r…`` part of a comment URL."""
    idx = url.find("#")
    if idx == -1:
        return None
    return url[idx:]
