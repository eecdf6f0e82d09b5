"""Route GitHub webhook deliveries to sync cycles.

Each delivery is resolved to one or more pull requests, their state is
fetched from GitHub and handed to the sync engine. Comment creations and
edits are also offered to the keyword mirror once the summary is up to date.
Nothing raised here reaches the web layer: failures are logged and returned
as FAILED results.
"""

from __future__ import annotations

import logging
from typing import Any

from prslack_core.errors import AggregationError, InternalError, SyncError
from prslack_core.keywords import KeywordMirror
from prslack_core.models import PullRequestComment, work_item_key
from prslack_core.sync import SyncAction, SyncEngine, SyncResult

PULL_REQUEST_ACTIONS = frozenset(
    {
        "opened",
        "reopened",
        "synchronize",
        "edited",
        "closed",
        "ready_for_review",
        "converted_to_draft",
        "review_requested",
        "review_request_removed",
    }
)
REVIEW_ACTIONS = frozenset({"submitted", "dismissed"})
COMMENT_ACTIONS = frozenset({"created", "edited", "deleted"})
MIRRORED_COMMENT_ACTIONS = frozenset({"created", "edited"})

# Events that only carry a commit; the affected PRs are looked up by sha.
COMMIT_EVENTS = frozenset({"check_suite", "check_run", "status"})

# Fragment GitHub uses in comment URLs, e.g. .../pull/7#issuecomment-123.
COMMENT_ANCHOR_PREFIXES = {"issue_comment": "issuecomment-", "pull_request_review_comment": "discussion_r"}


def _comment_from_payload(payload: dict, pr_url: str, anchor_prefix: str) -> PullRequestComment | None:
    comment = payload.get("comment") or {}
    if "id" not in comment:
        return None
    fallback_url = f"{pr_url}#{anchor_prefix}{comment['id']}"
    return PullRequestComment(
        id=comment["id"],
        body=comment.get("body") or "",
        author=(comment.get("user") or {}).get("login") or "unknown",
        url=comment.get("html_url") or fallback_url,
    )


class EventDispatcher:
    """Turns (event name, payload) pairs into SyncEngine and KeywordMirror calls.

    ``engine`` is None when Slack is not configured; every delivery is then
    ignored with a warning.
    """

    def __init__(
        self,
        engine: SyncEngine | None,
        source,
        mirror: KeywordMirror | None = None,
        *,
        logger: logging.Logger | None = None,
    ):
        self.engine = engine
        self.source = source
        self.mirror = mirror
        self._log = logger or logging.getLogger(__name__)

    async def dispatch(self, event_name: str, payload: dict[str, Any]) -> list[SyncResult]:
        action = payload.get("action")
        event = f"{event_name}.{action}" if action else event_name

        if self.engine is None:
            self._log.warning("Slack is not configured; ignoring %s", event)
            return []

        repository = payload.get("repository") or {}
        owner = (repository.get("owner") or {}).get("login")
        name = repository.get("name")
        if not owner or not name:
            self._log.debug("Ignoring %s without a repository", event)
            return []

        try:
            targets = await self._resolve_targets(event_name, action, payload, owner, name)
        except SyncError as e:
            self._log.error("Could not resolve pull requests for %s on %s/%s (code=%s): %s", event, owner, name, e.code, e)
            return []
        except Exception:
            self._log.exception("Unexpected error resolving pull requests for %s on %s/%s", event, owner, name)
            return []
        if not targets:
            self._log.debug("Nothing to sync for %s on %s/%s", event, owner, name)
            return []

        self._log.info("Event %s for %s/%s -> PR(s) %s", event, owner, name, ", ".join(f"#{n}" for n, _ in targets))

        comment = None
        if event_name in COMMENT_ANCHOR_PREFIXES and action in MIRRORED_COMMENT_ACTIONS:
            comment = (payload, COMMENT_ANCHOR_PREFIXES[event_name])

        results = []
        for number, head_sha in targets:
            results.extend(await self._sync_one(owner, name, number, head_sha, event, comment))
        return results

    async def _resolve_targets(
        self, event_name: str, action: str | None, payload: dict, owner: str, name: str
    ) -> list[tuple[int, str | None]]:
        """Return (number, head sha) for every PR the delivery concerns."""
        if event_name == "pull_request":
            if action not in PULL_REQUEST_ACTIONS:
                return []
            return self._pull_request_target(payload)
        if event_name == "pull_request_review":
            if action not in REVIEW_ACTIONS:
                return []
            return self._pull_request_target(payload)
        if event_name == "pull_request_review_comment":
            if action not in COMMENT_ACTIONS:
                return []
            return self._pull_request_target(payload)
        if event_name == "issue_comment":
            issue = payload.get("issue") or {}
            # Plain issues share this event; only PR conversations carry "pull_request".
            if action not in COMMENT_ACTIONS or "pull_request" not in issue:
                return []
            return [(issue["number"], None)] if issue.get("number") else []
        if event_name in COMMIT_EVENTS:
            if event_name != "status" and action != "completed":
                return []
            sha = payload.get("sha") if event_name == "status" else (payload.get(event_name) or {}).get("head_sha")
            if not sha:
                return []
            numbers = await self.source.pulls_for_commit(owner, name, sha)
            return [(number, sha) for number in numbers]
        return []

    @staticmethod
    def _pull_request_target(payload: dict) -> list[tuple[int, str | None]]:
        pr = payload.get("pull_request") or {}
        if not pr.get("number"):
            return []
        return [(pr["number"], (pr.get("head") or {}).get("sha"))]

    async def _sync_one(
        self, owner: str, name: str, number: int, head_sha: str | None, event: str, comment: tuple[dict, str] | None
    ) -> list[SyncResult]:
        key = work_item_key(owner, name, number)
        try:
            state = await self.source.fetch(owner, name, number, head_sha)
        except AggregationError as e:
            self._log.error("Skipping %s for %s (code=%s): %s", event, key, e.code, e)
            return [SyncResult(key, SyncAction.FAILED, e)]
        except Exception as e:
            self._log.exception("Unexpected error loading %s for %s", key, event)
            return [SyncResult(key, SyncAction.FAILED, InternalError(str(e)))]

        results = [await self.engine.submit(state, event)]

        if comment is not None and self.mirror is not None and self.mirror.enabled:
            parsed = _comment_from_payload(comment[0], state.url, comment[1])
            if parsed is not None:
                results.append(await self.mirror.mirror(state, parsed))
        return results
