"""Mirror keyword-matching PR comments into the summary's Slack thread.

Each matching comment gets its own threaded reply under the PR summary. The
reply is found again after a restart through the comment URL fragment it
contains (``#issuecomment-<id>`` or ``#discussion_r<id>``). Deleted comments
are not mirrored; a posted reply is never removed.
"""

from __future__ import annotations

import logging

from prslack_store.base import BaseStore
from prslack_store.models import KeywordCommentRecord

from prslack_core.errors import InternalError, SyncError
from prslack_core.formatters import build_keyword_comment_message, comment_fragment
from prslack_core.models import PullRequestComment, PullRequestState
from prslack_core.sync import SyncAction, SyncEngine, SyncResult
from prslack_core.user_mapping import map_user


def comment_key(pr_key: str, comment_id: int) -> str:
    return f"comment:{pr_key}:{comment_id}"


class KeywordMirror:
    def __init__(
        self,
        engine: SyncEngine,
        keywords: list[str],
        comment_store: BaseStore,
        logger: logging.Logger | None = None,
    ):
        self.engine = engine
        self.keywords = [k.lower() for k in keywords if k]
        self.comment_store = comment_store
        self._log = logger or logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return bool(self.keywords)

    def match(self, body: str | None) -> str | None:
        """Return the first configured keyword found in body (case-insensitive), or None."""
        if not body or not self.keywords:
            return None
        lower = body.lower()
        for keyword in self.keywords:
            if keyword in lower:
                return keyword
        return None

    async def mirror(self, state: PullRequestState, comment: PullRequestComment) -> SyncResult:
        """Create or update the thread reply for one comment. Never raises."""
        key = comment_key(state.key, comment.id)
        keyword = self.match(comment.body)
        if keyword is None:
            return SyncResult(key, SyncAction.SKIPPED)

        self._log.info("Comment %s on %s matched keyword %r", comment.id, state.key, keyword)
        try:
            # Shares the PR's lock so the primary record cannot change underneath us.
            async with self.engine.key_lock(state.key):
                return await self._mirror(state, comment, key)
        except SyncError as e:
            self._log.error("Mirroring comment %s on %s failed (code=%s): %s", comment.id, state.key, e.code, e)
            return SyncResult(key, SyncAction.FAILED, e)
        except Exception as e:
            self._log.exception("Unexpected error mirroring comment %s on %s", comment.id, state.key)
            return SyncResult(key, SyncAction.FAILED, InternalError(str(e)))

    async def _mirror(self, state: PullRequestState, comment: PullRequestComment, key: str) -> SyncResult:
        slack = self.engine.slack
        primary = self.engine.store.get(state.key)
        if primary is None:
            primary = await self.engine.recover(state)
            if primary is None:
                self._log.debug("No summary for %s; not mirroring comment %s", state.key, comment.id)
                return SyncResult(key, SyncAction.ABORTED)

        text = build_keyword_comment_message(map_user(self.engine.user_map, comment.author), comment.body, comment.url)

        record = self.comment_store.get(key)
        if record is not None:
            await slack.update_message(record.channel, record.reply_ts, text)
            self.comment_store.set(key, KeywordCommentRecord(record.channel, record.parent_ts, record.reply_ts, text))
            return SyncResult(key, SyncAction.UPDATED)

        fragment = comment_fragment(comment.url) if comment.url else None
        reply_ts = None
        if fragment:
            reply_ts = await slack.find_reply_by_fragment(primary.channel, primary.summary_ts, fragment)

        if reply_ts is not None:
            await slack.update_message(primary.channel, reply_ts, text)
            action = SyncAction.RECOVERED
        else:
            reply_ts = await slack.post_message(primary.channel, text, thread_ts=primary.summary_ts)
            action = SyncAction.CREATED

        self.comment_store.set(key, KeywordCommentRecord(primary.channel, primary.summary_ts, reply_ts, text))
        self._log.info("Mirrored comment %s on %s (%s, ts=%s)", comment.id, state.key, action.value, reply_ts)
        return SyncResult(key, action)
