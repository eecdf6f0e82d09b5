"""Keep one Slack summary message + one checks reply in step with each pull request.

For every notification the engine either
  - creates the pair (first time this PR is seen and history has no trace of it),
  - recovers the pair from channel history (process restarted, store is empty),
  - updates whichever message's rendered text changed, or
  - does nothing when the rendered text is unchanged.

No state survives a restart: the summary embeds a recovery anchor (the PR URL
with a tracking parameter) so the pair can always be found again by scanning
the channel. A failed cycle leaves the store untouched; the next notification
for the same PR simply tries again.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Awaitable, Callable

from prslack_store.base import BaseStore
from prslack_store.models import CorrelationRecord

from prslack_core.errors import InternalError, SyncError
from prslack_core.formatters import (
    DETAIL_FRAGMENTS,
    build_detail_message,
    build_summary_message,
    recovery_anchors,
)
from prslack_core.models import PullRequestState
from prslack_core.slack.client import DEFAULT_MAX_MESSAGES, SlackClient

# Activity that should visibly touch the Slack messages even when the rendered
# text is identical.
FORCED_REFRESH_EVENTS = frozenset(
    {
        "issue_comment.created",
        "issue_comment.edited",
        "issue_comment.deleted",
        "pull_request_review_comment.created",
        "pull_request_review_comment.edited",
        "pull_request_review_comment.deleted",
        "pull_request_review.submitted",
    }
)


def is_forced(event: str | None) -> bool:
    return event in FORCED_REFRESH_EVENTS


class SyncAction(str, Enum):
    CREATED = "created"
    RECOVERED = "recovered"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"  # nothing to attach to (keyword mirror without a summary)


@dataclass
class SyncResult:
    key: str
    action: SyncAction
    error: SyncError | None = None

    @property
    def ok(self) -> bool:
        return self.action is not SyncAction.FAILED


@dataclass
class _Burst:
    future: asyncio.Future
    state: PullRequestState | None = None
    event: str | None = None
    forced: bool = False
    count: int = 0


class Debouncer:
    """Coalesce notifications for the same PR that arrive within ``window`` seconds.

    Each arrival replaces the pending state and restarts the key's timer task.
    When the timer fires, the latest state is reconciled once (forced if any
    event in the burst was forced) and every submitter of the burst gets that
    result. A burst that has started reconciling is never cancelled.
    """

    def __init__(
        self,
        window: float,
        run: Callable[[PullRequestState, str | None, bool], Awaitable[SyncResult]],
        logger: logging.Logger | None = None,
    ):
        self.window = window
        self._run = run
        self._log = logger or logging.getLogger(__name__)
        self._bursts: dict[str, _Burst] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()

    def submit(self, state: PullRequestState, event: str | None = None) -> asyncio.Future:
        key = state.key
        burst = self._bursts.get(key)
        if burst is None:
            burst = self._bursts[key] = _Burst(future=asyncio.get_running_loop().create_future())
        burst.state = state
        burst.event = event
        burst.forced = burst.forced or is_forced(event)
        burst.count += 1

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._timers[key] = asyncio.create_task(self._fire(key))
        return burst.future

    async def _fire(self, key: str) -> None:
        await asyncio.sleep(self.window)
        task = asyncio.current_task()
        del self._timers[key]
        burst = self._bursts.pop(key)
        self._running.add(task)
        if burst.count > 1:
            self._log.debug("Coalesced %d notifications for %s", burst.count, key)
        try:
            result = await self._run(burst.state, burst.event, burst.forced)
        except asyncio.CancelledError:
            burst.future.cancel()
            raise
        except Exception as e:
            if not burst.future.done():
                burst.future.set_exception(e)
        else:
            if not burst.future.done():
                burst.future.set_result(result)
        finally:
            self._running.discard(task)

    @property
    def pending(self) -> int:
        return len(self._timers) + len(self._running)

    async def flush(self) -> None:
        """Wait until every pending and running burst has finished."""
        while self._timers or self._running:
            await asyncio.gather(*self._timers.values(), *self._running, return_exceptions=True)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SyncEngine:
    def __init__(
        self,
        slack: SlackClient,
        store: BaseStore,
        channel: str,
        user_map: dict[str, str] | None = None,
        *,
        debounce_seconds: float = 0.0,
        history_max_scanned: int = DEFAULT_MAX_MESSAGES,
        include_threads: bool = False,
        logger: logging.Logger | None = None,
    ):
        self.slack = slack
        self.store = store
        self.channel = channel
        self.user_map = user_map or {}
        self.history_max_scanned = history_max_scanned
        self.include_threads = include_threads
        self._log = logger or logging.getLogger(__name__)
        self._locks: dict[str, _KeyLock] = {}
        self._debouncer = (
            Debouncer(debounce_seconds, self._run_burst, logger=self._log) if debounce_seconds > 0 else None
        )

    # ------------------------------------------------------------------ #
    # Entry points                                                         #
    # ------------------------------------------------------------------ #

    async def submit(self, state: PullRequestState, event: str | None = None) -> SyncResult:
        """Reconcile now, or after the debounce window when one is configured."""
        if self._debouncer is None:
            return await self.reconcile(state, event)
        return await asyncio.shield(self._debouncer.submit(state, event))

    async def reconcile(self, state: PullRequestState, event: str | None = None, *, force: bool = False) -> SyncResult:
        """Run one cycle for the PR. Never raises; failures come back as FAILED results."""
        key = state.key
        try:
            async with self.key_lock(key):
                record = self.store.get(key)
                if record is None:
                    return await self._bind(state)
                return await self._refresh(record, state, event, force or is_forced(event))
        except SyncError as e:
            self._log.error("Sync failed for %s (event=%s, code=%s): %s", key, event, e.code, e)
            return SyncResult(key, SyncAction.FAILED, e)
        except Exception as e:
            self._log.exception("Unexpected error syncing %s (event=%s)", key, event)
            return SyncResult(key, SyncAction.FAILED, InternalError(str(e)))

    async def recover(self, state: PullRequestState) -> CorrelationRecord | None:
        """Rebuild the record for a PR from channel history, or None if no summary exists.

        Refreshes both messages on success. Callers must hold the key lock.
        """
        summary, detail = self._render(state)
        record = await self._recover_with(state, summary, detail)
        if record is not None:
            self.store.set(state.key, record)
        return record

    async def flush(self) -> None:
        if self._debouncer is not None:
            await self._debouncer.flush()

    @asynccontextmanager
    async def key_lock(self, key: str):
        """Serialize cycles for one PR; locks are dropped once nobody holds or waits on them."""
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    # ------------------------------------------------------------------ #
    # Cycle steps                                                          #
    # ------------------------------------------------------------------ #

    async def _run_burst(self, state: PullRequestState, event: str | None, forced: bool) -> SyncResult:
        return await self.reconcile(state, event, force=forced)

    def _render(self, state: PullRequestState) -> tuple[str, str]:
        return build_summary_message(state, self.user_map), build_detail_message(state)

    async def _recover_with(self, state: PullRequestState, summary: str, detail: str) -> CorrelationRecord | None:
        summary_ts = await self.slack.find_message_by_anchor(
            self.channel,
            recovery_anchors(state),
            cache_key=state.key,
            max_messages=self.history_max_scanned,
            include_threads=self.include_threads,
        )
        if summary_ts is None:
            self._log.debug("No earlier summary for %s in the last %d messages", state.key, self.history_max_scanned)
            return None

        detail_ts = await self.slack.find_reply_by_fragment(self.channel, summary_ts, DETAIL_FRAGMENTS, prefix=True)
        # The outage may have hidden any number of changes: always push both bodies.
        await self.slack.update_message(self.channel, summary_ts, summary)
        if detail_ts is not None:
            await self.slack.update_message(self.channel, detail_ts, detail)
        else:
            detail_ts = await self.slack.post_message(self.channel, detail, thread_ts=summary_ts)

        self._log.info("Recovered Slack summary for %s (ts=%s, detail=%s)", state.key, summary_ts, detail_ts)
        return CorrelationRecord(
            channel=self.channel,
            summary_ts=summary_ts,
            detail_ts=detail_ts,
            last_summary=summary,
            last_detail=detail,
        )

    async def _bind(self, state: PullRequestState) -> SyncResult:
        key = state.key
        summary, detail = self._render(state)

        record = await self._recover_with(state, summary, detail)
        action = SyncAction.RECOVERED
        if record is None:
            summary_ts = await self.slack.post_message(self.channel, summary)
            detail_ts = await self.slack.post_message(self.channel, detail, thread_ts=summary_ts)
            record = CorrelationRecord(
                channel=self.channel,
                summary_ts=summary_ts,
                detail_ts=detail_ts,
                last_summary=summary,
                last_detail=detail,
            )
            action = SyncAction.CREATED
            self._log.info("Created Slack summary for %s (ts=%s)", key, summary_ts)

        self.store.set(key, record)
        return SyncResult(key, action)

    async def _refresh(self, record: CorrelationRecord, state: PullRequestState, event: str | None, forced: bool) -> SyncResult:
        key = state.key
        summary, detail = self._render(state)
        same_summary = record.last_summary == summary
        same_detail = record.last_detail == detail

        if same_summary and same_detail and not forced:
            self._log.debug("No changes for %s (event=%s); skipping", key, event)
            return SyncResult(key, SyncAction.SKIPPED)

        if forced or not same_summary:
            await self.slack.update_message(record.channel, record.summary_ts, summary)
        if forced or not same_detail:
            await self.slack.update_message(record.channel, record.detail_ts, detail)

        self.store.set(key, replace(record, last_summary=summary, last_detail=detail))
        self._log.info("Updated Slack messages for %s (event=%s, forced=%s)", key, event, forced)
        return SyncResult(key, SyncAction.UPDATED)
