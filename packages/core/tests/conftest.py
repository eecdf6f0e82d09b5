"""Shared fixtures: an in-memory stand-in for slack_sdk's AsyncWebClient."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from slack_sdk.errors import SlackApiError
from slack_sdk.web.slack_response import SlackResponse

from prslack_core.models import CheckState, PullRequestState, ReviewerState
from prslack_core.slack.client import SlackClient
from prslack_core.sync import SyncEngine
from prslack_store.memory import MemoryStore

CHANNEL = "C123"


class FakeSlackWeb:
    """Keeps a single channel's messages and threads in memory.

    History is served newest first and paginated with integer cursors, like
    the real API. ``errors[method]`` holds exceptions raised (in order) before
    that method starts succeeding.
    """

    def __init__(self):
        self.messages: list[dict] = []  # top level, oldest first
        self.replies: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, dict]] = []
        self.errors: dict[str, list[Exception]] = {}
        self._seq = 0

    def _record(self, method: str, kwargs: dict) -> None:
        self.calls.append((method, kwargs))
        queue = self.errors.get(method)
        if queue:
            raise queue.pop(0)

    def calls_to(self, method: str) -> list[dict]:
        return [kwargs for m, kwargs in self.calls if m == method]

    def seed(self, text: str, **extra) -> str:
        """Add a top-level message directly, without recording a call."""
        self._seq += 1
        ts = f"1700000000.{self._seq:06d}"
        self.messages.append({"ts": ts, "text": text, **extra})
        return ts

    def seed_reply(self, parent_ts: str, text: str) -> str:
        self._seq += 1
        ts = f"1700000000.{self._seq:06d}"
        self.replies.setdefault(parent_ts, []).append({"ts": ts, "text": text, "thread_ts": parent_ts})
        parent = self.find(parent_ts)
        if parent is not None:
            parent["reply_count"] = parent.get("reply_count", 0) + 1
        return ts

    def find(self, ts: str) -> dict | None:
        for message in self.messages:
            if message["ts"] == ts:
                return message
        for thread in self.replies.values():
            for reply in thread:
                if reply["ts"] == ts:
                    return reply
        return None

    @staticmethod
    def _page(items: list[dict], limit: int, cursor: str | None) -> dict:
        start = int(cursor or 0)
        end = start + limit
        has_more = end < len(items)
        return {
            "ok": True,
            "messages": items[start:end],
            "has_more": has_more,
            "response_metadata": {"next_cursor": str(end) if has_more else ""},
        }

    async def chat_postMessage(self, channel, text, thread_ts=None, **kwargs):
        self._record("chat_postMessage", {"channel": channel, "text": text, "thread_ts": thread_ts})
        if thread_ts:
            ts = self.seed_reply(thread_ts, text)
        else:
            ts = self.seed(text)
        return {"ok": True, "channel": channel, "ts": ts}

    async def chat_update(self, channel, ts, text, **kwargs):
        self._record("chat_update", {"channel": channel, "ts": ts, "text": text})
        message = self.find(ts)
        if message is None:
            return {"ok": False, "error": "message_not_found"}
        message["text"] = text
        return {"ok": True, "channel": channel, "ts": ts}

    async def conversations_history(self, channel, limit=100, cursor=None, **kwargs):
        self._record("conversations_history", {"channel": channel, "limit": limit, "cursor": cursor})
        return self._page(list(reversed(self.messages)), limit, cursor)

    async def conversations_replies(self, channel, ts, limit=100, cursor=None, **kwargs):
        self._record("conversations_replies", {"channel": channel, "ts": ts, "limit": limit, "cursor": cursor})
        parent = self.find(ts)
        thread = ([parent] if parent else []) + self.replies.get(ts, [])
        return self._page(thread, limit, cursor)

    async def conversations_info(self, channel, **kwargs):
        self._record("conversations_info", {"channel": channel})
        return {"ok": True, "channel": {"id": channel}}


def slack_error(error: str, status_code: int = 200, headers: dict | None = None) -> SlackApiError:
    response = SlackResponse(
        client=None,
        http_verb="POST",
        api_url="https://slack.com/api/test",
        req_args={},
        data={"ok": False, "error": error},
        headers=headers or {},
        status_code=status_code,
    )
    return SlackApiError(f"The request to the Slack API failed: {error}", response)


@pytest.fixture
def fake_web():
    return FakeSlackWeb()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def slack(fake_web, sleep):
    return SlackClient(client=fake_web, sleep=sleep)


@pytest.fixture
def store():
    return MemoryStore(max_entries=10)


@pytest.fixture
def engine(slack, store):
    return SyncEngine(slack, store, CHANNEL, {"alice": "alice.s"})


@pytest.fixture
def make_state():
    def _make(number=7, title="Add widgets", reviewers=None, checks=None, **flags):
        return PullRequestState(
            owner="acme",
            repo="widgets",
            number=number,
            title=title,
            url=f"https://github.com/acme/widgets/pull/{number}",
            author="alice",
            reviewers=reviewers if reviewers is not None else [ReviewerState("bob", "approved")],
            checks=checks if checks is not None else [CheckState("build", "success"), CheckState("lint", "pending")],
            **flags,
        )

    return _make


@pytest.fixture
def api_error():
    return slack_error
