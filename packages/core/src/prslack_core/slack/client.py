"""Slack Web API wrapper used by the sync engine.

Hides three things from callers:
  - rate limiting: every call is retried on HTTP 429 after the server-provided
    Retry-After delay (at most MAX_RATE_LIMIT_RETRIES times);
  - pagination: history and thread replies are streamed page by page so a
    search can stop at the first hit without fetching older pages;
  - Block Kit: messages are searched on their plain text plus block text.

Every failure surfaces as TransportError.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, Iterable

import aiohttp
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.web.async_client import AsyncWebClient

from prslack_core.errors import TransportError
from prslack_core.utils.text import message_text

DEFAULT_FIND_CACHE_SIZE = 100
DEFAULT_MAX_MESSAGES = 400

_DEFAULT_RETRY_AFTER = 1.0


class LookupCache:
    """Least-recently-used map from PR key to the ts of its summary message."""

    def __init__(self, capacity: int = DEFAULT_FIND_CACHE_SIZE):
        self.capacity = capacity
        self._entries: OrderedDict[str, str] = OrderedDict()

    def get(self, key: str) -> str | None:
        ts = self._entries.get(key)
        if ts is not None:
            self._entries.move_to_end(key)
        return ts

    def put(self, key: str, ts: str) -> None:
        if self.capacity <= 0:
            return
        self._entries[key] = ts
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


def _retry_after(response) -> float | None:
    """Return the delay to wait for a rate-limited response, or None if it was not rate limited."""
    status = getattr(response, "status_code", None)
    error = response.get("error") if hasattr(response, "get") else None
    if status != 429 and error != "ratelimited":
        return None
    headers = getattr(response, "headers", None) or {}
    raw = headers.get("Retry-After", headers.get("retry-after"))
    try:
        delay = float(raw)
    except (TypeError, ValueError):
        return _DEFAULT_RETRY_AFTER
    return delay if delay > 0 else _DEFAULT_RETRY_AFTER


def _slack_error(exc: SlackApiError) -> str:
    response = exc.response
    if hasattr(response, "get"):
        return response.get("error") or "unknown_error"
    return "unknown_error"


def _contains_any(text: str, needles: tuple[str, ...]) -> bool:
    return any(n in text for n in needles)


class SlackClient:
    MAX_RATE_LIMIT_RETRIES: int = 3
    HISTORY_PAGE_SIZE: int = 200
    REPLIES_PAGE_SIZE: int = 100

    def __init__(
        self,
        token: str | None = None,
        *,
        client: AsyncWebClient | None = None,
        find_cache_size: int = DEFAULT_FIND_CACHE_SIZE,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        if client is None and not token:
            raise ValueError("SlackClient needs either a token or an AsyncWebClient.")
        self._client = client if client is not None else AsyncWebClient(token=token)
        self._cache = LookupCache(find_cache_size)
        self._log = logger or logging.getLogger(__name__)
        self._sleep = sleep or asyncio.sleep

    @property
    def lookup_cache(self) -> LookupCache:
        return self._cache

    # ------------------------------------------------------------------ #
    # Transport                                                            #
    # ------------------------------------------------------------------ #

    async def _call(self, method: str, **kwargs):
        retries = 0
        while True:
            try:
                return await getattr(self._client, method)(**kwargs)
            except SlackApiError as e:
                delay = _retry_after(e.response)
                if delay is None:
                    raise TransportError(
                        f"Slack {method} failed: {_slack_error(e)}", method=method, slack_error=_slack_error(e)
                    ) from e
                if retries >= self.MAX_RATE_LIMIT_RETRIES:
                    raise TransportError(
                        f"Slack {method} still rate limited after {retries} retries",
                        method=method,
                        slack_error="ratelimited",
                    ) from e
                retries += 1
                self._log.warning(
                    "Slack %s rate limited; retry %d/%d in %.1fs",
                    method,
                    retries,
                    self.MAX_RATE_LIMIT_RETRIES,
                    delay,
                )
                await self._sleep(delay)
            except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise TransportError(f"Slack {method} request failed: {e}", method=method) from e

    @staticmethod
    def _require_ok(resp, method: str) -> None:
        if not resp.get("ok"):
            error = resp.get("error") or "unknown_error"
            raise TransportError(f"Slack {method} failed: {error}", method=method, slack_error=error)

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    async def post_message(self, channel: str, text: str, thread_ts: str | None = None) -> str:
        """Post a message (a threaded reply when thread_ts is given) and return its ts."""
        kwargs = {"channel": channel, "text": text}
        if thread_ts:
            kwargs["thread_ts"] = thread_ts
        resp = await self._call("chat_postMessage", **kwargs)
        self._require_ok(resp, "chat_postMessage")
        if not resp.get("ts"):
            raise TransportError("Slack chat_postMessage returned no ts", method="chat_postMessage")
        return resp["ts"]

    async def update_message(self, channel: str, ts: str, text: str) -> str:
        resp = await self._call("chat_update", channel=channel, ts=ts, text=text)
        self._require_ok(resp, "chat_update")
        if not resp.get("ts"):
            raise TransportError("Slack chat_update returned no ts", method="chat_update")
        return resp["ts"]

    # ------------------------------------------------------------------ #
    # History scanning                                                     #
    # ------------------------------------------------------------------ #

    async def _iter_history(self, channel: str, max_messages: int) -> AsyncIterator[dict]:
        """Yield channel messages newest first, never more than max_messages."""
        limit_total = max(1, max_messages)
        scanned = 0
        cursor: str | None = None
        while scanned < limit_total:
            kwargs = {"channel": channel, "limit": min(self.HISTORY_PAGE_SIZE, limit_total - scanned)}
            if cursor:
                kwargs["cursor"] = cursor
            resp = await self._call("conversations_history", **kwargs)
            self._require_ok(resp, "conversations_history")
            messages = resp.get("messages") or []
            self._log.debug("History page for %s: %d message(s), %d scanned so far", channel, len(messages), scanned)
            for message in messages:
                scanned += 1
                yield message
                if scanned >= limit_total:
                    return
            cursor = (resp.get("response_metadata") or {}).get("next_cursor")
            if not resp.get("has_more") or not cursor:
                return

    async def _iter_replies(self, channel: str, parent_ts: str) -> AsyncIterator[dict]:
        """Yield the replies of a thread, skipping the parent Slack returns alongside them."""
        cursor: str | None = None
        while True:
            kwargs = {"channel": channel, "ts": parent_ts, "limit": self.REPLIES_PAGE_SIZE}
            if cursor:
                kwargs["cursor"] = cursor
            resp = await self._call("conversations_replies", **kwargs)
            self._require_ok(resp, "conversations_replies")
            for message in resp.get("messages") or []:
                if message.get("ts") == parent_ts:
                    continue
                yield message
            cursor = (resp.get("response_metadata") or {}).get("next_cursor")
            if not resp.get("has_more") or not cursor:
                return

    async def find_message_by_anchor(
        self,
        channel: str,
        anchors: str | Iterable[str],
        *,
        cache_key: str | None = None,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        include_threads: bool = False,
    ) -> str | None:
        """Return the ts of the newest message containing any of the anchors, or None.

        Only the newest ``max_messages`` top-level messages are scanned, so an
        older message can be missed. With ``include_threads``, replies of
        scanned messages are searched too and a match returns the parent's ts.
        Results are cached under ``cache_key``; a cache hit skips the scan.
        """
        needles = (anchors,) if isinstance(anchors, str) else tuple(anchors)

        if cache_key:
            cached = self._cache.get(cache_key)
            if cached:
                self._log.debug("Lookup cache hit for %s: ts=%s", cache_key, cached)
                return cached

        async with aclosing(self._iter_history(channel, max_messages)) as history:
            async for message in history:
                ts = message.get("ts")
                if not ts:
                    continue
                if _contains_any(message_text(message), needles):
                    return self._remember(cache_key, ts)
                if include_threads and (message.get("reply_count") or 0) > 0:
                    async with aclosing(self._iter_replies(channel, ts)) as replies:
                        async for reply in replies:
                            if _contains_any(message_text(reply), needles):
                                return self._remember(cache_key, ts)
        return None

    async def find_reply_by_fragment(
        self, channel: str, parent_ts: str, fragments: str | Iterable[str], *, prefix: bool = False
    ) -> str | None:
        """Return the ts of the first reply under parent_ts containing any fragment.

        With ``prefix`` a fragment only matches at the start of the reply text.
        The parent itself is never returned.
        """
        needles = (fragments,) if isinstance(fragments, str) else tuple(fragments)
        async with aclosing(self._iter_replies(channel, parent_ts)) as replies:
            async for reply in replies:
                if not reply.get("ts"):
                    continue
                text = message_text(reply)
                matched = text.lstrip().startswith(needles) if prefix else _contains_any(text, needles)
                if matched:
                    return reply["ts"]
        return None

    def _remember(self, cache_key: str | None, ts: str) -> str:
        if cache_key:
            self._cache.put(cache_key, ts)
        return ts

    async def validate_channel(self, channel: str) -> bool:
        """Check the channel exists and is visible to the token. Never raises."""
        try:
            resp = await self._call("conversations_info", channel=channel)
        except TransportError as e:
            self._log.error("Slack channel %s could not be validated (%s): %s", channel, e.code, e)
            return False
        if not resp.get("ok"):
            self._log.error("Slack channel %s is invalid: %s", channel, resp.get("error"))
            return False
        return True
