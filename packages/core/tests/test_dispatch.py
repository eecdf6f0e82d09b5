"""Tests for routing webhook deliveries to sync cycles."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests

from prslack_core.dispatch import EventDispatcher
from prslack_core.errors import AggregationError
from prslack_core.models import PullRequestComment
from prslack_core.sync import SyncAction, SyncResult

SHA = "c" * 40
REPOSITORY = {"name": "widgets", "owner": {"login": "acme"}}


def _run(coro):
    return asyncio.run(coro)


@pytest.fixture
def source(make_state):
    source = MagicMock()

    async def fetch(owner, name, number, head_sha=None):
        return make_state(number=number)

    source.fetch = AsyncMock(side_effect=fetch)
    source.pulls_for_commit = AsyncMock(return_value=[7, 8])
    return source


@pytest.fixture
def sync_engine():
    engine = MagicMock()

    async def submit(state, event=None):
        return SyncResult(state.key, SyncAction.UPDATED)

    engine.submit = AsyncMock(side_effect=submit)
    return engine


@pytest.fixture
def mirror():
    mirror = MagicMock()
    mirror.enabled = True
    mirror.mirror = AsyncMock(return_value=SyncResult("comment:acme/widgets#7:1", SyncAction.CREATED))
    return mirror


@pytest.fixture
def dispatcher(sync_engine, source, mirror):
    return EventDispatcher(sync_engine, source, mirror)


def _pr_payload(action, number=7, **extra):
    return {"action": action, "repository": REPOSITORY, "pull_request": {"number": number, "head": {"sha": SHA}}, **extra}


def _issue_comment_payload(action, is_pr=True, html_url="https://github.com/acme/widgets/pull/7#issuecomment-1"):
    issue = {"number": 7}
    if is_pr:
        issue["pull_request"] = {"url": "https://api.github.com/repos/acme/widgets/pulls/7"}
    comment = {"id": 1, "body": "please deploy", "user": {"login": "bob"}}
    if html_url:
        comment["html_url"] = html_url
    return {"action": action, "repository": REPOSITORY, "issue": issue, "comment": comment}


# ---------------------------------------------------------------------------
# Pull request and review events
# ---------------------------------------------------------------------------


class TestPullRequestEvents:
    def test_opened_is_synced(self, dispatcher, source, sync_engine):
        results = _run(dispatcher.dispatch("pull_request", _pr_payload("opened")))

        source.fetch.assert_awaited_once_with("acme", "widgets", 7, SHA)
        state, event = sync_engine.submit.await_args.args
        assert state.key == "acme/widgets#7"
        assert event == "pull_request.opened"
        assert [r.action for r in results] == [SyncAction.UPDATED]

    def test_unhandled_action_is_ignored(self, dispatcher, source):
        assert _run(dispatcher.dispatch("pull_request", _pr_payload("labeled"))) == []
        source.fetch.assert_not_awaited()

    def test_review_submitted(self, dispatcher, sync_engine):
        _run(dispatcher.dispatch("pull_request_review", _pr_payload("submitted")))
        assert sync_engine.submit.await_args.args[1] == "pull_request_review.submitted"

    def test_unknown_event_is_ignored(self, dispatcher, source):
        assert _run(dispatcher.dispatch("push", {"repository": REPOSITORY})) == []
        source.fetch.assert_not_awaited()

    def test_payload_without_repository_is_ignored(self, dispatcher, source):
        assert _run(dispatcher.dispatch("pull_request", {"action": "opened"})) == []
        source.fetch.assert_not_awaited()


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class TestCommentEvents:
    def test_issue_comment_on_pr_syncs_then_mirrors(self, dispatcher, sync_engine, mirror):
        results = _run(dispatcher.dispatch("issue_comment", _issue_comment_payload("created")))

        assert sync_engine.submit.await_args.args[1] == "issue_comment.created"
        state, comment = mirror.mirror.await_args.args
        assert state.key == "acme/widgets#7"
        assert comment == PullRequestComment(
            id=1, body="please deploy", author="bob", url="https://github.com/acme/widgets/pull/7#issuecomment-1"
        )
        assert [r.action for r in results] == [SyncAction.UPDATED, SyncAction.CREATED]

    def test_comment_on_plain_issue_is_ignored(self, dispatcher, sync_engine):
        assert _run(dispatcher.dispatch("issue_comment", _issue_comment_payload("created", is_pr=False))) == []
        sync_engine.submit.assert_not_awaited()

    def test_deleted_comment_syncs_without_mirroring(self, dispatcher, sync_engine, mirror):
        _run(dispatcher.dispatch("issue_comment", _issue_comment_payload("deleted")))

        sync_engine.submit.assert_awaited_once()
        mirror.mirror.assert_not_awaited()

    def test_issue_comment_url_falls_back_to_pr_url(self, dispatcher, mirror):
        _run(dispatcher.dispatch("issue_comment", _issue_comment_payload("edited", html_url=None)))

        comment = mirror.mirror.await_args.args[1]
        assert comment.url == "https://github.com/acme/widgets/pull/7#issuecomment-1"

    def test_review_comment_url_falls_back_to_discussion_anchor(self, dispatcher, mirror):
        payload = _pr_payload("created", comment={"id": 55, "body": "deploy", "user": {"login": "bob"}})

        _run(dispatcher.dispatch("pull_request_review_comment", payload))

        comment = mirror.mirror.await_args.args[1]
        assert comment.url == "https://github.com/acme/widgets/pull/7#discussion_r55"

    def test_disabled_mirror_is_skipped(self, sync_engine, source, mirror):
        mirror.enabled = False
        dispatcher = EventDispatcher(sync_engine, source, mirror)

        _run(dispatcher.dispatch("issue_comment", _issue_comment_payload("created")))

        mirror.mirror.assert_not_awaited()


# ---------------------------------------------------------------------------
# Commit-level events
# ---------------------------------------------------------------------------


class TestCommitEvents:
    def test_check_run_completed_syncs_every_associated_pr(self, dispatcher, source, sync_engine):
        payload = {"action": "completed", "repository": REPOSITORY, "check_run": {"head_sha": SHA}}

        results = _run(dispatcher.dispatch("check_run", payload))

        source.pulls_for_commit.assert_awaited_once_with("acme", "widgets", SHA)
        assert [c.args[3] for c in source.fetch.await_args_list] == [SHA, SHA]
        assert [r.key for r in results] == ["acme/widgets#7", "acme/widgets#8"]
        assert sync_engine.submit.await_args.args[1] == "check_run.completed"

    def test_check_suite_requested_is_ignored(self, dispatcher, source):
        payload = {"action": "requested", "repository": REPOSITORY, "check_suite": {"head_sha": SHA}}
        assert _run(dispatcher.dispatch("check_suite", payload)) == []
        source.pulls_for_commit.assert_not_awaited()

    def test_status_uses_payload_sha(self, dispatcher, source, sync_engine):
        _run(dispatcher.dispatch("status", {"repository": REPOSITORY, "sha": SHA, "state": "success"}))

        source.pulls_for_commit.assert_awaited_once_with("acme", "widgets", SHA)
        assert sync_engine.submit.await_args.args[1] == "status"

    def test_commit_lookup_failure_is_swallowed(self, dispatcher, source, sync_engine):
        source.pulls_for_commit.side_effect = AggregationError("boom")
        payload = {"repository": REPOSITORY, "sha": SHA}

        assert _run(dispatcher.dispatch("status", payload)) == []
        sync_engine.submit.assert_not_awaited()

    def test_commit_lookup_network_error_is_swallowed(self, dispatcher, source, sync_engine):
        source.pulls_for_commit.side_effect = requests.ConnectionError("connection reset")
        payload = {"action": "completed", "repository": REPOSITORY, "check_run": {"head_sha": SHA}}

        assert _run(dispatcher.dispatch("check_run", payload)) == []
        sync_engine.submit.assert_not_awaited()


# ---------------------------------------------------------------------------
# Failures and disabled Slack
# ---------------------------------------------------------------------------


class TestFailures:
    def test_fetch_failure_is_reported(self, dispatcher, source, sync_engine):
        source.fetch.side_effect = AggregationError("not found")

        results = _run(dispatcher.dispatch("pull_request", _pr_payload("opened")))

        assert [r.action for r in results] == [SyncAction.FAILED]
        assert results[0].error.code == "github_api"
        sync_engine.submit.assert_not_awaited()

    def test_unexpected_fetch_error_is_reported(self, dispatcher, source):
        source.fetch.side_effect = RuntimeError("boom")

        results = _run(dispatcher.dispatch("pull_request", _pr_payload("opened")))

        assert results[0].error.code == "internal"

    @pytest.mark.parametrize(
        "event_name, payload",
        [
            ("pull_request", {"action": "opened", "repository": REPOSITORY}),
            ("pull_request_review", {"action": "submitted", "repository": REPOSITORY, "pull_request": {}}),
            ("issue_comment", {"action": "created", "repository": REPOSITORY, "issue": {"pull_request": {}}}),
        ],
    )
    def test_payload_without_pr_number_is_ignored(self, dispatcher, source, event_name, payload):
        assert _run(dispatcher.dispatch(event_name, payload)) == []
        source.fetch.assert_not_awaited()

    def test_slack_disabled_ignores_events(self, source):
        dispatcher = EventDispatcher(None, source)

        assert _run(dispatcher.dispatch("pull_request", _pr_payload("opened"))) == []
        source.fetch.assert_not_awaited()
