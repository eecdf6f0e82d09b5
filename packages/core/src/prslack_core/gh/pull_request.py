"""Aggregate pull request state (reviews, checks, lifecycle) from GitHub.

PyGithub is synchronous; GitHubStateSource runs it in worker threads so the
webhook event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import logging

import requests
from github import Auth, Github, GithubException

from prslack_core.errors import AggregationError
from prslack_core.models import (
    APPROVED,
    CHANGES_REQUESTED,
    FAILURE,
    PENDING,
    SUCCESS,
    CheckState,
    PullRequestState,
    ReviewerState,
)

logger = logging.getLogger(__name__)

_REVIEW_STATUS = {"APPROVED": APPROVED, "CHANGES_REQUESTED": CHANGES_REQUESTED}

_SUCCESS_CONCLUSIONS = {"success", "neutral", "skipped"}
_FAILURE_CONCLUSIONS = {"failure", "cancelled", "timed_out", "action_required", "startup_failure", "stale"}

_STATUS_STATES = {"success": SUCCESS, "failure": FAILURE, "error": FAILURE}

# API errors and the network failures PyGithub lets through from requests.
GITHUB_ERRORS = (GithubException, requests.RequestException)


def get_repo(gh: Github, full_name: str):
    return gh.get_repo(full_name, lazy=True)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_pulls_for_commit(repo, sha: str) -> list[int]:
    """Return the numbers of pull requests whose branch contains the commit."""
    return [pr.number for pr in repo.get_commit(sha).get_pulls()]


def classify_check_run(status: str | None, conclusion: str | None) -> str:
    if status is not None and status != "completed":
        return PENDING
    if conclusion in _SUCCESS_CONCLUSIONS:
        return SUCCESS
    if conclusion in _FAILURE_CONCLUSIONS:
        return FAILURE
    return PENDING


def classify_commit_status(state: str | None) -> str:
    return _STATUS_STATES.get(state or "", PENDING)


def resolve_reviewers(reviews, requested_logins) -> list[ReviewerState]:
    """Collapse reviews to one status per reviewer.

    The last review per login wins. Requested reviewers who have not
    reviewed yet are listed as pending.
    """
    latest: dict[str, str] = {}
    for review in reviews:
        login = review.user.login if review.user else None
        if not login:
            continue
        latest[login] = _REVIEW_STATUS.get(review.state, PENDING)
    for login in requested_logins:
        if login and login not in latest:
            latest[login] = PENDING
    return [ReviewerState(login=login, status=status) for login, status in latest.items()]


def _load_reviews(pr, full_name: str, number: int) -> list:
    try:
        return list(pr.get_reviews())
    except GITHUB_ERRORS as e:
        logger.warning("Could not fetch reviews for %s#%d; listing none: %s", full_name, number, e)
        return []


def _load_checks(repo, full_name: str, sha: str) -> list[CheckState]:
    checks: list[CheckState] = []
    try:
        commit = repo.get_commit(sha)
        for run in commit.get_check_runs():
            checks.append(CheckState(name=run.name, status=classify_check_run(run.status, run.conclusion)))
        # Legacy commit statuses (e.g. external CI) are reported alongside check runs.
        for status in commit.get_combined_status().statuses:
            checks.append(CheckState(name=status.context, status=classify_commit_status(status.state)))
    except GITHUB_ERRORS as e:
        logger.warning("Could not fetch checks for %s@%s; listing none: %s", full_name, sha[:7], e)
        return []
    return checks


def fetch_pull_request_state(repo, owner: str, name: str, number: int, head_sha: str | None = None) -> PullRequestState:
    """Build the PullRequestState for one PR.

    Raises AggregationError if the PR itself cannot be loaded. Review and
    check lookups degrade to empty lists so a partial outage still updates Slack.
    """
    full_name = f"{owner}/{name}"
    try:
        pr = get_pull(repo, number)
    except GITHUB_ERRORS as e:
        raise AggregationError(f"Could not fetch PR {full_name}#{number}: {e}") from e

    reviews = _load_reviews(pr, full_name, number)
    requested = [u.login for u in (pr.requested_reviewers or [])]
    sha = head_sha or pr.head.sha

    return PullRequestState(
        owner=owner,
        repo=name,
        number=number,
        title=pr.title or "",
        url=pr.html_url,
        author=pr.user.login if pr.user else "unknown",
        merged=bool(pr.merged),
        closed=pr.state == "closed",
        draft=bool(pr.draft),
        reviewers=resolve_reviewers(reviews, requested),
        checks=_load_checks(repo, full_name, sha),
    )


class GitHubStateSource:
    """Async facade over PyGithub used by the event dispatcher."""

    def __init__(self, token: str | None = None, gh: Github | None = None):
        if gh is None:
            gh = Github(auth=Auth.Token(token)) if token else Github()
        self._gh = gh

    async def fetch(self, owner: str, name: str, number: int, head_sha: str | None = None) -> PullRequestState:
        repo = get_repo(self._gh, f"{owner}/{name}")
        return await asyncio.to_thread(fetch_pull_request_state, repo, owner, name, number, head_sha)

    async def pulls_for_commit(self, owner: str, name: str, sha: str) -> list[int]:
        repo = get_repo(self._gh, f"{owner}/{name}")
        try:
            return await asyncio.to_thread(get_pulls_for_commit, repo, sha)
        except GITHUB_ERRORS as e:
            raise AggregationError(f"Could not list PRs for {owner}/{name}@{sha[:7]}: {e}") from e
