"""Aggregated pull request state consumed by the formatters and the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field

APPROVED = "approved"
CHANGES_REQUESTED = "changes_requested"
PENDING = "pending"

SUCCESS = "success"
FAILURE = "failure"


def work_item_key(owner: str, repo: str, number: int) -> str:
    """Stable identity of a pull request, e.g. ``acme/widgets#7``."""
    return f"{owner}/{repo}#{number}"


@dataclass(frozen=True)
class ReviewerState:
    login: str
    status: str  # "approved" | "changes_requested" | "pending"


@dataclass(frozen=True)
class CheckState:
    name: str
    status: str  # "success" | "failure" | "pending"


@dataclass
class PullRequestState:
    owner: str
    repo: str
    number: int
    title: str
    url: str
    author: str
    merged: bool = False
    closed: bool = False
    draft: bool = False
    reviewers: list[ReviewerState] = field(default_factory=list)
    checks: list[CheckState] = field(default_factory=list)

    @property
    def key(self) -> str:
        return work_item_key(self.owner, self.repo, self.number)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class PullRequestComment:
    """A conversation or inline review comment that may be mirrored to Slack."""

    id: int
    body: str
    author: str
    url: str
