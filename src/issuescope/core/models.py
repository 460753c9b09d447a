"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to GitHub-specific types or the on-disk configuration format.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

ITEM_TYPE_ISSUE = "issue"

ISSUE_STATES = ("OPEN", "CLOSED")

SUBSCRIPTION_SUBSCRIBED = "SUBSCRIBED"
SUBSCRIPTION_UNSUBSCRIBED = "UNSUBSCRIBED"
SUBSCRIPTION_IGNORED = "IGNORED"


@dataclass(frozen=True)
class Repository:
    """A GitHub repository, the collection a watch polls."""

    owner: str
    name: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class CandidateItem:
    """Normalized view of one fetched issue.

    ``labels`` and ``body`` stay empty until a matcher asks the item source
    to fetch them.
    """

    id: str
    repo: Repository
    number: int
    title: str
    state: str
    subscription: str
    author_login: str = ""
    type: str = ITEM_TYPE_ISSUE
    labels: tuple[str, ...] = ()
    body: str = ""

    @property
    def is_subscribed(self) -> bool:
        return self.subscription == SUBSCRIPTION_SUBSCRIBED

    def with_body(self, body: str) -> "CandidateItem":
        return replace(self, body=body)

    def with_labels(self, labels: tuple[str, ...]) -> "CandidateItem":
        return replace(self, labels=tuple(labels))

    def to_dict(self) -> dict:
        """Return a JSON-friendly representation used by the CLI and emails."""

        return {
            "id": self.id,
            "type": self.type,
            "repo": {"owner": self.repo.owner, "name": self.repo.name},
            "author": {"login": self.author_login},
            "number": self.number,
            "title": self.title,
            "state": self.state,
            "subscription": self.subscription,
            "labels": list(self.labels),
            "body": self.body,
        }


@dataclass(frozen=True)
class IssueFilter:
    """Criteria the remote side can evaluate natively."""

    labels: tuple[str, ...] = ()
    states: tuple[str, ...] = ()


@dataclass(frozen=True)
class MatchResult:
    """Outcome of evaluating a matcher; ``reason`` names the first failure."""

    matched: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.matched


@dataclass(frozen=True)
class ActionOutcome:
    """Result of running one action for one item."""

    action: str
    error: Optional[BaseException] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None
