"""GitHub GraphQL adapter.

Implements the core ItemSourcePort on top of GitHub's GraphQL API, plus the
viewer/repository checks used during configuration validation and the
subscription mutation used by the subscribe action.

Issue listing only asks for the cheap core fields. Bodies and labels are
separate per-issue queries, issued only when the watch's matcher needs them
and only for items that survive the matcher's prefilter.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from issuescope.core.matching import Matcher
from issuescope.core.models import CandidateItem, IssueFilter, Repository
from issuescope.core.ports import MetricsPort, NullMetrics

LOGGER = logging.getLogger(__name__)

GRAPHQL_URL = "https://api.github.com/graphql"
NOT_FOUND_PREFIX = "Could not resolve to a"

ISSUES_PAGE_SIZE = 10
LABELS_PAGE_SIZE = 100

QUERY_REPO = "repo"
QUERY_ISSUE = "issue"
QUERY_LABEL = "issue_label"
QUERY_BODY = "issue_body"
QUERY_SUBSCRIBE = "subscription"

WHOAMI_QUERY = """
query {
  viewer {
    login
    isViewer
  }
}
"""

CHECK_REPOSITORY_QUERY = """
query($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    name
  }
}
"""

LIST_ISSUES_QUERY = """
query($owner: String!, $name: String!, $cursor: String, $filters: IssueFilters) {
  repository(owner: $owner, name: $name) {
    issues(first: %d, after: $cursor, filterBy: $filters) {
      nodes {
        id
        number
        title
        state
        viewerSubscription
        author {
          login
        }
      }
      pageInfo {
        endCursor
        hasNextPage
      }
    }
  }
}
""" % ISSUES_PAGE_SIZE

ISSUE_BODY_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    issue(number: $number) {
      bodyText
    }
  }
}
"""

ISSUE_LABELS_QUERY = """
query($owner: String!, $name: String!, $number: Int!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    issue(number: $number) {
      labels(first: %d, after: $cursor) {
        nodes {
          name
        }
        pageInfo {
          endCursor
          hasNextPage
        }
      }
    }
  }
}
""" % LABELS_PAGE_SIZE

UPDATE_SUBSCRIPTION_MUTATION = """
mutation($id: ID!, $state: SubscriptionState!) {
  updateSubscription(input: {subscribableId: $id, state: $state}) {
    subscribable {
      viewerSubscription
    }
  }
}
"""


class GitHubError(RuntimeError):
    """Raised when a GitHub request fails or returns GraphQL errors."""


class GitHubNotFoundError(GitHubError):
    """Raised when GitHub cannot resolve the requested object."""


def issue_filter_variables(issue_filter: IssueFilter) -> Optional[dict]:
    """Convert an IssueFilter into GraphQL ``IssueFilters`` variables."""

    filters: dict[str, Any] = {}
    if issue_filter.labels:
        filters["labels"] = list(issue_filter.labels)
    if issue_filter.states:
        # GitHub expects these to be in all caps
        filters["states"] = [state.upper() for state in issue_filter.states]
    return filters or None


def item_from_node(repo: Repository, node: dict) -> CandidateItem:
    author = node.get("author") or {}
    return CandidateItem(
        id=node["id"],
        repo=repo,
        number=int(node["number"]),
        title=node.get("title") or "",
        state=node.get("state") or "",
        subscription=node.get("viewerSubscription") or "",
        author_login=author.get("login") or "",
    )


class GitHubItemSource:
    """Async GitHub GraphQL client satisfying the ItemSourcePort contract."""

    def __init__(
        self,
        token: str,
        *,
        retries: int = 3,
        timeout: float = 300.0,
        metrics: Optional[MetricsPort] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        url: str = GRAPHQL_URL,
    ) -> None:
        self._url = url
        self._metrics = metrics or NullMetrics()
        if transport is None:
            transport = httpx.AsyncHTTPTransport(retries=retries)
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubItemSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _execute(self, query: str, variables: Optional[dict], kind: str) -> dict:
        self._metrics.query(kind)
        LOGGER.debug("Executing %s query with vars %s", kind, variables)
        try:
            response = await self._client.post(self._url, json={"query": query, "variables": variables or {}})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            self._metrics.query_error(kind)
            raise GitHubError(
                f"GitHub API error {exc.response.status_code} on {kind} query: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            self._metrics.query_error(kind)
            raise GitHubError(f"GitHub request failed on {kind} query: {exc}") from exc

        errors = payload.get("errors") or []
        if errors:
            self._metrics.query_error(kind)
            message = "; ".join(str(error.get("message", error)) for error in errors)
            LOGGER.debug("Got errors on %s query: %s", kind, message)
            if any(str(error.get("message", "")).startswith(NOT_FOUND_PREFIX) for error in errors):
                raise GitHubNotFoundError(message)
            raise GitHubError(message)
        return payload.get("data") or {}

    async def whoami(self) -> str:
        """Return the login the token belongs to."""

        data = await self._execute(WHOAMI_QUERY, None, "viewer")
        viewer = data.get("viewer") or {}
        if not viewer.get("isViewer"):
            raise GitHubError("unexpected result, returned user is not viewer")
        return viewer["login"]

    async def check_repository(self, repo: Repository) -> None:
        """Raise GitHubNotFoundError if the repository does not exist."""

        data = await self._execute(
            CHECK_REPOSITORY_QUERY,
            {"owner": repo.owner, "name": repo.name},
            QUERY_REPO,
        )
        if not data.get("repository"):
            raise GitHubNotFoundError(f"{NOT_FOUND_PREFIX} Repository with the name '{repo}'")

    async def fetch_body(self, repo: Repository, number: int) -> str:
        data = await self._execute(
            ISSUE_BODY_QUERY,
            {"owner": repo.owner, "name": repo.name, "number": number},
            QUERY_BODY,
        )
        issue = (data.get("repository") or {}).get("issue") or {}
        return issue.get("bodyText") or ""

    async def fetch_labels(self, repo: Repository, number: int) -> tuple[str, ...]:
        """Return every label of an issue, following pagination."""

        variables: dict[str, Any] = {
            "owner": repo.owner,
            "name": repo.name,
            "number": number,
            "cursor": None,
        }
        labels: List[str] = []
        while True:
            data = await self._execute(ISSUE_LABELS_QUERY, variables, QUERY_LABEL)
            issue = (data.get("repository") or {}).get("issue") or {}
            connection = issue.get("labels") or {}
            labels.extend(node["name"] for node in connection.get("nodes") or [])
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return tuple(labels)
            variables["cursor"] = page_info.get("endCursor")

    async def _populate(self, item: CandidateItem, matcher: Matcher) -> CandidateItem:
        if matcher.requires_body:
            item = item.with_body(await self.fetch_body(item.repo, item.number))
        if matcher.requires_labels:
            item = item.with_labels(await self.fetch_labels(item.repo, item.number))
        return item

    async def list_candidates(
        self,
        repo: Repository,
        issue_filter: IssueFilter,
        matcher: Matcher,
        watch_name: str = "",
    ) -> List[CandidateItem]:
        """Return every issue in ``repo`` that passes ``matcher``.

        Pages are followed until GitHub reports no further page; any error
        aborts the whole call so callers never see a partial result.
        """

        variables: dict[str, Any] = {
            "owner": repo.owner,
            "name": repo.name,
            "cursor": None,
            "filters": issue_filter_variables(issue_filter),
        }
        matched: List[CandidateItem] = []
        while True:
            data = await self._execute(LIST_ISSUES_QUERY, variables, QUERY_ISSUE)
            repository = data.get("repository")
            if repository is None:
                raise GitHubNotFoundError(f"{NOT_FOUND_PREFIX} Repository with the name '{repo}'")
            connection = repository.get("issues") or {}

            for node in connection.get("nodes") or []:
                item = item_from_node(repo, node)
                if matcher.requirements.any:
                    result = matcher.prefilter(item)
                    if result.matched:
                        item = await self._populate(item, matcher)
                        result = matcher.evaluate(item)
                else:
                    result = matcher.evaluate(item)

                if not result.matched:
                    LOGGER.debug("Item %s#%s filtered out by the matcher: %s", repo, item.number, result.reason)
                    self._metrics.item_filtered(watch_name)
                    continue
                matched.append(item)

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return matched
            variables["cursor"] = page_info.get("endCursor")

    async def set_subscription(self, item_id: str, state: str) -> None:
        """Set the viewer's subscription state for an issue."""

        await self._execute(
            UPDATE_SUBSCRIPTION_MUTATION,
            {"id": item_id, "state": state},
            QUERY_SUBSCRIBE,
        )
