from __future__ import annotations

import asyncio
import json
from typing import Callable

import httpx
import pytest

from issuescope.adapters.github_source import (
    GitHubError,
    GitHubItemSource,
    GitHubNotFoundError,
    issue_filter_variables,
)
from issuescope.adapters.prometheus_metrics import PrometheusMetrics
from issuescope.core.matching import MatchCriteria, build_matcher
from issuescope.core.models import IssueFilter, Repository

REPO = Repository(owner="octo", name="hello")


def _node(number: int, title: str, subscription: str = "UNSUBSCRIBED") -> dict:
    return {
        "id": f"I_{number}",
        "number": number,
        "title": title,
        "state": "OPEN",
        "viewerSubscription": subscription,
        "author": {"login": "actor"},
    }


def _issues_page(nodes: list[dict], cursor: str | None = None) -> dict:
    return {
        "data": {
            "repository": {
                "issues": {
                    "nodes": nodes,
                    "pageInfo": {"endCursor": cursor, "hasNextPage": cursor is not None},
                }
            }
        }
    }


class FakeGraphQL:
    """Answers GraphQL posts by inspecting the query text."""

    def __init__(self, handler: Callable[[str, dict], dict]) -> None:
        self.handler = handler
        self.requests: list[tuple[str, dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append((payload["query"], payload["variables"]))
        return httpx.Response(200, json=self.handler(payload["query"], payload["variables"]))

    def count(self, marker: str) -> int:
        return sum(1 for query, _ in self.requests if marker in query)


def _source(graphql: FakeGraphQL, metrics=None) -> GitHubItemSource:
    return GitHubItemSource("token", transport=httpx.MockTransport(graphql), metrics=metrics)


def test_issue_filter_variables() -> None:
    assert issue_filter_variables(IssueFilter()) is None
    assert issue_filter_variables(IssueFilter(labels=("bug",), states=("open",))) == {
        "labels": ["bug"],
        "states": ["OPEN"],
    }


def test_list_candidates_follows_pages_without_lazy_fetches() -> None:
    def handler(query: str, variables: dict) -> dict:
        if variables["cursor"] is None:
            return _issues_page([_node(1, "Bug one"), _node(2, "Question")], cursor="c1")
        return _issues_page([_node(3, "bug three")])

    graphql = FakeGraphQL(handler)
    metrics = PrometheusMetrics()
    matcher = build_matcher(MatchCriteria(title_patterns=("^bug",)))

    async def scenario() -> list:
        async with _source(graphql, metrics) as source:
            return await source.list_candidates(REPO, IssueFilter(states=("OPEN",)), matcher, watch_name="w")

    items = asyncio.run(scenario())
    assert [item.number for item in items] == [1, 3]
    assert graphql.count("issues(") == 2
    assert graphql.count("bodyText") == 0
    assert graphql.count("labels(") == 0
    assert graphql.requests[0][1]["filters"] == {"states": ["OPEN"]}
    assert graphql.requests[1][1]["cursor"] == "c1"
    assert metrics.value("issuescope_filtered_items_total", {"watch": "w"}) == 1
    assert metrics.value("issuescope_query_total", {"kind": "issue"}) == 2


def test_lazy_fields_are_fetched_only_for_prefiltered_items() -> None:
    def handler(query: str, variables: dict) -> dict:
        if "bodyText" in query:
            bodies = {1: "Steps to reproduce", 3: "no details"}
            return {"data": {"repository": {"issue": {"bodyText": bodies[variables["number"]]}}}}
        if "labels(" in query:
            if variables["cursor"] is None:
                nodes, cursor = [{"name": "triage"}], "l1"
            else:
                nodes, cursor = [{"name": "bug"}], None
            return {
                "data": {
                    "repository": {
                        "issue": {
                            "labels": {
                                "nodes": nodes,
                                "pageInfo": {"endCursor": cursor, "hasNextPage": cursor is not None},
                            }
                        }
                    }
                }
            }
        return _issues_page([_node(1, "bug one"), _node(2, "question"), _node(3, "bug three")])

    graphql = FakeGraphQL(handler)
    matcher = build_matcher(
        MatchCriteria(
            body_patterns=("steps to reproduce",),
            title_patterns=("^bug",),
            required_labels=("bug",),
        )
    )

    async def scenario() -> list:
        async with _source(graphql) as source:
            return await source.list_candidates(REPO, IssueFilter(), matcher)

    items = asyncio.run(scenario())
    assert [item.number for item in items] == [1]
    assert items[0].body == "Steps to reproduce"
    assert items[0].labels == ("triage", "bug")
    # The title rejects issue 2 before any sub-query is made.
    assert graphql.count("bodyText") == 2
    assert graphql.count("labels(") == 4


def test_missing_repository_raises_not_found() -> None:
    def handler(query: str, variables: dict) -> dict:
        return {
            "data": {"repository": None},
            "errors": [{"message": "Could not resolve to a Repository with the name 'octo/hello'."}],
        }

    graphql = FakeGraphQL(handler)
    metrics = PrometheusMetrics()
    matcher = build_matcher(MatchCriteria())

    async def scenario() -> None:
        async with _source(graphql, metrics) as source:
            await source.list_candidates(REPO, IssueFilter(), matcher)

    with pytest.raises(GitHubNotFoundError):
        asyncio.run(scenario())
    assert metrics.value("issuescope_query_error_total", {"kind": "issue"}) == 1


def test_check_repository_and_whoami() -> None:
    def handler(query: str, variables: dict) -> dict:
        if "viewer" in query:
            return {"data": {"viewer": {"login": "octocat", "isViewer": True}}}
        if variables["name"] == "hello":
            return {"data": {"repository": {"name": "hello"}}}
        return {"data": {"repository": None}}

    async def scenario() -> str:
        async with _source(FakeGraphQL(handler)) as source:
            await source.check_repository(REPO)
            with pytest.raises(GitHubNotFoundError):
                await source.check_repository(Repository("octo", "missing"))
            return await source.whoami()

    assert asyncio.run(scenario()) == "octocat"


def test_http_errors_become_github_errors() -> None:
    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    async def scenario() -> None:
        source = GitHubItemSource("token", transport=httpx.MockTransport(respond))
        try:
            await source.whoami()
        finally:
            await source.close()

    with pytest.raises(GitHubError, match="502"):
        asyncio.run(scenario())


def test_requests_carry_bearer_token_and_subscription_variables() -> None:
    seen: list[httpx.Request] = []

    def respond(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": {"updateSubscription": {}}})

    async def scenario() -> None:
        async with GitHubItemSource("s3cret", transport=httpx.MockTransport(respond)) as source:
            await source.set_subscription("I_1", "SUBSCRIBED")

    asyncio.run(scenario())
    assert seen[0].headers["Authorization"] == "Bearer s3cret"
    body = json.loads(seen[0].content)
    assert "updateSubscription" in body["query"]
    assert body["variables"] == {"id": "I_1", "state": "SUBSCRIBED"}
