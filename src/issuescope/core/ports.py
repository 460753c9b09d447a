"""Ports (interfaces) used by the core engine.

Ports define the minimal contracts for item sources, actions, metrics and
configuration streams so the scheduler, matcher and dispatcher can be reused
with different backends.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, List, Protocol

from issuescope.core.matching import Matcher
from issuescope.core.models import CandidateItem, IssueFilter, Repository

if TYPE_CHECKING:
    from issuescope.core.config import Config


class ItemSourcePort(Protocol):
    """Fetch matching items from a named collection.

    Implementations apply ``issue_filter`` remotely, paginate fully, use
    ``matcher.requirements`` to decide on per-item sub-fetches and return
    only the items ``matcher.evaluate`` accepted.
    """

    async def list_candidates(
        self,
        repo: Repository,
        issue_filter: IssueFilter,
        matcher: Matcher,
        watch_name: str = "",
    ) -> List[CandidateItem]:
        ...

    async def close(self) -> None:
        ...


class ActionPort(Protocol):
    """Perform a named side effect on a matched item.

    Items already in the desired end state are a successful no-op.
    """

    name: str

    async def handle(self, item: CandidateItem) -> None:
        ...


class MetricsPort(Protocol):
    """Named counters incremented at fixed points of the engine."""

    def task_tick(self, watch: str) -> None:
        ...

    def task_error(self, watch: str) -> None:
        ...

    def item_filtered(self, watch: str) -> None:
        ...

    def action_invoked(self, action: str) -> None:
        ...

    def action_error(self, action: str) -> None:
        ...

    def config_load(self) -> None:
        ...

    def config_load_error(self) -> None:
        ...

    def query(self, kind: str) -> None:
        ...

    def query_error(self, kind: str) -> None:
        ...


class ConfigStream(Protocol):
    """Yields fully validated configuration snapshots as they change."""

    def __aiter__(self) -> AsyncIterator["Config"]:
        ...


class NullMetrics:
    """MetricsPort that discards everything, used by one-shot CLI commands."""

    def task_tick(self, watch: str) -> None:
        pass

    def task_error(self, watch: str) -> None:
        pass

    def item_filtered(self, watch: str) -> None:
        pass

    def action_invoked(self, action: str) -> None:
        pass

    def action_error(self, action: str) -> None:
        pass

    def config_load(self) -> None:
        pass

    def config_load_error(self) -> None:
        pass

    def query(self, kind: str) -> None:
        pass

    def query_error(self, kind: str) -> None:
        pass
