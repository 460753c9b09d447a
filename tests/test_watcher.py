from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import List

import pytest

from issuescope.core.config import ActionSettings, Config, WatchDefinition
from issuescope.core.matching import MatchCriteria, Matcher, build_matcher
from issuescope.core.models import CandidateItem, IssueFilter, Repository
from issuescope.core.scheduler import Scheduler
from issuescope.core.watcher import Watcher

REPO_A = Repository(owner="owner", name="a")
REPO_B = Repository(owner="owner", name="b")


class FakeMetrics:
    def __init__(self) -> None:
        self.counts: Counter = Counter()

    def __getattr__(self, name: str):
        def record(*labels: str) -> None:
            self.counts[(name,) + labels] += 1

        return record


class FakeSource:
    def __init__(self, items: dict[Repository, List[CandidateItem]], failing: tuple = ()) -> None:
        self.items = items
        self.failing = set(failing)
        self.requests: list[tuple[Repository, str]] = []
        self.closed = False

    async def list_candidates(
        self,
        repo: Repository,
        issue_filter: IssueFilter,
        matcher: Matcher,
        watch_name: str = "",
    ) -> List[CandidateItem]:
        self.requests.append((repo, watch_name))
        if repo in self.failing:
            raise RuntimeError(f"cannot reach {repo}")
        return [item for item in self.items.get(repo, []) if matcher.evaluate(item).matched]

    async def close(self) -> None:
        self.closed = True


class FakeAction:
    def __init__(self, name: str = "subscribe", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.handled: list[CandidateItem] = []

    async def handle(self, item: CandidateItem) -> None:
        self.handled.append(item)
        if self.fail:
            raise RuntimeError("nope")


def _item(repo: Repository, number: int, title: str = "bug: crash") -> CandidateItem:
    return CandidateItem(
        id=f"{repo.name}-{number}",
        repo=repo,
        number=number,
        title=title,
        state="OPEN",
        subscription="UNSUBSCRIBED",
    )


def _watch(name: str = "w", repos=(REPO_A, REPO_B), interval: float = 1.0) -> WatchDefinition:
    criteria = MatchCriteria(title_patterns=("^bug",))
    return WatchDefinition(
        name=name,
        repos=tuple(repos),
        criteria=criteria,
        matcher=build_matcher(criteria),
        issue_filter=IssueFilter(),
        interval=interval,
        actions=ActionSettings(subscribe=True),
    )


def _config(*watches: WatchDefinition) -> Config:
    return Config(user="me", token="t", interval=1.0, watches=tuple(watches))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def test_failing_repository_does_not_block_the_next_one() -> None:
    async def scenario() -> None:
        metrics = FakeMetrics()
        source = FakeSource({REPO_B: [_item(REPO_B, 1), _item(REPO_B, 2, title="feature")]}, failing=(REPO_A,))
        action = FakeAction()
        watcher = Watcher(Scheduler(), lambda config: source, lambda *args: [action], metrics)

        callback = watcher.poll_callback(_watch(), source, [action])
        await callback(_now())

        assert [repo for repo, _ in source.requests] == [REPO_A, REPO_B]
        assert [item.number for item in action.handled] == [1]
        assert metrics.counts[("task_tick", "w")] == 1
        assert metrics.counts[("task_error", "w")] == 1

    asyncio.run(scenario())


def test_action_failure_is_counted_and_processing_continues() -> None:
    async def scenario() -> None:
        metrics = FakeMetrics()
        source = FakeSource({REPO_A: [_item(REPO_A, 1), _item(REPO_A, 2)]})
        action = FakeAction(fail=True)
        watcher = Watcher(Scheduler(), lambda config: source, lambda *args: [action], metrics)

        callback = watcher.poll_callback(_watch(repos=(REPO_A,)), source, [action])
        await callback(_now())

        assert [item.number for item in action.handled] == [1, 2]
        assert metrics.counts[("task_error", "w")] == 2
        assert metrics.counts[("action_error", "subscribe")] == 2

    asyncio.run(scenario())


def test_apply_schedules_watches_and_closes_previous_source() -> None:
    async def scenario() -> None:
        sources: list[FakeSource] = []
        actions: list[FakeAction] = []

        def source_factory(config: Config) -> FakeSource:
            source = FakeSource({REPO_A: [_item(REPO_A, 1)]})
            sources.append(source)
            return source

        def actions_factory(config: Config, watch: WatchDefinition, source: FakeSource) -> list:
            action = FakeAction()
            actions.append(action)
            return [action]

        watcher = Watcher(Scheduler(), source_factory, actions_factory, FakeMetrics())

        plan = await watcher.apply(_config(_watch("one", repos=(REPO_A,))))
        assert plan.to_add == ("one",)
        await asyncio.sleep(0.02)
        assert len(actions[0].handled) == 1

        plan = await watcher.apply(_config(_watch("two", repos=(REPO_A,))))
        assert plan.to_delete == ("one",)
        assert watcher.running() == ["two"]
        assert sources[0].closed
        assert not sources[1].closed

        await watcher.shutdown()
        assert sources[1].closed
        assert watcher.running() == []

    asyncio.run(scenario())


def test_run_applies_every_snapshot_from_the_stream() -> None:
    async def scenario() -> None:
        class ListStream:
            def __init__(self, configs: list[Config]) -> None:
                self._configs = configs

            async def _iterate(self):
                for config in self._configs:
                    yield config

            def __aiter__(self):
                return self._iterate()

        watcher = Watcher(
            Scheduler(),
            lambda config: FakeSource({}),
            lambda *args: [],
            FakeMetrics(),
        )
        await watcher.run(ListStream([_config(_watch("a")), _config(_watch("a"), _watch("b"))]))
        assert sorted(watcher.running()) == ["a", "b"]
        await watcher.shutdown()

    asyncio.run(scenario())


def test_failed_apply_keeps_previous_source_open_until_a_later_success() -> None:
    async def scenario() -> None:
        sources: list[FakeSource] = []

        def source_factory(config: Config) -> FakeSource:
            source = FakeSource({})
            sources.append(source)
            return source

        def actions_factory(config: Config, watch: WatchDefinition, source: FakeSource) -> list:
            if watch.name == "bad":
                raise ValueError("cannot build actions")
            return []

        watcher = Watcher(Scheduler(), source_factory, actions_factory, FakeMetrics())
        await watcher.apply(_config(_watch("one")))

        with pytest.raises(ValueError):
            await watcher.apply(_config(_watch("bad")))
        assert not sources[0].closed

        await watcher.apply(_config(_watch("two")))
        assert sources[0].closed
        assert sources[1].closed
        assert not sources[2].closed

        await watcher.shutdown()
        assert all(source.closed for source in sources)

    asyncio.run(scenario())


def test_shutdown_closes_sources_left_by_a_failed_apply() -> None:
    async def scenario() -> None:
        sources: list[FakeSource] = []

        def source_factory(config: Config) -> FakeSource:
            source = FakeSource({})
            sources.append(source)
            return source

        def actions_factory(config: Config, watch: WatchDefinition, source: FakeSource) -> list:
            if watch.name == "bad":
                raise ValueError("cannot build actions")
            return []

        watcher = Watcher(Scheduler(), source_factory, actions_factory, FakeMetrics())
        await watcher.apply(_config(_watch("one")))
        with pytest.raises(ValueError):
            await watcher.apply(_config(_watch("bad")))

        await watcher.shutdown()
        assert [source.closed for source in sources] == [True, True]

    asyncio.run(scenario())
