"""Watch orchestration: config snapshots in, scheduled polls out.

This module is integration-agnostic. Every configuration snapshot builds a
fresh item source, reconciles the scheduler against the snapshot's watches
and wires each tick to fetch -> match -> dispatch.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from issuescope.core.config import Config, WatchDefinition
from issuescope.core.dispatcher import DispatchError, Dispatcher
from issuescope.core.ports import ActionPort, ConfigStream, ItemSourcePort, MetricsPort
from issuescope.core.reconciler import ReconcilePlan, Reconciler
from issuescope.core.scheduler import PollCallback, Scheduler

LOGGER = logging.getLogger(__name__)

SourceFactory = Callable[[Config], ItemSourcePort]
ActionsFactory = Callable[[Config, WatchDefinition, ItemSourcePort], Sequence[ActionPort]]


class Watcher:
    """Composition root tying the reconciler, scheduler and dispatcher together."""

    def __init__(
        self,
        scheduler: Scheduler,
        source_factory: SourceFactory,
        actions_factory: ActionsFactory,
        metrics: MetricsPort,
    ) -> None:
        self._scheduler = scheduler
        self._source_factory = source_factory
        self._actions_factory = actions_factory
        self._metrics = metrics
        self._reconciler = Reconciler(scheduler, self._callback_for_current)
        self._config: Optional[Config] = None
        self._source: Optional[ItemSourcePort] = None
        # Sources a failed apply could not close yet.
        self._retired: List[ItemSourcePort] = []

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def poll_callback(
        self,
        watch: WatchDefinition,
        source: ItemSourcePort,
        actions: Sequence[ActionPort],
    ) -> PollCallback:
        """Build the per-tick coroutine for one watch.

        A failing repository never prevents the next one from being
        processed, and action failures never stop the task from ticking.
        """

        dispatcher = Dispatcher(actions, self._metrics)

        async def on_tick(tick: datetime) -> None:
            self._metrics.task_tick(watch.name)
            for repo in watch.repos:
                LOGGER.info("Updating %s for watch %s", repo, watch.name)
                try:
                    items = await source.list_candidates(
                        repo,
                        watch.issue_filter,
                        watch.matcher,
                        watch_name=watch.name,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    LOGGER.error("Unable to list issues for %s (watch %s): %s", repo, watch.name, exc)
                    self._metrics.task_error(watch.name)
                    continue

                for item in items:
                    LOGGER.debug("Dispatching %s#%s (%s)", repo, item.number, item.title)
                    try:
                        await dispatcher.dispatch(item)
                    except DispatchError as exc:
                        LOGGER.error("Watch %s: %s", watch.name, exc)
                        self._metrics.task_error(watch.name)

        return on_tick

    def _callback_for_current(self, watch: WatchDefinition) -> PollCallback:
        if self._config is None or self._source is None:
            raise RuntimeError("no configuration applied yet")
        actions = list(self._actions_factory(self._config, watch, self._source))
        return self.poll_callback(watch, self._source, actions)

    async def apply(self, config: Config) -> ReconcilePlan:
        """Reconcile the scheduler against a new configuration snapshot."""

        previous_source = self._source
        self._config = config
        self._source = self._source_factory(config)
        if previous_source is not None and previous_source is not self._source:
            self._retired.append(previous_source)

        # Tasks that were not replaced yet may still poll through a retired
        # source, so retired sources stay open until a reconcile succeeds.
        plan = await self._reconciler.reconcile(config.watches)
        await self._close_retired()
        return plan

    async def _close_retired(self) -> None:
        while self._retired:
            source = self._retired.pop(0)
            if source is not self._source:
                await source.close()

    async def run(self, stream: ConfigStream) -> None:
        """Apply configuration snapshots one by one until the stream ends."""

        async for config in stream:
            LOGGER.info("Applying configuration with %s watch(es)", len(config.watches))
            await self.apply(config)

    def running(self) -> List[str]:
        return self._scheduler.list()

    async def shutdown(self) -> None:
        """Stop every poll, then release every item source still open."""

        await self._scheduler.stop_all()
        await self._close_retired()
        if self._source is not None:
            await self._source.close()
            self._source = None
