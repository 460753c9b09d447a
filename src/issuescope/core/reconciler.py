"""Keep the scheduler's running tasks in sync with the configured watches."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, Tuple

from issuescope.core.config import WatchDefinition
from issuescope.core.scheduler import PollCallback, Scheduler

LOGGER = logging.getLogger(__name__)

CallbackFactory = Callable[[WatchDefinition], PollCallback]


@dataclass(frozen=True)
class ReconcilePlan:
    """Names to add, replace and delete, in the order they are applied."""

    to_add: Tuple[str, ...]
    to_update: Tuple[str, ...]
    to_delete: Tuple[str, ...]


def plan_reconciliation(running: Iterable[str], watches: Sequence[WatchDefinition]) -> ReconcilePlan:
    """Diff running task names against the new watch set.

    Every watch that is already running lands in ``to_update``: tasks are
    always rebuilt so their closures capture the fresh watch state.
    """

    running_names = list(running)
    wanted = [watch.name for watch in watches]
    wanted_set = set(wanted)
    running_set = set(running_names)
    return ReconcilePlan(
        to_add=tuple(name for name in wanted if name not in running_set),
        to_update=tuple(name for name in wanted if name in running_set),
        to_delete=tuple(name for name in running_names if name not in wanted_set),
    )


class Reconciler:
    """Applies watch sets to a Scheduler, one reconciliation at a time."""

    def __init__(self, scheduler: Scheduler, callback_factory: CallbackFactory) -> None:
        self._scheduler = scheduler
        self._callback_factory = callback_factory
        self._lock = asyncio.Lock()

    async def reconcile(self, watches: Sequence[WatchDefinition]) -> ReconcilePlan:
        """Delete absent watches first, then (re-)add every watch with an immediate tick."""

        async with self._lock:
            plan = plan_reconciliation(self._scheduler.list(), watches)
            for name in plan.to_delete:
                LOGGER.info("Removing watch %s, no longer configured", name)
                await self._scheduler.delete(name)

            for watch in watches:
                await self._scheduler.add(
                    watch.name,
                    watch.interval,
                    self._callback_factory(watch),
                    fire_immediately=True,
                )

            LOGGER.info(
                "Reconciled watches: added=%s updated=%s deleted=%s",
                len(plan.to_add),
                len(plan.to_update),
                len(plan.to_delete),
            )
            return plan
