"""Concurrent action dispatch for matched items (core domain)."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Sequence

from issuescope.core.models import ActionOutcome, CandidateItem
from issuescope.core.ports import ActionPort, MetricsPort

LOGGER = logging.getLogger(__name__)


class DispatchError(Exception):
    """Aggregated failure of one or more actions for a single item."""

    def __init__(self, item: CandidateItem, outcomes: Sequence[ActionOutcome]) -> None:
        self.item = item
        self.outcomes = tuple(outcomes)
        self.failures = tuple(outcome for outcome in self.outcomes if not outcome.ok)
        details = "; ".join(f"{outcome.action}: {outcome.error}" for outcome in self.failures)
        super().__init__(f"action(s) failed for {item.repo}#{item.number}: {details}")

    @property
    def failed_actions(self) -> List[str]:
        return [outcome.action for outcome in self.failures]


class Dispatcher:
    """Runs every enabled action for an item concurrently.

    Dispatch calls on one instance are serialized by a lock, while the
    actions inside one call run side by side. A failing action never cancels
    its siblings.
    """

    def __init__(self, actions: Iterable[ActionPort], metrics: MetricsPort) -> None:
        self._actions = list(actions)
        self._metrics = metrics
        self._lock = asyncio.Lock()

    @property
    def action_names(self) -> List[str]:
        return [action.name for action in self._actions]

    async def _run_action(self, action: ActionPort, item: CandidateItem) -> ActionOutcome:
        self._metrics.action_invoked(action.name)
        try:
            await action.handle(item)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._metrics.action_error(action.name)
            LOGGER.error(
                "Action %s failed for %s#%s: %s",
                action.name,
                item.repo,
                item.number,
                exc,
            )
            return ActionOutcome(action=action.name, error=exc)
        return ActionOutcome(action=action.name)

    async def dispatch(self, item: CandidateItem) -> List[ActionOutcome]:
        """Run all actions for ``item``; raises DispatchError if any failed."""

        if not self._actions:
            return []

        async with self._lock:
            outcomes = list(
                await asyncio.gather(*(self._run_action(action, item) for action in self._actions))
            )

        if any(not outcome.ok for outcome in outcomes):
            raise DispatchError(item, outcomes)
        return outcomes
