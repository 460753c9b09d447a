"""Interval-driven poll scheduling (core domain).

The Scheduler owns a named set of independent PollTasks. Each task runs as
its own asyncio task and awaits its callback on every interval expiry, and
optionally once right at start.

Lifecycle guarantees:
- At most one live task per name. ``add`` on an existing name stops the old
  task and waits for it to acknowledge before the new one starts.
- ``stop_all`` sets one shared shutdown event and waits for every task, so
  nothing ticks after it returns.
- A callback that raises is logged and the task keeps ticking.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

PollCallback = Callable[[datetime], Awaitable[None]]


class SchedulerClosedError(RuntimeError):
    """Raised when adding a task to a scheduler that was stopped."""


class PollTask:
    """One named ticker bound to a callback."""

    def __init__(
        self,
        name: str,
        interval: float,
        callback: PollCallback,
        fire_immediately: bool,
        shutdown: asyncio.Event,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be greater than zero, got {interval}")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._fire_immediately = fire_immediately
        self._shutdown = shutdown
        self._cancel = asyncio.Event()
        self._done = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"poll:{self.name}")

    @property
    def done(self) -> bool:
        return self._done.is_set()

    async def _invoke(self) -> None:
        tick = datetime.now(timezone.utc)
        LOGGER.debug("Tick for %s at %s", self.name, tick.isoformat())
        try:
            await self._callback(tick)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Poll callback for %s failed", self.name)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        cancelled = asyncio.ensure_future(self._cancel.wait())
        shutdown = asyncio.ensure_future(self._shutdown.wait())
        stop_signals = {cancelled, shutdown}
        LOGGER.debug("Starting poller %s (interval=%ss)", self.name, self.interval)
        try:
            if self._fire_immediately and not (self._cancel.is_set() or self._shutdown.is_set()):
                LOGGER.debug("Running initial callback for %s", self.name)
                await self._invoke()

            next_deadline = loop.time() + self.interval
            while not (self._cancel.is_set() or self._shutdown.is_set()):
                delay = max(0.0, next_deadline - loop.time())
                finished, _ = await asyncio.wait(
                    stop_signals, timeout=delay, return_when=asyncio.FIRST_COMPLETED
                )
                if finished:
                    break
                await self._invoke()
                # Ticker semantics: stay on the initial grid and drop ticks
                # that elapsed while a slow callback was running.
                now = loop.time()
                next_deadline += self.interval
                if next_deadline <= now:
                    missed = int((now - next_deadline) // self.interval) + 1
                    next_deadline += missed * self.interval
        finally:
            for waiter in stop_signals:
                waiter.cancel()
            self._done.set()
            LOGGER.debug("Poller %s stopped", self.name)

    async def stop(self) -> None:
        """Signal cancellation and wait until the task acknowledged it."""

        LOGGER.debug("Stopping poller %s", self.name)
        self._cancel.set()
        await self.wait()

    async def wait(self) -> None:
        if self._task is None:
            return
        await self._done.wait()


class Scheduler:
    """Named collection of PollTasks with coordinated shutdown."""

    def __init__(self) -> None:
        self._tasks: Dict[str, PollTask] = {}
        self._shutdown = asyncio.Event()
        self._closed = False

    async def add(
        self,
        name: str,
        interval: float,
        callback: PollCallback,
        fire_immediately: bool = False,
    ) -> None:
        """Start a task under ``name``, replacing any task already running there."""

        if self._closed:
            raise SchedulerClosedError(f"cannot add poll {name!r}, scheduler is stopped")
        if name in self._tasks:
            await self.delete(name)

        task = PollTask(name, interval, callback, fire_immediately, self._shutdown)
        self._tasks[name] = task
        task.start()
        LOGGER.info("Poll %s scheduled every %ss", name, interval)

    async def delete(self, name: str) -> None:
        """Stop and remove the task; unknown names are only logged."""

        task = self._tasks.get(name)
        if task is None:
            LOGGER.warning("Got delete on non-existent poll %s", name)
            return
        await task.stop()
        self._tasks.pop(name, None)
        LOGGER.info("Poll %s removed", name)

    def list(self) -> List[str]:
        return list(self._tasks)

    async def stop_all(self) -> None:
        """Stop every task and wait for all of them; safe to call repeatedly."""

        self._closed = True
        self._shutdown.set()
        for name, task in list(self._tasks.items()):
            LOGGER.info("Waiting for poll %s to finish", name)
            await task.wait()
        self._tasks.clear()

    @property
    def closed(self) -> bool:
        return self._closed
