"""Configuration-change stream backed by watchdog.

The watchdog observer runs on its own thread; it only nudges the event loop,
which reloads and validates the file and yields the new snapshot. Snapshots
are consumed one at a time, so reconciliations never overlap.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import AsyncIterator, Awaitable, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from issuescope.core.config import Config
from issuescope.core.ports import MetricsPort, NullMetrics

LOGGER = logging.getLogger(__name__)

ConfigLoader = Callable[[str], Awaitable[Config]]

# Editors often emit several events for one save.
DEBOUNCE_SECONDS = 0.2


class _ConfigFileHandler(FileSystemEventHandler):
    """Calls ``notify`` whenever the watched file is written or replaced."""

    def __init__(self, path: str, notify: Callable[[], None]) -> None:
        super().__init__()
        self._path = os.path.abspath(path)
        self._notify = notify

    def _is_target(self, path: Optional[str]) -> bool:
        if not path:
            return False
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        return os.path.abspath(path) == self._path

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_target(event.src_path):
            self._notify()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._is_target(event.src_path):
            self._notify()

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic saves write a temp file and rename it over the config.
        if not event.is_directory and self._is_target(getattr(event, "dest_path", None)):
            self._notify()


class ConfigFileStream:
    """Async iterator of validated Config snapshots for one file.

    The first snapshot is loaded eagerly and a failure there propagates.
    Later reload failures are logged and counted, and the stream keeps
    waiting for the next change.
    """

    def __init__(
        self,
        path: str,
        loader: ConfigLoader,
        metrics: Optional[MetricsPort] = None,
        debounce: float = DEBOUNCE_SECONDS,
    ) -> None:
        self._path = os.path.abspath(os.path.expanduser(path))
        self._loader = loader
        self._metrics = metrics or NullMetrics()
        self._debounce = debounce

    async def _load(self) -> Config:
        self._metrics.config_load()
        try:
            return await self._loader(self._path)
        except Exception:
            self._metrics.config_load_error()
            raise

    def __aiter__(self) -> AsyncIterator[Config]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Config]:
        loop = asyncio.get_running_loop()
        changes: asyncio.Queue = asyncio.Queue()

        def notify() -> None:
            loop.call_soon_threadsafe(changes.put_nowait, None)

        observer = Observer()
        observer.schedule(_ConfigFileHandler(self._path, notify), os.path.dirname(self._path), recursive=False)
        observer.start()
        try:
            LOGGER.debug("Attempting initial load of config file %s", self._path)
            yield await self._load()

            LOGGER.debug("Watching config file %s", self._path)
            while True:
                await changes.get()
                await asyncio.sleep(self._debounce)
                while not changes.empty():
                    changes.get_nowait()

                LOGGER.info("Config file changed")
                try:
                    config = await self._load()
                except Exception as exc:
                    LOGGER.error("Unable to handle config change event: %s", exc)
                    continue
                yield config
        finally:
            observer.stop()
            await asyncio.to_thread(observer.join)
