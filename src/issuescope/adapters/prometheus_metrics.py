"""Prometheus metrics adapter.

Implements the core MetricsPort with prometheus_client counters. Each
instance owns its registry so several instances (tests, one-shot commands)
never collide on metric names.
"""

from __future__ import annotations

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, start_http_server

LOGGER = logging.getLogger(__name__)

PREFIX = "issuescope"


class PrometheusMetrics:
    """Counters mirroring the engine's observability points."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._poll_tick = Counter(
            f"{PREFIX}_poll_tick_total",
            "The total number of times an update poll has ticked",
            ["watch"],
            registry=self.registry,
        )
        self._poll_error = Counter(
            f"{PREFIX}_poll_error_total",
            "The total number of errors that have occurred during a poll tick",
            ["watch"],
            registry=self.registry,
        )
        self._filtered = Counter(
            f"{PREFIX}_filtered_items_total",
            "The total number of items on GitHub that were filtered out for a match",
            ["watch"],
            registry=self.registry,
        )
        self._action_handle = Counter(
            f"{PREFIX}_action_handle_total",
            "The total number of times an action handler was invoked, labeled by action name",
            ["action"],
            registry=self.registry,
        )
        self._action_error = Counter(
            f"{PREFIX}_action_handle_error_total",
            "The total number of times an error occurred during an action handler execution",
            ["action"],
            registry=self.registry,
        )
        self._config_load = Counter(
            f"{PREFIX}_config_load_total",
            "The total number of times the configuration has been loaded",
            registry=self.registry,
        )
        self._config_load_error = Counter(
            f"{PREFIX}_config_load_error_total",
            "The total number of errors observed when loading configurations",
            registry=self.registry,
        )
        self._query = Counter(
            f"{PREFIX}_query_total",
            "The total number of queries made against GitHub, labeled by query kind",
            ["kind"],
            registry=self.registry,
        )
        self._query_error = Counter(
            f"{PREFIX}_query_error_total",
            "The total number of errors observed during queries against GitHub",
            ["kind"],
            registry=self.registry,
        )

    def task_tick(self, watch: str) -> None:
        self._poll_tick.labels(watch=watch).inc()

    def task_error(self, watch: str) -> None:
        self._poll_error.labels(watch=watch).inc()

    def item_filtered(self, watch: str) -> None:
        self._filtered.labels(watch=watch).inc()

    def action_invoked(self, action: str) -> None:
        self._action_handle.labels(action=action).inc()

    def action_error(self, action: str) -> None:
        self._action_error.labels(action=action).inc()

    def config_load(self) -> None:
        self._config_load.inc()

    def config_load_error(self) -> None:
        self._config_load_error.inc()

    def query(self, kind: str) -> None:
        self._query.labels(kind=kind).inc()

    def query_error(self, kind: str) -> None:
        self._query_error.labels(kind=kind).inc()

    def value(self, name: str, labels: Optional[dict] = None) -> float:
        """Return a sample value, 0.0 when it was never incremented."""

        sample = self.registry.get_sample_value(name, labels or {})
        return sample or 0.0

    def serve(self, port: int) -> None:
        """Expose ``/metrics`` on ``port`` from a background thread."""

        LOGGER.info("Starting prometheus metric endpoint on :%s", port)
        start_http_server(port, registry=self.registry)
