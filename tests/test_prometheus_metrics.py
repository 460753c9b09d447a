from __future__ import annotations

from issuescope.adapters.prometheus_metrics import PrometheusMetrics


def test_counters_are_labelled_and_isolated() -> None:
    metrics = PrometheusMetrics()
    metrics.task_tick("bugs")
    metrics.task_tick("bugs")
    metrics.task_error("bugs")
    metrics.action_invoked("email")
    metrics.action_error("email")
    metrics.config_load()
    metrics.config_load_error()
    metrics.query("issue")

    assert metrics.value("issuescope_poll_tick_total", {"watch": "bugs"}) == 2
    assert metrics.value("issuescope_poll_error_total", {"watch": "bugs"}) == 1
    assert metrics.value("issuescope_action_handle_total", {"action": "email"}) == 1
    assert metrics.value("issuescope_action_handle_error_total", {"action": "email"}) == 1
    assert metrics.value("issuescope_config_load_total") == 1
    assert metrics.value("issuescope_config_load_error_total") == 1
    assert metrics.value("issuescope_query_total", {"kind": "issue"}) == 1
    assert metrics.value("issuescope_query_total", {"kind": "repo"}) == 0

    other = PrometheusMetrics()
    assert other.value("issuescope_poll_tick_total", {"watch": "bugs"}) == 0
