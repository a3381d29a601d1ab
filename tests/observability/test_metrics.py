import logging

import pytest

from airbitrage.config import Settings
from airbitrage.observability.metrics import MetricsReporter


def _reporter(**overrides) -> MetricsReporter:
    return MetricsReporter(Settings(metrics_backend="stdout", **overrides))


def _samples(caplog) -> list[dict]:
    return [record.metrics for record in caplog.records if record.getMessage() == "airbitrage.metric"]


def test_samples_are_logged_under_the_namespace(caplog):
    caplog.set_level(logging.INFO, logger="airbitrage.metrics")
    reporter = _reporter(metrics_namespace="arb")

    reporter.increment("scout.leads", value=12, tags={"agent_type": "retail"})
    reporter.gauge("arb.queue.active", 2)

    first, second = _samples(caplog)
    assert first == {"metric": "arb.scout.leads", "value": 12.0, "type": "counter", "tags": {"agent_type": "retail"}}
    assert second["metric"] == "arb.queue.active"
    assert second["type"] == "gauge"


def test_disabled_reporter_is_silent(caplog):
    caplog.set_level(logging.INFO, logger="airbitrage.metrics")
    reporter = _reporter(metrics_disable=True)

    reporter.increment("budget.exceeded")
    with reporter.timer("run.duration_ms"):
        pass

    assert _samples(caplog) == []


def test_timer_records_even_when_the_block_raises(caplog):
    caplog.set_level(logging.INFO, logger="airbitrage.metrics")
    reporter = _reporter()

    with pytest.raises(RuntimeError):
        with reporter.timer("run.duration_ms", tags={"agent_type": "books"}):
            raise RuntimeError("snipe failed")

    (sample,) = _samples(caplog)
    assert sample["type"] == "timing"
    assert sample["value"] >= 0
    assert sample["tags"] == {"agent_type": "books"}


def test_zero_sample_rate_keeps_gauges_only(caplog):
    caplog.set_level(logging.INFO, logger="airbitrage.metrics")
    reporter = _reporter(metrics_sample_rate=0.0)

    reporter.increment("scout.qualified")
    reporter.timing("scout.resale.duration_ms", 40)
    reporter.gauge("queue.queued", 1)

    assert [sample["metric"] for sample in _samples(caplog)] == ["airbitrage.queue.queued"]


def test_qualified_name_handles_blank_metrics():
    reporter = _reporter()

    assert reporter.qualified_name("") == "airbitrage"
    assert reporter.qualified_name("  snipe.tokens ") == "airbitrage.snipe.tokens"
