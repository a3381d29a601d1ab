"""Run, source and budget metrics.

Every sample is logged as an ``airbitrage.metric`` record. With
``METRICS_BACKEND=statsd`` and the ``statsd`` extra installed, samples are also
sent over UDP.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

from airbitrage.config import Settings, settings

try:  # pragma: no cover - optional dependency
    from statsd import StatsClient
except ImportError:  # pragma: no cover - optional dependency guard
    StatsClient = None  # type: ignore[assignment]

logger = logging.getLogger("airbitrage.metrics")

Tags = dict[str, Any]


class MetricKind(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    TIMING = "timing"


class MetricsReporter:
    def __init__(self, config: Settings | None = None) -> None:
        config = config or settings
        self._disabled = config.metrics_disable
        self._namespace = config.metrics_namespace or "airbitrage"
        self._backend = (config.metrics_backend or "stdout").lower()
        self._sample_rate = max(0.0, min(config.metrics_sample_rate, 1.0))
        self._statsd = self._connect_statsd(config) if self._backend == "statsd" and not self._disabled else None

    @staticmethod
    def _connect_statsd(config: Settings) -> StatsClient | None:
        if StatsClient is None:
            logger.warning("metrics.statsd_unavailable")
            return None
        try:
            return StatsClient(host=config.metrics_statsd_host, port=config.metrics_statsd_port, prefix="")
        except OSError as exc:  # pragma: no cover - socket setup failure
            logger.warning("metrics.backend_error", extra={"metric": "statsd.init", "error": type(exc).__name__})
            return None

    def increment(self, metric: str, value: float = 1.0, *, tags: Tags | None = None) -> None:
        self._record(MetricKind.COUNTER, metric, value, tags)

    def gauge(self, metric: str, value: float, *, tags: Tags | None = None) -> None:
        self._record(MetricKind.GAUGE, metric, value, tags)

    def timing(self, metric: str, value_ms: float, *, tags: Tags | None = None) -> None:
        self._record(MetricKind.TIMING, metric, value_ms, tags)

    @contextmanager
    def timer(self, metric: str, *, tags: Tags | None = None) -> Iterator[None]:
        """Record the wall-clock duration of the block in milliseconds, even when it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.timing(metric, (time.perf_counter() - started) * 1000, tags=tags)

    def _record(self, kind: MetricKind, metric: str, value: float, tags: Tags | None) -> None:
        if self._disabled:
            return
        # Gauges are absolute readings; dropping one would leave a stale value behind.
        rate = 1.0 if kind is MetricKind.GAUGE else self._sample_rate
        if rate < 1.0 and secrets.randbelow(1_000_000) / 1_000_000 > rate:
            return
        name = self.qualified_name(metric)
        sample: dict[str, Any] = {"metric": name, "value": round(float(value), 4), "type": kind.value, "tags": tags or {}}
        if rate < 1.0:
            sample["sample_rate"] = round(rate, 4)
        logger.info("airbitrage.metric", extra={"metrics": sample})
        if self._statsd is not None:
            self._send(kind, name, value, rate)

    def _send(self, kind: MetricKind, name: str, value: float, rate: float) -> None:
        try:
            if kind is MetricKind.TIMING:
                self._statsd.timing(name, value, rate=rate)
            elif kind is MetricKind.GAUGE:
                self._statsd.gauge(name, value)
            else:
                self._statsd.incr(name, value, rate=rate)
        except OSError as exc:  # pragma: no cover - UDP send failure
            logger.warning(
                "metrics.backend_error",
                extra={"metric": name, "backend": self._backend, "error": type(exc).__name__},
            )

    def qualified_name(self, metric: str) -> str:
        trimmed = (metric or "").strip()
        if not trimmed:
            return self._namespace
        if trimmed.startswith(f"{self._namespace}."):
            return trimmed
        return f"{self._namespace}.{trimmed}"


metrics = MetricsReporter()
