"""Pipeline metrics: counters, rolling latency window and snapshot sinks."""

import json
import logging
import math
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .cache import ClassificationCache
from .models.metrics import AggregateMetrics, LatencySummary, MetricsEvent
from .models.pipeline import PipelineOutcome, PipelinePath

logger = logging.getLogger(__name__)


class MetricsSink(ABC):
    """Destination for aggregate snapshots (dashboards, alerting, files)."""

    @abstractmethod
    def emit(self, snapshot: AggregateMetrics) -> None:
        pass


class JsonlMetricsSink(MetricsSink):
    """Append-only JSONL sink.

    Writes one METRICS_SNAPSHOT event per line. Never truncates or rewrites;
    only appends.
    """

    def __init__(self, path: Path):
        self.path = path

    def emit(self, snapshot: AggregateMetrics) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        event = MetricsEvent(
            event_id=str(uuid.uuid4()),
            ts=datetime.now(timezone.utc),
            snapshot=snapshot,
        )
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event.model_dump(mode="json")) + "\n")


def read_metrics_tail(path: Path, n: int = 20) -> list[MetricsEvent]:
    """Read the last N snapshot events, skipping malformed lines."""
    if not path.exists():
        return []

    with open(path, "r", encoding="utf-8") as f:
        lines = f.readlines()

    events: list[MetricsEvent] = []
    malformed_count = 0
    for line in lines[-n:]:
        line = line.strip()
        if not line:
            continue
        try:
            events.append(MetricsEvent.model_validate_json(line))
        except ValueError as e:
            malformed_count += 1
            logger.warning(f"Skipping malformed metrics line: {e}")

    if malformed_count:
        logger.warning(f"Skipped {malformed_count} malformed metrics line(s)")
    return events


class MetricsCollector:
    """Accumulates per-request outcomes into aggregate figures.

    Counters cover every recorded request; latency percentiles cover only
    the last ``window_size`` requests. All state is guarded by one lock.
    """

    def __init__(
        self,
        window_size: int = 1000,
        sink: Optional[MetricsSink] = None,
        cache: Optional[ClassificationCache] = None,
    ):
        self.window_size = window_size
        self.sink = sink
        self.cache = cache
        self._lock = threading.Lock()
        self._samples: deque[tuple[PipelinePath, int]] = deque(maxlen=window_size)
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._total = 0
        self._failed = 0
        self._from_cache = 0
        self._skipped = 0
        self._fallbacks = 0
        self._degraded = 0
        self._executed = 0

    def record(self, outcome: PipelineOutcome) -> None:
        """Add one completed request."""
        with self._lock:
            self._total += 1
            if outcome.decision.from_cache:
                self._from_cache += 1
            if not outcome.capabilities_loaded:
                self._skipped += 1
            if outcome.fallback_retried:
                self._fallbacks += 1
            if outcome.decision.degraded:
                self._degraded += 1
            if outcome.capabilities_executed:
                self._executed += 1
            self._samples.append((outcome.path, outcome.timings.total_ms))

    def record_failure(self) -> None:
        """Count a request that ended with a propagated error."""
        with self._lock:
            self._failed += 1

    def snapshot(self) -> AggregateMetrics:
        with self._lock:
            total = self._total
            samples = list(self._samples)
            counters = (self._from_cache, self._skipped, self._fallbacks, self._degraded, self._executed)
            failed = self._failed

        from_cache, skipped, fallbacks, degraded, executed = counters
        if self.cache is not None:
            cache_hit_rate = self.cache.stats().hit_rate
        else:
            cache_hit_rate = _ratio(from_cache, total)

        by_path: dict[PipelinePath, list[int]] = {}
        for path, total_ms in samples:
            by_path.setdefault(path, []).append(total_ms)

        return AggregateMetrics(
            total_requests=total,
            failed_requests=failed,
            cache_hit_rate=cache_hit_rate,
            skip_rate=_ratio(skipped, total),
            fallback_rate=_ratio(fallbacks, total),
            degraded_rate=_ratio(degraded, total),
            execution_rate=_ratio(executed, total),
            latency_by_path={path: summarize(values) for path, values in by_path.items()},
            window_size=self.window_size,
            captured_at=datetime.now(timezone.utc),
        )

    def publish(self) -> Optional[AggregateMetrics]:
        """Push a snapshot to the sink. Sink failures are logged, never raised."""
        if self.sink is None:
            return None
        snapshot = self.snapshot()
        try:
            self.sink.emit(snapshot)
        except Exception as e:
            logger.warning(f"Metrics sink unavailable, snapshot dropped: {e}")
        return snapshot

    def reset(self) -> None:
        with self._lock:
            self._reset_counters()
            self._samples.clear()


def summarize(values: list[int]) -> LatencySummary:
    """Average and nearest-rank percentiles of a latency sample."""
    if not values:
        return LatencySummary()
    ordered = sorted(values)
    return LatencySummary(
        count=len(ordered),
        avg_ms=round(sum(ordered) / len(ordered), 2),
        p50_ms=float(_percentile(ordered, 50)),
        p95_ms=float(_percentile(ordered, 95)),
        p99_ms=float(_percentile(ordered, 99)),
    )


def _percentile(ordered: list[int], pct: float) -> int:
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


def _ratio(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole else 0.0
