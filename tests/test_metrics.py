"""Tests for MetricsCollector and the JSONL sink."""

import json
import threading

import pytest

from toolgate.metrics import JsonlMetricsSink, MetricsCollector, MetricsSink, read_metrics_tail, summarize
from toolgate.models import (
    ClassificationDecision,
    Confidence,
    PipelineOutcome,
    PipelinePath,
    StageTimings,
)


def _outcome(
    path=PipelinePath.NO_CAPABILITY,
    total_ms=10,
    from_cache=False,
    degraded=False,
    executed=False,
):
    decision = ClassificationDecision(
        requires_capabilities=path is PipelinePath.CAPABILITY,
        confidence=Confidence.HIGH,
        from_cache=from_cache,
        degraded=degraded,
    )
    return PipelineOutcome(
        request_id="req",
        response_text="ok",
        decision=decision,
        path=path,
        capabilities_loaded=path is not PipelinePath.NO_CAPABILITY,
        capabilities_executed=executed,
        fallback_retried=path is PipelinePath.FALLBACK,
        timings=StageTimings(total_ms=total_ms),
    )


class BrokenSink(MetricsSink):
    def emit(self, snapshot):
        raise OSError("dashboard unreachable")


class TestCollector:
    """Aggregate figures."""

    def test_empty_snapshot(self):
        snapshot = MetricsCollector().snapshot()

        assert snapshot.total_requests == 0
        assert snapshot.skip_rate == 0.0
        assert snapshot.latency_by_path == {}

    def test_rates(self):
        collector = MetricsCollector()
        collector.record(_outcome(PipelinePath.NO_CAPABILITY, from_cache=True))
        collector.record(_outcome(PipelinePath.NO_CAPABILITY))
        collector.record(_outcome(PipelinePath.CAPABILITY, degraded=True, executed=True))
        collector.record(_outcome(PipelinePath.FALLBACK))

        snapshot = collector.snapshot()

        assert snapshot.total_requests == 4
        assert snapshot.skip_rate == 0.5
        assert snapshot.fallback_rate == 0.25
        assert snapshot.degraded_rate == 0.25
        assert snapshot.execution_rate == 0.25
        assert snapshot.cache_hit_rate == 0.25

    def test_cache_hit_rate_from_attached_cache(self, cache):
        cache.get("missing")
        collector = MetricsCollector(cache=cache)
        collector.record(_outcome(from_cache=True))

        assert collector.snapshot().cache_hit_rate == 0.0

    def test_latency_split_by_path(self):
        collector = MetricsCollector()
        for ms in (10, 20, 30, 40):
            collector.record(_outcome(PipelinePath.NO_CAPABILITY, total_ms=ms))
        collector.record(_outcome(PipelinePath.CAPABILITY, total_ms=900))

        snapshot = collector.snapshot()

        no_cap = snapshot.latency_by_path[PipelinePath.NO_CAPABILITY]
        assert no_cap.count == 4
        assert no_cap.avg_ms == 25.0
        assert no_cap.p50_ms == 20.0
        assert no_cap.p95_ms == 40.0
        assert snapshot.latency_by_path[PipelinePath.CAPABILITY].p99_ms == 900.0

    def test_window_is_bounded(self):
        collector = MetricsCollector(window_size=3)
        for ms in (1000, 1, 2, 3):
            collector.record(_outcome(total_ms=ms))

        snapshot = collector.snapshot()

        assert snapshot.total_requests == 4
        assert snapshot.latency_by_path[PipelinePath.NO_CAPABILITY].count == 3
        assert snapshot.latency_by_path[PipelinePath.NO_CAPABILITY].p99_ms == 3.0

    def test_reset(self):
        collector = MetricsCollector()
        collector.record(_outcome())
        collector.record_failure()

        collector.reset()

        snapshot = collector.snapshot()
        assert snapshot.total_requests == 0
        assert snapshot.failed_requests == 0

    def test_concurrent_recording(self):
        collector = MetricsCollector(window_size=50)

        def worker():
            for _ in range(250):
                collector.record(_outcome())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snapshot = collector.snapshot()
        assert snapshot.total_requests == 1000
        assert snapshot.latency_by_path[PipelinePath.NO_CAPABILITY].count == 50


class TestSummarize:
    """Nearest-rank percentiles."""

    def test_single_value(self):
        summary = summarize([7])

        assert summary.p50_ms == summary.p99_ms == 7.0

    def test_hundred_values(self):
        summary = summarize(list(range(1, 101)))

        assert summary.p50_ms == 50.0
        assert summary.p95_ms == 95.0
        assert summary.p99_ms == 99.0


class TestSink:
    """Publishing snapshots."""

    def test_jsonl_sink_appends(self, tmp_path):
        path = tmp_path / "metrics" / "snapshots.jsonl"
        collector = MetricsCollector(sink=JsonlMetricsSink(path))
        collector.record(_outcome())

        collector.publish()
        collector.publish()

        lines = path.read_text().strip().split("\n")
        assert len(lines) == 2
        event = json.loads(lines[0])
        assert event["event_type"] == "METRICS_SNAPSHOT"
        assert event["snapshot"]["total_requests"] == 1

    def test_publish_without_sink_is_noop(self):
        assert MetricsCollector().publish() is None

    def test_sink_failure_is_swallowed(self, caplog):
        collector = MetricsCollector(sink=BrokenSink())

        snapshot = collector.publish()

        assert snapshot is not None
        assert "snapshot dropped" in caplog.text

    def test_read_tail_skips_malformed(self, tmp_path):
        path = tmp_path / "snapshots.jsonl"
        sink = JsonlMetricsSink(path)
        collector = MetricsCollector(sink=sink)
        collector.publish()
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n")
        collector.record(_outcome())
        collector.publish()

        events = read_metrics_tail(path, n=10)

        assert len(events) == 2
        assert events[-1].snapshot.total_requests == 1

    def test_read_tail_limits_and_missing_file(self, tmp_path):
        path = tmp_path / "snapshots.jsonl"
        collector = MetricsCollector(sink=JsonlMetricsSink(path))
        for _ in range(5):
            collector.publish()

        assert len(read_metrics_tail(path, n=3)) == 3
        assert read_metrics_tail(tmp_path / "absent.jsonl") == []


@pytest.mark.parametrize("window", [1, 10])
def test_window_size_reported(window):
    assert MetricsCollector(window_size=window).snapshot().window_size == window
