"""Pydantic models for cache statistics and aggregate pipeline metrics."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .pipeline import PipelinePath


class CacheStats(BaseModel):
    """Point-in-time view of the classification cache."""

    size: int
    max_size: int
    ttl_seconds: float
    hit_count: int
    miss_count: int

    @property
    def hit_rate(self) -> float:
        total = self.hit_count + self.miss_count
        return round(self.hit_count / total, 4) if total else 0.0


class LatencySummary(BaseModel):
    """Latency distribution for one pipeline path over the rolling window."""

    count: int = 0
    avg_ms: float = 0.0
    p50_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0


class AggregateMetrics(BaseModel):
    """Read-only figures derived from the collector's counters."""

    total_requests: int = Field(description="Requests recorded since start or reset")
    failed_requests: int = Field(default=0)
    cache_hit_rate: float = Field(ge=0.0, le=1.0)
    skip_rate: float = Field(ge=0.0, le=1.0, description="Share of requests that never loaded capabilities")
    fallback_rate: float = Field(ge=0.0, le=1.0, description="Proxy for the classifier false-negative rate")
    degraded_rate: float = Field(ge=0.0, le=1.0, description="Share of fail-safe classifications")
    execution_rate: float = Field(ge=0.0, le=1.0)
    latency_by_path: dict[PipelinePath, LatencySummary] = Field(default_factory=dict)
    window_size: int
    captured_at: datetime


class MetricsEvent(BaseModel):
    """One line of the JSONL metrics sink."""

    event_id: str
    ts: datetime
    event_type: Literal["METRICS_SNAPSHOT"] = "METRICS_SNAPSHOT"
    snapshot: AggregateMetrics

    model_config = {"frozen": True}
