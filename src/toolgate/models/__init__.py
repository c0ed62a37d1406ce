"""Pydantic models for toolgate."""

from .capability import (
    CapabilityDefinition,
    CapabilityInvocation,
    CompletionResult,
    InvocationResult,
)
from .decision import (
    FAIL_SAFE_RATIONALE,
    ClassificationDecision,
    ClassifierVerdict,
    Confidence,
    TokenUsage,
)
from .metrics import AggregateMetrics, CacheStats, LatencySummary, MetricsEvent
from .pipeline import PipelineOutcome, PipelinePath, PipelineRequest, StageTimings

__all__ = [
    # Classification
    "Confidence",
    "TokenUsage",
    "ClassificationDecision",
    "ClassifierVerdict",
    "FAIL_SAFE_RATIONALE",
    # Capabilities
    "CapabilityDefinition",
    "CapabilityInvocation",
    "InvocationResult",
    "CompletionResult",
    # Pipeline
    "PipelineRequest",
    "PipelineOutcome",
    "PipelinePath",
    "StageTimings",
    # Metrics
    "CacheStats",
    "LatencySummary",
    "AggregateMetrics",
    "MetricsEvent",
]
