"""toolgate - intent-aware capability gating for agent chat pipelines."""

from .cache import ClassificationCache, make_cache_key
from .capabilities import (
    CapabilityCatalog,
    CapabilityExecutor,
    HandlerCapabilityExecutor,
    HttpCapabilityCatalog,
    HttpCapabilityExecutor,
    StaticCapabilityCatalog,
)
from .classifier import IntentClassifier
from .config import GateConfig
from .errors import (
    CapabilityExecutionError,
    CapabilityExecutionTimeoutError,
    CatalogError,
    CompletionError,
    CompletionTimeoutError,
    ToolgateError,
)
from .fallback import FallbackDetector, PhraseFallbackDetector
from .metrics import JsonlMetricsSink, MetricsCollector, MetricsSink
from .models import ClassificationDecision, Confidence, PipelineOutcome, PipelinePath, PipelineRequest
from .pipeline import PipelineOrchestrator

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "PipelineOrchestrator",
    "IntentClassifier",
    "ClassificationCache",
    "make_cache_key",
    "FallbackDetector",
    "PhraseFallbackDetector",
    "CapabilityCatalog",
    "CapabilityExecutor",
    "StaticCapabilityCatalog",
    "HandlerCapabilityExecutor",
    "HttpCapabilityCatalog",
    "HttpCapabilityExecutor",
    "MetricsCollector",
    "MetricsSink",
    "JsonlMetricsSink",
    "GateConfig",
    "ClassificationDecision",
    "Confidence",
    "PipelineRequest",
    "PipelineOutcome",
    "PipelinePath",
    "ToolgateError",
    "CompletionError",
    "CompletionTimeoutError",
    "CatalogError",
    "CapabilityExecutionError",
    "CapabilityExecutionTimeoutError",
]
