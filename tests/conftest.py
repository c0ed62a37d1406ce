"""Pytest fixtures for toolgate tests."""

import os

import pytest

from toolgate.cache import ClassificationCache
from toolgate.capabilities import HandlerCapabilityExecutor, StaticCapabilityCatalog
from toolgate.classifier import IntentClassifier
from toolgate.config import ClassifierConfig, GateConfig
from toolgate.fallback import PhraseFallbackDetector
from toolgate.llm import FakeClassifierBackend, ScriptedCompletionEngine
from toolgate.metrics import MetricsCollector
from toolgate.models import CapabilityDefinition
from toolgate.pipeline import PipelineOrchestrator


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clean_toolgate_env(monkeypatch):
    """Keep TOOLGATE_* and API key variables from leaking into tests."""
    for name in list(os.environ):
        if name.startswith("TOOLGATE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ClassificationCache(ttl_seconds=300, max_entries=1000, clock=clock)


@pytest.fixture
def backend():
    return FakeClassifierBackend()


@pytest.fixture
def classifier(backend, cache):
    return IntentClassifier(backend, cache, ClassifierConfig(engine="fake"))


@pytest.fixture
def capability_definitions():
    return [
        CapabilityDefinition(
            name="send_email",
            description="Send an email",
            parameters={"type": "object", "properties": {"to": {"type": "string"}}},
        ),
        CapabilityDefinition(name="search_calendar", description="Search calendar events"),
    ]


@pytest.fixture
def catalog(capability_definitions):
    return StaticCapabilityCatalog(capability_definitions)


@pytest.fixture
def executor():
    return HandlerCapabilityExecutor({
        "send_email": lambda to="": f"sent to {to}",
        "search_calendar": lambda query="": "no events",
    })


@pytest.fixture
def engine():
    return ScriptedCompletionEngine()


@pytest.fixture
def gate_config():
    return GateConfig()


@pytest.fixture
def metrics(cache):
    return MetricsCollector(window_size=100, cache=cache)


@pytest.fixture
def orchestrator(classifier, catalog, engine, executor, metrics, gate_config):
    """Orchestrator wired to in-memory collaborators."""
    return PipelineOrchestrator(
        classifier=classifier,
        catalog=catalog,
        engine=engine,
        executor=executor,
        fallback_detector=PhraseFallbackDetector.from_config(gate_config.fallback),
        metrics=metrics,
        config=gate_config,
    )
