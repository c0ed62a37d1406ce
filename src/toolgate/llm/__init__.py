"""LLM backends and completion engines for toolgate."""

from .backend import (
    BACKEND_VERSION,
    BackendReply,
    BaseClassifierBackend,
    FakeClassifierBackend,
    RealClassifierBackend,
    get_classifier_backend,
    has_llm_api_key,
)
from .completion import (
    BaseCompletionEngine,
    CompletionCall,
    OpenAICompletionEngine,
    ScriptedCompletionEngine,
    parse_openai_completion,
)

__all__ = [
    # Classification backends
    "BackendReply",
    "BaseClassifierBackend",
    "FakeClassifierBackend",
    "RealClassifierBackend",
    "get_classifier_backend",
    "has_llm_api_key",
    # Completion engines
    "BaseCompletionEngine",
    "CompletionCall",
    "ScriptedCompletionEngine",
    "OpenAICompletionEngine",
    "parse_openai_completion",
    # Version constants
    "BACKEND_VERSION",
]
