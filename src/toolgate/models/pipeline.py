"""Pydantic models for one trip through the gating pipeline."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .capability import InvocationResult
from .decision import ClassificationDecision, TokenUsage


class PipelinePath(str, Enum):
    """Which branch of the state machine produced the final response."""

    NO_CAPABILITY = "no_capability"
    CAPABILITY = "capability"
    FALLBACK = "fallback"


class PipelineRequest(BaseModel):
    """One inbound message. Ephemeral; never persisted."""

    session_id: str
    agent_id: str
    message_text: str
    capability_catalog_ref: Any = Field(
        default=None,
        description="Opaque handle passed through to the capability catalog",
    )
    history: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Recent conversation messages in chat format",
    )
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class StageTimings(BaseModel):
    """Elapsed milliseconds per pipeline stage."""

    classify_ms: int = 0
    load_ms: int = 0
    completion_ms: int = 0
    execution_ms: int = 0
    total_ms: int = 0


class PipelineOutcome(BaseModel):
    """Terminal record of one request's journey through the pipeline."""

    request_id: str
    response_text: str
    decision: ClassificationDecision
    path: PipelinePath
    capabilities_loaded: bool = False
    capabilities_executed: bool = False
    fallback_retried: bool = False
    fallback_signal: str | None = None
    loaded_capability_names: list[str] = Field(default_factory=list)
    invocation_results: list[InvocationResult] = Field(default_factory=list)
    timings: StageTimings = Field(default_factory=StageTimings)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def skipped_capability_loading(self) -> bool:
        return not self.capabilities_loaded
