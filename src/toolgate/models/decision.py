"""Pydantic models for capability-need classification."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, StrictBool

FAIL_SAFE_RATIONALE = "classification unavailable"


class Confidence(str, Enum):
    """Classifier self-reported certainty."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TokenUsage(BaseModel):
    """Token counts reported by a model call."""

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ClassificationDecision(BaseModel):
    """Whether a request needs the capability set loaded before completion."""

    requires_capabilities: bool = Field(description="Load the capability set for this request")
    confidence: Confidence = Field(description="Classifier certainty")
    rationale: str = Field(default="", description="Short justification, logging only")
    suggested_capability_names: list[str] = Field(
        default_factory=list,
        description="Advisory hint of relevant capabilities",
    )
    elapsed_ms: int = Field(default=0, ge=0, description="Classification latency")
    from_cache: bool = Field(default=False)
    degraded: bool = Field(default=False, description="True when the fail-safe was substituted")
    usage: TokenUsage | None = Field(default=None)

    model_config = {"frozen": True}

    @classmethod
    def fail_safe(cls, elapsed_ms: int = 0) -> "ClassificationDecision":
        """Decision used whenever classification cannot be completed."""
        return cls(
            requires_capabilities=True,
            confidence=Confidence.LOW,
            rationale=FAIL_SAFE_RATIONALE,
            elapsed_ms=elapsed_ms,
            degraded=True,
        )


class ClassifierVerdict(BaseModel):
    """Strict schema for the auxiliary model's JSON reply.

    Field names follow the wire format the classification prompt asks for.
    """

    requires_tools: StrictBool = Field(alias="requiresTools")
    confidence: Confidence = Field(default=Confidence.MEDIUM)
    reasoning: str = Field(default="")
    suggested_tools: list[str] = Field(default_factory=list, alias="suggestedTools")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_decision(self, elapsed_ms: int, usage: TokenUsage | None = None) -> ClassificationDecision:
        return ClassificationDecision(
            requires_capabilities=self.requires_tools,
            confidence=self.confidence,
            rationale=self.reasoning[:200],
            suggested_capability_names=[name for name in self.suggested_tools if name],
            elapsed_ms=elapsed_ms,
            usage=usage,
        )
