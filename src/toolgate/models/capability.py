"""Pydantic models for capabilities, their invocations and completion replies."""

import json
from typing import Any

from pydantic import BaseModel, Field

from .decision import TokenUsage


def empty_parameters() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


class CapabilityDefinition(BaseModel):
    """A tool the completion engine may ask to have executed."""

    name: str = Field(min_length=1, description="Function name exposed to the model")
    description: str = Field(default="")
    parameters: dict[str, Any] = Field(default_factory=empty_parameters)

    model_config = {"frozen": True}

    def to_tool_spec(self) -> dict[str, Any]:
        """Render as an OpenAI function-tool entry."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class CapabilityInvocation(BaseModel):
    """A capability call requested by the completion engine."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def to_tool_call(self) -> dict[str, Any]:
        """Render as the ``tool_calls`` entry of an assistant message."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }


class InvocationResult(BaseModel):
    """Outcome of executing one capability invocation."""

    invocation_id: str
    name: str
    ok: bool
    content: str = Field(default="")
    error: str | None = Field(default=None)
    elapsed_ms: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @classmethod
    def failure(cls, invocation: CapabilityInvocation, error: str, elapsed_ms: int = 0) -> "InvocationResult":
        return cls(
            invocation_id=invocation.id,
            name=invocation.name,
            ok=False,
            error=error,
            elapsed_ms=elapsed_ms,
        )

    def to_message(self) -> dict[str, Any]:
        """Render as the ``role=tool`` message fed back to the completion engine.

        Failed invocations carry an explicit error payload so the final
        completion call knows the tool call did not succeed.
        """
        if self.ok:
            content = self.content
        else:
            content = json.dumps(
                {"error": self.error or "capability execution failed", "capability": self.name},
                ensure_ascii=False,
            )
        return {
            "role": "tool",
            "tool_call_id": self.invocation_id,
            "name": self.name,
            "content": content,
        }


class CompletionResult(BaseModel):
    """Reply from the completion engine."""

    text: str | None = Field(default=None)
    invocations: list[CapabilityInvocation] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str = Field(default="stop")

    model_config = {"frozen": True}

    @property
    def requests_capabilities(self) -> bool:
        return bool(self.invocations)
