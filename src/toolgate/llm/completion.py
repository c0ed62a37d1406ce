"""Completion engine interface and implementations.

The pipeline treats the engine as a black box: messages (plus an optional
capability schema) in, text and optional capability invocations out.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Union

from ..models.capability import CapabilityDefinition, CapabilityInvocation, CompletionResult
from ..models.decision import TokenUsage
from .backend import post_json


class BaseCompletionEngine(ABC):
    """Abstract interface for the main completion call."""

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        capabilities: list[CapabilityDefinition] | None = None,
    ) -> CompletionResult:
        """Run one completion.

        Args:
            messages: Conversation in chat format
            capabilities: Capability schema to attach, or None for a plain completion

        Returns:
            CompletionResult with text and/or capability invocation requests
        """
        pass

    @property
    @abstractmethod
    def engine_name(self) -> str:
        pass


@dataclass
class CompletionCall:
    """Record of one call made to a scripted engine."""
    messages: list[dict[str, Any]]
    capability_names: list[str] | None

    @property
    def with_capabilities(self) -> bool:
        return self.capability_names is not None


Responder = Callable[[list[dict[str, Any]], list[CapabilityDefinition] | None], CompletionResult]
ScriptItem = Union[CompletionResult, str, Exception]


class ScriptedCompletionEngine(BaseCompletionEngine):
    """Completion engine that replays queued replies.

    Each call pops the next scripted item: a CompletionResult, a plain string
    (turned into a text-only result) or an exception (raised). When the
    queue is empty the responder, if any, is consulted; otherwise a fixed
    default text is returned. Every call is recorded.
    """

    def __init__(
        self,
        script: Iterable[ScriptItem] = (),
        responder: Responder | None = None,
        default_text: str = "OK.",
        delay_seconds: float = 0.0,
    ):
        self._script: deque[ScriptItem] = deque(script)
        self.responder = responder
        self.default_text = default_text
        self.delay_seconds = delay_seconds
        self.calls: list[CompletionCall] = []

    @property
    def engine_name(self) -> str:
        return "scripted"

    def enqueue(self, *items: ScriptItem) -> None:
        self._script.extend(items)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        capabilities: list[CapabilityDefinition] | None = None,
    ) -> CompletionResult:
        self.calls.append(
            CompletionCall(
                messages=list(messages),
                capability_names=[c.name for c in capabilities] if capabilities is not None else None,
            )
        )
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self._script:
            item = self._script.popleft()
            if isinstance(item, Exception):
                raise item
            if isinstance(item, str):
                return CompletionResult(text=item)
            return item

        if self.responder is not None:
            return self.responder(messages, capabilities)
        return CompletionResult(text=self.default_text)


class OpenAICompletionEngine(BaseCompletionEngine):
    """Chat completions against the OpenAI API (or a compatible endpoint).

    Uses standard library urllib.request on a worker thread.
    """

    def __init__(
        self,
        model: str = "gpt-4o",
        api_key: str | None = None,
        api_url: str = "https://api.openai.com/v1/chat/completions",
        temperature: float = 0.7,
        max_tokens: int = 1200,
        timeout: float = 60.0,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("Missing API key: set OPENAI_API_KEY environment variable")
        self.model = model
        self.api_url = api_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @property
    def engine_name(self) -> str:
        return f"openai/{self.model}"

    async def complete(
        self,
        messages: list[dict[str, Any]],
        capabilities: list[CapabilityDefinition] | None = None,
    ) -> CompletionResult:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        data: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if capabilities:
            data["tools"] = [c.to_tool_spec() for c in capabilities]
            data["tool_choice"] = "auto"

        response = await asyncio.to_thread(post_json, self.api_url, headers, data, self.timeout)
        return parse_openai_completion(response)


def parse_openai_completion(response: dict[str, Any]) -> CompletionResult:
    """Parse an OpenAI chat-completions response body."""
    choice = response["choices"][0]
    message = choice.get("message") or {}

    invocations = []
    for tc in message.get("tool_calls") or []:
        fn = tc.get("function") or {}
        args = fn.get("arguments") or {}
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError:
                args = {"raw": args}
        if not isinstance(args, dict):
            args = {"value": args}
        invocations.append(
            CapabilityInvocation(id=tc.get("id", ""), name=fn.get("name", ""), arguments=args)
        )

    raw_usage = response.get("usage") or {}
    usage = TokenUsage(
        prompt_tokens=raw_usage.get("prompt_tokens", 0),
        completion_tokens=raw_usage.get("completion_tokens", 0),
        total_tokens=raw_usage.get("total_tokens", 0),
    )
    return CompletionResult(
        text=message.get("content"),
        invocations=invocations,
        usage=usage,
        finish_reason=choice.get("finish_reason") or "stop",
    )
