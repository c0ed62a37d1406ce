"""Auxiliary inference backends for capability-need classification.

A backend answers one question per call: does this message need external
capabilities? It returns the model's raw text; parsing and fail-safe
handling live in the classifier.
Uses standard library http for API calls to avoid heavy dependencies.
"""

import asyncio
import json
import os
import re
import ssl
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..models.decision import TokenUsage

# Bump when the fake taxonomy or the request shape changes
BACKEND_VERSION = "1.0.0"


@dataclass
class BackendReply:
    """Raw reply from an auxiliary inference call."""
    text: str
    usage: TokenUsage | None = None
    model: str = ""


class BaseClassifierBackend(ABC):
    """Abstract interface for auxiliary classification calls."""

    @abstractmethod
    async def infer(self, messages: list[dict[str, Any]]) -> BackendReply:
        """Run one classification call.

        Args:
            messages: Chat messages (system prompt, optional context, user message)

        Returns:
            BackendReply with the model's raw JSON text
        """
        pass

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Return engine identifier (e.g., 'fake', 'openai', 'anthropic')."""
        pass

    @property
    def provider_model(self) -> str | None:
        """Return provider/model string for real backends, None for fake."""
        return None


class FakeClassifierBackend(BaseClassifierBackend):
    """Deterministic keyword classifier for tests and local runs.

    Applies the same taxonomy as the real prompt and replies with the same
    JSON shape, so the classifier's parse path is exercised end to end.
    """

    CAPABILITY_QUESTIONS = [
        r"^(can|could) you( help)?( me)?\??$",
        r"^are you able to\b",
        r"^(can|could) you\b.*\?$",
        r"^do you have access\b",
        r"^what (tools|integrations|can you)\b",
    ]

    GREETINGS = [
        "hi", "hello", "hey", "thanks", "thank you", "ok", "okay",
        "good morning", "good evening", "how are you", "bye", "cool", "great",
    ]

    ACTION_VERBS = [
        "send", "email", "compose", "draft", "reply to", "forward", "schedule",
        "remind", "create", "delete", "remove", "update", "modify", "search",
        "find", "look up", "lookup", "get", "fetch", "retrieve", "book",
        "cancel", "notify", "post", "upload", "download", "add", "list",
        "check my", "show me my",
    ]

    INTEGRATIONS = [
        "gmail", "outlook", "calendar", "inbox", "slack", "drive", "contacts",
        "crm", "jira", "invoice", "spreadsheet", "document",
    ]

    _EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.]+")
    _PREFIX_RE = re.compile(r'^classify this message:\s*"(.*)"$', re.IGNORECASE | re.DOTALL)

    def __init__(self, suggestions: dict[str, list[str]] | None = None):
        """Initialize fake backend.

        Args:
            suggestions: Optional keyword -> capability names hints to emit
        """
        self.suggestions = suggestions or {}
        self.calls = 0

    @property
    def engine_name(self) -> str:
        return "fake"

    async def infer(self, messages: list[dict[str, Any]]) -> BackendReply:
        self.calls += 1
        text = self._extract_message(messages)
        verdict = self._classify(text)
        return BackendReply(
            text=json.dumps(verdict),
            usage=TokenUsage(),
            model="fake/keyword",
        )

    def _extract_message(self, messages: list[dict[str, Any]]) -> str:
        user_messages = [m for m in messages if m.get("role") == "user"]
        if not user_messages:
            return ""
        content = str(user_messages[-1].get("content", "")).strip()
        match = self._PREFIX_RE.match(content)
        return match.group(1) if match else content

    def _classify(self, text: str) -> dict[str, Any]:
        lowered = text.strip().lower()
        words = set(re.findall(r"[a-z']+", lowered))

        for pattern in self.CAPABILITY_QUESTIONS:
            if re.search(pattern, lowered):
                return self._verdict(False, "medium", "Capability question, not an action request")

        if self._EMAIL_RE.search(lowered):
            return self._verdict(True, "high", "Message addresses an email recipient", lowered)

        for verb in self.ACTION_VERBS:
            if self._has_phrase(lowered, words, verb):
                return self._verdict(True, "high", f"Action request ({verb})", lowered)

        for integration in self.INTEGRATIONS:
            if integration in words:
                return self._verdict(True, "medium", f"Mentions integration ({integration})", lowered)

        stripped = lowered.strip("!.?, ")
        if stripped in self.GREETINGS or any(stripped.startswith(g + " ") for g in self.GREETINGS):
            return self._verdict(False, "high", "Greeting or acknowledgement")

        return self._verdict(False, "medium", "General conversation")

    @staticmethod
    def _has_phrase(lowered: str, words: set[str], phrase: str) -> bool:
        if " " in phrase:
            return phrase in lowered
        return phrase in words

    def _verdict(
        self, requires: bool, confidence: str, reasoning: str, lowered: str = ""
    ) -> dict[str, Any]:
        suggested: list[str] = []
        for keyword, names in self.suggestions.items():
            if keyword in lowered:
                suggested.extend(n for n in names if n not in suggested)
        return {
            "requiresTools": requires,
            "confidence": confidence,
            "reasoning": f"FakeLLM: {reasoning}",
            "suggestedTools": suggested,
        }


class RealClassifierBackend(BaseClassifierBackend):
    """Auxiliary classification via OpenAI or Anthropic.

    Uses standard library urllib.request on a worker thread.
    Requires OPENAI_API_KEY or ANTHROPIC_API_KEY environment variable.
    """

    TEMPERATURE = 0.3
    MAX_TOKENS = 150

    def __init__(self, provider: str = "openai", model: str | None = None, timeout: float = 10.0):
        """Initialize real backend.

        Args:
            provider: 'openai' or 'anthropic'
            model: Model name (defaults based on provider)
            timeout: Socket timeout for the HTTP call
        """
        self.provider = provider.lower()
        self.timeout = timeout

        if self.provider == "openai":
            self.api_key = os.environ.get("OPENAI_API_KEY")
            self.model = model or "gpt-4o-mini"
            self.api_url = "https://api.openai.com/v1/chat/completions"
        elif self.provider == "anthropic":
            self.api_key = os.environ.get("ANTHROPIC_API_KEY")
            self.model = model or "claude-3-5-haiku-20241022"
            self.api_url = "https://api.anthropic.com/v1/messages"
        else:
            raise ValueError(f"Unsupported provider: {provider}")

        if not self.api_key:
            raise ValueError(f"Missing API key: set {provider.upper()}_API_KEY environment variable")

    @property
    def engine_name(self) -> str:
        return self.provider

    @property
    def provider_model(self) -> str:
        return f"{self.provider}/{self.model}"

    async def infer(self, messages: list[dict[str, Any]]) -> BackendReply:
        if self.provider == "openai":
            headers, data = self._openai_request(messages)
        else:
            headers, data = self._anthropic_request(messages)
        response = await asyncio.to_thread(post_json, self.api_url, headers, data, self.timeout)
        return self._parse_reply(response)

    def _openai_request(self, messages: list[dict[str, Any]]) -> tuple[dict, dict]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        data = {
            "model": self.model,
            "messages": messages,
            "temperature": self.TEMPERATURE,
            "max_tokens": self.MAX_TOKENS,
            "response_format": {"type": "json_object"},
        }
        return headers, data

    def _anthropic_request(self, messages: list[dict[str, Any]]) -> tuple[dict, dict]:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
        }
        # Anthropic takes system content separately
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        data = {
            "model": self.model,
            "max_tokens": self.MAX_TOKENS,
            "temperature": self.TEMPERATURE,
            "system": system,
            "messages": [m for m in messages if m.get("role") != "system"],
        }
        return headers, data

    def _parse_reply(self, response: dict[str, Any]) -> BackendReply:
        if self.provider == "openai":
            text = response["choices"][0]["message"]["content"] or ""
            raw_usage = response.get("usage") or {}
            usage = TokenUsage(
                prompt_tokens=raw_usage.get("prompt_tokens", 0),
                completion_tokens=raw_usage.get("completion_tokens", 0),
                total_tokens=raw_usage.get("total_tokens", 0),
            )
        else:
            text = response["content"][0]["text"]
            raw_usage = response.get("usage") or {}
            prompt_tokens = raw_usage.get("input_tokens", 0)
            completion_tokens = raw_usage.get("output_tokens", 0)
            usage = TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            )
        return BackendReply(text=text, usage=usage, model=self.provider_model)


def post_json(url: str, headers: dict, data: dict, timeout: float) -> dict[str, Any]:
    """POST a JSON body with urllib and decode the JSON reply."""
    json_data = json.dumps(data).encode("utf-8")

    req = urllib.request.Request(url, data=json_data, headers=headers, method="POST")
    context = ssl.create_default_context()

    try:
        with urllib.request.urlopen(req, context=context, timeout=timeout) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8") if e.fp else "No error body"
        raise RuntimeError(f"API error {e.code}: {error_body}") from e
    except urllib.error.URLError as e:
        raise RuntimeError(f"Network error: {e.reason}") from e


def get_classifier_backend(engine: str = "auto", model: str | None = None) -> BaseClassifierBackend:
    """Get the classification backend for an engine setting.

    Args:
        engine: 'fake', 'openai', 'anthropic', or 'auto'
                'auto' uses a real backend if an API key is available, else fake
        model: Optional model override for real backends

    Returns:
        BaseClassifierBackend implementation
    """
    if engine == "fake":
        return FakeClassifierBackend()

    if engine in ("openai", "anthropic"):
        return RealClassifierBackend(provider=engine, model=model)

    if engine == "auto":
        if os.environ.get("OPENAI_API_KEY"):
            return RealClassifierBackend(provider="openai", model=model)
        if os.environ.get("ANTHROPIC_API_KEY"):
            return RealClassifierBackend(provider="anthropic", model=model)
        return FakeClassifierBackend()

    raise ValueError(f"Unknown classifier engine: {engine}")


def has_llm_api_key() -> bool:
    """Check if any LLM API key is available."""
    return bool(os.environ.get("OPENAI_API_KEY") or os.environ.get("ANTHROPIC_API_KEY"))
