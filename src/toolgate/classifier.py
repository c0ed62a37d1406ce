"""Intent classifier deciding whether a request needs the capability set."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .cache import ClassificationCache, make_cache_key
from .config import ClassifierConfig
from .errors import ClassificationError
from .llm.backend import BACKEND_VERSION, BaseClassifierBackend
from .models.decision import ClassificationDecision, ClassifierVerdict, Confidence

logger = logging.getLogger(__name__)

CLASSIFICATION_SYSTEM_PROMPT = """You are an intent classifier for an AI agent chat system.

Your ONLY job is to determine if the user's message requires calling external tools/functions.

REQUIRES TOOLS if the message asks to:
- Send/compose emails or messages
- Search for information (contacts, emails, documents, web)
- Create/modify/delete data
- Get specific data from external systems
- Perform actions (schedule, remind, notify)
- Use integrations (Gmail, Outlook, calendar, etc.)
- Access or manipulate files/documents

DOES NOT REQUIRE TOOLS if the message is:
- A greeting (hi, hello, how are you)
- General conversation or small talk
- Asking for explanations or advice
- Thanking or confirming
- Questions that can be answered from general knowledge
- Clarification requests
- Capability questions ("Are you able to...", "Can you...", "Do you have access to...")
- Questions about available tools ("What tools do you have?", "What can you do?")

A QUESTION about capabilities does not require tools. A COMMAND or REQUEST for
action (get, send, search, find) does. When unsure, prefer requiresTools: true.

Respond in JSON format ONLY:
{
  "requiresTools": boolean,
  "confidence": "high" | "medium" | "low",
  "reasoning": "brief explanation",
  "suggestedTools": ["tool_name"]
}"""


@dataclass
class ClassifierTrace:
    """Trace data for the last auxiliary classification call (for debugging)."""
    ts: str
    model: str
    messages: list[dict[str, Any]]
    raw_response: str
    parse_error: str | None = None
    backend_version: str = BACKEND_VERSION


class IntentClassifier:
    """Classifies requests as needing capabilities or not.

    Consults the shared cache first and falls back to one auxiliary inference
    call on a miss. Never raises for classification problems: every failure
    becomes the fail-safe decision.
    """

    def __init__(
        self,
        backend: BaseClassifierBackend,
        cache: ClassificationCache,
        config: Optional[ClassifierConfig] = None,
    ):
        self.backend = backend
        self.cache = cache
        self.config = config or ClassifierConfig()
        self._invocations = 0
        self._prompt: Optional[str] = None
        self._prompt_loaded_at = 0.0
        self._last_trace: ClassifierTrace | None = None

    @property
    def invocation_count(self) -> int:
        """Number of auxiliary inference calls made so far."""
        return self._invocations

    def get_last_trace(self) -> ClassifierTrace | None:
        return self._last_trace

    async def classify(
        self,
        message_text: str,
        agent_id: str,
        history: Optional[list[dict[str, Any]]] = None,
    ) -> ClassificationDecision:
        """Decide whether the message needs the capability set.

        Args:
            message_text: Inbound user message
            agent_id: Agent or session scope for the cache key
            history: Optional recent conversation for context

        Returns:
            ClassificationDecision (fail-safe on any classification failure)
        """
        start = time.perf_counter()

        if not message_text or not message_text.strip():
            return ClassificationDecision(
                requires_capabilities=False,
                confidence=Confidence.HIGH,
                rationale="empty message",
                elapsed_ms=_elapsed_ms(start),
            )

        key = make_cache_key(agent_id, message_text)
        try:
            cached = self.cache.get(key)
        except Exception as e:
            logger.warning(f"Classification cache read failed, treating as miss: {e}")
            cached = None
        if cached is not None:
            # No auxiliary call was made, so no tokens were spent
            return cached.model_copy(
                update={"from_cache": True, "usage": None, "elapsed_ms": _elapsed_ms(start)}
            )

        try:
            decision = await self._classify_uncached(message_text, history, start)
        except ClassificationError as e:
            logger.warning(f"Classification degraded for agent {agent_id}, loading capabilities: {e}")
            return ClassificationDecision.fail_safe(elapsed_ms=_elapsed_ms(start))

        try:
            self.cache.put(key, decision, ttl=None)
        except Exception as e:
            logger.warning(f"Classification cache write failed, continuing uncached: {e}")

        logger.debug(
            f"Classified '{_excerpt(message_text)}' requires_capabilities={decision.requires_capabilities} "
            f"confidence={decision.confidence.value} in {decision.elapsed_ms}ms"
        )
        return decision

    async def _classify_uncached(
        self,
        message_text: str,
        history: Optional[list[dict[str, Any]]],
        start: float,
    ) -> ClassificationDecision:
        messages = self.build_messages(message_text, history)
        self._invocations += 1
        try:
            reply = await asyncio.wait_for(
                self.backend.infer(messages),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            self._save_trace(messages, "", "timeout")
            raise ClassificationError(
                f"auxiliary call timed out after {self.config.timeout_seconds}s"
            ) from e
        except Exception as e:
            self._save_trace(messages, "", str(e))
            raise ClassificationError(f"auxiliary call failed: {e}") from e

        try:
            verdict = parse_verdict(reply.text)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            self._save_trace(messages, reply.text, str(e))
            raise ClassificationError(f"malformed classifier output: {e}") from e

        self._save_trace(messages, reply.text, None, model=reply.model)
        return verdict.to_decision(elapsed_ms=_elapsed_ms(start), usage=reply.usage)

    def build_messages(
        self,
        message_text: str,
        history: Optional[list[dict[str, Any]]] = None,
    ) -> list[dict[str, Any]]:
        """Build the auxiliary prompt for one message."""
        messages: list[dict[str, Any]] = [{"role": "system", "content": self.system_prompt()}]

        window = self.config.history_window
        if history and window:
            lines = []
            for item in history[-window:]:
                content = item.get("content")
                if not isinstance(content, str) or not content:
                    continue
                lines.append(f"{item.get('role', 'user')}: {content[:200]}")
            if lines:
                messages.append({
                    "role": "system",
                    "content": "Recent conversation context:\n" + "\n".join(lines),
                })

        truncated = message_text[: self.config.max_message_chars]
        messages.append({"role": "user", "content": f'Classify this message: "{truncated}"'})
        return messages

    def system_prompt(self) -> str:
        """Return the system prompt, honouring an optional override file."""
        path = self.config.prompt_path
        if path is None:
            return CLASSIFICATION_SYSTEM_PROMPT

        now = time.monotonic()
        if self._prompt is not None and now - self._prompt_loaded_at < self.config.prompt_refresh_seconds:
            return self._prompt

        self._prompt = _read_prompt(path) or CLASSIFICATION_SYSTEM_PROMPT
        self._prompt_loaded_at = now
        return self._prompt

    def _save_trace(
        self,
        messages: list[dict[str, Any]],
        raw_response: str,
        parse_error: str | None,
        model: str = "",
    ) -> None:
        self._last_trace = ClassifierTrace(
            ts=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            model=model or self.backend.provider_model or self.backend.engine_name,
            messages=messages,
            raw_response=raw_response,
            parse_error=parse_error,
        )


def parse_verdict(text: str) -> ClassifierVerdict:
    """Strictly parse the auxiliary model's reply.

    Raises:
        json.JSONDecodeError: Reply is not JSON
        ValidationError: Reply does not match the verdict schema
    """
    content = (text or "").strip()
    if content.startswith("```"):
        lines = content.split("\n")
        content = "\n".join(lines[1:-1]) if lines[-1].strip() == "```" else "\n".join(lines[1:])

    data = json.loads(content)
    if not isinstance(data, dict):
        raise TypeError(f"expected a JSON object, got {type(data).__name__}")
    return ClassifierVerdict.model_validate(data)


def _read_prompt(path: Path) -> Optional[str]:
    try:
        content = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning(f"Could not read classifier prompt {path}, using built-in prompt: {e}")
        return None
    return content or None


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _excerpt(text: str, limit: int = 60) -> str:
    text = text.replace("\n", " ")
    return text if len(text) <= limit else text[: limit - 3] + "..."
