"""Detection of answers that needed capabilities the request did not have."""

import re
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

from .config import DEFAULT_INABILITY_PHRASES, FallbackConfig


class FallbackDetector(ABC):
    """Strategy deciding whether a no-capability answer warrants a retry.

    Implementations are shared across requests and must not keep
    per-request state.
    """

    @abstractmethod
    def inspect(
        self,
        response_text: str,
        available_capability_names: Iterable[str],
    ) -> Optional[str]:
        """Return the reason the response needed capabilities, or None."""
        pass

    def detect_missed_capability_need(
        self,
        response_text: str,
        available_capability_names: Iterable[str],
    ) -> bool:
        """Return True if the response shows the request needed capabilities."""
        return self.inspect(response_text, available_capability_names) is not None


class PhraseFallbackDetector(FallbackDetector):
    """Flags inability phrasing or mentions of a capability by name.

    Phrase matching is a case-insensitive substring test. Capability names
    match as whole words; underscores and hyphens in a name also match
    spaces, so ``send_email`` matches "send email".
    """

    def __init__(
        self,
        phrases: Sequence[str] = DEFAULT_INABILITY_PHRASES,
        match_capability_names: bool = True,
    ):
        self.phrases = [_normalize(p) for p in phrases if p.strip()]
        self.match_capability_names = match_capability_names

    @classmethod
    def from_config(cls, config: FallbackConfig) -> "PhraseFallbackDetector":
        return cls(phrases=config.phrases, match_capability_names=config.match_capability_names)

    def inspect(self, response_text: str, available_capability_names: Iterable[str]) -> Optional[str]:
        """Return the first matching signal (``phrase:...`` or ``capability:...``) or None."""
        if not response_text:
            return None
        text = _normalize(response_text)

        for phrase in self.phrases:
            if phrase in text:
                return f"phrase:{phrase}"

        if self.match_capability_names:
            for name in available_capability_names:
                if name and _name_pattern(name).search(text):
                    return f"capability:{name}"

        return None


def _normalize(text: str) -> str:
    return text.lower().replace("’", "'").replace("‘", "'")


def _name_pattern(name: str) -> re.Pattern[str]:
    parts = [re.escape(p) for p in re.split(r"[_\-\s]+", name.lower()) if p]
    return re.compile(r"(?<![\w])" + r"[_\-\s]".join(parts) + r"(?![\w])")
