"""Bounded, time-expiring cache of classification decisions.

One instance is created per process and shared by reference with the
classifier. Entries live only in memory.
"""

import hashlib
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from .config import CacheConfig
from .models.decision import ClassificationDecision
from .models.metrics import CacheStats

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_message(text: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", text.strip().lower())


def make_cache_key(agent_id: str, message_text: str) -> str:
    """Derive the cache key for an (agent, message) pair.

    Same normalized text for the same agent always maps to the same key;
    identical text for different agents never collides.
    """
    normalized = normalize_message(message_text)
    digest = hashlib.sha256(f"{agent_id}\x1f{normalized}".encode("utf-8")).hexdigest()
    return f"{agent_id}:{digest}"


@dataclass(frozen=True)
class CacheEntry:
    """A cached decision with its lifetime."""

    key: str
    decision: ClassificationDecision
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ClassificationCache:
    """LRU + TTL cache guarded by a single lock.

    Every operation, including eviction, runs inside the lock; nothing that
    can block on I/O happens while it is held.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        reset_after_failures: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl_seconds: Default lifetime of an entry
            max_entries: Upper bound on stored entries
            reset_after_failures: Consecutive internal failures before the store is reset
            clock: Monotonic time source in seconds (injectable for tests)
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.reset_after_failures = reset_after_failures
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._consecutive_failures = 0

    @classmethod
    def from_config(cls, config: CacheConfig, clock: Callable[[], float] = time.monotonic) -> "ClassificationCache":
        return cls(
            ttl_seconds=config.ttl_seconds,
            max_entries=config.max_entries,
            reset_after_failures=config.reset_after_failures,
            clock=clock,
        )

    def get(self, key: str) -> Optional[ClassificationDecision]:
        """Return the cached decision, or None on a miss.

        Expired entries count as a miss and are evicted.
        """
        with self._lock:
            try:
                entry = self._entries.get(key)
                if entry is None:
                    self._misses += 1
                    return None
                if entry.is_expired(self._clock()):
                    del self._entries[key]
                    self._misses += 1
                    return None
                self._entries.move_to_end(key)
                self._hits += 1
                self._consecutive_failures = 0
                return entry.decision
            except Exception as e:
                self._record_failure_locked(e)
                self._misses += 1
                return None

    def put(self, key: str, decision: ClassificationDecision, ttl: Optional[float] = None) -> None:
        """Insert or overwrite an entry, evicting the LRU entry when full."""
        lifetime = self.ttl_seconds if ttl is None else ttl
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug(f"Classification cache full, evicted {evicted_key[:24]}")
            self._entries[key] = CacheEntry(
                key=key,
                decision=decision,
                created_at=now,
                expires_at=now + lifetime,
            )

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                max_size=self.max_entries,
                ttl_seconds=self.ttl_seconds,
                hit_count=self._hits,
                miss_count=self._misses,
            )

    def purge_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired classification(s)")
        return len(expired)

    def clear(self) -> None:
        """Drop all entries and reset hit/miss counters."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._consecutive_failures = 0
        logger.info(f"Classification cache cleared ({removed} entries removed)")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def _record_failure_locked(self, error: Exception) -> None:
        self._consecutive_failures += 1
        logger.warning(f"Classification cache error, treating as miss: {error}")
        if self._consecutive_failures >= self.reset_after_failures:
            logger.warning(
                f"Classification cache failed {self._consecutive_failures} times in a row, resetting"
            )
            self._entries.clear()
            self._consecutive_failures = 0
