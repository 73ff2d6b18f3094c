"""
Summary cache.

Generated summaries are cached per (conversation, user, limit) so a
repeated request inside the TTL skips the chat fetch and the LLM call.
"""

import asyncio
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Set

from pydantic import BaseModel, ConfigDict, Field

from app.ai_service.config import Settings
from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "summary:"


class Summary(BaseModel):
    """A cached summary. Never mutated once stored."""

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


class CacheMiss(KeyError):
    """Raised when a key is absent or its entry has expired."""


class CacheError(RuntimeError):
    """Raised when the cache backend fails."""


class SummaryCache(Protocol):
    def get_summary(self, key: str) -> Summary: ...

    def set_summary(self, key: str, summary: Summary) -> None: ...

    def invalidate_by_conversation(self, conversation_id: str) -> int: ...

    def health(self) -> None: ...

    def close(self) -> None: ...


def build_cache_key(conversation_id, user_id, limit: int) -> str:
    """Deterministic key for one summarization request shape."""
    return f"{conversation_id}:{user_id}:{limit}"


class MemorySummaryCache:
    """
    Process-local cache.

    Entries live in a dict guarded by a lock, alongside an index of keys
    per conversation used for invalidation.
    """

    def __init__(self, clock=None) -> None:
        self._data: Dict[str, Summary] = {}
        self._by_conversation: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _drop(self, cache_key: str) -> None:
        summary = self._data.pop(cache_key, None)
        if summary is None:
            return
        keys = self._by_conversation.get(summary.conversation_id)
        if keys is not None:
            keys.discard(cache_key)
            if not keys:
                del self._by_conversation[summary.conversation_id]

    def get_summary(self, key: str) -> Summary:
        cache_key = KEY_PREFIX + key

        with self._lock:
            summary = self._data.get(cache_key)
            if summary is None:
                raise CacheMiss(key)

            if summary.is_expired(self._clock()):
                self._drop(cache_key)
                logger.debug("Cached summary expired", extra={"key": cache_key})
                raise CacheMiss(key)

            return summary

    def set_summary(self, key: str, summary: Summary) -> None:
        cache_key = KEY_PREFIX + key

        with self._lock:
            self._drop(cache_key)
            self._data[cache_key] = summary
            self._by_conversation.setdefault(summary.conversation_id, set()).add(
                cache_key
            )

        logger.debug(
            "Summary stored in memory cache",
            extra={"key": cache_key, "summary_id": summary.id},
        )

    def invalidate_by_conversation(self, conversation_id: str) -> int:
        conversation_id = str(conversation_id)

        with self._lock:
            keys = list(self._by_conversation.get(conversation_id, ()))
            for cache_key in keys:
                self._drop(cache_key)

        logger.info(
            "Invalidated cached summaries",
            extra={"conversation_id": conversation_id, "removed": len(keys)},
        )
        return len(keys)

    def cleanup_expired(self) -> int:
        now = self._clock()

        with self._lock:
            expired = [k for k, s in self._data.items() if s.is_expired(now)]
            for cache_key in expired:
                self._drop(cache_key)

        return len(expired)

    async def run_cleanup(self, interval: float) -> None:
        """Drop expired summaries every ``interval`` seconds until cancelled."""
        logger.info("Summary cache cleanup loop started", extra={"interval_seconds": interval})
        while True:
            await asyncio.sleep(interval)
            try:
                removed = self.cleanup_expired()
            except Exception:
                logger.exception("Summary cache cleanup sweep failed")
                continue
            if removed:
                logger.info("Expired summaries removed", extra={"removed": removed})

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def health(self) -> None:
        return None

    def close(self) -> None:
        with self._lock:
            self._data.clear()
            self._by_conversation.clear()


def build_summary_cache(settings: Settings) -> SummaryCache:
    """
    Create the configured cache backend.

    Raises:
        ValueError: If CACHE_BACKEND is unknown.
    """
    backend = settings.CACHE_BACKEND.lower()

    if backend == "memory":
        logger.info("Using in-memory summary cache")
        return MemorySummaryCache()

    if backend == "redis":
        from app.ai_service.repositories.redis_summary_cache import RedisSummaryCache

        logger.info("Using Redis summary cache")
        return RedisSummaryCache.from_url(settings.REDIS_URL)

    raise ValueError(f"Unsupported cache backend: {settings.CACHE_BACKEND}")
