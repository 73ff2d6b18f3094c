"""
Redis-backed summary cache.

Layout:
    summary:<key>                   JSON summary, TTL from expires_at
    summary:conversation:<id>       set of summary keys for invalidation
"""

import math
from datetime import datetime, timezone

import redis
from pydantic import ValidationError

from app.ai_service.repositories.summary_cache import (
    KEY_PREFIX,
    CacheError,
    CacheMiss,
    Summary,
)
from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)

# Index outlives its members so late invalidations still find them.
INDEX_TTL_PADDING_SECONDS = 3600


class RedisSummaryCache:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSummaryCache":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        return cls(client)

    @staticmethod
    def _index_key(conversation_id: str) -> str:
        return f"{KEY_PREFIX}conversation:{conversation_id}"

    def get_summary(self, key: str) -> Summary:
        cache_key = KEY_PREFIX + key

        try:
            raw = self._client.get(cache_key)
        except redis.RedisError as exc:
            logger.error(
                "Failed to read summary from Redis",
                extra={"key": cache_key, "error": str(exc)},
            )
            raise CacheError("cache get failed") from exc

        if raw is None:
            raise CacheMiss(key)

        try:
            summary = Summary.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("Corrupt summary in Redis", extra={"key": cache_key})
            raise CacheError("cache entry could not be decoded") from exc

        if summary.is_expired():
            raise CacheMiss(key)

        return summary

    def set_summary(self, key: str, summary: Summary) -> None:
        cache_key = KEY_PREFIX + key
        remaining = (summary.expires_at - datetime.now(timezone.utc)).total_seconds()
        ttl = max(1, math.ceil(remaining))
        index_key = self._index_key(summary.conversation_id)

        try:
            pipe = self._client.pipeline()
            pipe.set(cache_key, summary.model_dump_json(), ex=ttl)
            pipe.sadd(index_key, cache_key)
            pipe.expire(index_key, ttl + INDEX_TTL_PADDING_SECONDS)
            pipe.execute()
        except redis.RedisError as exc:
            logger.error(
                "Failed to store summary in Redis",
                extra={"key": cache_key, "error": str(exc)},
            )
            raise CacheError("cache set failed") from exc

        logger.debug(
            "Summary stored in Redis",
            extra={"key": cache_key, "summary_id": summary.id, "ttl": ttl},
        )

    def invalidate_by_conversation(self, conversation_id: str) -> int:
        index_key = self._index_key(str(conversation_id))

        try:
            keys = self._client.smembers(index_key)
            removed = self._client.delete(*keys) if keys else 0
            self._client.delete(index_key)
        except redis.RedisError as exc:
            raise CacheError("cache invalidation failed") from exc

        logger.info(
            "Invalidated cached summaries",
            extra={"conversation_id": str(conversation_id), "removed": removed},
        )
        return int(removed)

    def health(self) -> None:
        try:
            self._client.ping()
        except redis.RedisError as exc:
            raise CacheError(f"redis unreachable: {exc}") from exc

    def close(self) -> None:
        self._client.close()
