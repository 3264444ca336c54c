"""
Redis-backed cache used for tenant sync locks and cached sync status.

Tag membership is tracked in Redis sets so that sync-related entries can be
invalidated together after ledger cleanup.
"""

import json
import logging
from typing import Any, Iterable, Optional

import redis
from redis.lock import Lock

from tenant_sync.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Return the module-level Redis client, creating it on first call."""
    global _client
    if _client is None:
        _client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


class SyncCache:
    """Keyed string cache with TTL, tag invalidation and distributed locks."""

    def __init__(self, client: redis.Redis, prefix: str = None):
        self.client = client
        self.prefix = prefix or settings.CACHE_KEY_PREFIX

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def put(self, key: str, value: Any, ttl: int, tags: Iterable[str] = ()) -> None:
        full_key = self._key(key)
        self.client.set(full_key, json.dumps(value, default=str), ex=ttl)
        for tag in tags:
            self.client.sadd(self._tag_key(tag), full_key)

    def forget(self, key: str) -> bool:
        return bool(self.client.delete(self._key(key)))

    def flush_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry stored under the given tags. Returns the number removed."""
        tags = list(tags)
        removed = 0
        for tag in tags:
            tag_key = self._tag_key(tag)
            members = self.client.smembers(tag_key)
            if members:
                removed += self.client.delete(*members)
            self.client.delete(tag_key)
        logger.debug(f"Flushed {removed} cache entries for tags {list(tags)}")
        return removed

    def lock(self, key: str, ttl: int) -> Lock:
        """
        Build a non-blocking lock for ``key``.

        Acquisition is a single ``SET NX PX`` and release only deletes the key
        while the caller's token still owns it.
        """
        return self.client.lock(self._key(f"lock:{key}"), timeout=ttl, blocking=False)
