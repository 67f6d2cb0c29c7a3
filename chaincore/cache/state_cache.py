"""State cache — Redis key-value store with TTL for sync bookkeeping.

Used for: latest SyncResult per task (1h TTL), 1C last-import timestamps.

Redis is a side channel here, never a required step. Every read or write
failure is logged and degrades to a cache miss, so the scheduler keeps
running with Redis down. When TESTING is set or cache_backend is not
"redis" the cache starts disabled and every call is a no-op miss.
"""

import json
import logging
import os

import redis.asyncio as redis

from ..config import Settings

log = logging.getLogger("chaincore.cache")

_KEY_PREFIX = "chaincore:"


class StateCache:
    def __init__(self, client: "redis.Redis | None" = None, prefix: str = _KEY_PREFIX):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "StateCache":
        """Build the process-wide cache. Connection is lazy; nothing is awaited here."""
        if os.environ.get("TESTING"):
            return cls(client=None)
        if settings.cache_backend != "redis" or not settings.redis_url:
            log.info("Cache backend set to %s, state cache disabled", settings.cache_backend)
            return cls(client=None)
        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=2,
            retry_on_timeout=True,
        )
        log.info("State cache using Redis: %s", settings.redis_url)
        return cls(client=client)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def set(self, key: str, value, ttl_seconds: int | None = None) -> bool:
        if not self._client:
            return False
        try:
            payload = json.dumps(value, default=str)
            if ttl_seconds:
                await self._client.setex(self._key(key), ttl_seconds, payload)
            else:
                await self._client.set(self._key(key), payload)
            return True
        except Exception as e:
            log.warning("Cache write error for %s: %s", key, e)
            return False

    async def get(self, key: str):
        if not self._client:
            return None
        try:
            data = await self._client.get(self._key(key))
        except Exception as e:
            log.warning("Cache read error for %s: %s", key, e)
            return None
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError:
            return data

    async def delete(self, key: str) -> bool:
        if not self._client:
            return False
        try:
            return bool(await self._client.delete(self._key(key)))
        except Exception as e:
            log.warning("Cache delete error for %s: %s", key, e)
            return False

    async def ping(self) -> bool:
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except Exception as e:
            log.debug("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        if not self._client:
            return
        try:
            await self._client.aclose()
        except Exception as e:
            log.debug("Redis close error: %s", e)
