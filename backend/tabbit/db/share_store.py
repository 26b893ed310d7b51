"""Redis-backed key-value store for shared bills.

Blobs are JSON strings stored with an expiry; nothing here interprets them.
"""
from __future__ import annotations

import logging
from typing import Optional

import redis

logger = logging.getLogger(__name__)


class ShareStoreError(RuntimeError):
    """Raised when the key-value store is unavailable."""


class ShareStore:
    def __init__(self, redis_url: str, *, client: Optional[redis.Redis] = None):
        self.redis_url = (redis_url or "").strip()
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None or bool(self.redis_url)

    def _redis(self) -> redis.Redis:
        if self._client is None:
            if not self.redis_url:
                raise ShareStoreError("REDIS_URL not configured")
            self._client = redis.Redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    def set(self, key: str, blob: str, ttl_seconds: int) -> None:
        try:
            self._redis().set(key, blob, ex=ttl_seconds)
        except redis.RedisError as e:
            raise ShareStoreError(f"could not store {key}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            value = self._redis().get(key)
        except redis.RedisError as e:
            raise ShareStoreError(f"could not read {key}") from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value
