"""
TTL caching for slow-changing data (Google signing keys, amenity listings).
Entries live in process memory; when a Redis URL is given they are also
written to Redis so several workers share them.
"""
import json
import logging
import time
from threading import Lock
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)


def _mask_url(url: str) -> str:
    if "@" in url:
        protocol = url.split("@")[0].split(":")[0]
        return f"{protocol}:****@{url.split('@')[1]}"
    return "****"


class TTLCache:
    """Key/value cache with per-entry expiry and automatic JSON serialization"""

    def __init__(self, namespace: str, default_ttl: int = 3600, redis_url: Optional[str] = None, clock=time.time):
        self.namespace = namespace
        self.default_ttl = default_ttl
        self.redis_url = redis_url
        self.redis_client = None
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _get_client(self):
        """Lazy load Redis client"""
        if not self.redis_url:
            return None
        if self.redis_client is None:
            try:
                logger.info(f"📡 Connecting cache '{self.namespace}' to Redis: {_mask_url(self.redis_url)}")
                self.redis_client = redis.from_url(
                    self.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                )
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                expires_at, value = entry
                if now < expires_at:
                    logger.debug(f"✅ Cache HIT: {self._key(key)}")
                    return value
                del self._entries[key]

        client = self._get_client()
        if client is not None:
            try:
                raw = client.get(self._key(key))
                if raw:
                    value = json.loads(raw)
                    ttl = client.ttl(self._key(key))
                    with self._lock:
                        self._entries[key] = (now + max(int(ttl or 0), 1), value)
                    logger.debug(f"✅ Cache HIT (redis): {self._key(key)}")
                    return value
            except Exception as e:
                logger.error(f"❌ Cache get error for {self._key(key)}: {e}")

        logger.debug(f"❌ Cache MISS: {self._key(key)}")
        return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

        client = self._get_client()
        if client is not None:
            try:
                client.setex(self._key(key), ttl, json.dumps(value))
            except Exception as e:
                logger.error(f"❌ Cache set error for {self._key(key)}: {e}")
        logger.debug(f"✅ Cache SET: {self._key(key)} (TTL: {ttl}s)")

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

        client = self._get_client()
        if client is not None:
            try:
                client.delete(self._key(key))
            except Exception as e:
                logger.error(f"❌ Cache delete error for {self._key(key)}: {e}")

    def clear(self) -> None:
        with self._lock:
            keys = list(self._entries)
            self._entries.clear()

        client = self._get_client()
        if client is not None and keys:
            try:
                client.delete(*[self._key(k) for k in keys])
            except Exception as e:
                logger.error(f"❌ Cache clear error for {self.namespace}: {e}")
