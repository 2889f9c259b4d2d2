import json
import logging
import threading
import time
from typing import Any, Optional

import redis

from .config import REDIS_URL

logger = logging.getLogger(__name__)


class CacheClient:
    """Key/value store with TTL, backed by Redis or an in-process dict.

    Without ``REDIS_URL`` (or when Redis cannot be reached at connect time)
    the in-process fallback is used. Expiry in the fallback is lazy: entries
    are dropped when read after their deadline, or by ``purge_expired``.
    """

    def __init__(self, url: str = REDIS_URL) -> None:
        self.url = url
        self.redis: Optional["redis.Redis"] = None
        self.fallback: dict[str, tuple[Optional[float], str]] = {}
        self._lock = threading.Lock()

    @property
    def is_shared(self) -> bool:
        return self.redis is not None

    def connect(self) -> None:
        if not self.url:
            return
        try:
            client = redis.Redis.from_url(self.url, decode_responses=True)
            client.ping()
            self.redis = client
            logger.info("Connected to Redis cache")
        except redis.RedisError as exc:
            logger.warning(f"Redis unavailable, using in-process cache: {exc}")
            self.redis = None

    def disconnect(self) -> None:
        if not self.redis:
            return
        try:
            self.redis.close()
        finally:
            self.redis = None

    def _live_entry(self, key: str, now: float) -> Optional[str]:
        entry = self.fallback.get(key)
        if not entry:
            return None
        expires_at, payload = entry
        if expires_at is not None and expires_at <= now:
            del self.fallback[key]
            return None
        return payload

    def get(self, key: str) -> Optional[str]:
        if self.redis:
            return self.redis.get(key)
        with self._lock:
            return self._live_entry(key, time.time())

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if self.redis:
            if ttl:
                self.redis.setex(key, ttl, value)
            else:
                self.redis.set(key, value)
            return
        expires_at = time.time() + ttl if ttl else None
        with self._lock:
            self.fallback[key] = (expires_at, value)

    def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Insert only when no live entry exists. Returns True when written."""
        if self.redis:
            return bool(self.redis.set(key, value, ex=ttl or None, nx=True))
        now = time.time()
        with self._lock:
            if self._live_entry(key, now) is not None:
                return False
            self.fallback[key] = (now + ttl if ttl else None, value)
            return True

    def pop(self, key: str) -> Optional[str]:
        """Atomically read and remove a key."""
        if self.redis:
            return self.redis.getdel(key)
        with self._lock:
            payload = self._live_entry(key, time.time())
            self.fallback.pop(key, None)
            return payload

    def delete(self, key: str) -> None:
        if self.redis:
            self.redis.delete(key)
            return
        with self._lock:
            self.fallback.pop(key, None)

    def get_json(self, key: str) -> Optional[Any]:
        return _loads(self.get(key))

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.set(key, json.dumps(value), ttl)

    def pop_json(self, key: str) -> Optional[Any]:
        return _loads(self.pop(key))

    def purge_expired(self, prefix: str = "") -> int:
        # Redis expires keys natively.
        if self.redis:
            return 0
        now = time.time()
        removed = 0
        with self._lock:
            for key in list(self.fallback.keys()):
                if not key.startswith(prefix):
                    continue
                expires_at, _ = self.fallback[key]
                if expires_at is not None and expires_at <= now:
                    del self.fallback[key]
                    removed += 1
        return removed


def _loads(raw: Optional[str]) -> Optional[Any]:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


cache_client = CacheClient()
