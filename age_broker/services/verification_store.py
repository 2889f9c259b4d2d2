from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..core.cache import CacheClient, cache_client
from ..core.config import VERIFICATION_TTL_SECONDS
from ..core.security import generate_verification_id

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VerificationRecord:
    verified: bool
    age: int
    customer_id: Optional[str] = None
    checkout_token: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not (self.customer_id or self.checkout_token):
            raise ValueError("customer_id or checkout_token is required")

    def is_live(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.created_at < ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "verified": self.verified,
            "age": self.age,
            "customer_id": self.customer_id,
            "checkout_token": self.checkout_token,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "VerificationRecord":
        return cls(
            verified=bool(payload["verified"]),
            age=int(payload["age"]),
            customer_id=payload.get("customer_id"),
            checkout_token=payload.get("checkout_token"),
            created_at=datetime.fromisoformat(payload["created_at"]),
        )


class VerificationStore(ABC):
    """Opaque verification id -> VerificationRecord, valid for ``ttl``.

    Expiry is checked on read: an expired entry is deleted and reported as
    missing. ``get`` returns None for both unknown and expired ids.
    """

    def __init__(self, ttl_seconds: int = VERIFICATION_TTL_SECONDS, clock: Clock = utcnow) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    @abstractmethod
    def put(self, record: VerificationRecord) -> str: ...

    @abstractmethod
    def get(self, verification_id: str) -> Optional[VerificationRecord]: ...

    @abstractmethod
    def delete(self, verification_id: str) -> None: ...

    def purge_expired(self) -> int:
        return 0


class InMemoryVerificationStore(VerificationStore):
    def __init__(self, ttl_seconds: int = VERIFICATION_TTL_SECONDS, clock: Clock = utcnow) -> None:
        super().__init__(ttl_seconds, clock)
        self._records: dict[str, VerificationRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def put(self, record: VerificationRecord) -> str:
        with self._lock:
            verification_id = generate_verification_id()
            while verification_id in self._records:
                verification_id = generate_verification_id()
            self._records[verification_id] = record
        return verification_id

    def get(self, verification_id: str) -> Optional[VerificationRecord]:
        if not verification_id:
            return None
        with self._lock:
            record = self._records.get(verification_id)
            if record is None:
                return None
            if not record.is_live(self.clock(), self.ttl):
                del self._records[verification_id]
                return None
            return record

    def delete(self, verification_id: str) -> None:
        with self._lock:
            self._records.pop(verification_id, None)

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [
                key for key, record in self._records.items() if not record.is_live(now, self.ttl)
            ]
            for key in expired:
                del self._records[key]
        return len(expired)


def _verification_key(verification_id: str) -> str:
    return f"verification:{verification_id}"


class CacheVerificationStore(VerificationStore):
    """Store backed by the shared CacheClient, typically Redis.

    The cache TTL bounds storage; ``created_at`` is still checked on read so
    both implementations expire identically.
    """

    def __init__(
        self,
        cache: CacheClient = cache_client,
        ttl_seconds: int = VERIFICATION_TTL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        super().__init__(ttl_seconds, clock)
        self.cache = cache
        self._ttl_seconds = ttl_seconds

    def put(self, record: VerificationRecord) -> str:
        payload = json.dumps(record.to_dict())
        while True:
            verification_id = generate_verification_id()
            if self.cache.set_if_absent(
                _verification_key(verification_id), payload, ttl=self._ttl_seconds
            ):
                return verification_id

    def get(self, verification_id: str) -> Optional[VerificationRecord]:
        if not verification_id:
            return None
        key = _verification_key(verification_id)
        payload = self.cache.get_json(key)
        if not isinstance(payload, dict):
            return None
        try:
            record = VerificationRecord.from_dict(payload)
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable verification record")
            self.cache.delete(key)
            return None
        if not record.is_live(self.clock(), self.ttl):
            self.cache.delete(key)
            return None
        return record

    def delete(self, verification_id: str) -> None:
        self.cache.delete(_verification_key(verification_id))

    def purge_expired(self) -> int:
        return self.cache.purge_expired(prefix="verification:")


def build_verification_store(cache: CacheClient = cache_client) -> VerificationStore:
    if cache.is_shared:
        return CacheVerificationStore(cache)
    return InMemoryVerificationStore()


class ExpirySweeper:
    """Daemon thread that periodically purges expired records."""

    def __init__(self, store: VerificationStore, interval_seconds: int) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.interval_seconds <= 0 or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="verification-sweeper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                removed = self.store.purge_expired()
            except Exception:
                logger.exception("Verification sweep failed")
                continue
            if removed:
                logger.debug(f"Purged {removed} expired verification records")
