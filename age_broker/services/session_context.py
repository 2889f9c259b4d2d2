"""Per-session binding of an in-flight authorization attempt.

Each ``begin`` stores a context (state, nonce, correlation ids, return URL)
under a fresh server-issued handle. ``complete`` removes the context before
comparing, so a handle can be completed at most once whether or not the
comparison succeeds.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Optional

from ..core.cache import CacheClient, cache_client
from ..core.config import OAUTH_STATE_TTL_SECONDS
from ..core.errors import SessionMismatch
from ..core.security import constant_time_equals, generate_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    state: str
    nonce: str
    return_url: str
    customer_id: Optional[str] = None
    checkout_token: Optional[str] = None
    created_at: float = field(default_factory=time.time)


def _context_key(handle: str) -> str:
    return f"oauth:context:{handle}"


class SessionContextManager:
    def __init__(self, cache: CacheClient = cache_client, ttl_seconds: int = OAUTH_STATE_TTL_SECONDS) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def begin(
        self,
        return_url: str,
        customer_id: Optional[str] = None,
        checkout_token: Optional[str] = None,
    ) -> tuple[SessionContext, str]:
        context = SessionContext(
            state=generate_token(),
            nonce=generate_token(),
            return_url=return_url,
            customer_id=customer_id,
            checkout_token=checkout_token,
        )
        handle = generate_token()
        self.cache.set_json(_context_key(handle), asdict(context), ttl=self.ttl_seconds)
        return context, handle

    def complete(
        self,
        handle: Optional[str],
        observed_state: Optional[str],
        observed_nonce: Optional[str] = None,
    ) -> SessionContext:
        """Consume the context for ``handle`` and check the callback values.

        ``observed_nonce`` may be omitted when the nonce only becomes known
        after the token exchange; use ``verify_nonce`` then.
        """
        if not handle:
            logger.info("Callback arrived without a session handle")
            raise SessionMismatch("No session handle on callback")
        payload = self.cache.pop_json(_context_key(handle))
        if not isinstance(payload, dict):
            logger.info("No session context for callback handle (expired or already used)")
            raise SessionMismatch("No session context for handle")
        try:
            context = SessionContext(**payload)
        except TypeError as exc:
            logger.warning(f"Discarded unreadable session context: {exc}")
            raise SessionMismatch("Unreadable session context") from exc
        if not constant_time_equals(context.state, observed_state):
            logger.warning("Callback state does not match session; context consumed")
            raise SessionMismatch("State does not match")
        if observed_nonce is not None:
            self.verify_nonce(context, observed_nonce)
        return context

    @staticmethod
    def verify_nonce(context: SessionContext, observed_nonce: Optional[str]) -> None:
        if not constant_time_equals(context.nonce, observed_nonce):
            logger.warning("Nonce does not match session")
            raise SessionMismatch("Nonce does not match")

    def discard(self, handle: str) -> None:
        self.cache.delete(_context_key(handle))
