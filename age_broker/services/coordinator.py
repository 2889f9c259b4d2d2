"""Orchestration of one verification attempt.

    NEW --begin()--> AWAITING_CALLBACK --callback ok--> VERIFIED_RECORDED
                             |--callback failure--> FAILED

A record is written only after claims were retrieved and an age computed;
every failure before that point leaves the store untouched.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from ..core.config import CORS_ORIGINS, MINIMUM_AGE, OIDC_NATIONAL_ID_CLAIM, STOREFRONT_URL
from ..core.errors import BadRequest, ProviderDataError, ProviderError, SessionMismatch
from .national_id import compute_age
from .oidc import OIDCProvider
from .session_context import SessionContext, SessionContextManager
from .verification_store import VerificationRecord, VerificationStore

logger = logging.getLogger(__name__)

FAILURE_QUERY = {"error": "verification_failed"}


class AttemptState(str, enum.Enum):
    NEW = "new"
    AWAITING_CALLBACK = "awaiting_callback"
    VERIFIED_RECORDED = "verified_recorded"
    FAILED = "failed"


@dataclass(frozen=True)
class BeginResult:
    authorization_url: str
    context_handle: str
    state: AttemptState = AttemptState.AWAITING_CALLBACK


@dataclass(frozen=True)
class CallbackOutcome:
    state: AttemptState
    redirect_url: str
    verification_id: Optional[str] = None
    record: Optional[VerificationRecord] = None

    @property
    def succeeded(self) -> bool:
        return self.state is AttemptState.VERIFIED_RECORDED


def _append_query(url: str, params: dict[str, str]) -> str:
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query))
    query.update(params)
    return urlunparse(parsed._replace(query=urlencode(query)))


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class OIDCFlowCoordinator:
    def __init__(
        self,
        provider: OIDCProvider,
        sessions: SessionContextManager,
        store: VerificationStore,
        minimum_age: int = MINIMUM_AGE,
        storefront_url: str = STOREFRONT_URL,
        allowed_origins: Optional[list[str]] = None,
        national_id_claim: str = OIDC_NATIONAL_ID_CLAIM,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.provider = provider
        self.sessions = sessions
        self.store = store
        self.minimum_age = minimum_age
        self.storefront_url = storefront_url.rstrip("/")
        if allowed_origins is None:
            allowed_origins = CORS_ORIGINS
        self.allowed_origins = [self.storefront_url, *allowed_origins]
        self.national_id_claim = national_id_claim
        self.today = today

    @property
    def default_return_url(self) -> str:
        return f"{self.storefront_url}/cart"

    @property
    def failure_url(self) -> str:
        return _append_query(self.storefront_url, FAILURE_QUERY)

    def _safe_redirect(self, target: str) -> bool:
        try:
            target_parsed = urlparse(target)
        except ValueError:
            return False
        if target_parsed.scheme not in ("http", "https") or not target_parsed.netloc:
            return False
        for origin in self.allowed_origins:
            origin_parsed = urlparse(origin)
            if (
                origin_parsed.scheme == target_parsed.scheme
                and origin_parsed.netloc == target_parsed.netloc
            ):
                return True
        return False

    def begin(
        self,
        customer_id: Optional[str] = None,
        checkout_token: Optional[str] = None,
        return_url: Optional[str] = None,
    ) -> BeginResult:
        customer_id = _clean(customer_id)
        checkout_token = _clean(checkout_token)
        if not customer_id and not checkout_token:
            raise BadRequest("Customer ID or checkout token required")
        target = _clean(return_url) or self.default_return_url
        if not self._safe_redirect(target):
            raise BadRequest("Invalid returnUrl")

        context, handle = self.sessions.begin(
            return_url=target,
            customer_id=customer_id,
            checkout_token=checkout_token,
        )
        try:
            authorization_url = self.provider.authorization_url(context.state, context.nonce)
        except ProviderError:
            self.sessions.discard(handle)
            raise
        logger.info("Verification attempt started")
        return BeginResult(authorization_url=authorization_url, context_handle=handle)

    def _failed(self) -> CallbackOutcome:
        return CallbackOutcome(state=AttemptState.FAILED, redirect_url=self.failure_url)

    def handle_callback(self, context_handle: Optional[str], params: Mapping[str, Any]) -> CallbackOutcome:
        state = _clean(params.get("state"))
        code = _clean(params.get("code"))
        error = _clean(params.get("error"))

        try:
            context = self.sessions.complete(context_handle, state)
        except SessionMismatch as exc:
            logger.warning(f"Rejected verification callback: {exc}")
            return self._failed()
        except Exception:
            # The callback must always end in a redirect.
            logger.exception("Session backend failed during verification callback")
            return self._failed()

        try:
            record = self._verify(context, code, error, params)
            verification_id = self.store.put(record)
        except SessionMismatch as exc:
            logger.warning(f"Rejected verification callback: {exc}")
            return self._failed()
        except ProviderError as exc:
            logger.error(f"Verification failed: {exc}")
            return self._failed()
        except Exception:
            logger.exception("Unexpected error during verification callback")
            return self._failed()

        logger.info(f"Verification recorded (verified={record.verified})")
        return CallbackOutcome(
            state=AttemptState.VERIFIED_RECORDED,
            redirect_url=context.return_url,
            verification_id=verification_id,
            record=record,
        )

    def _verify(
        self,
        context: SessionContext,
        code: Optional[str],
        error: Optional[str],
        params: Mapping[str, Any],
    ) -> VerificationRecord:
        if error:
            description = _clean(params.get("error_description"))
            raise ProviderError(f"Provider returned {error}" + (f": {description}" if description else ""))
        if not code:
            raise ProviderError("Callback carried no authorization code")

        tokens = self.provider.exchange_code(code, context.nonce)
        claims = self.provider.fetch_claims(tokens)
        identifier = claims.get(self.national_id_claim)
        if not identifier or not isinstance(identifier, str):
            raise ProviderDataError(f"Claims are missing {self.national_id_claim}")

        age = compute_age(identifier, self.today())
        return VerificationRecord(
            verified=age >= self.minimum_age,
            age=age,
            customer_id=context.customer_id,
            checkout_token=context.checkout_token,
            created_at=self.store.clock(),
        )

    def check_status(self, verification_id: Optional[str]) -> dict[str, Any]:
        verification_id = _clean(verification_id)
        if not verification_id:
            return {"verified": False}
        try:
            record = self.store.get(verification_id)
        except Exception:
            logger.exception("Verification store lookup failed")
            return {"verified": False}
        if record is None:
            return {"verified": False}
        return {"verified": record.verified, "age": record.age}
