"""Shared fixtures: an in-process cache, a controllable clock and a fake
identity provider so no test touches the network."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import pytest

from age_broker.core.cache import CacheClient
from age_broker.core.errors import SessionMismatch
from age_broker.services.coordinator import OIDCFlowCoordinator
from age_broker.services.oidc import TokenSet
from age_broker.services.session_context import SessionContextManager
from age_broker.services.verification_store import InMemoryVerificationStore

STOREFRONT = "https://shop.example.is"
TODAY = date(2025, 1, 2)


class MutableClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeProvider:
    """Stands in for OIDCProvider; records every call that would hit the network."""

    def __init__(self) -> None:
        self.claims: dict[str, Any] = {"sub": "user-1", "national_id": "010101-2340"}
        self.exchange_error: Optional[Exception] = None
        self.returned_nonce: Optional[str] = None
        self.exchange_calls: list[tuple[str, str]] = []
        self.claims_calls = 0

    def authorization_url(self, state: str, nonce: str) -> str:
        params = {"scope": "openid national_id", "state": state, "nonce": nonce}
        return f"https://idp.example.is/authorize?{urlencode(params)}"

    def exchange_code(self, code: str, nonce: str) -> TokenSet:
        self.exchange_calls.append((code, nonce))
        if self.exchange_error is not None:
            raise self.exchange_error
        returned = self.returned_nonce if self.returned_nonce is not None else nonce
        if returned != nonce:
            raise SessionMismatch("ID token nonce does not match session")
        return TokenSet(access_token="access", id_token="id", claims={"sub": "user-1", "nonce": returned})

    def fetch_claims(self, tokens: TokenSet) -> dict[str, Any]:
        self.claims_calls += 1
        return dict(self.claims)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2025, 1, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cache() -> CacheClient:
    return CacheClient(url="")


@pytest.fixture
def store(clock: MutableClock) -> InMemoryVerificationStore:
    return InMemoryVerificationStore(clock=clock)


@pytest.fixture
def sessions(cache: CacheClient) -> SessionContextManager:
    return SessionContextManager(cache)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def coordinator(provider, sessions, store) -> OIDCFlowCoordinator:
    return OIDCFlowCoordinator(
        provider=provider,
        sessions=sessions,
        store=store,
        minimum_age=20,
        storefront_url=STOREFRONT,
        allowed_origins=[],
        today=lambda: TODAY,
    )
