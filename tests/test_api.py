"""
HTTP-level tests for the broker endpoints.

The coordinator dependency is overridden with one wired to the fake provider,
so the full start -> callback -> check round trip runs in-process.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
import redis
from fastapi.testclient import TestClient

from age_broker.core.config import COOKIE_SECURE, SESSION_COOKIE_NAME, VERIFICATION_COOKIE_NAME
from age_broker.main import app
from age_broker.routes.deps import get_coordinator
from conftest import STOREFRONT


@pytest.fixture
def client(coordinator):
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    # Secure cookies are only sent back over https.
    with_client = TestClient(app, base_url="https://testserver")
    yield with_client
    app.dependency_overrides.clear()


def _start(client, **body):
    body.setdefault("customerId", "gid://shopify/Customer/1")
    return client.post("/api/verify/start", json=body)


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_head(client) -> None:
    response = client.head("/health")

    assert response.status_code == 200


def test_start_without_identifiers_is_rejected(client, cache) -> None:
    response = client.post("/api/verify/start", json={"returnUrl": f"{STOREFRONT}/cart"})

    assert response.status_code == 400
    assert SESSION_COOKIE_NAME not in response.cookies
    assert cache.fallback == {}


def test_start_with_foreign_return_url_is_rejected(client) -> None:
    response = _start(client, returnUrl="https://evil.example.com/")

    assert response.status_code == 400


def test_start_returns_authorization_url_and_session_cookie(client) -> None:
    response = _start(client, checkoutToken="tok-1")

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"authorizationUrl"}
    assert "state" in parse_qs(urlparse(body["authorizationUrl"]).query)
    assert response.cookies.get(SESSION_COOKIE_NAME)


def test_full_verification_round_trip(client) -> None:
    start = _start(client, returnUrl=f"{STOREFRONT}/cart?step=1")
    state = parse_qs(urlparse(start.json()["authorizationUrl"]).query)["state"][0]

    callback = client.get(
        "/auth/callback", params={"state": state, "code": "abc"}, follow_redirects=False
    )

    assert callback.status_code == 302
    assert callback.headers["location"] == f"{STOREFRONT}/cart?step=1"
    set_cookie = ",".join(callback.headers.get_list("set-cookie"))
    assert f"{VERIFICATION_COOKIE_NAME}=" in set_cookie
    assert "Max-Age=86400" in set_cookie
    verification_id = callback.cookies.get(VERIFICATION_COOKIE_NAME)
    assert verification_id

    check = client.post("/api/verify/check", json={"verificationId": verification_id})

    assert check.status_code == 200
    assert check.json() == {"verified": True, "age": 24}


def test_callback_without_session_redirects_to_failure(client, provider) -> None:
    response = client.get(
        "/auth/callback", params={"state": "whatever", "code": "abc"}, follow_redirects=False
    )

    assert response.status_code == 302
    assert response.headers["location"] == f"{STOREFRONT}?error=verification_failed"
    assert VERIFICATION_COOKIE_NAME not in response.cookies
    assert provider.exchange_calls == []


def test_callback_with_provider_error_redirects_to_failure(client, store) -> None:
    start = _start(client)
    state = parse_qs(urlparse(start.json()["authorizationUrl"]).query)["state"][0]

    response = client.get(
        "/auth/callback",
        params={"state": state, "error": "access_denied"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == f"{STOREFRONT}?error=verification_failed"
    assert len(store) == 0


def test_check_with_unissued_id(client, store) -> None:
    response = client.post("/api/verify/check", json={"verificationId": "ab" * 16})

    assert response.status_code == 200
    assert response.json() == {"verified": False}
    assert len(store) == 0


def test_check_without_id(client) -> None:
    response = client.post("/api/verify/check", json={})

    assert response.json() == {"verified": False}


def _checkout_input(metafields):
    return {
        "cart": {
            "lines": [{"merchandise": {"product": {"tags": ["beer"], "productType": "Lager"}}}],
            "buyerIdentity": {"customer": {"id": "gid://shopify/Customer/1", "metafields": metafields}},
        }
    }


def test_validate_checkout_blocks_unverified_buyer(client) -> None:
    response = client.post("/api/validate-checkout", json=_checkout_input([]))

    assert response.status_code == 200
    errors = response.json()["errors"]
    assert len(errors) == 1
    assert errors[0]["target"] == "cart"
    assert errors[0]["localizedMessage"]


def test_validate_checkout_allows_verified_buyer(client) -> None:
    metafields = [{"namespace": "audkenni", "key": "age_verified", "value": "true"}]

    response = client.post("/api/validate-checkout", json=_checkout_input(metafields))

    assert response.json() == {"errors": []}


def test_callback_clears_session_cookie_with_original_attributes(client) -> None:
    start = _start(client)
    state = parse_qs(urlparse(start.json()["authorizationUrl"]).query)["state"][0]

    callback = client.get(
        "/auth/callback", params={"state": state, "code": "abc"}, follow_redirects=False
    )

    cleared = [
        header
        for header in callback.headers.get_list("set-cookie")
        if header.startswith(f"{SESSION_COOKIE_NAME}=")
    ]
    assert len(cleared) == 1
    attributes = cleared[0].lower()
    assert "max-age=0" in attributes
    assert "httponly" in attributes
    if COOKIE_SECURE:
        assert "secure" in attributes
        assert "samesite=none" in attributes
    else:
        assert "samesite=lax" in attributes


def test_callback_store_failure_redirects_to_failure(client, store, monkeypatch) -> None:
    def down(record):
        raise redis.ConnectionError("down")

    monkeypatch.setattr(store, "put", down)
    start = _start(client)
    state = parse_qs(urlparse(start.json()["authorizationUrl"]).query)["state"][0]

    response = client.get(
        "/auth/callback", params={"state": state, "code": "abc"}, follow_redirects=False
    )

    assert response.status_code == 302
    assert response.headers["location"] == f"{STOREFRONT}?error=verification_failed"
    assert VERIFICATION_COOKIE_NAME not in response.cookies


def test_check_store_failure_reads_as_not_verified(client, store, monkeypatch) -> None:
    def down(verification_id):
        raise redis.ConnectionError("down")

    monkeypatch.setattr(store, "get", down)

    response = client.post("/api/verify/check", json={"verificationId": "ab" * 16})

    assert response.status_code == 200
    assert response.json() == {"verified": False}
