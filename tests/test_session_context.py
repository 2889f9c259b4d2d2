"""
Tests for `age_broker/services/session_context.py`.
"""

from __future__ import annotations

import logging

import pytest

from age_broker.core import cache as cache_module
from age_broker.core.errors import SessionMismatch
from age_broker.services.session_context import SessionContextManager


def _flip_last(value: str) -> str:
    return value[:-1] + ("A" if value[-1] != "A" else "B")


def test_begin_generates_fresh_random_values(sessions) -> None:
    first, first_handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")
    second, second_handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")

    assert first.state != second.state
    assert first.nonce != second.nonce
    assert first.state != first.nonce
    assert first_handle != second_handle
    assert len(first.state) >= 32


def test_complete_with_matching_values_returns_context(sessions) -> None:
    context, handle = sessions.begin(
        "https://shop.example.is/cart", customer_id="c1", checkout_token="tok"
    )

    completed = sessions.complete(handle, context.state, context.nonce)

    assert completed == context
    assert completed.customer_id == "c1"
    assert completed.checkout_token == "tok"


def test_state_differing_by_one_character_is_rejected(sessions) -> None:
    context, handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")

    with pytest.raises(SessionMismatch):
        sessions.complete(handle, _flip_last(context.state), context.nonce)


def test_nonce_differing_by_one_character_is_rejected(sessions) -> None:
    context, handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")

    with pytest.raises(SessionMismatch):
        sessions.complete(handle, context.state, _flip_last(context.nonce))


def test_failed_attempt_consumes_the_context(sessions) -> None:
    context, handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")

    with pytest.raises(SessionMismatch):
        sessions.complete(handle, "forged", context.nonce)
    with pytest.raises(SessionMismatch):
        sessions.complete(handle, context.state, context.nonce)


def test_rejected_completion_is_logged_without_secrets(sessions, caplog) -> None:
    context, handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")

    with caplog.at_level(logging.INFO, logger="age_broker.services.session_context"):
        with pytest.raises(SessionMismatch):
            sessions.complete(handle, "forged")
        with pytest.raises(SessionMismatch):
            sessions.complete(handle, context.state)

    messages = [record.getMessage() for record in caplog.records]
    assert any("state does not match" in message for message in messages)
    assert any("expired or already used" in message for message in messages)
    assert not any(context.state in message or handle in message for message in messages)


def test_second_completion_is_rejected(sessions) -> None:
    context, handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")
    sessions.complete(handle, context.state)

    with pytest.raises(SessionMismatch):
        sessions.complete(handle, context.state)


@pytest.mark.parametrize("handle", [None, "", "never-issued"])
def test_unknown_handle_is_rejected(sessions, handle) -> None:
    with pytest.raises(SessionMismatch):
        sessions.complete(handle, "state", "nonce")


def test_missing_state_is_rejected(sessions) -> None:
    _, handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")

    with pytest.raises(SessionMismatch):
        sessions.complete(handle, None)


def test_verify_nonce(sessions) -> None:
    context, handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")
    completed = sessions.complete(handle, context.state)

    SessionContextManager.verify_nonce(completed, context.nonce)
    with pytest.raises(SessionMismatch):
        SessionContextManager.verify_nonce(completed, None)
    with pytest.raises(SessionMismatch):
        SessionContextManager.verify_nonce(completed, _flip_last(context.nonce))


def test_context_expires(cache, monkeypatch) -> None:
    class FrozenTime:
        now = 1_000_000.0

        @classmethod
        def time(cls) -> float:
            return cls.now

    monkeypatch.setattr(cache_module, "time", FrozenTime)
    sessions = SessionContextManager(cache, ttl_seconds=600)
    context, handle = sessions.begin("https://shop.example.is/cart", customer_id="c1")

    FrozenTime.now += 600

    with pytest.raises(SessionMismatch):
        sessions.complete(handle, context.state)
