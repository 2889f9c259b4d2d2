import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from .config import OAUTH_STATE_TTL_SECONDS, SESSION_ALGORITHM, SESSION_SECRET


def generate_token() -> str:
    """URL-safe random value for state, nonce and session handles."""
    return secrets.token_urlsafe(32)


def generate_verification_id() -> str:
    return secrets.token_hex(16)


def constant_time_equals(expected: Optional[str], observed: Optional[str]) -> bool:
    if expected is None or observed is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), observed.encode("utf-8"))


def create_session_token(
    handle: str,
    ttl_seconds: int = OAUTH_STATE_TTL_SECONDS,
    secret: str = SESSION_SECRET,
) -> str:
    expire = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
    to_encode = {"sub": handle, "exp": expire, "type": "session"}
    return jwt.encode(to_encode, secret, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: Optional[str], secret: str = SESSION_SECRET) -> Optional[str]:
    """Return the session handle carried by a signed cookie value, or None."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[SESSION_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != "session":
        return None
    handle = payload.get("sub")
    if not isinstance(handle, str) or not handle:
        return None
    return handle
