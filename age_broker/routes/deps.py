from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request

from ..core.cache import cache_client
from ..core.config import SESSION_COOKIE_NAME
from ..core.security import decode_session_token
from ..services.coordinator import OIDCFlowCoordinator
from ..services.oidc import OIDCProvider
from ..services.session_context import SessionContextManager
from ..services.verification_store import VerificationStore, build_verification_store


@lru_cache(maxsize=1)
def get_verification_store() -> VerificationStore:
    return build_verification_store(cache_client)


@lru_cache(maxsize=1)
def get_oidc_provider() -> OIDCProvider:
    return OIDCProvider()


@lru_cache(maxsize=1)
def get_session_manager() -> SessionContextManager:
    return SessionContextManager(cache_client)


def get_coordinator(
    provider: OIDCProvider = Depends(get_oidc_provider),
    sessions: SessionContextManager = Depends(get_session_manager),
    store: VerificationStore = Depends(get_verification_store),
) -> OIDCFlowCoordinator:
    return OIDCFlowCoordinator(provider=provider, sessions=sessions, store=store)


def get_session_handle(request: Request) -> Optional[str]:
    return decode_session_token(request.cookies.get(SESSION_COOKIE_NAME))
