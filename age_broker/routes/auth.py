from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from ..core.config import (
    COOKIE_DOMAIN,
    COOKIE_SECURE,
    SESSION_COOKIE_NAME,
    VERIFICATION_COOKIE_NAME,
    VERIFICATION_TTL_SECONDS,
)
from ..services.coordinator import OIDCFlowCoordinator
from .deps import get_coordinator, get_session_handle

router = APIRouter()


@router.get("/callback", name="oidc_callback")
def oidc_callback(
    request: Request,
    handle: Optional[str] = Depends(get_session_handle),
    coordinator: OIDCFlowCoordinator = Depends(get_coordinator),
):
    outcome = coordinator.handle_callback(handle, dict(request.query_params))
    response = RedirectResponse(outcome.redirect_url, status_code=302)
    # The context is single-use either way.
    response.delete_cookie(
        SESSION_COOKIE_NAME,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="none" if COOKIE_SECURE else "lax",
    )
    if outcome.succeeded and outcome.verification_id:
        # Readable by storefront scripts across subdomains.
        response.set_cookie(
            VERIFICATION_COOKIE_NAME,
            outcome.verification_id,
            max_age=VERIFICATION_TTL_SECONDS,
            httponly=False,
            secure=COOKIE_SECURE,
            samesite="none" if COOKIE_SECURE else "lax",
            domain=COOKIE_DOMAIN,
        )
    return response
