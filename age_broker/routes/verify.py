import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from ..core.config import (
    COOKIE_SECURE,
    OAUTH_STATE_TTL_SECONDS,
    SESSION_COOKIE_NAME,
)
from ..core.errors import BadRequest, ProviderError
from ..core.security import create_session_token
from ..schemas import VerifyCheckIn, VerifyCheckOut, VerifyStartIn, VerifyStartOut
from ..services.coordinator import OIDCFlowCoordinator
from .deps import get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/start", response_model=VerifyStartOut)
def start(
    payload: VerifyStartIn,
    response: Response,
    coordinator: OIDCFlowCoordinator = Depends(get_coordinator),
):
    try:
        result = coordinator.begin(
            customer_id=payload.customer_id,
            checkout_token=payload.checkout_token,
            return_url=payload.return_url,
        )
    except BadRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ProviderError as exc:
        logger.error(f"Could not start verification: {exc}")
        raise HTTPException(status_code=502, detail="Failed to start verification") from exc

    # SameSite=None so the cookie survives the cross-site fetch from the storefront.
    response.set_cookie(
        SESSION_COOKIE_NAME,
        create_session_token(result.context_handle),
        max_age=OAUTH_STATE_TTL_SECONDS,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="none" if COOKIE_SECURE else "lax",
    )
    return {"authorizationUrl": result.authorization_url}


@router.post("/check", response_model=VerifyCheckOut, response_model_exclude_none=True)
def check(
    payload: VerifyCheckIn,
    coordinator: OIDCFlowCoordinator = Depends(get_coordinator),
):
    return coordinator.check_status(payload.verification_id)
