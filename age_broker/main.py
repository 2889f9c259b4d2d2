import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import __version__
from .core.cache import cache_client
from .core.config import CORS_ORIGINS, LOG_LEVEL, PORT, VERIFICATION_SWEEP_INTERVAL_SECONDS
from .routes import auth, validation, verify
from .routes.deps import get_verification_store
from .schemas import HealthOut
from .services.verification_store import ExpirySweeper

logger = logging.getLogger(__name__)

app = FastAPI(title="Age Verification Broker", version=__version__)

_sweeper: Optional[ExpirySweeper] = None


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Error responses keep CORS headers so the storefront can read them."""
    origin = request.headers.get("origin", "")
    response = JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )
    if origin in CORS_ORIGINS:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.on_event("startup")
def on_startup() -> None:
    global _sweeper
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    cache_client.connect()
    _sweeper = ExpirySweeper(get_verification_store(), VERIFICATION_SWEEP_INTERVAL_SECONDS)
    _sweeper.start()
    logger.info("Age verification broker started")


@app.on_event("shutdown")
def on_shutdown() -> None:
    global _sweeper
    if _sweeper is not None:
        _sweeper.stop()
        _sweeper = None
    cache_client.disconnect()


@app.get("/health", response_model=HealthOut)
def health_check():
    return {"status": "ok"}


@app.head("/health")
def health_check_head():
    return Response(status_code=200)


app.include_router(verify.router, prefix="/api/verify", tags=["verify"])
app.include_router(validation.router, prefix="/api", tags=["validation"])
app.include_router(auth.router, prefix="/auth", tags=["auth"])


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    run()
