import os
from pathlib import Path


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or "=" not in stripped:
                continue
            key, value = stripped.split("=", 1)
            key = key.strip()
            if not key or key in os.environ:
                continue
            cleaned = value.strip().strip('"').strip("'")
            os.environ[key] = cleaned
    except OSError:
        return


def _load_env() -> None:
    current = Path(__file__).resolve()
    for candidate in (current.parents[2] / ".env", Path.cwd() / ".env"):
        _load_env_file(candidate)


_load_env()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


def _normalize_origins(origins: str) -> list[str]:
    items: list[str] = []
    for raw in origins.split(","):
        value = raw.strip().rstrip("/")
        if value and value not in items:
            items.append(value)
    return items


# Identity provider
OIDC_ISSUER = os.getenv("OIDC_ISSUER", os.getenv("KENNI_ISSUER", "")).rstrip("/")
OIDC_CLIENT_ID = os.getenv("OIDC_CLIENT_ID", os.getenv("KENNI_CLIENT_ID", ""))
OIDC_CLIENT_SECRET = os.getenv("OIDC_CLIENT_SECRET", os.getenv("KENNI_CLIENT_SECRET", ""))
OIDC_REDIRECT_URI = os.getenv(
    "OIDC_REDIRECT_URI", os.getenv("KENNI_REDIRECT_URI", "http://localhost:3000/auth/callback")
)
OIDC_SCOPES = os.getenv("OIDC_SCOPES", "openid national_id")
OIDC_NATIONAL_ID_CLAIM = os.getenv("OIDC_NATIONAL_ID_CLAIM", "national_id")
OIDC_ID_TOKEN_ALGORITHMS = [
    alg.strip()
    for alg in os.getenv("OIDC_ID_TOKEN_ALGORITHMS", "RS256").split(",")
    if alg.strip()
]
OIDC_HTTP_TIMEOUT_SECONDS = float(os.getenv("OIDC_HTTP_TIMEOUT_SECONDS", "10"))

# Verification policy
MINIMUM_AGE = int(os.getenv("MINIMUM_AGE", "20"))
VERIFICATION_TTL_SECONDS = int(os.getenv("VERIFICATION_TTL_SECONDS", str(24 * 60 * 60)))
VERIFICATION_SWEEP_INTERVAL_SECONDS = int(os.getenv("VERIFICATION_SWEEP_INTERVAL_SECONDS", "3600"))
OAUTH_STATE_TTL_SECONDS = int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600"))

# Storefront
STOREFRONT_URL = os.getenv(
    "STOREFRONT_URL", os.getenv("SHOPIFY_STORE_URL", "http://localhost:5173")
).rstrip("/")
CORS_ORIGINS = _normalize_origins(os.getenv("CORS_ORIGINS", STOREFRONT_URL))
if STOREFRONT_URL not in CORS_ORIGINS:
    CORS_ORIGINS.append(STOREFRONT_URL)

# Cookies and sessions
SESSION_SECRET = os.getenv("SESSION_SECRET", "change-me-in-prod")
SESSION_ALGORITHM = os.getenv("SESSION_ALGORITHM", "HS256")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "broker_session")
VERIFICATION_COOKIE_NAME = os.getenv("VERIFICATION_COOKIE_NAME", "age_verification_id")
COOKIE_DOMAIN = os.getenv("COOKIE_DOMAIN", "") or None
COOKIE_SECURE = _env_bool("COOKIE_SECURE", "true")

# Infrastructure
REDIS_URL = os.getenv("REDIS_URL", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "3000"))
