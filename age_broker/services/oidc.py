from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlencode

import requests
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError
from requests import RequestException

from ..core.config import (
    OIDC_CLIENT_ID,
    OIDC_CLIENT_SECRET,
    OIDC_HTTP_TIMEOUT_SECONDS,
    OIDC_ID_TOKEN_ALGORITHMS,
    OIDC_ISSUER,
    OIDC_REDIRECT_URI,
    OIDC_SCOPES,
)
from ..core.errors import ProviderError, SessionMismatch
from ..core.security import constant_time_equals

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"
_REQUIRED_METADATA = ("authorization_endpoint", "token_endpoint", "jwks_uri")


@dataclass
class TokenSet:
    access_token: str
    id_token: str
    claims: dict[str, Any] = field(default_factory=dict)


def _safe_json_response(response: requests.Response, context: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderError(f"{context} returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise ProviderError(f"{context} returned invalid payload")
    return payload


def _extract_oauth_error(response: requests.Response, fallback: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"{fallback} (HTTP {response.status_code})"
    if not isinstance(payload, dict):
        return f"{fallback} (HTTP {response.status_code})"
    return payload.get("error_description") or payload.get("error") or fallback


class OIDCProvider:
    """Relying-party side of the authorization-code flow for one issuer.

    Provider metadata and signing keys are fetched on first use and kept for
    the lifetime of the instance; the keys are refetched once when an ID
    token fails signature verification. Every HTTP call is bounded by ``timeout``
    and any failure, including a timeout, surfaces as ``ProviderError``.
    """

    def __init__(
        self,
        issuer: str = OIDC_ISSUER,
        client_id: str = OIDC_CLIENT_ID,
        client_secret: str = OIDC_CLIENT_SECRET,
        redirect_uri: str = OIDC_REDIRECT_URI,
        scopes: str = OIDC_SCOPES,
        algorithms: Optional[list[str]] = None,
        timeout: float = OIDC_HTTP_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.algorithms = algorithms or list(OIDC_ID_TOKEN_ALGORITHMS)
        self.timeout = timeout
        self.http = session or requests.Session()
        self._metadata: Optional[dict[str, Any]] = None
        self._jwks: Optional[dict[str, Any]] = None
        self._lock = threading.Lock()

    def _get_json(self, url: str, context: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self.http.get(url, timeout=self.timeout, **kwargs)
        except RequestException as exc:
            raise ProviderError(f"{context} request failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(_extract_oauth_error(response, f"{context} failed"))
        return _safe_json_response(response, context)

    @property
    def metadata(self) -> dict[str, Any]:
        with self._lock:
            if self._metadata is None:
                if not self.issuer:
                    raise ProviderError("OIDC issuer is not configured")
                payload = self._get_json(f"{self.issuer}{DISCOVERY_PATH}", "OIDC discovery")
                missing = [name for name in _REQUIRED_METADATA if not payload.get(name)]
                if missing:
                    raise ProviderError(f"OIDC discovery missing {', '.join(missing)}")
                self._metadata = payload
                logger.info(f"Loaded OIDC metadata for {self.issuer}")
            return self._metadata

    @property
    def jwks(self) -> dict[str, Any]:
        jwks_uri = self.metadata["jwks_uri"]
        with self._lock:
            if self._jwks is None:
                payload = self._get_json(jwks_uri, "OIDC JWKS")
                if not isinstance(payload.get("keys"), list):
                    raise ProviderError("OIDC JWKS has no keys")
                self._jwks = payload
            return self._jwks

    def authorization_url(self, state: str, nonce: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scopes,
            "state": state,
            "nonce": nonce,
        }
        return f"{self.metadata['authorization_endpoint']}?{urlencode(params)}"

    def exchange_code(self, code: str, nonce: str) -> TokenSet:
        """Redeem ``code`` and validate the returned ID token against ``nonce``."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        try:
            response = self.http.post(
                self.metadata["token_endpoint"],
                data=data,
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except RequestException as exc:
            raise ProviderError(f"OIDC token exchange failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(_extract_oauth_error(response, "OIDC token exchange failed"))
        payload = _safe_json_response(response, "OIDC token exchange")

        access_token = payload.get("access_token")
        id_token = payload.get("id_token")
        if not access_token or not id_token:
            raise ProviderError("OIDC token response missing access_token or id_token")
        claims = self.validate_id_token(id_token, access_token, nonce)
        return TokenSet(access_token=access_token, id_token=id_token, claims=claims)

    def _decode_id_token(self, id_token: str, access_token: Optional[str]) -> dict[str, Any]:
        return jwt.decode(
            id_token,
            self.jwks,
            algorithms=self.algorithms,
            audience=self.client_id,
            issuer=self.metadata.get("issuer", self.issuer),
            access_token=access_token,
        )

    def refresh_jwks(self) -> None:
        with self._lock:
            self._jwks = None

    def validate_id_token(self, id_token: str, access_token: Optional[str], nonce: str) -> dict[str, Any]:
        try:
            try:
                claims = self._decode_id_token(id_token, access_token)
            except (ExpiredSignatureError, JWTClaimsError):
                raise
            except JWTError as exc:
                # Signature or key failure: the provider may have rotated keys.
                logger.info(f"Refreshing OIDC JWKS after ID token failure: {exc}")
                self.refresh_jwks()
                claims = self._decode_id_token(id_token, access_token)
        except JWTError as exc:
            raise ProviderError(f"ID token rejected: {exc}") from exc
        if not constant_time_equals(nonce, claims.get("nonce")):
            raise SessionMismatch("ID token nonce does not match session")
        return claims

    def fetch_claims(self, tokens: TokenSet) -> dict[str, Any]:
        """ID token claims merged with the userinfo response, when offered."""
        claims = dict(tokens.claims)
        userinfo_url = self.metadata.get("userinfo_endpoint")
        if not userinfo_url:
            return claims
        userinfo = self._get_json(
            userinfo_url,
            "OIDC userinfo",
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        if userinfo.get("sub") != claims.get("sub"):
            raise ProviderError("Userinfo subject does not match ID token")
        claims.update(userinfo)
        return claims
