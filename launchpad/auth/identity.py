from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException, status
from jose import jwk, jwt
from jose.exceptions import JWSError, JWTError
from jose.utils import base64url_decode

from launchpad.config import Settings

logger = logging.getLogger("auth.identity")

KEY_SET_TTL_SECONDS = 300


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _index_keys(payload: Any) -> Dict[str, Dict[str, Any]]:
    """Map kid -> key. Accepts a JWK set or a `{kid: x509 PEM}` document."""

    if isinstance(payload, dict) and isinstance(payload.get("keys"), list):
        return {key["kid"]: key for key in payload["keys"] if isinstance(key, dict) and key.get("kid")}
    if isinstance(payload, dict):
        return {kid: {"kid": kid, "pem": pem, "alg": "RS256"} for kid, pem in payload.items()}
    raise ValueError("identity key document is neither a JWK set nor a certificate map")


class _KeySet:
    def __init__(self) -> None:
        self.keys: Dict[str, Dict[str, Any]] = {}
        self.expires_at = 0.0

    @property
    def fresh(self) -> bool:
        return bool(self.keys) and time.monotonic() < self.expires_at

    def replace(self, keys: Dict[str, Dict[str, Any]]) -> None:
        self.keys = keys
        self.expires_at = time.monotonic() + KEY_SET_TTL_SECONDS


class IdentityVerifier:
    """Checks RS256 identity tokens; callers only rely on the `sub` claim."""

    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None) -> None:
        self.jwks_url = settings.IDENTITY_JWKS_URL
        self.issuer = settings.IDENTITY_ISSUER
        self.audience = settings.IDENTITY_AUDIENCE
        self.timeout = settings.IDENTITY_TIMEOUT_SECONDS
        self._http = http_client
        self._key_set = _KeySet()

    def _download_keys(self) -> None:
        get = self._http.get if self._http is not None else httpx.get
        try:
            resp = get(self.jwks_url, timeout=self.timeout)
            resp.raise_for_status()
            self._key_set.replace(_index_keys(resp.json()))
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Identity key download failed", extra={"jwks_url": self.jwks_url, "error": str(exc)})
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Identity provider keys unavailable",
            ) from exc

    def _signing_key(self, token: str) -> Dict[str, Any]:
        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except JWTError as exc:
            raise _unauthorized("Malformed identity token") from exc
        if not kid:
            raise _unauthorized("Identity token has no key id")

        if not self._key_set.fresh:
            self._download_keys()
        key = self._key_set.keys.get(kid)
        if key is None:
            # the provider may have rotated keys since the last download
            self._download_keys()
            key = self._key_set.keys.get(kid)
        if key is None:
            logger.warning("Unknown identity signing key", extra={"kid": kid})
            raise _unauthorized("Unknown signing key")
        return key

    def _pem_for(self, token: str, key: Dict[str, Any], algorithm: str) -> str:
        if "pem" in key:
            return key["pem"]
        public_key = jwk.construct(key, algorithm=algorithm)
        signing_input, signature = token.rsplit(".", 1)
        if not public_key.verify(signing_input.encode(), base64url_decode(signature.encode())):
            raise _unauthorized("Bad identity token signature")
        return public_key.to_pem().decode()

    def verify(self, token: str) -> Dict[str, Any]:
        key = self._signing_key(token)
        algorithm = key.get("alg", "RS256")
        try:
            claims = jwt.decode(
                token,
                key=self._pem_for(token, key, algorithm),
                algorithms=[algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": bool(self.audience), "verify_iss": bool(self.issuer)},
            )
        except (JWTError, JWSError, ValueError) as exc:
            logger.info("Rejected identity token", extra={"kid": key.get("kid"), "error": str(exc)})
            raise _unauthorized("Identity token rejected") from exc
        return claims
