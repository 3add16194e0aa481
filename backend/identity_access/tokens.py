"""
ID token verification for the identity_access context.

Why: The session is created from a verified ID token only. Signature, issuer,
audience and lifetime are checked here so the web adapter deals with a plain
`TokenIdentity` and a single error type.

Security: Keys come from the realm JWKS. An unknown `kid` triggers one forced
JWKS refresh to follow key rotation; anything else is rejected.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import threading
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError

from .oidc import OIDCConfig

MAX_CLOCK_SKEW_SECONDS = 5


class IDTokenVerificationError(Exception):
    """Raised when the ID token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class TokenIdentity:
    sub: str
    email: str
    name: str


class JWKSCache:
    """In-process cache for the realm key set."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._entries: Dict[str, tuple[Dict[str, object], float]] = {}

    def get(self, cfg: OIDCConfig, *, force: bool = False) -> Dict[str, object]:
        now = time.time()
        with self._lock:
            cached = self._entries.get(cfg.jwks_uri)
            if cached and cached[1] > now and not force:
                return cached[0]
        jwks = self._fetch(cfg.jwks_uri)
        with self._lock:
            self._entries[cfg.jwks_uri] = (jwks, now + self.ttl_seconds)
        return jwks

    @staticmethod
    def _fetch(url: str) -> Dict[str, object]:
        try:
            resp = requests.get(url, timeout=5)
        except requests.RequestException as exc:
            raise IDTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise IDTokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise IDTokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise IDTokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()


def _key_for(jwks: Dict[str, object], kid: str) -> Optional[Dict[str, object]]:
    for key in jwks.get("keys", []):  # type: ignore[union-attr]
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def verify_id_token(*, id_token: str, cfg: OIDCConfig, cache: JWKSCache | None = None) -> Dict[str, object]:
    """Validate an ID token against the realm JWKS and return its claims.

    Raises:
        IDTokenVerificationError: malformed header, unknown key, bad signature,
            wrong issuer/audience, or an expired / not-yet-valid token.
    """
    cache = cache or JWKS_CACHE
    try:
        header = jwt.get_unverified_header(id_token)
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_id_token") from exc
    kid = header.get("kid")
    if not kid:
        raise IDTokenVerificationError("missing_kid")
    key = _key_for(cache.get(cfg), kid) or _key_for(cache.get(cfg, force=True), kid)
    if key is None:
        raise IDTokenVerificationError("unknown_kid")
    try:
        claims = jwt.decode(
            id_token,
            key,
            algorithms=["RS256"],
            audience=cfg.client_id,
            issuer=cfg.issuer,
            options={"verify_at_hash": False, "leeway": MAX_CLOCK_SKEW_SECONDS},
        )
    except JOSEError as exc:
        raise IDTokenVerificationError("invalid_id_token") from exc
    if not isinstance(claims.get("exp"), (int, float)):
        raise IDTokenVerificationError("invalid_id_token")
    if not claims.get("sub"):
        raise IDTokenVerificationError("missing_sub")
    return claims


def identity_from_claims(claims: Dict[str, object]) -> TokenIdentity:
    """Pick subject, email and a display name from verified claims."""
    sub = str(claims["sub"])
    email = str(claims.get("email") or claims.get("preferred_username") or "")
    name = claims.get("name") or " ".join(
        part for part in (claims.get("given_name"), claims.get("family_name")) if isinstance(part, str) and part
    )
    if not name:
        name = email.split("@")[0] if email else "User"
    return TokenIdentity(sub=sub, email=email, name=str(name))
