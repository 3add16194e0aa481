"""
OIDC client for the Keycloak realm that authenticates staff.

Why: The admissions backend only consumes login/session/sign-out primitives of
the identity provider. This module keeps the protocol details (PKCE, endpoint
layout, logout hints) out of the FastAPI adapter.

Security: Uses PKCE (S256). The caller stores state, nonce and code_verifier
server-side (see `stores.StateStore`); this client is stateless.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import base64
import hashlib
import os
import secrets
from urllib.parse import urlencode

# Small indirection to ease monkeypatching in tests
import requests as http


def http_post(url: str, data: Dict[str, str], headers: Dict[str, str]):
    return http.post(url, data=data, headers=headers, timeout=5)


@dataclass(frozen=True)
class OIDCConfig:
    base_url: str  # server-to-server base, e.g. http://keycloak:8080
    realm: str  # e.g. admissions
    client_id: str  # e.g. admissions-web
    redirect_uri: str  # e.g. https://app.localhost/auth/callback
    public_base_url: str | None = None  # browser-facing base when it differs
    post_logout_redirect_uri: str | None = None

    @classmethod
    def from_env(cls) -> "OIDCConfig":
        base_url = os.getenv("KC_BASE_URL", "http://localhost:8080").rstrip("/")
        return cls(
            base_url=base_url,
            realm=os.getenv("KC_REALM", "admissions"),
            client_id=os.getenv("KC_CLIENT_ID", "admissions-web"),
            redirect_uri=os.getenv("REDIRECT_URI", "https://app.localhost/auth/callback"),
            public_base_url=(os.getenv("KC_PUBLIC_BASE_URL") or base_url).rstrip("/"),
            post_logout_redirect_uri=os.getenv("POST_LOGOUT_REDIRECT_URI") or None,
        )

    def _realm_url(self, base: str) -> str:
        return f"{base}/realms/{self.realm}"

    @property
    def issuer(self) -> str:
        # Keycloak stamps tokens with the browser-facing host.
        return self._realm_url(self.public_base_url or self.base_url)

    @property
    def auth_endpoint(self) -> str:
        return f"{self._realm_url(self.public_base_url or self.base_url)}/protocol/openid-connect/auth"

    @property
    def logout_endpoint(self) -> str:
        return f"{self._realm_url(self.public_base_url or self.base_url)}/protocol/openid-connect/logout"

    @property
    def token_endpoint(self) -> str:
        return f"{self._realm_url(self.base_url)}/protocol/openid-connect/token"

    @property
    def jwks_uri(self) -> str:
        return f"{self._realm_url(self.base_url)}/protocol/openid-connect/certs"


class OIDCClient:
    def __init__(self, config: OIDCConfig):
        self.cfg = config

    @staticmethod
    def generate_code_verifier(length: int = 64) -> str:
        """High-entropy URL-safe verifier (43..128 chars after encoding)."""
        return base64.urlsafe_b64encode(os.urandom(length)).decode("ascii").rstrip("=")

    @staticmethod
    def code_challenge_s256(code_verifier: str) -> str:
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    @staticmethod
    def generate_nonce() -> str:
        return secrets.token_urlsafe(24)

    def build_authorization_url(self, *, state: str, code_challenge: str, nonce: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.cfg.client_id,
            "redirect_uri": self.cfg.redirect_uri,
            "scope": "openid email profile",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        if nonce:
            params["nonce"] = nonce
        return f"{self.cfg.auth_endpoint}?{urlencode(params)}"

    def build_logout_url(self, *, id_token_hint: Optional[str] = None) -> str:
        params = {"client_id": self.cfg.client_id}
        if self.cfg.post_logout_redirect_uri:
            params["post_logout_redirect_uri"] = self.cfg.post_logout_redirect_uri
        if id_token_hint:
            params["id_token_hint"] = id_token_hint
        return f"{self.cfg.logout_endpoint}?{urlencode(params)}"

    def exchange_code_for_tokens(self, *, code: str, code_verifier: str) -> Dict[str, str]:
        """Exchange the authorization code at the token endpoint.

        Raises ValueError("token_exchange_failed") on any non-200 response.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.cfg.client_id,
            "redirect_uri": self.cfg.redirect_uri,
            "code_verifier": code_verifier,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        resp = http_post(self.cfg.token_endpoint, data=data, headers=headers)
        if resp.status_code != 200:
            raise ValueError("token_exchange_failed")
        body = resp.json()
        if not isinstance(body, dict):
            raise ValueError("token_exchange_failed")
        return body
