"""
Keycloak Admin client for staff account provisioning and removal.

Design:
- Framework-agnostic; the profiles service calls it and handles failures.
- Uses requests under the hood. HTTP errors surface as `requests` exceptions
  or `ValueError("<code>")`.

Security:
- Prefers the client_credentials grant of a confidential admin client.
- The password grant is a dev-only fallback and refused in prod-like envs.
- Never log credentials, tokens or passwords.
"""

from __future__ import annotations

from typing import Dict
import os
import requests

from .oidc import OIDCConfig


class AdminClient:
    def __init__(self, cfg: OIDCConfig) -> None:
        self.cfg = cfg
        self._admin_realm = os.getenv("KC_ADMIN_REALM", "master")
        self._admin_client_id = os.getenv("KC_ADMIN_CLIENT_ID", "admissions-admin-cli")
        self._admin_client_secret = os.getenv("KC_ADMIN_CLIENT_SECRET")
        self._admin_username = os.getenv("KC_ADMIN_USERNAME")
        self._admin_password = os.getenv("KC_ADMIN_PASSWORD")
        ca = os.getenv("KEYCLOAK_CA_BUNDLE")
        self._verify: bool | str = ca if ca else True

    def _token(self) -> str:
        url = f"{self.cfg.base_url}/realms/{self._admin_realm}/protocol/openid-connect/token"
        if self._admin_client_secret:
            data = {
                "grant_type": "client_credentials",
                "client_id": self._admin_client_id,
                "client_secret": self._admin_client_secret,
            }
        else:
            env = (os.getenv("ADMISSIONS_ENV", "dev") or "").lower()
            if env in {"prod", "production", "stage", "staging"}:
                raise RuntimeError("password_grant_disabled_in_prod")
            if not self._admin_username or not self._admin_password:
                raise RuntimeError(
                    "Keycloak admin credentials missing: set KC_ADMIN_CLIENT_SECRET or KC_ADMIN_USERNAME/PASSWORD"
                )
            data = {
                "grant_type": "password",
                "client_id": self._admin_client_id,
                "username": self._admin_username,
                "password": self._admin_password,
            }
        r = requests.post(url, data=data, timeout=10, verify=self._verify)
        r.raise_for_status()
        token = (r.json() or {}).get("access_token")
        if not token:
            raise ValueError("admin_token_missing")
        return str(token)

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    @property
    def _users_url(self) -> str:
        return f"{self.cfg.base_url}/admin/realms/{self.cfg.realm}/users"

    def create_user(self, *, email: str, password: str, display_name: str | None = None) -> str:
        """Create an enabled realm user with a permanent password and return its id."""
        token = self._token()
        payload = {
            "username": email,
            "email": email,
            "enabled": True,
            "emailVerified": True,
            "credentials": [{"type": "password", "value": password, "temporary": False}],
            **({"firstName": display_name} if display_name else {}),
        }
        r = requests.post(self._users_url, headers=self._headers(token), json=payload, timeout=10, verify=self._verify)
        if r.status_code == 409:
            raise ValueError("user_exists")
        if r.status_code not in (201, 204):
            raise ValueError("user_create_failed")
        # Keycloak returns the new resource in Location: .../users/<id>
        location = r.headers.get("Location") or ""
        user_id = location.rstrip("/").rsplit("/", 1)[-1] if "/users/" in location else ""
        if user_id:
            return user_id
        q = requests.get(
            self._users_url,
            headers=self._headers(token),
            params={"email": email, "exact": True},
            timeout=10,
            verify=self._verify,
        )
        q.raise_for_status()
        matches = q.json() or []
        if not matches or not matches[0].get("id"):
            raise ValueError("user_lookup_failed")
        return str(matches[0]["id"])

    def delete_user(self, *, user_id: str) -> None:
        """Delete a realm user; an already missing user counts as deleted."""
        token = self._token()
        r = requests.delete(
            f"{self._users_url}/{user_id}", headers=self._headers(token), timeout=10, verify=self._verify
        )
        if r.status_code not in (204, 404):
            raise ValueError("user_delete_failed")
