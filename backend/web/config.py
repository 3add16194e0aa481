"""
Configuration and startup security checks for the admissions backend.

Why: Inquiry records carry student contact data. This guard refuses to start
obviously insecure production deployments without burdening local development.

Permissions: The caller needs no special privileges. The function only reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os
import re
from urllib.parse import urlparse

APP_ROLE = "admissions_limited"
PROD_LIKE_ENVS = {"prod", "production", "stage", "staging"}


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in PROD_LIKE_ENVS


def _dsn_user(dsn_value: str) -> str | None:
    if "://" in dsn_value:
        try:
            return urlparse(dsn_value).username
        except ValueError:
            return None
    # Keyword form: host=... user=... dbname=...
    m = re.search(r"\buser\s*=\s*([^\s]+)", dsn_value)
    return m.group(1) if m else None


def _require_https(url_value: str, var_name: str) -> None:
    if url_value and url_value.strip().lower().startswith("http://"):
        raise SystemExit(f"Refusing to start: {var_name} must use https in production (got http).")


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod/stage only):
    - DATABASE_URL is set, does not disable TLS and does not authenticate as the
      NOLOGIN role `admissions_limited` (use a login that is IN ROLE it).
    - ADMISSIONS_REPO is not `memory`.
    - KC_ADMIN_CLIENT_SECRET is set and not a placeholder.
    - Keycloak base URLs use https.
    """
    env = os.getenv("ADMISSIONS_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    dsn = (os.getenv("DATABASE_URL") or "").strip()
    if not dsn:
        raise SystemExit("Refusing to start: DATABASE_URL is required in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    for key in ("DATABASE_URL", "ADMISSIONS_DATABASE_URL"):
        val = os.getenv(key, "")
        if val and (_dsn_user(val) or "").lower() == APP_ROLE:
            raise SystemExit(
                f"Refusing to start: {key} authenticates as '{APP_ROLE}' in production. "
                f"Create an environment-specific login role that is IN ROLE {APP_ROLE} and use that instead."
            )

    if (os.getenv("ADMISSIONS_REPO", "db") or "").strip().lower() == "memory":
        raise SystemExit("Refusing to start: ADMISSIONS_REPO=memory is not allowed in production/staging.")

    kc_secret = (os.getenv("KC_ADMIN_CLIENT_SECRET", "") or "").strip()
    if not kc_secret or kc_secret.upper().startswith("CHANGE_ME"):
        raise SystemExit("Refusing to start: KC_ADMIN_CLIENT_SECRET is unset or a placeholder in production.")

    _require_https(os.getenv("KC_BASE_URL", ""), "KC_BASE_URL")
    _require_https(os.getenv("KC_PUBLIC_BASE_URL", ""), "KC_PUBLIC_BASE_URL")
