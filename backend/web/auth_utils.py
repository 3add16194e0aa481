"""
Session cookie policy shared by `main` and the auth router.

The flags are identical in every environment: Secure always, SameSite=Lax so
the cookie survives the top-level redirect back from Keycloak.
"""

from __future__ import annotations


def cookie_opts(environment: str) -> dict:
    """Return the session cookie flags for `environment` (dev = prod)."""
    return {"secure": True, "samesite": "lax"}


def cookie_max_age(environment: str, ttl_seconds: int) -> int | None:
    """Persistent cookie in prod (bounded by the session TTL), session cookie elsewhere."""
    return ttl_seconds if (environment or "").lower() == "prod" else None
