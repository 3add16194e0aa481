"Admissions Desk API"
from __future__ import annotations

from datetime import datetime, timezone
import logging
import os
import sys

import requests
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from backend.admissions.errors import NotFound
from backend.admissions.models import to_dict
from backend.admissions.services.profiles import ProfilesService
from backend.identity_access.oidc import OIDCClient, OIDCConfig
from backend.identity_access.stores import SessionStore, StateStore
from backend.identity_access.tokens import IDTokenVerificationError, identity_from_claims, verify_id_token

from .auth_utils import cookie_max_age, cookie_opts
from .config import ensure_secure_config_on_startup
from .repo_wiring import get_repo


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never under pytest; tests provide their own environment.
    - Otherwise controlled by ADMISSIONS_ENABLE_DOTENV (default true).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("ADMISSIONS_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("ADMISSIONS_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


logger = logging.getLogger("admissions.identity_access")
SETTINGS = AuthSettings()
SESSION_COOKIE_NAME = "admissions_session"
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "3600"))

app = FastAPI(
    title="Admissions Desk",
    description="Student admission inquiries with role-based row-level access",
    version="0.1.0",
)

from .routes.analytics import analytics_router  # noqa: E402
from .routes.auth import auth_router  # noqa: E402
from .routes.follow_ups import follow_ups_router  # noqa: E402
from .routes.inquiries import inquiries_router  # noqa: E402
from .routes.profiles import profiles_router  # noqa: E402

# --- OIDC & Session Setup ------------------------------------------------------

OIDC_CFG = OIDCConfig.from_env()
OIDC = OIDCClient(OIDC_CFG)
STATE_STORE = StateStore()
SESSION_STORE = SessionStore()

# --- Auth Helpers & Middleware --------------------------------------------------


def _session_cookie_options() -> dict:
    return cookie_opts(SETTINGS.environment)


def _set_session_cookie(response: Response, value: str, *, max_age: int | None = None) -> None:
    opts = _session_cookie_options()
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def _is_public_path(path: str) -> bool:
    return path.startswith("/auth/") or path in ("/health", "/favicon.ico")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = SESSION_STORE.get(sid) if sid else None
    if not rec:
        if path.startswith("/api/"):
            headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
            return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
        return RedirectResponse(url="/auth/login", status_code=302)

    # Identity only; the role is resolved by the record store on every call.
    request.state.user = {"sub": rec.sub, "name": rec.name, "email": rec.email}
    request.state.session_expires_at = rec.expires_at
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # JSON API only: nothing may be framed, scripted or embedded.
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if SETTINGS.environment == "prod":
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Routes ---------------------------------------------------------------------

app.include_router(auth_router)
app.include_router(profiles_router)
app.include_router(inquiries_router)
app.include_router(follow_ups_router)
app.include_router(analytics_router)


@app.get("/health")
async def health_check():
    # Security: include no-store to avoid caching any runtime status.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})


@app.get("/auth/callback")
async def auth_callback(request: Request, code: str | None = None, state: str | None = None):
    error_headers = {"Cache-Control": "private, no-store"}
    if not code or not state:
        return JSONResponse({"error": "invalid_code_or_state"}, status_code=400, headers=error_headers)
    rec = STATE_STORE.pop_valid(state)
    if not rec:
        return JSONResponse({"error": "invalid_code_or_state"}, status_code=400, headers=error_headers)
    try:
        tokens = OIDC.exchange_code_for_tokens(code=code, code_verifier=rec.code_verifier)
    except (ValueError, requests.RequestException) as exc:
        logger.warning("Token exchange failed: %s", exc.__class__.__name__)
        return JSONResponse({"error": "token_exchange_failed"}, status_code=400, headers=error_headers)
    id_token = tokens.get("id_token")
    if not id_token or not isinstance(id_token, str):
        return JSONResponse({"error": "invalid_id_token"}, status_code=400, headers=error_headers)
    try:
        claims = verify_id_token(id_token=id_token, cfg=OIDC_CFG)
    except IDTokenVerificationError as exc:
        logger.warning("ID token verification failed: %s", exc.code)
        return JSONResponse({"error": "invalid_id_token"}, status_code=400, headers=error_headers)
    if rec.nonce and claims.get("nonce") != rec.nonce:
        return JSONResponse({"error": "invalid_nonce"}, status_code=400, headers=error_headers)

    identity = identity_from_claims(claims)
    sess = SESSION_STORE.create(
        sub=identity.sub,
        name=identity.name,
        email=identity.email,
        id_token=id_token,
        ttl_seconds=SESSION_TTL_SECONDS,
    )
    resp = RedirectResponse(url=rec.redirect or "/", status_code=302)
    resp.headers["Cache-Control"] = "private, no-store"
    _set_session_cookie(resp, sess.session_id, max_age=cookie_max_age(SETTINGS.environment, sess.ttl_seconds))
    return resp


@app.get("/api/me")
async def get_me(request: Request):
    """Return the caller's profile; 404 when the login has no profile row (yet)."""
    user = getattr(request.state, "user", None) or {}
    headers = {"Cache-Control": "private, no-store"}
    try:
        profile = ProfilesService(get_repo()).me(user.get("sub"))
    except NotFound:
        return JSONResponse({"error": "not_found"}, status_code=404, headers=headers)
    expires_at = getattr(request.state, "session_expires_at", None)
    exp_iso = (
        datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat(timespec="seconds") if expires_at else None
    )
    return JSONResponse({"profile": to_dict(profile), "expires_at": exp_iso}, headers=headers)
