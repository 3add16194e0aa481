"""
Authentication routes: start login, sign out.

Why:
    The identity provider owns login and sign-out; the app only runs the OIDC
    authorization-code flow (PKCE) and keeps an opaque session cookie.

Notes:
    - This module imports `backend.web.main` inside the handlers to reuse the
      shared OIDC client, state/session stores and cookie policy. The callback
      itself lives in `main.py` next to the session cookie helpers.
"""
from __future__ import annotations

import re

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from backend.identity_access.oidc import OIDCClient

auth_router = APIRouter(tags=["Auth"])

# Absolute in-app paths only: no scheme, no "//", no "..".
INAPP_PATH_PATTERN = re.compile(r"^(?!.*//)(?!.*\.\.)/[A-Za-z0-9._\-/]*$")
MAX_INAPP_REDIRECT_LEN = 256


def _is_inapp_path(value: str | None) -> bool:
    if not isinstance(value, str) or len(value) > MAX_INAPP_REDIRECT_LEN:
        return False
    return bool(INAPP_PATH_PATTERN.match(value))


def _main():
    from backend.web import main

    return main


@auth_router.get("/auth/login")
async def auth_login(request: Request, redirect: str | None = None):
    """
    Start the OIDC flow with PKCE and server-side state; redirect to Keycloak.

    Behavior:
        - Generates code_verifier + S256 code_challenge and a nonce.
        - Keeps `redirect` only when it is an absolute in-app path.
        - 302 to the authorization endpoint with `Cache-Control: private, no-store`.
    Permissions:
        Public.
    """
    mod = _main()
    code_verifier = OIDCClient.generate_code_verifier()
    nonce = OIDCClient.generate_nonce()
    rec = mod.STATE_STORE.create(
        code_verifier=code_verifier,
        nonce=nonce,
        redirect=redirect if _is_inapp_path(redirect) else None,
    )
    url = mod.OIDC.build_authorization_url(
        state=rec.state,
        code_challenge=OIDCClient.code_challenge_s256(code_verifier),
        nonce=nonce,
    )
    return RedirectResponse(url=url, status_code=302, headers={"Cache-Control": "private, no-store"})


@auth_router.get("/auth/logout")
async def auth_logout(request: Request):
    """
    Clear the app session and redirect to the Keycloak end-session endpoint.

    Unknown or expired sessions still get the cookie expired and the redirect.
    """
    mod = _main()
    sid = request.cookies.get(mod.SESSION_COOKIE_NAME)
    id_token = None
    if sid:
        rec = mod.SESSION_STORE.get(sid)
        id_token = getattr(rec, "id_token", None) if rec else None
        mod.SESSION_STORE.delete(sid)
    url = mod.OIDC.build_logout_url(id_token_hint=id_token)
    resp = RedirectResponse(url=url, status_code=302, headers={"Cache-Control": "private, no-store"})
    opts = mod._session_cookie_options()
    resp.delete_cookie(
        mod.SESSION_COOKIE_NAME, path="/", secure=opts["secure"], httponly=True, samesite=opts["samesite"]
    )
    return resp
