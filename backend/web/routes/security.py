"""
Shared web security and response helpers for the admissions routers.

Contains the CSRF same-origin check, the private (no-store) JSON responses and
the mapping from admissions domain errors to HTTP error payloads. Keeping a
single implementation avoids drift between routers.
"""
from __future__ import annotations

import os
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from backend.admissions.errors import AdmissionsError, AuthorizationDenied, ConstraintViolation, NotFound


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, p.hostname.lower(), int(port)


def _first(value: str) -> str:
    return value.split(",")[0].strip()


def _server_origin(request: Request) -> tuple[str, str, int]:
    """Origin the server is reachable under; X-Forwarded-* only when trusted."""
    trust_proxy = (os.getenv("ADMISSIONS_TRUST_PROXY", "false") or "").lower() == "true"
    if not trust_proxy:
        scheme = (request.url.scheme or "http").lower()
        host = (request.url.hostname or "").lower()
        port = int(request.url.port) if request.url.port else _default_port(scheme)
        return scheme, host, port

    scheme = (_first(request.headers.get("x-forwarded-proto") or "") or request.url.scheme or "http").lower()
    host_raw = _first(request.headers.get("x-forwarded-host") or request.headers.get("host") or "")
    if ":" in host_raw:
        host, port_str = host_raw.rsplit(":", 1)
        port = int(port_str) if port_str.isdigit() else _default_port(scheme)
    else:
        host = host_raw or (request.url.hostname or "")
        port = int(request.url.port) if request.url.port else _default_port(scheme)
    xf_port = _first(request.headers.get("x-forwarded-port") or "")
    if xf_port:
        port = int(xf_port) if xf_port.isdigit() else _default_port(scheme)
    return scheme, host.lower(), port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    Proxy awareness: Only trust X-Forwarded-* when ADMISSIONS_TRUST_PROXY=true.
    """
    candidate = request.headers.get("origin") or request.headers.get("referer")
    if not candidate:
        return True
    try:
        return _parse_origin(candidate) == _server_origin(request)
    except ValueError:
        return False


def _strict_csrf() -> bool:
    prod_env = (os.getenv("ADMISSIONS_ENV", "dev") or "").lower() in {"prod", "production"}
    strict_toggle = (os.getenv("STRICT_CSRF_WRITES", "false") or "").lower() == "true"
    return prod_env or strict_toggle


def _csrf_guard(request: Request) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    In production or with STRICT_CSRF_WRITES=true an Origin or Referer header is
    mandatory; otherwise requests without either header pass (API clients).
    """
    if _strict_csrf() and not (request.headers.get("origin") or request.headers.get("referer")):
        return _private_error({"error": "forbidden", "detail": "csrf_violation"}, status_code=403)
    if not _is_same_origin(request):
        return _private_error({"error": "forbidden", "detail": "csrf_violation"}, status_code=403)
    return None


def _json_private(payload, *, status_code: int = 200, vary_origin: bool = False) -> JSONResponse:
    """Return a JSONResponse that shared caches and browsers must not store.

    Admissions endpoints expose role-scoped data; the visible row set differs
    per caller.
    """
    headers = {"Cache-Control": "private, no-store"}
    if vary_origin:
        headers["Vary"] = "Origin"
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


def _private_error(payload: dict, *, status_code: int, vary_origin: bool = False) -> JSONResponse:
    return _json_private(payload, status_code=status_code, vary_origin=vary_origin)


def _no_content() -> Response:
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


def _bad_request(detail: str) -> JSONResponse:
    return _private_error({"error": "bad_request", "detail": detail}, status_code=400)


def _domain_error(exc: Exception) -> JSONResponse:
    """Translate service/repo exceptions into the API error contract."""
    if isinstance(exc, NotFound):
        return _private_error({"error": "not_found"}, status_code=404)
    if isinstance(exc, AuthorizationDenied):
        return _private_error({"error": "forbidden"}, status_code=403)
    if isinstance(exc, ConstraintViolation):
        return _bad_request(exc.code)
    if isinstance(exc, AdmissionsError):
        return _bad_request(exc.code or "invalid_input")
    if isinstance(exc, ValueError):
        return _bad_request(str(exc) or "invalid_input")
    raise exc


def _current_sub(request: Request) -> str | None:
    user = getattr(request.state, "user", None) or {}
    sub = user.get("sub") if isinstance(user, dict) else None
    return str(sub) if sub else None
