"""
Profiles API routes (team pages, account provisioning and removal).

Why:
    Admins manage staff accounts: an account is a Keycloak user plus a profile
    row carrying the role. Co-leaders and employees can read what the profile
    policies let them see; every write is decided by the record store.

Notes:
    - `GET /api/profiles/assignable` is declared before `/api/profiles/{id}` so
      the literal path wins.
    - Identity-provider outages surface as 502/503 and never leave a profile
      without a login (see `ProfilesService.provision_account`).
"""
from __future__ import annotations

import logging
from typing import Any

import psycopg
import requests
from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.admissions.errors import AdmissionsError
from backend.admissions.models import to_dict
from backend.admissions.services.profiles import ProfilesService

from ..repo_wiring import get_identity_admin, get_repo
from .security import (
    _bad_request,
    _csrf_guard,
    _current_sub,
    _domain_error,
    _json_private,
    _no_content,
    _private_error,
)

profiles_router = APIRouter(tags=["Profiles"])
logger = logging.getLogger("admissions.web.profiles")


def _service() -> ProfilesService:
    return ProfilesService(get_repo(), identity_admin=get_identity_admin())


def _parse_active(raw: str | None) -> tuple[bool | None, bool]:
    """Return (value, ok) for the optional `active` query flag."""
    if raw is None:
        return None, True
    lowered = raw.strip().lower()
    if lowered in ("true", "1"):
        return True, True
    if lowered in ("false", "0"):
        return False, True
    return None, False


class ProvisionPayload(BaseModel):
    email: Any = None
    full_name: Any = None
    password: Any = None
    role: Any = "employee"


class ProfileUpdatePayload(BaseModel):
    full_name: Any = None
    role: Any = None
    is_active: Any = None


@profiles_router.get("/api/profiles")
async def list_profiles(request: Request, role: str | None = None, active: str | None = None):
    """List profiles visible to the caller (employees see only themselves)."""
    is_active, ok = _parse_active(active)
    if not ok:
        return _bad_request("invalid_active")
    try:
        rows = _service().list_team(_current_sub(request), role=role, is_active=is_active)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private([to_dict(p) for p in rows])


@profiles_router.get("/api/profiles/assignable")
async def list_assignable_profiles(request: Request):
    """Active profiles for the assignment picker, ordered by full name."""
    try:
        rows = _service().assignable_profiles(_current_sub(request))
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private([{"id": p.id, "full_name": p.full_name, "role": p.role.value} for p in rows])


@profiles_router.get("/api/profiles/{profile_id}")
async def get_profile(request: Request, profile_id: str):
    try:
        profile = _service().get_profile(_current_sub(request), profile_id)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private(to_dict(profile))


@profiles_router.post("/api/profiles")
async def provision_profile(request: Request, payload: ProvisionPayload):
    """Create a staff account (Keycloak user + profile); admins only.

    Behavior:
        - 201 with the new profile
        - 400 on invalid email/name/password/role or an already registered email
        - 403 when the caller may not insert profiles (checked before Keycloak is called)
        - 502 when Keycloak rejects the call; 503 when provisioning is not configured
        - 503 `database_unavailable` when the profile write fails in the driver (the Keycloak user is removed again)
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        profile = _service().provision_account(_current_sub(request), **payload.model_dump())
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    except requests.RequestException as exc:
        logger.warning("Account provisioning failed at identity provider: %s", exc.__class__.__name__)
        return _private_error({"error": "bad_gateway", "detail": "identity_provider_error"}, status_code=502)
    except psycopg.Error as exc:
        logger.warning("Account provisioning failed at the database: %s", exc.__class__.__name__)
        return _private_error({"error": "service_unavailable", "detail": "database_unavailable"}, status_code=503)
    except RuntimeError as exc:
        logger.warning("Account provisioning unavailable: %s", exc)
        return _private_error(
            {"error": "service_unavailable", "detail": "identity_admin_unavailable"}, status_code=503
        )
    return _json_private(to_dict(profile), status_code=201)


@profiles_router.patch("/api/profiles/{profile_id}")
async def update_profile(request: Request, profile_id: str, payload: ProfileUpdatePayload):
    """Rename, change role (promote/demote) or (de)activate a profile; admins only."""
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        updated = _service().update_profile(
            _current_sub(request), profile_id, **payload.model_dump(exclude_unset=True)
        )
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private(to_dict(updated))


@profiles_router.delete("/api/profiles/{profile_id}")
async def remove_profile(request: Request, profile_id: str):
    """Remove an account; assigned inquiries stay and lose their assignee."""
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _service().remove_account(_current_sub(request), profile_id)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _no_content()
