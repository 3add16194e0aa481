"""
Record store and identity-admin wiring for the web adapters.

Why:
    All admissions routers share one repository instance so that the in-memory
    store (dev/tests) behaves like one database. The Postgres repo is preferred;
    the in-memory store is used when ADMISSIONS_REPO=memory or when psycopg /
    the DSN are unavailable outside production.

Tests call `set_repo` / `set_identity_admin` to swap implementations.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from backend.admissions.repo_memory import InMemoryAdmissionsRepo
from backend.admissions.services.profiles import IdentityAdminProtocol
from backend.web.config import PROD_LIKE_ENVS

try:  # late import to avoid a hard dependency on psycopg during unit tests
    from backend.admissions.repo_db import DBAdmissionsRepo  # type: ignore
except ImportError as exc:  # pragma: no cover - import failures in dev/test envs
    DBAdmissionsRepo = None  # type: ignore
    _DB_REPO_IMPORT_ERROR: Optional[Exception] = exc
else:
    _DB_REPO_IMPORT_ERROR = None

logger = logging.getLogger("admissions.web.wiring")


def _build_default_repo():
    """Prefer DBAdmissionsRepo; fall back to the in-memory store if unavailable."""
    if (os.getenv("ADMISSIONS_REPO", "db") or "").strip().lower() == "memory":
        return InMemoryAdmissionsRepo()
    if DBAdmissionsRepo is None:
        logger.warning("Admissions repo import failed: %s", _DB_REPO_IMPORT_ERROR)
        return InMemoryAdmissionsRepo()
    try:
        return DBAdmissionsRepo()
    except RuntimeError as exc:
        if (os.getenv("ADMISSIONS_ENV", "") or "").strip().lower() in PROD_LIKE_ENVS:
            raise
        logger.warning("Admissions repo unavailable (%s); using in-memory fallback", exc)
        return InMemoryAdmissionsRepo()


_REPO = None
_IDENTITY_ADMIN: Optional[IdentityAdminProtocol] = None
_IDENTITY_ADMIN_WIRED = False


def get_repo():
    global _REPO
    if _REPO is None:
        _REPO = _build_default_repo()
    return _REPO


def set_repo(repo) -> None:
    """Allow tests to swap the admissions repository implementation."""
    global _REPO
    _REPO = repo


def _build_identity_admin() -> Optional[IdentityAdminProtocol]:
    from backend.identity_access.admin_client import AdminClient
    from backend.identity_access.oidc import OIDCConfig

    if not (os.getenv("KC_ADMIN_CLIENT_SECRET") or os.getenv("KC_ADMIN_USERNAME")):
        logger.warning("Keycloak admin credentials not configured; account provisioning disabled")
        return None
    return AdminClient(OIDCConfig.from_env())


def get_identity_admin() -> Optional[IdentityAdminProtocol]:
    global _IDENTITY_ADMIN, _IDENTITY_ADMIN_WIRED
    if not _IDENTITY_ADMIN_WIRED:
        _IDENTITY_ADMIN = _build_identity_admin()
        _IDENTITY_ADMIN_WIRED = True
    return _IDENTITY_ADMIN


def set_identity_admin(admin: Optional[IdentityAdminProtocol]) -> None:
    """Allow tests to provide a fake identity admin (or None to disable provisioning)."""
    global _IDENTITY_ADMIN, _IDENTITY_ADMIN_WIRED
    _IDENTITY_ADMIN = admin
    _IDENTITY_ADMIN_WIRED = True
