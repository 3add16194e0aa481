"""Profiles service layer: team listing and account provisioning.

Why:
    A staff account has two halves: the identity-provider user (Keycloak) that
    can log in, and the `profiles` row carrying the access-control role. This
    service keeps both in step: the identity account is created first, and
    removed again when the profile insert fails; removing an account deletes
    the local identity (cascading to the profile) and then the Keycloak user.

Security:
    The repository remains the enforcement boundary. Before touching the
    identity provider, provisioning asks the same policy engine whether the
    caller may insert profiles, so that a denied request leaves no orphaned
    Keycloak user behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import requests

from backend.identity_access.domain import Role, parse_role

from ..errors import AuthorizationDenied, NotFound
from ..models import Profile
from ..policy import DEFAULT_ENGINE, CallerContext, Operation, Table
from ..ports import UNSET, AdmissionsRepoProtocol
from .inquiries import normalize_optional_email

logger = logging.getLogger("admissions.identity_access")

MIN_PASSWORD_LENGTH = 8


class IdentityAdminProtocol(Protocol):
    def create_user(self, *, email: str, password: str, display_name: str | None = None) -> str:
        ...

    def delete_user(self, *, user_id: str) -> None:
        ...


def _normalize_full_name(value: object) -> str:
    if value is None or not isinstance(value, str):
        raise ValueError("invalid_full_name")
    trimmed = " ".join(value.split())
    if not trimmed or len(trimmed) > 120:
        raise ValueError("invalid_full_name")
    return trimmed


def _normalize_email(value: object) -> str:
    email = normalize_optional_email(value)
    if email is None:
        raise ValueError("invalid_email")
    return email


def _normalize_password(value: object) -> str:
    if not isinstance(value, str) or len(value) < MIN_PASSWORD_LENGTH or len(value) > 256:
        raise ValueError("invalid_password")
    return value


def _normalize_role(value: object) -> Role:
    # parse_role raises ValueError("invalid_role")
    return parse_role(value)


@dataclass
class ProfilesService:
    """Use cases behind the Employees / Co-Leaders pages."""

    repo: AdmissionsRepoProtocol
    identity_admin: Optional[IdentityAdminProtocol] = None

    # --- reads ----------------------------------------------------------------------

    def me(self, caller_id: Optional[str]) -> Profile:
        if not caller_id:
            raise NotFound()
        return self.repo.get_profile(caller_id, caller_id)

    def get_profile(self, caller_id: Optional[str], profile_id: str) -> Profile:
        return self.repo.get_profile(caller_id, profile_id)

    def list_team(
        self, caller_id: Optional[str], *, role: object = None, is_active: Optional[bool] = None
    ) -> List[Profile]:
        role_value = _normalize_role(role).value if role is not None else None
        return self.repo.list_profiles(caller_id, role=role_value, is_active=is_active)

    def assignable_profiles(self, caller_id: Optional[str]) -> List[Profile]:
        """Active profiles the caller can see, ordered by full name."""
        rows = self.repo.list_profiles(caller_id, is_active=True)
        return sorted(rows, key=lambda p: (p.full_name.casefold(), p.id))

    # --- provisioning ---------------------------------------------------------------

    def provision_account(
        self,
        caller_id: Optional[str],
        *,
        email: object,
        full_name: object,
        password: object,
        role: object,
    ) -> Profile:
        email_value = _normalize_email(email)
        name_value = _normalize_full_name(full_name)
        password_value = _normalize_password(password)
        role_value = _normalize_role(role)
        self._require_provisioning_rights(caller_id)
        if self.identity_admin is None:
            raise RuntimeError("identity_admin_unavailable")

        user_id = self.identity_admin.create_user(
            email=email_value, password=password_value, display_name=name_value
        )
        registered = False
        try:
            self.repo.register_identity(caller_id, user_id)
            registered = True
            return self.repo.insert_profile(
                caller_id,
                id=user_id,
                email=email_value,
                full_name=name_value,
                role=role_value.value,
                created_by=caller_id,
                is_active=True,
            )
        except Exception:
            # Includes raw driver errors; the login must not outlive a failed profile write.
            self._rollback_identity(caller_id, user_id, registered=registered)
            raise

    def _require_provisioning_rights(self, caller_id: Optional[str]) -> None:
        role: Optional[Role] = None
        if caller_id:
            try:
                role = self.repo.get_profile(caller_id, caller_id).role
            except NotFound:
                role = None
        ctx = CallerContext(caller_id=caller_id, role=role)
        if not DEFAULT_ENGINE.allows(ctx, Table.PROFILES, Operation.INSERT):
            raise AuthorizationDenied()

    def _rollback_identity(self, caller_id: Optional[str], user_id: str, *, registered: bool) -> None:
        if registered:
            try:
                self.repo.remove_identity(caller_id, user_id)
            except Exception as exc:
                logger.warning("Identity rollback (local) failed: %s", exc.__class__.__name__)
        try:
            self.identity_admin.delete_user(user_id=user_id)  # type: ignore[union-attr]
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Identity rollback (provider) failed: %s", exc.__class__.__name__)

    # --- mutations ------------------------------------------------------------------

    def update_profile(
        self,
        caller_id: Optional[str],
        profile_id: str,
        *,
        full_name: object = UNSET,
        role: object = UNSET,
        is_active: object = UNSET,
    ) -> Profile:
        changes: Dict[str, Any] = {}
        if full_name is not UNSET:
            changes["full_name"] = _normalize_full_name(full_name)
        if role is not UNSET:
            changes["role"] = _normalize_role(role).value
        if is_active is not UNSET:
            if not isinstance(is_active, bool):
                raise ValueError("invalid_is_active")
            changes["is_active"] = is_active
        return self.repo.update_profile(caller_id, profile_id, **changes)

    def change_role(self, caller_id: Optional[str], profile_id: str, role: object) -> Profile:
        return self.update_profile(caller_id, profile_id, role=role)

    def demote_to_employee(self, caller_id: Optional[str], profile_id: str) -> Profile:
        return self.change_role(caller_id, profile_id, Role.EMPLOYEE)

    def toggle_active(self, caller_id: Optional[str], profile_id: str) -> Profile:
        current = self.repo.get_profile(caller_id, profile_id)
        return self.update_profile(caller_id, profile_id, is_active=not current.is_active)

    def remove_account(self, caller_id: Optional[str], profile_id: str) -> None:
        """Delete the account: local identity (cascades to the profile), then Keycloak."""
        self.repo.remove_identity(caller_id, profile_id)
        if self.identity_admin is None:
            logger.warning("Identity provider unavailable; Keycloak user left in place")
            return
        try:
            self.identity_admin.delete_user(user_id=profile_id)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Keycloak user deletion failed: %s", exc.__class__.__name__)


__all__ = ["IdentityAdminProtocol", "MIN_PASSWORD_LENGTH", "ProfilesService"]
