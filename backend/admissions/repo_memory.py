"""
In-memory admissions store that enforces the row-level policies in Python.

Why:
    Local development and most tests run without Postgres. This store behaves
    like the migrated schema: CHECK / NOT NULL / FK / UNIQUE constraints are
    validated first, then the matching policies from `policy.POLICIES` decide,
    and finally the write is applied together with cascade and set-null
    actions. Records handed out are copies; callers cannot mutate the store.

Concurrency:
    Each public call runs under one re-entrant lock, which stands in for the
    transaction the database would wrap around a statement. The caller's role
    is looked up inside that lock on every call.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from itertools import count
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import uuid4

from backend.identity_access.domain import Role

from .constraints import require_value, role_or_violation, status_or_violation
from .errors import AuthorizationDenied, ConstraintViolation, NotFound
from .models import FollowUp, Inquiry, Profile, utc_now_iso
from .policy import DEFAULT_ENGINE, CallerContext, Operation, PolicyEngine, Table
from .ports import FOLLOW_UP_MUTABLE_FIELDS, INQUIRY_MUTABLE_FIELDS, UNSET, RowOutcome

logger = logging.getLogger("admissions.repo.memory")


class InMemoryAdmissionsRepo:
    def __init__(self, engine: PolicyEngine | None = None) -> None:
        self._engine = engine or DEFAULT_ENGINE
        self._lock = threading.RLock()
        self._seq = count()
        self.identities: Set[str] = set()
        self.profiles: Dict[str, Profile] = {}
        self.inquiries: Dict[str, Inquiry] = {}
        self.follow_ups: Dict[str, FollowUp] = {}
        # insertion order used as a tie-breaker for equal timestamps
        self._order: Dict[str, int] = {}

    # --- caller & lookups -----------------------------------------------------------

    def caller_context(self, caller_id: Optional[str]) -> CallerContext:
        """Resolve the caller's current role from the profiles table."""
        if not caller_id:
            return CallerContext(caller_id=None)
        with self._lock:
            profile = self.profiles.get(caller_id)
            return CallerContext(caller_id=caller_id, role=profile.role if profile else None)

    def inquiry_for_policy(self, inquiry_id: str) -> Optional[Inquiry]:
        return self.inquiries.get(inquiry_id)

    def _newest_first(self, rows: List[Any]) -> List[Any]:
        return sorted(rows, key=lambda r: (r.created_at, self._order.get(r.id, 0)), reverse=True)

    def _track(self, row_id: str) -> None:
        self._order[row_id] = next(self._seq)

    # --- identities -----------------------------------------------------------------

    def register_identity(self, caller_id: Optional[str], identity_id: str) -> None:
        """Record an identity-provider account so a profile may reference it.

        Mirrors the `identity_accounts` insert policy: only a caller allowed to
        provision profiles may register accounts.
        """
        with self._lock:
            require_value(identity_id, "id")
            if identity_id in self.identities:
                raise ConstraintViolation("duplicate_identity")
            ctx = self.caller_context(caller_id)
            if not self._engine.allows(ctx, Table.PROFILES, Operation.INSERT, new=None):
                logger.info("policy denied register on identity_accounts")
                raise AuthorizationDenied()
            self.identities.add(identity_id)

    def bootstrap_admin(self, *, id: str, email: str, full_name: str) -> Profile:
        """Seed the first admin without a caller (service-role path).

        Used by development wiring and tests; there is no HTTP route for it.
        """
        with self._lock:
            if any(p.role is Role.ADMIN for p in self.profiles.values()):
                raise ConstraintViolation("admin_exists")
            now = utc_now_iso()
            profile = Profile(
                id=require_value(id, "id"),
                email=require_value(email, "email"),
                full_name=require_value(full_name, "full_name"),
                role=Role.ADMIN,
                created_by=None,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self.identities.add(id)
            self.profiles[id] = profile
            self._track(id)
            logger.warning("bootstrapped admin profile without caller")
            return replace(profile)

    def remove_identity(self, caller_id: Optional[str], identity_id: str) -> None:
        """Remove an identity account; cascades to its profile (admin only)."""
        with self._lock:
            if identity_id not in self.identities:
                raise NotFound()
            ctx = self.caller_context(caller_id)
            profile = self.profiles.get(identity_id)
            if profile is not None:
                self._engine.require(ctx, Table.PROFILES, Operation.DELETE, old=profile)
            elif not self._engine.allows(ctx, Table.PROFILES, Operation.INSERT, new=None):
                # account without profile: only someone able to provision may clean it up
                logger.info("policy denied remove on identity_accounts")
                raise AuthorizationDenied()
            self.identities.discard(identity_id)
            for other in self.profiles.values():
                if other.created_by == identity_id:
                    other.created_by = None
            if profile is not None:
                self._drop_profile(identity_id)

    # --- profiles -------------------------------------------------------------------

    def list_profiles(
        self, caller_id: Optional[str], *, role: Optional[str] = None, is_active: Optional[bool] = None
    ) -> List[Profile]:
        with self._lock:
            ctx = self.caller_context(caller_id)
            rows = self._engine.visible(ctx, Table.PROFILES, self.profiles.values())
            if role is not None:
                wanted = role_or_violation(role)
                rows = [p for p in rows if p.role is wanted]
            if is_active is not None:
                rows = [p for p in rows if p.is_active is bool(is_active)]
            return [replace(p) for p in self._newest_first(rows)]

    def get_profile(self, caller_id: Optional[str], profile_id: str) -> Profile:
        with self._lock:
            ctx = self.caller_context(caller_id)
            profile = self.profiles.get(profile_id)
            if profile is None or not self._engine.allows(ctx, Table.PROFILES, Operation.SELECT, old=profile):
                raise NotFound()
            return replace(profile)

    def insert_profile(
        self,
        caller_id: Optional[str],
        *,
        id: str,
        email: str,
        full_name: str,
        role: str,
        created_by: Optional[str],
        is_active: bool = True,
    ) -> Profile:
        with self._lock:
            require_value(id, "id")
            require_value(email, "email")
            require_value(full_name, "full_name")
            parsed_role = role_or_violation(role)
            if id not in self.identities:
                raise ConstraintViolation("unknown_identity")
            if id in self.profiles:
                raise ConstraintViolation("duplicate_profile")
            if any(p.email == email for p in self.profiles.values()):
                raise ConstraintViolation("duplicate_email")
            if created_by is not None and created_by not in self.identities:
                raise ConstraintViolation("unknown_identity")
            now = utc_now_iso()
            profile = Profile(
                id=id,
                email=email,
                full_name=full_name,
                role=parsed_role,
                created_by=created_by,
                is_active=bool(is_active),
                created_at=now,
                updated_at=now,
            )
            ctx = self.caller_context(caller_id)
            self._engine.require(ctx, Table.PROFILES, Operation.INSERT, new=profile)
            self.profiles[id] = profile
            self._track(id)
            return replace(profile)

    def update_profile(
        self,
        caller_id: Optional[str],
        profile_id: str,
        *,
        email: Any = UNSET,
        full_name: Any = UNSET,
        role: Any = UNSET,
        is_active: Any = UNSET,
    ) -> Profile:
        with self._lock:
            current = self.profiles.get(profile_id)
            if current is None:
                raise NotFound()
            new = replace(current)
            if email is not UNSET:
                new.email = require_value(email, "email")
                if any(p.email == email and p.id != profile_id for p in self.profiles.values()):
                    raise ConstraintViolation("duplicate_email")
            if full_name is not UNSET:
                new.full_name = require_value(full_name, "full_name")
            if role is not UNSET:
                new.role = role_or_violation(role)
            if is_active is not UNSET:
                if is_active is None:
                    raise ConstraintViolation("missing_is_active")
                new.is_active = bool(is_active)
            ctx = self.caller_context(caller_id)
            self._engine.require(ctx, Table.PROFILES, Operation.UPDATE, old=current, new=new)
            new.updated_at = utc_now_iso()
            self.profiles[profile_id] = new
            return replace(new)

    def delete_profile(self, caller_id: Optional[str], profile_id: str) -> None:
        with self._lock:
            current = self.profiles.get(profile_id)
            if current is None:
                raise NotFound()
            ctx = self.caller_context(caller_id)
            self._engine.require(ctx, Table.PROFILES, Operation.DELETE, old=current)
            self._drop_profile(profile_id)

    def _drop_profile(self, profile_id: str) -> None:
        self.profiles.pop(profile_id, None)
        for inquiry in self.inquiries.values():
            if inquiry.assigned_to == profile_id:
                inquiry.assigned_to = None
            if inquiry.created_by == profile_id:
                inquiry.created_by = None
        for follow_up in self.follow_ups.values():
            if follow_up.created_by == profile_id:
                follow_up.created_by = None

    # --- inquiries ------------------------------------------------------------------

    def list_inquiries(
        self, caller_id: Optional[str], *, status: Optional[str] = None, assigned_to: Optional[str] = None
    ) -> List[Inquiry]:
        with self._lock:
            ctx = self.caller_context(caller_id)
            rows = self._engine.visible(ctx, Table.INQUIRIES, self.inquiries.values())
            if status is not None:
                wanted = status_or_violation(status)
                rows = [i for i in rows if i.status is wanted]
            if assigned_to is not None:
                rows = [i for i in rows if i.assigned_to == assigned_to]
            return [replace(i) for i in self._newest_first(rows)]

    def get_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> Inquiry:
        with self._lock:
            ctx = self.caller_context(caller_id)
            inquiry = self.inquiries.get(inquiry_id)
            if inquiry is None or not self._engine.allows(ctx, Table.INQUIRIES, Operation.SELECT, old=inquiry):
                raise NotFound()
            return replace(inquiry)

    def insert_inquiry(
        self,
        caller_id: Optional[str],
        *,
        student_name: str,
        contact_number: str,
        email: Optional[str],
        course_interested: str,
        more_input: Optional[str],
        status: str = "pending",
        assigned_to: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Inquiry:
        with self._lock:
            now = utc_now_iso()
            inquiry = Inquiry(
                id=str(uuid4()),
                student_name=require_value(student_name, "student_name"),
                contact_number=require_value(contact_number, "contact_number"),
                email=email,
                course_interested=require_value(course_interested, "course_interested"),
                more_input=more_input,
                status=status_or_violation(status),
                assigned_to=assigned_to,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            self._check_profile_refs(inquiry.assigned_to, inquiry.created_by)
            ctx = self.caller_context(caller_id)
            self._engine.require(ctx, Table.INQUIRIES, Operation.INSERT, new=inquiry)
            self.inquiries[inquiry.id] = inquiry
            self._track(inquiry.id)
            return replace(inquiry)

    def update_inquiry(self, caller_id: Optional[str], inquiry_id: str, **changes: Any) -> Inquiry:
        with self._lock:
            current = self.inquiries.get(inquiry_id)
            if current is None:
                raise NotFound()
            new = self._apply_inquiry_changes(current, changes)
            ctx = self.caller_context(caller_id)
            self._engine.require(ctx, Table.INQUIRIES, Operation.UPDATE, old=current, new=new)
            new.updated_at = utc_now_iso()
            self.inquiries[inquiry_id] = new
            return replace(new)

    def update_inquiries(
        self, caller_id: Optional[str], inquiry_ids: Sequence[str], **changes: Any
    ) -> List[RowOutcome]:
        """Apply the same change to several rows; each row succeeds or fails on its own."""
        if set(changes) - INQUIRY_MUTABLE_FIELDS:
            raise ValueError("invalid_fields")
        outcomes: List[RowOutcome] = []
        with self._lock:
            for inquiry_id in inquiry_ids:
                try:
                    record = self.update_inquiry(caller_id, inquiry_id, **changes)
                except (AuthorizationDenied, NotFound, ConstraintViolation) as exc:
                    outcomes.append(RowOutcome(id=inquiry_id, ok=False, error=exc.code))
                else:
                    outcomes.append(RowOutcome(id=inquiry_id, ok=True, record=record))
        return outcomes

    def delete_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> None:
        with self._lock:
            current = self.inquiries.get(inquiry_id)
            if current is None:
                raise NotFound()
            ctx = self.caller_context(caller_id)
            self._engine.require(ctx, Table.INQUIRIES, Operation.DELETE, old=current)
            self.inquiries.pop(inquiry_id, None)
            for fid in [f.id for f in self.follow_ups.values() if f.inquiry_id == inquiry_id]:
                self.follow_ups.pop(fid, None)

    def _apply_inquiry_changes(self, current: Inquiry, changes: Dict[str, Any]) -> Inquiry:
        unknown = set(changes) - INQUIRY_MUTABLE_FIELDS
        if unknown:
            raise ValueError("invalid_fields")
        new = replace(current)
        for field, value in changes.items():
            if field in ("student_name", "contact_number", "course_interested"):
                setattr(new, field, require_value(value, field))
            elif field == "status":
                new.status = status_or_violation(value)
            else:
                setattr(new, field, value)
        if "assigned_to" in changes:
            self._check_profile_refs(new.assigned_to, None)
        return new

    def _check_profile_refs(self, *profile_ids: Optional[str]) -> None:
        for pid in profile_ids:
            if pid is not None and pid not in self.profiles:
                raise ConstraintViolation("unknown_profile")

    # --- follow-ups -----------------------------------------------------------------

    def list_follow_ups(self, caller_id: Optional[str], inquiry_id: str) -> List[FollowUp]:
        with self._lock:
            ctx = self.caller_context(caller_id)
            rows = [f for f in self.follow_ups.values() if f.inquiry_id == inquiry_id]
            rows = self._engine.visible(ctx, Table.FOLLOW_UPS, rows, lookups=self)
            return [replace(f) for f in self._newest_first(rows)]

    def get_follow_up(self, caller_id: Optional[str], follow_up_id: str) -> FollowUp:
        with self._lock:
            ctx = self.caller_context(caller_id)
            row = self.follow_ups.get(follow_up_id)
            if row is None or not self._engine.allows(
                ctx, Table.FOLLOW_UPS, Operation.SELECT, old=row, lookups=self
            ):
                raise NotFound()
            return replace(row)

    def insert_follow_up(
        self,
        caller_id: Optional[str],
        *,
        inquiry_id: str,
        notes: str,
        follow_up_date: str,
        voice_recording_url: Optional[str],
        created_by: Optional[str],
    ) -> FollowUp:
        with self._lock:
            require_value(inquiry_id, "inquiry_id")
            if inquiry_id not in self.inquiries:
                raise ConstraintViolation("unknown_inquiry")
            row = FollowUp(
                id=str(uuid4()),
                inquiry_id=inquiry_id,
                notes=require_value(notes, "notes"),
                follow_up_date=require_value(follow_up_date, "follow_up_date"),
                voice_recording_url=voice_recording_url,
                created_by=created_by,
                created_at=utc_now_iso(),
            )
            self._check_profile_refs(created_by)
            ctx = self.caller_context(caller_id)
            self._engine.require(ctx, Table.FOLLOW_UPS, Operation.INSERT, new=row, lookups=self)
            self.follow_ups[row.id] = row
            self._track(row.id)
            return replace(row)

    def update_follow_up(self, caller_id: Optional[str], follow_up_id: str, **changes: Any) -> FollowUp:
        with self._lock:
            current = self.follow_ups.get(follow_up_id)
            if current is None:
                raise NotFound()
            unknown = set(changes) - FOLLOW_UP_MUTABLE_FIELDS
            if unknown:
                raise ValueError("invalid_fields")
            new = replace(current)
            for field, value in changes.items():
                if field in ("notes", "follow_up_date"):
                    setattr(new, field, require_value(value, field))
                else:
                    setattr(new, field, value)
            ctx = self.caller_context(caller_id)
            # Postgres applies the select policy to UPDATE ... RETURNING as well.
            self._engine.require(ctx, Table.FOLLOW_UPS, Operation.SELECT, old=current, lookups=self)
            self._engine.require(ctx, Table.FOLLOW_UPS, Operation.UPDATE, old=current, new=new, lookups=self)
            self.follow_ups[follow_up_id] = new
            return replace(new)

    def delete_follow_up(self, caller_id: Optional[str], follow_up_id: str) -> None:
        with self._lock:
            current = self.follow_ups.get(follow_up_id)
            if current is None:
                raise NotFound()
            ctx = self.caller_context(caller_id)
            self._engine.require(ctx, Table.FOLLOW_UPS, Operation.DELETE, old=current, lookups=self)
            self.follow_ups.pop(follow_up_id, None)


__all__ = ["InMemoryAdmissionsRepo"]
