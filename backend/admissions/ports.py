"""
Repository port for the admissions record store.

Both the Postgres adapter (`repo_db.DBAdmissionsRepo`) and the in-memory store
(`repo_memory.InMemoryAdmissionsRepo`) implement this protocol. Every call
receives the request-scoped caller id explicitly; the store reads the caller's
role fresh for each call and applies the row-level policies itself.

Failure contract:
    - `AuthorizationDenied` when no policy permits a write.
    - `NotFound` when the target row does not exist (or is invisible on read).
    - `ConstraintViolation` when a schema invariant rejects the write.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence

from .models import FollowUp, Inquiry, Profile

# Sentinel for "field not part of this update".
UNSET: Any = object()


@dataclass(frozen=True)
class RowOutcome:
    """Result of one row in a batch write."""

    id: str
    ok: bool
    error: Optional[str] = None
    record: Optional[Inquiry] = None


class AdmissionsRepoProtocol(Protocol):
    # identity bookkeeping
    def register_identity(self, caller_id: Optional[str], identity_id: str) -> None: ...

    def remove_identity(self, caller_id: Optional[str], identity_id: str) -> None: ...

    # profiles
    def list_profiles(
        self, caller_id: Optional[str], *, role: Optional[str] = None, is_active: Optional[bool] = None
    ) -> List[Profile]: ...

    def get_profile(self, caller_id: Optional[str], profile_id: str) -> Profile: ...

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
    ) -> Profile: ...

    def update_profile(
        self,
        caller_id: Optional[str],
        profile_id: str,
        *,
        email: Any = UNSET,
        full_name: Any = UNSET,
        role: Any = UNSET,
        is_active: Any = UNSET,
    ) -> Profile: ...

    def delete_profile(self, caller_id: Optional[str], profile_id: str) -> None: ...

    # inquiries
    def list_inquiries(
        self, caller_id: Optional[str], *, status: Optional[str] = None, assigned_to: Optional[str] = None
    ) -> List[Inquiry]: ...

    def get_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> Inquiry: ...

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
    ) -> Inquiry: ...

    def update_inquiry(self, caller_id: Optional[str], inquiry_id: str, **changes: Any) -> Inquiry: ...

    def update_inquiries(
        self, caller_id: Optional[str], inquiry_ids: Sequence[str], **changes: Any
    ) -> List[RowOutcome]: ...

    def delete_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> None: ...

    # follow-ups
    def list_follow_ups(self, caller_id: Optional[str], inquiry_id: str) -> List[FollowUp]: ...

    def get_follow_up(self, caller_id: Optional[str], follow_up_id: str) -> FollowUp: ...

    def insert_follow_up(
        self,
        caller_id: Optional[str],
        *,
        inquiry_id: str,
        notes: str,
        follow_up_date: str,
        voice_recording_url: Optional[str],
        created_by: Optional[str],
    ) -> FollowUp: ...

    def update_follow_up(self, caller_id: Optional[str], follow_up_id: str, **changes: Any) -> FollowUp: ...

    def delete_follow_up(self, caller_id: Optional[str], follow_up_id: str) -> None: ...


INQUIRY_MUTABLE_FIELDS = frozenset(
    {"student_name", "contact_number", "email", "course_interested", "more_input", "status", "assigned_to"}
)
FOLLOW_UP_MUTABLE_FIELDS = frozenset({"notes", "follow_up_date", "voice_recording_url"})


__all__ = [
    "AdmissionsRepoProtocol",
    "FOLLOW_UP_MUTABLE_FIELDS",
    "INQUIRY_MUTABLE_FIELDS",
    "RowOutcome",
    "UNSET",
]
