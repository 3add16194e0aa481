"""Inquiries service layer (framework-free use cases).

Why:
    Keeps input normalization and the search/assign flows out of the FastAPI
    adapter. Authorization stays with the repository: this layer only shapes
    values and never decides who may do what.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..errors import NotFound
from ..models import Inquiry, InquiryStatus, parse_status
from ..ports import UNSET, AdmissionsRepoProtocol, RowOutcome

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^[0-9+()\-\s./]{3,32}$")


def _normalize_text(value: object, code: str, *, max_len: int = 200) -> str:
    if value is None or not isinstance(value, str):
        raise ValueError(code)
    trimmed = value.strip()
    if not trimmed or len(trimmed) > max_len:
        raise ValueError(code)
    return trimmed


def _normalize_contact_number(value: object) -> str:
    trimmed = _normalize_text(value, "invalid_contact_number", max_len=32)
    if not _PHONE_RE.match(trimmed) or not any(ch.isdigit() for ch in trimmed):
        raise ValueError("invalid_contact_number")
    return trimmed


def normalize_optional_email(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("invalid_email")
    trimmed = value.strip().lower()
    if not trimmed:
        return None
    if len(trimmed) > 254 or not _EMAIL_RE.match(trimmed):
        raise ValueError("invalid_email")
    return trimmed


def _normalize_more_input(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("invalid_more_input")
    trimmed = value.strip()
    if len(trimmed) > 5000:
        raise ValueError("invalid_more_input")
    return trimmed or None


def _normalize_status(value: object) -> InquiryStatus:
    # parse_status already raises ValueError("invalid_status")
    return parse_status(value)


def _normalize_assignee(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValueError("invalid_assigned_to")
    return value.strip()


def matches_search(inquiry: Inquiry, term: str) -> bool:
    """Case-insensitive substring match over the searchable columns.

    The contact number is compared verbatim since it is mostly digits.
    """
    needle = term.lower()
    if needle in inquiry.student_name.lower():
        return True
    if term in inquiry.contact_number:
        return True
    if inquiry.email and needle in inquiry.email.lower():
        return True
    return needle in inquiry.course_interested.lower()


@dataclass
class InquiriesService:
    """Use cases for inquiries: create, search, update, assign, delete."""

    repo: AdmissionsRepoProtocol

    def list_inquiries(
        self,
        caller_id: Optional[str],
        *,
        status: object = None,
        assigned_to: Optional[str] = None,
        q: Optional[str] = None,
    ) -> List[Inquiry]:
        status_value = _normalize_status(status).value if status is not None else None
        rows = self.repo.list_inquiries(caller_id, status=status_value, assigned_to=assigned_to)
        term = (q or "").strip()
        if term:
            rows = [row for row in rows if matches_search(row, term)]
        return rows

    def get_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> Inquiry:
        return self.repo.get_inquiry(caller_id, inquiry_id)

    def create_inquiry(
        self,
        caller_id: Optional[str],
        *,
        student_name: object,
        contact_number: object,
        course_interested: object,
        email: object = None,
        more_input: object = None,
        status: object = InquiryStatus.PENDING,
        assigned_to: object = None,
    ) -> Inquiry:
        return self.repo.insert_inquiry(
            caller_id,
            student_name=_normalize_text(student_name, "invalid_student_name"),
            contact_number=_normalize_contact_number(contact_number),
            email=normalize_optional_email(email),
            course_interested=_normalize_text(course_interested, "invalid_course_interested"),
            more_input=_normalize_more_input(more_input),
            status=_normalize_status(status).value,
            assigned_to=_normalize_assignee(assigned_to),
            created_by=caller_id,
        )

    def update_inquiry(
        self,
        caller_id: Optional[str],
        inquiry_id: str,
        *,
        student_name: object = UNSET,
        contact_number: object = UNSET,
        email: object = UNSET,
        course_interested: object = UNSET,
        more_input: object = UNSET,
        status: object = UNSET,
        assigned_to: object = UNSET,
    ) -> Inquiry:
        changes: Dict[str, Any] = {}
        if student_name is not UNSET:
            changes["student_name"] = _normalize_text(student_name, "invalid_student_name")
        if contact_number is not UNSET:
            changes["contact_number"] = _normalize_contact_number(contact_number)
        if email is not UNSET:
            changes["email"] = normalize_optional_email(email)
        if course_interested is not UNSET:
            changes["course_interested"] = _normalize_text(course_interested, "invalid_course_interested")
        if more_input is not UNSET:
            changes["more_input"] = _normalize_more_input(more_input)
        if status is not UNSET:
            changes["status"] = _normalize_status(status).value
        if assigned_to is not UNSET:
            assignee = _normalize_assignee(assigned_to)
            self._ensure_assignable(caller_id, assignee)
            changes["assigned_to"] = assignee
        return self.repo.update_inquiry(caller_id, inquiry_id, **changes)

    def set_status(self, caller_id: Optional[str], inquiry_id: str, status: object) -> Inquiry:
        return self.update_inquiry(caller_id, inquiry_id, status=status)

    def assign(self, caller_id: Optional[str], inquiry_id: str, assignee_id: object) -> Inquiry:
        return self.update_inquiry(caller_id, inquiry_id, assigned_to=assignee_id)

    def bulk_assign(
        self, caller_id: Optional[str], inquiry_ids: Sequence[str], assignee_id: object
    ) -> List[RowOutcome]:
        if isinstance(inquiry_ids, str) or not inquiry_ids:
            raise ValueError("invalid_inquiry_ids")
        ids = list(dict.fromkeys(str(i) for i in inquiry_ids))
        if len(ids) > 200:
            raise ValueError("invalid_inquiry_ids")
        assignee = _normalize_assignee(assignee_id)
        self._ensure_assignable(caller_id, assignee)
        return self.repo.update_inquiries(caller_id, ids, assigned_to=assignee)

    def delete_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> None:
        self.repo.delete_inquiry(caller_id, inquiry_id)

    def _ensure_assignable(self, caller_id: Optional[str], assignee: Optional[str]) -> None:
        """Reject deactivated assignees when the caller can see them.

        Unknown or invisible assignees fall through to the store, which reports
        the FK violation or the policy denial itself.
        """
        if assignee is None:
            return
        try:
            profile = self.repo.get_profile(caller_id, assignee)
        except NotFound:
            return
        if not profile.is_active:
            raise ValueError("inactive_assignee")


__all__ = ["InquiriesService", "matches_search", "normalize_optional_email"]
