"""
Record types persisted by the admissions store.

The three dataclasses mirror the `profiles`, `inquiries` and `follow_ups`
tables column for column. Timestamps are ISO-8601 strings in UTC, matching
what the Postgres repo returns via `to_char(...)`.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from backend.identity_access.domain import Role


class InquiryStatus(str, Enum):
    PENDING = "pending"
    CONVERTED = "converted"
    DROPPED = "dropped"


ALLOWED_STATUSES = frozenset(s.value for s in InquiryStatus)


def parse_status(value: object) -> InquiryStatus:
    """Return the `InquiryStatus` for a raw value or raise ValueError("invalid_status")."""
    if isinstance(value, InquiryStatus):
        return value
    if not isinstance(value, str):
        raise ValueError("invalid_status")
    try:
        return InquiryStatus(value.strip().lower())
    except ValueError:
        raise ValueError("invalid_status") from None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Profile:
    id: str
    email: str
    full_name: str
    role: Role
    created_by: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str


@dataclass
class Inquiry:
    id: str
    student_name: str
    contact_number: str
    email: Optional[str]
    course_interested: str
    more_input: Optional[str]
    status: InquiryStatus
    assigned_to: Optional[str]
    created_by: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class FollowUp:
    id: str
    inquiry_id: str
    notes: str
    follow_up_date: str
    voice_recording_url: Optional[str]
    created_by: Optional[str]
    created_at: str


def to_dict(record) -> Dict[str, Any]:
    """Serialize a record to a JSON-friendly dict (enums flattened to values)."""
    out = asdict(record)
    for key, value in out.items():
        if isinstance(value, Enum):
            out[key] = value.value
    return out


__all__ = [
    "ALLOWED_STATUSES",
    "FollowUp",
    "Inquiry",
    "InquiryStatus",
    "Profile",
    "parse_status",
    "to_dict",
    "utc_now_iso",
]
