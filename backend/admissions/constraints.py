"""
Schema invariants checked before any policy is consulted.

Both repositories call these helpers so that a malformed write fails with the
same `ConstraintViolation` code regardless of the backing store. Role and
status follow the CHECK constraints literally: only the canonical lowercase
values pass. Case-folding user input is the services' job.
"""
from __future__ import annotations

from typing import Any

from backend.identity_access.domain import Role

from .errors import ConstraintViolation
from .models import InquiryStatus


def require_value(value: Any, field: str) -> Any:
    """NOT NULL plus "not blank" for text columns."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConstraintViolation(f"missing_{field}")
    return value


def role_or_violation(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        raise ConstraintViolation("invalid_role") from None


def status_or_violation(value: Any) -> InquiryStatus:
    if isinstance(value, InquiryStatus):
        return value
    try:
        return InquiryStatus(value)
    except ValueError:
        raise ConstraintViolation("invalid_status") from None


__all__ = ["require_value", "role_or_violation", "status_or_violation"]
