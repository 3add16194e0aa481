"""
Error taxonomy for the admissions domain.

Every failure the record store reports falls into one of three classes. They
are raised synchronously, never retried, and mapped to HTTP status codes by the
web adapter (403 / 404 / 400).
"""
from __future__ import annotations


class AdmissionsError(Exception):
    """Base class for all record-store failures."""

    code = "admissions_error"

    def __init__(self, code: str | None = None) -> None:
        super().__init__(code or self.code)
        if code:
            self.code = code


class AuthorizationDenied(AdmissionsError):
    """No policy allowed the attempted insert/update/delete."""

    code = "forbidden"


class NotFound(AdmissionsError):
    """The row does not exist or is invisible to the caller (indistinguishable)."""

    code = "not_found"


class ConstraintViolation(AdmissionsError):
    """A CHECK, NOT NULL, FK or UNIQUE invariant rejected the write."""

    code = "constraint_violation"


__all__ = ["AdmissionsError", "AuthorizationDenied", "NotFound", "ConstraintViolation"]
