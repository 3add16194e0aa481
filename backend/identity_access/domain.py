"""
Identity domain constants and simple helpers.

Why:
- Centralize the closed set of roles so the policy engine, the services and
  the web layer cannot drift apart.
- Role strings only exist at the edges (database rows, JSON payloads); inside
  the application every decision works on the `Role` enum.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Access-control role stored on a profile row."""

    ADMIN = "admin"
    CO_LEADER = "co_leader"
    EMPLOYEE = "employee"


# Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset(r.value for r in Role)


def parse_role(value: object) -> Role:
    """Return the `Role` for a raw value or raise ValueError("invalid_role")."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        raise ValueError("invalid_role")
    try:
        return Role(value.strip().lower())
    except ValueError:
        raise ValueError("invalid_role") from None


__all__ = ["ALLOWED_ROLES", "Role", "parse_role"]
