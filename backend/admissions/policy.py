"""
Row-level authorization policies for profiles, inquiries and follow-ups.

Why:
    The database enforces these rules through RLS (see the migration under
    `supabase/migrations/`). Keeping the same rules as plain Python predicates
    lets the in-memory store enforce identical semantics and makes every
    decision unit-testable without a running Postgres.

Evaluation model:
    - Each (table, operation) pair owns an ordered tuple of named policies.
    - A request is allowed when ANY policy for that pair matches (logical OR).
    - select/delete evaluate `using` against the existing row.
    - insert evaluates `with_check` against the proposed row.
    - update requires `using` on the old row AND `with_check` on the new row
      of the same policy; a policy without `with_check` reuses `using`.
    - A pair without policies denies. An unauthenticated caller fails every
      predicate.

Roles are matched exhaustively through `_by_role`; every call site states the
outcome for all three roles, and an unknown value raises.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from backend.identity_access.domain import Role

from .errors import AuthorizationDenied
from .models import FollowUp, Inquiry, Profile

logger = logging.getLogger("admissions.policy")


class Table(str, Enum):
    PROFILES = "profiles"
    INQUIRIES = "inquiries"
    FOLLOW_UPS = "follow_ups"


class Operation(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class UnhandledRoleError(RuntimeError):
    """Raised when a role value reaches a decision point without a branch."""


@dataclass(frozen=True)
class CallerContext:
    """Request-scoped caller identity plus the role read for this request.

    `caller_id` is the identity-provider subject (None when unauthenticated).
    `role` is None when the caller has no profile row.
    """

    caller_id: Optional[str]
    role: Optional[Role] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.caller_id)


ANONYMOUS = CallerContext(caller_id=None, role=None)


class PolicyLookups(Protocol):
    """Unfiltered row access the follow-up policies need for the parent inquiry."""

    def inquiry_for_policy(self, inquiry_id: str) -> Optional[Inquiry]:
        ...


Predicate = Callable[[CallerContext, Any, Optional[PolicyLookups]], bool]


@dataclass(frozen=True)
class Policy:
    name: str
    table: Table
    operation: Operation
    using: Optional[Predicate] = None
    with_check: Optional[Predicate] = None


# --- Predicates -------------------------------------------------------------------

def _by_role(ctx: CallerContext, *, admin: bool, co_leader: bool, employee: bool) -> bool:
    role = ctx.role
    if role is None:
        return False
    if role is Role.ADMIN:
        return admin
    if role is Role.CO_LEADER:
        return co_leader
    if role is Role.EMPLOYEE:
        return employee
    raise UnhandledRoleError(str(role))


def _is_admin(ctx: CallerContext, row: Any, lookups: Optional[PolicyLookups]) -> bool:
    return _by_role(ctx, admin=True, co_leader=False, employee=False)


def _is_co_leader(ctx: CallerContext, row: Any, lookups: Optional[PolicyLookups]) -> bool:
    return _by_role(ctx, admin=False, co_leader=True, employee=False)


def _is_admin_or_co_leader(ctx: CallerContext, row: Any, lookups: Optional[PolicyLookups]) -> bool:
    return _by_role(ctx, admin=True, co_leader=True, employee=False)


def _is_own_profile(ctx: CallerContext, row: Profile, lookups: Optional[PolicyLookups]) -> bool:
    return row.id == ctx.caller_id


def _is_assigned_to_caller(ctx: CallerContext, row: Inquiry, lookups: Optional[PolicyLookups]) -> bool:
    return row.assigned_to is not None and row.assigned_to == ctx.caller_id


def can_see_inquiry(ctx: CallerContext, inquiry: Inquiry) -> bool:
    """Select rule for inquiries, shared with the follow-up policies."""
    if _is_admin_or_co_leader(ctx, inquiry, None):
        return True
    return _is_assigned_to_caller(ctx, inquiry, None)


def _can_see_parent_inquiry(ctx: CallerContext, row: FollowUp, lookups: Optional[PolicyLookups]) -> bool:
    # The follow-up rules join on the caller's profile; no profile, no access.
    if ctx.role is None or lookups is None:
        return False
    parent = lookups.inquiry_for_policy(row.inquiry_id)
    if parent is None:
        return False
    return can_see_inquiry(ctx, parent)


def _is_follow_up_author(ctx: CallerContext, row: FollowUp, lookups: Optional[PolicyLookups]) -> bool:
    return row.created_by is not None and row.created_by == ctx.caller_id


# --- Policy registry --------------------------------------------------------------

POLICIES: Tuple[Policy, ...] = (
    # profiles
    Policy("admins_view_all_profiles", Table.PROFILES, Operation.SELECT, using=_is_admin),
    Policy("co_leaders_view_all_profiles", Table.PROFILES, Operation.SELECT, using=_is_co_leader),
    Policy("view_own_profile", Table.PROFILES, Operation.SELECT, using=_is_own_profile),
    Policy("only_admins_insert_profiles", Table.PROFILES, Operation.INSERT, with_check=_is_admin),
    Policy("only_admins_update_profiles", Table.PROFILES, Operation.UPDATE, using=_is_admin, with_check=_is_admin),
    Policy("only_admins_delete_profiles", Table.PROFILES, Operation.DELETE, using=_is_admin),
    # inquiries
    Policy("leads_view_all_inquiries", Table.INQUIRIES, Operation.SELECT, using=_is_admin_or_co_leader),
    Policy("employees_view_assigned_inquiries", Table.INQUIRIES, Operation.SELECT, using=_is_assigned_to_caller),
    Policy("leads_create_inquiries", Table.INQUIRIES, Operation.INSERT, with_check=_is_admin_or_co_leader),
    Policy(
        "leads_update_all_inquiries",
        Table.INQUIRIES,
        Operation.UPDATE,
        using=_is_admin_or_co_leader,
        with_check=_is_admin_or_co_leader,
    ),
    Policy(
        "employees_update_assigned_inquiries",
        Table.INQUIRIES,
        Operation.UPDATE,
        using=_is_assigned_to_caller,
        with_check=_is_assigned_to_caller,
    ),
    Policy("only_admins_delete_inquiries", Table.INQUIRIES, Operation.DELETE, using=_is_admin),
    # follow_ups (no delete policy: deletes are denied for everyone)
    Policy("view_follow_ups_for_visible_inquiries", Table.FOLLOW_UPS, Operation.SELECT, using=_can_see_parent_inquiry),
    Policy("create_follow_ups_for_visible_inquiries", Table.FOLLOW_UPS, Operation.INSERT, with_check=_can_see_parent_inquiry),
    Policy(
        "update_own_follow_ups",
        Table.FOLLOW_UPS,
        Operation.UPDATE,
        using=_is_follow_up_author,
        with_check=_is_follow_up_author,
    ),
)


class PolicyEngine:
    """Evaluate the ordered policy registry for a caller and row(s)."""

    def __init__(self, policies: Sequence[Policy] = POLICIES) -> None:
        index: Dict[Tuple[Table, Operation], List[Policy]] = {}
        for policy in policies:
            index.setdefault((policy.table, policy.operation), []).append(policy)
        self._index = {key: tuple(items) for key, items in index.items()}

    def policies_for(self, table: Table, operation: Operation) -> Tuple[Policy, ...]:
        return self._index.get((table, operation), ())

    def matching_policy(
        self,
        ctx: CallerContext,
        table: Table,
        operation: Operation,
        *,
        old: Any = None,
        new: Any = None,
        lookups: Optional[PolicyLookups] = None,
    ) -> Optional[Policy]:
        """Return the first policy that permits the request, or None."""
        if not ctx.authenticated:
            return None
        for policy in self.policies_for(table, operation):
            if self._policy_matches(policy, ctx, operation, old=old, new=new, lookups=lookups):
                return policy
        return None

    def allows(
        self,
        ctx: CallerContext,
        table: Table,
        operation: Operation,
        *,
        old: Any = None,
        new: Any = None,
        lookups: Optional[PolicyLookups] = None,
    ) -> bool:
        return self.matching_policy(ctx, table, operation, old=old, new=new, lookups=lookups) is not None

    def require(
        self,
        ctx: CallerContext,
        table: Table,
        operation: Operation,
        *,
        old: Any = None,
        new: Any = None,
        lookups: Optional[PolicyLookups] = None,
    ) -> Policy:
        """Return the matching policy or raise `AuthorizationDenied`."""
        policy = self.matching_policy(ctx, table, operation, old=old, new=new, lookups=lookups)
        if policy is None:
            logger.info("policy denied %s on %s", operation.value, table.value)
            raise AuthorizationDenied()
        return policy

    def visible(
        self,
        ctx: CallerContext,
        table: Table,
        rows: Iterable[Any],
        *,
        lookups: Optional[PolicyLookups] = None,
    ) -> List[Any]:
        """Filter rows down to those a select policy exposes to the caller."""
        return [row for row in rows if self.allows(ctx, table, Operation.SELECT, old=row, lookups=lookups)]

    @staticmethod
    def _policy_matches(
        policy: Policy,
        ctx: CallerContext,
        operation: Operation,
        *,
        old: Any,
        new: Any,
        lookups: Optional[PolicyLookups],
    ) -> bool:
        if operation is Operation.INSERT:
            check = policy.with_check
            return check is not None and check(ctx, new, lookups)
        if operation is Operation.UPDATE:
            using = policy.using
            check = policy.with_check or using
            if using is None or check is None:
                return False
            return using(ctx, old, lookups) and check(ctx, new, lookups)
        if operation in (Operation.SELECT, Operation.DELETE):
            using = policy.using
            return using is not None and using(ctx, old, lookups)
        raise ValueError(f"unsupported operation: {operation}")


DEFAULT_ENGINE = PolicyEngine()


__all__ = [
    "ANONYMOUS",
    "CallerContext",
    "DEFAULT_ENGINE",
    "Operation",
    "POLICIES",
    "Policy",
    "PolicyEngine",
    "PolicyLookups",
    "Table",
    "UnhandledRoleError",
    "can_see_inquiry",
]
