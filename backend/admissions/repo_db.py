"""
Postgres-backed repository for the admissions records (profiles, inquiries,
follow-ups).

Security:
- Access with a limited-role DSN so Row Level Security (RLS) guards every query.
- The caller identity is bound per transaction via
  `set_config('app.current_sub', <sub>, true)`; the policies read the caller's
  role from `profiles` on every statement.
- Service-role DSNs are reserved for migrations and the bootstrap tool.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- NOT NULL / CHECK / FK invariants are validated before the statement runs so
  that constraint failures win over RLS failures, as in the in-memory store.
- Zero affected rows on update/delete are disambiguated with the SECURITY
  DEFINER helper `public.admissions_row_exists` (NotFound vs AuthorizationDenied).
"""
from __future__ import annotations

import logging
import os
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from backend.identity_access.domain import Role

from .constraints import require_value, role_or_violation, status_or_violation
from .errors import AdmissionsError, AuthorizationDenied, ConstraintViolation, NotFound
from .models import FollowUp, Inquiry, InquiryStatus, Profile
from .ports import FOLLOW_UP_MUTABLE_FIELDS, INQUIRY_MUTABLE_FIELDS, UNSET, RowOutcome

try:
    import psycopg
    from psycopg import errors as pg_errors
    from psycopg import sql
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    pg_errors = None  # type: ignore
    sql = None  # type: ignore
    HAVE_PSYCOPG = False

logger = logging.getLogger("admissions.repo.db")

APP_ROLE = "admissions_limited"

_TS = "to_char({col} at time zone 'utc', 'YYYY-MM-DD\"T\"HH24:MI:SS\"+00:00\"')"

_PROFILE_COLUMNS_SQL = f"""
    id,
    email,
    full_name,
    role,
    created_by,
    is_active,
    {_TS.format(col="created_at")},
    {_TS.format(col="updated_at")}
"""

_INQUIRY_COLUMNS_SQL = f"""
    id::text,
    student_name,
    contact_number,
    email,
    course_interested,
    more_input,
    status,
    assigned_to,
    created_by,
    {_TS.format(col="created_at")},
    {_TS.format(col="updated_at")}
"""

_FOLLOW_UP_COLUMNS_SQL = f"""
    id::text,
    inquiry_id::text,
    notes,
    {_TS.format(col="follow_up_date")},
    voice_recording_url,
    created_by,
    {_TS.format(col="created_at")}
"""

# Constraint name -> violation code reported to callers.
_CONSTRAINT_CODES = {
    "profiles_pkey": "duplicate_profile",
    "profiles_email_key": "duplicate_email",
    "profiles_role_check": "invalid_role",
    "profiles_id_fkey": "unknown_identity",
    "profiles_created_by_fkey": "unknown_identity",
    "identity_accounts_pkey": "duplicate_identity",
    "inquiries_status_check": "invalid_status",
    "inquiries_assigned_to_fkey": "unknown_profile",
    "inquiries_created_by_fkey": "unknown_profile",
    "follow_ups_inquiry_id_fkey": "unknown_inquiry",
    "follow_ups_created_by_fkey": "unknown_profile",
}


def _default_limited_dsn() -> str:
    host = os.getenv("TEST_DB_HOST", "127.0.0.1")
    port = os.getenv("TEST_DB_PORT", "54322")
    user = os.getenv("APP_DB_USER", "admissions_app")
    password = os.getenv("APP_DB_PASSWORD", "CHANGE_ME_DEV")
    return f"postgresql://{user}:{password}@{host}:{port}/postgres"


def _dsn() -> str:
    """Resolve the DSN for DB access, falling back to the local app login outside prod."""
    for dsn in (os.getenv("ADMISSIONS_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if dsn:
            return dsn
    env = (os.getenv("ADMISSIONS_ENV", "dev") or "").lower()
    if env in {"prod", "production", "stage", "staging"}:
        raise RuntimeError("Database DSN unavailable for DBAdmissionsRepo")
    return _default_limited_dsn()


def _profile_from_row(row: Tuple) -> Profile:
    return Profile(
        id=row[0],
        email=row[1],
        full_name=row[2],
        role=Role(row[3]),
        created_by=row[4],
        is_active=bool(row[5]),
        created_at=row[6],
        updated_at=row[7],
    )


def _inquiry_from_row(row: Tuple) -> Inquiry:
    return Inquiry(
        id=row[0],
        student_name=row[1],
        contact_number=row[2],
        email=row[3],
        course_interested=row[4],
        more_input=row[5],
        status=InquiryStatus(row[6]),
        assigned_to=row[7],
        created_by=row[8],
        created_at=row[9],
        updated_at=row[10],
    )


def _follow_up_from_row(row: Tuple) -> FollowUp:
    return FollowUp(
        id=row[0],
        inquiry_id=row[1],
        notes=row[2],
        follow_up_date=row[3],
        voice_recording_url=row[4],
        created_by=row[5],
        created_at=row[6],
    )


def _translate(exc: Exception) -> AdmissionsError:
    """Map a psycopg error onto the admissions error taxonomy."""
    if isinstance(exc, pg_errors.InsufficientPrivilege):
        # Also raised for "new row violates row-level security policy".
        return AuthorizationDenied()
    diag = getattr(exc, "diag", None)
    constraint = getattr(diag, "constraint_name", None) or ""
    if isinstance(exc, pg_errors.NotNullViolation):
        column = getattr(diag, "column_name", None) or "value"
        return ConstraintViolation(f"missing_{column}")
    if isinstance(exc, (pg_errors.CheckViolation, pg_errors.ForeignKeyViolation, pg_errors.UniqueViolation)):
        return ConstraintViolation(_CONSTRAINT_CODES.get(constraint, "constraint_violation"))
    if isinstance(exc, pg_errors.InvalidTextRepresentation):
        # malformed uuid in a lookup: treat like a missing row
        return NotFound()
    raise exc


class DBAdmissionsRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Initialize a Postgres-backed repository with RLS-first safety.

        Behavior:
            - Rejects DSNs that log in as a superuser-like service account
              (`postgres`, `service_role`, `supabase_admin`) unless
              ALLOW_SERVICE_DSN_FOR_TESTING=true is set (dev/testing only).
            - Does not open a connection eagerly; connections are per-call.
        """
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBAdmissionsRepo")
        self._dsn = dsn or _dsn()
        user = self._dsn_username(self._dsn)
        allow_override = str(os.getenv("ALLOW_SERVICE_DSN_FOR_TESTING", "")).lower() == "true"
        if user in {"postgres", "service_role", "supabase_admin"} and not allow_override:
            raise RuntimeError(
                f"AdmissionsRepo requires a login role IN ROLE {APP_ROLE}. Set ADMISSIONS_DATABASE_URL "
                "to a limited DSN or export ALLOW_SERVICE_DSN_FOR_TESTING=true to override in dev."
            )

    @staticmethod
    def _dsn_username(dsn: str) -> str:
        try:
            p = urlparse(dsn)
            if p.username:
                return p.username
        except ValueError:
            pass
        m = re.search(r"\buser\s*=\s*([^\s]+)", dsn or "")
        return m.group(1) if m else ""

    @contextmanager
    def _session(self, caller_id: Optional[str]) -> Iterator[Any]:
        """Yield a cursor inside one transaction bound to the caller identity."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select set_config('app.current_sub', %s, true)", (caller_id or "",))
                try:
                    yield cur
                except psycopg.Error as exc:
                    conn.rollback()
                    raise _translate(exc) from exc
                conn.commit()

    def _missing_or_denied(self, cur: Any, table: str, row_id: str) -> AdmissionsError:
        cur.execute("select public.admissions_row_exists(%s, %s)", (table, row_id))
        row = cur.fetchone()
        if row and row[0]:
            logger.info("policy denied write on %s", table)
            return AuthorizationDenied()
        return NotFound()

    # --- identities -----------------------------------------------------------------

    def register_identity(self, caller_id: Optional[str], identity_id: str) -> None:
        require_value(identity_id, "id")
        with self._session(caller_id) as cur:
            cur.execute("insert into public.identity_accounts (id) values (%s)", (identity_id,))

    def remove_identity(self, caller_id: Optional[str], identity_id: str) -> None:
        with self._session(caller_id) as cur:
            cur.execute("delete from public.identity_accounts where id = %s", (identity_id,))
            if cur.rowcount == 0:
                raise self._missing_or_denied(cur, "identity_accounts", identity_id)

    # --- profiles -------------------------------------------------------------------

    def list_profiles(
        self, caller_id: Optional[str], *, role: Optional[str] = None, is_active: Optional[bool] = None
    ) -> List[Profile]:
        clauses: List[str] = []
        params: List[Any] = []
        if role is not None:
            clauses.append("role = %s")
            params.append(role_or_violation(role).value)
        if is_active is not None:
            clauses.append("is_active = %s")
            params.append(bool(is_active))
        where = ("where " + " and ".join(clauses)) if clauses else ""
        with self._session(caller_id) as cur:
            cur.execute(
                f"select {_PROFILE_COLUMNS_SQL} from public.profiles {where} order by created_at desc, id",
                params,
            )
            rows = cur.fetchall()
        return [_profile_from_row(r) for r in rows]

    def get_profile(self, caller_id: Optional[str], profile_id: str) -> Profile:
        with self._session(caller_id) as cur:
            cur.execute(f"select {_PROFILE_COLUMNS_SQL} from public.profiles where id = %s", (profile_id,))
            row = cur.fetchone()
        if not row:
            raise NotFound()
        return _profile_from_row(row)

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
        require_value(id, "id")
        require_value(email, "email")
        require_value(full_name, "full_name")
        parsed_role = role_or_violation(role)
        with self._session(caller_id) as cur:
            if not self._exists(cur, "identity_accounts", id):
                raise ConstraintViolation("unknown_identity")
            cur.execute(
                f"""
                insert into public.profiles (id, email, full_name, role, created_by, is_active)
                values (%s, %s, %s, %s, %s, %s)
                returning {_PROFILE_COLUMNS_SQL}
                """,
                (id, email, full_name, parsed_role.value, created_by, bool(is_active)),
            )
            row = cur.fetchone()
        return _profile_from_row(row)

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
        sets: List[Tuple[str, Any]] = []
        if email is not UNSET:
            sets.append(("email", require_value(email, "email")))
        if full_name is not UNSET:
            sets.append(("full_name", require_value(full_name, "full_name")))
        if role is not UNSET:
            sets.append(("role", role_or_violation(role).value))
        if is_active is not UNSET:
            sets.append(("is_active", bool(require_value(is_active, "is_active"))))
        with self._session(caller_id) as cur:
            row = self._update_returning(cur, "profiles", _PROFILE_COLUMNS_SQL, profile_id, sets)
        return _profile_from_row(row)

    def delete_profile(self, caller_id: Optional[str], profile_id: str) -> None:
        with self._session(caller_id) as cur:
            cur.execute("delete from public.profiles where id = %s", (profile_id,))
            if cur.rowcount == 0:
                raise self._missing_or_denied(cur, "profiles", profile_id)

    # --- inquiries ------------------------------------------------------------------

    def list_inquiries(
        self, caller_id: Optional[str], *, status: Optional[str] = None, assigned_to: Optional[str] = None
    ) -> List[Inquiry]:
        clauses: List[str] = []
        params: List[Any] = []
        if status is not None:
            clauses.append("status = %s")
            params.append(status_or_violation(status).value)
        if assigned_to is not None:
            clauses.append("assigned_to = %s")
            params.append(assigned_to)
        where = ("where " + " and ".join(clauses)) if clauses else ""
        with self._session(caller_id) as cur:
            cur.execute(
                f"select {_INQUIRY_COLUMNS_SQL} from public.inquiries {where} order by created_at desc, id",
                params,
            )
            rows = cur.fetchall()
        return [_inquiry_from_row(r) for r in rows]

    def get_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> Inquiry:
        with self._session(caller_id) as cur:
            cur.execute(
                f"select {_INQUIRY_COLUMNS_SQL} from public.inquiries where id::text = %s",
                (inquiry_id,),
            )
            row = cur.fetchone()
        if not row:
            raise NotFound()
        return _inquiry_from_row(row)

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
        require_value(student_name, "student_name")
        require_value(contact_number, "contact_number")
        require_value(course_interested, "course_interested")
        parsed_status = status_or_violation(status)
        with self._session(caller_id) as cur:
            for ref in (assigned_to, created_by):
                if ref is not None and not self._exists(cur, "profiles", ref):
                    raise ConstraintViolation("unknown_profile")
            cur.execute(
                f"""
                insert into public.inquiries
                    (student_name, contact_number, email, course_interested, more_input, status, assigned_to, created_by)
                values (%s, %s, %s, %s, %s, %s, %s, %s)
                returning {_INQUIRY_COLUMNS_SQL}
                """,
                (
                    student_name,
                    contact_number,
                    email,
                    course_interested,
                    more_input,
                    parsed_status.value,
                    assigned_to,
                    created_by,
                ),
            )
            row = cur.fetchone()
        return _inquiry_from_row(row)

    def update_inquiry(self, caller_id: Optional[str], inquiry_id: str, **changes: Any) -> Inquiry:
        sets = self._inquiry_sets(changes)
        with self._session(caller_id) as cur:
            assigned = dict(sets).get("assigned_to")
            if assigned is not None and not self._exists(cur, "profiles", assigned):
                raise ConstraintViolation("unknown_profile")
            row = self._update_returning(cur, "inquiries", _INQUIRY_COLUMNS_SQL, inquiry_id, sets)
        return _inquiry_from_row(row)

    def update_inquiries(
        self, caller_id: Optional[str], inquiry_ids: Sequence[str], **changes: Any
    ) -> List[RowOutcome]:
        """Apply the same change to several rows, one transaction per row."""
        if set(changes) - INQUIRY_MUTABLE_FIELDS:
            raise ValueError("invalid_fields")
        outcomes: List[RowOutcome] = []
        for inquiry_id in inquiry_ids:
            try:
                record = self.update_inquiry(caller_id, inquiry_id, **changes)
            except (AuthorizationDenied, NotFound, ConstraintViolation) as exc:
                outcomes.append(RowOutcome(id=inquiry_id, ok=False, error=exc.code))
            else:
                outcomes.append(RowOutcome(id=inquiry_id, ok=True, record=record))
        return outcomes

    def delete_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> None:
        with self._session(caller_id) as cur:
            cur.execute("delete from public.inquiries where id::text = %s", (inquiry_id,))
            if cur.rowcount == 0:
                raise self._missing_or_denied(cur, "inquiries", inquiry_id)

    @staticmethod
    def _inquiry_sets(changes: Dict[str, Any]) -> List[Tuple[str, Any]]:
        if set(changes) - INQUIRY_MUTABLE_FIELDS:
            raise ValueError("invalid_fields")
        sets: List[Tuple[str, Any]] = []
        for field, value in changes.items():
            if field in ("student_name", "contact_number", "course_interested"):
                sets.append((field, require_value(value, field)))
            elif field == "status":
                sets.append((field, status_or_violation(value).value))
            else:
                sets.append((field, value))
        return sets

    # --- follow-ups -----------------------------------------------------------------

    def list_follow_ups(self, caller_id: Optional[str], inquiry_id: str) -> List[FollowUp]:
        with self._session(caller_id) as cur:
            cur.execute(
                f"""
                select {_FOLLOW_UP_COLUMNS_SQL} from public.follow_ups
                where inquiry_id::text = %s
                order by created_at desc, id
                """,
                (inquiry_id,),
            )
            rows = cur.fetchall()
        return [_follow_up_from_row(r) for r in rows]

    def get_follow_up(self, caller_id: Optional[str], follow_up_id: str) -> FollowUp:
        with self._session(caller_id) as cur:
            cur.execute(
                f"select {_FOLLOW_UP_COLUMNS_SQL} from public.follow_ups where id::text = %s",
                (follow_up_id,),
            )
            row = cur.fetchone()
        if not row:
            raise NotFound()
        return _follow_up_from_row(row)

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
        require_value(inquiry_id, "inquiry_id")
        require_value(notes, "notes")
        require_value(follow_up_date, "follow_up_date")
        with self._session(caller_id) as cur:
            if not self._exists(cur, "inquiries", inquiry_id):
                raise ConstraintViolation("unknown_inquiry")
            if created_by is not None and not self._exists(cur, "profiles", created_by):
                raise ConstraintViolation("unknown_profile")
            cur.execute(
                f"""
                insert into public.follow_ups (inquiry_id, notes, follow_up_date, voice_recording_url, created_by)
                values (%s::uuid, %s, %s::timestamptz, %s, %s)
                returning {_FOLLOW_UP_COLUMNS_SQL}
                """,
                (inquiry_id, notes, follow_up_date, voice_recording_url, created_by),
            )
            row = cur.fetchone()
        return _follow_up_from_row(row)

    def update_follow_up(self, caller_id: Optional[str], follow_up_id: str, **changes: Any) -> FollowUp:
        if set(changes) - FOLLOW_UP_MUTABLE_FIELDS:
            raise ValueError("invalid_fields")
        sets: List[Tuple[str, Any]] = []
        for field, value in changes.items():
            if field in ("notes", "follow_up_date"):
                sets.append((field, require_value(value, field)))
            else:
                sets.append((field, value))
        with self._session(caller_id) as cur:
            row = self._update_returning(cur, "follow_ups", _FOLLOW_UP_COLUMNS_SQL, follow_up_id, sets)
        return _follow_up_from_row(row)

    def delete_follow_up(self, caller_id: Optional[str], follow_up_id: str) -> None:
        # No delete policy exists; RLS filters every row so the probe decides.
        with self._session(caller_id) as cur:
            cur.execute("delete from public.follow_ups where id::text = %s", (follow_up_id,))
            if cur.rowcount == 0:
                raise self._missing_or_denied(cur, "follow_ups", follow_up_id)

    # --- helpers --------------------------------------------------------------------

    @staticmethod
    def _exists(cur: Any, table: str, row_id: str) -> bool:
        cur.execute("select public.admissions_row_exists(%s, %s)", (table, row_id))
        row = cur.fetchone()
        return bool(row and row[0])

    def _update_returning(
        self, cur: Any, table: str, columns_sql: str, row_id: str, sets: List[Tuple[str, Any]]
    ) -> Tuple:
        # An empty change set still runs through the update policies.
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(col)) for col, _ in sets
        ) if sets else sql.SQL("id = id")
        stmt = sql.SQL("update {table} set {assign} where id::text = %s returning {cols}").format(
            table=sql.Identifier("public", table),
            assign=assignments,
            cols=sql.SQL(columns_sql),
        )
        cur.execute(stmt, [val for _, val in sets] + [row_id])
        row = cur.fetchone()
        if not row:
            raise self._missing_or_denied(cur, table, row_id)
        return row


__all__ = ["APP_ROLE", "DBAdmissionsRepo", "HAVE_PSYCOPG"]
