"""
Inquiries API routes (list, detail, create, update, assign, delete).

Why:
    The admissions desk tracks every student inquiry. The adapter requires an
    authenticated session (middleware) and a same-origin check for writes, then
    delegates to `InquiriesService`. It performs no role checks of its own: the
    record store applies the row-level policies and the adapter maps the
    outcome (403 / 404 / 400).

Notes:
    - Payload models accept raw values; normalization happens in the service so
      that invalid input yields 400 with a stable `detail` code instead of 422.
    - All responses are `private, no-store` since the visible set is per caller.
"""
from __future__ import annotations

import logging
from typing import Any, List

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from backend.admissions.errors import AdmissionsError
from backend.admissions.models import to_dict
from backend.admissions.services.inquiries import InquiriesService

from ..repo_wiring import get_repo
from .security import _csrf_guard, _current_sub, _domain_error, _json_private, _no_content

inquiries_router = APIRouter(tags=["Inquiries"])
logger = logging.getLogger("admissions.web.inquiries")


def _service() -> InquiriesService:
    return InquiriesService(get_repo())


class InquiryCreatePayload(BaseModel):
    student_name: Any = None
    contact_number: Any = None
    course_interested: Any = None
    email: Any = None
    more_input: Any = None
    status: Any = "pending"
    assigned_to: Any = None


class InquiryUpdatePayload(BaseModel):
    # Only fields present in the body are applied; explicit null clears.
    student_name: Any = None
    contact_number: Any = None
    course_interested: Any = None
    email: Any = None
    more_input: Any = None
    status: Any = None
    assigned_to: Any = None


class BulkAssignPayload(BaseModel):
    inquiry_ids: List[str] = Field(default_factory=list)
    assigned_to: Any = None

    @field_validator("inquiry_ids")
    @classmethod
    def _strip_ids(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v if isinstance(item, str) and item.strip()]


@inquiries_router.get("/api/inquiries")
async def list_inquiries(
    request: Request, status: str | None = None, assigned_to: str | None = None, q: str | None = None
):
    """List inquiries visible to the caller, newest first.

    Behavior:
        - 200 with a list (possibly empty; invisible rows are silently left out)
        - 400 when `status` is not one of pending/converted/dropped
    """
    try:
        rows = _service().list_inquiries(_current_sub(request), status=status, assigned_to=assigned_to, q=q)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private([to_dict(r) for r in rows])


@inquiries_router.post("/api/inquiries")
async def create_inquiry(request: Request, payload: InquiryCreatePayload):
    """Create an inquiry; `created_by` is the caller.

    Behavior:
        - 201 with the created inquiry
        - 400 on invalid fields (detail names the field)
        - 403 when the caller has no profile (no insert policy applies)
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        created = _service().create_inquiry(_current_sub(request), **payload.model_dump())
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private(to_dict(created), status_code=201)


@inquiries_router.post("/api/inquiries/assign")
async def bulk_assign(request: Request, payload: BulkAssignPayload):
    """Assign many inquiries to one profile; returns one result per row.

    A row the caller may not update is reported with `error` instead of
    failing the whole batch.
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        outcomes = _service().bulk_assign(_current_sub(request), payload.inquiry_ids, payload.assigned_to)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    results = [
        {
            "id": o.id,
            "ok": o.ok,
            "error": o.error,
            "inquiry": to_dict(o.record) if o.record is not None else None,
        }
        for o in outcomes
    ]
    updated = sum(1 for o in outcomes if o.ok)
    if updated < len(outcomes):
        logger.info("bulk assign partially applied: %s of %s rows", updated, len(outcomes))
    return _json_private({"updated": updated, "results": results})


@inquiries_router.get("/api/inquiries/{inquiry_id}")
async def get_inquiry(request: Request, inquiry_id: str):
    try:
        inquiry = _service().get_inquiry(_current_sub(request), inquiry_id)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private(to_dict(inquiry))


@inquiries_router.patch("/api/inquiries/{inquiry_id}")
async def update_inquiry(request: Request, inquiry_id: str, payload: InquiryUpdatePayload):
    """Update inquiry fields (status, notes, assignment, contact data).

    Behavior:
        - 200 with the updated inquiry
        - 400 on invalid values or an inactive assignee
        - 403 when the row exists but no update policy permits the change
        - 404 when the row does not exist
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    updates = payload.model_dump(exclude_unset=True)
    try:
        updated = _service().update_inquiry(_current_sub(request), inquiry_id, **updates)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private(to_dict(updated))


@inquiries_router.delete("/api/inquiries/{inquiry_id}")
async def delete_inquiry(request: Request, inquiry_id: str):
    """Delete an inquiry and its follow-ups (admins only, enforced by the store)."""
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _service().delete_inquiry(_current_sub(request), inquiry_id)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _no_content()
