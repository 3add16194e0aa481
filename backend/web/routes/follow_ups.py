"""
Follow-up API routes: the call/meeting log attached to an inquiry.

Visibility follows the parent inquiry; only the author may edit an entry and
nobody may delete one (the store has no delete policy for follow-ups).
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.admissions.errors import AdmissionsError
from backend.admissions.models import to_dict
from backend.admissions.services.follow_ups import FollowUpsService

from ..repo_wiring import get_repo
from .security import _csrf_guard, _current_sub, _domain_error, _json_private, _no_content

follow_ups_router = APIRouter(tags=["FollowUps"])
logger = logging.getLogger("admissions.web.follow_ups")


def _service() -> FollowUpsService:
    return FollowUpsService(get_repo())


class FollowUpCreatePayload(BaseModel):
    notes: Any = None
    follow_up_date: Any = None
    voice_recording_url: Any = None


class FollowUpUpdatePayload(BaseModel):
    notes: Any = None
    follow_up_date: Any = None
    voice_recording_url: Any = None


@follow_ups_router.get("/api/inquiries/{inquiry_id}/follow-ups")
async def list_follow_ups(request: Request, inquiry_id: str):
    """List follow-ups of an inquiry, newest first; 404 when the inquiry is invisible."""
    try:
        rows = _service().list_for_inquiry(_current_sub(request), inquiry_id)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private([to_dict(r) for r in rows])


@follow_ups_router.post("/api/inquiries/{inquiry_id}/follow-ups")
async def create_follow_up(request: Request, inquiry_id: str, payload: FollowUpCreatePayload):
    """Log a follow-up.

    Behavior:
        - 201 with the follow-up
        - 400 on missing notes, a date without timezone or a non-http(s) recording URL
        - 400 `unknown_inquiry` when the inquiry does not exist
        - 403 when the caller cannot see the inquiry
    """
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        created = _service().log_follow_up(_current_sub(request), inquiry_id, **payload.model_dump())
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private(to_dict(created), status_code=201)


@follow_ups_router.patch("/api/follow-ups/{follow_up_id}")
async def update_follow_up(request: Request, follow_up_id: str, payload: FollowUpUpdatePayload):
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        updated = _service().edit_follow_up(
            _current_sub(request), follow_up_id, **payload.model_dump(exclude_unset=True)
        )
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private(to_dict(updated))


@follow_ups_router.delete("/api/follow-ups/{follow_up_id}")
async def delete_follow_up(request: Request, follow_up_id: str):
    # Always 403 (or 404 for unknown ids): follow-ups are an append-only log.
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _service().delete_follow_up(_current_sub(request), follow_up_id)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _no_content()
