"""
Analytics API route: dashboard KPIs and month buckets for the caller.
"""
from __future__ import annotations

from fastapi import APIRouter, Request

from backend.admissions.errors import AdmissionsError
from backend.admissions.services.analytics import AnalyticsService

from ..repo_wiring import get_repo
from .security import _bad_request, _current_sub, _domain_error, _json_private

analytics_router = APIRouter(tags=["Analytics"])


@analytics_router.get("/api/analytics/summary")
async def analytics_summary(request: Request, months: str | None = None):
    """Totals, conversion rate and the last `months` (1..24, default 6) month buckets.

    Numbers cover only the inquiries the caller can see.
    """
    months_value = 6
    if months is not None:
        if not months.strip().isdigit():
            return _bad_request("invalid_months")
        months_value = int(months.strip())
    try:
        summary = AnalyticsService(get_repo()).summary(_current_sub(request), months=months_value)
    except (AdmissionsError, ValueError) as exc:
        return _domain_error(exc)
    return _json_private(summary)
