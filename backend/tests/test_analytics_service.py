from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.admissions.services.analytics import AnalyticsService, conversion_rate, monthly_breakdown
from backend.tests.utils.seed import new_inquiry

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _backdate(repo, inquiry_id: str, created_at: str) -> None:
    repo.inquiries[inquiry_id].created_at = created_at


def test_summary_counts_visible_inquiries_only(repo, team):
    mine = new_inquiry(repo, team.admin, assigned_to=team.employee, status="converted")
    new_inquiry(repo, team.admin, assigned_to=team.employee, status="dropped")
    new_inquiry(repo, team.admin, assigned_to=team.employee_2)
    new_inquiry(repo, team.admin)
    _backdate(repo, mine.id, "2026-08-03T10:00:00+00:00")

    service = AnalyticsService(repo)
    lead = service.summary(team.co_leader, now=NOW)
    assert lead["totals"] == {"total": 4, "converted": 1, "dropped": 1, "pending": 2}
    assert lead["conversion_rate"] == 25.0

    employee = service.summary(team.employee, now=NOW)
    assert employee["totals"] == {"total": 2, "converted": 1, "dropped": 1, "pending": 0}
    assert employee["conversion_rate"] == 50.0


def test_monthly_buckets_cover_window_oldest_first(repo, team):
    old = new_inquiry(repo, team.admin, status="converted")
    recent = new_inquiry(repo, team.admin)
    ancient = new_inquiry(repo, team.admin)
    _backdate(repo, old.id, "2026-08-03T10:00:00Z")
    _backdate(repo, recent.id, "2026-10-01T00:00:00+00:00")
    _backdate(repo, ancient.id, "2025-01-15T00:00:00+00:00")

    months = monthly_breakdown(repo.list_inquiries(team.admin), now=NOW, months=3)
    assert [m["month"] for m in months] == ["Aug 2026", "Sep 2026", "Oct 2026"]
    assert months[0] == {"month": "Aug 2026", "inquiries": 1, "converted": 1, "dropped": 0, "pending": 0}
    assert months[1]["inquiries"] == 0
    assert months[2]["pending"] == 1


def test_window_crosses_year_boundary():
    months = monthly_breakdown([], now=datetime(2027, 2, 1, tzinfo=timezone.utc), months=4)
    assert [m["month"] for m in months] == ["Nov 2026", "Dec 2026", "Jan 2027", "Feb 2027"]


def test_empty_set_has_zero_rate(repo, team):
    summary = AnalyticsService(repo).summary(team.admin, now=NOW)
    assert summary["totals"]["total"] == 0
    assert summary["conversion_rate"] == 0.0
    assert len(summary["monthly"]) == 6
    assert conversion_rate({"total": 3, "converted": 1}) == 33.3


@pytest.mark.parametrize("months", [0, 25, True, "6"])
def test_invalid_month_window(repo, team, months):
    with pytest.raises(ValueError) as exc:
        AnalyticsService(repo).summary(team.admin, months=months, now=NOW)
    assert str(exc.value) == "invalid_months"


def test_unauthenticated_caller_gets_empty_summary(repo, team):
    new_inquiry(repo, team.admin)
    assert AnalyticsService(repo).summary(None, now=NOW)["totals"]["total"] == 0
