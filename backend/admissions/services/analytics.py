"""Dashboard analytics over the caller-visible inquiry set.

KPIs and month buckets are computed from whatever `list_inquiries` returns for
the caller, so the row-level policies scope the numbers: leads see the whole
academy, employees see their own pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import Inquiry, InquiryStatus
from ..ports import AdmissionsRepoProtocol

MAX_MONTHS = 24


def _month_start(dt: datetime) -> datetime:
    return datetime(dt.year, dt.month, 1, tzinfo=timezone.utc)


def _shift_months(dt: datetime, delta: int) -> datetime:
    index = dt.year * 12 + (dt.month - 1) + delta
    return datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)


def _parse_created_at(value: str) -> datetime:
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def status_totals(inquiries: Iterable[Inquiry]) -> Dict[str, int]:
    totals = {"total": 0, "converted": 0, "dropped": 0, "pending": 0}
    for inquiry in inquiries:
        totals["total"] += 1
        totals[inquiry.status.value] += 1
    return totals


def conversion_rate(totals: Dict[str, int]) -> float:
    """Converted share in percent, rounded to one decimal; 0.0 without inquiries."""
    if not totals["total"]:
        return 0.0
    return round(totals["converted"] / totals["total"] * 100, 1)


def monthly_breakdown(
    inquiries: Iterable[Inquiry], *, now: Optional[datetime] = None, months: int = 6
) -> List[Dict[str, object]]:
    """Bucket inquiries by creation month for the last `months` months (current included).

    Buckets are ordered oldest first and labelled like "Oct 2026".
    """
    if months < 1 or months > MAX_MONTHS:
        raise ValueError("invalid_months")
    current = _month_start((now or datetime.now(timezone.utc)).astimezone(timezone.utc))
    starts = [_shift_months(current, -offset) for offset in range(months - 1, -1, -1)]
    buckets: Dict[Tuple[int, int], Dict[str, object]] = {}
    for start in starts:
        buckets[(start.year, start.month)] = {
            "month": start.strftime("%b %Y"),
            "inquiries": 0,
            InquiryStatus.CONVERTED.value: 0,
            InquiryStatus.DROPPED.value: 0,
            InquiryStatus.PENDING.value: 0,
        }
    for inquiry in inquiries:
        created = _parse_created_at(inquiry.created_at)
        bucket = buckets.get((created.year, created.month))
        if bucket is None:
            continue
        bucket["inquiries"] = int(bucket["inquiries"]) + 1
        bucket[inquiry.status.value] = int(bucket[inquiry.status.value]) + 1
    return [buckets[(s.year, s.month)] for s in starts]


@dataclass
class AnalyticsService:
    repo: AdmissionsRepoProtocol

    def summary(
        self, caller_id: Optional[str], *, months: int = 6, now: Optional[datetime] = None
    ) -> Dict[str, object]:
        if isinstance(months, bool) or not isinstance(months, int):
            raise ValueError("invalid_months")
        inquiries = self.repo.list_inquiries(caller_id)
        totals = status_totals(inquiries)
        return {
            "totals": totals,
            "conversion_rate": conversion_rate(totals),
            "monthly": monthly_breakdown(inquiries, now=now, months=months),
        }


__all__ = ["AnalyticsService", "conversion_rate", "monthly_breakdown", "status_totals"]
