"""Follow-ups service layer.

Why:
    Contact attempts are logged from the inquiry detail view. This module
    validates notes, the follow-up date and the optional voice recording URL
    before handing the write to the repository, which applies the policies.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..models import FollowUp
from ..ports import UNSET, AdmissionsRepoProtocol


def _normalize_notes(value: object) -> str:
    if value is None or not isinstance(value, str):
        raise ValueError("invalid_notes")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > 5000:
        raise ValueError("invalid_notes")
    return trimmed


def parse_follow_up_date(value: object) -> str:
    """Parse an ISO-8601 timestamp with offset and return it normalized to UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError("invalid_follow_up_date") from exc
    else:
        raise ValueError("invalid_follow_up_date")
    if parsed.tzinfo is None:
        raise ValueError("invalid_follow_up_date")
    return parsed.astimezone(timezone.utc).isoformat()


def _normalize_recording_url(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("invalid_voice_recording_url")
    trimmed = value.strip()
    if not trimmed:
        return None
    parsed = urlparse(trimmed)
    if parsed.scheme not in ("http", "https") or not parsed.netloc or len(trimmed) > 2048:
        raise ValueError("invalid_voice_recording_url")
    return trimmed


@dataclass
class FollowUpsService:
    repo: AdmissionsRepoProtocol

    def list_for_inquiry(self, caller_id: Optional[str], inquiry_id: str) -> List[FollowUp]:
        # Raises NotFound when the parent inquiry is invisible to the caller.
        self.repo.get_inquiry(caller_id, inquiry_id)
        return self.repo.list_follow_ups(caller_id, inquiry_id)

    def log_follow_up(
        self,
        caller_id: Optional[str],
        inquiry_id: str,
        *,
        notes: object,
        follow_up_date: object,
        voice_recording_url: object = None,
    ) -> FollowUp:
        return self.repo.insert_follow_up(
            caller_id,
            inquiry_id=inquiry_id,
            notes=_normalize_notes(notes),
            follow_up_date=parse_follow_up_date(follow_up_date),
            voice_recording_url=_normalize_recording_url(voice_recording_url),
            created_by=caller_id,
        )

    def edit_follow_up(
        self,
        caller_id: Optional[str],
        follow_up_id: str,
        *,
        notes: object = UNSET,
        follow_up_date: object = UNSET,
        voice_recording_url: object = UNSET,
    ) -> FollowUp:
        changes: Dict[str, Any] = {}
        if notes is not UNSET:
            changes["notes"] = _normalize_notes(notes)
        if follow_up_date is not UNSET:
            changes["follow_up_date"] = parse_follow_up_date(follow_up_date)
        if voice_recording_url is not UNSET:
            changes["voice_recording_url"] = _normalize_recording_url(voice_recording_url)
        return self.repo.update_follow_up(caller_id, follow_up_id, **changes)

    def delete_follow_up(self, caller_id: Optional[str], follow_up_id: str) -> None:
        self.repo.delete_follow_up(caller_id, follow_up_id)


__all__ = ["FollowUpsService", "parse_follow_up_date"]
