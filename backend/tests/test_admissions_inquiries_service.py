from __future__ import annotations

import pytest

from backend.admissions.errors import AuthorizationDenied, ConstraintViolation
from backend.admissions.models import InquiryStatus
from backend.admissions.services.follow_ups import FollowUpsService, parse_follow_up_date
from backend.admissions.services.inquiries import InquiriesService, matches_search, normalize_optional_email
from backend.tests.utils.seed import new_inquiry


@pytest.fixture
def service(repo):
    return InquiriesService(repo)


def test_create_normalizes_input_and_records_creator(service, team):
    created = service.create_inquiry(
        team.co_leader,
        student_name="  Priya Sharma ",
        contact_number=" +91 98765 43210 ",
        course_interested="Mathematics",
        email="  PRIYA@Example.ORG ",
        more_input="   ",
    )
    assert created.student_name == "Priya Sharma"
    assert created.contact_number == "+91 98765 43210"
    assert created.email == "priya@example.org"
    assert created.more_input is None
    assert created.status is InquiryStatus.PENDING
    assert created.created_by == team.co_leader


@pytest.mark.parametrize(
    "field, value, code",
    [
        ("student_name", "   ", "invalid_student_name"),
        ("contact_number", "call me", "invalid_contact_number"),
        ("course_interested", None, "invalid_course_interested"),
        ("email", "not-an-email", "invalid_email"),
        ("status", "archived", "invalid_status"),
        ("assigned_to", "  ", "invalid_assigned_to"),
    ],
)
def test_create_rejects_invalid_fields(service, team, field, value, code):
    payload = dict(student_name="Priya", contact_number="12345", course_interested="Maths")
    payload[field] = value
    with pytest.raises(ValueError) as exc:
        service.create_inquiry(team.admin, **payload)
    assert str(exc.value) == code


def test_employee_cannot_create(service, team):
    with pytest.raises(AuthorizationDenied):
        service.create_inquiry(team.employee, student_name="P", contact_number="12345", course_interested="M")


def test_search_matches_name_phone_email_and_course(repo, service, team):
    a = new_inquiry(repo, team.admin, student_name="Rohan Gupta", course_interested="Physics", email=None)
    b = new_inquiry(repo, team.admin, student_name="Anika", contact_number="0711 5550", email="anika@school.in")
    assert [i.id for i in service.list_inquiries(team.admin, q="rohan")] == [a.id]
    assert [i.id for i in service.list_inquiries(team.admin, q="5550")] == [b.id]
    assert [i.id for i in service.list_inquiries(team.admin, q="SCHOOL.IN")] == [b.id]
    assert [i.id for i in service.list_inquiries(team.admin, q="physics")] == [a.id]
    assert len(service.list_inquiries(team.admin, q="  ")) == 2
    assert matches_search(a, "GUPTA")


def test_list_rejects_unknown_status(service, team):
    with pytest.raises(ValueError):
        service.list_inquiries(team.admin, status="lost")


def test_update_only_touches_given_fields(repo, service, team):
    inquiry = new_inquiry(repo, team.admin, assigned_to=team.employee, more_input="first call")
    updated = service.update_inquiry(team.employee, inquiry.id, status="dropped")
    assert updated.status is InquiryStatus.DROPPED
    assert updated.more_input == "first call"
    assert updated.assigned_to == team.employee


def test_status_input_is_normalized_before_reaching_the_store(repo, service, team):
    inquiry = new_inquiry(repo, team.admin)
    assert service.update_inquiry(team.admin, inquiry.id, status=" Converted ").status is InquiryStatus.CONVERTED


def test_assigning_to_deactivated_profile_is_rejected(repo, service, team):
    inquiry = new_inquiry(repo, team.admin)
    repo.update_profile(team.admin, team.employee_2, is_active=False)
    with pytest.raises(ValueError) as exc:
        service.assign(team.co_leader, inquiry.id, team.employee_2)
    assert str(exc.value) == "inactive_assignee"


def test_assigning_to_unknown_profile_is_constraint_violation(repo, service, team):
    inquiry = new_inquiry(repo, team.admin)
    with pytest.raises(ConstraintViolation):
        service.assign(team.admin, inquiry.id, "nobody")


def test_bulk_assign_reports_per_row_and_dedupes(repo, service, team):
    one = new_inquiry(repo, team.admin)
    two = new_inquiry(repo, team.admin)
    outcomes = service.bulk_assign(team.co_leader, [one.id, two.id, one.id, "missing"], team.employee)
    assert [(o.id, o.ok, o.error) for o in outcomes] == [
        (one.id, True, None),
        (two.id, True, None),
        ("missing", False, "not_found"),
    ]
    assert {i.id for i in service.list_inquiries(team.employee)} == {one.id, two.id}


def test_bulk_assign_as_employee_fails_row_by_row(repo, service, team):
    mine = new_inquiry(repo, team.admin, assigned_to=team.employee)
    outcomes = service.bulk_assign(team.employee, [mine.id], team.employee_2)
    assert outcomes[0].ok is False and outcomes[0].error == "forbidden"


@pytest.mark.parametrize("ids", [[], "abc", [str(n) for n in range(201)]])
def test_bulk_assign_validates_ids(service, team, ids):
    with pytest.raises(ValueError) as exc:
        service.bulk_assign(team.admin, ids, team.employee)
    assert str(exc.value) == "invalid_inquiry_ids"


def test_optional_email_normalization():
    assert normalize_optional_email(None) is None
    assert normalize_optional_email("  ") is None
    assert normalize_optional_email("A@B.CO") == "a@b.co"
    with pytest.raises(ValueError):
        normalize_optional_email(42)


# --- follow-ups ------------------------------------------------------------------


def test_follow_up_date_requires_offset_and_normalizes_to_utc():
    assert parse_follow_up_date("2026-10-21T14:00:00+05:30") == "2026-10-21T08:30:00+00:00"
    assert parse_follow_up_date("2026-10-21T08:30:00Z") == "2026-10-21T08:30:00+00:00"
    for bad in ("2026-10-21T08:30:00", "tomorrow", "", None, 17):
        with pytest.raises(ValueError):
            parse_follow_up_date(bad)


def test_follow_up_validation_and_edit(repo, team):
    inquiry = new_inquiry(repo, team.admin, assigned_to=team.employee)
    follow_ups = FollowUpsService(repo)
    with pytest.raises(ValueError) as exc:
        follow_ups.log_follow_up(team.employee, inquiry.id, notes="  ", follow_up_date="2026-10-21T08:30:00Z")
    assert str(exc.value) == "invalid_notes"
    with pytest.raises(ValueError) as exc:
        follow_ups.log_follow_up(
            team.employee, inquiry.id, notes="n", follow_up_date="2026-10-21T08:30:00Z",
            voice_recording_url="ftp://files/rec.mp3",
        )
    assert str(exc.value) == "invalid_voice_recording_url"

    fu = follow_ups.log_follow_up(
        team.employee, inquiry.id, notes="Left voicemail", follow_up_date="2026-10-21T08:30:00Z",
        voice_recording_url="https://media.academy.test/rec/1.mp3",
    )
    edited = follow_ups.edit_follow_up(team.employee, fu.id, voice_recording_url=None)
    assert edited.voice_recording_url is None
    assert edited.notes == "Left voicemail"
    with pytest.raises(AuthorizationDenied):
        follow_ups.delete_follow_up(team.employee, fu.id)
