from datetime import datetime, timedelta

import pytest

from conftest import ASSIGNED_AT, actor, link_student, quick, template_payload
from core.errors import PermissionDenied, StateConflictError
from models.instance import ScheduleInstance
from models.progress import ActivityProgress
from schemas.template import TemplateUpdate
from services.assignment_service import assign_to_students
from services.instance_service import get_today_activities, get_week_rows, pause_instance, resume_instance
from services.template_service import archive_template, create_template, update_template


def test_assignment_creates_week_one_with_pending_rows(db, professional, student):
    t = create_template(db, actor(professional), template_payload())

    result = assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT)

    assert result.failed == []
    assert len(result.successful) == 1
    assert result.successful[0].activities_created == 3

    instance = db.get(ScheduleInstance, result.successful[0].instance_id)
    assert instance.status == "active"
    assert instance.current_week_number == 1
    assert instance.template_id == t.id
    assert instance.current_week_start_date == datetime(2024, 6, 3)
    assert instance.current_week_end_date.date() == datetime(2024, 6, 9).date()
    assert instance.progress_cache["total_activities"] == 3
    assert instance.progress_cache["completed_activities"] == 0

    rows = get_week_rows(db, instance.id, 1)
    assert [r.status for r in rows] == ["pending"] * 3
    assert [r.scheduled_date.date().isoformat() for r in rows] == ["2024-06-03", "2024-06-05", "2024-06-07"]
    assert all(r.activity_snapshot["template_id"] == t.id for r in rows)


def test_rows_only_cover_active_days_catalog(db, professional, student):
    payload = template_payload(
        active_days=[1],
        activities=[quick(1, "first", order=0), quick(1, "second", order=1)],
    )
    t = create_template(db, actor(professional), payload)

    result = assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT)

    rows = get_week_rows(db, result.successful[0].instance_id, 1)
    assert sorted(r.activity_snapshot["title"] for r in rows) == ["first", "second"]


def test_partial_batch_failure_keeps_successes(db, professional, make_user):
    t = create_template(db, actor(professional), template_payload())
    s1, s2, s3 = make_user("student"), make_user("student"), make_user("student")
    for s in (s1, s2, s3):
        link_student(db, professional, s)

    first = assign_to_students(db, t.id, [s2.id], actor(professional), now=ASSIGNED_AT)
    assert len(first.successful) == 1

    result = assign_to_students(db, t.id, [s1.id, s2.id, s3.id], actor(professional), now=ASSIGNED_AT)

    assert sorted(x.student_id for x in result.successful) == sorted([s1.id, s3.id])
    assert [(f.student_id, f.error_type) for f in result.failed] == [(s2.id, "state_conflict")]
    assert db.query(ScheduleInstance).filter(ScheduleInstance.student_id == s2.id).count() == 1
    assert db.query(ActivityProgress).count() == 9


def test_unlisted_and_unknown_students_fail_individually(db, professional, student, make_user):
    stranger = make_user("student")
    t = create_template(db, actor(professional), template_payload())

    result = assign_to_students(db, t.id, [stranger.id, "missing", student.id], actor(professional), now=ASSIGNED_AT)

    assert [s.student_id for s in result.successful] == [student.id]
    assert {f.student_id: f.error_type for f in result.failed} == {stranger.id: "permission", "missing": "not_found"}


def test_coordinator_can_assign_any_student(db, professional, coordinator, make_user):
    stranger = make_user("student")
    t = create_template(db, actor(professional), template_payload())

    result = assign_to_students(db, t.id, [stranger.id], actor(coordinator), now=ASSIGNED_AT)

    assert len(result.successful) == 1


def test_duplicate_ids_are_processed_once(db, professional, student):
    t = create_template(db, actor(professional), template_payload())

    result = assign_to_students(db, t.id, [student.id, student.id], actor(professional), now=ASSIGNED_AT)

    assert len(result.successful) == 1
    assert result.failed == []


def test_archived_template_cannot_be_assigned(db, professional, student):
    t = create_template(db, actor(professional), template_payload())
    archive_template(db, t.id, actor(professional))

    with pytest.raises(StateConflictError):
        assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT)


def test_non_owner_cannot_assign(db, professional, student, make_user):
    other = make_user("professional")
    link_student(db, other, student)
    t = create_template(db, actor(professional), template_payload())

    with pytest.raises(PermissionDenied):
        assign_to_students(db, t.id, [student.id], actor(other), now=ASSIGNED_AT)


def test_assignment_uses_latest_version_of_lineage(db, professional, student):
    v1 = create_template(db, actor(professional), template_payload())
    v2 = update_template(db, v1.id, actor(professional), TemplateUpdate(name="Second edition"))

    result = assign_to_students(db, v1.id, [student.id], actor(professional), now=ASSIGNED_AT)

    assert result.template_id == v2.id
    assert db.get(ScheduleInstance, result.successful[0].instance_id).template_version == 2


def test_open_instance_blocks_other_versions_of_same_lineage(db, professional, student):
    v1 = create_template(db, actor(professional), template_payload())
    assign_to_students(db, v1.id, [student.id], actor(professional), now=ASSIGNED_AT)
    update_template(db, v1.id, actor(professional), TemplateUpdate(name="Second edition"))

    result = assign_to_students(db, v1.id, [student.id], actor(professional), now=ASSIGNED_AT)

    assert result.successful == []
    assert result.failed[0].error_type == "state_conflict"


def test_pause_and_resume_transitions(db, professional, student):
    t = create_template(db, actor(professional), template_payload())
    instance_id = assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT).successful[0].instance_id

    assert pause_instance(db, instance_id, actor(professional)).status == "paused"
    with pytest.raises(StateConflictError):
        pause_instance(db, instance_id, actor(professional))
    with pytest.raises(PermissionDenied):
        resume_instance(db, instance_id, actor(student))
    assert resume_instance(db, instance_id, actor(professional)).status == "active"

    # A paused instance still blocks a new assignment of the lineage.
    pause_instance(db, instance_id, actor(professional))
    again = assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT)
    assert again.failed[0].error_type == "state_conflict"


def test_today_lists_rows_scheduled_for_the_local_date(db, professional, student):
    t = create_template(db, actor(professional), template_payload())
    assign_to_students(db, t.id, [student.id], actor(professional), now=ASSIGNED_AT)

    rows = get_today_activities(db, actor(student), now=ASSIGNED_AT)

    assert [r.day_of_week for r in rows] == [3]
    assert get_today_activities(db, actor(student), now=ASSIGNED_AT + timedelta(days=1)) == []
