from datetime import date

import pytest

from conftest import actor, quick, template_payload
from core.errors import PermissionDenied, StateConflictError, ValidationError
from schemas.template import TemplateUpdate
from services.template_service import (
    archive_template,
    create_template,
    get_template,
    latest_version,
    list_activities,
    list_owner_templates,
    list_template_versions,
    update_template,
)


def test_create_template_starts_lineage_at_version_1(db, professional):
    t = create_template(db, actor(professional), template_payload())

    assert t.version == 1
    assert t.lineage_id == t.id
    assert t.active_days == [1, 3, 5]
    assert [(a.day_of_week, a.order_index) for a in list_activities(db, t.id)] == [(1, 0), (3, 0), (5, 0)]


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"active_days": []}, "Select at least one active day."),
        ({"active_days": [1, 7], "activities": [quick(1)]}, "Active days must be between 0 (Sunday) and 6 (Saturday)."),
        ({"activities": []}, "Add at least one activity."),
        ({"end_date": date(2024, 6, 1)}, "end_date must be after start_date."),
        ({"name": "ab"}, "Template name must have at least 3 characters."),
        ({"activities": [quick(2)]}, "Activity 1: day 2 is not an active day of the template."),
        (
            {"activities": [quick(1, "a"), quick(1, "b")]},
            "Activity 2: order_index 0 is already used on day 1.",
        ),
        ({"activities": [quick(1, points=-5)]}, "Activity 1: points cannot be negative."),
    ],
)
def test_create_template_rejects_malformed_data(db, professional, overrides, message):
    with pytest.raises(ValidationError) as exc:
        create_template(db, actor(professional), template_payload(**overrides))
    assert message in exc.value.details


def test_validation_reports_all_errors_together(db, professional):
    with pytest.raises(ValidationError) as exc:
        create_template(db, actor(professional), template_payload(name="x", active_days=[], activities=[]))
    assert len(exc.value.details) == 3


def test_students_cannot_create_templates(db, student):
    with pytest.raises(PermissionDenied):
        create_template(db, actor(student), template_payload())


def test_update_forks_new_version_and_keeps_old(db, professional):
    v1 = create_template(db, actor(professional), template_payload())
    v1_activity_ids = [a.id for a in list_activities(db, v1.id)]

    v2 = update_template_named(db, professional, v1.id, "Weekly routine v2")

    assert v2.id != v1.id
    assert v2.lineage_id == v1.lineage_id
    assert v2.version == 2
    assert v2.name == "Weekly routine v2"

    old = get_template(db, v1.id)
    assert old.name == "Weekly routine"
    assert old.superseded_by_id == v2.id
    assert [a.id for a in list_activities(db, v1.id)] == v1_activity_ids
    # Catalog copied into the fork as new rows.
    assert len(list_activities(db, v2.id)) == 3
    assert not set(a.id for a in list_activities(db, v2.id)) & set(v1_activity_ids)

    assert latest_version(db, v1.lineage_id).id == v2.id
    assert [t.version for t in list_template_versions(db, v1.id)] == [1, 2]


def update_template_named(db, professional, template_id, name):
    return update_template(db, template_id, actor(professional), TemplateUpdate(name=name))


def test_forked_template_is_revalidated(db, professional):
    v1 = create_template(db, actor(professional), template_payload())
    with pytest.raises(ValidationError):
        # Dropping day 5 leaves the Friday activity outside active_days.
        update_template(db, v1.id, actor(professional), TemplateUpdate(active_days=[1, 3]))


def test_forking_a_superseded_version_conflicts(db, professional):
    v1 = create_template(db, actor(professional), template_payload())
    update_template_named(db, professional, v1.id, "Second")
    with pytest.raises(StateConflictError):
        update_template_named(db, professional, v1.id, "Third")


def test_only_owner_can_update_or_archive(db, professional, make_user):
    other = make_user("professional")
    t = create_template(db, actor(professional), template_payload())

    with pytest.raises(PermissionDenied):
        update_template_named(db, other, t.id, "Hijacked")
    with pytest.raises(PermissionDenied):
        archive_template(db, t.id, actor(other))


def test_archive_hides_template_from_default_listing(db, professional):
    t = create_template(db, actor(professional), template_payload())
    archive_template(db, t.id, actor(professional))

    assert get_template(db, t.id).is_active is False
    assert list_owner_templates(db, professional.id) == []
    assert [x.id for x in list_owner_templates(db, professional.id, include_archived=True)] == [t.id]


def test_listing_returns_latest_version_per_lineage(db, professional):
    v1 = create_template(db, actor(professional), template_payload())
    v2 = update_template_named(db, professional, v1.id, "Renamed")

    assert [t.id for t in list_owner_templates(db, professional.id)] == [v2.id]
