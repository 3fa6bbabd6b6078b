import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from timetable_admin.core.config import get_settings
from timetable_admin.core.exceptions import NotFoundError, PersistenceError, PreconditionError
from timetable_admin.models.activity_log import ActivityLog
from timetable_admin.models.department import Department
from timetable_admin.models.department_resource import DepartmentResource
from timetable_admin.models.user import UserRole
from timetable_admin.services import department_resources, departments

BASE = "/api/departments"


def test_active_department_cannot_be_deleted(client, admin_headers, make, db):
    department = make.department("CS")

    response = client.delete(f"{BASE}/{department.id}", headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["details"]["blocking"] == ["active"]
    assert db.get(Department, department.id) is not None


def test_inactive_department_with_subjects_is_blocked(client, admin_headers, make):
    department = make.department("CS", is_active=False)
    make.subject(department_id=department.id)

    response = client.delete(f"{BASE}/{department.id}", headers=admin_headers)
    assert response.status_code == 409
    body = response.json()
    assert body["details"]["blocking"] == ["subjects"]
    assert "subjects" in body["message"]


def test_inactive_department_without_dependencies_is_deleted(client, admin_headers, make):
    department = make.department("CS", is_active=False)
    make.subject(department_id=department.id, is_active=False)

    response = client.delete(f"{BASE}/{department.id}", headers=admin_headers)
    assert response.status_code == 204

    assert client.get(f"{BASE}/{department.id}", headers=admin_headers).status_code == 404
    assert client.delete(f"{BASE}/{department.id}", headers=admin_headers).status_code == 404


def test_dependency_snapshot_counts_only_active_references(client, admin_headers, make):
    department = make.department("CS")
    make.user(department_id=department.id)
    make.user(department_id=department.id, is_active=False)
    subject = make.subject(department_id=department.id)
    make.subject(department_id=department.id, is_active=False)
    room = make.classroom(department_id=department.id)
    make.timetable(subject.id, classroom_id=room.id)
    make.timetable(subject.id, is_active=False)

    snapshot = client.get(f"{BASE}/{department.id}/dependencies", headers=admin_headers).json()
    assert snapshot == {
        "active_users": 1,
        "active_subjects": 1,
        "active_classrooms": 1,
        "active_timetables": 1,
        "has_dependencies": True,
        "blocking": ["users", "subjects", "classrooms", "timetables"],
    }


def test_deactivate_with_reassignment_then_delete(client, admin_headers, make, db):
    eng = make.department("ENG", "Engineering")
    members = [make.user(department_id=eng.id) for _ in range(3)]
    subject = make.subject(department_id=eng.id)
    make.timetable(subject.id)

    deactivated = client.post(f"{BASE}/{eng.id}/deactivate", headers=admin_headers)
    assert deactivated.status_code == 200
    result = deactivated.json()
    assert result["reassigned"] is True
    assert result["users_moved"] == 3
    assert result["subjects_unassigned"] == 1
    assert result["users_moved_to_department_id"] is None

    snapshot = client.get(f"{BASE}/{eng.id}/dependencies", headers=admin_headers).json()
    assert snapshot["has_dependencies"] is False

    for member in members:
        db.refresh(member)
        assert member.department_id is None
    db.refresh(subject)
    assert subject.department_id is None
    assert subject.is_active is True

    assert client.delete(f"{BASE}/{eng.id}", headers=admin_headers).status_code == 204
    assert client.get(f"{BASE}/{eng.id}", headers=admin_headers).status_code == 404


def test_deactivate_without_dependencies_is_a_status_change(client, admin_headers, make, db):
    department = make.department("PH")

    response = client.post(f"{BASE}/{department.id}/deactivate", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["reassigned"] is False

    db.refresh(department)
    assert department.is_active is False
    actions = db.execute(select(ActivityLog.action).where(ActivityLog.entity_id == department.id)).scalars().all()
    assert actions == ["DEACTIVATE_DEPARTMENT"]


def test_users_move_to_configured_default_department(client, admin_headers, make, db, monkeypatch):
    general = make.department("GEN", "General Studies")
    eng = make.department("ENG", "Engineering")
    member = make.user(role=UserRole.faculty, department_id=eng.id)
    monkeypatch.setattr(get_settings(), "default_department_code", "GEN")

    result = client.post(f"{BASE}/{eng.id}/deactivate", headers=admin_headers).json()
    assert result["users_moved_to_department_id"] == general.id

    db.refresh(member)
    assert member.department_id == general.id


def test_default_department_is_ignored_when_it_is_the_one_being_deactivated(db, make, actor, monkeypatch):
    general = make.department("GEN", "General Studies")
    member = make.user(department_id=general.id)
    monkeypatch.setattr(get_settings(), "default_department_code", "GEN")

    result = departments.deactivate_with_reassignment(db, general.id, actor)
    assert result.users_moved_to_department_id is None
    db.refresh(member)
    assert member.department_id is None


def test_reassignment_rolls_back_on_storage_failure(db, make, actor, monkeypatch):
    eng = make.department("ENG", "Engineering")
    members = [make.user(department_id=eng.id) for _ in range(3)]
    subject = make.subject(department_id=eng.id)

    def failing_log(*args, **kwargs):
        raise OperationalError("INSERT INTO activity_logs", {}, Exception("disk I/O error"))

    monkeypatch.setattr(departments, "log_activity", failing_log)

    with pytest.raises(PersistenceError):
        departments.deactivate_with_reassignment(db, eng.id, actor)

    db.refresh(eng)
    assert eng.is_active is True
    for member in members:
        db.refresh(member)
        assert member.department_id == eng.id
    db.refresh(subject)
    assert subject.department_id == eng.id


def test_delete_releases_resources_and_sharing_pointers(db, make, actor):
    cs = make.department("CS")
    partner = make.department("EE", "Electrical Engineering")
    room = make.classroom()
    member = make.faculty()

    shared = department_resources.assign_classrooms(db, cs.id, [room.id], None, None, actor)
    department_resources.update_sharing(db, shared.resource_ids[0], partner.id, "Evenings only", actor)
    owned = department_resources.assign_faculty(db, partner.id, [member.id], None, actor)

    departments.change_status(db, partner.id, False, actor)
    departments.delete_department(db, partner.id, actor)

    shared_row = db.get(DepartmentResource, shared.resource_ids[0])
    db.refresh(shared_row)
    assert shared_row.shared_with_department_id is None
    assert shared_row.is_active is True

    owned_row = db.get(DepartmentResource, owned.resource_ids[0])
    db.refresh(owned_row)
    assert owned_row.is_active is False

    with pytest.raises(NotFoundError):
        departments.delete_department(db, partner.id, actor)


def test_delete_refuses_active_department_at_service_level(db, make, actor):
    department = make.department("CS")
    with pytest.raises(PreconditionError) as excinfo:
        departments.delete_department(db, department.id, actor)
    assert excinfo.value.blocking == ["active"]


def test_delete_detaches_inactive_references(client, admin_headers, make, db):
    department = make.department("CS", is_active=False)
    former_member = make.user(department_id=department.id, is_active=False)
    retired_subject = make.subject(department_id=department.id, is_active=False)
    retired_room = make.classroom(department_id=department.id, is_active=False)
    retired_room.is_shared = True
    db.commit()

    response = client.delete(f"{BASE}/{department.id}", headers=admin_headers)
    assert response.status_code == 204

    for row in (former_member, retired_subject, retired_room):
        db.refresh(row)
        assert row.department_id is None
        assert row.is_active is False
    assert retired_room.is_shared is False
