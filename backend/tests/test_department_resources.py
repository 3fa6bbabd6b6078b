import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from timetable_admin.core.exceptions import NotFoundError, PersistenceError, PreconditionError, ValidationError
from timetable_admin.models.activity_log import ActivityLog
from timetable_admin.models.department_resource import DepartmentResource, ResourceType
from timetable_admin.services import department_resources
from timetable_admin.services.department_resources import AssignmentWindow


def active_rows(db, department_id):
    return db.execute(
        select(func.count(DepartmentResource.id)).where(
            DepartmentResource.owner_department_id == department_id,
            DepartmentResource.is_active.is_(True),
        )
    ).scalar_one()


def test_assign_classrooms_is_idempotent(client, admin_headers, make, db):
    department = make.department("CS")
    first = make.classroom("101")
    second = make.classroom("102")
    url = f"/api/departments/{department.id}/resources/classrooms"

    response = client.post(url, json={"classroom_ids": [first.id, second.id]}, headers=admin_headers)
    assert response.status_code == 201
    body = response.json()
    assert body["resource_type"] == "classroom"
    assert body["assigned_count"] == 2
    assert body["skipped_ids"] == []

    db.refresh(first)
    assert first.department_id == department.id
    assert first.is_shared is False

    repeat = client.post(url, json={"classroom_ids": [first.id, second.id, first.id]}, headers=admin_headers)
    assert repeat.status_code == 201
    assert repeat.json()["assigned_count"] == 0
    assert repeat.json()["skipped_ids"] == [first.id, second.id]
    assert active_rows(db, department.id) == 2

    logs = db.execute(select(ActivityLog).where(ActivityLog.action == "ASSIGN_CLASSROOMS")).scalars().all()
    assert len(logs) == 1


def test_failed_insert_rolls_back_the_whole_batch(db, make, actor):
    department = make.department("CS")
    room_a = make.classroom("A1")
    room_b = make.classroom("B1")

    def fail_on_room_b(mapper, connection, target):
        if target.resource_reference_id == room_b.id:
            raise OperationalError("INSERT INTO department_resources", {}, Exception("disk I/O error"))

    event.listen(DepartmentResource, "before_insert", fail_on_room_b)
    try:
        with pytest.raises(PersistenceError):
            department_resources.assign_classrooms(db, department.id, [room_a.id, room_b.id], None, None, actor)
    finally:
        event.remove(DepartmentResource, "before_insert", fail_on_room_b)

    assert active_rows(db, department.id) == 0
    db.refresh(room_a)
    assert room_a.department_id is None
    assert db.execute(select(func.count(ActivityLog.id))).scalar_one() == 0


def test_assignment_input_is_validated_before_any_write(client, admin_headers, make, db):
    department = make.department("CS")
    room = make.classroom()
    retired = make.classroom(is_active=False)
    url = f"/api/departments/{department.id}/resources/classrooms"

    empty = client.post(url, json={"classroom_ids": []}, headers=admin_headers)
    assert empty.status_code == 422
    assert empty.json()["details"]["errors"][0]["field"] == "classroom_ids"

    unknown = client.post(url, json={"classroom_ids": [room.id, "missing"]}, headers=admin_headers)
    assert unknown.status_code == 422

    inactive = client.post(url, json={"classroom_ids": [retired.id]}, headers=admin_headers)
    assert inactive.status_code == 422

    window = client.post(
        url,
        json={"classroom_ids": [room.id], "start_date": "2025-02-01", "end_date": "2025-01-01"},
        headers=admin_headers,
    )
    assert window.status_code == 422
    assert active_rows(db, department.id) == 0


def test_service_rejects_missing_and_malformed_ids(db, make, actor):
    department = make.department("CS")

    with pytest.raises(ValidationError):
        department_resources.assign_classrooms(db, department.id, None, None, None, actor)
    with pytest.raises(ValidationError):
        department_resources.assign_faculty(db, department.id, ["  "], None, actor)
    with pytest.raises(ValidationError):
        department_resources.assign_faculty(db, department.id, [{"id": 1}], None, actor)


def test_inactive_department_cannot_receive_resources(client, admin_headers, make):
    department = make.department("CS", is_active=False)
    room = make.classroom()

    response = client.post(
        f"/api/departments/{department.id}/resources/classrooms",
        json={"classroom_ids": [room.id]},
        headers=admin_headers,
    )
    assert response.status_code == 409

    missing = client.post(
        "/api/departments/missing/resources/classrooms",
        json={"classroom_ids": [room.id]},
        headers=admin_headers,
    )
    assert missing.status_code == 404


def test_assign_faculty_and_available_pickers(client, admin_headers, make, db):
    department = make.department("CS")
    ada = make.faculty("Ada", "Lovelace")
    alan = make.faculty("Alan", "Turing")
    owned_elsewhere = make.classroom("301", department_id=make.department("EE").id)
    free_room = make.classroom("302")

    response = client.post(
        f"/api/departments/{department.id}/resources/faculty",
        json={"faculty_ids": [ada.id], "sharing_conditions": "  Tuesdays  "},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["assigned_count"] == 1

    row = db.get(DepartmentResource, response.json()["resource_ids"][0])
    assert row.sharing_conditions == "Tuesdays"
    assert row.start_date is None

    available = client.get(f"/api/departments/{department.id}/resources/available", headers=admin_headers).json()
    assert [item["id"] for item in available["faculty"]] == [alan.id]
    assert [item["id"] for item in available["classrooms"]] == [free_room.id]
    assert owned_elsewhere.id not in {item["id"] for item in available["classrooms"]}


def test_list_resources_describes_each_assignment(client, admin_headers, make, actor, db):
    department = make.department("CS")
    partner = make.department("EE", "Electrical Engineering")
    room = make.classroom("101", building="Science Block")
    member = make.faculty("Grace", "Hopper", designation="Professor")

    classroom_result = department_resources.assign_classrooms(
        db,
        department.id,
        [room.id],
        None,
        AssignmentWindow(),
        actor,
    )
    department_resources.assign_faculty(db, department.id, [member.id], None, actor)
    department_resources.update_sharing(db, classroom_result.resource_ids[0], partner.id, None, actor)

    listing = client.get(f"/api/departments/{department.id}/resources", headers=admin_headers).json()
    by_type = {item["resource_type"]: item for item in listing}
    assert by_type["classroom"]["resource_name"] == "101 - Science Block (40 seats)"
    assert by_type["classroom"]["resource_details"] == "lecture"
    assert by_type["classroom"]["shared_with_name"] == "Electrical Engineering"
    assert by_type["faculty"]["resource_name"] == "Grace Hopper (Professor)"


def test_update_sharing_writes_only_the_resource_row(client, admin_headers, make, actor, db):
    department = make.department("CS")
    partner = make.department("EE", "Electrical Engineering")
    retired = make.department("ME", is_active=False)
    room = make.classroom()
    result = department_resources.assign_classrooms(db, department.id, [room.id], None, None, actor)
    url = f"/api/department-resources/{result.resource_ids[0]}/sharing"

    shared = client.patch(
        url,
        json={"shared_with_department_id": partner.id, "sharing_conditions": "Mornings"},
        headers=admin_headers,
    )
    assert shared.status_code == 200
    assert shared.json()["shared_with_department_id"] == partner.id
    assert shared.json()["sharing_conditions"] == "Mornings"
    db.refresh(room)
    assert room.is_shared is False
    assert room.department_id == department.id

    to_self = client.patch(url, json={"shared_with_department_id": department.id}, headers=admin_headers)
    assert to_self.status_code == 422

    to_inactive = client.patch(url, json={"shared_with_department_id": retired.id}, headers=admin_headers)
    assert to_inactive.status_code == 422

    cleared = client.patch(url, json={"shared_with_department_id": None}, headers=admin_headers)
    assert cleared.status_code == 200
    assert cleared.json()["shared_with_department_id"] is None
    assert cleared.json()["sharing_conditions"] is None


def test_sharing_a_stale_row_leaves_the_new_owners_classroom_alone(make, actor, db):
    first_owner = make.department("CS")
    new_owner = make.department("EE", "Electrical Engineering")
    partner = make.department("ME", "Mechanical Engineering")
    room = make.classroom()
    stale = department_resources.assign_classrooms(db, first_owner.id, [room.id], None, None, actor)
    department_resources.assign_classrooms(db, new_owner.id, [room.id], None, None, actor)

    department_resources.update_sharing(db, stale.resource_ids[0], partner.id, None, actor)

    db.refresh(room)
    assert room.department_id == new_owner.id
    assert room.is_shared is False


def test_update_sharing_on_missing_row_is_not_found(client, admin_headers, actor, db):
    response = client.patch(
        "/api/department-resources/missing/sharing",
        json={"shared_with_department_id": None},
        headers=admin_headers,
    )
    assert response.status_code == 404

    with pytest.raises(NotFoundError):
        department_resources.update_sharing(db, "missing", None, None, actor)


def test_storage_allows_one_active_row_per_assignment(make, actor, db):
    department = make.department("CS")
    room = make.classroom()
    department_resources.assign_classrooms(db, department.id, [room.id], None, None, actor)

    db.add(
        DepartmentResource(
            owner_department_id=department.id,
            resource_type=ResourceType.classroom,
            resource_reference_id=room.id,
            is_active=True,
        )
    )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()

    # Removed rows are history and do not collide.
    db.add(
        DepartmentResource(
            owner_department_id=department.id,
            resource_type=ResourceType.classroom,
            resource_reference_id=room.id,
            is_active=False,
        )
    )
    db.commit()
    assert active_rows(db, department.id) == 1


def test_concurrent_duplicate_assignment_is_rejected(make, actor, db, monkeypatch):
    department = make.department("CS")
    room = make.classroom()
    other = make.classroom()
    department_resources.assign_classrooms(db, department.id, [room.id], None, None, actor)

    # Another request inserted the row after this one checked for it.
    monkeypatch.setattr(department_resources, "_active_assignment", lambda *args: None)

    with pytest.raises(ValidationError) as excinfo:
        department_resources.assign_classrooms(db, department.id, [other.id, room.id], None, None, actor)
    assert excinfo.value.fields == {"classroom_ids"}

    assert active_rows(db, department.id) == 1
    db.refresh(other)
    assert other.department_id is None
    logs = db.execute(select(func.count(ActivityLog.id)).where(ActivityLog.action == "ASSIGN_CLASSROOMS")).scalar_one()
    assert logs == 1


def test_remove_resource_is_soft_and_idempotent(client, admin_headers, make, actor, db):
    department = make.department("CS")
    room = make.classroom()
    result = department_resources.assign_classrooms(db, department.id, [room.id], None, None, actor)
    resource_id = result.resource_ids[0]

    removed = client.delete(f"/api/department-resources/{resource_id}", headers=admin_headers)
    assert removed.status_code == 200
    assert removed.json()["is_active"] is False
    assert client.get(f"/api/departments/{department.id}/resources", headers=admin_headers).json() == []

    again = client.delete(f"/api/department-resources/{resource_id}", headers=admin_headers)
    assert again.status_code == 200

    db.refresh(room)
    assert room.is_active is True

    with pytest.raises(PreconditionError):
        department_resources.update_sharing(db, resource_id, None, None, actor)

    # A removed classroom can be assigned again.
    reassigned = department_resources.assign_classrooms(db, department.id, [room.id], None, None, actor)
    assert reassigned.assigned_count == 1

    missing = client.delete("/api/department-resources/missing", headers=admin_headers)
    assert missing.status_code == 404


def test_assign_faculty_is_idempotent(client, admin_headers, make, db):
    department = make.department("CS")
    member = make.faculty()
    url = f"/api/departments/{department.id}/resources/faculty"

    first = client.post(url, json={"faculty_ids": [member.id]}, headers=admin_headers)
    assert first.status_code == 201
    assert first.json()["resource_type"] == "faculty"
    assert first.json()["assigned_count"] == 1

    repeat = client.post(url, json={"faculty_ids": [member.id]}, headers=admin_headers)
    assert repeat.status_code == 201
    assert repeat.json()["assigned_count"] == 0
    assert repeat.json()["skipped_ids"] == [member.id]
    assert active_rows(db, department.id) == 1

    logs = db.execute(select(func.count(ActivityLog.id)).where(ActivityLog.action == "ASSIGN_FACULTY")).scalar_one()
    assert logs == 1


def test_failed_faculty_insert_rolls_back_the_whole_batch(db, make, actor):
    department = make.department("CS")
    ada = make.faculty("Ada", "Lovelace")
    alan = make.faculty("Alan", "Turing")

    def fail_on_alan(mapper, connection, target):
        if target.resource_reference_id == alan.id:
            raise OperationalError("INSERT INTO department_resources", {}, Exception("disk I/O error"))

    event.listen(DepartmentResource, "before_insert", fail_on_alan)
    try:
        with pytest.raises(PersistenceError):
            department_resources.assign_faculty(db, department.id, [ada.id, alan.id], None, actor)
    finally:
        event.remove(DepartmentResource, "before_insert", fail_on_alan)

    assert active_rows(db, department.id) == 0
    assert db.execute(select(func.count(ActivityLog.id))).scalar_one() == 0

    # Nothing half-written blocks a clean retry.
    retry = department_resources.assign_faculty(db, department.id, [ada.id, alan.id], None, actor)
    assert retry.assigned_count == 2
