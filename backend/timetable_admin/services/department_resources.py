from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from timetable_admin.core.context import RequestContext
from timetable_admin.core.exceptions import (
    FieldError,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ValidationError,
)
from timetable_admin.db.session import atomic
from timetable_admin.models.classroom import Classroom
from timetable_admin.models.department import Department
from timetable_admin.models.department_resource import DepartmentResource, ResourceType
from timetable_admin.models.faculty import Faculty
from timetable_admin.models.user import User
from timetable_admin.services.audit import log_activity

logger = logging.getLogger(__name__)

ENTITY_TYPE = "department_resource"
SHARING_CONDITIONS_MAX_LENGTH = 1000


@dataclass(frozen=True)
class AssignmentWindow:
    start_date: date | None = None
    end_date: date | None = None


@dataclass
class AssignmentResult:
    resource_type: ResourceType
    assigned_count: int = 0
    resource_ids: list[str] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)


@dataclass
class ResourceView:
    id: str
    owner_department_id: str
    resource_type: ResourceType
    resource_reference_id: str
    resource_name: str | None
    resource_details: str | None
    sharing_conditions: str | None
    shared_with_department_id: str | None
    shared_with_name: str | None
    start_date: date | None
    end_date: date | None
    created_by: str | None
    created_at: datetime | None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_ids(raw_ids: Iterable | None, field_name: str, label: str) -> list[str]:
    if raw_ids is None or isinstance(raw_ids, (str, bytes)):
        raise ValidationError.single(field_name, f"Please select at least one {label} to assign.")
    ids: list[str] = []
    for item in raw_ids:
        if not isinstance(item, (str, int)) or isinstance(item, bool):
            raise ValidationError.single(field_name, f"Malformed {label} id: {item!r}.")
        value = str(item).strip()
        if not value:
            raise ValidationError.single(field_name, f"Malformed {label} id: {item!r}.")
        if value not in ids:
            ids.append(value)
    if not ids:
        raise ValidationError.single(field_name, f"Please select at least one {label} to assign.")
    return ids


def _clean_conditions(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    if len(text) > SHARING_CONDITIONS_MAX_LENGTH:
        raise ValidationError.single(
            "sharing_conditions",
            f"Sharing conditions cannot exceed {SHARING_CONDITIONS_MAX_LENGTH} characters.",
        )
    return text or None


def _owning_department(db: Session, department_id: str) -> Department:
    department = db.get(Department, department_id)
    if department is None:
        raise NotFoundError("Department", department_id)
    if not department.is_active:
        raise PreconditionError("Resources can only be assigned to active departments.", blocking=["inactive"])
    return department


def _active_assignment(
    db: Session, department_id: str, resource_type: ResourceType, reference_id: str
) -> DepartmentResource | None:
    query = select(DepartmentResource).where(
        DepartmentResource.owner_department_id == department_id,
        DepartmentResource.resource_type == resource_type,
        DepartmentResource.resource_reference_id == reference_id,
        DepartmentResource.is_active.is_(True),
    )
    return db.execute(query.limit(1)).scalar_one_or_none()


def _reject_unknown(field_name: str, label: str, requested: list[str], found: set[str]) -> None:
    missing = [item for item in requested if item not in found]
    if missing:
        raise ValidationError(
            [FieldError(field_name, f"Unknown or inactive {label}: {', '.join(missing)}.")],
            message=f"Unknown or inactive {label} selected.",
        )


def _raise_if_duplicate(exc: PersistenceError, field_name: str, label: str) -> None:
    # Lost a race on the partial unique index of active assignments.
    if isinstance(exc.__cause__, IntegrityError):
        raise ValidationError.single(
            field_name, f"This {label} was assigned by another request at the same time. Please retry."
        ) from exc.__cause__


def assign_classrooms(
    db: Session,
    department_id: str,
    classroom_ids: Iterable | None,
    sharing_conditions: str | None,
    window: AssignmentWindow | None,
    actor: RequestContext,
) -> AssignmentResult:
    """Assign classrooms to a department as one batch.

    Rooms already actively assigned to the department are skipped, so
    re-submitting the same selection is a no-op for them. Each new assignment
    also moves the classroom's owning-department pointer.
    """
    ids = _normalize_ids(classroom_ids, "classroom_ids", "classroom")
    conditions = _clean_conditions(sharing_conditions)
    window = window or AssignmentWindow()
    if window.start_date and window.end_date and window.end_date < window.start_date:
        raise ValidationError.single("end_date", "End date cannot be before start date.")
    department = _owning_department(db, department_id)

    found = set(
        db.execute(
            select(Classroom.id).where(Classroom.id.in_(ids), Classroom.is_active.is_(True))
        ).scalars()
    )
    _reject_unknown("classroom_ids", "classroom(s)", ids, found)

    result = AssignmentResult(resource_type=ResourceType.classroom)
    try:
        with atomic(db, "assign classrooms"):
            for classroom_id in ids:
                if _active_assignment(db, department.id, ResourceType.classroom, classroom_id) is not None:
                    result.skipped_ids.append(classroom_id)
                    continue
                resource = DepartmentResource(
                    owner_department_id=department.id,
                    resource_type=ResourceType.classroom,
                    resource_reference_id=classroom_id,
                    sharing_conditions=conditions,
                    start_date=window.start_date,
                    end_date=window.end_date,
                    is_active=True,
                    created_by=actor.actor_id,
                )
                db.add(resource)
                db.flush()
                db.execute(
                    update(Classroom)
                    .where(Classroom.id == classroom_id)
                    .values(department_id=department.id, is_shared=False, updated_at=_utcnow())
                )
                result.resource_ids.append(resource.id)
            result.assigned_count = len(result.resource_ids)
            if result.assigned_count:
                log_activity(
                    db,
                    actor=actor,
                    action="ASSIGN_CLASSROOMS",
                    entity_type="department",
                    entity_id=department.id,
                    details={"classroom_ids": ids, "assigned": result.assigned_count},
                )
    except PersistenceError as exc:
        _raise_if_duplicate(exc, "classroom_ids", "classroom")
        raise

    logger.info(
        "Assigned %d classroom(s) to department %s (%d already assigned)",
        result.assigned_count,
        department.id,
        len(result.skipped_ids),
    )
    return result


def assign_faculty(
    db: Session,
    department_id: str,
    faculty_ids: Iterable | None,
    sharing_conditions: str | None,
    actor: RequestContext,
) -> AssignmentResult:
    """Record faculty as collaborating with a department. The faculty records themselves are not modified."""
    ids = _normalize_ids(faculty_ids, "faculty_ids", "faculty member")
    conditions = _clean_conditions(sharing_conditions)
    department = _owning_department(db, department_id)

    found = set(
        db.execute(
            select(Faculty.id)
            .join(User, User.id == Faculty.user_id)
            .where(Faculty.id.in_(ids), Faculty.is_active.is_(True), User.is_active.is_(True))
        ).scalars()
    )
    _reject_unknown("faculty_ids", "faculty member(s)", ids, found)

    result = AssignmentResult(resource_type=ResourceType.faculty)
    try:
        with atomic(db, "assign faculty"):
            for faculty_id in ids:
                if _active_assignment(db, department.id, ResourceType.faculty, faculty_id) is not None:
                    result.skipped_ids.append(faculty_id)
                    continue
                resource = DepartmentResource(
                    owner_department_id=department.id,
                    resource_type=ResourceType.faculty,
                    resource_reference_id=faculty_id,
                    sharing_conditions=conditions,
                    is_active=True,
                    created_by=actor.actor_id,
                )
                db.add(resource)
                db.flush()
                result.resource_ids.append(resource.id)
            result.assigned_count = len(result.resource_ids)
            if result.assigned_count:
                log_activity(
                    db,
                    actor=actor,
                    action="ASSIGN_FACULTY",
                    entity_type="department",
                    entity_id=department.id,
                    details={"faculty_ids": ids, "assigned": result.assigned_count},
                )
    except PersistenceError as exc:
        _raise_if_duplicate(exc, "faculty_ids", "faculty member")
        raise

    logger.info("Assigned %d faculty member(s) to department %s", result.assigned_count, department.id)
    return result


def get_resource(db: Session, resource_id: str) -> DepartmentResource:
    resource = db.get(DepartmentResource, resource_id)
    if resource is None:
        raise NotFoundError("Department resource", resource_id)
    return resource


def update_sharing(
    db: Session,
    resource_id: str,
    shared_with_department_id: str | None,
    sharing_conditions: str | None,
    actor: RequestContext,
) -> DepartmentResource:
    """Change who a resource row is shared with. Only that row is written, never the classroom."""
    resource = get_resource(db, resource_id)
    if not resource.is_active:
        raise PreconditionError("This resource assignment has been removed.", blocking=["removed"])

    conditions = _clean_conditions(sharing_conditions)
    shared_with = (shared_with_department_id or "").strip() or None
    if shared_with is not None:
        if shared_with == resource.owner_department_id:
            raise ValidationError.single(
                "shared_with_department_id", "A resource cannot be shared with its owning department."
            )
        partner = db.get(Department, shared_with)
        if partner is None or not partner.is_active:
            raise ValidationError.single(
                "shared_with_department_id", "Resources can only be shared with an active department."
            )

    with atomic(db, "update resource sharing"):
        resource.shared_with_department_id = shared_with
        resource.sharing_conditions = conditions
        resource.updated_at = _utcnow()
        log_activity(
            db,
            actor=actor,
            action="UPDATE_RESOURCE_SHARING",
            entity_type=ENTITY_TYPE,
            entity_id=resource.id,
            details={"shared_with_department_id": shared_with, "sharing_conditions": conditions},
        )

    db.refresh(resource)
    return resource


def remove_resource(db: Session, resource_id: str, actor: RequestContext) -> DepartmentResource:
    """Soft-remove an assignment. The classroom or faculty record stays as it is and can be assigned again."""
    resource = get_resource(db, resource_id)
    if not resource.is_active:
        return resource

    with atomic(db, "remove department resource"):
        resource.is_active = False
        resource.updated_at = _utcnow()
        log_activity(
            db,
            actor=actor,
            action="REMOVE_RESOURCE",
            entity_type=ENTITY_TYPE,
            entity_id=resource.id,
            details={
                "resource_type": resource.resource_type,
                "resource_reference_id": resource.resource_reference_id,
            },
        )

    db.refresh(resource)
    logger.info("Department resource %s removed", resource.id)
    return resource


def list_resources(db: Session, department_id: str) -> list[ResourceView]:
    if db.get(Department, department_id) is None:
        raise NotFoundError("Department", department_id)

    rows = list(
        db.execute(
            select(DepartmentResource)
            .where(
                DepartmentResource.owner_department_id == department_id,
                DepartmentResource.is_active.is_(True),
            )
            .order_by(DepartmentResource.resource_type, DepartmentResource.created_at.desc())
        ).scalars()
    )
    classroom_ids = {row.resource_reference_id for row in rows if row.resource_type == ResourceType.classroom}
    faculty_ids = {row.resource_reference_id for row in rows if row.resource_type == ResourceType.faculty}
    partner_ids = {row.shared_with_department_id for row in rows if row.shared_with_department_id}

    classrooms = {
        item.id: item
        for item in db.execute(select(Classroom).where(Classroom.id.in_(classroom_ids))).scalars()
    } if classroom_ids else {}
    faculty = {
        item.id: item
        for item in db.execute(select(Faculty).where(Faculty.id.in_(faculty_ids))).scalars()
    } if faculty_ids else {}
    partners = {
        item.id: item.name
        for item in db.execute(select(Department).where(Department.id.in_(partner_ids))).scalars()
    } if partner_ids else {}

    views: list[ResourceView] = []
    for row in rows:
        name = details = None
        if row.resource_type == ResourceType.classroom:
            room = classrooms.get(row.resource_reference_id)
            if room is not None:
                name, details = room.label, room.type.value
        else:
            member = faculty.get(row.resource_reference_id)
            if member is not None:
                name, details = f"{member.full_name} ({member.designation})", member.specialization
        views.append(
            ResourceView(
                id=row.id,
                owner_department_id=row.owner_department_id,
                resource_type=row.resource_type,
                resource_reference_id=row.resource_reference_id,
                resource_name=name,
                resource_details=details,
                sharing_conditions=row.sharing_conditions,
                shared_with_department_id=row.shared_with_department_id,
                shared_with_name=partners.get(row.shared_with_department_id),
                start_date=row.start_date,
                end_date=row.end_date,
                created_by=row.created_by,
                created_at=row.created_at,
            )
        )
    return views


def list_available_classrooms(db: Session, department_id: str) -> list[Classroom]:
    """Active classrooms that are unowned or already belong to the department."""
    query = (
        select(Classroom)
        .where(
            Classroom.is_active.is_(True),
            (Classroom.department_id.is_(None)) | (Classroom.department_id == department_id),
        )
        .order_by(Classroom.building, Classroom.room_number)
    )
    return list(db.execute(query).scalars())


def list_available_faculty(db: Session, department_id: str) -> list[Faculty]:
    """Active faculty not yet actively assigned to the department."""
    assigned = select(DepartmentResource.resource_reference_id).where(
        DepartmentResource.owner_department_id == department_id,
        DepartmentResource.resource_type == ResourceType.faculty,
        DepartmentResource.is_active.is_(True),
    )
    query = (
        select(Faculty)
        .join(User, User.id == Faculty.user_id)
        .where(Faculty.is_active.is_(True), User.is_active.is_(True), Faculty.id.not_in(assigned))
        .order_by(Faculty.first_name, Faculty.last_name)
    )
    return list(db.execute(query).scalars())
