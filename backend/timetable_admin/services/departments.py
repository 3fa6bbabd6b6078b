from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from timetable_admin.core.config import get_settings
from timetable_admin.core.context import RequestContext
from timetable_admin.core.exceptions import (
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ValidationError,
)
from timetable_admin.db.session import atomic
from timetable_admin.models.classroom import Classroom
from timetable_admin.models.department import Department
from timetable_admin.models.department_resource import DepartmentResource
from timetable_admin.models.subject import Subject
from timetable_admin.models.timetable import TimetableEntry
from timetable_admin.models.user import User
from timetable_admin.services.audit import log_activity
from timetable_admin.services.department_validator import (
    DUPLICATE_CODE_MESSAGE,
    active_head_conflict,
    validate_department,
)

logger = logging.getLogger(__name__)

ENTITY_TYPE = "department"


@dataclass(frozen=True)
class DependencySnapshot:
    active_users: int = 0
    active_subjects: int = 0
    active_classrooms: int = 0
    active_timetables: int = 0

    @property
    def blocking(self) -> list[str]:
        names = []
        if self.active_users:
            names.append("users")
        if self.active_subjects:
            names.append("subjects")
        if self.active_classrooms:
            names.append("classrooms")
        if self.active_timetables:
            names.append("timetables")
        return names

    @property
    def has_dependencies(self) -> bool:
        return bool(self.blocking)


@dataclass(frozen=True)
class DeactivationResult:
    department_id: str
    reassigned: bool
    users_moved: int = 0
    subjects_unassigned: int = 0
    classrooms_unassigned: int = 0
    resources_released: int = 0
    users_moved_to_department_id: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_department(db: Session, department_id: str) -> Department:
    department = db.get(Department, department_id)
    if department is None:
        raise NotFoundError("Department", department_id)
    return department


def create_department(db: Session, data: Mapping[str, Any], actor: RequestContext) -> Department:
    result = validate_department(db, data)
    if not result.is_valid:
        raise ValidationError(result.errors)

    department = Department(**result.payload, is_active=True)
    try:
        with atomic(db, "create department"):
            db.add(department)
            db.flush()
            log_activity(
                db,
                actor=actor,
                action="CREATE_DEPARTMENT",
                entity_type=ENTITY_TYPE,
                entity_id=department.id,
                details=result.payload,
            )
    except PersistenceError as exc:
        # Lost a race on the unique code index.
        if isinstance(exc.__cause__, IntegrityError):
            raise ValidationError.single("code", DUPLICATE_CODE_MESSAGE) from exc.__cause__
        raise

    db.refresh(department)
    logger.info("Department %s created with id %s", department.code, department.id)
    return department


def update_department(
    db: Session,
    department_id: str,
    data: Mapping[str, Any],
    actor: RequestContext,
) -> Department:
    department = get_department(db, department_id)
    result = validate_department(db, data, exclude_id=department.id, partial=True)
    if not result.is_valid:
        raise ValidationError(result.errors)

    changes = {
        key: value
        for key, value in result.payload.items()
        if getattr(department, key) != value
    }
    if not changes:
        return department

    try:
        with atomic(db, "update department"):
            for key, value in changes.items():
                setattr(department, key, value)
            department.updated_at = _utcnow()
            db.flush()
            log_activity(
                db,
                actor=actor,
                action="UPDATE_DEPARTMENT",
                entity_type=ENTITY_TYPE,
                entity_id=department.id,
                details={"changes": changes},
            )
    except PersistenceError as exc:
        if isinstance(exc.__cause__, IntegrityError):
            raise ValidationError.single("code", DUPLICATE_CODE_MESSAGE) from exc.__cause__
        raise

    db.refresh(department)
    logger.info("Department %s updated (%s)", department.id, ", ".join(sorted(changes)))
    return department


def change_status(db: Session, department_id: str, active: bool, actor: RequestContext) -> Department:
    """Flip ``is_active`` without touching anything that references the department."""
    department = get_department(db, department_id)
    if department.is_active == active:
        return department

    if active and department.head_id:
        conflict = active_head_conflict(db, department.head_id, exclude_id=department.id)
        if conflict is not None:
            raise PreconditionError(
                f"Cannot reactivate: its head already leads the active {conflict.code} department.",
                blocking=["head"],
            )

    with atomic(db, "change department status"):
        department.is_active = active
        department.updated_at = _utcnow()
        log_activity(
            db,
            actor=actor,
            action="ACTIVATE_DEPARTMENT" if active else "DEACTIVATE_DEPARTMENT",
            entity_type=ENTITY_TYPE,
            entity_id=department.id,
            details={"is_active": active},
        )

    db.refresh(department)
    logger.info("Department %s %s", department.id, "activated" if active else "deactivated")
    return department


def _count(db: Session, query) -> int:
    return int(db.execute(query).scalar_one() or 0)


def get_dependency_snapshot(db: Session, department_id: str) -> DependencySnapshot:
    """Count what still references the department. Never cached: it gates deletion."""
    department = get_department(db, department_id)
    dept_id = department.id

    timetable_query = (
        select(func.count(TimetableEntry.id))
        .join(Subject, Subject.id == TimetableEntry.subject_id)
        .where(Subject.department_id == dept_id, TimetableEntry.is_active.is_(True))
    )
    return DependencySnapshot(
        active_users=_count(
            db,
            select(func.count(User.id)).where(User.department_id == dept_id, User.is_active.is_(True)),
        ),
        active_subjects=_count(
            db,
            select(func.count(Subject.id)).where(Subject.department_id == dept_id, Subject.is_active.is_(True)),
        ),
        active_classrooms=_count(
            db,
            select(func.count(Classroom.id)).where(
                Classroom.department_id == dept_id, Classroom.is_active.is_(True)
            ),
        ),
        active_timetables=_count(db, timetable_query),
    )


def _default_department_id(db: Session, *, excluding: str) -> str | None:
    code = get_settings().default_department_code
    if not code:
        return None
    target = db.execute(
        select(Department).where(Department.code == code, Department.is_active.is_(True))
    ).scalar_one_or_none()
    if target is None or target.id == excluding:
        return None
    return target.id


def deactivate_with_reassignment(db: Session, department_id: str, actor: RequestContext) -> DeactivationResult:
    """Deactivate a department and detach everything that points at it, in one transaction.

    Users move to the configured default department (or lose their department),
    subjects and classrooms become unassigned, and the department's active
    resource assignments are released. Timetable rows are not modified.
    """
    department = get_department(db, department_id)
    dept_id = department.id
    target_id = _default_department_id(db, excluding=dept_id)
    now = _utcnow()

    with atomic(db, "deactivate department with reassignment"):
        users_moved = db.execute(
            update(User)
            .where(User.department_id == dept_id)
            .values(department_id=target_id, updated_at=now)
        ).rowcount
        subjects_unassigned = db.execute(
            update(Subject)
            .where(Subject.department_id == dept_id)
            .values(department_id=None, updated_at=now)
        ).rowcount
        classrooms_unassigned = db.execute(
            update(Classroom)
            .where(Classroom.department_id == dept_id)
            .values(department_id=None, is_shared=False, updated_at=now)
        ).rowcount
        resources_released = db.execute(
            update(DepartmentResource)
            .where(DepartmentResource.owner_department_id == dept_id, DepartmentResource.is_active.is_(True))
            .values(is_active=False, updated_at=now)
        ).rowcount

        department.is_active = False
        department.updated_at = now
        db.flush()

        result = DeactivationResult(
            department_id=dept_id,
            reassigned=True,
            users_moved=users_moved,
            subjects_unassigned=subjects_unassigned,
            classrooms_unassigned=classrooms_unassigned,
            resources_released=resources_released,
            users_moved_to_department_id=target_id,
        )
        log_activity(
            db,
            actor=actor,
            action="DEACTIVATE_WITH_REASSIGNMENT",
            entity_type=ENTITY_TYPE,
            entity_id=dept_id,
            details=asdict(result),
        )

    logger.info(
        "Department %s deactivated: %d user(s) moved, %d subject(s) and %d classroom(s) unassigned",
        dept_id,
        users_moved,
        subjects_unassigned,
        classrooms_unassigned,
    )
    return result


def deactivate_department(db: Session, department_id: str, actor: RequestContext) -> DeactivationResult:
    """Soft delete: a plain status change when nothing depends on the department, otherwise reassignment."""
    snapshot = get_dependency_snapshot(db, department_id)
    if snapshot.has_dependencies:
        return deactivate_with_reassignment(db, department_id, actor)
    change_status(db, department_id, False, actor)
    return DeactivationResult(department_id=department_id, reassigned=False)


def delete_department(db: Session, department_id: str, actor: RequestContext) -> None:
    """Permanently remove an inactive department that nothing depends on.

    Active departments are refused whatever their dependencies: they have to be
    deactivated first so the destructive step is always a separate action.
    """
    department = get_department(db, department_id)
    if department.is_active:
        logger.warning("Refused to delete active department %s", department.id)
        raise PreconditionError(
            "Only inactive departments can be permanently deleted. Deactivate it first.",
            blocking=["active"],
        )

    snapshot = get_dependency_snapshot(db, department.id)
    if snapshot.has_dependencies:
        logger.warning("Refused to delete department %s: blocked by %s", department.id, snapshot.blocking)
        raise PreconditionError(
            f"Cannot permanently delete department with existing active {', '.join(snapshot.blocking)}.",
            blocking=snapshot.blocking,
        )

    dept_id = department.id
    code = department.code
    now = _utcnow()
    with atomic(db, "delete department"):
        db.execute(
            update(DepartmentResource)
            .where(DepartmentResource.owner_department_id == dept_id, DepartmentResource.is_active.is_(True))
            .values(is_active=False, updated_at=now)
        )
        db.execute(
            update(DepartmentResource)
            .where(DepartmentResource.shared_with_department_id == dept_id)
            .values(shared_with_department_id=None, updated_at=now)
        )
        # Only inactive rows can still point here; the snapshot gate counted the active ones.
        db.execute(update(User).where(User.department_id == dept_id).values(department_id=None, updated_at=now))
        db.execute(
            update(Subject).where(Subject.department_id == dept_id).values(department_id=None, updated_at=now)
        )
        db.execute(
            update(Classroom)
            .where(Classroom.department_id == dept_id)
            .values(department_id=None, is_shared=False, updated_at=now)
        )
        deleted = db.execute(delete(Department).where(Department.id == dept_id)).rowcount
        if deleted == 0:
            raise NotFoundError("Department", dept_id)
        log_activity(
            db,
            actor=actor,
            action="DELETE_DEPARTMENT",
            entity_type=ENTITY_TYPE,
            entity_id=dept_id,
            details={"code": code},
        )

    logger.info("Department %s (%s) permanently deleted", code, dept_id)
