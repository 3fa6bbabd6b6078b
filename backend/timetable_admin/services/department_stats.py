from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
import math

from sqlalchemy import and_, case, distinct, func, or_, select
from sqlalchemy.orm import Session

from timetable_admin.models.classroom import Classroom
from timetable_admin.models.department import Department
from timetable_admin.models.faculty import Faculty
from timetable_admin.models.subject import Subject
from timetable_admin.models.user import User, UserRole
from timetable_admin.services.departments import get_department

SORT_COLUMNS = {
    "name": Department.name,
    "code": Department.code,
    "created_at": Department.created_at,
    "updated_at": Department.updated_at,
    "is_active": Department.is_active,
}


class HeadLookupMode(str, Enum):
    primary = "primary"
    fallback = "fallback"


@dataclass
class Pagination:
    current_page: int
    per_page: int
    total: int
    total_pages: int
    has_previous: bool
    has_next: bool


@dataclass
class DepartmentRow:
    department: Department
    head_name: str | None = None


@dataclass
class DepartmentPage:
    items: list[DepartmentRow]
    pagination: Pagination


@dataclass
class OverallStatistics:
    total: int = 0
    active: int = 0
    total_users: int = 0
    total_subjects: int = 0


@dataclass
class SystemStatistics:
    total_departments: int = 0
    departments_with_heads: int = 0
    departments_with_budget: int = 0
    departments_with_established_date: int = 0
    avg_budget: Decimal | None = None
    min_budget: Decimal | None = None
    max_budget: Decimal | None = None
    total_budget: Decimal | None = None
    total_faculty: int = 0
    total_students: int = 0
    total_subjects: int = 0
    total_classrooms: int = 0


@dataclass
class DepartmentStatistics:
    active_faculty: int = 0
    active_students: int = 0
    subject_count: int = 0
    classroom_count: int = 0


@dataclass
class HeadCandidate:
    faculty_id: str
    full_name: str
    employee_id: str | None
    designation: str
    is_head_of_any: bool = False


@dataclass
class HeadCandidates:
    mode: HeadLookupMode
    candidates: list[HeadCandidate] = field(default_factory=list)


def _head_name_expression():
    return (Faculty.first_name + " " + Faculty.last_name).label("head_name")


def list_departments(
    db: Session,
    *,
    search: str | None = None,
    status: str | None = None,
    sort: str = "name",
    order: str = "asc",
    page: int = 1,
    per_page: int = 15,
) -> DepartmentPage:
    filters = []
    if status == "active":
        filters.append(Department.is_active.is_(True))
    elif status == "inactive":
        filters.append(Department.is_active.is_(False))

    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        filters.append(
            or_(
                Department.name.ilike(pattern),
                Department.code.ilike(pattern),
                Department.description.ilike(pattern),
                Department.building_location.ilike(pattern),
            )
        )

    per_page = max(1, per_page)
    total = int(db.execute(select(func.count(Department.id)).where(*filters)).scalar_one())
    total_pages = math.ceil(total / per_page) if total else 0
    page = max(1, min(page, max(1, total_pages)))

    column = SORT_COLUMNS.get(sort, Department.name)
    ordering = column.desc() if order.lower() == "desc" else column.asc()
    query = (
        select(Department, _head_name_expression())
        .outerjoin(Faculty, Faculty.id == Department.head_id)
        .where(*filters)
        .order_by(ordering, Department.id)
        .limit(per_page)
        .offset((page - 1) * per_page)
    )
    items = [DepartmentRow(department=row[0], head_name=row[1]) for row in db.execute(query)]
    return DepartmentPage(
        items=items,
        pagination=Pagination(
            current_page=page,
            per_page=per_page,
            total=total,
            total_pages=total_pages,
            has_previous=page > 1,
            has_next=page < total_pages,
        ),
    )


def head_name(db: Session, department: Department) -> str | None:
    if not department.head_id:
        return None
    faculty = db.get(Faculty, department.head_id)
    return faculty.full_name if faculty is not None else None


def overall_statistics(db: Session) -> OverallStatistics:
    return OverallStatistics(
        total=db.execute(select(func.count(Department.id))).scalar_one(),
        active=db.execute(
            select(func.count(Department.id)).where(Department.is_active.is_(True))
        ).scalar_one(),
        total_users=db.execute(select(func.count(User.id)).where(User.is_active.is_(True))).scalar_one(),
        total_subjects=db.execute(
            select(func.count(Subject.id)).where(Subject.is_active.is_(True))
        ).scalar_one(),
    )


def _decimal(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"))


def system_statistics(db: Session) -> SystemStatistics:
    active = Department.is_active.is_(True)
    basic = db.execute(
        select(
            func.count(Department.id),
            func.count(Department.head_id),
            func.count(Department.budget_allocation),
            func.count(Department.established_date),
            func.avg(Department.budget_allocation),
            func.min(Department.budget_allocation),
            func.max(Department.budget_allocation),
            func.sum(Department.budget_allocation),
        ).where(active)
    ).one()

    users = db.execute(
        select(
            func.count(distinct(case((User.role == UserRole.faculty, User.id)))),
            func.count(distinct(case((User.role == UserRole.student, User.id)))),
        )
        .join(Department, Department.id == User.department_id)
        .where(active, User.is_active.is_(True))
    ).one()

    subjects = db.execute(
        select(func.count(Subject.id))
        .join(Department, Department.id == Subject.department_id)
        .where(active, Subject.is_active.is_(True))
    ).scalar_one()
    classrooms = db.execute(
        select(func.count(Classroom.id))
        .join(Department, Department.id == Classroom.department_id)
        .where(active, Classroom.is_active.is_(True))
    ).scalar_one()

    return SystemStatistics(
        total_departments=basic[0],
        departments_with_heads=basic[1],
        departments_with_budget=basic[2],
        departments_with_established_date=basic[3],
        avg_budget=_decimal(basic[4]),
        min_budget=_decimal(basic[5]),
        max_budget=_decimal(basic[6]),
        total_budget=_decimal(basic[7]),
        total_faculty=users[0],
        total_students=users[1],
        total_subjects=subjects,
        total_classrooms=classrooms,
    )


def department_statistics(db: Session, department_id: str) -> DepartmentStatistics:
    department = get_department(db, department_id)

    def count_users(role: UserRole) -> int:
        return db.execute(
            select(func.count(User.id)).where(
                User.department_id == department.id, User.role == role, User.is_active.is_(True)
            )
        ).scalar_one()

    return DepartmentStatistics(
        active_faculty=count_users(UserRole.faculty),
        active_students=count_users(UserRole.student),
        subject_count=db.execute(
            select(func.count(Subject.id)).where(
                Subject.department_id == department.id, Subject.is_active.is_(True)
            )
        ).scalar_one(),
        classroom_count=db.execute(
            select(func.count(Classroom.id)).where(
                Classroom.department_id == department.id, Classroom.is_active.is_(True)
            )
        ).scalar_one(),
    )


def eligible_heads(db: Session, current_head_id: str | None = None) -> HeadCandidates:
    """Faculty who may head a department.

    The primary tier lists active faculty not heading any active department
    (plus the current head, when editing). If that tier is empty the fallback
    tier lists every active faculty member and flags the ones already heading
    a department, so the form can still explain the situation.
    """
    active_heads = select(Department.head_id).where(
        Department.head_id.is_not(None), Department.is_active.is_(True)
    )
    base = (
        select(Faculty)
        .join(User, User.id == Faculty.user_id)
        .where(Faculty.is_active.is_(True), User.is_active.is_(True))
        .order_by(Faculty.first_name, Faculty.last_name)
    )

    free = Faculty.id.not_in(active_heads)
    if current_head_id:
        free = or_(free, Faculty.id == current_head_id)
    primary = list(db.execute(base.where(free)).scalars())
    if primary:
        return HeadCandidates(
            mode=HeadLookupMode.primary,
            candidates=[_candidate(item, is_head=item.id == current_head_id) for item in primary],
        )

    heading = set(db.execute(active_heads).scalars())
    fallback = list(db.execute(base).scalars())
    return HeadCandidates(
        mode=HeadLookupMode.fallback,
        candidates=[_candidate(item, is_head=item.id in heading) for item in fallback],
    )


def _candidate(faculty: Faculty, *, is_head: bool) -> HeadCandidate:
    return HeadCandidate(
        faculty_id=faculty.id,
        full_name=faculty.full_name,
        employee_id=faculty.employee_id,
        designation=faculty.designation,
        is_head_of_any=is_head,
    )


def department_options(db: Session, only_active: bool = True) -> list[Department]:
    query = select(Department).order_by(Department.name)
    if only_active:
        query = query.where(Department.is_active.is_(True))
    return list(db.execute(query).scalars())


def building_locations(db: Session) -> list[str]:
    query = (
        select(Department.building_location)
        .distinct()
        .where(
            and_(
                Department.building_location.is_not(None),
                func.trim(Department.building_location) != "",
            )
        )
        .order_by(Department.building_location)
    )
    return [value for value in db.execute(query).scalars()]
