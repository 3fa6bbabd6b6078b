from datetime import date, datetime

from pydantic import BaseModel, Field

from timetable_admin.services.department_stats import HeadLookupMode


class DepartmentWrite(BaseModel):
    """Raw admin form fields. Rules are enforced by the department validator so every problem is reported together."""

    code: str | None = None
    name: str | None = None
    description: str | None = None
    department_head_id: str | None = None
    established_date: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    building_location: str | None = None
    budget_allocation: float | str | None = None


class DepartmentCreate(DepartmentWrite):
    pass


class DepartmentUpdate(DepartmentWrite):
    pass


class DepartmentStatusChange(BaseModel):
    is_active: bool


class DepartmentOut(BaseModel):
    id: str
    code: str
    name: str
    description: str | None
    head_id: str | None
    established_date: date | None
    contact_email: str | None
    contact_phone: str | None
    building_location: str | None
    budget_allocation: float | None
    is_active: bool
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class DepartmentListItem(DepartmentOut):
    head_name: str | None = None


class PaginationOut(BaseModel):
    current_page: int
    per_page: int
    total: int
    total_pages: int
    has_previous: bool
    has_next: bool

    model_config = {"from_attributes": True}


class DepartmentListOut(BaseModel):
    items: list[DepartmentListItem]
    pagination: PaginationOut


class DependencySnapshotOut(BaseModel):
    active_users: int
    active_subjects: int
    active_classrooms: int
    active_timetables: int
    has_dependencies: bool
    blocking: list[str]

    model_config = {"from_attributes": True}


class DeactivationResultOut(BaseModel):
    department_id: str
    reassigned: bool
    users_moved: int
    subjects_unassigned: int
    classrooms_unassigned: int
    resources_released: int
    users_moved_to_department_id: str | None

    model_config = {"from_attributes": True}


class OverallStatisticsOut(BaseModel):
    total: int
    active: int
    total_users: int
    total_subjects: int

    model_config = {"from_attributes": True}


class SystemStatisticsOut(BaseModel):
    total_departments: int
    departments_with_heads: int
    departments_with_budget: int
    departments_with_established_date: int
    avg_budget: float | None
    min_budget: float | None
    max_budget: float | None
    total_budget: float | None
    total_faculty: int
    total_students: int
    total_subjects: int
    total_classrooms: int

    model_config = {"from_attributes": True}


class DepartmentStatisticsOut(BaseModel):
    active_faculty: int
    active_students: int
    subject_count: int
    classroom_count: int

    model_config = {"from_attributes": True}


class HeadCandidateOut(BaseModel):
    faculty_id: str
    full_name: str
    employee_id: str | None
    designation: str
    is_head_of_any: bool

    model_config = {"from_attributes": True}


class HeadCandidatesOut(BaseModel):
    mode: HeadLookupMode
    candidates: list[HeadCandidateOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DepartmentOption(BaseModel):
    id: str
    code: str
    name: str

    model_config = {"from_attributes": True}
