from datetime import date, datetime

from pydantic import BaseModel, Field

from timetable_admin.models.classroom import ClassroomType
from timetable_admin.models.department_resource import ResourceType


class ClassroomAssignmentRequest(BaseModel):
    classroom_ids: list[str | int] = Field(default_factory=list, max_length=500)
    sharing_conditions: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class FacultyAssignmentRequest(BaseModel):
    faculty_ids: list[str | int] = Field(default_factory=list, max_length=500)
    sharing_conditions: str | None = None


class SharingUpdateRequest(BaseModel):
    shared_with_department_id: str | None = None
    sharing_conditions: str | None = None


class AssignmentResultOut(BaseModel):
    resource_type: ResourceType
    assigned_count: int
    resource_ids: list[str]
    skipped_ids: list[str]

    model_config = {"from_attributes": True}


class DepartmentResourceOut(BaseModel):
    id: str
    owner_department_id: str
    resource_type: ResourceType
    resource_reference_id: str
    sharing_conditions: str | None
    shared_with_department_id: str | None
    start_date: date | None
    end_date: date | None
    is_active: bool
    created_by: str | None
    created_at: datetime | None

    model_config = {"from_attributes": True}


class ResourceViewOut(BaseModel):
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

    model_config = {"from_attributes": True}


class AvailableClassroomOut(BaseModel):
    id: str
    room_number: str
    building: str
    capacity: int
    type: ClassroomType
    department_id: str | None

    model_config = {"from_attributes": True}


class AvailableFacultyOut(BaseModel):
    id: str
    full_name: str
    employee_id: str | None
    designation: str
    specialization: str | None

    model_config = {"from_attributes": True}


class AvailableResourcesOut(BaseModel):
    classrooms: list[AvailableClassroomOut]
    faculty: list[AvailableFacultyOut]
