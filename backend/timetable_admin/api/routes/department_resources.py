from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from timetable_admin.api.deps import get_admin_context, get_db
from timetable_admin.core.context import RequestContext
from timetable_admin.schemas.department_resource import (
    AssignmentResultOut,
    AvailableResourcesOut,
    ClassroomAssignmentRequest,
    DepartmentResourceOut,
    FacultyAssignmentRequest,
    ResourceViewOut,
    SharingUpdateRequest,
)
from timetable_admin.services import department_resources
from timetable_admin.services.department_resources import AssignmentWindow
from timetable_admin.services.departments import get_department

router = APIRouter()


@router.get("/departments/{department_id}/resources", response_model=list[ResourceViewOut])
def list_resources(
    department_id: str,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> list[ResourceViewOut]:
    return department_resources.list_resources(db, department_id)


@router.get("/departments/{department_id}/resources/available", response_model=AvailableResourcesOut)
def available_resources(
    department_id: str,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> AvailableResourcesOut:
    department = get_department(db, department_id)
    return AvailableResourcesOut.model_validate(
        {
            "classrooms": department_resources.list_available_classrooms(db, department.id),
            "faculty": department_resources.list_available_faculty(db, department.id),
        },
        from_attributes=True,
    )


@router.post(
    "/departments/{department_id}/resources/classrooms",
    response_model=AssignmentResultOut,
    status_code=status.HTTP_201_CREATED,
)
def assign_classrooms(
    department_id: str,
    payload: ClassroomAssignmentRequest,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> AssignmentResultOut:
    return department_resources.assign_classrooms(
        db,
        department_id,
        payload.classroom_ids,
        payload.sharing_conditions,
        AssignmentWindow(start_date=payload.start_date, end_date=payload.end_date),
        context,
    )


@router.post(
    "/departments/{department_id}/resources/faculty",
    response_model=AssignmentResultOut,
    status_code=status.HTTP_201_CREATED,
)
def assign_faculty(
    department_id: str,
    payload: FacultyAssignmentRequest,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> AssignmentResultOut:
    return department_resources.assign_faculty(
        db, department_id, payload.faculty_ids, payload.sharing_conditions, context
    )


@router.patch("/department-resources/{resource_id}/sharing", response_model=DepartmentResourceOut)
def update_sharing(
    resource_id: str,
    payload: SharingUpdateRequest,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DepartmentResourceOut:
    return department_resources.update_sharing(
        db, resource_id, payload.shared_with_department_id, payload.sharing_conditions, context
    )


@router.delete("/department-resources/{resource_id}", response_model=DepartmentResourceOut)
def remove_resource(
    resource_id: str,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DepartmentResourceOut:
    return department_resources.remove_resource(db, resource_id, context)
