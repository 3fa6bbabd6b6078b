from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from timetable_admin.api.deps import get_admin_context, get_db
from timetable_admin.core.config import get_settings
from timetable_admin.core.context import RequestContext
from timetable_admin.schemas.department import (
    DeactivationResultOut,
    DepartmentCreate,
    DepartmentListItem,
    DepartmentListOut,
    DepartmentOption,
    DepartmentOut,
    DepartmentStatisticsOut,
    DepartmentStatusChange,
    DepartmentUpdate,
    DependencySnapshotOut,
    HeadCandidatesOut,
    OverallStatisticsOut,
    PaginationOut,
    SystemStatisticsOut,
)
from timetable_admin.services import department_stats, departments

router = APIRouter()


@router.get("/", response_model=DepartmentListOut)
def list_departments(
    search: str | None = Query(default=None, max_length=100),
    status_filter: str | None = Query(default=None, alias="status", pattern="^(all|active|inactive)$"),
    sort: str = Query(default="name"),
    order: str = Query(default="asc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    per_page: int | None = Query(default=None, ge=1, le=100),
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DepartmentListOut:
    result = department_stats.list_departments(
        db,
        search=search,
        status=status_filter,
        sort=sort,
        order=order,
        page=page,
        per_page=per_page or get_settings().departments_per_page,
    )
    items = [
        DepartmentListItem.model_validate(row.department).model_copy(update={"head_name": row.head_name})
        for row in result.items
    ]
    return DepartmentListOut(items=items, pagination=PaginationOut.model_validate(result.pagination))


@router.post("/", response_model=DepartmentOut, status_code=status.HTTP_201_CREATED)
def create_department(
    payload: DepartmentCreate,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DepartmentOut:
    return departments.create_department(db, payload.model_dump(exclude_unset=True), context)


@router.get("/statistics/overview", response_model=OverallStatisticsOut)
def overall_statistics(
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> OverallStatisticsOut:
    return department_stats.overall_statistics(db)


@router.get("/statistics/system", response_model=SystemStatisticsOut)
def system_statistics(
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> SystemStatisticsOut:
    return department_stats.system_statistics(db)


@router.get("/heads/eligible", response_model=HeadCandidatesOut)
def eligible_heads(
    current_head_id: str | None = Query(default=None),
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> HeadCandidatesOut:
    return department_stats.eligible_heads(db, current_head_id=current_head_id)


@router.get("/options", response_model=list[DepartmentOption])
def department_options(
    only_active: bool = Query(default=True),
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> list[DepartmentOption]:
    return department_stats.department_options(db, only_active=only_active)


@router.get("/locations", response_model=list[str])
def building_locations(
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> list[str]:
    return department_stats.building_locations(db)


@router.get("/{department_id}", response_model=DepartmentListItem)
def get_department(
    department_id: str,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DepartmentListItem:
    department = departments.get_department(db, department_id)
    return DepartmentListItem.model_validate(department).model_copy(
        update={"head_name": department_stats.head_name(db, department)}
    )


@router.put("/{department_id}", response_model=DepartmentOut)
def update_department(
    department_id: str,
    payload: DepartmentUpdate,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DepartmentOut:
    return departments.update_department(db, department_id, payload.model_dump(exclude_unset=True), context)


@router.post("/{department_id}/status", response_model=DepartmentOut)
def change_status(
    department_id: str,
    payload: DepartmentStatusChange,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DepartmentOut:
    return departments.change_status(db, department_id, payload.is_active, context)


@router.get("/{department_id}/dependencies", response_model=DependencySnapshotOut)
def dependency_snapshot(
    department_id: str,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DependencySnapshotOut:
    snapshot = departments.get_dependency_snapshot(db, department_id)
    return DependencySnapshotOut.model_validate(snapshot)


@router.get("/{department_id}/stats", response_model=DepartmentStatisticsOut)
def department_statistics(
    department_id: str,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DepartmentStatisticsOut:
    return department_stats.department_statistics(db, department_id)


@router.post("/{department_id}/deactivate", response_model=DeactivationResultOut)
def deactivate_department(
    department_id: str,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> DeactivationResultOut:
    return departments.deactivate_department(db, department_id, context)


@router.delete("/{department_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_department(
    department_id: str,
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> Response:
    departments.delete_department(db, department_id, context)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
