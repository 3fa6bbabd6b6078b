from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from timetable_admin.api.deps import get_admin_context, get_db
from timetable_admin.core.context import RequestContext
from timetable_admin.models.activity_log import ActivityLog
from timetable_admin.schemas.activity import ActivityLogOut

router = APIRouter()


@router.get("/activity/logs", response_model=list[ActivityLogOut])
def list_activity_logs(
    entity_type: str | None = Query(default=None, max_length=100),
    entity_id: str | None = Query(default=None, max_length=100),
    limit: int = Query(default=200, ge=1, le=500),
    context: RequestContext = Depends(get_admin_context),
    db: Session = Depends(get_db),
) -> list[ActivityLogOut]:
    query = select(ActivityLog)
    if entity_type:
        query = query.where(ActivityLog.entity_type == entity_type)
    if entity_id:
        query = query.where(ActivityLog.entity_id == entity_id)
    query = query.order_by(ActivityLog.created_at.desc()).limit(limit)
    return list(db.execute(query).scalars())
