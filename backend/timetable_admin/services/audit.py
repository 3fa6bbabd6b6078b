from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy.orm import Session

from timetable_admin.core.context import RequestContext
from timetable_admin.models.activity_log import ActivityLog


def _jsonable(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return value


def log_activity(
    db: Session,
    *,
    actor: RequestContext | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    record = ActivityLog(
        user_id=actor.actor_id if actor is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=_jsonable(details or {}),
        request_id=actor.request_id if actor is not None else None,
    )
    db.add(record)
    return record
