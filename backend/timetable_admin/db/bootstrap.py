from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

import timetable_admin.models  # noqa: F401
from timetable_admin.core.config import get_settings
from timetable_admin.db.base import Base
from timetable_admin.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "departments": {"id", "code", "name", "head_id", "is_active", "budget_allocation"},
    "department_resources": {
        "id",
        "owner_department_id",
        "resource_type",
        "resource_reference_id",
        "shared_with_department_id",
        "is_active",
    },
    "users": {"id", "email", "role", "department_id", "is_active"},
    "faculty": {"id", "user_id", "first_name", "last_name", "is_active"},
    "subjects": {"id", "code", "department_id", "is_active"},
    "classrooms": {"id", "room_number", "department_id", "is_shared", "is_active"},
    "timetables": {"id", "subject_id", "classroom_id", "is_active"},
    "activity_logs": {"id", "action", "entity_type", "entity_id"},
}


def _assert_required_columns(bind: Engine) -> None:
    with bind.connect() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        missing_tables = [name for name in REQUIRED_COLUMNS if name not in table_names]
        if missing_tables:
            raise RuntimeError(f"Missing required tables: {', '.join(sorted(missing_tables))}")

        missing_columns: list[str] = []
        for table_name, required in REQUIRED_COLUMNS.items():
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            for column_name in sorted(required - existing):
                missing_columns.append(f"{table_name}.{column_name}")
        if missing_columns:
            raise RuntimeError(f"Missing required columns: {', '.join(missing_columns)}")


def ensure_runtime_schema_compatibility(bind: Engine | None = None) -> None:
    target = bind if bind is not None else engine
    try:
        if get_settings().auto_create_schema:
            Base.metadata.create_all(bind=target)
        _assert_required_columns(target)
    except Exception as exc:
        logger.exception("Runtime schema compatibility bootstrap failed")
        raise RuntimeError("Runtime schema compatibility bootstrap failed") from exc
