import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from timetable_admin.db.base import Base


class ResourceType(str, Enum):
    classroom = "classroom"
    faculty = "faculty"


class DepartmentResource(Base):
    __tablename__ = "department_resources"
    __table_args__ = (
        Index(
            "ix_department_resources_owner_type_reference",
            "owner_department_id",
            "resource_type",
            "resource_reference_id",
        ),
        # One active assignment per (owner, type, reference); removed rows are kept as history.
        Index(
            "uq_department_resources_active_assignment",
            "owner_department_id",
            "resource_type",
            "resource_reference_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_department_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    resource_type: Mapped[ResourceType] = mapped_column(
        SAEnum(ResourceType, name="department_resource_type"), nullable=False
    )
    resource_reference_id: Mapped[str] = mapped_column(String(36), nullable=False)
    sharing_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    shared_with_department_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
