"""Field rules for department write payloads.

The validator never stops at the first problem: every violation is collected so
the admin form can show all of them at once. The only side effects are the
read-only lookups needed for code uniqueness and head eligibility.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import re
from typing import Any

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from timetable_admin.core.exceptions import FieldError
from timetable_admin.models.department import Department
from timetable_admin.models.faculty import Faculty
from timetable_admin.models.user import User

CODE_PATTERN = re.compile(r"^[A-Z0-9]{2,10}$")
NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
EMAIL_MAX_LENGTH = 255
PHONE_MAX_DIGITS = 15
LOCATION_MAX_LENGTH = 100

DUPLICATE_CODE_MESSAGE = "Department code already exists. Please use a different code."


@dataclass
class DepartmentValidationResult:
    payload: dict[str, Any] = field(default_factory=dict)
    errors: list[FieldError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, field_name: str, message: str) -> None:
        self.errors.append(FieldError(field_name, message))


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_code(value: Any) -> str:
    return (_clean_text(value) or "").upper()


def code_in_use(db: Session, code: str, *, exclude_id: str | None = None) -> bool:
    query = select(Department.id).where(func.upper(Department.code) == code.upper())
    if exclude_id is not None:
        query = query.where(Department.id != exclude_id)
    return db.execute(query.limit(1)).first() is not None


def active_head_conflict(db: Session, head_id: str, *, exclude_id: str | None = None) -> Department | None:
    """Return the other active department already headed by ``head_id``, if any."""
    query = select(Department).where(Department.head_id == head_id, Department.is_active.is_(True))
    if exclude_id is not None:
        query = query.where(Department.id != exclude_id)
    return db.execute(query.limit(1)).scalar_one_or_none()


def _is_active_faculty(db: Session, faculty_id: str) -> bool:
    query = (
        select(Faculty.id)
        .join(User, User.id == Faculty.user_id)
        .where(Faculty.id == faculty_id, Faculty.is_active.is_(True), User.is_active.is_(True))
    )
    return db.execute(query).first() is not None


def _check_code(db: Session, raw: Any, result: DepartmentValidationResult, exclude_id: str | None) -> None:
    code = normalize_code(raw)
    if not code:
        result.add_error("code", "Department code is required.")
        return
    if not CODE_PATTERN.match(code):
        result.add_error(
            "code",
            "Department code must be 2-10 characters long and contain only uppercase letters and numbers.",
        )
        return
    if code_in_use(db, code, exclude_id=exclude_id):
        result.add_error("code", DUPLICATE_CODE_MESSAGE)
        return
    result.payload["code"] = code


def _check_name(raw: Any, result: DepartmentValidationResult) -> None:
    name = _clean_text(raw)
    if name is None:
        result.add_error("name", "Department name is required.")
    elif len(name) > NAME_MAX_LENGTH:
        result.add_error("name", f"Department name cannot exceed {NAME_MAX_LENGTH} characters.")
    else:
        result.payload["name"] = name


def _check_description(raw: Any, result: DepartmentValidationResult) -> None:
    description = _clean_text(raw)
    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        result.add_error("description", f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters.")
        return
    result.payload["description"] = description


def _check_email(raw: Any, result: DepartmentValidationResult) -> None:
    email = _clean_text(raw)
    if email is None:
        result.payload["contact_email"] = None
        return
    if len(email) > EMAIL_MAX_LENGTH:
        result.add_error("contact_email", "Contact email is too long.")
        return
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        result.add_error("contact_email", "Please enter a valid contact email address.")
        return
    result.payload["contact_email"] = email


def _check_phone(raw: Any, result: DepartmentValidationResult) -> None:
    phone = _clean_text(raw)
    if phone is not None and len(re.sub(r"\D", "", phone)) > PHONE_MAX_DIGITS:
        result.add_error("contact_phone", f"Phone number cannot exceed {PHONE_MAX_DIGITS} digits.")
        return
    result.payload["contact_phone"] = phone


def _check_location(raw: Any, result: DepartmentValidationResult) -> None:
    location = _clean_text(raw)
    if location is not None and len(location) > LOCATION_MAX_LENGTH:
        result.add_error("building_location", f"Building location cannot exceed {LOCATION_MAX_LENGTH} characters.")
        return
    result.payload["building_location"] = location


def _check_budget(raw: Any, result: DepartmentValidationResult) -> None:
    text = _clean_text(raw)
    if text is None:
        result.payload["budget_allocation"] = None
        return
    try:
        budget = Decimal(text)
    except InvalidOperation:
        result.add_error("budget_allocation", "Budget allocation must be a number.")
        return
    if not budget.is_finite():
        result.add_error("budget_allocation", "Budget allocation must be a number.")
    elif budget < 0:
        result.add_error("budget_allocation", "Budget allocation cannot be negative.")
    else:
        result.payload["budget_allocation"] = budget


def _check_established_date(raw: Any, result: DepartmentValidationResult, today: date) -> None:
    if isinstance(raw, datetime):
        established = raw.date()
    elif isinstance(raw, date):
        established = raw
    else:
        text = _clean_text(raw)
        if text is None:
            result.payload["established_date"] = None
            return
        try:
            established = datetime.strptime(text, "%Y-%m-%d").date()
        except ValueError:
            result.add_error("established_date", "Please enter a valid established date (YYYY-MM-DD).")
            return
    if established > today:
        result.add_error("established_date", "Established date cannot be in the future.")
        return
    result.payload["established_date"] = established


def _check_head(db: Session, raw: Any, result: DepartmentValidationResult, exclude_id: str | None) -> None:
    head_id = _clean_text(raw)
    if head_id is None:
        result.payload["head_id"] = None
        return
    if not _is_active_faculty(db, head_id):
        result.add_error("department_head_id", "Selected department head is not a valid active faculty member.")
        return
    conflict = active_head_conflict(db, head_id, exclude_id=exclude_id)
    if conflict is not None:
        result.add_error(
            "department_head_id",
            f"Selected faculty member already heads the {conflict.name} ({conflict.code}) department.",
        )
        return
    result.payload["head_id"] = head_id


def validate_department(
    db: Session,
    data: Mapping[str, Any],
    *,
    exclude_id: str | None = None,
    partial: bool = False,
    today: date | None = None,
) -> DepartmentValidationResult:
    """Validate a raw department form into a normalized write payload.

    With ``partial=True`` only the keys present in ``data`` are checked and
    emitted, so an update can touch a single field. ``exclude_id`` removes the
    department being edited from the uniqueness and head checks.
    """
    result = DepartmentValidationResult()
    today = today or date.today()

    def wanted(key: str) -> bool:
        return not partial or key in data

    if wanted("code"):
        _check_code(db, data.get("code"), result, exclude_id)
    if wanted("name"):
        _check_name(data.get("name"), result)
    if wanted("description"):
        _check_description(data.get("description"), result)
    if wanted("contact_email"):
        _check_email(data.get("contact_email"), result)
    if wanted("contact_phone"):
        _check_phone(data.get("contact_phone"), result)
    if wanted("building_location"):
        _check_location(data.get("building_location"), result)
    if wanted("budget_allocation"):
        _check_budget(data.get("budget_allocation"), result)
    if wanted("established_date"):
        _check_established_date(data.get("established_date"), result, today)
    if wanted("department_head_id"):
        _check_head(db, data.get("department_head_id"), result, exclude_id)

    if not result.is_valid:
        result.payload = {}
    return result
