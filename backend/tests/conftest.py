import os

# Must be set before the application settings are first read.
os.environ["DATABASE_URL"] = "sqlite+pysqlite://"
os.environ["AUTO_CREATE_SCHEMA"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timetable_admin.api.deps import get_db
from timetable_admin.core.context import RequestContext
from timetable_admin.core.security import create_access_token, get_password_hash
from timetable_admin.db.base import Base
from timetable_admin.main import app
from timetable_admin.models.classroom import Classroom, ClassroomType
from timetable_admin.models.department import Department
from timetable_admin.models.faculty import Faculty
from timetable_admin.models.subject import Subject
from timetable_admin.models.timetable import TimetableEntry
from timetable_admin.models.user import User, UserRole


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


class Factory:
    """Seeds rows directly through the ORM and commits each one."""

    def __init__(self, db):
        self.db = db
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, *, role=UserRole.student, department_id=None, is_active=True, password="password123", email=None):
        n = self._next()
        return self._save(
            User(
                name=f"{role.value.title()} {n}",
                email=email or f"{role.value}{n}@university.edu",
                hashed_password=get_password_hash(password),
                role=role,
                department_id=department_id,
                is_active=is_active,
            )
        )

    def faculty(self, first_name="Ada", last_name="Lovelace", *, is_active=True, user_active=True, designation="Professor"):
        account = self.user(role=UserRole.faculty, is_active=user_active)
        n = self._next()
        return self._save(
            Faculty(
                user_id=account.id,
                first_name=first_name,
                last_name=last_name,
                employee_id=f"EMP{n:04d}",
                designation=designation,
                specialization="Algorithms",
                is_active=is_active,
            )
        )

    def department(self, code, name=None, *, is_active=True, head_id=None, **fields):
        return self._save(
            Department(code=code, name=name or f"{code} Department", is_active=is_active, head_id=head_id, **fields)
        )

    def subject(self, department_id=None, *, is_active=True):
        n = self._next()
        return self._save(
            Subject(code=f"SUB{n:03d}", name=f"Subject {n}", department_id=department_id, is_active=is_active)
        )

    def classroom(self, room_number=None, *, department_id=None, is_active=True, building="Main Block"):
        n = self._next()
        return self._save(
            Classroom(
                room_number=room_number or f"R{n:03d}",
                building=building,
                capacity=40,
                type=ClassroomType.lecture,
                department_id=department_id,
                is_active=is_active,
            )
        )

    def timetable(self, subject_id, *, classroom_id=None, faculty_id=None, is_active=True):
        return self._save(
            TimetableEntry(
                subject_id=subject_id,
                classroom_id=classroom_id,
                faculty_id=faculty_id,
                day_of_week="Monday",
                start_time="09:00",
                end_time="10:00",
                is_active=is_active,
            )
        )


@pytest.fixture()
def make(db):
    return Factory(db)


@pytest.fixture()
def admin(make):
    return make.user(role=UserRole.admin, email="admin@university.edu")


@pytest.fixture()
def admin_headers(admin):
    return {"Authorization": f"Bearer {create_access_token(admin.id)}"}


@pytest.fixture()
def actor(admin):
    return RequestContext(actor_id=admin.id, role=admin.role.value, request_id="test-request")
