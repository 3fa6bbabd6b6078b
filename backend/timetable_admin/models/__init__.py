from timetable_admin.models.activity_log import ActivityLog  # noqa: F401
from timetable_admin.models.classroom import Classroom, ClassroomType  # noqa: F401
from timetable_admin.models.department import Department  # noqa: F401
from timetable_admin.models.department_resource import DepartmentResource, ResourceType  # noqa: F401
from timetable_admin.models.faculty import Faculty  # noqa: F401
from timetable_admin.models.subject import Subject  # noqa: F401
from timetable_admin.models.timetable import TimetableEntry  # noqa: F401
from timetable_admin.models.user import User, UserRole  # noqa: F401
