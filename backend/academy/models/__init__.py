from academy.models.course import CourseRecord
from academy.models.profile import ParentRecord, StudentRecord
from academy.models.enrollment import EnrollmentRecord
from academy.models.progress import FlowSession, FlowProgress

__all__ = [
    "CourseRecord", "ParentRecord", "StudentRecord",
    "EnrollmentRecord", "FlowSession", "FlowProgress",
]
