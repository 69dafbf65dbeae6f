"""
In-memory store implementations

Dictionary-backed adapters for development and testing. State is lost on
process restart. Records are copied on the way in and out so callers can
never mutate stored state by accident.
"""
import asyncio
import uuid
from typing import Any, Dict, List, Optional

from academy.exceptions import RecordNotFoundError
from academy.schemas.domain import (
    CommunicationRecord,
    Course,
    Enrollment,
    EnrollmentCreate,
    ParentCreate,
    ParentProfile,
    StudentCreate,
    StudentProfile,
)
from academy.stores.base import (
    CourseStore,
    EnrollmentStore,
    ProfileStore,
    ProgressStore,
    apply_enrollment_changes,
)
from academy.utils.timeutils import utcnow


def _newest_first(records):
    return sorted(records, key=lambda r: r.created_at, reverse=True)


class InMemoryProfileStore(ProfileStore):
    def __init__(self):
        self._parents: Dict[str, ParentProfile] = {}
        self._students: Dict[str, StudentProfile] = {}
        self._lock = asyncio.Lock()

    async def create_parent(self, data: ParentCreate) -> ParentProfile:
        async with self._lock:
            parent = ParentProfile(id=str(uuid.uuid4()), **data.model_dump())
            self._parents[parent.id] = parent
            return parent.model_copy(deep=True)

    async def get_parent(self, parent_id: str) -> Optional[ParentProfile]:
        async with self._lock:
            parent = self._parents.get(parent_id)
            return parent.model_copy(deep=True) if parent else None

    async def get_parent_by_user(self, user_id: str) -> Optional[ParentProfile]:
        async with self._lock:
            for parent in self._parents.values():
                if parent.user_id == user_id:
                    return parent.model_copy(deep=True)
            return None

    async def update_parent(self, parent_id: str, changes: Dict[str, Any]) -> None:
        async with self._lock:
            parent = self._parents.get(parent_id)
            if parent is None:
                raise RecordNotFoundError(f"Parent {parent_id} not found")
            data = parent.model_dump()
            data.update(changes)
            data["updated_at"] = utcnow()
            self._parents[parent_id] = ParentProfile.model_validate(data)

    async def create_student(self, data: StudentCreate) -> StudentProfile:
        async with self._lock:
            student = StudentProfile(id=str(uuid.uuid4()), **data.model_dump())
            self._students[student.id] = student
            return student.model_copy(deep=True)

    async def get_student(self, student_id: str) -> Optional[StudentProfile]:
        async with self._lock:
            student = self._students.get(student_id)
            return student.model_copy(deep=True) if student else None

    async def list_parents(self) -> List[ParentProfile]:
        async with self._lock:
            return [p.model_copy(deep=True) for p in _newest_first(self._parents.values())]

    async def list_students(self) -> List[StudentProfile]:
        async with self._lock:
            return [s.model_copy(deep=True) for s in _newest_first(self._students.values())]


class InMemoryEnrollmentStore(EnrollmentStore):
    def __init__(self):
        self._enrollments: Dict[str, Enrollment] = {}
        self._lock = asyncio.Lock()

    async def create_enrollment(
        self, data: EnrollmentCreate, idempotency_key: Optional[str] = None
    ) -> Enrollment:
        async with self._lock:
            if idempotency_key:
                for existing in self._enrollments.values():
                    if existing.idempotency_key == idempotency_key:
                        return existing.model_copy(deep=True)

            now = utcnow()
            enrollment = Enrollment(
                id=str(uuid.uuid4()),
                idempotency_key=idempotency_key,
                created_at=now,
                updated_at=now,
                **data.model_dump(),
            )
            self._enrollments[enrollment.id] = enrollment
            return enrollment.model_copy(deep=True)

    async def update_enrollment(self, enrollment_id: str, changes: Dict[str, Any]) -> None:
        async with self._lock:
            current = self._require(enrollment_id)
            self._enrollments[enrollment_id] = apply_enrollment_changes(current, changes, utcnow())

    async def get_enrollment(self, enrollment_id: str) -> Optional[Enrollment]:
        async with self._lock:
            enrollment = self._enrollments.get(enrollment_id)
            return enrollment.model_copy(deep=True) if enrollment else None

    async def list_enrollments(self) -> List[Enrollment]:
        async with self._lock:
            return [e.model_copy(deep=True) for e in _newest_first(self._enrollments.values())]

    async def query_enrollments(
        self,
        course_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        student_id: Optional[str] = None,
    ) -> List[Enrollment]:
        async with self._lock:
            matches = [
                e for e in self._enrollments.values()
                if (course_id is None or e.course_id == course_id)
                and (parent_id is None or e.parent_id == parent_id)
                and (student_id is None or e.student_id == student_id)
            ]
            return [e.model_copy(deep=True) for e in _newest_first(matches)]

    async def add_note(self, enrollment_id: str, note: str) -> None:
        async with self._lock:
            current = self._require(enrollment_id)
            self._enrollments[enrollment_id] = apply_enrollment_changes(
                current, {"notes": [*current.notes, note]}, utcnow()
            )

    async def add_communication_record(
        self, enrollment_id: str, record: CommunicationRecord
    ) -> None:
        async with self._lock:
            current = self._require(enrollment_id)
            self._enrollments[enrollment_id] = apply_enrollment_changes(
                current,
                {"communication_history": [*current.communication_history, record]},
                utcnow(),
            )

    async def delete_enrollment(self, enrollment_id: str) -> None:
        async with self._lock:
            self._require(enrollment_id)
            del self._enrollments[enrollment_id]

    def _require(self, enrollment_id: str) -> Enrollment:
        enrollment = self._enrollments.get(enrollment_id)
        if enrollment is None:
            raise RecordNotFoundError(f"Enrollment {enrollment_id} not found")
        return enrollment


class InMemoryCourseStore(CourseStore):
    def __init__(self, courses: Optional[List[Course]] = None):
        self._courses: Dict[str, Course] = {c.id: c for c in courses or []}
        self._lock = asyncio.Lock()

    async def get_course(self, course_id: str) -> Optional[Course]:
        async with self._lock:
            course = self._courses.get(course_id)
            return course.model_copy(deep=True) if course else None

    async def list_courses(self) -> List[Course]:
        async with self._lock:
            ordered = sorted(
                self._courses.values(),
                key=lambda c: (c.start_date is None, c.start_date or c.created_at.date()),
            )
            return [c.model_copy(deep=True) for c in ordered]

    async def create_course(self, course: Course) -> Course:
        async with self._lock:
            self._courses[course.id] = course.model_copy(deep=True)
            return course


class InMemoryProgressStore(ProgressStore):
    def __init__(self):
        self._snapshots: Dict[str, str] = {}

    def save(self, key: str, payload: str) -> None:
        self._snapshots[key] = payload

    def load(self, key: str) -> Optional[str]:
        return self._snapshots.get(key)

    def clear(self, key: str) -> None:
        self._snapshots.pop(key, None)
