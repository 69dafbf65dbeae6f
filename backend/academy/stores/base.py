"""
Store Interfaces — persistence contracts for profiles, enrollments, courses
and wizard progress.

Each interface has an in-memory adapter (tests, local development) and a
SQLAlchemy adapter (the running service). The enrollment flow and the admin
services only ever see these interfaces.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from academy.exceptions import EnrollmentInvariantError
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

# Fields a partial update may never touch
_IMMUTABLE_ENROLLMENT_FIELDS = {"id", "created_at", "idempotency_key"}


def apply_enrollment_changes(
    enrollment: Enrollment, changes: Dict[str, Any], now: datetime
) -> Enrollment:
    """Validate a partial update against the enrollment invariants.

    Args:
        enrollment: Current stored record.
        changes: Top-level fields to replace (nested models replace wholesale).
        now: Mutation time, written to ``updated_at``.

    Returns:
        The updated enrollment (the input is not modified).

    Raises:
        EnrollmentInvariantError: the update touches an immutable field, changes
            the charged amount/currency, or produces an invalid record.
    """
    forbidden = _IMMUTABLE_ENROLLMENT_FIELDS.intersection(changes)
    if forbidden:
        raise EnrollmentInvariantError(f"Cannot update {', '.join(sorted(forbidden))}")

    data = enrollment.model_dump()
    data.update(changes)
    data["updated_at"] = now

    try:
        updated = Enrollment.model_validate(data)
    except ValidationError as exc:
        raise EnrollmentInvariantError(str(exc)) from exc

    if (
        updated.payment_details.amount != enrollment.payment_details.amount
        or updated.payment_details.currency != enrollment.payment_details.currency
    ):
        raise EnrollmentInvariantError("Enrollment amount and currency cannot change after creation")

    return updated


class ProfileStore(ABC):
    """Parent and student records."""

    @abstractmethod
    async def create_parent(self, data: ParentCreate) -> ParentProfile:
        """Create a parent and return it with its generated id."""

    @abstractmethod
    async def get_parent(self, parent_id: str) -> Optional[ParentProfile]:
        """Load a parent or None."""

    @abstractmethod
    async def get_parent_by_user(self, user_id: str) -> Optional[ParentProfile]:
        """Load the parent linked to a signed-in account, or None."""

    @abstractmethod
    async def update_parent(self, parent_id: str, changes: Dict[str, Any]) -> None:
        """Apply a partial update; raises RecordNotFoundError if missing."""

    @abstractmethod
    async def create_student(self, data: StudentCreate) -> StudentProfile:
        """Create a student and return it with its generated id."""

    @abstractmethod
    async def get_student(self, student_id: str) -> Optional[StudentProfile]:
        """Load a student or None."""

    @abstractmethod
    async def list_parents(self) -> List[ParentProfile]:
        """All parents, newest first."""

    @abstractmethod
    async def list_students(self) -> List[StudentProfile]:
        """All students, newest first."""


class EnrollmentStore(ABC):
    """Enrollment documents."""

    @abstractmethod
    async def create_enrollment(
        self, data: EnrollmentCreate, idempotency_key: Optional[str] = None
    ) -> Enrollment:
        """Insert an enrollment.

        With an ``idempotency_key``, an enrollment already created under the
        same key is returned unchanged instead of inserting a duplicate.
        """

    @abstractmethod
    async def update_enrollment(self, enrollment_id: str, changes: Dict[str, Any]) -> None:
        """Apply a partial update and refresh ``updated_at``."""

    @abstractmethod
    async def get_enrollment(self, enrollment_id: str) -> Optional[Enrollment]:
        """Load an enrollment or None."""

    @abstractmethod
    async def list_enrollments(self) -> List[Enrollment]:
        """Every enrollment, newest first."""

    @abstractmethod
    async def query_enrollments(
        self,
        course_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        student_id: Optional[str] = None,
    ) -> List[Enrollment]:
        """Enrollments matching every given relation, newest first."""

    @abstractmethod
    async def add_note(self, enrollment_id: str, note: str) -> None:
        """Append a free-text note."""

    @abstractmethod
    async def add_communication_record(
        self, enrollment_id: str, record: CommunicationRecord
    ) -> None:
        """Append a communication history entry."""

    @abstractmethod
    async def delete_enrollment(self, enrollment_id: str) -> None:
        """Hard-delete an enrollment; raises RecordNotFoundError if missing."""


class CourseStore(ABC):
    """Read side of the course catalogue."""

    @abstractmethod
    async def get_course(self, course_id: str) -> Optional[Course]:
        """Load a course or None."""

    @abstractmethod
    async def list_courses(self) -> List[Course]:
        """Courses ordered by start date."""

    @abstractmethod
    async def create_course(self, course: Course) -> Course:
        """Insert a course (seeding and tests)."""


class ProgressStore(ABC):
    """Durable per-client slot for the enrollment wizard snapshot.

    Synchronous and best effort: adapters raise ProgressStoreError and the
    caller decides whether that matters.
    """

    @abstractmethod
    def save(self, key: str, payload: str) -> None:
        """Overwrite the snapshot stored under ``key``."""

    @abstractmethod
    def load(self, key: str) -> Optional[str]:
        """Return the raw snapshot or None."""

    @abstractmethod
    def clear(self, key: str) -> None:
        """Remove the snapshot; a missing key is not an error."""
