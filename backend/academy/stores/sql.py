"""
SQLAlchemy store implementations

Backs the store interfaces with the application database. Every call opens a
short-lived session from the injected session factory; SQLAlchemy failures
surface as StoreError (ProgressStoreError for the wizard snapshots).
"""
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from academy.exceptions import ProgressStoreError, RecordNotFoundError, StoreError
from academy.models.course import CourseRecord
from academy.models.enrollment import EnrollmentRecord
from academy.models.profile import ParentRecord, StudentRecord
from academy.models.progress import FlowProgress
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
from academy.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

_STUDENT_DOCUMENT_FIELDS = ("emergency_contact", "medical_notes", "allergies", "skill_level", "experience")


def _naive(value):
    """SQLite DateTime columns hold naive UTC."""
    return value.replace(tzinfo=None) if value is not None and value.tzinfo else value


class _SqlStore:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()


# ─── Profiles ────────────────────────────────────────────────────────

def _parent_from_record(record: ParentRecord) -> ParentProfile:
    return ParentProfile(
        id=record.id,
        user_id=record.user_id,
        first_name=record.first_name,
        last_name=record.last_name,
        email=record.email,
        phone=record.phone,
        address=record.address,
        students=list(record.students or []),
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


def _student_from_record(record: StudentRecord) -> StudentProfile:
    data = record.data or {}
    return StudentProfile(
        id=record.id,
        parent_id=record.parent_id,
        first_name=record.first_name,
        last_name=record.last_name,
        date_of_birth=record.date_of_birth,
        email=record.email,
        phone=record.phone,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
        **{k: data[k] for k in _STUDENT_DOCUMENT_FIELDS if k in data},
    )


class SqlProfileStore(_SqlStore, ProfileStore):
    async def create_parent(self, data: ParentCreate) -> ParentProfile:
        now = utcnow()
        parent = ParentProfile(id=str(uuid.uuid4()), created_at=now, updated_at=now, **data.model_dump())
        dumped = parent.model_dump(mode="json")
        record = ParentRecord(
            id=parent.id,
            user_id=parent.user_id,
            first_name=parent.first_name,
            last_name=parent.last_name,
            email=parent.email,
            phone=parent.phone,
            address=dumped["address"],
            students=list(parent.students),
            created_at=_naive(now),
            updated_at=_naive(now),
        )
        try:
            with self._session() as db:
                db.add(record)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to create parent: %s", exc)
            raise StoreError("Failed to save parent profile") from exc
        return parent

    async def get_parent(self, parent_id: str) -> Optional[ParentProfile]:
        try:
            with self._session() as db:
                record = db.query(ParentRecord).filter(ParentRecord.id == parent_id).first()
                return _parent_from_record(record) if record else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load parent profile") from exc

    async def get_parent_by_user(self, user_id: str) -> Optional[ParentProfile]:
        try:
            with self._session() as db:
                record = (
                    db.query(ParentRecord)
                    .filter(ParentRecord.user_id == user_id)
                    .order_by(ParentRecord.created_at.asc())
                    .first()
                )
                return _parent_from_record(record) if record else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load parent profile") from exc

    async def update_parent(self, parent_id: str, changes: Dict[str, Any]) -> None:
        try:
            with self._session() as db:
                record = db.query(ParentRecord).filter(ParentRecord.id == parent_id).first()
                if not record:
                    raise RecordNotFoundError(f"Parent {parent_id} not found")

                data = _parent_from_record(record).model_dump()
                data.update(changes)
                updated = ParentProfile.model_validate(data).model_dump(mode="json")

                record.first_name = updated["first_name"]
                record.last_name = updated["last_name"]
                record.email = updated["email"]
                record.phone = updated["phone"]
                record.address = updated["address"]
                record.students = list(updated["students"])
                record.updated_at = _naive(utcnow())
                db.commit()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to update parent profile") from exc

    async def create_student(self, data: StudentCreate) -> StudentProfile:
        now = utcnow()
        student = StudentProfile(id=str(uuid.uuid4()), created_at=now, updated_at=now, **data.model_dump())
        dumped = student.model_dump(mode="json")
        record = StudentRecord(
            id=student.id,
            parent_id=student.parent_id,
            first_name=student.first_name,
            last_name=student.last_name,
            date_of_birth=student.date_of_birth,
            email=student.email,
            phone=student.phone,
            data={k: dumped[k] for k in _STUDENT_DOCUMENT_FIELDS},
            created_at=_naive(now),
            updated_at=_naive(now),
        )
        try:
            with self._session() as db:
                db.add(record)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to create student: %s", exc)
            raise StoreError("Failed to save student profile") from exc
        return student

    async def get_student(self, student_id: str) -> Optional[StudentProfile]:
        try:
            with self._session() as db:
                record = db.query(StudentRecord).filter(StudentRecord.id == student_id).first()
                return _student_from_record(record) if record else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load student profile") from exc

    async def list_parents(self) -> List[ParentProfile]:
        try:
            with self._session() as db:
                records = db.query(ParentRecord).order_by(ParentRecord.created_at.desc()).all()
                return [_parent_from_record(r) for r in records]
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load parents") from exc

    async def list_students(self) -> List[StudentProfile]:
        try:
            with self._session() as db:
                records = db.query(StudentRecord).order_by(StudentRecord.created_at.desc()).all()
                return [_student_from_record(r) for r in records]
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load students") from exc


# ─── Enrollments ─────────────────────────────────────────────────────

_DOCUMENT_FIELDS = ("payment_details", "payment", "notes", "communication_history")


def _enrollment_from_record(record: EnrollmentRecord) -> Enrollment:
    document = record.document or {}
    return Enrollment(
        id=record.id,
        idempotency_key=record.idempotency_key,
        student_id=record.student_id,
        parent_id=record.parent_id,
        course_id=record.course_id,
        status=record.status,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
        **{k: document[k] for k in _DOCUMENT_FIELDS if k in document},
    )


def _write_enrollment(record: EnrollmentRecord, enrollment: Enrollment) -> None:
    dumped = enrollment.model_dump(mode="json")
    record.student_id = enrollment.student_id
    record.parent_id = enrollment.parent_id
    record.course_id = enrollment.course_id
    record.status = enrollment.status.value
    record.payment_status = enrollment.payment_details.payment_status.value
    record.document = {k: dumped[k] for k in _DOCUMENT_FIELDS}
    record.updated_at = _naive(enrollment.updated_at)


class SqlEnrollmentStore(_SqlStore, EnrollmentStore):
    async def create_enrollment(
        self, data: EnrollmentCreate, idempotency_key: Optional[str] = None
    ) -> Enrollment:
        now = utcnow()
        enrollment = Enrollment(
            id=str(uuid.uuid4()),
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        try:
            with self._session() as db:
                if idempotency_key:
                    existing = (
                        db.query(EnrollmentRecord)
                        .filter(EnrollmentRecord.idempotency_key == idempotency_key)
                        .first()
                    )
                    if existing:
                        logger.info("Enrollment %s reused for idempotency key", existing.id)
                        return _enrollment_from_record(existing)

                record = EnrollmentRecord(
                    id=enrollment.id,
                    idempotency_key=idempotency_key,
                    created_at=_naive(now),
                )
                _write_enrollment(record, enrollment)
                db.add(record)
                db.commit()
        except IntegrityError as exc:
            # A concurrent insert won the unique key; hand back that record
            if idempotency_key:
                with self._session() as db:
                    existing = (
                        db.query(EnrollmentRecord)
                        .filter(EnrollmentRecord.idempotency_key == idempotency_key)
                        .first()
                    )
                    if existing:
                        return _enrollment_from_record(existing)
            raise StoreError("Failed to create enrollment") from exc
        except SQLAlchemyError as exc:
            logger.error("Failed to create enrollment: %s", exc)
            raise StoreError("Failed to create enrollment") from exc
        return enrollment

    async def update_enrollment(self, enrollment_id: str, changes: Dict[str, Any]) -> None:
        await self._mutate(enrollment_id, lambda current: changes)

    async def get_enrollment(self, enrollment_id: str) -> Optional[Enrollment]:
        try:
            with self._session() as db:
                record = db.query(EnrollmentRecord).filter(EnrollmentRecord.id == enrollment_id).first()
                return _enrollment_from_record(record) if record else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load enrollment") from exc

    async def list_enrollments(self) -> List[Enrollment]:
        return await self.query_enrollments()

    async def query_enrollments(
        self,
        course_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        student_id: Optional[str] = None,
    ) -> List[Enrollment]:
        try:
            with self._session() as db:
                query = db.query(EnrollmentRecord).order_by(EnrollmentRecord.created_at.desc())
                if course_id:
                    query = query.filter(EnrollmentRecord.course_id == course_id)
                if parent_id:
                    query = query.filter(EnrollmentRecord.parent_id == parent_id)
                if student_id:
                    query = query.filter(EnrollmentRecord.student_id == student_id)
                return [_enrollment_from_record(r) for r in query.all()]
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load enrollments") from exc

    async def add_note(self, enrollment_id: str, note: str) -> None:
        await self._mutate(enrollment_id, lambda current: {"notes": [*current.notes, note]})

    async def add_communication_record(
        self, enrollment_id: str, record: CommunicationRecord
    ) -> None:
        await self._mutate(
            enrollment_id,
            lambda current: {"communication_history": [*current.communication_history, record]},
        )

    async def delete_enrollment(self, enrollment_id: str) -> None:
        try:
            with self._session() as db:
                deleted = db.query(EnrollmentRecord).filter(EnrollmentRecord.id == enrollment_id).delete()
                if not deleted:
                    raise RecordNotFoundError(f"Enrollment {enrollment_id} not found")
                db.commit()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to delete enrollment") from exc

    async def _mutate(self, enrollment_id: str, build_changes) -> None:
        try:
            with self._session() as db:
                record = db.query(EnrollmentRecord).filter(EnrollmentRecord.id == enrollment_id).first()
                if not record:
                    raise RecordNotFoundError(f"Enrollment {enrollment_id} not found")
                current = _enrollment_from_record(record)
                updated = apply_enrollment_changes(current, build_changes(current), utcnow())
                _write_enrollment(record, updated)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to update enrollment %s: %s", enrollment_id, exc)
            raise StoreError("Failed to update enrollment") from exc


# ─── Courses ─────────────────────────────────────────────────────────

def _course_from_record(record: CourseRecord) -> Course:
    return Course(
        id=record.id,
        title=record.title,
        slug=record.slug,
        price=record.price,
        currency=record.currency,
        start_date=record.start_date,
        end_date=record.end_date,
        location=record.location,
        available_spots=record.available_spots or 0,
        status=record.status,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


class SqlCourseStore(_SqlStore, CourseStore):
    async def get_course(self, course_id: str) -> Optional[Course]:
        try:
            with self._session() as db:
                record = db.query(CourseRecord).filter(CourseRecord.id == course_id).first()
                return _course_from_record(record) if record else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load course") from exc

    async def list_courses(self) -> List[Course]:
        try:
            with self._session() as db:
                records = db.query(CourseRecord).order_by(CourseRecord.start_date.asc()).all()
                return [_course_from_record(r) for r in records]
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load courses") from exc

    async def create_course(self, course: Course) -> Course:
        record = CourseRecord(
            id=course.id,
            title=course.title,
            slug=course.slug,
            price=course.price,
            currency=course.currency,
            start_date=course.start_date,
            end_date=course.end_date,
            location=course.location,
            available_spots=course.available_spots,
            status=course.status,
            created_at=_naive(course.created_at),
            updated_at=_naive(course.updated_at),
        )
        try:
            with self._session() as db:
                db.add(record)
                db.commit()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to save course") from exc
        return course


# ─── Wizard Progress ─────────────────────────────────────────────────

class SqlProgressStore(_SqlStore, ProgressStore):
    def save(self, key: str, payload: str) -> None:
        try:
            with self._session() as db:
                record = db.query(FlowProgress).filter(FlowProgress.key == key).first()
                if record:
                    record.payload = payload
                else:
                    db.add(FlowProgress(key=key, payload=payload))
                db.commit()
        except SQLAlchemyError as exc:
            raise ProgressStoreError(f"Failed to save progress for {key}") from exc

    def load(self, key: str) -> Optional[str]:
        try:
            with self._session() as db:
                record = db.query(FlowProgress).filter(FlowProgress.key == key).first()
                return record.payload if record else None
        except SQLAlchemyError as exc:
            raise ProgressStoreError(f"Failed to load progress for {key}") from exc

    def clear(self, key: str) -> None:
        try:
            with self._session() as db:
                db.query(FlowProgress).filter(FlowProgress.key == key).delete()
                db.commit()
        except SQLAlchemyError as exc:
            raise ProgressStoreError(f"Failed to clear progress for {key}") from exc
