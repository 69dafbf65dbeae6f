"""
Enrollment Model — One (student, course) registration attempt.
Relations and statuses are columns for querying; the payment sub-record,
notes and communication history live in the JSON document.
"""
from sqlalchemy import Column, String, DateTime, JSON

from academy.database import Base


class EnrollmentRecord(Base):
    __tablename__ = "enrollments"

    id = Column(String(36), primary_key=True, index=True)
    idempotency_key = Column(String(64), unique=True, nullable=True, index=True)

    # student_id is a temporary "pending-..." id until the racer step completes
    student_id = Column(String(64), nullable=False, index=True)
    parent_id = Column(String(36), nullable=False, index=True)
    course_id = Column(String(36), nullable=False, index=True)

    status = Column(String(16), default="pending")
    # Statuses: pending → confirmed → completed | cancelled | payment_failed
    payment_status = Column(String(16), default="pending")
    # Payment: pending | processing | completed | failed | refunded

    document = Column(JSON, default=dict)   # payment_details, payment, notes, communication_history

    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False)
