"""
Domain Models — Enrollment, profiles, payments and courses.

These are the records the stores persist and the enrollment flow passes
around. API request/response shapes live in ``academy.schemas.schemas``.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from academy.utils.timeutils import ensure_utc, utcnow

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ──────────────── Status Vocabulary ────────────────

class EnrollmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    PAYMENT_FAILED = "payment_failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    PROCESSING = "processing"
    REFUNDED = "refunded"


class PaymentMethodType(str, Enum):
    CARD = "card"
    TOKEN = "token"


# ──────────────── Shared ────────────────

class Address(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "US"


class TimestampedModel(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Account(BaseModel):
    """Identity returned by the sign-in provider."""

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


# ──────────────── Courses ────────────────

class Course(TimestampedModel):
    id: str
    title: str
    slug: str
    price: Decimal = Field(..., ge=0)
    currency: str = "USD"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    location: Optional[str] = None
    available_spots: int = 0
    status: str = "published"   # draft | published | archived


# ──────────────── Profiles ────────────────

class EmergencyContact(BaseModel):
    name: str
    phone: str
    relationship: str


class ParentDetails(BaseModel):
    """What the guardian form collects."""

    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    phone: str = Field(..., min_length=7)
    address: Optional[Address] = None


class ParentProfile(TimestampedModel):
    id: str
    user_id: Optional[str] = None
    first_name: str
    last_name: str
    email: str
    phone: str
    address: Optional[Address] = None
    students: List[str] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ParentCreate(ParentDetails):
    user_id: Optional[str] = None
    students: List[str] = Field(default_factory=list)


class StudentProfile(TimestampedModel):
    id: str
    parent_id: str
    first_name: str
    last_name: str
    date_of_birth: date
    email: Optional[str] = None
    phone: Optional[str] = None
    emergency_contact: EmergencyContact
    medical_notes: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    skill_level: Optional[str] = None   # beginner | intermediate | advanced
    experience: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class StudentDetails(BaseModel):
    """What the racer form collects."""

    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    date_of_birth: date
    email: Optional[str] = None
    phone: Optional[str] = None
    emergency_contact: EmergencyContact
    medical_notes: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    skill_level: Optional[str] = Field(None, pattern="^(beginner|intermediate|advanced)$")
    experience: Optional[str] = None


class StudentCreate(StudentDetails):
    parent_id: str


# ──────────────── Payments ────────────────

class PaymentDetails(BaseModel):
    """Payment sub-record carried on every enrollment."""

    amount: Decimal
    currency: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None


class PaymentMethodDescriptor(BaseModel):
    type: PaymentMethodType
    last4: Optional[str] = None
    token_id: Optional[str] = None


class Payment(TimestampedModel):
    """A finalized gateway transaction."""

    id: str
    enrollment_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: PaymentMethodDescriptor
    transaction_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    refund_id: Optional[str] = None
    refunded_at: Optional[datetime] = None


class PaymentToken(TimestampedModel):
    """A stored, reusable payment method."""

    id: str
    customer_id: str
    last4: str
    expiry_month: str
    expiry_year: str
    brand: str = "unknown"
    token_type: str = "recurring"   # recurring | one-time
    in_use: bool = False


class CardDetails(BaseModel):
    card_number: str = Field(..., min_length=13, max_length=19)
    expiry_month: str = Field(..., min_length=2, max_length=2)
    expiry_year: str = Field(..., min_length=2, max_length=4)
    cvv: str = Field(..., min_length=3, max_length=4)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    address: Optional[Address] = None

    @property
    def last4(self) -> str:
        return self.card_number[-4:]


# ──────────────── Enrollment ────────────────

class CommunicationRecord(BaseModel):
    type: str = "email"
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class EnrollmentCreate(BaseModel):
    student_id: str
    parent_id: str
    course_id: str
    status: EnrollmentStatus = EnrollmentStatus.PENDING
    payment_details: PaymentDetails
    notes: List[str] = Field(default_factory=list)
    communication_history: List[CommunicationRecord] = Field(default_factory=list)


class Enrollment(TimestampedModel):
    """One (student, course) registration attempt."""

    id: str
    student_id: str
    parent_id: str
    course_id: str
    status: EnrollmentStatus = EnrollmentStatus.PENDING
    payment_details: PaymentDetails
    payment: Optional[Payment] = None
    notes: List[str] = Field(default_factory=list)
    communication_history: List[CommunicationRecord] = Field(default_factory=list)
    idempotency_key: Optional[str] = None

    @model_validator(mode="after")
    def _confirmed_requires_payment(self) -> "Enrollment":
        if (
            self.status == EnrollmentStatus.CONFIRMED
            and self.payment_details.payment_status != PaymentStatus.COMPLETED
        ):
            raise ValueError("An enrollment cannot be confirmed before its payment completes")
        return self
