"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from academy.schemas.domain import (
    Account,
    CardDetails,
    Enrollment,
    ParentProfile,
    StudentProfile,
)


# ──────────────── Enrollment Wizard ────────────────

class FlowStartRequest(BaseModel):
    course_id: str = Field(..., min_length=1)


class SignInRequest(BaseModel):
    account: Account


class PaymentRequest(BaseModel):
    card: Optional[CardDetails] = None
    token_id: Optional[str] = None
    save_payment_method: bool = False

    @model_validator(mode="after")
    def _one_method(self) -> "PaymentRequest":
        if self.card is None and not self.token_id:
            raise ValueError("Provide card details or a saved payment method")
        if self.card is not None and self.token_id:
            raise ValueError("Provide either card details or a saved payment method, not both")
        return self


class FlowStateResponse(BaseModel):
    flow_id: str
    step: str
    course_id: str
    enrollment: Optional[Enrollment] = None
    parent: Optional[ParentProfile] = None
    student: Optional[StudentProfile] = None
    payment_captured: bool = False


class StoredPaymentMethod(BaseModel):
    id: str
    last4: str
    brand: str
    expiry_month: str
    expiry_year: str


# ──────────────── Admin ────────────────

class NoteRequest(BaseModel):
    note: str = Field(..., min_length=1, max_length=2000)


class CommunicationRequest(BaseModel):
    type: str = Field("email", pattern="^(email|phone|sms|note)$")
    message: str = Field(..., min_length=1, max_length=2000)


class PaymentSummaryResponse(BaseModel):
    total_payments: int
    total_amount: Decimal
    successful_payments: int
    failed_payments: int
    pending_payments: int
    success_rate: float


class PaymentListResponse(BaseModel):
    payments: List[Enrollment]
    summary: PaymentSummaryResponse


class DeleteResponse(BaseModel):
    success: bool = True
    message: str


class AdminDashboardResponse(BaseModel):
    total_enrollments: int
    confirmed_enrollments: int
    pending_enrollments: int
    failed_payments: int
    refunded_payments: int
    total_revenue: Decimal
    total_students: int
    total_parents: int
    status_distribution: Dict[str, int]
    generated_at: datetime
