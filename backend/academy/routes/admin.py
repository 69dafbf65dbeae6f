"""
Admin Routes — Payments dashboard, refunds and enrollment records.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from academy.dependencies import AcademyServices, get_services
from academy.exceptions import (
    AcademyError,
    DeleteNotAllowedError,
    RecordNotFoundError,
    RefundFailedError,
    RefundNotAllowedError,
    StoreError,
)
from academy.schemas.domain import (
    CommunicationRecord,
    Enrollment,
    EnrollmentStatus,
    ParentProfile,
    PaymentStatus,
    StudentProfile,
)
from academy.schemas.schemas import (
    AdminDashboardResponse,
    CommunicationRequest,
    DeleteResponse,
    NoteRequest,
    PaymentListResponse,
    PaymentSummaryResponse,
)
from academy.services.payment_admin import PaymentFilters
from academy.utils.timeutils import utcnow


router = APIRouter(prefix="/api/admin", tags=["Admin"])


def _admin_error(exc: AcademyError) -> HTTPException:
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, (RefundNotAllowedError, DeleteNotAllowedError)):
        return HTTPException(status_code=409, detail=exc.message)
    if isinstance(exc, RefundFailedError):
        return HTTPException(status_code=400, detail=exc.message)
    return HTTPException(status_code=503, detail=exc.message)


@router.get("/dashboard", response_model=AdminDashboardResponse)
async def get_dashboard(services: AcademyServices = Depends(get_services)):
    """Aggregated enrollment and revenue metrics."""
    try:
        report = await services.payment_admin().load_payments()
        students = await services.profiles.list_students()
        parents = await services.profiles.list_parents()
    except AcademyError as exc:
        raise _admin_error(exc)

    enrollments = report.enrollments
    status_dist = {}
    for e in enrollments:
        status_dist[e.status.value] = status_dist.get(e.status.value, 0) + 1

    revenue = sum(
        (e.payment_details.amount for e in enrollments
         if e.payment_details.payment_status == PaymentStatus.COMPLETED),
        Decimal("0"),
    )

    return AdminDashboardResponse(
        total_enrollments=len(enrollments),
        confirmed_enrollments=status_dist.get(EnrollmentStatus.CONFIRMED.value, 0),
        pending_enrollments=status_dist.get(EnrollmentStatus.PENDING.value, 0),
        failed_payments=report.summary.failed_payments,
        refunded_payments=sum(
            1 for e in enrollments if e.payment_details.payment_status == PaymentStatus.REFUNDED
        ),
        total_revenue=revenue,
        total_students=len(students),
        total_parents=len(parents),
        status_distribution=status_dist,
        generated_at=utcnow(),
    )


# ─── Payments ────────────────────────────────────────────────────────

@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    payment_status: Optional[PaymentStatus] = None,
    status: Optional[EnrollmentStatus] = None,
    course_id: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    services: AcademyServices = Depends(get_services),
):
    """Payments view. Stale pending payments are expired before filtering."""
    filters = PaymentFilters(
        payment_status=payment_status,
        status=status,
        course_id=course_id,
        created_from=created_from,
        created_to=created_to,
    )
    try:
        report = await services.payment_admin().load_payments(filters)
    except AcademyError as exc:
        raise _admin_error(exc)

    return PaymentListResponse(
        payments=report.enrollments,
        summary=PaymentSummaryResponse(**report.summary.model_dump()),
    )


@router.post("/payments/{enrollment_id}/refund", response_model=Enrollment)
async def refund_payment(enrollment_id: str, services: AcademyServices = Depends(get_services)):
    """Refund the full amount and cancel the enrollment."""
    try:
        return await services.payment_admin().refund(enrollment_id)
    except AcademyError as exc:
        raise _admin_error(exc)


@router.delete("/payments/{enrollment_id}", response_model=DeleteResponse)
async def delete_failed_payment(enrollment_id: str, services: AcademyServices = Depends(get_services)):
    """Remove an enrollment whose payment failed."""
    try:
        await services.payment_admin().delete_failed(enrollment_id)
    except AcademyError as exc:
        raise _admin_error(exc)
    return DeleteResponse(message=f"Enrollment {enrollment_id} deleted")


# ─── Enrollments ─────────────────────────────────────────────────────

@router.get("/enrollments", response_model=List[Enrollment])
async def list_enrollments(
    status: Optional[EnrollmentStatus] = None,
    course_id: Optional[str] = None,
    parent_id: Optional[str] = None,
    student_id: Optional[str] = None,
    services: AcademyServices = Depends(get_services),
):
    try:
        enrollments = await services.enrollments.query_enrollments(
            course_id=course_id, parent_id=parent_id, student_id=student_id
        )
    except StoreError as exc:
        raise _admin_error(exc)
    if status:
        enrollments = [e for e in enrollments if e.status == status]
    return enrollments


@router.get("/enrollments/{enrollment_id}", response_model=Enrollment)
async def get_enrollment(enrollment_id: str, services: AcademyServices = Depends(get_services)):
    try:
        enrollment = await services.enrollments.get_enrollment(enrollment_id)
    except StoreError as exc:
        raise _admin_error(exc)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    return enrollment


@router.post("/enrollments/{enrollment_id}/notes", response_model=Enrollment)
async def add_note(
    enrollment_id: str,
    payload: NoteRequest,
    services: AcademyServices = Depends(get_services),
):
    """Append an internal note."""
    try:
        await services.enrollments.add_note(enrollment_id, payload.note)
        return await services.enrollments.get_enrollment(enrollment_id)
    except StoreError as exc:
        raise _admin_error(exc)


@router.post("/enrollments/{enrollment_id}/communications", response_model=Enrollment)
async def add_communication(
    enrollment_id: str,
    payload: CommunicationRequest,
    services: AcademyServices = Depends(get_services),
):
    """Log a call, email or message sent to the family."""
    record = CommunicationRecord(type=payload.type, message=payload.message)
    try:
        await services.enrollments.add_communication_record(enrollment_id, record)
        return await services.enrollments.get_enrollment(enrollment_id)
    except StoreError as exc:
        raise _admin_error(exc)


# ─── Profiles ────────────────────────────────────────────────────────

@router.get("/students", response_model=List[StudentProfile])
async def list_students(services: AcademyServices = Depends(get_services)):
    try:
        return await services.profiles.list_students()
    except StoreError as exc:
        raise _admin_error(exc)


@router.get("/parents", response_model=List[ParentProfile])
async def list_parents(services: AcademyServices = Depends(get_services)):
    try:
        return await services.profiles.list_parents()
    except StoreError as exc:
        raise _admin_error(exc)
