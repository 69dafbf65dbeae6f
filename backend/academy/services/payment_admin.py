"""
Payment Admin — payments dashboard data, refunds and failed-record cleanup.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from academy.exceptions import (
    DeleteNotAllowedError,
    GatewayError,
    RecordNotFoundError,
    RefundFailedError,
    RefundNotAllowedError,
    RefundNotRecordedError,
    StoreError,
)
from academy.schemas.domain import Enrollment, EnrollmentStatus, PaymentStatus
from academy.services.payment_gateway import PaymentGateway
from academy.services.reconciler import DEFAULT_PAYMENT_TIMEOUT, reconcile_stale_payments
from academy.stores.base import EnrollmentStore
from academy.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PaymentFilters:
    payment_status: Optional[PaymentStatus] = None
    status: Optional[EnrollmentStatus] = None
    course_id: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def matches(self, enrollment: Enrollment) -> bool:
        if self.payment_status and enrollment.payment_details.payment_status != self.payment_status:
            return False
        if self.status and enrollment.status != self.status:
            return False
        if self.course_id and enrollment.course_id != self.course_id:
            return False
        if self.created_from and enrollment.created_at < ensure_utc(self.created_from):
            return False
        if self.created_to and enrollment.created_at > ensure_utc(self.created_to):
            return False
        return True


class PaymentSummary(BaseModel):
    total_payments: int = 0
    total_amount: Decimal = Decimal("0")
    successful_payments: int = 0
    failed_payments: int = 0
    pending_payments: int = 0
    success_rate: float = 0.0


class PaymentReport(BaseModel):
    enrollments: List[Enrollment]
    summary: PaymentSummary


def summarize_payments(enrollments: List[Enrollment]) -> PaymentSummary:
    """Totals for the dashboard header. Only completed payments count toward the amount."""
    summary = PaymentSummary(total_payments=len(enrollments))
    for enrollment in enrollments:
        status = enrollment.payment_details.payment_status
        if status == PaymentStatus.COMPLETED:
            summary.successful_payments += 1
            summary.total_amount += enrollment.payment_details.amount
        elif status == PaymentStatus.FAILED:
            summary.failed_payments += 1
        elif status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
            summary.pending_payments += 1

    if summary.total_payments:
        summary.success_rate = round(summary.successful_payments / summary.total_payments * 100, 2)
    return summary


class PaymentAdminService:
    """Admin-side operations over enrollment payments."""

    def __init__(
        self,
        enrollments: EnrollmentStore,
        gateway: PaymentGateway,
        stale_timeout: timedelta = DEFAULT_PAYMENT_TIMEOUT,
    ):
        self.enrollments = enrollments
        self.gateway = gateway
        self.stale_timeout = stale_timeout

    async def load_payments(
        self, filters: Optional[PaymentFilters] = None, now: Optional[datetime] = None
    ) -> PaymentReport:
        """
        Load every enrollment, expire stale pending payments, then filter.

        Args:
            filters: Narrowing applied after the sweep.
            now: Reference time for the sweep.

        Returns:
            PaymentReport with the filtered records (newest first) and
            a summary computed over them.
        """
        records = await self.enrollments.list_enrollments()
        records = await reconcile_stale_payments(records, self.enrollments, now=now, timeout=self.stale_timeout)

        if filters is not None:
            records = [e for e in records if filters.matches(e)]
        records.sort(key=lambda e: e.created_at, reverse=True)

        return PaymentReport(enrollments=records, summary=summarize_payments(records))

    async def refund(self, enrollment_id: str) -> Enrollment:
        """
        Refund the full enrollment amount and cancel the enrollment.

        Raises:
            RecordNotFoundError: unknown enrollment.
            RefundNotAllowedError: payment not completed or no transaction id.
            RefundFailedError: the gateway refused; nothing is changed.
            RefundNotRecordedError: money went back but the record was not
                updated; carries the refund id for manual follow-up.
        """
        enrollment = await self._require(enrollment_id)
        details = enrollment.payment_details
        if details.payment_status != PaymentStatus.COMPLETED or not details.transaction_id:
            raise RefundNotAllowedError()

        try:
            result = await self.gateway.refund_payment(details.transaction_id, details.amount)
        except GatewayError as exc:
            logger.error("Refund for enrollment %s failed: %s", enrollment_id, exc)
            raise RefundFailedError(exc.message) from exc

        if not result.success:
            logger.warning("Refund refused for enrollment %s: %s", enrollment_id, result.error)
            raise RefundFailedError(result.error or RefundFailedError.default_message)

        now = utcnow()
        changes = {
            "payment_details": details.model_copy(update={"payment_status": PaymentStatus.REFUNDED}),
            "status": EnrollmentStatus.CANCELLED,
        }
        if enrollment.payment is not None:
            changes["payment"] = enrollment.payment.model_copy(update={
                "status": PaymentStatus.REFUNDED,
                "refund_id": result.refund_id,
                "refunded_at": now,
                "updated_at": now,
            })

        try:
            await self.enrollments.update_enrollment(enrollment_id, changes)
        except StoreError as exc:
            logger.error(
                "Refund %s issued for enrollment %s but not recorded: %s",
                result.refund_id, enrollment_id, exc,
            )
            raise RefundNotRecordedError(result.refund_id) from exc
        logger.info("Refunded %s %s on enrollment %s", details.amount, details.currency, enrollment_id)
        return enrollment.model_copy(update={**changes, "updated_at": now})

    async def delete_failed(self, enrollment_id: str) -> None:
        enrollment = await self._require(enrollment_id)
        if enrollment.payment_details.payment_status != PaymentStatus.FAILED:
            raise DeleteNotAllowedError()
        await self.enrollments.delete_enrollment(enrollment_id)
        logger.info("Deleted failed enrollment %s", enrollment_id)

    async def _require(self, enrollment_id: str) -> Enrollment:
        enrollment = await self.enrollments.get_enrollment(enrollment_id)
        if enrollment is None:
            raise RecordNotFoundError(f"Enrollment {enrollment_id} not found")
        return enrollment
