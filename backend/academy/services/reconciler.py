"""
Stale Payment Reconciler — expires enrollments whose payment never settled.

Runs once per admin payments load, before any filtering, so a "failed"
filter reflects the sweep from the same load.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from academy.schemas.domain import Enrollment, EnrollmentStatus, PaymentStatus
from academy.stores.base import EnrollmentStore
from academy.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

PAYMENT_TIMEOUT_MESSAGE = "Payment timeout - no response received"
DEFAULT_PAYMENT_TIMEOUT = timedelta(hours=24)


def is_stale(enrollment: Enrollment, now: datetime, timeout: timedelta = DEFAULT_PAYMENT_TIMEOUT) -> bool:
    """Pending for strictly longer than ``timeout``."""
    if enrollment.payment_details.payment_status != PaymentStatus.PENDING:
        return False
    return ensure_utc(now) - enrollment.created_at > timeout


async def reconcile_stale_payments(
    enrollments: Iterable[Enrollment],
    store: EnrollmentStore,
    now: Optional[datetime] = None,
    timeout: timedelta = DEFAULT_PAYMENT_TIMEOUT,
) -> List[Enrollment]:
    """
    Mark stale pending payments as failed and persist each change.

    Args:
        enrollments: Snapshot of enrollments; not modified.
        store: Enrollment store the updates are written to, one at a time.
        now: Reference time (defaults to the current UTC time).
        timeout: How long a payment may stay pending.

    Returns:
        A new list in the input order. Records whose update could not be
        persisted are returned unchanged.
    """
    now = ensure_utc(now) if now is not None else utcnow()
    reconciled: List[Enrollment] = []
    expired = 0

    for enrollment in enrollments:
        if not is_stale(enrollment, now, timeout):
            reconciled.append(enrollment)
            continue

        details = enrollment.payment_details.model_copy(update={
            "payment_status": PaymentStatus.FAILED,
            "error_message": PAYMENT_TIMEOUT_MESSAGE,
        })
        changes = {"payment_details": details, "status": EnrollmentStatus.PAYMENT_FAILED}

        try:
            await store.update_enrollment(enrollment.id, changes)
        except Exception as exc:
            logger.error("Could not expire stale payment on enrollment %s: %s", enrollment.id, exc)
            reconciled.append(enrollment)
            continue

        reconciled.append(enrollment.model_copy(update={**changes, "updated_at": now}))
        expired += 1

    if expired:
        logger.info("Expired %d stale pending payment(s)", expired)
    return reconciled
