"""
Academy Exceptions — error taxonomy shared by stores, services and routes.
"""
from typing import Optional


class AcademyError(Exception):
    """Base academy error"""

    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ─── Collaborator Errors ─────────────────────────────────────────────

class StoreError(AcademyError):
    """A profile/enrollment/course store call failed"""

    default_message = "Failed to load or save data"


class RecordNotFoundError(StoreError):
    """The requested record does not exist"""

    default_message = "Record not found"


class EnrollmentInvariantError(StoreError):
    """An update would break an enrollment invariant"""

    default_message = "Enrollment update violates an invariant"


class ProgressStoreError(AcademyError):
    """The wizard progress store could not save, load or clear a snapshot"""

    default_message = "Failed to persist enrollment progress"


class GatewayError(AcademyError):
    """The payment gateway could not be reached or answered garbage"""

    default_message = "Payment service unavailable"


class NotificationError(AcademyError):
    """A confirmation message could not be delivered"""

    default_message = "Failed to send notification"


# ─── Workflow Errors ─────────────────────────────────────────────────

class EnrollmentFlowError(AcademyError):
    """A wizard step failed; the flow stays on its current step"""

    default_message = "Failed to complete enrollment step"


class InvalidStepError(EnrollmentFlowError):
    """The action is not allowed from the current step or its guard failed"""

    default_message = "This action is not available at the current step"


class StepFailedError(EnrollmentFlowError):
    """A store call inside a step failed"""

    default_message = "Failed to save enrollment details"


class PaymentFailedError(EnrollmentFlowError):
    """The gateway declined or errored; the message is shown to the payer"""

    default_message = "Payment processing failed"


class NotificationFailedError(EnrollmentFlowError):
    """Confirmations are required and at least one could not be sent"""

    default_message = "Enrollment saved but confirmation emails could not be sent"


# ─── Admin Errors ────────────────────────────────────────────────────

class RefundNotAllowedError(AcademyError):
    """Only completed payments with a transaction can be refunded"""

    default_message = "Only completed payments can be refunded"


class RefundFailedError(AcademyError):
    """The gateway refused the refund"""

    default_message = "Refund failed"


class RefundNotRecordedError(AcademyError):
    """The gateway refunded but the enrollment could not be updated"""

    default_message = "Refund issued but the enrollment could not be updated"

    def __init__(self, refund_id: str, message: Optional[str] = None):
        self.refund_id = refund_id
        super().__init__(message or f"{self.default_message} (refund {refund_id})")


class DeleteNotAllowedError(AcademyError):
    """Only failed-payment enrollments may be deleted"""

    default_message = "Only failed payments can be deleted"
