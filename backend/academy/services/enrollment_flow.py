"""
Enrollment Flow — the course checkout wizard.

Drives one guardian from sign-in to a confirmed enrollment:

    auth → parent → payment → student → confirmation

The flow is forward only. Every transition (and every partial side effect
inside a step) is written to the progress store, so a reload resumes at the
same step with the same records instead of starting over. Side effects
(parent upsert, enrollment creation, payment capture, student creation)
happen at most once per successful step: records already produced by an
interrupted attempt are kept in the snapshot and reused on retry.

Step errors never move the flow; they are raised as EnrollmentFlowError
subclasses whose message can be shown to the guardian as-is.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from academy.exceptions import (
    GatewayError,
    InvalidStepError,
    NotificationFailedError,
    PaymentFailedError,
    ProgressStoreError,
    StepFailedError,
    StoreError,
)
from academy.schemas.domain import (
    Account,
    CardDetails,
    CommunicationRecord,
    Course,
    Enrollment,
    EnrollmentCreate,
    EnrollmentStatus,
    ParentCreate,
    ParentDetails,
    ParentProfile,
    Payment,
    PaymentDetails,
    PaymentMethodDescriptor,
    PaymentMethodType,
    PaymentStatus,
    PaymentToken,
    StudentCreate,
    StudentDetails,
    StudentProfile,
)
from academy.services.notification_service import NotificationPolicy, NotificationSender
from academy.services.payment_gateway import PaymentGateway, PaymentResult, ProcessPaymentOptions
from academy.stores.base import EnrollmentStore, ProfileStore, ProgressStore
from academy.utils.hashing import idempotency_key
from academy.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

PROGRESS_KEY = "enrollment-flow"
TEMP_STUDENT_PREFIX = "pending-"
GENERIC_PAYMENT_ERROR = "Payment processing failed"


class FlowStep(str, Enum):
    AUTH = "auth"
    PARENT = "parent"
    PAYMENT = "payment"
    STUDENT = "student"
    CONFIRMATION = "confirmation"


class FlowState(BaseModel):
    """Serializable wizard progress.

    ``captured_payment`` holds a charge the gateway accepted but the
    enrollment store has not recorded yet. ``run_id`` is fresh for every
    run of the wizard, so a new run never reopens an earlier run's
    enrollment.
    """

    step: FlowStep = FlowStep.AUTH
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    course_id: Optional[str] = None
    enrollment: Optional[Enrollment] = None
    parent: Optional[ParentProfile] = None
    student: Optional[StudentProfile] = None
    captured_payment: Optional[Payment] = None

    @model_validator(mode="after")
    def _step_guards(self) -> "FlowState":
        if self.step in (FlowStep.PAYMENT, FlowStep.STUDENT, FlowStep.CONFIRMATION):
            if self.enrollment is None or self.parent is None:
                raise ValueError(f"Step {self.step.value} requires an enrollment and a parent")
        if self.step in (FlowStep.STUDENT, FlowStep.CONFIRMATION):
            if self.enrollment.payment_details.payment_status != PaymentStatus.COMPLETED:
                raise ValueError(f"Step {self.step.value} requires a completed payment")
        if self.step == FlowStep.CONFIRMATION:
            if self.student is None or self.enrollment.status != EnrollmentStatus.CONFIRMED:
                raise ValueError("Confirmation requires a confirmed enrollment and a student")
        return self


@dataclass
class FlowContext:
    """Who is driving the flow. Passed in, never read from globals."""

    account: Optional[Account] = None


@dataclass
class FlowServices:
    profiles: ProfileStore
    enrollments: EnrollmentStore
    gateway: PaymentGateway
    notifier: NotificationSender


@dataclass
class _ConfirmationOutcome:
    sent: List[str] = field(default_factory=list)
    failed: List[Exception] = field(default_factory=list)


class EnrollmentFlow:
    """Sequential, resumable enrollment wizard for one client and one course.

    Args:
        course: Course being purchased; fixes the enrollment price and currency.
        services: Profile/enrollment stores, payment gateway, notifier.
        progress: Where snapshots are kept between requests or reloads.
        context: Signed-in account, if any.
        progress_key: Snapshot slot for this client.
        notification_policy: ``best_effort`` lets confirmation emails fail
            without blocking completion; ``required`` keeps the flow on the
            student step until they are sent.
    """

    def __init__(
        self,
        course: Course,
        services: FlowServices,
        progress: ProgressStore,
        context: Optional[FlowContext] = None,
        progress_key: str = PROGRESS_KEY,
        notification_policy: NotificationPolicy = NotificationPolicy.BEST_EFFORT,
    ):
        self.course = course
        self.services = services
        self.progress = progress
        self.context = context or FlowContext()
        self.progress_key = progress_key
        self.notification_policy = NotificationPolicy(notification_policy)
        self._state = FlowState(course_id=course.id)

    @property
    def state(self) -> FlowState:
        return self._state.model_copy(deep=True)

    @property
    def step(self) -> FlowStep:
        return self._state.step

    # ─── Resume / Exit ───────────────────────────────────────────────

    def resume(self) -> FlowState:
        """Restore saved progress, or start at ``auth`` when there is none.

        Unreadable snapshots, snapshots for another course and snapshots that
        break a step guard are discarded. No store calls are made.
        """
        raw = self._load()
        if raw is None:
            self._state = FlowState(course_id=self.course.id)
            return self.state

        try:
            snapshot = FlowState.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding unreadable enrollment progress %s: %s", self.progress_key, exc)
            self._discard()
            self._state = FlowState(course_id=self.course.id)
            return self.state

        if snapshot.course_id != self.course.id:
            logger.info(
                "Discarding enrollment progress %s for course %s (now %s)",
                self.progress_key, snapshot.course_id, self.course.id,
            )
            self._discard()
            self._state = FlowState(course_id=self.course.id)
            return self.state

        self._state = snapshot
        logger.info("Resumed enrollment flow %s at step %s", self.progress_key, snapshot.step.value)
        return self.state

    def close(self) -> FlowState:
        """Guardian dismissed the confirmation; forget the saved progress."""
        self._require_step(FlowStep.CONFIRMATION)
        self._discard()
        logger.info("Enrollment flow %s closed", self.progress_key)
        return self.state

    def abort(self) -> FlowState:
        """Drop saved progress and start over. Records already created stay."""
        self._discard()
        self._state = FlowState(course_id=self.course.id)
        logger.info("Enrollment flow %s aborted", self.progress_key)
        return self.state

    # ─── auth ────────────────────────────────────────────────────────

    async def sign_in(self, account: Account) -> FlowState:
        """Identity provider accepted the guardian.

        A known guardian goes straight to payment with a fresh pending
        enrollment; an unknown one fills in the guardian form first.
        """
        self._require_step(FlowStep.AUTH)

        try:
            parent = await self.services.profiles.get_parent_by_user(account.id)
        except StoreError as exc:
            logger.error("Parent lookup failed for account %s: %s", account.id, exc)
            raise StepFailedError("Failed to load your guardian profile") from exc

        if parent is None:
            self.context.account = account
            self._advance(FlowStep.PARENT)
            return self.state

        # a retried sign-in must reuse this run id
        self._persist()
        enrollment = await self._open_enrollment(parent)
        self.context.account = account
        self._state.parent = parent
        self._state.enrollment = enrollment
        self._advance(FlowStep.PAYMENT)
        return self.state

    def continue_as_guest(self) -> FlowState:
        self._require_step(FlowStep.AUTH)
        self._advance(FlowStep.PARENT)
        return self.state

    # ─── parent ──────────────────────────────────────────────────────

    async def submit_parent(self, details: ParentDetails) -> FlowState:
        """Upsert the guardian and open a pending enrollment for the course."""
        self._require_step(FlowStep.PARENT)
        if self._state.enrollment is not None:
            raise InvalidStepError("An enrollment already exists for this session")

        parent = await self._save_parent(details)
        self._state.parent = parent
        self._persist()

        enrollment = await self._open_enrollment(parent)
        self._state.enrollment = enrollment
        self._advance(FlowStep.PAYMENT)
        return self.state

    async def _save_parent(self, details: ParentDetails) -> ParentProfile:
        profiles = self.services.profiles
        account = self.context.account
        parent = self._state.parent
        changes = details.model_dump()

        try:
            if parent is None and account is not None:
                parent = await profiles.get_parent_by_user(account.id)

            if parent is None:
                return await profiles.create_parent(
                    ParentCreate(user_id=account.id if account else None, **changes)
                )

            await profiles.update_parent(parent.id, changes)
        except StoreError as exc:
            logger.error("Saving guardian for flow %s failed: %s", self.progress_key, exc)
            raise StepFailedError("Failed to save guardian details") from exc

        return ParentProfile.model_validate({**parent.model_dump(), **changes, "updated_at": utcnow()})

    async def _open_enrollment(self, parent: ParentProfile) -> Enrollment:
        data = EnrollmentCreate(
            student_id=f"{TEMP_STUDENT_PREFIX}{uuid.uuid4().hex}",
            parent_id=parent.id,
            course_id=self.course.id,
            status=EnrollmentStatus.PENDING,
            payment_details=PaymentDetails(
                amount=self.course.price,
                currency=self.course.currency,
                payment_status=PaymentStatus.PENDING,
            ),
        )
        key = idempotency_key(parent.id, self.course.id, self.progress_key, self._state.run_id)

        try:
            enrollment = await self.services.enrollments.create_enrollment(data, idempotency_key=key)
        except StoreError as exc:
            logger.error("Creating enrollment for parent %s failed: %s", parent.id, exc)
            raise StepFailedError("Failed to create enrollment") from exc

        if (
            enrollment.status != EnrollmentStatus.PENDING
            or enrollment.payment_details.payment_status != PaymentStatus.PENDING
        ):
            logger.error(
                "Enrollment %s for key %s is already %s/%s; refusing to reuse it",
                enrollment.id, key, enrollment.status.value, enrollment.payment_details.payment_status.value,
            )
            raise StepFailedError("This enrollment was already processed. Please start a new enrollment.")

        logger.info("Enrollment %s opened for course %s", enrollment.id, self.course.id)
        return enrollment

    # ─── payment ─────────────────────────────────────────────────────

    async def stored_payment_methods(self) -> List[PaymentToken]:
        """Saved cards the guardian can pay with; empty when unavailable."""
        parent = self._state.parent
        if parent is None:
            return []
        try:
            return await self.services.gateway.list_stored_payment_methods(parent.id)
        except GatewayError as exc:
            logger.warning("Could not fetch stored payment methods for %s: %s", parent.id, exc)
            return []

    async def submit_payment(
        self,
        card: Optional[CardDetails] = None,
        token_id: Optional[str] = None,
        save_payment_method: bool = False,
    ) -> FlowState:
        """Charge the enrollment amount; on success move to the racer form.

        Raises:
            PaymentFailedError: declined or gateway unavailable; retry freely.
            StepFailedError: charge captured but not recorded; a retry records
                it without charging again.
        """
        self._require_step(FlowStep.PAYMENT)
        enrollment, parent = self._require_records()

        if enrollment.payment_details.payment_status == PaymentStatus.COMPLETED:
            logger.info("Enrollment %s already paid; not charging again", enrollment.id)
            self._state.captured_payment = None
            self._advance(FlowStep.STUDENT)
            return self.state

        payment = self._state.captured_payment
        if payment is None:
            if card is None and not token_id:
                raise PaymentFailedError("Provide card details or a saved payment method")
            result = await self._charge(enrollment, parent, card, token_id, save_payment_method)
            payment = self._build_payment(enrollment, result, card, token_id)
            self._state.captured_payment = payment
            self._persist()

        details = enrollment.payment_details.model_copy(update={
            "payment_status": PaymentStatus.COMPLETED,
            "transaction_id": payment.transaction_id,
            "error_message": None,
        })
        changes = {
            "payment_details": details,
            "payment": payment,
            "status": EnrollmentStatus.PENDING,
        }
        try:
            await self.services.enrollments.update_enrollment(enrollment.id, changes)
        except StoreError as exc:
            logger.error(
                "Payment %s captured but enrollment %s not updated: %s",
                payment.transaction_id, enrollment.id, exc,
            )
            raise StepFailedError(
                "Your payment was received but we could not update your enrollment. Please retry."
            ) from exc

        self._state.enrollment = enrollment.model_copy(update={**changes, "updated_at": utcnow()})
        self._state.captured_payment = None
        logger.info("Payment %s recorded on enrollment %s", payment.transaction_id, enrollment.id)
        self._advance(FlowStep.STUDENT)
        return self.state

    async def _charge(
        self,
        enrollment: Enrollment,
        parent: ParentProfile,
        card: Optional[CardDetails],
        token_id: Optional[str],
        save_payment_method: bool,
    ) -> PaymentResult:
        options = ProcessPaymentOptions(customer_id=parent.id, save_payment_method=save_payment_method)
        try:
            result = await self.services.gateway.process_payment(
                enrollment, self.course, card=card, token_id=token_id, options=options
            )
        except GatewayError as exc:
            logger.error("Gateway error for enrollment %s: %s", enrollment.id, exc)
            raise PaymentFailedError(exc.message or GENERIC_PAYMENT_ERROR) from exc

        if not result.success or not result.transaction_id:
            logger.warning("Payment declined for enrollment %s: %s", enrollment.id, result.error)
            await self._notify_payment_failed(enrollment, parent)
            raise PaymentFailedError(result.error or GENERIC_PAYMENT_ERROR)
        return result

    def _build_payment(
        self,
        enrollment: Enrollment,
        result: PaymentResult,
        card: Optional[CardDetails],
        token_id: Optional[str],
    ) -> Payment:
        if card is not None:
            method = PaymentMethodDescriptor(
                type=PaymentMethodType.CARD, last4=card.last4, token_id=result.token_id
            )
        else:
            method = PaymentMethodDescriptor(type=PaymentMethodType.TOKEN, token_id=token_id)

        return Payment(
            id=str(uuid.uuid4()),
            enrollment_id=enrollment.id,
            amount=enrollment.payment_details.amount,
            currency=enrollment.payment_details.currency,
            status=PaymentStatus.COMPLETED,
            payment_method=method,
            transaction_id=result.transaction_id,
            metadata={"course_id": self.course.id, "course_name": self.course.title},
        )

    async def _notify_payment_failed(self, enrollment: Enrollment, parent: ParentProfile) -> None:
        try:
            await self.services.notifier.send_payment_failed(enrollment, self.course, parent)
        except Exception as exc:
            logger.warning("Payment-failed email for enrollment %s not sent: %s", enrollment.id, exc)

    # ─── student ─────────────────────────────────────────────────────

    async def submit_student(self, details: StudentDetails) -> FlowState:
        """Create the racer, confirm the enrollment and send confirmations."""
        self._require_step(FlowStep.STUDENT)
        enrollment, parent = self._require_records()
        if enrollment.payment_details.payment_status != PaymentStatus.COMPLETED:
            raise InvalidStepError("Payment must complete before adding racer details")

        student = self._state.student
        if student is None:
            try:
                student = await self.services.profiles.create_student(
                    StudentCreate(parent_id=parent.id, **details.model_dump())
                )
            except StoreError as exc:
                logger.error("Creating student for enrollment %s failed: %s", enrollment.id, exc)
                raise StepFailedError("Failed to save racer details") from exc
            self._state.student = student
            self._persist()

        if enrollment.status != EnrollmentStatus.CONFIRMED or enrollment.student_id != student.id:
            changes = {"student_id": student.id, "status": EnrollmentStatus.CONFIRMED}
            try:
                await self.services.enrollments.update_enrollment(enrollment.id, changes)
            except StoreError as exc:
                logger.error("Confirming enrollment %s failed: %s", enrollment.id, exc)
                raise StepFailedError("Failed to confirm enrollment") from exc
            enrollment = enrollment.model_copy(update={**changes, "updated_at": utcnow()})
            self._state.enrollment = enrollment
            self._persist()

        if student.id not in parent.students:
            students = [*parent.students, student.id]
            try:
                await self.services.profiles.update_parent(parent.id, {"students": students})
            except StoreError as exc:
                logger.error("Linking student %s to parent %s failed: %s", student.id, parent.id, exc)
                raise StepFailedError("Failed to link racer to guardian") from exc
            parent = parent.model_copy(update={"students": students, "updated_at": utcnow()})
            self._state.parent = parent
            self._persist()

        outcome = await self._send_confirmations(enrollment, student, parent)
        if outcome.failed and self.notification_policy == NotificationPolicy.REQUIRED:
            raise NotificationFailedError() from outcome.failed[0]

        self._advance(FlowStep.CONFIRMATION)
        return self.state

    async def _send_confirmations(
        self, enrollment: Enrollment, student: StudentProfile, parent: ParentProfile
    ) -> _ConfirmationOutcome:
        notifier = self.services.notifier
        labels = ("Enrollment confirmation", "Payment confirmation")
        results = await asyncio.gather(
            notifier.send_enrollment_confirmation(enrollment, self.course, student, parent),
            notifier.send_payment_confirmation(enrollment, self.course, parent),
            return_exceptions=True,
        )

        outcome = _ConfirmationOutcome()
        for label, result in zip(labels, results):
            if isinstance(result, Exception):
                logger.error("%s for enrollment %s failed: %s", label, enrollment.id, result)
                outcome.failed.append(result)
            else:
                outcome.sent.append(label)

        for label in outcome.sent:
            record = CommunicationRecord(type="email", message=f"{label} sent to {parent.email}")
            try:
                await self.services.enrollments.add_communication_record(enrollment.id, record)
            except StoreError as exc:
                logger.warning("Could not record communication on %s: %s", enrollment.id, exc)

        return outcome

    # ─── Helpers ─────────────────────────────────────────────────────

    def _require_step(self, step: FlowStep) -> None:
        if self._state.step != step:
            raise InvalidStepError(
                f"Expected step '{step.value}' but the enrollment is at '{self._state.step.value}'"
            )

    def _require_records(self):
        enrollment, parent = self._state.enrollment, self._state.parent
        if enrollment is None or parent is None:
            raise InvalidStepError("Enrollment and guardian details are required")
        return enrollment, parent

    def _advance(self, step: FlowStep) -> None:
        previous = self._state.step
        self._state.step = step
        self._persist()
        logger.info("Enrollment flow %s: %s -> %s", self.progress_key, previous.value, step.value)

    def _persist(self) -> None:
        try:
            self.progress.save(self.progress_key, self._state.model_dump_json())
        except ProgressStoreError as exc:
            logger.warning("Progress for %s not saved: %s", self.progress_key, exc)

    def _load(self) -> Optional[str]:
        try:
            return self.progress.load(self.progress_key)
        except ProgressStoreError as exc:
            logger.warning("Progress for %s not loaded: %s", self.progress_key, exc)
            return None

    def _discard(self) -> None:
        try:
            self.progress.clear(self.progress_key)
        except ProgressStoreError as exc:
            logger.warning("Progress for %s not cleared: %s", self.progress_key, exc)
