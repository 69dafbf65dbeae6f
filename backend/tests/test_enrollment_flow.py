"""
Tests for the enrollment wizard controller.
"""
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from academy.exceptions import (
    InvalidStepError,
    NotificationError,
    NotificationFailedError,
    PaymentFailedError,
    ProgressStoreError,
    StepFailedError,
    StoreError,
)
from academy.schemas.domain import (
    Account,
    Course,
    EnrollmentCreate,
    EnrollmentStatus,
    ParentCreate,
    PaymentDetails,
    PaymentMethodType,
    PaymentStatus,
)
from academy.services.enrollment_flow import (
    PROGRESS_KEY,
    EnrollmentFlow,
    FlowContext,
    FlowServices,
    FlowState,
    FlowStep,
)
from academy.services.notification_service import EmailTemplate, NotificationPolicy
from academy.services.payment_gateway import PaymentResult
from academy.stores import InMemoryEnrollmentStore, InMemoryProgressStore


class RecordingProgressStore(InMemoryProgressStore):
    def __init__(self):
        super().__init__()
        self.saved = []

    def save(self, key, payload):
        self.saved.append(payload)
        super().save(key, payload)


class FlakyEnrollmentStore(InMemoryEnrollmentStore):
    """Fails create/update while the matching flag is set."""

    def __init__(self):
        super().__init__()
        self.fail_create = False
        self.fail_update = False

    async def create_enrollment(self, data, idempotency_key=None):
        if self.fail_create:
            raise StoreError("database unavailable")
        return await super().create_enrollment(data, idempotency_key=idempotency_key)

    async def update_enrollment(self, enrollment_id, changes):
        if self.fail_update:
            raise StoreError("database unavailable")
        await super().update_enrollment(enrollment_id, changes)


async def _reach_payment(flow, parent_details):
    flow.resume()
    flow.continue_as_guest()
    await flow.submit_parent(parent_details)
    return flow


# ============================================
# HAPPY PATH
# ============================================

class TestGuestEnrollment:
    @pytest.mark.asyncio
    async def test_full_flow_confirms_enrollment(
        self, make_flow, parent_details, student_details, card, enrollments, profiles, notifier, progress
    ):
        flow = make_flow()
        assert flow.resume().step == FlowStep.AUTH

        assert flow.continue_as_guest().step == FlowStep.PARENT

        state = await flow.submit_parent(parent_details)
        assert state.step == FlowStep.PAYMENT
        assert state.enrollment.status == EnrollmentStatus.PENDING
        assert state.enrollment.payment_details.amount == Decimal("499.00")
        assert state.enrollment.payment_details.currency == "USD"
        assert state.enrollment.payment_details.payment_status == PaymentStatus.PENDING
        assert state.enrollment.student_id.startswith("pending-")

        state = await flow.submit_payment(card=card)
        assert state.step == FlowStep.STUDENT
        assert state.enrollment.payment_details.payment_status == PaymentStatus.COMPLETED
        assert state.enrollment.payment_details.transaction_id.startswith("tx_")
        assert state.enrollment.payment.payment_method.last4 == "4242"

        state = await flow.submit_student(student_details)
        assert state.step == FlowStep.CONFIRMATION

        stored = await enrollments.get_enrollment(state.enrollment.id)
        assert stored.status == EnrollmentStatus.CONFIRMED
        assert stored.student_id == state.student.id
        assert len(stored.communication_history) == 2

        parent = await profiles.get_parent(state.parent.id)
        assert parent.students == [state.student.id]

        templates = [m.template for m in notifier.outbox]
        assert templates == [EmailTemplate.ENROLLMENT_CONFIRMATION, EmailTemplate.PAYMENT_CONFIRMATION]

        flow.close()
        assert progress.load(PROGRESS_KEY) is None

    @pytest.mark.asyncio
    async def test_example_scenario_with_fixed_gateway(
        self, profiles, enrollments, notifier, student_details, parent_details, card
    ):
        course = Course(id="c-500", title="Sprint Camp", slug="sprint-camp", price=Decimal("500"), currency="USD")
        gateway = MagicMock()
        gateway.process_payment = AsyncMock(return_value=PaymentResult(success=True, transaction_id="tx_123"))
        services = FlowServices(profiles=profiles, enrollments=enrollments, gateway=gateway, notifier=notifier)
        flow = EnrollmentFlow(course, services, InMemoryProgressStore())

        await _reach_payment(flow, parent_details)
        enrollment = flow.state.enrollment
        assert enrollment.payment_details.amount == Decimal("500")
        assert enrollment.status == EnrollmentStatus.PENDING

        await flow.submit_payment(card=card)
        stored = await enrollments.get_enrollment(enrollment.id)
        assert stored.payment_details.payment_status == PaymentStatus.COMPLETED
        assert stored.payment_details.transaction_id == "tx_123"

        state = await flow.submit_student(student_details)
        stored = await enrollments.get_enrollment(enrollment.id)
        parent = await profiles.get_parent(state.parent.id)
        assert stored.status == EnrollmentStatus.CONFIRMED
        assert stored.student_id == state.student.id
        assert state.student.id in parent.students
        assert state.step == FlowStep.CONFIRMATION


# ============================================
# SIGN-IN
# ============================================

class TestSignIn:
    @pytest.mark.asyncio
    async def test_known_parent_goes_straight_to_payment(self, make_flow, profiles, parent_details):
        parent = await profiles.create_parent(ParentCreate(user_id="acct-1", **parent_details.model_dump()))
        flow = make_flow()
        flow.resume()

        state = await flow.sign_in(Account(id="acct-1", email=parent.email))

        assert state.step == FlowStep.PAYMENT
        assert state.parent.id == parent.id
        assert state.enrollment.parent_id == parent.id

    @pytest.mark.asyncio
    async def test_unknown_account_fills_in_guardian_form(self, make_flow, profiles, parent_details):
        flow = make_flow()
        flow.resume()

        assert (await flow.sign_in(Account(id="acct-new"))).step == FlowStep.PARENT
        state = await flow.submit_parent(parent_details)

        linked = await profiles.get_parent_by_user("acct-new")
        assert linked is not None
        assert state.parent.id == linked.id

    @pytest.mark.asyncio
    async def test_saved_card_reused_on_next_course(
        self, make_flow, other_course, parent_details, student_details, card, enrollments
    ):
        account = Account(id="acct-7")
        first = make_flow()
        first.resume()
        await first.sign_in(account)
        await first.submit_parent(parent_details)
        await first.submit_payment(card=card, save_payment_method=True)
        await first.submit_student(student_details)
        first.close()

        second = make_flow(target_course=other_course)
        second.resume()
        await second.sign_in(account)
        methods = await second.stored_payment_methods()
        assert len(methods) == 1
        assert methods[0].last4 == "4242"

        state = await second.submit_payment(token_id=methods[0].id)
        assert state.enrollment.payment.payment_method.type == PaymentMethodType.TOKEN
        assert state.enrollment.payment_details.amount == Decimal("899.00")
        assert len(await enrollments.list_enrollments()) == 2

    @pytest.mark.asyncio
    async def test_failed_enrollment_open_leaves_account_unset(
        self, course, profiles, gateway, notifier, parent_details
    ):
        await profiles.create_parent(ParentCreate(user_id="acct-4", **parent_details.model_dump()))
        store = FlakyEnrollmentStore()
        services = FlowServices(profiles=profiles, enrollments=store, gateway=gateway, notifier=notifier)
        flow = EnrollmentFlow(course, services, InMemoryProgressStore())
        flow.resume()

        store.fail_create = True
        with pytest.raises(StepFailedError):
            await flow.sign_in(Account(id="acct-4"))
        assert flow.step == FlowStep.AUTH
        assert flow.context.account is None

        store.fail_create = False
        state = await flow.sign_in(Account(id="acct-4"))
        assert state.step == FlowStep.PAYMENT
        assert flow.context.account.id == "acct-4"
        assert len(await store.list_enrollments()) == 1


# ============================================
# GUARDS
# ============================================

class TestGuards:
    @pytest.mark.asyncio
    async def test_payment_step_always_has_enrollment_and_parent(self, course, flow_services, parent_details):
        progress = RecordingProgressStore()
        flow = EnrollmentFlow(course, flow_services, progress)
        await _reach_payment(flow, parent_details)

        for payload in progress.saved:
            snapshot = FlowState.model_validate_json(payload)
            if snapshot.step == FlowStep.PAYMENT:
                assert snapshot.enrollment is not None
                assert snapshot.parent is not None

    @pytest.mark.asyncio
    async def test_student_rejected_before_payment(self, make_flow, parent_details, student_details):
        flow = await _reach_payment(make_flow(), parent_details)
        with pytest.raises(InvalidStepError):
            await flow.submit_student(student_details)
        assert flow.step == FlowStep.PAYMENT

    def test_close_only_from_confirmation(self, make_flow):
        flow = make_flow()
        flow.resume()
        with pytest.raises(InvalidStepError):
            flow.close()

    @pytest.mark.asyncio
    async def test_parent_step_cannot_repeat(self, make_flow, parent_details):
        flow = await _reach_payment(make_flow(), parent_details)
        with pytest.raises(InvalidStepError):
            await flow.submit_parent(parent_details)

    def test_confirmation_snapshot_requires_confirmed_enrollment(self):
        with pytest.raises(ValueError):
            FlowState(step=FlowStep.CONFIRMATION, course_id="beginner")


# ============================================
# PAYMENT FAILURES
# ============================================

class TestPaymentFailures:
    @pytest.mark.asyncio
    async def test_decline_keeps_payment_step(self, make_flow, parent_details, declined_card, enrollments, notifier):
        flow = await _reach_payment(make_flow(), parent_details)

        with pytest.raises(PaymentFailedError) as exc_info:
            await flow.submit_payment(card=declined_card)

        assert exc_info.value.message == "Card declined"
        assert flow.step == FlowStep.PAYMENT
        stored = await enrollments.get_enrollment(flow.state.enrollment.id)
        assert stored.payment_details.payment_status == PaymentStatus.PENDING
        assert [m.template for m in notifier.outbox] == [EmailTemplate.PAYMENT_FAILED]

    @pytest.mark.asyncio
    async def test_retry_after_decline(self, make_flow, parent_details, declined_card, card):
        flow = await _reach_payment(make_flow(), parent_details)
        with pytest.raises(PaymentFailedError):
            await flow.submit_payment(card=declined_card)

        state = await flow.submit_payment(card=card)
        assert state.step == FlowStep.STUDENT

    @pytest.mark.asyncio
    async def test_missing_error_text_uses_generic_message(self, course, profiles, enrollments, notifier, parent_details):
        gateway = MagicMock()
        gateway.process_payment = AsyncMock(return_value=PaymentResult(success=False))
        services = FlowServices(profiles=profiles, enrollments=enrollments, gateway=gateway, notifier=notifier)
        flow = await _reach_payment(EnrollmentFlow(course, services, InMemoryProgressStore()), parent_details)

        with pytest.raises(PaymentFailedError) as exc_info:
            await flow.submit_payment(token_id="tok_missing")
        assert exc_info.value.message == "Payment processing failed"

    @pytest.mark.asyncio
    async def test_captured_payment_not_charged_twice(self, course, profiles, gateway, notifier, parent_details, card):
        store = FlakyEnrollmentStore()
        spy = AsyncMock(wraps=gateway.process_payment)
        gateway.process_payment = spy
        services = FlowServices(profiles=profiles, enrollments=store, gateway=gateway, notifier=notifier)
        progress = InMemoryProgressStore()
        flow = await _reach_payment(EnrollmentFlow(course, services, progress), parent_details)

        store.fail_update = True
        with pytest.raises(StepFailedError):
            await flow.submit_payment(card=card)
        assert flow.step == FlowStep.PAYMENT
        assert flow.state.captured_payment is not None

        store.fail_update = False
        reloaded = EnrollmentFlow(course, services, progress)
        assert reloaded.resume().captured_payment is not None
        state = await reloaded.submit_payment()

        assert state.step == FlowStep.STUDENT
        assert state.captured_payment is None
        assert spy.await_count == 1


# ============================================
# STORE FAILURES
# ============================================

class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_enrollment_create_failure_keeps_parent(self, course, profiles, gateway, notifier, parent_details):
        store = FlakyEnrollmentStore()
        services = FlowServices(profiles=profiles, enrollments=store, gateway=gateway, notifier=notifier)
        flow = EnrollmentFlow(course, services, InMemoryProgressStore())
        flow.resume()
        flow.continue_as_guest()

        store.fail_create = True
        with pytest.raises(StepFailedError):
            await flow.submit_parent(parent_details)
        assert flow.step == FlowStep.PARENT

        store.fail_create = False
        state = await flow.submit_parent(parent_details)
        assert state.step == FlowStep.PAYMENT
        assert len(await profiles.list_parents()) == 1

    @pytest.mark.asyncio
    async def test_progress_store_failure_does_not_block_flow(self, course, flow_services, parent_details):
        progress = MagicMock()
        progress.load.side_effect = ProgressStoreError()
        progress.save.side_effect = ProgressStoreError()
        flow = EnrollmentFlow(course, flow_services, progress)

        assert flow.resume().step == FlowStep.AUTH
        state = await _reach_payment(flow, parent_details)
        assert state.step == FlowStep.PAYMENT


# ============================================
# RESUME
# ============================================

class TestResume:
    @pytest.mark.asyncio
    async def test_reload_resumes_mid_flow(self, make_flow, parent_details, card, student_details):
        flow = await _reach_payment(make_flow(), parent_details)
        await flow.submit_payment(card=card)

        reloaded = make_flow()
        state = reloaded.resume()
        assert state.step == FlowStep.STUDENT
        assert state.enrollment.id == flow.state.enrollment.id

        assert (await reloaded.submit_student(student_details)).step == FlowStep.CONFIRMATION

    @pytest.mark.asyncio
    async def test_resume_makes_no_store_calls(self, course, make_flow, parent_details, progress):
        flow = await _reach_payment(make_flow(), parent_details)
        saved = flow.state

        profiles = MagicMock()
        enrollments = MagicMock()
        gateway = MagicMock()
        notifier = MagicMock()
        services = FlowServices(profiles=profiles, enrollments=enrollments, gateway=gateway, notifier=notifier)
        state = EnrollmentFlow(course, services, progress).resume()

        assert state.step == FlowStep.PAYMENT
        assert state.enrollment == saved.enrollment
        assert state.parent == saved.parent
        assert state.student is None
        for collaborator in (profiles, enrollments, gateway, notifier):
            assert collaborator.method_calls == []

    def test_corrupt_snapshot_is_discarded(self, make_flow, progress):
        progress.save(PROGRESS_KEY, "{not json")
        flow = make_flow()
        assert flow.resume().step == FlowStep.AUTH
        assert progress.load(PROGRESS_KEY) is None

    def test_snapshot_breaking_guard_is_discarded(self, make_flow, progress):
        progress.save(PROGRESS_KEY, '{"step": "payment", "course_id": "beginner"}')
        assert make_flow().resume().step == FlowStep.AUTH
        assert progress.load(PROGRESS_KEY) is None

    @pytest.mark.asyncio
    async def test_snapshot_for_other_course_is_discarded(self, make_flow, other_course, parent_details, progress):
        await _reach_payment(make_flow(), parent_details)
        assert make_flow(target_course=other_course).resume().step == FlowStep.AUTH
        assert progress.load(PROGRESS_KEY) is None

    @pytest.mark.asyncio
    async def test_abort_starts_over(self, make_flow, parent_details, progress, enrollments):
        flow = await _reach_payment(make_flow(), parent_details)
        run_id = flow.state.run_id

        state = flow.abort()
        assert state.step == FlowStep.AUTH
        assert state.run_id != run_id
        assert progress.load(PROGRESS_KEY) is None
        assert len(await enrollments.list_enrollments()) == 1

    @pytest.mark.asyncio
    async def test_run_id_survives_reload(self, make_flow, parent_details):
        flow = await _reach_payment(make_flow(), parent_details)
        assert make_flow().resume().run_id == flow.state.run_id


# ============================================
# ENROLLING AGAIN
# ============================================

def _charges_for(spy, enrollment_id):
    return [call for call in spy.await_args_list if call.args[0].id == enrollment_id]


class TestEnrollAgain:
    @pytest.fixture
    def charge_spy(self, gateway):
        spy = AsyncMock(wraps=gateway.process_payment)
        gateway.process_payment = spy
        return spy

    @pytest.mark.asyncio
    async def test_same_course_after_close_opens_new_enrollment(
        self, make_flow, parent_details, student_details, card, enrollments, charge_spy
    ):
        account = Account(id="acct-9")
        first = make_flow()
        first.resume()
        await first.sign_in(account)
        await first.submit_parent(parent_details)
        await first.submit_payment(card=card)
        done = await first.submit_student(student_details)
        first.close()
        first_id = done.enrollment.id
        first_tx = done.enrollment.payment_details.transaction_id

        second = make_flow()
        second.resume()
        state = await second.sign_in(account)
        assert state.step == FlowStep.PAYMENT
        assert state.enrollment.id != first_id
        assert state.enrollment.status == EnrollmentStatus.PENDING

        await second.submit_payment(card=card)

        stored = await enrollments.get_enrollment(first_id)
        assert stored.status == EnrollmentStatus.CONFIRMED
        assert stored.payment_details.payment_status == PaymentStatus.COMPLETED
        assert stored.payment_details.transaction_id == first_tx
        assert len(_charges_for(charge_spy, first_id)) == 1
        assert len(_charges_for(charge_spy, state.enrollment.id)) == 1
        assert len(await enrollments.list_enrollments()) == 2

    @pytest.mark.asyncio
    async def test_same_course_after_abort_at_student_step(
        self, make_flow, parent_details, card, enrollments, charge_spy
    ):
        account = Account(id="acct-5")
        flow = make_flow()
        flow.resume()
        await flow.sign_in(account)
        await flow.submit_parent(parent_details)
        paid = await flow.submit_payment(card=card)
        assert paid.step == FlowStep.STUDENT
        first_id = paid.enrollment.id

        flow.abort()
        state = await flow.sign_in(account)
        assert state.enrollment.id != first_id

        await flow.submit_payment(card=card)

        stored = await enrollments.get_enrollment(first_id)
        assert stored.payment_details.payment_status == PaymentStatus.COMPLETED
        assert stored.payment_details.transaction_id == paid.enrollment.payment_details.transaction_id
        assert len(_charges_for(charge_spy, first_id)) == 1
        assert charge_spy.await_count == 2

    @pytest.mark.asyncio
    async def test_processed_enrollment_is_not_reopened(
        self, course, profiles, gateway, notifier, parent_details, charge_spy
    ):
        parent = await profiles.create_parent(ParentCreate(user_id="acct-6", **parent_details.model_dump()))
        store = InMemoryEnrollmentStore()
        confirmed = await store.create_enrollment(EnrollmentCreate(
            student_id="student-1",
            parent_id=parent.id,
            course_id=course.id,
            status=EnrollmentStatus.CONFIRMED,
            payment_details=PaymentDetails(
                amount=course.price,
                currency=course.currency,
                payment_status=PaymentStatus.COMPLETED,
                transaction_id="tx_first",
            ),
        ))
        store.create_enrollment = AsyncMock(return_value=confirmed)
        services = FlowServices(profiles=profiles, enrollments=store, gateway=gateway, notifier=notifier)
        flow = EnrollmentFlow(course, services, InMemoryProgressStore())
        flow.resume()

        with pytest.raises(StepFailedError):
            await flow.sign_in(Account(id="acct-6"))

        assert flow.step == FlowStep.AUTH
        assert (await store.get_enrollment(confirmed.id)).status == EnrollmentStatus.CONFIRMED
        charge_spy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paid_enrollment_skips_charge(
        self, make_flow, parent_details, card, enrollments, progress, charge_spy
    ):
        flow = await _reach_payment(make_flow(), parent_details)
        state = flow.state
        paid = state.enrollment.payment_details.model_copy(update={
            "payment_status": PaymentStatus.COMPLETED, "transaction_id": "tx_earlier",
        })
        await enrollments.update_enrollment(state.enrollment.id, {"payment_details": paid})
        state.enrollment = state.enrollment.model_copy(update={"payment_details": paid})
        progress.save(PROGRESS_KEY, state.model_dump_json())

        reloaded = make_flow()
        reloaded.resume()
        result = await reloaded.submit_payment(card=card)

        assert result.step == FlowStep.STUDENT
        assert result.enrollment.payment_details.transaction_id == "tx_earlier"
        charge_spy.assert_not_awaited()


# ============================================
# NOTIFICATIONS
# ============================================

class TestNotificationPolicy:
    @pytest.mark.asyncio
    async def test_best_effort_completes_despite_failure(
        self, make_flow, parent_details, card, student_details, notifier, enrollments
    ):
        notifier.send_enrollment_confirmation = AsyncMock(side_effect=NotificationError("smtp down"))
        flow = await _reach_payment(make_flow(), parent_details)
        await flow.submit_payment(card=card)

        state = await flow.submit_student(student_details)

        assert state.step == FlowStep.CONFIRMATION
        stored = await enrollments.get_enrollment(state.enrollment.id)
        assert len(stored.communication_history) == 1
        assert stored.communication_history[0].message.startswith("Payment confirmation")

    @pytest.mark.asyncio
    async def test_required_policy_blocks_until_sent(
        self, make_flow, parent_details, card, student_details, notifier, enrollments, profiles
    ):
        notifier.send_enrollment_confirmation = AsyncMock(side_effect=NotificationError("smtp down"))
        flow = await _reach_payment(make_flow(policy=NotificationPolicy.REQUIRED), parent_details)
        await flow.submit_payment(card=card)

        with pytest.raises(NotificationFailedError):
            await flow.submit_student(student_details)
        assert flow.step == FlowStep.STUDENT
        stored = await enrollments.get_enrollment(flow.state.enrollment.id)
        assert stored.status == EnrollmentStatus.CONFIRMED

        notifier.send_enrollment_confirmation = AsyncMock(return_value=None)
        state = await flow.submit_student(student_details)

        assert state.step == FlowStep.CONFIRMATION
        assert len(await profiles.list_students()) == 1

    @pytest.mark.asyncio
    async def test_context_is_explicit(self, make_flow):
        flow = make_flow(context=FlowContext(account=Account(id="acct-9")))
        assert flow.context.account.id == "acct-9"
        assert make_flow().context.account is None
