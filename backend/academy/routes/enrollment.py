"""
Enrollment Routes — the checkout wizard over HTTP.

A client starts a flow for a course and receives a ``flow_id``; every later
call carries it in the ``flow-id`` header. Progress is kept server side per
flow id so a reload resumes at the same step.
"""
import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from academy.config import get_settings
from academy.database import get_db
from academy.dependencies import AcademyServices, get_services
from academy.exceptions import (
    AcademyError,
    InvalidStepError,
    PaymentFailedError,
    StoreError,
)
from academy.models.progress import FlowSession
from academy.schemas.domain import Account, ParentDetails, StudentDetails
from academy.schemas.schemas import (
    FlowStartRequest,
    FlowStateResponse,
    PaymentRequest,
    SignInRequest,
    StoredPaymentMethod,
)
from academy.services.enrollment_flow import PROGRESS_KEY, EnrollmentFlow, FlowContext
from academy.utils.rate_limiter import rate_limit

settings = get_settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/enrollment", tags=["Enrollment"])


def _flow_error(exc: AcademyError) -> HTTPException:
    """Map a workflow failure to the status the client sees."""
    if isinstance(exc, InvalidStepError):
        return HTTPException(status_code=409, detail=exc.message)
    if isinstance(exc, PaymentFailedError):
        return HTTPException(status_code=400, detail=exc.message)
    return HTTPException(status_code=503, detail=exc.message)


def _state_response(flow_id: str, flow: EnrollmentFlow) -> FlowStateResponse:
    state = flow.state
    return FlowStateResponse(
        flow_id=flow_id,
        step=state.step.value,
        course_id=flow.course.id,
        enrollment=state.enrollment,
        parent=state.parent,
        student=state.student,
        payment_captured=state.captured_payment is not None,
    )


def _get_flow_session(db: Session, flow_id: str) -> FlowSession:
    flow_session = db.query(FlowSession).filter(FlowSession.id == flow_id).first()
    if not flow_session:
        raise HTTPException(status_code=404, detail="Enrollment session not found")
    return flow_session


async def _open_flow(flow_session: FlowSession, services: AcademyServices) -> EnrollmentFlow:
    """Rebuild the controller for a flow id and resume its saved progress."""
    try:
        course = await services.courses.get_course(flow_session.course_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.message)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")

    account = None
    if flow_session.account_id:
        account = Account(
            id=flow_session.account_id,
            email=flow_session.account_email,
            display_name=flow_session.account_name,
        )

    flow = EnrollmentFlow(
        course,
        services.flow_services(),
        services.progress,
        context=FlowContext(account=account),
        progress_key=f"{PROGRESS_KEY}:{flow_session.id}",
        notification_policy=services.notification_policy,
    )
    flow.resume()
    return flow


@router.post("/start", response_model=FlowStateResponse)
async def start_enrollment(
    payload: FlowStartRequest,
    request: Request,
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    """Open a new enrollment flow for a course."""
    flow_session = FlowSession(
        id=str(uuid.uuid4()),
        course_id=payload.course_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent", "")[:256],
    )
    flow = await _open_flow(flow_session, services)

    db.add(flow_session)
    db.commit()
    logger.info("Enrollment flow %s started for course %s", flow_session.id, payload.course_id)
    return _state_response(flow_session.id, flow)


@router.get("/state", response_model=FlowStateResponse)
async def get_state(
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    """Current step and the records collected so far."""
    flow = await _open_flow(_get_flow_session(db, flow_id), services)
    return _state_response(flow_id, flow)


@router.post("/sign-in", response_model=FlowStateResponse)
async def sign_in(
    payload: SignInRequest,
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    """Attach the account the identity provider returned."""
    flow_session = _get_flow_session(db, flow_id)
    flow = await _open_flow(flow_session, services)
    try:
        await flow.sign_in(payload.account)
    except AcademyError as exc:
        raise _flow_error(exc)

    flow_session.account_id = payload.account.id
    flow_session.account_email = payload.account.email
    flow_session.account_name = payload.account.display_name
    db.commit()
    return _state_response(flow_id, flow)


@router.post("/guest", response_model=FlowStateResponse)
async def continue_as_guest(
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    flow = await _open_flow(_get_flow_session(db, flow_id), services)
    try:
        flow.continue_as_guest()
    except AcademyError as exc:
        raise _flow_error(exc)
    return _state_response(flow_id, flow)


@router.post("/parent", response_model=FlowStateResponse)
async def submit_parent(
    payload: ParentDetails,
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    """Save guardian details and open the pending enrollment."""
    flow = await _open_flow(_get_flow_session(db, flow_id), services)
    try:
        await flow.submit_parent(payload)
    except AcademyError as exc:
        raise _flow_error(exc)
    return _state_response(flow_id, flow)


@router.get("/payment-methods", response_model=List[StoredPaymentMethod])
async def list_payment_methods(
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    """Saved cards for the guardian on this flow."""
    flow = await _open_flow(_get_flow_session(db, flow_id), services)
    tokens = await flow.stored_payment_methods()
    return [
        StoredPaymentMethod(
            id=t.id,
            last4=t.last4,
            brand=t.brand,
            expiry_month=t.expiry_month,
            expiry_year=t.expiry_year,
        )
        for t in tokens
    ]


@router.post("/payment", response_model=FlowStateResponse)
async def submit_payment(
    payload: PaymentRequest,
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
    _throttle: bool = Depends(rate_limit(
        requests=settings.PAYMENT_RATE_LIMIT, window=settings.PAYMENT_RATE_WINDOW, scope="payment"
    )),
):
    """Charge the course price with a card or a saved payment method."""
    flow = await _open_flow(_get_flow_session(db, flow_id), services)
    try:
        await flow.submit_payment(
            card=payload.card,
            token_id=payload.token_id,
            save_payment_method=payload.save_payment_method,
        )
    except AcademyError as exc:
        raise _flow_error(exc)
    return _state_response(flow_id, flow)


@router.post("/student", response_model=FlowStateResponse)
async def submit_student(
    payload: StudentDetails,
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    """Save racer details and confirm the enrollment."""
    flow = await _open_flow(_get_flow_session(db, flow_id), services)
    try:
        await flow.submit_student(payload)
    except AcademyError as exc:
        raise _flow_error(exc)
    return _state_response(flow_id, flow)


@router.post("/close", response_model=FlowStateResponse)
async def close_flow(
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    """Dismiss the confirmation; saved progress is cleared."""
    flow = await _open_flow(_get_flow_session(db, flow_id), services)
    try:
        flow.close()
    except AcademyError as exc:
        raise _flow_error(exc)
    return _state_response(flow_id, flow)


@router.delete("", response_model=FlowStateResponse)
async def abort_flow(
    flow_id: str = Header(..., alias="flow-id"),
    db: Session = Depends(get_db),
    services: AcademyServices = Depends(get_services),
):
    """Start over. Records already created are kept."""
    flow = await _open_flow(_get_flow_session(db, flow_id), services)
    flow.abort()
    return _state_response(flow_id, flow)
