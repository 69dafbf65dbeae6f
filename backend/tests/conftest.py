"""
Pytest configuration and shared fixtures for the academy backend tests.

The application database is pointed at in-memory SQLite before any academy
module is imported; route tests swap the service container for in-memory
stores through ``app.dependency_overrides``.
"""
import os
import tempfile
from datetime import date
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "academy-test-logs"))
os.environ.setdefault("SEED_COURSES", "false")

import pytest
from sqlalchemy.orm import sessionmaker

from academy.database import build_engine, init_db
from academy.schemas.domain import (
    Address,
    CardDetails,
    Course,
    EmergencyContact,
    ParentDetails,
    StudentDetails,
)
from academy.services.enrollment_flow import EnrollmentFlow, FlowServices
from academy.services.notification_service import EmailNotificationService, NotificationPolicy
from academy.services.payment_gateway import SimulatedPaymentGateway
from academy.stores import (
    InMemoryCourseStore,
    InMemoryEnrollmentStore,
    InMemoryProfileStore,
    InMemoryProgressStore,
)
from academy.utils.rate_limiter import reset_rate_limits

VALID_CARD = "4242424242424242"
DECLINED_CARD = "4000000000000002"


# ============================================
# AUTO-USE FIXTURES
# ============================================

@pytest.fixture(autouse=True)
def clear_rate_limits():
    """Every test starts with an empty payment throttle."""
    reset_rate_limits()
    yield
    reset_rate_limits()


# ============================================
# DOMAIN FIXTURES
# ============================================

@pytest.fixture
def course():
    return Course(
        id="beginner",
        title="Beginner Course",
        slug="beginner-course",
        price=Decimal("499.00"),
        currency="USD",
        start_date=date(2030, 6, 1),
        available_spots=12,
    )


@pytest.fixture
def other_course():
    return Course(
        id="advanced",
        title="Advanced Training",
        slug="advanced-training",
        price=Decimal("899.00"),
        currency="USD",
    )


@pytest.fixture
def parent_details():
    return ParentDetails(
        first_name="Dana",
        last_name="Reyes",
        email="dana.reyes@example.com",
        phone="555-0100",
        address=Address(street="1 Pit Lane", city="Austin", state="TX", zip_code="78701"),
    )


@pytest.fixture
def student_details():
    return StudentDetails(
        first_name="Sam",
        last_name="Reyes",
        date_of_birth=date(2012, 4, 9),
        emergency_contact=EmergencyContact(name="Dana Reyes", phone="555-0100", relationship="Parent"),
        skill_level="beginner",
        allergies=["peanuts"],
    )


def make_card(number: str = VALID_CARD) -> CardDetails:
    return CardDetails(
        card_number=number,
        expiry_month="12",
        expiry_year="2099",
        cvv="123",
        first_name="Dana",
        last_name="Reyes",
    )


@pytest.fixture
def card():
    return make_card()


@pytest.fixture
def declined_card():
    return make_card(DECLINED_CARD)


# ============================================
# STORE / SERVICE FIXTURES
# ============================================

@pytest.fixture
def profiles():
    return InMemoryProfileStore()


@pytest.fixture
def enrollments():
    return InMemoryEnrollmentStore()


@pytest.fixture
def progress():
    return InMemoryProgressStore()


@pytest.fixture
def gateway():
    return SimulatedPaymentGateway()


@pytest.fixture
def notifier():
    return EmailNotificationService("support@example.com", "https://academy.example.com")


@pytest.fixture
def flow_services(profiles, enrollments, gateway, notifier):
    return FlowServices(profiles=profiles, enrollments=enrollments, gateway=gateway, notifier=notifier)


@pytest.fixture
def make_flow(course, flow_services, progress):
    """Factory so a test can build a second controller over the same stores (a page reload)."""
    def _make(target_course=None, services=None, policy=NotificationPolicy.BEST_EFFORT, context=None):
        return EnrollmentFlow(
            target_course or course,
            services or flow_services,
            progress,
            context=context,
            notification_policy=policy,
        )
    return _make


@pytest.fixture
def sql_session_factory():
    """Fresh in-memory database with all tables."""
    engine = build_engine("sqlite://")
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


# ============================================
# API FIXTURES
# ============================================

@pytest.fixture
def academy_services(course, other_course, profiles, enrollments, progress, gateway, notifier):
    from academy.dependencies import AcademyServices

    return AcademyServices(
        courses=InMemoryCourseStore([course, other_course]),
        profiles=profiles,
        enrollments=enrollments,
        progress=progress,
        gateway=gateway,
        notifier=notifier,
    )


@pytest.fixture
def client(academy_services, sql_session_factory):
    from fastapi.testclient import TestClient

    from academy.database import get_db
    from academy.dependencies import get_services
    from academy.main import app

    def _get_db():
        db = sql_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_services] = lambda: academy_services
    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
