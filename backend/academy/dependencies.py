"""
Service Wiring — builds the stores, gateway and notifier the routes use.

Routes depend on ``get_services``; tests swap the whole container through
``app.dependency_overrides``.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from academy.config import Settings, get_settings
from academy.database import SessionLocal
from academy.services.enrollment_flow import FlowServices
from academy.services.notification_service import (
    EmailNotificationService,
    NotificationPolicy,
    NotificationSender,
)
from academy.services.payment_admin import PaymentAdminService
from academy.services.payment_gateway import PaymentGateway, SimulatedPaymentGateway
from academy.stores import (
    CourseStore,
    EnrollmentStore,
    ProfileStore,
    ProgressStore,
    SqlCourseStore,
    SqlEnrollmentStore,
    SqlProfileStore,
    SqlProgressStore,
)


@dataclass
class AcademyServices:
    courses: CourseStore
    profiles: ProfileStore
    enrollments: EnrollmentStore
    progress: ProgressStore
    gateway: PaymentGateway
    notifier: NotificationSender
    notification_policy: NotificationPolicy = NotificationPolicy.BEST_EFFORT
    stale_payment_timeout: timedelta = timedelta(hours=24)

    def flow_services(self) -> FlowServices:
        return FlowServices(
            profiles=self.profiles,
            enrollments=self.enrollments,
            gateway=self.gateway,
            notifier=self.notifier,
        )

    def payment_admin(self) -> PaymentAdminService:
        return PaymentAdminService(self.enrollments, self.gateway, stale_timeout=self.stale_payment_timeout)


def build_services(settings: Optional[Settings] = None, session_factory=SessionLocal) -> AcademyServices:
    """SQL-backed stores, simulated gateway and the email notifier."""
    settings = settings or get_settings()
    return AcademyServices(
        courses=SqlCourseStore(session_factory),
        profiles=SqlProfileStore(session_factory),
        enrollments=SqlEnrollmentStore(session_factory),
        progress=SqlProgressStore(session_factory),
        gateway=SimulatedPaymentGateway(),
        notifier=EmailNotificationService(settings.SUPPORT_EMAIL, settings.WEBSITE_URL),
        notification_policy=NotificationPolicy(settings.NOTIFICATION_POLICY),
        stale_payment_timeout=timedelta(hours=settings.STALE_PAYMENT_TIMEOUT_HOURS),
    )


_services: Optional[AcademyServices] = None


def get_services() -> AcademyServices:
    """FastAPI dependency: the process-wide service container."""
    global _services
    if _services is None:
        _services = build_services()
    return _services
