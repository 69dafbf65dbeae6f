from academy.services.enrollment_flow import EnrollmentFlow, FlowContext, FlowServices, FlowState, FlowStep
from academy.services.notification_service import EmailNotificationService, NotificationPolicy, NotificationSender
from academy.services.payment_admin import PaymentAdminService, PaymentFilters, PaymentSummary
from academy.services.payment_gateway import PaymentGateway, SimulatedPaymentGateway
from academy.services.reconciler import reconcile_stale_payments

__all__ = [
    "EnrollmentFlow", "FlowContext", "FlowServices", "FlowState", "FlowStep",
    "EmailNotificationService", "NotificationPolicy", "NotificationSender",
    "PaymentAdminService", "PaymentFilters", "PaymentSummary",
    "PaymentGateway", "SimulatedPaymentGateway",
    "reconcile_stale_payments",
]
