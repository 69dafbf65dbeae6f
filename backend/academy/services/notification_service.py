"""
Notification Service — Enrollment and payment emails.

EmailNotificationService renders the template payload the mail provider
expects and records each delivery; the actual provider call is simulated.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from academy.exceptions import NotificationError
from academy.schemas.domain import Course, Enrollment, ParentProfile, StudentProfile
from academy.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class NotificationPolicy(str, Enum):
    """Whether confirmation failures block the enrollment from completing."""

    BEST_EFFORT = "best_effort"
    REQUIRED = "required"


class EmailTemplate(str, Enum):
    ENROLLMENT_CONFIRMATION = "enrollment_confirmation"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    PAYMENT_FAILED = "payment_failed"


class EmailMessage(BaseModel):
    to: str
    template: EmailTemplate
    data: Dict[str, Any] = Field(default_factory=dict)
    sent_at: Any = Field(default_factory=utcnow)


class NotificationSender(ABC):
    @abstractmethod
    async def send_enrollment_confirmation(
        self, enrollment: Enrollment, course: Course, student: StudentProfile, parent: ParentProfile
    ) -> None:
        """Tell the guardian the racer is enrolled."""

    @abstractmethod
    async def send_payment_confirmation(
        self, enrollment: Enrollment, course: Course, parent: ParentProfile
    ) -> None:
        """Receipt for the captured payment."""

    @abstractmethod
    async def send_payment_failed(
        self, enrollment: Enrollment, course: Course, parent: ParentProfile
    ) -> None:
        """Tell the guardian a payment did not go through."""


class EmailNotificationService(NotificationSender):
    def __init__(self, support_email: str, website_url: str):
        self.support_email = support_email
        self.website_url = website_url
        self.outbox: List[EmailMessage] = []

    async def send_enrollment_confirmation(
        self, enrollment: Enrollment, course: Course, student: StudentProfile, parent: ParentProfile
    ) -> None:
        await self.send_template_email(parent.email, EmailTemplate.ENROLLMENT_CONFIRMATION, {
            "enrollment": enrollment,
            "course": course,
            "student": student,
            "parent": parent,
        })

    async def send_payment_confirmation(
        self, enrollment: Enrollment, course: Course, parent: ParentProfile
    ) -> None:
        await self.send_template_email(parent.email, EmailTemplate.PAYMENT_CONFIRMATION, {
            "enrollment": enrollment,
            "course": course,
            "parent": parent,
        })

    async def send_payment_failed(
        self, enrollment: Enrollment, course: Course, parent: ParentProfile
    ) -> None:
        await self.send_template_email(parent.email, EmailTemplate.PAYMENT_FAILED, {
            "enrollment": enrollment,
            "course": course,
            "parent": parent,
        })

    async def send_template_email(
        self, to: Optional[str], template: EmailTemplate, data: Dict[str, Any]
    ) -> EmailMessage:
        """Render and deliver one templated email.

        Raises:
            NotificationError: no recipient address.
        """
        if not to:
            raise NotificationError(f"No recipient for {template.value} email")

        payload = {
            key: value.model_dump(mode="json") if isinstance(value, BaseModel) else value
            for key, value in data.items()
        }
        payload["supportEmail"] = self.support_email
        payload["websiteUrl"] = self.website_url

        message = EmailMessage(to=to, template=template, data=payload)
        self.outbox.append(message)
        logger.info("[EMAIL] %s -> %s", template.value, to)
        return message
