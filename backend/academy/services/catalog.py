"""
Course Catalogue — default programs seeded into an empty course store.
"""
import logging
from decimal import Decimal
from typing import List

from academy.schemas.domain import Course
from academy.stores.base import CourseStore

logger = logging.getLogger(__name__)


def default_courses(currency: str = "USD") -> List[Course]:
    return [
        Course(
            id="beginner",
            title="Beginner Course",
            slug="beginner-course",
            price=Decimal("499.00"),
            currency=currency,
            location="Main Track",
            available_spots=12,
        ),
        Course(
            id="advanced",
            title="Advanced Training",
            slug="advanced-training",
            price=Decimal("899.00"),
            currency=currency,
            location="Main Track",
            available_spots=8,
        ),
        Course(
            id="race-ready",
            title="Race Ready",
            slug="race-ready",
            price=Decimal("1299.00"),
            currency=currency,
            location="Main Track",
            available_spots=6,
        ),
    ]


async def seed_courses(store: CourseStore, currency: str = "USD") -> int:
    """Insert the default programs when the catalogue is empty. Returns how many were added."""
    if await store.list_courses():
        return 0

    courses = default_courses(currency)
    for course in courses:
        await store.create_course(course)
    logger.info("Seeded %d courses", len(courses))
    return len(courses)
