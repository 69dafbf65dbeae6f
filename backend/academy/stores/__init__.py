from academy.stores.base import (
    CourseStore,
    EnrollmentStore,
    ProfileStore,
    ProgressStore,
)
from academy.stores.memory import (
    InMemoryCourseStore,
    InMemoryEnrollmentStore,
    InMemoryProfileStore,
    InMemoryProgressStore,
)
from academy.stores.sql import (
    SqlCourseStore,
    SqlEnrollmentStore,
    SqlProfileStore,
    SqlProgressStore,
)

__all__ = [
    "CourseStore", "EnrollmentStore", "ProfileStore", "ProgressStore",
    "InMemoryCourseStore", "InMemoryEnrollmentStore", "InMemoryProfileStore", "InMemoryProgressStore",
    "SqlCourseStore", "SqlEnrollmentStore", "SqlProfileStore", "SqlProgressStore",
]
