from academy.routes.courses import router as courses_router
from academy.routes.enrollment import router as enrollment_router
from academy.routes.admin import router as admin_router

__all__ = ["courses_router", "enrollment_router", "admin_router"]
