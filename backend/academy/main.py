"""
Racing Academy — FastAPI Application Entry Point

Aggregates all routers, configures logging and middleware, and initializes
the database and course catalogue on startup.
"""
import logging
import os
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from academy.config import get_settings
from academy.database import SessionLocal, init_db
from academy.dependencies import get_services
from academy.routes import admin_router, courses_router, enrollment_router
from academy.services.catalog import seed_courses

settings = get_settings()
logger = logging.getLogger("academy")


def setup_logging() -> None:
    """Console plus ``LOG_DIR/server.log``."""
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(os.path.join(settings.LOG_DIR, "server.log")),
        ],
    )


# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Enrollment backend for a karting academy. Covers the course catalogue, "
        "the resumable enrollment wizard (guardian, payment, racer), payment "
        "reconciliation, refunds and the admin dashboard."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
async def on_startup():
    """Initialize logging, database tables and the default courses."""
    setup_logging()
    init_db()

    if settings.SEED_COURSES:
        await seed_courses(get_services().courses, currency=settings.DEFAULT_CURRENCY)

    logger.info(
        "%s v%s started at %s (database: %s, debug: %s, notifications: %s)",
        settings.APP_NAME,
        settings.APP_VERSION,
        datetime.now().isoformat(),
        settings.DATABASE_URL,
        settings.DEBUG,
        settings.NOTIFICATION_POLICY,
    )


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)

    return response


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(courses_router)
app.include_router(enrollment_router)
app.include_router(admin_router)


@app.get("/health", tags=["Health"])
def health():
    """Health check including database connectivity."""
    db_ok = False
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as exc:
        logger.error("Health check database probe failed: %s", exc)

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "notification_policy": settings.NOTIFICATION_POLICY,
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
