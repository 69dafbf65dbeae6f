"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

from academy.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

_IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def build_engine(database_url: str, echo: bool = False):
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url in _IN_MEMORY_URLS:
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo,
        )

    if database_url.startswith("sqlite:///"):
        # Ensure data directory exists
        data_dir = os.path.dirname(database_url.replace("sqlite:///", ""))
        if data_dir:
            os.makedirs(data_dir, exist_ok=True)
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},  # Required for SQLite
            echo=echo,
        )

    return create_engine(database_url, echo=echo)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from academy.models import course as _course_model             # noqa: F401
    from academy.models import profile as _profile_model           # noqa: F401
    from academy.models import enrollment as _enrollment_model     # noqa: F401
    from academy.models import progress as _progress_model         # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ready")
