"""
Wizard Models — Enrollment flow sessions and their progress snapshots.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text

from academy.database import Base


class FlowSession(Base):
    """Binds a browser client (flow id) to a course and, once signed in, an account."""

    __tablename__ = "flow_sessions"

    id = Column(String(36), primary_key=True, index=True)
    course_id = Column(String(36), nullable=False)
    account_id = Column(String(128), nullable=True)
    account_email = Column(String(128), nullable=True)
    account_name = Column(String(128), nullable=True)

    ip_address = Column(String(45))
    user_agent = Column(String(256))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class FlowProgress(Base):
    """Serialized wizard snapshot, one row per progress key."""

    __tablename__ = "flow_progress"

    key = Column(String(128), primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
