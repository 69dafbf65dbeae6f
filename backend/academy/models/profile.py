"""
Profile Models — Guardians and the racers they enroll.
Contact and medical details are kept as JSON documents.
"""
from sqlalchemy import Column, String, DateTime, Date, JSON, ForeignKey

from academy.database import Base


class ParentRecord(Base):
    __tablename__ = "parents"

    id = Column(String(36), primary_key=True, index=True)
    user_id = Column(String(128), nullable=True, index=True)  # None for guests

    first_name = Column(String(64), nullable=False)
    last_name = Column(String(64), nullable=False)
    email = Column(String(128), nullable=False)
    phone = Column(String(32), nullable=False)
    address = Column(JSON, nullable=True)

    students = Column(JSON, default=list)   # student ids

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class StudentRecord(Base):
    __tablename__ = "students"

    id = Column(String(36), primary_key=True, index=True)
    parent_id = Column(String(36), ForeignKey("parents.id"), nullable=False, index=True)

    first_name = Column(String(64), nullable=False)
    last_name = Column(String(64), nullable=False)
    date_of_birth = Column(Date, nullable=False)
    email = Column(String(128))
    phone = Column(String(32))

    # emergency_contact, medical_notes, allergies, skill_level, experience
    data = Column(JSON, default=dict)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
