"""
Course Model — Course catalogue entries (price and schedule).
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Date, Numeric

from academy.database import Base


class CourseRecord(Base):
    __tablename__ = "courses"

    id = Column(String(36), primary_key=True, index=True)
    title = Column(String(128), nullable=False)
    slug = Column(String(128), unique=True, index=True)

    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD")

    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    location = Column(String(128))
    available_spots = Column(Integer, default=0)
    status = Column(String(16), default="published")  # draft | published | archived

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
