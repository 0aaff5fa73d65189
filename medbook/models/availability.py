"""Availability model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer
from medbook.database import Base


class DoctorAvailability(Base):
    """A recurring or one-off window in which a doctor accepts bookings."""
    __tablename__ = "doctor_availability"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    days_of_week = Column(JSON, nullable=True)  # 0=Sunday .. 6=Saturday
    specific_date = Column(Date, nullable=True)
    time_slots = Column(JSON, nullable=False, default=list)  # [{"start": "HH:MM:SS", "end": "HH:MM:SS"}]
    created_at = Column(DateTime, nullable=False, default=datetime.now)
