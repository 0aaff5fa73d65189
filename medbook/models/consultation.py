"""Consultation model definitions."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from medbook.database import Base
from medbook.services.scheduling import CANCELLED as STATUS_CANCELLED
from medbook.services.scheduling import COMPLETED as STATUS_COMPLETED
from medbook.services.scheduling import SCHEDULED as STATUS_SCHEDULED

CONSULTATION_TYPES = (
    "FIRST_VISIT",
    "FOLLOWUP",
    "CHRONIC_DISEASE",
    "PRESCRIPTION",
    "CONSULTATION",
    "CHECKUP",
    "EMERGENCY",
)


class Consultation(Base):
    """Represents a booked or cart-pending appointment."""
    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    consultation_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    consultation_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=STATUS_SCHEDULED)
    in_cart = Column(Boolean, nullable=False, default=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    patient_notes = Column(String, nullable=True)
    documents = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    doctor = relationship("User", foreign_keys=[doctor_id])
    patient = relationship("User", foreign_keys=[patient_id])
    slots = relationship(
        "ConsultationSlot",
        back_populates="consultation",
        cascade="all, delete-orphan",
    )


class ConsultationSlot(Base):
    """One occupied 30-minute point; the unique constraint forbids double booking."""
    __tablename__ = "consultation_slots"
    __table_args__ = (
        UniqueConstraint("doctor_id", "slot_date", "slot_time", name="uq_consultation_slots_doctor_point"),
    )

    id = Column(Integer, primary_key=True)
    consultation_id = Column(Integer, ForeignKey("consultations.id", ondelete="CASCADE"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    slot_date = Column(Date, nullable=False)
    slot_time = Column(Time, nullable=False)

    consultation = relationship("Consultation", back_populates="slots")
