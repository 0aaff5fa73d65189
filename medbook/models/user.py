"""User and profile model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from medbook.database import Base


ROLE_PATIENT = "PATIENT"
ROLE_DOCTOR = "DOCTOR"
ROLE_ADMIN = "ADMIN"
ROLES = (ROLE_PATIENT, ROLE_DOCTOR, ROLE_ADMIN)


class User(Base):
    """Represents an account together with its profile."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    role = Column(String, nullable=False, default=ROLE_PATIENT)  # PATIENT/DOCTOR/ADMIN
    is_banned = Column(Boolean, nullable=False, default=False)
    doctor_type = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
