import os
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from medbook.database import Base  # noqa: E402
from medbook.models import absence, availability, consultation, review  # noqa: E402,F401
from medbook.models.user import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, User  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def _make_user(db, email: str, full_name: str, role: str, **fields) -> User:
    user = User(email=email, hashed_password='not-a-real-hash', full_name=full_name, role=role, **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def doctor(db) -> User:
    return _make_user(db, 'house@clinic.test', 'Gregory House', ROLE_DOCTOR, doctor_type='Neurologist')


@pytest.fixture
def patient(db) -> User:
    return _make_user(db, 'anna@example.test', 'Anna Nowak', ROLE_PATIENT)


@pytest.fixture
def other_patient(db) -> User:
    return _make_user(db, 'jan@example.test', 'Jan Kowalski', ROLE_PATIENT)


@pytest.fixture
def admin(db) -> User:
    return _make_user(db, 'root@clinic.test', 'Ada Admin', ROLE_ADMIN)


@pytest.fixture
def next_monday() -> date:
    """A Monday at least a week ahead, so bookings on it are always in the future."""
    today = date.today()
    return today + timedelta(days=7 - today.weekday() + 7)


@pytest.fixture
def monday_availability(db, doctor, next_monday):
    """One-off availability for the doctor on ``next_monday`` from 08:00 to 12:00."""
    from medbook.models.availability import DoctorAvailability

    availability = DoctorAvailability(
        doctor_id=doctor.id,
        is_recurring=False,
        specific_date=next_monday,
        time_slots=[{'start': '08:00:00', 'end': '12:00:00'}],
    )
    db.add(availability)
    db.commit()
    db.refresh(availability)
    return availability
