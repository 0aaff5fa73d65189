from datetime import date, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from medbook.models.absence import DoctorAbsence
from medbook.models.availability import DoctorAvailability
from medbook.models.user import User
from medbook.routes.availability_routes import (
    CreateAvailabilityRequest,
    create_availability,
    delete_availability,
    list_doctor_availability,
    list_my_availability,
)


def _recurring_request(start: date, **overrides) -> CreateAvailabilityRequest:
    fields = {
        'is_recurring': True,
        'start_date': start,
        'end_date': start + timedelta(days=27),
        'days_of_week': [1, 3],
        'time_slots': [{'start': '09:00', 'end': '12:00'}],
    }
    fields.update(overrides)
    return CreateAvailabilityRequest(**fields)


def test_create_recurring_availability_stores_normalized_rule(db, doctor, next_monday) -> None:
    created = create_availability(
        _recurring_request(next_monday, days_of_week=[3, 1, 3]),
        current_user=doctor,
        db=db,
    )

    stored = db.query(DoctorAvailability).filter(DoctorAvailability.id == created.id).one()
    assert stored.doctor_id == doctor.id
    assert stored.days_of_week == [1, 3]
    assert stored.time_slots == [{'start': '09:00:00', 'end': '12:00:00'}]


def test_create_one_off_availability(db, doctor, next_monday) -> None:
    created = create_availability(
        CreateAvailabilityRequest(
            is_recurring=False,
            specific_date=next_monday,
            time_slots=[{'start': '14:00', 'end': '16:00'}],
        ),
        current_user=doctor,
        db=db,
    )

    assert created.specific_date == next_monday
    assert created.days_of_week is None
    assert [rule.id for rule in list_my_availability(current_user=doctor, db=db)] == [created.id]


def test_create_availability_rejects_overlap_with_existing_rule(db, doctor, next_monday, monday_availability) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_availability(
            CreateAvailabilityRequest(
                is_recurring=False,
                specific_date=next_monday,
                time_slots=[{'start': '11:30', 'end': '13:00'}],
            ),
            current_user=doctor,
            db=db,
        )

    assert exception_info.value.status_code == 409


def test_create_availability_allows_adjacent_interval(db, doctor, next_monday, monday_availability) -> None:
    created = create_availability(
        CreateAvailabilityRequest(
            is_recurring=False,
            specific_date=next_monday,
            time_slots=[{'start': '12:00', 'end': '13:00'}],
        ),
        current_user=doctor,
        db=db,
    )

    assert created.id != monday_availability.id


def test_create_availability_rejects_overlap_with_absence(db, doctor, next_monday) -> None:
    db.add(DoctorAbsence(doctor_id=doctor.id, start_date=next_monday + timedelta(days=2), end_date=next_monday + timedelta(days=2)))
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        create_availability(_recurring_request(next_monday), current_user=doctor, db=db)

    assert exception_info.value.status_code == 409


def test_create_availability_rejects_oversized_span(db, doctor, next_monday) -> None:
    request = _recurring_request(next_monday, end_date=next_monday + timedelta(days=800))

    with pytest.raises(HTTPException) as exception_info:
        create_availability(request, current_user=doctor, db=db)

    assert exception_info.value.status_code == 400
    assert db.query(DoctorAvailability).count() == 0


@pytest.mark.parametrize(
    'fields',
    [
        {'is_recurring': True, 'specific_date': date(2030, 1, 7), 'time_slots': [{'start': '09:00', 'end': '10:00'}]},
        {'is_recurring': False, 'time_slots': [{'start': '09:00', 'end': '10:00'}]},
        {'is_recurring': False, 'specific_date': date(2030, 1, 7), 'time_slots': [{'start': '10:00', 'end': '09:00'}]},
        {'is_recurring': False, 'specific_date': date(2030, 1, 7), 'time_slots': []},
        {
            'is_recurring': False,
            'specific_date': date(2030, 1, 7),
            'time_slots': [{'start': '09:00', 'end': '11:00'}, {'start': '10:00', 'end': '12:00'}],
        },
        {
            'is_recurring': True,
            'start_date': date(2030, 1, 7),
            'end_date': date(2030, 1, 31),
            'days_of_week': [7],
            'time_slots': [{'start': '09:00', 'end': '10:00'}],
        },
    ],
)
def test_create_availability_request_validation(fields: dict) -> None:
    with pytest.raises(ValidationError):
        CreateAvailabilityRequest(**fields)


def test_list_doctor_availability_is_public(db, doctor, monday_availability) -> None:
    rules = list_doctor_availability(doctor.id, db=db)

    assert [rule.id for rule in rules] == [monday_availability.id]


def test_list_doctor_availability_unknown_doctor(db, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_doctor_availability(patient.id, db=db)

    assert exception_info.value.status_code == 404


def test_delete_availability_removes_own_rule(db, doctor, monday_availability) -> None:
    delete_availability(monday_availability.id, current_user=doctor, db=db)

    assert db.query(DoctorAvailability).count() == 0


def test_delete_availability_of_another_doctor_is_not_found(db, doctor, monday_availability) -> None:
    colleague = User(email='wilson@clinic.test', hashed_password='x', full_name='James Wilson', role='DOCTOR')
    db.add(colleague)
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        delete_availability(monday_availability.id, current_user=colleague, db=db)

    assert exception_info.value.status_code == 404
    assert db.query(DoctorAvailability).count() == 1
